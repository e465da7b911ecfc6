from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal

import requests
from django.conf import settings

from marketdata.providers import (
    MockQuoteProvider,
    QuoteProvider,
    SymbolMatch,
    TwelveDataProvider,
    UnconfiguredQuoteProvider,
)

logger = logging.getLogger(__name__)

_SYMBOL_RE = re.compile(r"^[A-Z0-9][A-Z0-9.\-]{0,15}$")

SEARCH_RESULT_LIMIT = 20


def normalize_symbol(raw: str) -> str:
    sym = (raw or "").strip().upper()
    if not sym or not _SYMBOL_RE.match(sym):
        raise ValueError("Invalid symbol format.")
    return sym


@dataclass(frozen=True)
class Quote:
    symbol: str
    name: str
    price: Decimal
    change: Decimal
    change_percent: Decimal

    def as_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
        }


@dataclass(frozen=True)
class QuoteUnavailable:
    """Typed failure of a quote lookup; carries the symbol that was attempted."""

    symbol: str
    reason: str
    detail: str = ""


QuoteResult = Quote | QuoteUnavailable


class QuoteGateway:
    """
    Normalizes symbols, calls the provider, and turns every provider failure into a
    `QuoteUnavailable` value. Nothing raised by a provider escapes `fetch_quote`.
    """

    def __init__(self, provider: QuoteProvider):
        self.provider = provider

    def fetch_quote(self, symbol: str) -> QuoteResult:
        try:
            sym = normalize_symbol(symbol)
        except ValueError:
            return QuoteUnavailable(symbol=(symbol or "").strip().upper(), reason="INVALID_SYMBOL")

        try:
            data = self.provider.fetch_quote(sym)
        except requests.Timeout as e:
            logger.warning("Quote request for %s timed out (%s)", sym, self.provider.provider_name)
            return QuoteUnavailable(symbol=sym, reason="TIMEOUT", detail=str(e))
        except Exception as e:
            logger.warning(
                "Quote request for %s failed (%s): %s", sym, self.provider.provider_name, e, exc_info=True
            )
            return QuoteUnavailable(symbol=sym, reason="PROVIDER_ERROR", detail=str(e))

        if data is None:
            return QuoteUnavailable(symbol=sym, reason="NOT_FOUND")
        # NaN does not compare, so finiteness is checked first.
        if data.price is None or not data.price.is_finite() or data.price <= 0:
            return QuoteUnavailable(symbol=sym, reason="INVALID_PRICE")

        return Quote(
            symbol=sym,
            name=data.name or sym,
            price=data.price,
            change=data.change if data.change is not None else Decimal("0"),
            change_percent=data.change_percent if data.change_percent is not None else Decimal("0"),
        )

    def search(self, keywords: str) -> list[SymbolMatch]:
        query = (keywords or "").strip()
        if not query:
            return []
        try:
            matches = self.provider.search_symbols(query)
        except Exception as e:
            logger.warning("Symbol search for %r failed (%s): %s", query, self.provider.provider_name, e)
            return []
        return matches[:SEARCH_RESULT_LIMIT]


def build_quote_provider(name: str | None = None) -> QuoteProvider:
    name = (name or getattr(settings, "QUOTE_PROVIDER", "twelve_data")).strip().lower()
    if name == "mock":
        return MockQuoteProvider()
    if name == "twelve_data":
        return TwelveDataProvider()
    raise ValueError(f"Unknown QUOTE_PROVIDER: {name}")


def get_quote_gateway() -> QuoteGateway:
    """
    Gateway for the configured provider. A provider that cannot be built (e.g. a missing
    API key) is swapped for one that reports every lookup as a provider error, so callers
    see unavailable quotes rather than a crash.
    """
    try:
        provider = build_quote_provider()
    except RuntimeError as e:
        logger.error("Quote provider is not configured: %s", e)
        provider = UnconfiguredQuoteProvider(str(e))
    return QuoteGateway(provider)
