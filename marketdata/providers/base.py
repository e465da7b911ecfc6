from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class ProviderQuote:
    symbol: str
    name: str
    price: Decimal | None
    change: Decimal | None = None
    change_percent: Decimal | None = None


@dataclass(frozen=True)
class SymbolMatch:
    symbol: str
    name: str
    type: str = "Equity"
    region: str = "United States"


class QuoteProvider:
    provider_name: str

    def fetch_quote(self, symbol: str) -> ProviderQuote | None:
        """
        Fetch the latest quote for an already-normalized symbol.

        Return None when the provider does not know the symbol; raise on transport
        or provider errors and let the gateway decide what that means for callers.
        """
        raise NotImplementedError

    def search_symbols(self, keywords: str) -> list[SymbolMatch]:
        raise NotImplementedError


class UnconfiguredQuoteProvider(QuoteProvider):
    """Stands in for a provider whose construction failed; every call raises."""

    provider_name = "UNCONFIGURED"

    def __init__(self, reason: str):
        self.reason = reason

    def fetch_quote(self, symbol: str) -> ProviderQuote | None:
        raise RuntimeError(self.reason)

    def search_symbols(self, keywords: str) -> list[SymbolMatch]:
        raise RuntimeError(self.reason)
