from __future__ import annotations

from decimal import Decimal, InvalidOperation

import requests
from django.conf import settings

from .base import ProviderQuote, QuoteProvider, SymbolMatch

EQUITY_INSTRUMENT_TYPES = {"common stock", "equity", "stock"}


def _d(raw) -> Decimal | None:
    if raw in (None, ""):
        return None
    try:
        return Decimal(str(raw))
    except (InvalidOperation, TypeError):
        return None


class TwelveDataProvider(QuoteProvider):
    provider_name = "TWELVE_DATA"
    base_url = "https://api.twelvedata.com"

    def __init__(
        self,
        api_key: str | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key or getattr(settings, "TWELVE_DATA_API_KEY", None)
        if not self.api_key:
            raise RuntimeError("Missing TWELVE_DATA_API_KEY")
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else getattr(settings, "QUOTE_TIMEOUT_SECONDS", 10)

    def _get(self, endpoint: str, params: dict) -> dict:
        resp = self.session.get(
            f"{self.base_url}/{endpoint}",
            params={**params, "apikey": self.api_key},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            return {}
        return data

    def fetch_quote(self, symbol: str) -> ProviderQuote | None:
        """
        Fetch a full quote payload via Twelve Data `quote` endpoint.
        Docs: https://twelvedata.com/docs#quote
        """
        data = self._get("quote", {"symbol": symbol})
        # Twelve Data uses {status:"error", code:..., message:...} on failures, including unknown symbols.
        if not data or data.get("status") == "error":
            return None

        # `close` is the latest price during the session; some payloads carry `price` instead.
        price = _d(data.get("close")) or _d(data.get("price"))
        previous_close = _d(data.get("previous_close"))
        change = _d(data.get("change"))
        if change is None and price is not None and previous_close is not None:
            change = price - previous_close
        change_percent = _d(data.get("percent_change"))
        if change_percent is None and change is not None and previous_close:
            change_percent = change / previous_close * Decimal("100")

        return ProviderQuote(
            symbol=(data.get("symbol") or symbol).upper(),
            name=data.get("name") or symbol,
            price=price,
            change=change,
            change_percent=change_percent,
        )

    def search_symbols(self, keywords: str) -> list[SymbolMatch]:
        """
        Docs: https://twelvedata.com/docs#symbol-search
        """
        data = self._get("symbol_search", {"symbol": keywords, "outputsize": 30})
        if data.get("status") == "error":
            return []
        results: list[SymbolMatch] = []
        for row in data.get("data") or []:
            if not isinstance(row, dict) or not row.get("symbol"):
                continue
            instrument_type = (row.get("instrument_type") or "").strip()
            if instrument_type.lower() not in EQUITY_INSTRUMENT_TYPES:
                continue
            results.append(
                SymbolMatch(
                    symbol=row["symbol"],
                    name=row.get("instrument_name") or row["symbol"],
                    type=instrument_type or "Equity",
                    region=row.get("country") or "United States",
                )
            )
        return results
