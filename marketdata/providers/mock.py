from __future__ import annotations

from decimal import Decimal

from .base import ProviderQuote, QuoteProvider, SymbolMatch

# Used when no market data key is configured (QUOTE_PROVIDER=mock) and by tests.
MOCK_QUOTES: dict[str, tuple[str, str, str, str]] = {
    "AAPL": ("Apple Inc.", "175.50", "2.30", "1.33"),
    "MSFT": ("Microsoft Corporation", "378.85", "-1.25", "-0.33"),
    "GOOGL": ("Alphabet Inc.", "140.20", "3.10", "2.26"),
    "AMZN": ("Amazon.com Inc.", "145.80", "1.50", "1.04"),
    "TSLA": ("Tesla, Inc.", "248.50", "-5.20", "-2.05"),
    "META": ("Meta Platforms Inc.", "485.30", "8.70", "1.83"),
    "NVDA": ("NVIDIA Corporation", "875.40", "25.60", "3.01"),
    "JPM": ("JPMorgan Chase & Co.", "195.25", "1.75", "0.90"),
    "V": ("Visa Inc.", "275.80", "2.40", "0.88"),
    "WMT": ("Walmart Inc.", "165.30", "-0.50", "-0.30"),
    "JNJ": ("Johnson & Johnson", "158.10", "0.40", "0.25"),
    "PG": ("Procter & Gamble Co.", "152.60", "-0.20", "-0.13"),
    "MA": ("Mastercard Incorporated", "420.15", "3.05", "0.73"),
    "DIS": ("The Walt Disney Company", "92.40", "-1.10", "-1.18"),
    "NFLX": ("Netflix, Inc.", "612.70", "6.90", "1.14"),
}


class MockQuoteProvider(QuoteProvider):
    """
    Deterministic in-process quotes.

    `prices` overrides or extends the built-in table ({symbol: price}); symbols in
    neither are reported as unknown.
    """

    provider_name = "MOCK"

    def __init__(self, prices: dict[str, Decimal | str | int] | None = None):
        self.prices = {sym.upper(): Decimal(str(p)) for sym, p in (prices or {}).items()}

    def fetch_quote(self, symbol: str) -> ProviderQuote | None:
        symbol = symbol.upper()
        row = MOCK_QUOTES.get(symbol)
        if symbol in self.prices:
            name = row[0] if row else f"{symbol} Company"
            return ProviderQuote(symbol=symbol, name=name, price=self.prices[symbol])
        if row is None:
            return None
        name, price, change, change_percent = row
        return ProviderQuote(
            symbol=symbol,
            name=name,
            price=Decimal(price),
            change=Decimal(change),
            change_percent=Decimal(change_percent),
        )

    def search_symbols(self, keywords: str) -> list[SymbolMatch]:
        query = keywords.upper()
        return [
            SymbolMatch(symbol=sym, name=name)
            for sym, (name, *_rest) in MOCK_QUOTES.items()
            if query in sym or query in name.upper()
        ][:10]
