from .base import ProviderQuote, QuoteProvider, SymbolMatch, UnconfiguredQuoteProvider
from .mock import MockQuoteProvider
from .twelve_data import TwelveDataProvider

__all__ = [
    "MockQuoteProvider",
    "ProviderQuote",
    "QuoteProvider",
    "SymbolMatch",
    "TwelveDataProvider",
    "UnconfiguredQuoteProvider",
]
