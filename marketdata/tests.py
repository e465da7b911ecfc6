from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.contrib.auth import get_user_model
from django.test import Client, SimpleTestCase, TestCase, override_settings
from django.urls import reverse

from .providers import MockQuoteProvider, ProviderQuote, SymbolMatch, TwelveDataProvider
from .services import Quote, QuoteGateway, QuoteUnavailable, build_quote_provider, get_quote_gateway, normalize_symbol


class _StubProvider(MockQuoteProvider):
    provider_name = "STUB"

    def __init__(self, quote=None, exc=None):
        super().__init__()
        self._quote = quote
        self._exc = exc

    def fetch_quote(self, symbol):
        if self._exc is not None:
            raise self._exc
        return self._quote


class NormalizeSymbolTests(SimpleTestCase):
    def test_normalizes_case_and_whitespace(self):
        self.assertEqual(normalize_symbol("  brk.b "), "BRK.B")

    def test_rejects_bad_formats(self):
        for raw in ("", "   ", "$AAPL", "A" * 17, "AA PL"):
            with self.subTest(raw=raw), self.assertRaises(ValueError):
                normalize_symbol(raw)


class QuoteGatewayTests(SimpleTestCase):
    def test_success_fills_defaults(self):
        gateway = QuoteGateway(_StubProvider(ProviderQuote(symbol="IBM", name="", price=Decimal("120.5"))))
        quote = gateway.fetch_quote("ibm")
        self.assertIsInstance(quote, Quote)
        self.assertEqual(quote.symbol, "IBM")
        self.assertEqual(quote.name, "IBM")
        self.assertEqual(quote.change, Decimal("0"))

    def test_failures_are_values_not_exceptions(self):
        cases = [
            ("$$$", _StubProvider(), "INVALID_SYMBOL"),
            ("IBM", _StubProvider(quote=None), "NOT_FOUND"),
            ("IBM", _StubProvider(ProviderQuote(symbol="IBM", name="IBM", price=Decimal("0"))), "INVALID_PRICE"),
            ("IBM", _StubProvider(ProviderQuote(symbol="IBM", name="IBM", price=None)), "INVALID_PRICE"),
            ("IBM", _StubProvider(ProviderQuote(symbol="IBM", name="IBM", price=Decimal("NaN"))), "INVALID_PRICE"),
            ("IBM", _StubProvider(ProviderQuote(symbol="IBM", name="IBM", price=Decimal("Infinity"))), "INVALID_PRICE"),
            ("IBM", _StubProvider(exc=requests.Timeout("slow")), "TIMEOUT"),
            ("IBM", _StubProvider(exc=requests.ConnectionError("down")), "PROVIDER_ERROR"),
            ("IBM", _StubProvider(exc=KeyError("close")), "PROVIDER_ERROR"),
        ]
        for symbol, provider, reason in cases:
            with self.subTest(reason=reason):
                result = QuoteGateway(provider).fetch_quote(symbol)
                self.assertIsInstance(result, QuoteUnavailable)
                self.assertEqual(result.reason, reason)

    def test_search_swallows_provider_errors(self):
        provider = MockQuoteProvider()
        with patch.object(provider, "search_symbols", side_effect=requests.ConnectionError("down")):
            self.assertEqual(QuoteGateway(provider).search("apple"), [])
        self.assertEqual(QuoteGateway(provider).search("   "), [])

    def test_mock_provider_search(self):
        results = QuoteGateway(MockQuoteProvider()).search("apple")
        self.assertEqual(results, [SymbolMatch(symbol="AAPL", name="Apple Inc.")])

    @override_settings(QUOTE_PROVIDER="nope")
    def test_unknown_provider_setting(self):
        with self.assertRaises(ValueError):
            build_quote_provider()

    @override_settings(QUOTE_PROVIDER="twelve_data", TWELVE_DATA_API_KEY="")
    def test_missing_api_key_yields_unavailable_quotes(self):
        gateway = get_quote_gateway()
        result = gateway.fetch_quote("AAPL")
        self.assertIsInstance(result, QuoteUnavailable)
        self.assertEqual(result.reason, "PROVIDER_ERROR")
        self.assertEqual(gateway.search("apple"), [])


class TwelveDataProviderTests(SimpleTestCase):
    def _provider(self, payload):
        session = MagicMock()
        response = MagicMock()
        response.json.return_value = payload
        session.get.return_value = response
        return TwelveDataProvider(api_key="k", session=session, timeout=3), session

    def test_parses_quote_payload(self):
        provider, session = self._provider(
            {"symbol": "AAPL", "name": "Apple Inc", "close": "190.10", "previous_close": "188.10"}
        )
        quote = provider.fetch_quote("AAPL")
        self.assertEqual(quote.price, Decimal("190.10"))
        self.assertEqual(quote.change, Decimal("2.00"))
        self.assertEqual(quote.name, "Apple Inc")

        _, kwargs = session.get.call_args
        self.assertEqual(kwargs["params"]["apikey"], "k")
        self.assertEqual(kwargs["params"]["symbol"], "AAPL")
        self.assertEqual(kwargs["timeout"], 3)

    def test_nan_close_is_rejected_by_gateway(self):
        provider, _ = self._provider({"symbol": "AAPL", "name": "Apple Inc", "close": "NaN"})
        result = QuoteGateway(provider).fetch_quote("AAPL")
        self.assertIsInstance(result, QuoteUnavailable)
        self.assertEqual(result.reason, "INVALID_PRICE")

    def test_error_payload_means_unknown_symbol(self):
        provider, _ = self._provider({"status": "error", "code": 404, "message": "symbol not found"})
        self.assertIsNone(provider.fetch_quote("ZZZZ"))

    def test_search_keeps_equities_only(self):
        provider, _ = self._provider(
            {
                "data": [
                    {"symbol": "AAPL", "instrument_name": "Apple Inc", "instrument_type": "Common Stock", "country": "United States"},
                    {"symbol": "AAPL.ETF", "instrument_name": "Some ETF", "instrument_type": "ETF"},
                ]
            }
        )
        results = provider.search_symbols("aapl")
        self.assertEqual([r.symbol for r in results], ["AAPL"])
        self.assertEqual(results[0].type, "Common Stock")

    @override_settings(TWELVE_DATA_API_KEY="")
    def test_requires_api_key(self):
        with self.assertRaises(RuntimeError):
            TwelveDataProvider()


@override_settings(QUOTE_PROVIDER="mock")
class StocksApiTests(TestCase):
    def setUp(self):
        User = get_user_model()
        User.objects.create_user(username="u1", password="pw")
        self.client = Client()
        self.client.login(username="u1", password="pw")

    def test_quote(self):
        resp = self.client.get(reverse("marketdata:quote", args=["aapl"]))
        self.assertEqual(resp.status_code, 200)
        quote = resp.json()["quote"]
        self.assertEqual(quote["symbol"], "AAPL")
        self.assertEqual(quote["price"], "175.50")
        self.assertIn("changePercent", quote)

    def test_unknown_symbol_is_404(self):
        resp = self.client.get(reverse("marketdata:quote", args=["ZZZZ"]))
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["reason"], "NOT_FOUND")

    def test_provider_outage_is_503(self):
        with patch("marketdata.providers.mock.MockQuoteProvider.fetch_quote", side_effect=requests.Timeout("slow")):
            resp = self.client.get(reverse("marketdata:quote", args=["AAPL"]))
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["quote_failure"], "TIMEOUT")

    def test_search(self):
        resp = self.client.get(reverse("marketdata:search"), {"q": "micro"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([r["symbol"] for r in resp.json()["results"]], ["MSFT"])
