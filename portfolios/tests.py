from __future__ import annotations

import io
import json
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import CommandError, call_command
from django.db import DatabaseError
from django.test import Client, SimpleTestCase, TestCase, override_settings
from django.urls import reverse

from investorsarena.errors import (
    InsufficientFunds,
    InsufficientShares,
    InvalidRequest,
    NoSuchHolding,
    NotAMember,
    QuoteUnavailableError,
    StoreTransactionFailure,
)
from investorsarena.store import Store
from leagues.services import create_league, join_league
from marketdata.providers import MockQuoteProvider
from marketdata.services import QuoteGateway

from .ledger import HoldingState, apply_buy, apply_sell, replay
from .models import Holding, Portfolio, Transaction, TransactionType
from .services import buy_stock, list_transactions, sell_stock
from .valuation import value_portfolio


def _gateway(**prices) -> QuoteGateway:
    return QuoteGateway(MockQuoteProvider(prices))


class LedgerTests(SimpleTestCase):
    def test_first_buy_opens_holding_at_fill_price(self):
        out = apply_buy(cash_balance=Decimal("1000.00"), holding=None, symbol="AAPL", quantity=4, price=Decimal("25"))
        self.assertEqual(out.cash_balance, Decimal("900.00"))
        self.assertEqual(out.holding, HoldingState(symbol="AAPL", quantity=4, average_price=Decimal("25.000000")))
        self.assertEqual(out.entry.transaction_type, TransactionType.BUY)
        self.assertEqual(out.entry.total_amount, Decimal("100.00"))

    def test_second_buy_reaverages_cost(self):
        held = HoldingState(symbol="AAPL", quantity=10, average_price=Decimal("50"))
        out = apply_buy(cash_balance=Decimal("99500.00"), holding=held, symbol="AAPL", quantity=5, price=Decimal("60"))
        self.assertEqual(out.holding.quantity, 15)
        self.assertEqual(out.holding.average_price, Decimal("53.333333"))
        self.assertEqual(out.cash_balance, Decimal("99200.00"))

    def test_buy_spending_exact_cash_is_allowed(self):
        out = apply_buy(cash_balance=Decimal("500.00"), holding=None, symbol="IBM", quantity=10, price=Decimal("50"))
        self.assertEqual(out.cash_balance, Decimal("0.00"))

    def test_funds_check_uses_cost_rounded_to_the_cent(self):
        out = apply_buy(cash_balance=Decimal("10.00"), holding=None, symbol="IBM", quantity=3, price=Decimal("3.3349"))
        self.assertEqual(out.entry.total_amount, Decimal("10.00"))
        self.assertEqual(out.cash_balance, Decimal("0.00"))
        with self.assertRaises(InsufficientFunds) as ctx:
            apply_buy(cash_balance=Decimal("10.00"), holding=None, symbol="IBM", quantity=3, price=Decimal("3.335"))
        self.assertEqual(ctx.exception.meta["requested"], "10.01")

    def test_buy_over_cash_reports_shortfall(self):
        with self.assertRaises(InsufficientFunds) as ctx:
            apply_buy(cash_balance=Decimal("100.00"), holding=None, symbol="IBM", quantity=3, price=Decimal("50"))
        self.assertEqual(ctx.exception.meta["over"], "50.00")
        self.assertEqual(ctx.exception.meta["requested"], "150.00")

    def test_sell_without_holding(self):
        with self.assertRaises(NoSuchHolding):
            apply_sell(cash_balance=Decimal("0"), holding=None, symbol="IBM", quantity=1, price=Decimal("10"))

    def test_sell_more_than_held(self):
        held = HoldingState(symbol="IBM", quantity=2, average_price=Decimal("10"))
        with self.assertRaises(InsufficientShares) as ctx:
            apply_sell(cash_balance=Decimal("0"), holding=held, symbol="IBM", quantity=3, price=Decimal("10"))
        self.assertEqual(ctx.exception.meta["available_shares"], 2)
        self.assertEqual(ctx.exception.meta["requested_shares"], 3)

    def test_partial_sell_keeps_average_price(self):
        held = HoldingState(symbol="IBM", quantity=10, average_price=Decimal("20"))
        out = apply_sell(cash_balance=Decimal("0.00"), holding=held, symbol="IBM", quantity=4, price=Decimal("25"))
        self.assertEqual(out.holding.quantity, 6)
        self.assertEqual(out.holding.average_price, Decimal("20"))
        self.assertEqual(out.cash_balance, Decimal("100.00"))
        self.assertEqual(out.entry.realized_gain, Decimal("20.00"))

    def test_selling_entire_position_closes_it(self):
        held = HoldingState(symbol="IBM", quantity=4, average_price=Decimal("20"))
        out = apply_sell(cash_balance=Decimal("0.00"), holding=held, symbol="IBM", quantity=4, price=Decimal("18"))
        self.assertIsNone(out.holding)
        self.assertEqual(out.entry.realized_gain, Decimal("-8.00"))

    def test_rejects_non_positive_quantity_and_price(self):
        for qty in (0, -1, True, 1.5):
            with self.subTest(quantity=qty), self.assertRaises(InvalidRequest):
                apply_buy(cash_balance=Decimal("100"), holding=None, symbol="IBM", quantity=qty, price=Decimal("1"))
        with self.assertRaises(InvalidRequest):
            apply_buy(cash_balance=Decimal("100"), holding=None, symbol="IBM", quantity=1, price=Decimal("0"))

    def test_replay_rebuilds_state(self):
        entries = [
            SimpleNamespace(symbol="AAPL", transaction_type="BUY", quantity=10, price=Decimal("50")),
            SimpleNamespace(symbol="MSFT", transaction_type="BUY", quantity=2, price=Decimal("100")),
            SimpleNamespace(symbol="AAPL", transaction_type="BUY", quantity=5, price=Decimal("60")),
            SimpleNamespace(symbol="AAPL", transaction_type="SELL", quantity=15, price=Decimal("55")),
        ]
        state = replay(starting_cash=Decimal("100000.00"), entries=entries)
        self.assertEqual(state.cash_balance, Decimal("99825.00"))
        self.assertEqual(list(state.holdings), ["MSFT"])
        self.assertEqual(state.holdings["MSFT"].quantity, 2)


class TradeServiceTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.user = User.objects.create_user(username="u1", password="pw")
        self.other = User.objects.create_user(username="u2", password="pw")
        self.league = create_league(user_id=self.user.id, name="L1", virtual_budget=Decimal("100000.00"))

    def _portfolio(self) -> Portfolio:
        return Portfolio.objects.get(user=self.user, league=self.league)

    def test_buy_buy_sell_round_trip(self):
        buy_stock(user_id=self.user.id, league_id=self.league.id, symbol="aapl", quantity=10, gateway=_gateway(AAPL="50"))
        buy_stock(user_id=self.user.id, league_id=self.league.id, symbol="AAPL", quantity=5, gateway=_gateway(AAPL="60"))

        holding = Holding.objects.get(portfolio=self._portfolio(), symbol="AAPL")
        self.assertEqual(holding.quantity, 15)
        self.assertEqual(holding.average_price.quantize(Decimal("0.01")), Decimal("53.33"))
        self.assertEqual(self._portfolio().cash_balance, Decimal("99200.00"))

        result = sell_stock(
            user_id=self.user.id, league_id=self.league.id, symbol="AAPL", quantity=15, gateway=_gateway(AAPL="55")
        )
        self.assertTrue(result.ok)
        self.assertIsNone(result.holding)
        self.assertIn("sold successfully", result.message)

        portfolio = self._portfolio()
        self.assertEqual(portfolio.cash_balance, Decimal("100025.00"))
        self.assertFalse(portfolio.holdings.exists())
        self.assertEqual(portfolio.transactions.count(), 3)
        self.assertEqual(result.transaction.realized_gain, Decimal("25.00"))

        valuation = value_portfolio(portfolio, gateway=_gateway())
        self.assertEqual(valuation.total_value, Decimal("100025.00"))
        self.assertEqual(valuation.gain_loss, Decimal("25.00"))

    def test_failed_buy_changes_nothing(self):
        with self.assertRaises(InsufficientFunds):
            buy_stock(
                user_id=self.user.id, league_id=self.league.id, symbol="AAPL", quantity=3000, gateway=_gateway(AAPL="50")
            )
        portfolio = self._portfolio()
        self.assertEqual(portfolio.cash_balance, Decimal("100000.00"))
        self.assertFalse(portfolio.holdings.exists())
        self.assertFalse(portfolio.transactions.exists())

    def test_failed_sell_changes_nothing(self):
        buy_stock(user_id=self.user.id, league_id=self.league.id, symbol="AAPL", quantity=2, gateway=_gateway(AAPL="50"))
        with self.assertRaises(InsufficientShares):
            sell_stock(user_id=self.user.id, league_id=self.league.id, symbol="AAPL", quantity=3, gateway=_gateway(AAPL="70"))
        portfolio = self._portfolio()
        self.assertEqual(portfolio.cash_balance, Decimal("99900.00"))
        self.assertEqual(portfolio.holdings.get().quantity, 2)
        self.assertEqual(portfolio.transactions.count(), 1)

    def test_sell_of_unowned_symbol(self):
        with self.assertRaises(NoSuchHolding):
            sell_stock(user_id=self.user.id, league_id=self.league.id, symbol="MSFT", quantity=1, gateway=_gateway())

    def test_quote_failure_rejects_trade(self):
        with self.assertRaises(QuoteUnavailableError) as ctx:
            buy_stock(user_id=self.user.id, league_id=self.league.id, symbol="ZZZZ", quantity=1, gateway=_gateway())
        self.assertEqual(ctx.exception.meta["quote_failure"], "NOT_FOUND")
        self.assertFalse(self._portfolio().transactions.exists())

    def test_invalid_quantity_rejected_before_quote(self):
        provider = MockQuoteProvider()
        with patch.object(provider, "fetch_quote") as mock_fetch:
            with self.assertRaises(InvalidRequest):
                buy_stock(
                    user_id=self.user.id,
                    league_id=self.league.id,
                    symbol="AAPL",
                    quantity=0,
                    gateway=QuoteGateway(provider),
                )
            mock_fetch.assert_not_called()

    def test_non_member_cannot_trade(self):
        with self.assertRaises(NotAMember):
            buy_stock(user_id=self.other.id, league_id=self.league.id, symbol="AAPL", quantity=1, gateway=_gateway())

    def test_store_failure_rolls_back_and_is_retryable(self):
        with patch("portfolios.services.Transaction.objects.create", side_effect=DatabaseError("disk full")):
            with self.assertRaises(StoreTransactionFailure) as ctx:
                buy_stock(
                    user_id=self.user.id, league_id=self.league.id, symbol="AAPL", quantity=1, gateway=_gateway(AAPL="50")
                )
        self.assertTrue(ctx.exception.meta["retryable"])
        portfolio = self._portfolio()
        self.assertEqual(portfolio.cash_balance, Decimal("100000.00"))
        self.assertFalse(portfolio.holdings.exists())

    def test_portfolios_are_isolated_per_league(self):
        second = create_league(user_id=self.user.id, name="L2")
        buy_stock(user_id=self.user.id, league_id=second.id, symbol="AAPL", quantity=1, gateway=_gateway(AAPL="50"))
        self.assertEqual(self._portfolio().cash_balance, Decimal("100000.00"))
        self.assertEqual(Portfolio.objects.get(user=self.user, league=second).cash_balance, Decimal("99950.00"))

    def test_transactions_are_append_only(self):
        result = buy_stock(
            user_id=self.user.id, league_id=self.league.id, symbol="AAPL", quantity=1, gateway=_gateway(AAPL="50")
        )
        txn = result.transaction
        txn.quantity = 99
        with self.assertRaises(ValueError):
            txn.save()
        with self.assertRaises(ValueError):
            txn.delete()
        self.assertEqual(Transaction.objects.get(pk=txn.pk).quantity, 1)

    def test_list_transactions_newest_first_and_clamped(self):
        for qty in (1, 2, 3):
            buy_stock(
                user_id=self.user.id, league_id=self.league.id, symbol="AAPL", quantity=qty, gateway=_gateway(AAPL="10")
            )
        rows = list_transactions(user_id=self.user.id, league_id=self.league.id)
        self.assertEqual([t.quantity for t in rows], [3, 2, 1])
        self.assertEqual(len(list_transactions(user_id=self.user.id, league_id=self.league.id, limit=0)), 1)


class ValuationTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.user = User.objects.create_user(username="u1", password="pw")
        self.league = create_league(user_id=self.user.id, name="L1")
        buy_stock(user_id=self.user.id, league_id=self.league.id, symbol="AAPL", quantity=10, gateway=_gateway(AAPL="50"))
        self.portfolio = Portfolio.objects.get(user=self.user, league=self.league)

    def test_values_at_current_quotes_and_caches_total(self):
        valuation = value_portfolio(self.portfolio, gateway=_gateway(AAPL="55"))
        self.assertEqual(valuation.holdings_value, Decimal("550.00"))
        self.assertEqual(valuation.total_value, Decimal("100050.00"))
        self.assertEqual(valuation.gain_loss, Decimal("50.00"))
        self.assertEqual(valuation.gain_loss_percent, Decimal("0.0500"))
        row = valuation.holdings[0]
        self.assertTrue(row.priced)
        self.assertEqual(row.gain_loss, Decimal("50.00"))
        self.assertEqual(row.gain_loss_percent, Decimal("10.0000"))

        self.portfolio.refresh_from_db()
        self.assertEqual(self.portfolio.total_value, Decimal("100050.00"))

    def test_unpriced_holding_falls_back_to_cost_basis(self):
        provider = MockQuoteProvider()
        with patch.object(provider, "fetch_quote", side_effect=RuntimeError("provider down")):
            valuation = value_portfolio(self.portfolio, gateway=QuoteGateway(provider))
        self.assertEqual(valuation.total_value, Decimal("100000.00"))
        self.assertFalse(valuation.holdings[0].priced)
        self.assertEqual(valuation.holdings[0].gain_loss, Decimal("0.00"))

    def test_cache_write_failure_is_not_fatal(self):
        with patch("portfolios.valuation.Portfolio.objects.filter", side_effect=DatabaseError("locked")):
            valuation = value_portfolio(self.portfolio, gateway=_gateway(AAPL="60"))
        self.assertEqual(valuation.total_value, Decimal("100100.00"))

    @override_settings(QUOTE_PROVIDER="twelve_data", TWELVE_DATA_API_KEY="")
    def test_missing_provider_key_values_at_cost_basis(self):
        valuation = value_portfolio(self.portfolio)
        self.assertEqual(valuation.total_value, Decimal("100000.00"))
        self.assertFalse(valuation.holdings[0].priced)

    def test_cache_write_goes_through_given_store(self):
        store = Store()
        with patch.object(store, "atomic", wraps=store.atomic) as spy:
            value_portfolio(self.portfolio, gateway=_gateway(AAPL="60"), store=store)
        spy.assert_called_once_with()
        self.portfolio.refresh_from_db()
        self.assertEqual(self.portfolio.total_value, Decimal("100100.00"))


@patch("portfolios.valuation.get_quote_gateway", lambda: _gateway(AAPL="55"))
@patch("portfolios.services.get_quote_gateway", lambda: _gateway(AAPL="50"))
class PortfolioApiTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.user = User.objects.create_user(username="u1", password="pw")
        self.outsider = User.objects.create_user(username="u2", password="pw")
        self.league = create_league(user_id=self.user.id, name="L1")
        self.client = Client()
        self.client.login(username="u1", password="pw")

    def _post(self, name, payload):
        return self.client.post(reverse(name), data=json.dumps(payload), content_type="application/json")

    def test_buy_then_view_portfolio(self):
        resp = self._post("portfolios:buy", {"leagueId": self.league.id, "symbol": "aapl", "quantity": 10})
        self.assertEqual(resp.status_code, 201)
        body = resp.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["transaction"]["type"], "BUY")
        self.assertEqual(body["transaction"]["symbol"], "AAPL")
        self.assertEqual(body["portfolio"]["cashBalance"], "99500.00")

        resp = self.client.get(reverse("portfolios:portfolio", args=[self.league.id]))
        self.assertEqual(resp.status_code, 200)
        portfolio = resp.json()["portfolio"]
        self.assertEqual(portfolio["totalValue"], "100050.00")
        self.assertEqual(portfolio["holdings"][0]["currentPrice"], "55")

    def test_invalid_quantity_is_400_with_field_errors(self):
        resp = self._post("portfolios:buy", {"leagueId": self.league.id, "symbol": "AAPL", "quantity": 0})
        self.assertEqual(resp.status_code, 400)
        body = resp.json()
        self.assertEqual(body["reason"], "INVALID_REQUEST")
        self.assertIn("quantity", body["fields"])

    def test_insufficient_cash_is_400(self):
        resp = self._post("portfolios:buy", {"leagueId": self.league.id, "symbol": "AAPL", "quantity": 5000})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["reason"], "INSUFFICIENT_CASH")
        self.assertIn("over", resp.json())

    def test_sell_without_position(self):
        resp = self._post("portfolios:sell", {"leagueId": self.league.id, "symbol": "AAPL", "quantity": 1})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["reason"], "NO_POSITION")

    def test_unknown_symbol_is_503(self):
        resp = self._post("portfolios:buy", {"leagueId": self.league.id, "symbol": "ZZZZ", "quantity": 1})
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["reason"], "QUOTE_UNAVAILABLE")

    def test_non_member_gets_403(self):
        self.client.logout()
        self.client.login(username="u2", password="pw")
        resp = self.client.get(reverse("portfolios:portfolio", args=[self.league.id]))
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["reason"], "NOT_A_MEMBER")

    def test_requires_login(self):
        self.client.logout()
        resp = self.client.get(reverse("portfolios:portfolio", args=[self.league.id]))
        self.assertEqual(resp.status_code, 401)

    def test_buy_requires_post(self):
        resp = self.client.get(reverse("portfolios:buy"))
        self.assertEqual(resp.status_code, 405)

    def test_transaction_history(self):
        self._post("portfolios:buy", {"leagueId": self.league.id, "symbol": "AAPL", "quantity": 1})
        self._post("portfolios:buy", {"leagueId": self.league.id, "symbol": "AAPL", "quantity": 2})
        resp = self.client.get(reverse("portfolios:transactions", args=[self.league.id]), {"limit": 1})
        self.assertEqual(resp.status_code, 200)
        rows = resp.json()["transactions"]
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["quantity"], 2)


class LedgerAuditCommandTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.user = User.objects.create_user(username="u1", password="pw")
        self.league = create_league(user_id=self.user.id, name="L1")
        member = User.objects.create_user(username="u2", password="pw")
        join_league(user_id=member.id, league_id=self.league.id)
        buy_stock(user_id=self.user.id, league_id=self.league.id, symbol="AAPL", quantity=10, gateway=_gateway(AAPL="50"))
        buy_stock(user_id=self.user.id, league_id=self.league.id, symbol="AAPL", quantity=5, gateway=_gateway(AAPL="60"))
        sell_stock(user_id=self.user.id, league_id=self.league.id, symbol="AAPL", quantity=7, gateway=_gateway(AAPL="55"))

    def _run(self, *args) -> str:
        buf = io.StringIO()
        call_command("audit_portfolio_ledgers", *args, stdout=buf)
        return buf.getvalue()

    def test_consistent_ledgers_pass(self):
        out = self._run()
        self.assertIn("Audited 2 portfolio(s); 0 mismatch(es).", out)

    def test_tampered_cash_is_reported(self):
        Portfolio.objects.filter(user=self.user, league=self.league).update(cash_balance=Decimal("1.00"))
        out = self._run()
        self.assertIn("1 mismatch(es)", out)
        self.assertIn("cash 1.00", out)
        with self.assertRaises(CommandError):
            self._run("--fail-on-mismatch")
