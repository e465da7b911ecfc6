from __future__ import annotations

import io
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import Client, TestCase
from django.urls import reverse

from investorsarena.errors import LeagueNotFound
from leagues.services import create_league, join_league
from marketdata.providers import MockQuoteProvider
from marketdata.services import QuoteGateway
from portfolios.models import Portfolio
from portfolios.services import buy_stock

from .services import rank_league


def _gateway(**prices) -> QuoteGateway:
    return QuoteGateway(MockQuoteProvider(prices))


class RankLeagueTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.u1 = User.objects.create_user(username="u1", password="pw", first_name="Ada", last_name="Lovelace")
        self.u2 = User.objects.create_user(username="u2", password="pw")
        self.u3 = User.objects.create_user(username="u3", password="pw")
        self.league = create_league(user_id=self.u1.id, name="L1")
        join_league(user_id=self.u2.id, league_id=self.league.id)
        join_league(user_id=self.u3.id, league_id=self.league.id)

    def test_ranks_by_total_value_at_current_quotes(self):
        buy_stock(user_id=self.u1.id, league_id=self.league.id, symbol="AAPL", quantity=100, gateway=_gateway(AAPL="100"))
        buy_stock(user_id=self.u2.id, league_id=self.league.id, symbol="MSFT", quantity=100, gateway=_gateway(MSFT="100"))

        rows = rank_league(self.league.id, gateway=_gateway(AAPL="90", MSFT="120"))

        self.assertEqual([r.user_id for r in rows], [self.u2.id, self.u3.id, self.u1.id])
        self.assertEqual([r.rank for r in rows], [1, 2, 3])
        self.assertEqual(rows[0].total_value, Decimal("102000.00"))
        self.assertEqual(rows[0].gain_loss_percent, Decimal("2.0000"))
        self.assertEqual(rows[2].total_value, Decimal("99000.00"))
        self.assertEqual(rows[2].display_name, "Ada Lovelace")
        self.assertEqual(rows[1].display_name, "u3")

    def test_ties_keep_join_order(self):
        rows = rank_league(self.league.id, gateway=_gateway())
        self.assertEqual([r.user_id for r in rows], [self.u1.id, self.u2.id, self.u3.id])

    def test_each_symbol_quoted_once(self):
        for user in (self.u1, self.u2, self.u3):
            buy_stock(user_id=user.id, league_id=self.league.id, symbol="AAPL", quantity=1, gateway=_gateway(AAPL="10"))

        provider = MockQuoteProvider({"AAPL": "11"})
        with patch.object(provider, "fetch_quote", wraps=provider.fetch_quote) as spy:
            rank_league(self.league.id, gateway=QuoteGateway(provider))
        self.assertEqual(spy.call_count, 1)

    def test_unknown_league(self):
        with self.assertRaises(LeagueNotFound):
            rank_league(self.league.id + 1000, gateway=_gateway())


class LeaderboardApiTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.u1 = User.objects.create_user(username="u1", password="pw")
        self.u2 = User.objects.create_user(username="u2", password="pw")
        self.outsider = User.objects.create_user(username="out", password="pw")
        self.league = create_league(user_id=self.u1.id, name="L1")
        join_league(user_id=self.u2.id, league_id=self.league.id)
        self.client = Client()

    @patch("leaderboards.services.get_quote_gateway", lambda: _gateway())
    def test_member_sees_leaderboard_with_own_rank(self):
        self.client.login(username="u2", password="pw")
        resp = self.client.get(reverse("portfolios:leaderboard", args=[self.league.id]))
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["userRank"], 2)
        self.assertEqual(len(body["leaderboard"]), 2)
        self.assertEqual(body["leaderboard"][0]["totalValue"], "100000.00")

    def test_outsider_is_rejected(self):
        self.client.login(username="out", password="pw")
        resp = self.client.get(reverse("portfolios:leaderboard", args=[self.league.id]))
        self.assertEqual(resp.status_code, 403)

    def test_missing_league_is_404(self):
        self.client.login(username="u1", password="pw")
        resp = self.client.get(reverse("portfolios:leaderboard", args=[self.league.id + 1000]))
        self.assertEqual(resp.status_code, 404)


class RefreshPortfolioValuesCommandTests(TestCase):
    @patch("leaderboards.management.commands.refresh_portfolio_values.get_quote_gateway")
    def test_refreshes_cached_totals(self, mock_gateway):
        User = get_user_model()
        user = User.objects.create_user(username="u1", password="pw")
        league = create_league(user_id=user.id, name="L1")
        buy_stock(user_id=user.id, league_id=league.id, symbol="AAPL", quantity=10, gateway=_gateway(AAPL="50"))
        mock_gateway.return_value = _gateway(AAPL="80")

        buf = io.StringIO()
        call_command("refresh_portfolio_values", stdout=buf)

        self.assertIn("Refreshed 1 portfolio value(s) across 1 league(s).", buf.getvalue())
        self.assertEqual(Portfolio.objects.get(user=user, league=league).total_value, Decimal("100300.00"))
