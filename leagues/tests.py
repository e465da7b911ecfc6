from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import Client, TestCase
from django.urls import reverse

from investorsarena.errors import (
    AlreadyMember,
    InvalidCode,
    InvalidRequest,
    LeagueNotFound,
    NotAMember,
    NotLeagueAdmin,
    StoreTransactionFailure,
)
from marketdata.providers import MockQuoteProvider
from marketdata.services import QuoteGateway
from portfolios.models import Holding, Portfolio, Transaction
from portfolios.services import buy_stock

from .models import League, LeagueMember
from .services import (
    LeaveOutcome,
    create_league,
    join_league,
    join_league_by_code,
    leave_league,
    list_leagues_for_user,
    update_league,
)


class LeagueMembershipTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.admin = User.objects.create_user(username="admin", password="pw")
        self.alice = User.objects.create_user(username="alice", password="pw")
        self.bob = User.objects.create_user(username="bob", password="pw")
        self.league = create_league(user_id=self.admin.id, name="Friday Traders", virtual_budget="50000")

    def test_create_league_makes_creator_admin_and_member(self):
        self.assertEqual(self.league.admin_id, self.admin.id)
        self.assertEqual(len(self.league.invitation_code), 8)
        self.assertEqual(self.league.invitation_code, self.league.invitation_code.upper())
        portfolio = Portfolio.objects.get(user=self.admin, league=self.league)
        self.assertEqual(portfolio.cash_balance, Decimal("50000.00"))
        self.assertEqual(portfolio.total_value, Decimal("50000.00"))
        self.assertEqual(portfolio.membership.user_id, self.admin.id)

    def test_create_league_rejects_bad_budget(self):
        for budget in ("0", "-5", "abc"):
            with self.subTest(budget=budget), self.assertRaises(InvalidRequest):
                create_league(user_id=self.admin.id, name="X", virtual_budget=budget)

    def test_join_opens_portfolio_with_league_budget(self):
        membership = join_league(user_id=self.alice.id, league_id=self.league.id)
        self.assertEqual(membership.portfolio.cash_balance, Decimal("50000.00"))
        self.assertTrue(LeagueMember.objects.filter(league=self.league, user=self.alice).exists())

    def test_join_twice_is_rejected(self):
        join_league(user_id=self.alice.id, league_id=self.league.id)
        with self.assertRaises(AlreadyMember):
            join_league(user_id=self.alice.id, league_id=self.league.id)
        self.assertEqual(Portfolio.objects.filter(user=self.alice, league=self.league).count(), 1)

    def test_join_missing_league(self):
        with self.assertRaises(LeagueNotFound):
            join_league(user_id=self.alice.id, league_id=self.league.id + 1000)

    def test_join_by_code_is_case_insensitive(self):
        membership = join_league_by_code(user_id=self.alice.id, code=f"  {self.league.invitation_code.lower()} ")
        self.assertEqual(membership.league_id, self.league.id)

    def test_join_by_unknown_code(self):
        with self.assertRaises(InvalidCode) as ctx:
            join_league_by_code(user_id=self.alice.id, code="NOPE1234")
        self.assertIsInstance(ctx.exception, LeagueNotFound)

    def test_member_leaves(self):
        join_league(user_id=self.alice.id, league_id=self.league.id)
        result = leave_league(user_id=self.alice.id, league_id=self.league.id)
        self.assertEqual(result.outcome, LeaveOutcome.LEFT)
        self.assertIsNone(result.new_admin_id)
        self.assertFalse(LeagueMember.objects.filter(league=self.league, user=self.alice).exists())
        self.assertFalse(Portfolio.objects.filter(league=self.league, user=self.alice).exists())
        self.assertTrue(League.objects.filter(pk=self.league.id).exists())

    def test_admin_leaving_hands_over_to_earliest_member(self):
        join_league(user_id=self.alice.id, league_id=self.league.id)
        join_league(user_id=self.bob.id, league_id=self.league.id)
        gateway = QuoteGateway(MockQuoteProvider({"AAPL": "10"}))
        buy_stock(user_id=self.alice.id, league_id=self.league.id, symbol="AAPL", quantity=2, gateway=gateway)
        before = {
            p.user_id: (p.id, p.cash_balance)
            for p in Portfolio.objects.filter(league=self.league, user__in=[self.alice, self.bob])
        }

        result = leave_league(user_id=self.admin.id, league_id=self.league.id)
        self.assertEqual(result.outcome, LeaveOutcome.LEFT)
        self.assertEqual(result.new_admin_id, self.alice.id)
        self.league.refresh_from_db()
        self.assertEqual(self.league.admin_id, self.alice.id)
        self.assertEqual(self.league.members.count(), 2)

        self.assertFalse(Portfolio.objects.filter(league=self.league, user=self.admin).exists())
        after = {p.user_id: (p.id, p.cash_balance) for p in Portfolio.objects.filter(league=self.league)}
        self.assertEqual(after, before)
        self.assertEqual(Holding.objects.filter(portfolio__user=self.alice).count(), 1)
        self.assertEqual(
            LeagueMember.objects.filter(league=self.league).count(),
            Portfolio.objects.filter(league=self.league).count(),
        )

    def test_failed_admin_handover_rolls_back(self):
        join_league(user_id=self.alice.id, league_id=self.league.id)
        with patch("leagues.services.Portfolio.objects.filter", side_effect=DatabaseError("connection lost")):
            with self.assertRaises(StoreTransactionFailure):
                leave_league(user_id=self.admin.id, league_id=self.league.id)

        self.league.refresh_from_db()
        self.assertEqual(self.league.admin_id, self.admin.id)
        self.assertTrue(LeagueMember.objects.filter(league=self.league, user=self.admin).exists())
        self.assertTrue(Portfolio.objects.filter(league=self.league, user=self.admin).exists())
        self.assertEqual(self.league.members.count(), 2)

    def test_sole_admin_leaving_deletes_league_and_its_history(self):
        gateway = QuoteGateway(MockQuoteProvider({"AAPL": "10"}))
        buy_stock(user_id=self.admin.id, league_id=self.league.id, symbol="AAPL", quantity=3, gateway=gateway)
        code = self.league.invitation_code

        result = leave_league(user_id=self.admin.id, league_id=self.league.id)
        self.assertEqual(result.outcome, LeaveOutcome.LEAGUE_DELETED)
        self.assertTrue(result.league_deleted)
        self.assertFalse(League.objects.filter(pk=self.league.id).exists())
        self.assertFalse(Portfolio.objects.filter(league_id=self.league.id).exists())
        self.assertFalse(Holding.objects.exists())
        self.assertFalse(Transaction.objects.exists())

        with self.assertRaises(InvalidCode):
            join_league_by_code(user_id=self.alice.id, code=code)

    def test_last_non_admin_member_leaving_deletes_league(self):
        join_league(user_id=self.alice.id, league_id=self.league.id)
        # Admin hands over to alice, who is then the only member.
        leave_league(user_id=self.admin.id, league_id=self.league.id)
        result = leave_league(user_id=self.alice.id, league_id=self.league.id)
        self.assertEqual(result.outcome, LeaveOutcome.LEAGUE_DELETED)

    def test_non_member_cannot_leave(self):
        with self.assertRaises(NotAMember):
            leave_league(user_id=self.bob.id, league_id=self.league.id)

    def test_only_admin_can_update(self):
        join_league(user_id=self.alice.id, league_id=self.league.id)
        with self.assertRaises(NotLeagueAdmin):
            update_league(user_id=self.alice.id, league_id=self.league.id, name="Mine now")

        league = update_league(user_id=self.admin.id, league_id=self.league.id, description="Weekly")
        self.assertEqual(league.name, "Friday Traders")
        self.assertEqual(league.description, "Weekly")

    def test_budget_change_does_not_touch_open_portfolios(self):
        update_league(user_id=self.admin.id, league_id=self.league.id, virtual_budget="75000")
        portfolio = Portfolio.objects.get(user=self.admin, league=self.league)
        self.assertEqual(portfolio.cash_balance, Decimal("50000.00"))
        membership = join_league(user_id=self.bob.id, league_id=self.league.id)
        self.assertEqual(membership.portfolio.cash_balance, Decimal("75000.00"))

    def test_list_leagues_for_user_counts_members(self):
        join_league(user_id=self.alice.id, league_id=self.league.id)
        rows = list_leagues_for_user(user_id=self.alice.id)
        self.assertEqual([league.id for league in rows], [self.league.id])
        self.assertEqual(rows[0].member_count, 2)
        self.assertEqual(list_leagues_for_user(user_id=self.bob.id), [])

    @patch("leagues.services.generate_invitation_code")
    def test_code_collision_is_retried(self, mock_code):
        mock_code.side_effect = [self.league.invitation_code, "FRESH001"]
        league = create_league(user_id=self.alice.id, name="Second")
        self.assertEqual(league.invitation_code, "FRESH001")


class LeagueApiTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.admin = User.objects.create_user(username="admin", password="pw")
        self.alice = User.objects.create_user(username="alice", password="pw")
        self.client = Client()
        self.client.login(username="admin", password="pw")

    def _send(self, method, url, payload=None):
        return getattr(self.client, method)(url, data=json.dumps(payload or {}), content_type="application/json")

    def test_create_and_list(self):
        resp = self._send("post", reverse("leagues:leagues"), {"name": "Desk", "virtualBudget": 25000})
        self.assertEqual(resp.status_code, 201)
        league = resp.json()["league"]
        self.assertEqual(league["virtualBudget"], "25000.00")
        self.assertEqual(league["memberCount"], 1)

        resp = self.client.get(reverse("leagues:leagues"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([row["name"] for row in resp.json()["leagues"]], ["Desk"])

    def test_create_requires_name(self):
        resp = self._send("post", reverse("leagues:leagues"), {"name": ""})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("name", resp.json()["fields"])

    def test_join_leave_flow(self):
        league = create_league(user_id=self.admin.id, name="Desk")
        self.client.logout()
        self.client.login(username="alice", password="pw")

        resp = self._send("post", reverse("leagues:join"), {"invitationCode": league.invitation_code.lower()})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["league"]["memberCount"], 2)

        resp = self._send("post", reverse("leagues:join"), {"invitationCode": league.invitation_code})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["reason"], "ALREADY_MEMBER")

        resp = self._send("post", reverse("leagues:leave", args=[league.id]))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["outcome"], "LEFT")

    def test_join_with_unknown_code_is_404(self):
        resp = self._send("post", reverse("leagues:join"), {"invitationCode": "NOPE1234"})
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["reason"], "INVALID_CODE")

    def test_detail_is_members_only(self):
        league = create_league(user_id=self.admin.id, name="Desk")
        resp = self.client.get(reverse("leagues:detail", args=[league.id]))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["league"]["members"][0]["userId"], self.admin.id)

        self.client.logout()
        self.client.login(username="alice", password="pw")
        resp = self.client.get(reverse("leagues:detail", args=[league.id]))
        self.assertEqual(resp.status_code, 403)

    def test_patch_by_non_admin_is_403(self):
        league = create_league(user_id=self.admin.id, name="Desk")
        join_league(user_id=self.alice.id, league_id=league.id)
        self.client.logout()
        self.client.login(username="alice", password="pw")
        resp = self._send("patch", reverse("leagues:detail", args=[league.id]), {"name": "Taken"})
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["reason"], "NOT_LEAGUE_ADMIN")

    def test_patch_partial_update(self):
        league = create_league(user_id=self.admin.id, name="Desk", description="old")
        resp = self._send("patch", reverse("leagues:detail", args=[league.id]), {"description": "new"})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()["league"]
        self.assertEqual(body["name"], "Desk")
        self.assertEqual(body["description"], "new")

    def test_sole_member_leave_reports_deletion(self):
        league = create_league(user_id=self.admin.id, name="Desk")
        resp = self._send("post", reverse("leagues:leave", args=[league.id]))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["outcome"], "LEAGUE_DELETED")

        resp = self.client.get(reverse("leagues:detail", args=[league.id]))
        self.assertEqual(resp.status_code, 404)
