from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from investorsarena.errors import LeagueNotFound, NotAMember
from investorsarena.store import Store
from leagues.models import League, LeagueMember
from marketdata.services import QuoteGateway, get_quote_gateway
from portfolios.models import Portfolio
from portfolios.valuation import QuoteMemo, value_portfolio

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaderboardRow:
    rank: int
    user_id: int
    display_name: str
    total_value: Decimal
    cash_balance: Decimal
    gain_loss: Decimal
    gain_loss_percent: Decimal

    def as_dict(self) -> dict:
        return {
            "rank": self.rank,
            "userId": self.user_id,
            "displayName": self.display_name,
            "totalValue": self.total_value,
            "cashBalance": self.cash_balance,
            "gainLoss": self.gain_loss,
            "gainLossPercent": self.gain_loss_percent,
        }


def display_name(user) -> str:
    full = f"{user.first_name} {user.last_name}".strip()
    return full or user.username


def rank_league(
    league_id: int,
    *,
    gateway: QuoteGateway | None = None,
    quotes: QuoteMemo | None = None,
    persist: bool = True,
    store: Store | None = None,
) -> list[LeaderboardRow]:
    """
    Value every portfolio in a league and rank them by total value, highest first.

    Each symbol is quoted at most once per call. Portfolios with equal totals keep
    membership order (earliest joiner first).
    """
    league = League.objects.filter(pk=league_id).first()
    if league is None:
        raise LeagueNotFound()

    if quotes is None:
        quotes = QuoteMemo(gateway or get_quote_gateway())

    portfolios = list(
        Portfolio.objects.filter(league=league)
        .select_related("user", "membership")
        .order_by("membership__joined_at", "membership_id")
    )
    valued = []
    for portfolio in portfolios:
        # Reuse the already-loaded league so each valuation doesn't refetch it.
        portfolio.league = league
        valued.append((portfolio, value_portfolio(portfolio, quotes=quotes, persist=persist, store=store)))

    # sorted() is stable, so ties stay in membership order.
    valued.sort(key=lambda pair: pair[1].total_value, reverse=True)

    rows = [
        LeaderboardRow(
            rank=idx,
            user_id=portfolio.user_id,
            display_name=display_name(portfolio.user),
            total_value=valuation.total_value,
            cash_balance=valuation.cash_balance,
            gain_loss=valuation.gain_loss,
            gain_loss_percent=valuation.gain_loss_percent,
        )
        for idx, (portfolio, valuation) in enumerate(valued, start=1)
    ]
    logger.debug("Ranked %s portfolio(s) in league %s", len(rows), league_id)
    return rows


def leaderboard_for_member(*, user_id: int, league_id: int, gateway: QuoteGateway | None = None) -> list[LeaderboardRow]:
    if not League.objects.filter(pk=league_id).exists():
        raise LeagueNotFound()
    if not LeagueMember.objects.filter(league_id=league_id, user_id=user_id).exists():
        raise NotAMember()
    return rank_league(league_id, gateway=gateway)
