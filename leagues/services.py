from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db.models import Count

from investorsarena.errors import (
    AlreadyMember,
    InvalidCode,
    InvalidRequest,
    LeagueNotFound,
    NotAMember,
    NotLeagueAdmin,
    StoreTransactionFailure,
)
from investorsarena.store import Store, get_store
from portfolios.models import Portfolio
from portfolios.services import open_portfolio

from .models import League, LeagueMember

logger = logging.getLogger(__name__)

INVITATION_CODE_ATTEMPTS = 5


class LeaveOutcome:
    LEFT = "LEFT"
    LEAGUE_DELETED = "LEAGUE_DELETED"


@dataclass(frozen=True)
class LeaveResult:
    outcome: str
    league_id: int
    message: str
    new_admin_id: int | None = None

    @property
    def league_deleted(self) -> bool:
        return self.outcome == LeaveOutcome.LEAGUE_DELETED


def normalize_invitation_code(raw: str) -> str:
    return (raw or "").strip().upper()


def generate_invitation_code() -> str:
    length = getattr(settings, "INVITATION_CODE_LENGTH", 8)
    return uuid.uuid4().hex[:length].upper()


def _parse_budget(raw) -> Decimal:
    if raw is None or raw == "":
        return Decimal(getattr(settings, "DEFAULT_VIRTUAL_BUDGET", Decimal("100000.00")))
    try:
        budget = Decimal(str(raw))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidRequest("Virtual budget must be a number.")
    if not budget.is_finite() or budget <= 0:
        raise InvalidRequest("Virtual budget must be greater than 0.")
    return budget.quantize(Decimal("0.01"))


def _join(*, league: League, user_id: int) -> LeagueMember:
    membership = LeagueMember.objects.create(league=league, user_id=user_id)
    open_portfolio(membership=membership, league=league)
    return membership


def create_league(
    *,
    user_id: int,
    name: str,
    description: str = "",
    virtual_budget=None,
    store: Store | None = None,
) -> League:
    """
    Create a league owned by `user_id`, who also becomes its first member with a funded portfolio.
    League, membership and portfolio are created in one transaction.
    """
    name = (name or "").strip()
    if not name:
        raise InvalidRequest("League name is required.")
    budget = _parse_budget(virtual_budget)
    store = get_store(store)

    for attempt in range(1, INVITATION_CODE_ATTEMPTS + 1):
        code = generate_invitation_code()
        if League.objects.filter(invitation_code__iexact=code).exists():
            continue
        try:
            with store.atomic():
                league = League.objects.create(
                    name=name,
                    description=(description or "").strip(),
                    invitation_code=code,
                    virtual_budget=budget,
                    admin_id=user_id,
                )
                _join(league=league, user_id=user_id)
        except StoreTransactionFailure:
            # A concurrent league may have claimed the same code between the check and the insert.
            if attempt == INVITATION_CODE_ATTEMPTS:
                raise
            continue
        logger.info("League %s created by user %s (code %s, budget %s)", league.id, user_id, code, budget)
        return league

    raise StoreTransactionFailure("Could not allocate an invitation code. Please try again.")


def join_league(*, user_id: int, league_id: int, store: Store | None = None) -> LeagueMember:
    store = get_store(store)
    with store.atomic():
        league = League.objects.select_for_update().filter(pk=league_id).first()
        if league is None:
            raise LeagueNotFound()
        if LeagueMember.objects.filter(league=league, user_id=user_id).exists():
            raise AlreadyMember(meta={"league_id": league.id})
        membership = _join(league=league, user_id=user_id)

    logger.info("User %s joined league %s", user_id, league.id)
    return membership


def find_league_by_code(code: str) -> League:
    code = normalize_invitation_code(code)
    if not code:
        raise InvalidRequest("Invitation code is required.")
    league = League.objects.filter(invitation_code__iexact=code).first()
    if league is None:
        raise InvalidCode()
    return league


def join_league_by_code(*, user_id: int, code: str, store: Store | None = None) -> LeagueMember:
    league = find_league_by_code(code)
    return join_league(user_id=user_id, league_id=league.id, store=store)


def leave_league(*, user_id: int, league_id: int, store: Store | None = None) -> LeaveResult:
    """
    Remove `user_id` from a league in a single transaction.

    - An admin leaving a league with other members hands ownership to the earliest
      remaining member, then leaves.
    - A departure that would leave the league without members deletes the league,
      cascading to every membership, portfolio, holding and transaction in it.
    - Otherwise the member's portfolio and membership are removed.
    """
    store = get_store(store)
    new_admin_id = None

    with store.atomic():
        league = League.objects.select_for_update().filter(pk=league_id).first()
        if league is None:
            raise LeagueNotFound()

        members = list(LeagueMember.objects.filter(league=league).order_by("joined_at", "id"))
        membership = next((m for m in members if m.user_id == user_id), None)
        if membership is None:
            raise NotAMember()

        is_admin = league.admin_id == user_id
        others = [m for m in members if m.user_id != user_id]

        if not others:
            league.delete()
            logger.info("League %s deleted: last member %s left", league_id, user_id)
            return LeaveResult(
                outcome=LeaveOutcome.LEAGUE_DELETED,
                league_id=league_id,
                message="League deleted successfully (you were the only member).",
            )

        if is_admin:
            successor = others[0]
            league.admin_id = successor.user_id
            league.save(update_fields=["admin", "updated_at"])
            new_admin_id = successor.user_id

        Portfolio.objects.filter(membership=membership).delete()
        membership.delete()

    if new_admin_id is not None:
        logger.info("League %s admin reassigned from %s to %s", league_id, user_id, new_admin_id)
    logger.info("User %s left league %s", user_id, league_id)
    return LeaveResult(
        outcome=LeaveOutcome.LEFT,
        league_id=league_id,
        message="Successfully left the league.",
        new_admin_id=new_admin_id,
    )


def get_league_for_member(*, user_id: int, league_id: int) -> League:
    league = League.objects.select_related("admin").filter(pk=league_id).first()
    if league is None:
        raise LeagueNotFound()
    if not LeagueMember.objects.filter(league=league, user_id=user_id).exists():
        raise NotAMember()
    return league


def update_league(
    *,
    user_id: int,
    league_id: int,
    name: str | None = None,
    description: str | None = None,
    virtual_budget=None,
    store: Store | None = None,
) -> League:
    store = get_store(store)
    with store.atomic():
        league = League.objects.select_for_update().filter(pk=league_id).first()
        if league is None:
            raise LeagueNotFound()
        if league.admin_id != user_id:
            raise NotLeagueAdmin("Only the admin can update the league.")

        update_fields = ["updated_at"]
        if name is not None:
            name = name.strip()
            if not name:
                raise InvalidRequest("League name cannot be empty.")
            league.name = name
            update_fields.append("name")
        if description is not None:
            league.description = description.strip()
            update_fields.append("description")
        if virtual_budget is not None:
            league.virtual_budget = _parse_budget(virtual_budget)
            update_fields.append("virtual_budget")
        league.save(update_fields=update_fields)

    logger.info("League %s updated by admin %s (%s)", league_id, user_id, ", ".join(update_fields[1:]) or "no changes")
    return league


def list_leagues_for_user(*, user_id: int) -> list[League]:
    return list(
        # Subquery keeps member_count unfiltered.
        League.objects.filter(id__in=LeagueMember.objects.filter(user_id=user_id).values("league_id"))
        .select_related("admin")
        .annotate(member_count=Count("members", distinct=True))
        .order_by("-created_at", "-id")
    )


def _user_dict(user) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "email": user.email,
    }


def serialize_league(league: League, *, include_members: bool = False) -> dict:
    data = {
        "id": league.id,
        "name": league.name,
        "description": league.description,
        "invitationCode": league.invitation_code,
        "virtualBudget": league.virtual_budget,
        "adminId": league.admin_id,
        "admin": _user_dict(league.admin),
        "createdAt": league.created_at,
    }
    member_count = getattr(league, "member_count", None)
    if include_members:
        members = list(league.members.select_related("user").order_by("joined_at", "id"))
        data["members"] = [
            {"userId": m.user_id, "joinedAt": m.joined_at, "user": _user_dict(m.user)} for m in members
        ]
        member_count = len(members)
    if member_count is None:
        member_count = league.members.count()
    data["memberCount"] = member_count
    return data
