from django.http import JsonResponse

from investorsarena.api import json_api, read_json_body, require_valid

from .forms import JoinLeagueForm, LeagueCreateForm, LeagueUpdateForm
from .services import (
    create_league,
    get_league_for_member,
    join_league_by_code,
    leave_league,
    list_leagues_for_user,
    serialize_league,
    update_league,
)


@json_api(methods=("GET", "POST"))
def leagues(request):
    if request.method == "GET":
        rows = list_leagues_for_user(user_id=request.user.id)
        return JsonResponse({"ok": True, "leagues": [serialize_league(league) for league in rows]})

    data = require_valid(LeagueCreateForm.from_payload(read_json_body(request)))
    league = create_league(
        user_id=request.user.id,
        name=data["name"],
        description=data.get("description") or "",
        virtual_budget=data.get("virtual_budget"),
    )
    return JsonResponse(
        {"ok": True, "message": "League created successfully.", "league": serialize_league(league, include_members=True)},
        status=201,
    )


@json_api(methods=("POST",))
def join(request):
    payload = read_json_body(request)
    form = JoinLeagueForm(data={"invitation_code": payload.get("invitationCode", payload.get("code", ""))})
    data = require_valid(form)
    membership = join_league_by_code(user_id=request.user.id, code=data["invitation_code"])
    league = get_league_for_member(user_id=request.user.id, league_id=membership.league_id)
    return JsonResponse(
        {"ok": True, "message": "Successfully joined the league.", "league": serialize_league(league, include_members=True)},
        status=201,
    )


@json_api(methods=("POST",))
def leave(request, league_id: int):
    result = leave_league(user_id=request.user.id, league_id=league_id)
    return JsonResponse(
        {
            "ok": True,
            "outcome": result.outcome,
            "leagueId": result.league_id,
            "message": result.message,
            "newAdminId": result.new_admin_id,
        }
    )


@json_api(methods=("GET", "PUT", "PATCH"))
def league_detail(request, league_id: int):
    if request.method == "GET":
        league = get_league_for_member(user_id=request.user.id, league_id=league_id)
        return JsonResponse({"ok": True, "league": serialize_league(league, include_members=True)})

    changes = require_valid(LeagueUpdateForm.from_payload(read_json_body(request)))
    league = update_league(user_id=request.user.id, league_id=league_id, **changes)
    return JsonResponse(
        {"ok": True, "message": "League updated successfully.", "league": serialize_league(league, include_members=True)}
    )
