from __future__ import annotations

from django.http import JsonResponse

from investorsarena.api import json_api

from .services import leaderboard_for_member


@json_api
def leaderboard(request, league_id: int):
    rows = leaderboard_for_member(user_id=request.user.id, league_id=league_id)
    user_rank = next((row.rank for row in rows if row.user_id == request.user.id), None)
    return JsonResponse(
        {
            "ok": True,
            "leagueId": league_id,
            "userRank": user_rank,
            "leaderboard": [row.as_dict() for row in rows],
        }
    )
