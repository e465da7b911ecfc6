from django.http import JsonResponse

from investorsarena.api import json_api, read_json_body, require_valid

from .forms import TradeRequestForm, TransactionHistoryForm
from .models import TransactionType
from .services import execute_trade, get_portfolio, list_transactions, serialize_portfolio, serialize_transaction
from .valuation import value_portfolio


@json_api
def portfolio_for_league(request, league_id: int):
    portfolio = get_portfolio(user_id=request.user.id, league_id=league_id)
    valuation = value_portfolio(portfolio)
    return JsonResponse({"ok": True, "portfolio": valuation.as_dict()})


def _trade(request, transaction_type: str):
    data = require_valid(TradeRequestForm.from_payload(read_json_body(request)))
    result = execute_trade(
        user_id=request.user.id,
        league_id=data["league_id"],
        symbol=data["symbol"],
        quantity=data["quantity"],
        transaction_type=transaction_type,
    )
    return JsonResponse(
        {
            "ok": True,
            "message": result.message,
            "transaction": serialize_transaction(result.transaction),
            "portfolio": serialize_portfolio(result.portfolio),
        },
        status=201,
    )


@json_api(methods=("POST",))
def buy(request):
    return _trade(request, TransactionType.BUY)


@json_api(methods=("POST",))
def sell(request):
    return _trade(request, TransactionType.SELL)


@json_api
def transactions(request, league_id: int):
    data = require_valid(TransactionHistoryForm(data=request.GET))
    rows = list_transactions(user_id=request.user.id, league_id=league_id, limit=data.get("limit"))
    return JsonResponse({"ok": True, "transactions": [serialize_transaction(t) for t in rows]})
