from dataclasses import asdict

from django.http import JsonResponse

from investorsarena.api import json_api
from investorsarena.errors import InvalidRequest, QuoteUnavailableError

from .services import QuoteUnavailable, get_quote_gateway


@json_api
def quote(request, symbol: str):
    result = get_quote_gateway().fetch_quote(symbol)
    if isinstance(result, QuoteUnavailable):
        if result.reason == "INVALID_SYMBOL":
            raise InvalidRequest("Invalid symbol format.", meta={"symbol": result.symbol})
        if result.reason == "NOT_FOUND":
            return JsonResponse(
                {
                    "ok": False,
                    "error": f"Stock not found: {result.symbol}. Please check the symbol and try again.",
                    "reason": "NOT_FOUND",
                    "symbol": result.symbol,
                },
                status=404,
            )
        raise QuoteUnavailableError(
            f"Failed to fetch stock data for {result.symbol}.",
            meta={"symbol": result.symbol, "quote_failure": result.reason},
        )
    return JsonResponse({"ok": True, "quote": result.as_dict()})


@json_api
def search(request):
    query = (request.GET.get("q") or "").strip()
    matches = get_quote_gateway().search(query)
    return JsonResponse({"ok": True, "query": query, "results": [asdict(m) for m in matches]})
