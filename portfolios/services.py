from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings
from django.utils import timezone

from investorsarena.errors import InvalidRequest, NotAMember, QuoteUnavailableError
from investorsarena.store import Store, get_store
from marketdata.services import QuoteGateway, QuoteUnavailable, get_quote_gateway, normalize_symbol

from .ledger import HoldingState, LedgerOutcome, apply_trade
from .models import Holding, Portfolio, Transaction, TransactionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TradeResult:
    ok: bool
    portfolio: Portfolio
    transaction: Transaction
    holding: Holding | None
    message: str


def open_portfolio(*, membership, league) -> Portfolio:
    """Create the portfolio that belongs to a new membership. Call inside the membership's transaction."""
    return Portfolio.objects.create(
        membership=membership,
        league=league,
        user_id=membership.user_id,
        starting_cash=league.virtual_budget,
        cash_balance=league.virtual_budget,
        total_value=league.virtual_budget,
    )


def get_portfolio(*, user_id: int, league_id: int) -> Portfolio:
    portfolio = (
        Portfolio.objects.filter(user_id=user_id, league_id=league_id).select_related("league").first()
    )
    if portfolio is None:
        raise NotAMember()
    return portfolio


def _validate_trade_request(*, symbol: str, quantity, transaction_type: str) -> tuple[str, int]:
    if transaction_type not in {TransactionType.BUY, TransactionType.SELL}:
        raise InvalidRequest("Transaction type must be BUY or SELL.")
    try:
        sym = normalize_symbol(symbol)
    except ValueError as e:
        raise InvalidRequest(str(e), meta={"symbol": (symbol or "").strip().upper()})
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidRequest("Quantity must be greater than 0.")
    return sym, quantity


def _persist_outcome(
    *, portfolio: Portfolio, holding: Holding | None, outcome: LedgerOutcome
) -> tuple[Transaction, Holding | None]:
    entry = outcome.entry

    portfolio.cash_balance = outcome.cash_balance
    portfolio.save(update_fields=["cash_balance", "updated_at"])

    if outcome.holding is None:
        if holding is not None:
            holding.delete()
        holding = None
    elif holding is None:
        holding = Holding.objects.create(
            portfolio=portfolio,
            symbol=outcome.holding.symbol,
            quantity=outcome.holding.quantity,
            average_price=outcome.holding.average_price,
        )
    else:
        holding.quantity = outcome.holding.quantity
        holding.average_price = outcome.holding.average_price
        holding.save(update_fields=["quantity", "average_price", "updated_at"])

    txn = Transaction.objects.create(
        portfolio=portfolio,
        user_id=portfolio.user_id,
        league_id=portfolio.league_id,
        symbol=entry.symbol,
        transaction_type=entry.transaction_type,
        quantity=entry.quantity,
        price=entry.price,
        total_amount=entry.total_amount,
        realized_gain=entry.realized_gain,
        timestamp=timezone.now(),
    )
    return txn, holding


def execute_trade(
    *,
    user_id: int,
    league_id: int,
    symbol: str,
    quantity: int,
    transaction_type: str,
    gateway: QuoteGateway | None = None,
    store: Store | None = None,
) -> TradeResult:
    """
    Execute a market BUY or SELL for the caller's portfolio in a league at a freshly fetched quote.

    The quote is fetched before the write section begins; if it cannot be obtained the trade
    fails outright. Cash, holding and the transaction record are then written in one atomic
    block with the portfolio row locked, so concurrent trades on the same portfolio serialize.
    """
    sym, quantity = _validate_trade_request(symbol=symbol, quantity=quantity, transaction_type=transaction_type)
    store = get_store(store)

    # Fail fast for non-members before spending a provider call.
    get_portfolio(user_id=user_id, league_id=league_id)

    gateway = gateway or get_quote_gateway()
    quote = gateway.fetch_quote(sym)
    if isinstance(quote, QuoteUnavailable):
        logger.info("Rejected %s %s x%s for user %s: quote unavailable (%s)", transaction_type, sym, quantity, user_id, quote.reason)
        raise QuoteUnavailableError(
            f"Could not get a quote for {quote.symbol}. Please try again.",
            meta={"symbol": quote.symbol, "quote_failure": quote.reason},
        )

    with store.atomic():
        portfolio = (
            Portfolio.objects.select_for_update()
            .filter(user_id=user_id, league_id=league_id)
            .first()
        )
        if portfolio is None:
            raise NotAMember()

        holding = Holding.objects.select_for_update().filter(portfolio=portfolio, symbol=sym).first()
        current = (
            HoldingState(symbol=sym, quantity=holding.quantity, average_price=holding.average_price)
            if holding is not None
            else None
        )

        outcome = apply_trade(
            transaction_type=transaction_type,
            cash_balance=portfolio.cash_balance,
            holding=current,
            symbol=sym,
            quantity=quantity,
            price=quote.price,
        )
        txn, holding = _persist_outcome(portfolio=portfolio, holding=holding, outcome=outcome)

    logger.info(
        "Filled %s %s x%s @ %s for user %s in league %s (cash now %s)",
        transaction_type,
        sym,
        quantity,
        txn.price,
        user_id,
        league_id,
        portfolio.cash_balance,
    )
    verb = "purchased" if transaction_type == TransactionType.BUY else "sold"
    return TradeResult(
        ok=True,
        portfolio=portfolio,
        transaction=txn,
        holding=holding,
        message=f"Stock {verb} successfully: {transaction_type} {quantity} {sym} @ {txn.price:.2f}.",
    )


def buy_stock(*, user_id: int, league_id: int, symbol: str, quantity: int, **kwargs) -> TradeResult:
    return execute_trade(
        user_id=user_id,
        league_id=league_id,
        symbol=symbol,
        quantity=quantity,
        transaction_type=TransactionType.BUY,
        **kwargs,
    )


def sell_stock(*, user_id: int, league_id: int, symbol: str, quantity: int, **kwargs) -> TradeResult:
    return execute_trade(
        user_id=user_id,
        league_id=league_id,
        symbol=symbol,
        quantity=quantity,
        transaction_type=TransactionType.SELL,
        **kwargs,
    )


def list_transactions(*, user_id: int, league_id: int, limit: int | None = None) -> list[Transaction]:
    default_limit = getattr(settings, "TRANSACTION_HISTORY_DEFAULT_LIMIT", 50)
    max_limit = getattr(settings, "TRANSACTION_HISTORY_MAX_LIMIT", 200)
    limit = default_limit if limit is None else max(1, min(int(limit), max_limit))

    portfolio = get_portfolio(user_id=user_id, league_id=league_id)
    return list(portfolio.transactions.order_by("-timestamp", "-id")[:limit])


def serialize_transaction(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "symbol": txn.symbol,
        "type": txn.transaction_type,
        "quantity": txn.quantity,
        "price": txn.price,
        "totalAmount": txn.total_amount,
        "realizedGain": txn.realized_gain,
        "timestamp": txn.timestamp,
    }


def serialize_holding(holding: Holding) -> dict:
    return {
        "symbol": holding.symbol,
        "quantity": holding.quantity,
        "averagePrice": holding.average_price,
    }


def serialize_portfolio(portfolio: Portfolio) -> dict:
    return {
        "id": portfolio.id,
        "leagueId": portfolio.league_id,
        "userId": portfolio.user_id,
        "startingCash": portfolio.starting_cash,
        "cashBalance": portfolio.cash_balance,
        "totalValue": portfolio.total_value,
        "holdings": [serialize_holding(h) for h in portfolio.holdings.order_by("symbol")],
    }
