"""
Pure portfolio state transitions.

Nothing in this module touches the database or the quote provider: each function takes
the current cash balance and holding for one symbol and returns the state after the
trade, plus the transaction entry that records it. `portfolios.services` is responsible
for loading that state under a row lock and persisting the outcome atomically.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from investorsarena.errors import InsufficientFunds, InsufficientShares, InvalidRequest, NoSuchHolding

from .models import TransactionType

MONEY_QUANT = Decimal("0.01")
PRICE_QUANT = Decimal("0.000001")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def quantize_price(value: Decimal) -> Decimal:
    return value.quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class HoldingState:
    symbol: str
    quantity: int
    average_price: Decimal


@dataclass(frozen=True)
class LedgerEntry:
    symbol: str
    transaction_type: str
    quantity: int
    price: Decimal
    total_amount: Decimal
    realized_gain: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class LedgerOutcome:
    cash_balance: Decimal
    # None when the trade closed the position.
    holding: HoldingState | None
    entry: LedgerEntry


@dataclass
class ReplayedPortfolio:
    cash_balance: Decimal
    holdings: dict[str, HoldingState] = field(default_factory=dict)


def _validate_order(quantity: int, price: Decimal) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidRequest("Quantity must be a positive whole number of shares.")
    if price is None or Decimal(price) <= 0:
        raise InvalidRequest("Price must be greater than 0.")


def apply_buy(
    *,
    cash_balance: Decimal,
    holding: HoldingState | None,
    symbol: str,
    quantity: int,
    price: Decimal,
) -> LedgerOutcome:
    """
    Buy `quantity` shares at `price`.

    The funds check compares cash against the amount debited: the cost rounded half-up
    to the cent, not the exact price * quantity.
    """
    _validate_order(quantity, price)
    price = quantize_price(Decimal(price))
    total_cost = quantize_money(price * Decimal(quantity))
    cash_balance = Decimal(cash_balance)

    if cash_balance < total_cost:
        raise InsufficientFunds(
            meta={
                "symbol": symbol,
                "requested": str(total_cost),
                "available": str(quantize_money(cash_balance)),
                "over": str(quantize_money(total_cost - cash_balance)),
            }
        )

    if holding is not None:
        old_qty = holding.quantity
        new_qty = old_qty + quantity
        old_cost = Decimal(holding.average_price) * Decimal(old_qty)
        new_avg = quantize_price((old_cost + price * Decimal(quantity)) / Decimal(new_qty))
        new_holding = HoldingState(symbol=symbol, quantity=new_qty, average_price=new_avg)
    else:
        new_holding = HoldingState(symbol=symbol, quantity=quantity, average_price=price)

    return LedgerOutcome(
        cash_balance=cash_balance - total_cost,
        holding=new_holding,
        entry=LedgerEntry(
            symbol=symbol,
            transaction_type=TransactionType.BUY,
            quantity=quantity,
            price=price,
            total_amount=total_cost,
        ),
    )


def apply_sell(
    *,
    cash_balance: Decimal,
    holding: HoldingState | None,
    symbol: str,
    quantity: int,
    price: Decimal,
) -> LedgerOutcome:
    _validate_order(quantity, price)
    if holding is None or holding.quantity <= 0:
        raise NoSuchHolding(meta={"symbol": symbol})
    if holding.quantity < quantity:
        raise InsufficientShares(
            meta={
                "symbol": symbol,
                "available_shares": int(holding.quantity),
                "requested_shares": int(quantity),
            }
        )

    price = quantize_price(Decimal(price))
    total_revenue = quantize_money(price * Decimal(quantity))
    realized = quantize_money((price - Decimal(holding.average_price)) * Decimal(quantity))

    remaining = holding.quantity - quantity
    # Cost basis of the remaining shares is left as-is; only the quantity shrinks.
    new_holding = (
        HoldingState(symbol=symbol, quantity=remaining, average_price=holding.average_price)
        if remaining
        else None
    )

    return LedgerOutcome(
        cash_balance=Decimal(cash_balance) + total_revenue,
        holding=new_holding,
        entry=LedgerEntry(
            symbol=symbol,
            transaction_type=TransactionType.SELL,
            quantity=quantity,
            price=price,
            total_amount=total_revenue,
            realized_gain=realized,
        ),
    )


def apply_trade(
    *,
    transaction_type: str,
    cash_balance: Decimal,
    holding: HoldingState | None,
    symbol: str,
    quantity: int,
    price: Decimal,
) -> LedgerOutcome:
    if transaction_type == TransactionType.BUY:
        return apply_buy(cash_balance=cash_balance, holding=holding, symbol=symbol, quantity=quantity, price=price)
    if transaction_type == TransactionType.SELL:
        return apply_sell(cash_balance=cash_balance, holding=holding, symbol=symbol, quantity=quantity, price=price)
    raise InvalidRequest("Transaction type must be BUY or SELL.")


def replay(*, starting_cash: Decimal, entries: Iterable) -> ReplayedPortfolio:
    """
    Rebuild cash and holdings from the starting budget and the transaction history,
    oldest first. Entries only need `symbol`, `transaction_type`, `quantity` and `price`.
    """
    state = ReplayedPortfolio(cash_balance=Decimal(starting_cash))
    for entry in entries:
        outcome = apply_trade(
            transaction_type=entry.transaction_type,
            cash_balance=state.cash_balance,
            holding=state.holdings.get(entry.symbol),
            symbol=entry.symbol,
            quantity=int(entry.quantity),
            price=Decimal(entry.price),
        )
        state.cash_balance = outcome.cash_balance
        if outcome.holding is None:
            state.holdings.pop(entry.symbol, None)
        else:
            state.holdings[entry.symbol] = outcome.holding
    return state
