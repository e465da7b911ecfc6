from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from investorsarena.errors import StoreTransactionFailure
from investorsarena.store import Store, get_store
from marketdata.services import QuoteGateway, QuoteResult, QuoteUnavailable, get_quote_gateway

from .ledger import quantize_money
from .models import Holding, Portfolio

logger = logging.getLogger(__name__)

PERCENT_QUANT = Decimal("0.0001")


@dataclass(frozen=True)
class HoldingValuation:
    symbol: str
    quantity: int
    average_price: Decimal
    current_price: Decimal
    current_value: Decimal
    gain_loss: Decimal
    gain_loss_percent: Decimal
    # False when the quote failed and the cost basis stood in for the market price.
    priced: bool

    def as_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "quantity": self.quantity,
            "averagePrice": self.average_price,
            "currentPrice": self.current_price,
            "currentValue": self.current_value,
            "gainLoss": self.gain_loss,
            "gainLossPercent": self.gain_loss_percent,
            "priced": self.priced,
        }


@dataclass(frozen=True)
class PortfolioValuation:
    portfolio_id: int
    user_id: int
    league_id: int
    cash_balance: Decimal
    holdings_value: Decimal
    total_value: Decimal
    gain_loss: Decimal
    gain_loss_percent: Decimal
    holdings: list[HoldingValuation]

    def as_dict(self) -> dict:
        return {
            "id": self.portfolio_id,
            "userId": self.user_id,
            "leagueId": self.league_id,
            "cashBalance": self.cash_balance,
            "holdingsValue": self.holdings_value,
            "totalValue": self.total_value,
            "totalGainLoss": self.gain_loss,
            "totalGainLossPercent": self.gain_loss_percent,
            "holdings": [h.as_dict() for h in self.holdings],
        }


class QuoteMemo:
    """Fetch each symbol at most once; shared across the portfolios of one leaderboard."""

    def __init__(self, gateway: QuoteGateway):
        self.gateway = gateway
        self._quotes: dict[str, QuoteResult] = {}

    def get(self, symbol: str) -> QuoteResult:
        if symbol not in self._quotes:
            self._quotes[symbol] = self.gateway.fetch_quote(symbol)
        return self._quotes[symbol]


def _percent(numerator: Decimal, denominator: Decimal) -> Decimal:
    if not denominator:
        return Decimal("0")
    return (numerator / denominator * Decimal("100")).quantize(PERCENT_QUANT)


def value_holding(holding: Holding, quote: QuoteResult) -> HoldingValuation:
    qty = Decimal(holding.quantity)
    avg = Decimal(holding.average_price)
    if isinstance(quote, QuoteUnavailable):
        cost_value = quantize_money(avg * qty)
        return HoldingValuation(
            symbol=holding.symbol,
            quantity=holding.quantity,
            average_price=avg,
            current_price=avg,
            current_value=cost_value,
            gain_loss=Decimal("0.00"),
            gain_loss_percent=Decimal("0"),
            priced=False,
        )

    current_value = quantize_money(quote.price * qty)
    return HoldingValuation(
        symbol=holding.symbol,
        quantity=holding.quantity,
        average_price=avg,
        current_price=quote.price,
        current_value=current_value,
        gain_loss=current_value - quantize_money(avg * qty),
        gain_loss_percent=_percent(quote.price - avg, avg),
        priced=True,
    )


def value_portfolio(
    portfolio: Portfolio,
    *,
    gateway: QuoteGateway | None = None,
    quotes: QuoteMemo | None = None,
    persist: bool = True,
    store: Store | None = None,
) -> PortfolioValuation:
    """
    Value a portfolio at current quotes.

    A holding whose quote cannot be fetched contributes its cost basis. Portfolio-level
    gain/loss is measured against the league's virtual budget, so it includes cash.
    With `persist`, the computed total is written back to `Portfolio.total_value` as a
    best-effort cache; a failed write is logged and does not fail the valuation.
    """
    if quotes is None:
        quotes = QuoteMemo(gateway or get_quote_gateway())

    holdings = list(portfolio.holdings.order_by("symbol"))
    rows = [value_holding(h, quotes.get(h.symbol)) for h in holdings]

    holdings_value = sum((r.current_value for r in rows), Decimal("0.00"))
    cash_balance = Decimal(portfolio.cash_balance)
    total_value = quantize_money(cash_balance + holdings_value)
    budget = Decimal(portfolio.league.virtual_budget)
    gain_loss = total_value - budget

    unpriced = [r.symbol for r in rows if not r.priced]
    if unpriced:
        logger.warning(
            "Valued portfolio %s at cost basis for unpriced symbol(s): %s", portfolio.id, ", ".join(unpriced)
        )

    if persist and total_value != portfolio.total_value:
        try:
            with get_store(store).atomic():
                Portfolio.objects.filter(pk=portfolio.pk).update(total_value=total_value)
            portfolio.total_value = total_value
        except StoreTransactionFailure as e:
            logger.warning("Could not cache total value for portfolio %s: %s", portfolio.id, e)

    return PortfolioValuation(
        portfolio_id=portfolio.id,
        user_id=portfolio.user_id,
        league_id=portfolio.league_id,
        cash_balance=cash_balance,
        holdings_value=holdings_value,
        total_value=total_value,
        gain_loss=gain_loss,
        gain_loss_percent=_percent(gain_loss, budget),
        holdings=rows,
    )
