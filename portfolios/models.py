from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone


class TransactionType(models.TextChoices):
    BUY = "BUY", "Buy"
    SELL = "SELL", "Sell"


class Portfolio(models.Model):
    # One portfolio per membership; removing the membership removes the portfolio.
    membership = models.OneToOneField(
        "leagues.LeagueMember", on_delete=models.CASCADE, related_name="portfolio"
    )
    league = models.ForeignKey(
        "leagues.League", on_delete=models.CASCADE, related_name="portfolios"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="portfolios"
    )

    # Budget the portfolio opened with; later league budget edits do not change it.
    starting_cash = models.DecimalField(max_digits=20, decimal_places=2)
    cash_balance = models.DecimalField(max_digits=20, decimal_places=2)
    # Last computed valuation; a cache for fast reads, recomputed on every valuation.
    total_value = models.DecimalField(max_digits=20, decimal_places=2)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["user", "league"], name="uniq_portfolio_user_league"),
            models.CheckConstraint(
                condition=models.Q(cash_balance__gte=0), name="portfolio_cash_nonnegative"
            ),
        ]

    def __str__(self) -> str:
        return f"{self.league_id}:{self.user_id}"


class Holding(models.Model):
    portfolio = models.ForeignKey(Portfolio, on_delete=models.CASCADE, related_name="holdings")
    symbol = models.CharField(max_length=16)
    quantity = models.PositiveIntegerField()
    average_price = models.DecimalField(max_digits=20, decimal_places=6)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["portfolio", "symbol"], name="uniq_holding_portfolio_symbol"),
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name="holding_quantity_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.portfolio_id}:{self.symbol}:{self.quantity}"


class Transaction(models.Model):
    """Append-only audit record of one executed trade."""

    portfolio = models.ForeignKey(Portfolio, on_delete=models.CASCADE, related_name="transactions")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="+"
    )
    league = models.ForeignKey("leagues.League", on_delete=models.CASCADE, related_name="+")

    symbol = models.CharField(max_length=16)
    transaction_type = models.CharField(max_length=8, choices=TransactionType.choices)
    quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=20, decimal_places=6)
    total_amount = models.DecimalField(max_digits=20, decimal_places=2)
    realized_gain = models.DecimalField(max_digits=20, decimal_places=2, default=Decimal("0.00"))
    timestamp = models.DateTimeField(default=timezone.now)

    class Meta:
        indexes = [
            models.Index(fields=["portfolio", "-timestamp"], name="txn_portfolio_ts_idx"),
            models.Index(fields=["user", "league", "-timestamp"], name="txn_user_league_ts_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.portfolio_id}:{self.transaction_type}:{self.symbol}:{self.quantity}@{self.price}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Transactions are append-only and cannot be modified.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Transactions are append-only and cannot be deleted.")
