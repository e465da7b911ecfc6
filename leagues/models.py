from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models


class League(models.Model):
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)

    # Stored upper-case; lookups are case-insensitive.
    invitation_code = models.CharField(max_length=16, unique=True)

    virtual_budget = models.DecimalField(
        max_digits=20, decimal_places=2, default=Decimal("100000.00")
    )
    admin = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="administered_leagues"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=models.Q(virtual_budget__gt=0), name="league_virtual_budget_positive"
            ),
        ]

    def __str__(self) -> str:
        return self.name

    def clean(self) -> None:
        super().clean()
        if self.virtual_budget is not None and self.virtual_budget <= 0:
            raise ValidationError({"virtual_budget": "Virtual budget must be > 0."})
        if self.invitation_code:
            self.invitation_code = self.invitation_code.strip().upper()


class LeagueMember(models.Model):
    league = models.ForeignKey(League, on_delete=models.CASCADE, related_name="members")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="league_memberships"
    )
    joined_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["league", "user"], name="uniq_league_user"),
        ]
        indexes = [
            models.Index(fields=["league", "joined_at"], name="member_league_joined_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.league_id}:{self.user_id}"
