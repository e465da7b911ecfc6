from __future__ import annotations

from decimal import Decimal

from django import forms

from .services import normalize_invitation_code


class LeagueCreateForm(forms.Form):
    name = forms.CharField(max_length=200)
    description = forms.CharField(required=False)
    virtual_budget = forms.DecimalField(
        required=False, min_value=Decimal("0.01"), max_digits=20, decimal_places=2
    )

    @classmethod
    def from_payload(cls, payload: dict) -> "LeagueCreateForm":
        return cls(
            data={
                "name": payload.get("name", ""),
                "description": payload.get("description", ""),
                "virtual_budget": payload.get("virtualBudget", ""),
            }
        )


class LeagueUpdateForm(forms.Form):
    """Partial update: only keys present in the payload are validated and applied."""

    name = forms.CharField(max_length=200, required=False)
    description = forms.CharField(required=False)
    virtual_budget = forms.DecimalField(
        required=False, min_value=Decimal("0.01"), max_digits=20, decimal_places=2
    )

    FIELD_KEYS = {"name": "name", "description": "description", "virtual_budget": "virtualBudget"}

    def __init__(self, *args, provided: set[str], **kwargs):
        super().__init__(*args, **kwargs)
        self.provided = provided

    @classmethod
    def from_payload(cls, payload: dict) -> "LeagueUpdateForm":
        provided = {field for field, key in cls.FIELD_KEYS.items() if key in payload}
        data = {field: payload[key] for field, key in cls.FIELD_KEYS.items() if key in payload}
        return cls(data=data, provided=provided)

    def clean(self):
        cleaned = super().clean()
        if "name" in self.provided and "name" not in self.errors and not (cleaned.get("name") or "").strip():
            self.add_error("name", "League name cannot be empty.")
        if "virtual_budget" in self.provided and "virtual_budget" not in self.errors and cleaned.get("virtual_budget") is None:
            self.add_error("virtual_budget", "Virtual budget must be greater than 0.")
        return {field: cleaned.get(field) for field in self.provided}


class JoinLeagueForm(forms.Form):
    invitation_code = forms.CharField(max_length=16)

    def clean_invitation_code(self):
        return normalize_invitation_code(self.cleaned_data["invitation_code"])
