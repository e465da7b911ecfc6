from __future__ import annotations

from django import forms

from marketdata.services import normalize_symbol


class TradeRequestForm(forms.Form):
    league_id = forms.IntegerField(min_value=1)
    symbol = forms.CharField(max_length=16)
    quantity = forms.IntegerField(min_value=1, error_messages={"min_value": "Quantity must be greater than 0."})

    @classmethod
    def from_payload(cls, payload: dict) -> "TradeRequestForm":
        return cls(
            data={
                "league_id": payload.get("leagueId", ""),
                "symbol": payload.get("symbol", ""),
                "quantity": payload.get("quantity", ""),
            }
        )

    def clean_symbol(self):
        try:
            return normalize_symbol(self.cleaned_data["symbol"])
        except ValueError as e:
            raise forms.ValidationError(str(e))


class TransactionHistoryForm(forms.Form):
    limit = forms.IntegerField(required=False)
