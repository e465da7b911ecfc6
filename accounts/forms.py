from __future__ import annotations

from django import forms
from django.contrib.auth.password_validation import validate_password


class RegisterForm(forms.Form):
    email = forms.EmailField()
    password = forms.CharField(strip=False)
    first_name = forms.CharField(max_length=150)
    last_name = forms.CharField(max_length=150)

    @classmethod
    def from_payload(cls, payload: dict) -> "RegisterForm":
        return cls(
            data={
                "email": payload.get("email", ""),
                "password": payload.get("password", ""),
                "first_name": payload.get("firstName", ""),
                "last_name": payload.get("lastName", ""),
            }
        )

    def clean(self):
        cleaned = super().clean()
        password = cleaned.get("password")
        if password:
            try:
                validate_password(password)
            except forms.ValidationError as e:
                self.add_error("password", e)
        return cleaned


class LoginForm(forms.Form):
    email = forms.EmailField()
    password = forms.CharField(strip=False)
