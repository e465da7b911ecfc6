from __future__ import annotations

from django.contrib.auth import authenticate, login
from django.http import JsonResponse

from investorsarena.api import json_api, read_json_body, require_valid
from investorsarena.errors import EmailNotVerified, InvalidCredentials

from .forms import LoginForm, RegisterForm
from .services import is_email_verified, register_user, serialize_user, verify_email


@json_api(methods=("POST",), auth=False)
def register(request):
    data = require_valid(RegisterForm.from_payload(read_json_body(request)))
    user, profile = register_user(
        email=data["email"],
        password=data["password"],
        first_name=data["first_name"],
        last_name=data["last_name"],
    )
    message = (
        "User created successfully. Email auto-verified."
        if profile.email_verified
        else "User created successfully. Please verify your email."
    )
    return JsonResponse(
        {"ok": True, "message": message, "userId": user.id, "emailVerified": profile.email_verified},
        status=201,
    )


@json_api(auth=False)
def verify(request):
    verify_email(token=request.GET.get("token", ""))
    return JsonResponse({"ok": True, "message": "Email verified successfully."})


@json_api(methods=("POST",), auth=False)
def login_view(request):
    payload = read_json_body(request)
    data = require_valid(LoginForm(data={"email": payload.get("email", ""), "password": payload.get("password", "")}))
    user = authenticate(request, username=data["email"].strip().lower(), password=data["password"])
    if user is None:
        raise InvalidCredentials()
    if not is_email_verified(user):
        raise EmailNotVerified()
    login(request, user)
    return JsonResponse({"ok": True, "user": serialize_user(user)})


@json_api
def me(request):
    return JsonResponse({"ok": True, "user": serialize_user(request.user)})
