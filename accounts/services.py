from __future__ import annotations

import logging
import uuid

from django.conf import settings
from django.contrib.auth import get_user_model
from django.contrib.auth.base_user import AbstractBaseUser
from django.utils import timezone

from investorsarena.errors import AccountExists, InvalidRequest
from investorsarena.store import Store, get_store

from .models import AccountProfile

logger = logging.getLogger(__name__)


def register_user(
    *,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    store: Store | None = None,
) -> tuple[AbstractBaseUser, AccountProfile]:
    """
    Create a user (username = email) with an unverified profile and a fresh verification token.
    With `AUTO_VERIFY_EMAIL` on, the profile starts verified and carries no token.
    """
    User = get_user_model()
    email = email.strip().lower()
    if User.objects.filter(username__iexact=email).exists() or User.objects.filter(email__iexact=email).exists():
        raise AccountExists()

    auto_verify = getattr(settings, "AUTO_VERIFY_EMAIL", False)
    store = get_store(store)
    with store.atomic():
        user = User.objects.create_user(
            username=email,
            email=email,
            password=password,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
        )
        profile = AccountProfile.objects.create(
            user=user,
            email_verified=auto_verify,
            verification_token=None if auto_verify else uuid.uuid4().hex,
            verified_at=timezone.now() if auto_verify else None,
        )

    logger.info("Registered user %s (verified=%s)", user.id, profile.email_verified)
    return user, profile


def verify_email(*, token: str) -> AccountProfile:
    token = (token or "").strip()
    if not token:
        raise InvalidRequest("Verification token is required.")
    profile = AccountProfile.objects.filter(verification_token=token).first()
    if profile is None:
        raise InvalidRequest("Invalid verification token.")
    if profile.email_verified:
        raise InvalidRequest("Email already verified.")

    profile.email_verified = True
    profile.verified_at = timezone.now()
    profile.verification_token = None
    profile.save(update_fields=["email_verified", "verified_at", "verification_token", "updated_at"])
    logger.info("Verified email for user %s", profile.user_id)
    return profile


def is_email_verified(user) -> bool:
    profile = AccountProfile.objects.filter(user=user).first()
    return bool(profile and profile.email_verified)


def serialize_user(user) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "emailVerified": is_email_verified(user),
        "createdAt": user.date_joined,
    }
