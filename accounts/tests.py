from __future__ import annotations

import json

from django.contrib.auth import get_user_model
from django.test import Client, TestCase, override_settings
from django.urls import reverse

from .models import AccountProfile

PASSWORD = "correct-horse-battery-9"


class AuthApiTests(TestCase):
    def setUp(self):
        self.client = Client()

    def _post(self, name, payload):
        return self.client.post(reverse(name), data=json.dumps(payload), content_type="application/json")

    def _register(self, email="ada@example.com"):
        return self._post(
            "accounts:register",
            {"email": email, "password": PASSWORD, "firstName": "Ada", "lastName": "Lovelace"},
        )

    @override_settings(AUTO_VERIFY_EMAIL=False)
    def test_register_verify_login_me(self):
        resp = self._register()
        self.assertEqual(resp.status_code, 201)
        self.assertFalse(resp.json()["emailVerified"])

        profile = AccountProfile.objects.get(user__email="ada@example.com")
        self.assertTrue(profile.verification_token)

        resp = self._post("accounts:login", {"email": "ada@example.com", "password": PASSWORD})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["reason"], "EMAIL_NOT_VERIFIED")

        resp = self.client.get(reverse("accounts:verify_email"), {"token": profile.verification_token})
        self.assertEqual(resp.status_code, 200)
        profile.refresh_from_db()
        self.assertTrue(profile.email_verified)
        self.assertIsNone(profile.verification_token)
        self.assertIsNotNone(profile.verified_at)

        resp = self._post("accounts:login", {"email": "ADA@example.com", "password": PASSWORD})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["user"]["firstName"], "Ada")

        resp = self.client.get(reverse("accounts:me"))
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["user"]["emailVerified"])

    @override_settings(AUTO_VERIFY_EMAIL=True)
    def test_auto_verify_skips_token(self):
        resp = self._register()
        self.assertTrue(resp.json()["emailVerified"])
        profile = AccountProfile.objects.get(user__email="ada@example.com")
        self.assertIsNone(profile.verification_token)

    def test_duplicate_email_rejected(self):
        self._register()
        resp = self._register(email="ADA@example.com")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["reason"], "USER_EXISTS")
        self.assertEqual(get_user_model().objects.count(), 1)

    def test_register_requires_all_fields(self):
        resp = self._post("accounts:register", {"email": "ada@example.com", "password": PASSWORD})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("first_name", resp.json()["fields"])

    def test_weak_password_rejected(self):
        resp = self._post(
            "accounts:register",
            {"email": "ada@example.com", "password": "123", "firstName": "Ada", "lastName": "L"},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertIn("password", resp.json()["fields"])

    def test_bad_verification_token(self):
        resp = self.client.get(reverse("accounts:verify_email"), {"token": "nope"})
        self.assertEqual(resp.status_code, 400)
        resp = self.client.get(reverse("accounts:verify_email"))
        self.assertEqual(resp.status_code, 400)

    @override_settings(AUTO_VERIFY_EMAIL=True)
    def test_wrong_password(self):
        self._register()
        resp = self._post("accounts:login", {"email": "ada@example.com", "password": "wrong-one"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["reason"], "INVALID_CREDENTIALS")

    def test_me_requires_login(self):
        resp = self.client.get(reverse("accounts:me"))
        self.assertEqual(resp.status_code, 401)

    def test_health_is_public(self):
        resp = self.client.get(reverse("health"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "OK")
