"""
Tests for the auth API: OTP sign-up, password sign-in, refresh and password reset.
"""
from sqlalchemy import select
from fastapi.testclient import TestClient

from wishfund.core.config import settings
from wishfund.core.security import create_password_reset_token, create_refresh_token
from wishfund.main import app
from wishfund.models.models import User

from conftest import OTP, PASSWORD, sign_in_with_otp


class TestSignUp:
    """OTP based sign-up."""

    def test_sign_up_creates_user(self):
        client = TestClient(app)
        res = client.post("/auth/sign-up", json={"email": "New@Example.com"})

        assert res.status_code == 201
        assert res.json()["message"] == "User created successfully"
        assert res.json()["user_id"] > 0

    def test_sign_up_requires_contact(self):
        client = TestClient(app)
        res = client.post("/auth/sign-up", json={})

        assert res.status_code == 400
        assert res.json()["detail"] == "Either email or phone number is required"

    def test_sign_up_existing_email(self):
        client = TestClient(app)
        client.post("/auth/sign-up", json={"email": "twice@example.com"})
        res = client.post("/auth/sign-up", json={"email": "twice@example.com"})

        assert res.status_code == 200
        assert res.json()["message"] == "User with this email already exists"

    def test_sign_up_with_phone(self):
        client = TestClient(app)
        res = client.post("/auth/sign-up", json={"phone": "+234 801 234 5678"})

        assert res.status_code == 201

    def test_sign_up_invalid_phone(self):
        client = TestClient(app)
        res = client.post("/auth/sign-up", json={"phone": "call-me"})

        assert res.status_code == 422


class TestVerifyOtp:
    def test_verify_otp_sets_cookies(self):
        client = TestClient(app)
        client.post("/auth/sign-up", json={"email": "otp@example.com"})
        res = client.post("/auth/verify-otp", json={"email": "otp@example.com", "otp": OTP})

        assert res.status_code == 200
        body = res.json()
        assert body["message"] == "OTP verified successfully"
        assert body["user"]["is_registration_complete"] is False
        assert "access_token" in res.cookies
        assert "refresh_token" in res.cookies

    def test_wrong_otp(self):
        client = TestClient(app)
        client.post("/auth/sign-up", json={"email": "wrong-otp@example.com"})
        res = client.post("/auth/verify-otp", json={"email": "wrong-otp@example.com", "otp": "000000"})

        assert res.status_code == 401
        assert res.json()["detail"] == "Invalid or expired OTP"

    def test_otp_is_single_use(self):
        client = TestClient(app)
        sign_in_with_otp(client, "once@example.com")
        res = client.post("/auth/verify-otp", json={"email": "once@example.com", "otp": OTP})

        assert res.status_code == 401

    def test_unknown_user(self):
        client = TestClient(app)
        res = client.post("/auth/verify-otp", json={"email": "ghost@example.com", "otp": OTP})

        assert res.status_code == 404
        assert res.json()["detail"] == "User not found"

    def test_otp_request_limit(self, monkeypatch):
        monkeypatch.setattr(settings, "otp_max_retries", 2)
        client = TestClient(app)
        client.post("/auth/sign-up", json={"email": "spam@example.com"})
        assert client.post("/auth/send-otp", json={"email": "spam@example.com"}).status_code == 200
        res = client.post("/auth/send-otp", json={"email": "spam@example.com"})

        assert res.status_code == 429
        assert res.json()["detail"] == "Too many OTP requests. Please try again in an hour."


class TestSignIn:
    def test_sign_in_success(self, make_user):
        _, profile = make_user(email="signin@example.com")
        client = TestClient(app)
        res = client.post("/auth/sign-in", json={"email": "signin@example.com", "password": PASSWORD})

        assert res.status_code == 200
        assert res.json()["message"] == "User logged in successfully"
        assert res.json()["user"]["id"] == profile["id"]
        assert client.get("/users/profile").status_code == 200

    def test_sign_in_wrong_password(self, make_user):
        make_user(email="badpass@example.com")
        client = TestClient(app)
        res = client.post("/auth/sign-in", json={"email": "badpass@example.com", "password": "Nope12345"})

        assert res.status_code == 401
        assert res.json()["detail"] == "Invalid credentials"

    def test_sign_in_lockout(self, make_user, monkeypatch):
        monkeypatch.setattr(settings, "login_max_retries", 2)
        make_user(email="locked@example.com")
        client = TestClient(app)
        for _ in range(2):
            client.post("/auth/sign-in", json={"email": "locked@example.com", "password": "Nope12345"})
        res = client.post("/auth/sign-in", json={"email": "locked@example.com", "password": PASSWORD})

        assert res.status_code == 401
        assert res.json()["detail"] == "login retries exceeded!"

    def test_suspended_user(self, make_user, db_session):
        _, profile = make_user(email="suspended@example.com")
        user = db_session.get(User, profile["id"])
        user.is_suspended = True
        db_session.commit()

        client = TestClient(app)
        res = client.post("/auth/sign-in", json={"email": "suspended@example.com", "password": PASSWORD})

        assert res.status_code == 401
        assert res.json()["detail"] == "Your account is currently suspended"

    def test_bearer_header_fallback(self, make_user):
        client, _ = make_user()
        token = client.cookies.get("access_token")
        fresh = TestClient(app)

        res = fresh.get("/users/profile", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 200

    def test_profile_requires_auth(self):
        client = TestClient(app)
        res = client.get("/users/profile")

        assert res.status_code == 401
        assert res.json()["detail"] == "Not authenticated"


class TestSession:
    def test_sign_out_clears_cookies(self, make_user):
        client, _ = make_user()
        res = client.post("/auth/sign-out")

        assert res.status_code == 200
        assert client.get("/users/profile").status_code == 401

    def test_refresh_issues_new_cookies(self, make_user):
        _, profile = make_user()
        client = TestClient(app)
        client.cookies.set("refresh_token", create_refresh_token(str(profile["id"])))
        res = client.post("/auth/refresh")

        assert res.status_code == 200
        assert res.json()["message"] == "Session refreshed"
        assert client.get("/users/profile").status_code == 200

    def test_refresh_without_cookie(self):
        client = TestClient(app)
        res = client.post("/auth/refresh")

        assert res.status_code == 401

    def test_refresh_with_garbage(self):
        client = TestClient(app)
        client.cookies.set("refresh_token", "garbage")
        res = client.post("/auth/refresh")

        assert res.status_code == 401
        assert res.json()["detail"] == "Invalid token"


class TestPasswordReset:
    def test_forgot_password_unknown_email(self):
        client = TestClient(app)
        res = client.post("/auth/forgot-password", json={"email": "nobody@example.com"})

        assert res.status_code == 404
        assert res.json()["detail"] == "No user found with provided email"

    def test_reset_password_flow(self, make_user, db_session):
        _, profile = make_user(email="reset@example.com")
        client = TestClient(app)
        res = client.post("/auth/forgot-password", json={"email": "reset@example.com"})
        assert res.status_code == 200
        assert res.json()["message"] == "Password reset link sent to reset@example.com"

        jti = db_session.scalar(select(User.password_reset_jti).where(User.id == profile["id"]))
        token = create_password_reset_token(str(profile["id"]), jti)
        body = {"token": token, "password": "BrandNew123", "confirm_password": "BrandNew123"}
        res = client.post("/auth/reset-password", json=body)
        assert res.status_code == 200
        assert res.json()["message"] == "Password reset successfully"

        # the token is single use
        res = client.post("/auth/reset-password", json=body)
        assert res.status_code == 400

        res = client.post("/auth/sign-in", json={"email": "reset@example.com", "password": "BrandNew123"})
        assert res.status_code == 200

    def test_reset_password_mismatch(self):
        client = TestClient(app)
        res = client.post(
            "/auth/reset-password",
            json={"token": "x", "password": "BrandNew123", "confirm_password": "Different123"},
        )

        assert res.status_code == 403
        assert res.json()["detail"] == "Passwords do not match"

    def test_reset_password_stale_token(self, make_user):
        _, profile = make_user()
        client = TestClient(app)
        token = create_password_reset_token(str(profile["id"]), "never-issued")
        res = client.post(
            "/auth/reset-password",
            json={"token": token, "password": "BrandNew123", "confirm_password": "BrandNew123"},
        )

        assert res.status_code == 400
        assert res.json()["detail"] == "Password reset token is invalid or has expired"

    def test_reset_retries_suspend_account(self, make_user, monkeypatch):
        monkeypatch.setattr(settings, "password_reset_max_retries", 1)
        make_user(email="forgetful@example.com")
        client = TestClient(app)
        assert client.post("/auth/forgot-password", json={"email": "forgetful@example.com"}).status_code == 200
        res = client.post("/auth/forgot-password", json={"email": "forgetful@example.com"})

        assert res.status_code == 401
        assert res.json()["detail"] == "Password reset retries exceeded! and account suspended"
