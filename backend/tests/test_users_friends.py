"""
Tests for profile completion, referral codes and friendships.
"""
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlalchemy import update

from wishfund.main import app
from wishfund.models.models import Wishlist

from conftest import ADMIN_CODE, sign_in_with_otp


def _complete_profile(client, referral_code, n="x1"):
    return client.patch(
        "/users/profile",
        json={
            "first_name": "Grace",
            "last_name": "Hopper",
            "username": f"grace_{n}",
            "phone": "+2349011112222",
            "dob": "1990-12-09",
            "gender": "female",
            "password": "SecurePass123",
            "referral_code": referral_code,
        },
    )


class TestProfile:
    def test_registration_completes_with_referral(self, admin_code):
        client = TestClient(app)
        sign_in_with_otp(client, "grace@example.com")
        res = _complete_profile(client, admin_code.lower())

        assert res.status_code == 200
        body = res.json()
        assert body["is_registration_complete"] is True
        assert body["referred_by_id"] is not None
        assert body["username"] == "grace_x1"

        codes = client.get("/users/referral-codes").json()
        assert len(codes) == 5
        assert all(code["referral_code"].startswith("JOY-") for code in codes)
        assert client.get("/wallet").status_code == 200

    def test_registration_incomplete_without_referral(self, admin_code):
        client = TestClient(app)
        sign_in_with_otp(client, "noref@example.com")
        res = client.patch("/users/profile", json={"first_name": "No", "last_name": "Referral"})

        assert res.status_code == 200
        assert res.json()["is_registration_complete"] is False

    def test_invalid_referral_code(self, admin_code):
        client = TestClient(app)
        sign_in_with_otp(client, "badref@example.com")
        res = _complete_profile(client, "JOY-NOPE0")

        assert res.status_code == 400
        assert res.json()["detail"] == "Invalid referral code"

    def test_user_codes_are_single_use(self, make_user):
        referrer_client, _ = make_user()
        code = referrer_client.get("/users/referral-codes").json()[0]["referral_code"]
        make_user(referral_code=code)

        client = TestClient(app)
        sign_in_with_otp(client, "late@example.com")
        res = _complete_profile(client, code, n="late")
        assert res.status_code == 400
        assert res.json()["detail"] == "Referral code has already been used"

        stats = referrer_client.get("/users/referral-stats").json()
        assert stats["used_codes"] == 1
        assert stats["unused_codes"] == 4
        assert stats["referral_count"] == 1

    def test_admin_code_is_reusable(self, make_user):
        make_user(referral_code=ADMIN_CODE)
        _, profile = make_user(referral_code=ADMIN_CODE)

        assert profile["is_registration_complete"] is True

    def test_username_taken(self, make_user, admin_code):
        _, first = make_user()
        client = TestClient(app)
        sign_in_with_otp(client, "dupe@example.com")
        res = client.patch("/users/profile", json={"username": first["username"]})

        assert res.status_code == 409
        assert res.json()["detail"] == "Username is already in use"

    def test_password_set_only_once(self, make_user):
        client, _ = make_user()
        res = client.patch("/users/profile", json={"password": "Another123"})

        assert res.status_code == 400
        assert res.json()["detail"] == "Use change-password to update your password"

    def test_weak_password_rejected(self, admin_code):
        client = TestClient(app)
        sign_in_with_otp(client, "weak@example.com")
        res = client.patch("/users/profile", json={"password": "alllowercase1"})

        assert res.status_code == 422

    def test_change_password(self, make_user):
        client, profile = make_user()
        res = client.post(
            "/users/change-password",
            json={"password": "Changed123", "confirm_password": "Changed123"},
        )
        assert res.status_code == 200

        res = client.post(
            "/users/change-password",
            json={"password": "Changed123", "confirm_password": "Changed123"},
        )
        assert res.status_code == 400
        assert res.json()["detail"] == "New password cannot be the same as the old password"

        res = TestClient(app).post("/auth/sign-in", json={"email": profile["email"], "password": "Changed123"})
        assert res.status_code == 200

    def test_search_users(self, make_user):
        client, me = make_user()
        _, other = make_user()
        res = client.get("/users/search", params={"q": "ada_"})

        ids = [user["id"] for user in res.json()]
        assert other["id"] in ids
        assert me["id"] not in ids

    def test_find_referrer_by_code(self, make_user):
        referrer_client, referrer = make_user()
        code = referrer_client.get("/users/referral-codes").json()[0]["referral_code"]
        client, _ = make_user()

        res = client.get(f"/users/by-referral/{code}")
        assert res.status_code == 200
        assert res.json()["id"] == referrer["id"]
        assert client.get("/users/by-referral/JOY-ZZZZZ").status_code == 404


class TestFriends:
    def test_referral_creates_friendship(self, make_user):
        referrer_client, referrer = make_user()
        code = referrer_client.get("/users/referral-codes").json()[0]["referral_code"]
        client, profile = make_user(referral_code=code)

        friends = client.get("/friends").json()
        assert friends["total_friends"] == 1
        assert friends["friends"][0]["id"] == referrer["id"]
        assert friends["friends"][0]["source"] == "referral"

        # the referrer is also friends with the admin whose code they used
        back = referrer_client.get("/friends").json()
        assert back["total_friends"] == 2
        assert back["friends"][0]["id"] == profile["id"]

    def test_add_friend_by_email(self, make_user):
        client, _ = make_user()
        _, other = make_user()
        res = client.post("/friends", json={"email": other["email"]})

        assert res.status_code == 201
        assert res.json()["message"].endswith("added as a friend")

        res = client.post("/friends", json={"email": other["email"]})
        assert res.status_code == 400
        assert res.json()["detail"] == "Already friends"

    def test_add_friend_by_code(self, make_user):
        other_client, other = make_user()
        code = other_client.get("/users/referral-codes").json()[0]["referral_code"]
        client, _ = make_user()

        assert client.post("/friends", json={"referral_code": code}).status_code == 201
        ids = [friend["id"] for friend in client.get("/friends").json()["friends"]]
        assert other["id"] in ids

    def test_cannot_befriend_self(self, make_user):
        client, me = make_user()
        res = client.post("/friends", json={"email": me["email"]})

        assert res.status_code == 400
        assert res.json()["detail"] == "Cannot add yourself as a friend"

    def test_add_friend_needs_target(self, make_user):
        client, _ = make_user()
        res = client.post("/friends", json={})

        assert res.status_code == 400
        assert res.json()["detail"] == "Email or referral code is required"

    def test_remove_friend(self, make_user):
        client, _ = make_user()
        other_client, other = make_user()
        client.post("/friends", json={"email": other["email"]})

        res = client.delete(f"/friends/{other['id']}")
        assert res.status_code == 200
        assert res.json()["message"] == "Friend removed successfully"
        assert other["id"] not in [f["id"] for f in other_client.get("/friends").json()["friends"]]
        assert client.delete(f"/friends/{other['id']}").status_code == 404

    def test_friends_wishlists(self, make_user, wishlist_payload):
        client, _ = make_user()
        other_client, other = make_user()
        client.post("/friends", json={"email": other["email"]})
        other_client.post("/wishlists", json=wishlist_payload())

        res = client.get("/friends/wishlists")
        assert res.status_code == 200
        wishlists = res.json()
        assert len(wishlists) == 1
        assert wishlists[0]["owner_id"] == other["id"]
        assert wishlists[0]["items_count"] == 2
        assert wishlists[0]["total_value"] == 80000

        friends = client.get("/friends").json()["friends"]
        assert friends[0]["has_active_wishlist"] is True

    def test_friends_wishlists_skip_private_and_expired(self, make_user, wishlist_payload, db_session):
        client, _ = make_user()
        other_client, other = make_user()
        client.post("/friends", json={"email": other["email"]})
        other_client.post("/wishlists", json=wishlist_payload(name="Open"))
        other_client.post("/wishlists", json=wishlist_payload(name="Secret", is_public=False))
        old_id = other_client.post("/wishlists", json=wishlist_payload(name="Old")).json()["id"]
        db_session.execute(
            update(Wishlist)
            .where(Wishlist.id == old_id)
            .values(expires_at=datetime.now(timezone.utc) - timedelta(days=20))
        )
        db_session.commit()

        assert [w["name"] for w in client.get("/friends/wishlists").json()] == ["Open"]
        assert other_client.get(f"/wishlists/{old_id}").json()["status"] == "expired"
