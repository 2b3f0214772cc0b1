"""
Tests for contributions, payment confirmation, webhooks and refunds.
"""
import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from wishfund.core.config import settings
from wishfund.main import app
from wishfund.models.models import Contribution
from wishfund.services import settlement
from wishfund.services.payments import PaymentGateway, PaymentGatewayError, gateway, get_gateway

from conftest import contribute


@pytest.fixture
def wishlist(make_user, wishlist_payload):
    """An owner's wishlist with Headphones (30000) and Smart Watch (50000)."""
    owner, profile = make_user()
    body = owner.post("/wishlists", json=wishlist_payload()).json()
    return {
        "owner": owner,
        "owner_id": profile["id"],
        "id": body["id"],
        "item_ids": [item["id"] for item in body["items"]],
    }


@pytest.fixture
def gateway_override():
    def _install(instance: PaymentGateway):
        app.dependency_overrides[get_gateway] = lambda: instance

    yield _install
    app.dependency_overrides.pop(get_gateway, None)


class TestItemContribution:
    def test_contribution_settles_in_sandbox(self, wishlist):
        guest = TestClient(app)
        headphones = wishlist["item_ids"][0]
        started = contribute(guest, headphones, 10000, settle=False, message="Happy birthday!")

        assert started["payment_reference"].startswith("CONT-")
        assert started["payment_url"].endswith(f"/payments/callback?reference={started['payment_reference']}")

        res = guest.get("/payments/callback", params={"reference": started["payment_reference"]})
        assert res.status_code == 200
        assert res.json()["status"] == "completed"
        assert res.json()["amount"] == 10000

        stats = guest.get(f"/wishlists/items/{headphones}/stats").json()
        assert stats["total_contributed"] == 10000
        assert stats["funding_percentage"] == 33
        assert stats["contributions_count"] == 1

        balance = wishlist["owner"].get(f"/wishlists/items/{headphones}/balance").json()
        assert balance["available_balance"] == 10000

    def test_settlement_is_idempotent(self, wishlist):
        guest = TestClient(app)
        headphones = wishlist["item_ids"][0]
        started = contribute(guest, headphones, 10000)

        res = guest.get("/payments/callback", params={"reference": started["payment_reference"]})
        assert res.json()["status"] == "completed"
        assert guest.get(f"/wishlists/items/{headphones}/stats").json()["total_contributed"] == 10000

    def test_minimum_amount(self, wishlist):
        res = TestClient(app).post(
            "/contributions/item",
            json={
                "wishlist_item_id": wishlist["item_ids"][0],
                "contributor_name": "Cheap",
                "contributor_email": "cheap@example.com",
                "amount": 50,
            },
        )

        assert res.status_code == 400
        assert res.json()["detail"] == "Minimum contribution amount is ₦100"

    def test_unknown_item(self):
        res = TestClient(app).post(
            "/contributions/item",
            json={
                "wishlist_item_id": 999,
                "contributor_name": "Lost",
                "contributor_email": "lost@example.com",
                "amount": 500,
            },
        )

        assert res.status_code == 404
        assert res.json()["detail"] == "Wishlist item not found"

    def test_funding_every_item_completes_wishlist(self, wishlist):
        guest = TestClient(app)
        headphones, watch = wishlist["item_ids"]
        contribute(guest, headphones, 30000)
        contribute(guest, watch, 50000)

        body = guest.get(f"/wishlists/{wishlist['id']}").json()
        assert body["status"] == "completed"
        assert all(item["is_funded"] for item in body["items"])
        assert body["total_contributed"] == 80000
        assert body["contributors_count"] == 1

        res = guest.post(
            "/contributions/item",
            json={
                "wishlist_item_id": headphones,
                "contributor_name": "Late",
                "contributor_email": "late@example.com",
                "amount": 500,
            },
        )
        assert res.status_code == 400
        assert res.json()["detail"] == "This wishlist is not accepting contributions"

    def test_signed_in_contributor_is_linked(self, wishlist, make_user):
        client, profile = make_user()
        contribute(client, wishlist["item_ids"][0], 2000, settle=False)

        given = client.get("/contributions/given").json()
        assert given["pagination"]["total"] == 1
        assert given["contributions"][0]["status"] == "pending"
        assert given["contributions"][0]["item_name"] == "Headphones"

    def test_checkout_failure_fails_contribution(self, wishlist, gateway_override, db_session):
        class DownGateway(PaymentGateway):
            async def initialize_payment(self, *args, **kwargs):
                raise PaymentGatewayError("Service unavailable", 503)

        gateway_override(DownGateway())
        res = TestClient(app).post(
            "/contributions/item",
            json={
                "wishlist_item_id": wishlist["item_ids"][0],
                "contributor_name": "Unlucky",
                "contributor_email": "unlucky@example.com",
                "amount": 1000,
            },
        )

        assert res.status_code == 502
        assert res.json()["detail"] == "Could not start payment: Service unavailable"
        statuses = db_session.scalars(select(Contribution.status)).all()
        assert statuses == ["failed"]

    def test_underpayment_is_failed(self, wishlist, gateway_override):
        class ShortGateway(PaymentGateway):
            async def verify_payment(self, reference):
                return {"status": "success", "reference": reference, "amount": 500.0, "gateway_reference": "1"}

        guest = TestClient(app)
        started = contribute(guest, wishlist["item_ids"][0], 1000, settle=False)
        gateway_override(ShortGateway())
        res = guest.get("/payments/callback", params={"reference": started["payment_reference"]})

        assert res.json()["status"] == "failed"
        assert guest.get(f"/wishlists/items/{wishlist['item_ids'][0]}/stats").json()["total_contributed"] == 0

    def test_unknown_reference(self):
        res = TestClient(app).get("/payments/callback", params={"reference": "CONT-missing"})

        assert res.status_code == 404
        assert res.json()["detail"] == "Payment not found"

    def test_callback_settles_only_its_own_reference(self, wishlist, db_session):
        guest = TestClient(app)
        first = contribute(guest, wishlist["item_ids"][0], 1000, settle=False)
        second = contribute(guest, wishlist["item_ids"][1], 2000, settle=False)

        for partial in ("CONT", "CONT-", first["payment_reference"][:-1]):
            res = guest.get("/payments/callback", params={"reference": partial})
            assert res.status_code == 404

        res = guest.get("/payments/callback", params={"reference": first["payment_reference"]})
        assert res.json()["contributions_count"] == 1
        statuses = dict(db_session.execute(select(Contribution.id, Contribution.status)).all())
        assert statuses == {first["contribution_id"]: "completed", second["contribution_id"]: "pending"}

    def test_callback_rejects_mismatched_verification(self, wishlist, gateway_override, db_session):
        class OtherReferenceGateway(PaymentGateway):
            async def verify_payment(self, reference):
                return {"status": "success", "reference": "CONT-somebodyelse0000", "amount": None}

        guest = TestClient(app)
        started = contribute(guest, wishlist["item_ids"][0], 1000, settle=False)
        gateway_override(OtherReferenceGateway())
        res = guest.get("/payments/callback", params={"reference": started["payment_reference"]})

        assert res.status_code == 400
        assert res.json()["detail"] == "Payment reference mismatch"
        assert db_session.scalar(select(Contribution.status)) == "pending"

    def test_sandbox_confirms_nothing_outside_local(self, wishlist, monkeypatch, db_session):
        guest = TestClient(app)
        started = contribute(guest, wishlist["item_ids"][0], 1000, settle=False)
        monkeypatch.setattr(settings, "environment", "production")
        res = guest.get("/payments/callback", params={"reference": started["payment_reference"]})

        assert res.status_code == 502
        assert res.json()["detail"] == "Could not verify payment: Payment gateway is not configured"
        assert db_session.scalar(select(Contribution.status)) == "pending"


class TestBulkContribution:
    def _bulk(self, client, wishlist_id, amount, strategy="priority"):
        return client.post(
            "/contributions/all",
            json={
                "wishlist_id": wishlist_id,
                "contributor_name": "Generous Guest",
                "contributor_email": "generous@example.com",
                "amount": amount,
                "strategy": strategy,
            },
        )

    def test_priority_split_and_settlement(self, wishlist):
        guest = TestClient(app)
        res = self._bulk(guest, wishlist["id"], 40000)

        assert res.status_code == 201
        body = res.json()
        assert body["payment_reference"].startswith("CONT-ALL-")
        assert body["platform_fee"] == 0
        assert [(a["item_name"], a["amount"]) for a in body["allocations"]] == [
            ("Headphones", 30000),
            ("Smart Watch", 10000),
        ]

        res = guest.get("/payments/callback", params={"reference": body["payment_reference"]})
        assert res.json()["status"] == "completed"
        assert res.json()["contributions_count"] == 2
        assert res.json()["amount"] == 40000

        stats = wishlist["owner"].get(f"/wishlists/{wishlist['id']}/stats").json()
        assert stats["total_contributed"] == 40000
        assert stats["funded_items_count"] == 1
        assert stats["completion_percentage"] == 50
        assert stats["top_contributors"][0]["contributor_name"] == "Generous Guest"

    def test_equal_split(self, wishlist):
        body = self._bulk(TestClient(app), wishlist["id"], 10001, "equal").json()

        assert [a["amount"] for a in body["allocations"]] == [5000, 5000]
        assert body["net_amount"] == 10001

    def test_platform_fee(self, wishlist, monkeypatch):
        monkeypatch.setattr(settings, "platform_fee_percent", 2)
        body = self._bulk(TestClient(app), wishlist["id"], 10000).json()

        assert body["platform_fee"] == 200
        assert body["net_amount"] == 9800
        assert sum(a["amount"] for a in body["allocations"]) == 9800

    def test_amount_too_small_to_split(self, wishlist, monkeypatch):
        monkeypatch.setattr(settings, "min_contribution_amount", 1)
        res = self._bulk(TestClient(app), wishlist["id"], 1, "equal")

        assert res.status_code == 400
        assert res.json()["detail"] == "Amount is too small to split across the remaining items"

    def test_funded_items_are_skipped(self, wishlist):
        guest = TestClient(app)
        contribute(guest, wishlist["item_ids"][0], 30000)
        body = self._bulk(guest, wishlist["id"], 1000).json()

        assert [a["item_name"] for a in body["allocations"]] == ["Smart Watch"]

    def test_item_row_reference_is_not_a_payment(self, wishlist):
        guest = TestClient(app)
        reference = self._bulk(guest, wishlist["id"], 40000).json()["payment_reference"]
        res = guest.get("/payments/callback", params={"reference": f"{reference}-{wishlist['item_ids'][0]}"})

        assert res.status_code == 404

    def test_one_failed_item_does_not_block_the_rest(self, wishlist, monkeypatch):
        headphones, watch = wishlist["item_ids"]
        original = settlement.settle_contribution

        async def flaky(db, contribution, gateway_reference=None):
            if contribution.wishlist_item_id == headphones:
                raise RuntimeError("ledger unavailable")
            return await original(db, contribution, gateway_reference)

        guest = TestClient(app)
        reference = self._bulk(guest, wishlist["id"], 40000).json()["payment_reference"]
        monkeypatch.setattr(settlement, "settle_contribution", flaky)
        res = guest.get("/payments/callback", params={"reference": reference})

        assert res.json()["status"] == "partial"
        assert guest.get(f"/wishlists/items/{watch}/stats").json()["total_contributed"] == 10000
        assert guest.get(f"/wishlists/items/{headphones}/stats").json()["total_contributed"] == 0

        monkeypatch.undo()
        res = guest.get("/payments/callback", params={"reference": reference})
        assert res.json()["status"] == "completed"
        assert guest.get(f"/wishlists/items/{headphones}/stats").json()["total_contributed"] == 30000


class TestContributionLists:
    def test_public_lists_hide_anonymous(self, wishlist):
        guest = TestClient(app)
        headphones = wishlist["item_ids"][0]
        contribute(guest, headphones, 1000, contributor_name="Visible")
        contribute(guest, headphones, 1000, contributor_name="Hidden", is_anonymous=True)
        contribute(guest, headphones, 1000, settle=False, contributor_name="Pending")

        public = guest.get(f"/contributions/wishlist/{wishlist['id']}").json()
        assert [c["contributor_name"] for c in public["contributions"]] == ["Visible"]
        assert "contributor_email" not in public["contributions"][0]

        by_item = guest.get(f"/contributions/item/{headphones}").json()
        assert by_item["pagination"]["total"] == 1

    def test_received_lists_completed_for_owner(self, wishlist):
        guest = TestClient(app)
        contribute(guest, wishlist["item_ids"][0], 1000, is_anonymous=True)
        contribute(guest, wishlist["item_ids"][1], 1000, settle=False)

        received = wishlist["owner"].get("/contributions/received").json()
        assert received["pagination"]["total"] == 1
        assert received["contributions"][0]["contributor_email"] == "guest@example.com"
        assert received["contributions"][0]["item_name"] == "Headphones"

    def test_top_contributors(self, wishlist):
        guest = TestClient(app)
        contribute(guest, wishlist["item_ids"][0], 1000, contributor_name="Small", contributor_email="s@example.com")
        contribute(guest, wishlist["item_ids"][0], 5000, contributor_name="Big", contributor_email="b@example.com")
        contribute(guest, wishlist["item_ids"][1], 500, contributor_name="Small", contributor_email="s@example.com")

        top = guest.get(f"/contributions/top/{wishlist['id']}").json()
        assert [(t["rank"], t["contributor_name"], t["total_amount"]) for t in top] == [
            (1, "Big", 5000),
            (2, "Small", 1500),
        ]
        assert top[1]["contribution_count"] == 2


class TestReply:
    def test_owner_replies(self, wishlist):
        started = contribute(TestClient(app), wishlist["item_ids"][0], 1000)
        res = wishlist["owner"].post(
            f"/contributions/{started['contribution_id']}/reply", json={"owner_reply": "Thank you!"}
        )

        assert res.status_code == 200
        assert res.json()["owner_reply"] == "Thank you!"
        assert res.json()["replied_at"] is not None

    def test_empty_reply(self, wishlist):
        started = contribute(TestClient(app), wishlist["item_ids"][0], 1000)
        res = wishlist["owner"].post(f"/contributions/{started['contribution_id']}/reply", json={"owner_reply": "  "})

        assert res.status_code == 400
        assert res.json()["detail"] == "Reply message is required"

    def test_only_owner_replies(self, wishlist, make_user):
        started = contribute(TestClient(app), wishlist["item_ids"][0], 1000)
        other, _ = make_user()
        res = other.post(f"/contributions/{started['contribution_id']}/reply", json={"owner_reply": "Hi"})

        assert res.status_code == 403
        assert res.json()["detail"] == "Unauthorized"


class TestRefund:
    def test_admin_refunds(self, wishlist, make_admin):
        headphones = wishlist["item_ids"][0]
        started = contribute(TestClient(app), headphones, 30000)
        admin, _ = make_admin()

        res = admin.post(f"/payments/refund/{started['contribution_id']}", json={"reason": "Duplicate payment"})
        assert res.status_code == 200
        assert res.json()["status"] == "refunded"

        stats = admin.get(f"/wishlists/items/{headphones}/stats").json()
        assert stats["total_contributed"] == 0
        assert stats["is_funded"] is False

        res = admin.post(f"/payments/refund/{started['contribution_id']}", json={"reason": "Again"})
        assert res.status_code == 400
        assert res.json()["detail"] == "Only completed contributions can be refunded"

    def test_refund_after_withdrawal_reclaims_from_wallet(self, wishlist, make_admin):
        headphones = wishlist["item_ids"][0]
        owner = wishlist["owner"]
        started = contribute(TestClient(app), headphones, 30000)
        assert owner.post(f"/wishlists/items/{headphones}/withdraw", json={}).status_code == 200
        admin, _ = make_admin()

        res = admin.post(f"/payments/refund/{started['contribution_id']}", json={"reason": "Chargeback"})
        assert res.status_code == 200

        assert owner.get("/wallet").json()["available_balance"] == 0
        tx = owner.get("/wallet/transactions").json()["transactions"][0]
        assert tx["type"] == "refund"
        assert tx["amount"] == -30000
        assert tx["balance_after"] == 0
        assert tx["reference"] == f"{started['payment_reference']}-REFUND"

    def test_refund_requires_admin(self, wishlist):
        started = contribute(TestClient(app), wishlist["item_ids"][0], 1000)
        res = wishlist["owner"].post(f"/payments/refund/{started['contribution_id']}", json={"reason": "Mine"})

        assert res.status_code == 403
        assert res.json()["detail"] == "Admin access required"

    def test_admin_verify(self, wishlist, make_admin):
        started = contribute(TestClient(app), wishlist["item_ids"][0], 1000, settle=False)
        admin, _ = make_admin()
        res = admin.get(f"/payments/verify/{started['payment_reference']}")

        assert res.status_code == 200
        assert res.json()["status"] == "completed"


class TestWebhook:
    def _event(self, name, reference, **data):
        return json.dumps({"event": name, "data": {"reference": reference, **data}}).encode()

    def test_charge_success(self, wishlist):
        guest = TestClient(app)
        started = contribute(guest, wishlist["item_ids"][0], 1000, settle=False)
        res = guest.post("/payments/webhook", content=self._event("charge.success", started["payment_reference"], id=77))

        assert res.status_code == 200
        assert res.json()["message"] == "Webhook processed"
        assert guest.get(f"/contributions/item/{wishlist['item_ids'][0]}").json()["pagination"]["total"] == 1

    def test_charge_failed(self, wishlist, db_session):
        guest = TestClient(app)
        started = contribute(guest, wishlist["item_ids"][0], 1000, settle=False)
        guest.post("/payments/webhook", content=self._event("charge.failed", started["payment_reference"]))

        status_ = db_session.scalar(
            select(Contribution.status).where(Contribution.id == started["contribution_id"])
        )
        assert status_ == "failed"

    def test_missing_reference(self):
        res = TestClient(app).post("/payments/webhook", content=json.dumps({"event": "charge.success", "data": {}}))

        assert res.status_code == 400
        assert res.json()["detail"] == "Webhook reference is missing"

    def test_invalid_payload(self):
        res = TestClient(app).post("/payments/webhook", content=b"{not json")

        assert res.status_code == 400

    @pytest.mark.parametrize("body", [b"[]", b'"charge.success"', b'{"event": "charge.success", "data": []}'])
    def test_payload_must_be_an_object(self, body):
        res = TestClient(app).post("/payments/webhook", content=body)

        assert res.status_code == 400
        assert res.json()["detail"] == "Invalid webhook payload"

    def test_charge_underpaid_is_failed(self, wishlist, db_session):
        guest = TestClient(app)
        started = contribute(guest, wishlist["item_ids"][0], 1000, settle=False)
        # 50000 kobo is half of the ₦1000 owed
        body = self._event("charge.success", started["payment_reference"], id=78, amount=50000)
        res = guest.post("/payments/webhook", content=body)

        assert res.status_code == 200
        assert db_session.scalar(select(Contribution.status)) == "failed"
        assert guest.get(f"/wishlists/items/{wishlist['item_ids'][0]}/stats").json()["total_contributed"] == 0

    def test_charge_paid_in_full_settles(self, wishlist, db_session):
        guest = TestClient(app)
        started = contribute(guest, wishlist["item_ids"][0], 1000, settle=False)
        body = self._event("charge.success", started["payment_reference"], id=79, amount=100000)
        guest.post("/payments/webhook", content=body)

        assert db_session.scalar(select(Contribution.gateway_reference)) == "79"
        assert db_session.scalar(select(Contribution.status)) == "completed"

    def test_signature_checked_when_secret_set(self, wishlist, monkeypatch):
        guest = TestClient(app)
        started = contribute(guest, wishlist["item_ids"][0], 1000, settle=False)
        # checkout above ran in sandbox mode
        monkeypatch.setattr(gateway, "secret_key", "sk_test_secret")
        body = self._event("charge.success", started["payment_reference"])

        res = guest.post("/payments/webhook", content=body, headers={"x-paystack-signature": "bad"})
        assert res.status_code == 401
        assert res.json()["detail"] == "Invalid webhook signature"

        signature = hmac.new(b"sk_test_secret", body, hashlib.sha512).hexdigest()
        res = guest.post("/payments/webhook", content=body, headers={"x-paystack-signature": signature})
        assert res.status_code == 200

    def test_unsigned_rejected_outside_local(self, monkeypatch):
        monkeypatch.setattr(settings, "environment", "production")
        res = TestClient(app).post("/payments/webhook", content=self._event("charge.success", "CONT-x"))

        assert res.status_code == 401
