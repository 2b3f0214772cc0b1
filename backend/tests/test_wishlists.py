"""
Tests for wishlist creation, sharing links, expiry and statistics.
"""
from datetime import date, datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlalchemy import update

from wishfund.main import app
from wishfund.models.models import Wishlist


class TestCreateWishlist:
    def test_create_wishlist(self, make_user, wishlist_payload, catalog):
        client, profile = make_user()
        res = client.post("/wishlists", json=wishlist_payload(emoji="🎉"))

        assert res.status_code == 201
        body = res.json()
        assert body["user_id"] == profile["id"]
        assert body["status"] == "active"
        assert body["unique_link"].startswith("birthday-party-")
        assert body["share_url"].endswith(body["unique_link"])
        assert [item["name"] for item in body["items"]] == ["Headphones", "Smart Watch"]
        assert [item["priority"] for item in body["items"]] == [1, 2]
        assert body["items"][0]["amount_needed"] == 30000

        celebration = date.fromisoformat(body["celebration_date"])
        expires_at = datetime.fromisoformat(body["expires_at"])
        assert expires_at.date() == celebration + timedelta(days=7)

    def test_name_defaults_to_event(self, make_user, wishlist_payload):
        client, _ = make_user()
        res = client.post("/wishlists", json=wishlist_payload(name=None))

        assert res.json()["name"] == "Birthday Party"

    def test_quantity_multiplies_price(self, make_user, wishlist_payload, catalog):
        client, _ = make_user()
        payload = wishlist_payload(items=[{"curated_item_id": catalog["item_ids"][0], "quantity": 3}])
        res = client.post("/wishlists", json=payload)

        assert res.json()["items"][0]["price"] == 90000
        assert res.json()["items"][0]["quantity"] == 3

    def test_past_date_rejected(self, make_user, wishlist_payload):
        client, _ = make_user()
        yesterday = (date.today() - timedelta(days=1)).isoformat()
        res = client.post("/wishlists", json=wishlist_payload(celebration_date=yesterday))

        assert res.status_code == 400
        assert res.json()["detail"] == "Celebration date cannot be in the past"

    def test_empty_items_rejected(self, make_user, wishlist_payload):
        client, _ = make_user()
        res = client.post("/wishlists", json=wishlist_payload(items=[]))

        assert res.status_code == 400
        assert res.json()["detail"] == "At least one item is required"

    def test_duplicate_items_rejected(self, make_user, wishlist_payload, catalog):
        client, _ = make_user()
        first = catalog["item_ids"][0]
        res = client.post(
            "/wishlists",
            json=wishlist_payload(items=[{"curated_item_id": first}, {"curated_item_id": first}]),
        )

        assert res.status_code == 400
        assert res.json()["detail"] == "Headphones already exists in the wishlist"

    def test_unknown_curated_item(self, make_user, wishlist_payload):
        client, _ = make_user()
        res = client.post("/wishlists", json=wishlist_payload(items=[{"curated_item_id": 999}]))

        assert res.status_code == 404
        assert res.json()["detail"] == "Curated item not found"

    def test_create_from_template(self, make_admin, make_user, wishlist_payload, catalog):
        admin, _ = make_admin()
        template = admin.post(
            "/templates", json={"name": "Basics", "curated_item_ids": catalog["item_ids"]}
        ).json()
        client, _ = make_user()
        res = client.post("/wishlists", json=wishlist_payload(items=None, template_id=template["id"]))

        assert res.status_code == 201
        assert len(res.json()["items"]) == 3

    def test_requires_auth(self, wishlist_payload):
        res = TestClient(app).post("/wishlists", json=wishlist_payload())

        assert res.status_code == 401

    def test_popularity_increases(self, make_user, wishlist_payload, catalog):
        client, _ = make_user()
        client.post("/wishlists", json=wishlist_payload())
        items = {item["id"]: item for item in TestClient(app).get("/curated-items").json()["items"]}

        assert items[catalog["item_ids"][0]]["popularity"] == 6


class TestViewWishlist:
    def test_my_wishlists(self, make_user, wishlist_payload):
        client, _ = make_user()
        client.post("/wishlists", json=wishlist_payload(name="First"))
        client.post("/wishlists", json=wishlist_payload(name="Second"))

        names = [w["name"] for w in client.get("/wishlists/my").json()]
        assert names == ["Second", "First"]

    def test_public_link_counts_views(self, make_user, wishlist_payload):
        client, _ = make_user()
        slug = client.post("/wishlists", json=wishlist_payload()).json()["unique_link"]
        guest = TestClient(app)

        assert guest.get(f"/wishlists/link/{slug}").status_code == 200
        res = guest.get(f"/wishlists/link/{slug}")
        assert res.json()["views_count"] == 2
        assert res.json()["owner_name"] is not None

    def test_unknown_link(self):
        res = TestClient(app).get("/wishlists/link/nope-123456")

        assert res.status_code == 404
        assert res.json()["detail"] == "Wishlist not found"

    def test_item_link_counts_views(self, make_user, wishlist_payload):
        client, _ = make_user()
        item = client.post("/wishlists", json=wishlist_payload()).json()["items"][0]
        res = TestClient(app).get(f"/wishlists/items/link/{item['unique_link']}")

        assert res.status_code == 200
        assert res.json()["views_count"] == 1

    def test_private_wishlist_hidden_from_others(self, make_user, wishlist_payload):
        owner, _ = make_user()
        wishlist_id = owner.post("/wishlists", json=wishlist_payload(is_public=False)).json()["id"]
        other, _ = make_user()

        assert owner.get(f"/wishlists/{wishlist_id}").status_code == 200
        assert other.get(f"/wishlists/{wishlist_id}").status_code == 404
        assert TestClient(app).get(f"/wishlists/{wishlist_id}").status_code == 404

    def test_private_draft_link_unavailable(self, make_user, wishlist_payload):
        client, _ = make_user()
        body = client.post("/wishlists", json=wishlist_payload(is_public=False)).json()
        assert client.patch(f"/wishlists/{body['id']}", json={"status": "draft"}).status_code == 200

        res = TestClient(app).get(f"/wishlists/link/{body['unique_link']}")
        assert res.status_code == 403
        assert res.json()["detail"] == "This wishlist is not available"

    def test_expired_on_read(self, make_user, wishlist_payload, db_session):
        client, _ = make_user()
        wishlist_id = client.post("/wishlists", json=wishlist_payload()).json()["id"]
        db_session.execute(
            update(Wishlist)
            .where(Wishlist.id == wishlist_id)
            .values(expires_at=datetime.now(timezone.utc) - timedelta(hours=1))
        )
        db_session.commit()

        assert client.get(f"/wishlists/{wishlist_id}").json()["status"] == "expired"
        assert client.get("/wishlists/my").json()[0]["status"] == "expired"


class TestUpdateWishlist:
    def test_owner_updates(self, make_user, wishlist_payload):
        client, _ = make_user()
        wishlist_id = client.post("/wishlists", json=wishlist_payload()).json()["id"]
        res = client.patch(f"/wishlists/{wishlist_id}", json={"name": "Renamed", "is_public": False})

        assert res.status_code == 200
        assert res.json()["name"] == "Renamed"
        assert res.json()["is_public"] is False

    def test_other_user_cannot_update(self, make_user, wishlist_payload):
        owner, _ = make_user()
        wishlist_id = owner.post("/wishlists", json=wishlist_payload()).json()["id"]
        other, _ = make_user()
        res = other.patch(f"/wishlists/{wishlist_id}", json={"name": "Mine now"})

        assert res.status_code == 403
        assert res.json()["detail"] == "Unauthorized to modify this wishlist"

    def test_add_items(self, make_user, wishlist_payload, catalog):
        client, _ = make_user()
        wishlist_id = client.post("/wishlists", json=wishlist_payload()).json()["id"]
        res = client.post(
            f"/wishlists/{wishlist_id}/items",
            json={"items": [{"curated_item_id": catalog["item_ids"][2]}]},
        )

        assert res.status_code == 200
        items = res.json()["items"]
        assert len(items) == 3
        assert items[-1]["priority"] == 3

        res = client.post(
            f"/wishlists/{wishlist_id}/items",
            json={"items": [{"curated_item_id": catalog["item_ids"][0]}]},
        )
        assert res.status_code == 400
        assert res.json()["detail"] == "Headphones already exists in the wishlist"


class TestStats:
    def test_wishlist_stats_owner_only(self, make_user, wishlist_payload):
        owner, _ = make_user()
        wishlist_id = owner.post("/wishlists", json=wishlist_payload()).json()["id"]

        res = owner.get(f"/wishlists/{wishlist_id}/stats")
        assert res.status_code == 200
        stats = res.json()
        assert stats["items_count"] == 2
        assert stats["total_value"] == 80000
        assert stats["completion_percentage"] == 0
        assert stats["top_contributors"] == []

        other, _ = make_user()
        res = other.get(f"/wishlists/{wishlist_id}/stats")
        assert res.status_code == 403
        assert res.json()["detail"] == "Unauthorized to view this wishlist"

    def test_item_stats_public(self, make_user, wishlist_payload):
        owner, _ = make_user()
        item_id = owner.post("/wishlists", json=wishlist_payload()).json()["items"][0]["id"]
        res = TestClient(app).get(f"/wishlists/items/{item_id}/stats")

        assert res.status_code == 200
        assert res.json()["remaining_amount"] == 30000
        assert res.json()["funding_percentage"] == 0

    def test_item_balance_owner_only(self, make_user, wishlist_payload):
        owner, _ = make_user()
        item_id = owner.post("/wishlists", json=wishlist_payload()).json()["items"][0]["id"]

        assert owner.get(f"/wishlists/items/{item_id}/balance").json()["available_balance"] == 0
        other, _ = make_user()
        res = other.get(f"/wishlists/items/{item_id}/balance")
        assert res.status_code == 403
        assert res.json()["detail"] == "Unauthorized to view this item"
