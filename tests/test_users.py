"""
Tests for the shopper routes: orders, cart, wishlist, addresses and reviews.
"""
import pytest
from bson import ObjectId


@pytest.fixture
def shop(make_user, make_product):
    seller_id, _ = make_user(role="seller")
    user_id, headers = make_user(role="user")
    product_id = make_product(seller_id, price=20.0, stock=5)
    return user_id, headers, product_id


class TestOrders:
    def test_place_order(self, client, shop, mongo_db):
        user_id, headers, product_id = shop
        res = client.post(f"/api/me/orders/{product_id}", json={"quantity": 2, "payment_mode": "cod"}, headers=headers)
        assert res.status_code == 201
        order = res.json()["order"]
        assert order["total_amount"] == 40.0
        assert order["order_status"] == "pending"
        assert order["payment_status"] is False

        product = mongo_db["product"].find_one({"_id": ObjectId(product_id)})
        assert product["stock"] == 3

        history = client.get("/api/me/orders", headers=headers).json()["order_history"]
        assert [o["order_id"] for o in history] == [order["order_id"]]

    def test_order_more_than_stock(self, client, shop, mongo_db):
        _, headers, product_id = shop
        res = client.post(f"/api/me/orders/{product_id}", json={"quantity": 6}, headers=headers)
        assert res.status_code == 400
        assert mongo_db["product"].find_one({"_id": ObjectId(product_id)})["stock"] == 5

    def test_order_invalidates_product_cache(self, client, shop, cache, redis_client):
        _, headers, product_id = shop
        cache.set_json(cache.product_details_key(product_id), {"stale": True}, 60)
        client.post(f"/api/me/orders/{product_id}", json={"quantity": 1}, headers=headers)
        assert redis_client.exists(cache.product_details_key(product_id)) == 0

    def test_order_unknown_product(self, client, make_user):
        _, headers = make_user(role="user")
        res = client.post("/api/me/orders/64b7f0c2a1b2c3d4e5f60718", json={"quantity": 1}, headers=headers)
        assert res.status_code == 404

    def test_seller_cannot_order(self, client, make_user, make_product):
        seller_id, seller_headers = make_user(role="seller")
        product_id = make_product(seller_id)
        res = client.post(f"/api/me/orders/{product_id}", json={"quantity": 1}, headers=seller_headers)
        assert res.status_code == 403

    def test_cancel_restores_stock(self, client, shop, mongo_db):
        _, headers, product_id = shop
        order = client.post(f"/api/me/orders/{product_id}", json={"quantity": 2}, headers=headers).json()["order"]

        res = client.patch(f"/api/me/orders/{order['order_id']}/cancel", headers=headers)
        assert res.status_code == 200
        assert mongo_db["product"].find_one({"_id": ObjectId(product_id)})["stock"] == 5

        history = client.get("/api/me/orders", headers=headers).json()["order_history"]
        assert history[0]["order_status"] == "cancelled"

        again = client.patch(f"/api/me/orders/{order['order_id']}/cancel", headers=headers)
        assert again.status_code == 400

    def test_cancel_unknown_order(self, client, shop):
        _, headers, _ = shop
        assert client.patch("/api/me/orders/nope/cancel", headers=headers).status_code == 404

    def test_shipped_order_cannot_be_cancelled(self, client, shop, mongo_db):
        user_id, headers, product_id = shop
        order = client.post(f"/api/me/orders/{product_id}", json={"quantity": 2}, headers=headers).json()["order"]
        for state in ("shipped", "delivered"):
            mongo_db["user"].update_one(
                {"_id": ObjectId(user_id), "order_history.order_id": order["order_id"]},
                {"$set": {"order_history.$.order_status": state}},
            )
            res = client.patch(f"/api/me/orders/{order['order_id']}/cancel", headers=headers)
            assert res.status_code == 400
            assert state in res.json()["detail"]
        assert mongo_db["product"].find_one({"_id": ObjectId(product_id)})["stock"] == 3

    def test_racing_cancels_restock_once(self, client, shop, mongo_db, monkeypatch):
        user_id, headers, product_id = shop
        order = client.post(f"/api/me/orders/{product_id}", json={"quantity": 2}, headers=headers).json()["order"]

        # Both requests see the order as pending
        snapshot = mongo_db["user"].find_one({"_id": ObjectId(user_id)})
        monkeypatch.setattr("routers.users.get_user_or_404", lambda db, uid: snapshot)

        first = client.patch(f"/api/me/orders/{order['order_id']}/cancel", headers=headers)
        second = client.patch(f"/api/me/orders/{order['order_id']}/cancel", headers=headers)
        assert (first.status_code, second.status_code) == (200, 400)
        assert mongo_db["product"].find_one({"_id": ObjectId(product_id)})["stock"] == 5


class TestCart:
    def test_add_show_remove(self, client, shop):
        _, headers, product_id = shop

        res = client.put(f"/api/me/cart/{product_id}", headers=headers)
        assert res.status_code == 200
        assert res.json()["message"] == "Product added to cart"

        client.put(f"/api/me/cart/{product_id}", headers=headers)
        cart = client.get("/api/me/cart", headers=headers).json()["cart"]
        assert len(cart) == 1
        assert cart[0]["quantity"] == 2
        assert cart[0]["product"]["id"] == product_id

        res = client.delete(f"/api/me/cart/{product_id}", headers=headers)
        assert res.status_code == 200
        assert res.json()["cart"] == []

    def test_quantity_is_incremented_in_place(self, client, shop, make_user, make_product, mongo_db):
        user_id, headers, product_id = shop
        seller_id, _ = make_user(role="seller")
        other_id = make_product(seller_id, name="Backpack")

        client.put(f"/api/me/cart/{product_id}", headers=headers)
        client.put(f"/api/me/cart/{other_id}", headers=headers)
        client.put(f"/api/me/cart/{product_id}", headers=headers)

        cart = mongo_db["user"].find_one({"_id": ObjectId(user_id)})["cart"]
        assert [(line["product_id"], line["quantity"]) for line in cart] == [(product_id, 2), (other_id, 1)]

    def test_add_unknown_product(self, client, shop):
        _, headers, _ = shop
        assert client.put("/api/me/cart/64b7f0c2a1b2c3d4e5f60718", headers=headers).status_code == 404


class TestWishlist:
    def test_add_is_idempotent(self, client, shop):
        _, headers, product_id = shop
        res = client.put(f"/api/me/wishlist/{product_id}", headers=headers)
        assert res.status_code == 200
        assert res.json()["message"] == "Added to the wishlist"
        client.put(f"/api/me/wishlist/{product_id}", headers=headers)

        wishlist = client.get("/api/me/wishlist", headers=headers).json()["wishlist"]
        assert len(wishlist) == 1
        assert wishlist[0]["product"]["name"] == "Trolley"

        res = client.delete(f"/api/me/wishlist/{product_id}", headers=headers)
        assert res.json()["wishlist"] == []


class TestAddresses:
    def test_new_default_replaces_old_default(self, client, shop):
        _, headers, _ = shop
        base = {"street": "1 Main St", "city": "Pune", "state": "MH", "pincode": "411001"}
        client.post("/api/me/addresses", json={**base, "is_default": True}, headers=headers)
        res = client.post("/api/me/addresses", json={**base, "street": "2 Side St", "is_default": True}, headers=headers)
        assert res.status_code == 201

        addresses = client.get("/api/me/addresses", headers=headers).json()["addresses"]
        assert [a["is_default"] for a in addresses] == [False, True]
        assert addresses[0]["country"] == "India"


class TestReviews:
    def test_second_review_replaces_first(self, client, shop):
        user_id, headers, product_id = shop
        client.patch(f"/api/me/reviews/{product_id}", json={"rating": 2, "feedback": "meh"}, headers=headers)
        res = client.patch(f"/api/me/reviews/{product_id}", json={"rating": 5, "feedback": "great"}, headers=headers)
        assert res.status_code == 200
        assert res.json()["message"] == "Review added"

        reviews = res.json()["product"]["reviews"]
        assert len(reviews) == 1
        assert reviews[0]["rating"] == 5
        assert reviews[0]["rated_by"] == user_id

    def test_reviews_from_different_users_are_kept(self, client, shop, make_user):
        first_id, first_headers, product_id = shop
        second_id, second_headers = make_user(role="user")
        client.patch(f"/api/me/reviews/{product_id}", json={"rating": 3, "feedback": "ok"}, headers=first_headers)
        res = client.patch(f"/api/me/reviews/{product_id}", json={"rating": 4, "feedback": "nice"}, headers=second_headers)

        reviews = res.json()["product"]["reviews"]
        assert sorted(r["rated_by"] for r in reviews) == sorted([first_id, second_id])

    def test_review_invalidates_details(self, client, shop, cache, redis_client):
        _, headers, product_id = shop
        assert client.get(f"/api/products/{product_id}/details").json()["product"]["reviews_count"] == 0
        assert redis_client.exists(cache.product_details_key(product_id)) == 1

        client.patch(f"/api/me/reviews/{product_id}", json={"rating": 5, "feedback": "great"}, headers=headers)
        assert redis_client.exists(cache.product_details_key(product_id)) == 0

        res = client.get(f"/api/products/{product_id}/details").json()
        assert res["cached"] is False
        assert res["product"]["reviews_count"] == 1

    def test_rating_bounds(self, client, shop):
        _, headers, product_id = shop
        res = client.patch(f"/api/me/reviews/{product_id}", json={"rating": 6}, headers=headers)
        assert res.status_code == 422
