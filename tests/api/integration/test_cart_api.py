"""Cart, product and health endpoints via TestClient."""

import pytest
from orderflow.cart.items import AddToCart, CreateCart
from protean import current_domain

CUSTOMER = {"Authorization": "Bearer customer-token"}
OTHER = {"Authorization": "Bearer other-token"}
ADMIN = {"Authorization": "Bearer admin-token"}


class TestHealth:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["domain"] == "orderflow"
        assert body["payment_methods"] == ["cod", "razorpay"]

    def test_payment_methods_need_no_auth(self, client):
        assert client.get("/payments/methods").json() == {"methods": ["cod", "razorpay"]}


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.post("/carts", json={})
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_unknown_token(self, client):
        assert client.post("/carts", json={}, headers={"Authorization": "Bearer nope"}).status_code == 401

    def test_wrong_scheme(self, client):
        assert client.post("/carts", json={}, headers={"Authorization": "Basic customer-token"}).status_code == 401


class TestProducts:
    def test_register_with_stock(self, client, shop):
        response = client.post(
            "/products",
            json={"product_id": "prod-lamp", "name": "Lamp", "sku": "LAMP", "price": 150000, "stock": 7},
            headers=ADMIN,
        )
        assert response.status_code == 201
        assert response.json() == {"product_id": "prod-lamp"}
        assert shop.level("prod-lamp") == 7

    def test_register_variants(self, client, shop):
        response = client.post(
            "/products",
            json={
                "name": "Tee",
                "sku": "TEE",
                "price": 80000,
                "variants": [{"sku": "TEE-M", "options": "Size: M", "stock": 3}, {"sku": "TEE-L"}],
            },
            headers=ADMIN,
        )
        product_id = response.json()["product_id"]
        assert shop.level(product_id, "TEE-M") == 3
        assert shop.level(product_id, "TEE-L") == 0

    def test_customers_cannot_register_products(self, client):
        response = client.post("/products", json={"name": "Lamp", "sku": "LAMP", "price": 1}, headers=CUSTOMER)
        assert response.status_code == 403


class TestCarts:
    def test_add_and_read(self, client, store):
        product_id = store.product(price=42000)
        cart_id = store.cart((product_id, 2))

        body = client.get(f"/carts/{cart_id}", headers=CUSTOMER).json()
        assert body["status"] == "active"
        assert body["subtotal"] == 84000
        assert body["items"][0]["price_at_add"] == 42000

    def test_update_remove_and_clear(self, client, store):
        first, second = store.product(name="Mug"), store.product(name="Bowl")
        cart_id = store.cart((first, 1), (second, 1))
        items = client.get(f"/carts/{cart_id}", headers=CUSTOMER).json()["items"]

        updated = client.put(f"/carts/{cart_id}/items/{items[0]['item_id']}", json={"quantity": 3}, headers=CUSTOMER)
        assert updated.json()["items"][0]["quantity"] == 3

        removed = client.delete(f"/carts/{cart_id}/items/{items[1]['item_id']}", headers=CUSTOMER)
        assert len(removed.json()["items"]) == 1

        cleared = client.delete(f"/carts/{cart_id}/items", headers=CUSTOMER)
        assert cleared.json()["items"] == []

    def test_quantity_limit(self, client, store):
        product_id = store.product()
        cart_id = store.cart()
        response = client.post(
            f"/carts/{cart_id}/items", json={"product_id": product_id, "quantity": 11}, headers=CUSTOMER
        )
        assert response.status_code == 400

    def test_discount(self, client, store):
        product_id = store.product(price=50000)
        cart_id = store.cart((product_id, 1))
        response = client.post(f"/carts/{cart_id}/discount", json={"code": "save5", "amount": 5000}, headers=CUSTOMER)
        assert response.json()["discount_code"] == "SAVE5"

        removed = client.delete(f"/carts/{cart_id}/discount", headers=CUSTOMER)
        assert removed.status_code == 200
        assert (removed.json()["discount_code"], removed.json()["discount_amount"]) == (None, 0)

    def test_removing_a_missing_discount(self, client, store):
        cart_id = store.cart()
        assert client.delete(f"/carts/{cart_id}/discount", headers=CUSTOMER).status_code == 400

    def test_unknown_product(self, client, store):
        cart_id = store.cart()
        response = client.post(f"/carts/{cart_id}/items", json={"product_id": "ghost", "quantity": 1}, headers=CUSTOMER)
        assert response.status_code == 400

    def test_other_customers_cart(self, client, store):
        cart_id = store.cart()
        assert client.get(f"/carts/{cart_id}", headers=OTHER).status_code == 403

    def test_unknown_cart(self, client):
        assert client.get("/carts/missing", headers=CUSTOMER).status_code == 404


@pytest.fixture()
def guest_cart():
    """A cart a shopper filled before signing in, keyed by their session."""

    def build(*lines, session_id="sess-guest"):
        cart_id = current_domain.process(CreateCart(session_id=session_id), asynchronous=False)
        for product_id, quantity in lines:
            current_domain.process(AddToCart(cart_id=cart_id, product_id=product_id, quantity=quantity), asynchronous=False)
        return cart_id

    return build


class TestGuestCartMerge:
    def test_merge_after_sign_in(self, client, store, guest_cart):
        mug, lamp = store.product(name="Mug", price=30000), store.product(name="Lamp", price=150000)
        cart_id = store.cart((mug, 1))
        guest_id = guest_cart((mug, 2), (lamp, 1))

        response = client.post(
            f"/carts/{cart_id}/merge",
            json={"guest_cart_id": guest_id, "session_id": "sess-guest"},
            headers=CUSTOMER,
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert [(item["product_id"], item["quantity"]) for item in body["items"]] == [(mug, 3), (lamp, 1)]
        assert body["subtotal"] == 240000

    def test_merged_guest_cart_cannot_be_merged_again(self, client, store, guest_cart):
        mug = store.product(name="Mug")
        guest_id = guest_cart((mug, 1))
        payload = {"guest_cart_id": guest_id, "session_id": "sess-guest"}

        assert client.post(f"/carts/{store.cart()}/merge", json=payload, headers=CUSTOMER).status_code == 200
        assert client.post(f"/carts/{store.cart()}/merge", json=payload, headers=CUSTOMER).status_code == 400

    def test_wrong_session_is_forbidden(self, client, store, guest_cart):
        guest_id = guest_cart((store.product(), 1))
        response = client.post(
            f"/carts/{store.cart()}/merge",
            json={"guest_cart_id": guest_id, "session_id": "sess-someone-else"},
            headers=CUSTOMER,
        )
        assert response.status_code == 403

    def test_quantity_limit_applies_to_the_sum(self, client, store, guest_cart):
        mug = store.product(name="Mug")
        cart_id = store.cart((mug, 6))
        guest_id = guest_cart((mug, 5))

        response = client.post(
            f"/carts/{cart_id}/merge",
            json={"guest_cart_id": guest_id, "session_id": "sess-guest"},
            headers=CUSTOMER,
        )

        assert response.status_code == 400
        assert client.get(f"/carts/{cart_id}", headers=CUSTOMER).json()["items"][0]["quantity"] == 6
