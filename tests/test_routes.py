from fastapi.testclient import TestClient

from storefront.config import SESSION_COOKIE_NAME
from storefront.services.store import StoreResult
from storefront.sync import keys

VALID_CARD = {
    "card_number": "4242 4242 4242 4242",
    "expiry": "12/29",
    "cvv": "123",
    "cardholder_name": "Ann Example",
}


def _create_product(client, headers, **overrides):
    body = {
        "name": "Desk lamp",
        "description": "Warm light",
        "price": "12.50",
        "image_urls": ["https://cdn.example/lamp.png"],
        "category": "Home",
    }
    body.update(overrides)
    response = client.post("/products", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestRouteGuard:

    def test_health_is_public(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_protected_pages_redirect_to_login(self, client):
        for path in ("/dashboard", "/cart", "/checkout"):
            response = client.get(path)
            assert response.status_code == 303
            assert response.headers["location"] == "/login"

    def test_invalid_token_redirects_to_login(self, client):
        response = client.get("/dashboard", headers={"Authorization": "Bearer forged"})
        assert response.status_code == 303

    def test_signed_in_user_sent_to_dashboard(self, client, ann):
        response = client.get("/login", headers=ann)
        assert response.status_code == 303
        assert response.headers["location"] == "/dashboard"

    def test_session_cookie_accepted(self, app):
        client = TestClient(app, follow_redirects=False, cookies={SESSION_COOKIE_NAME: "tok-ann"})
        response = client.get("/dashboard")
        assert response.status_code == 200

    def test_api_routes_return_401_without_session(self, client):
        response = client.delete("/products/anything")
        assert response.status_code == 401


class TestAuthRoutes:

    def test_login_sets_cookie(self, client):
        response = client.post("/login", json={"email": "ann@example.com", "password": "secret1"})

        assert response.status_code == 200
        assert response.json()["user_id"] == "ann"
        assert response.cookies[SESSION_COOKIE_NAME] == "tok-ann"

    def test_bad_credentials(self, client):
        response = client.post("/login", json={"email": "ann@example.com", "password": "wrong-pass"})
        assert response.status_code == 401

    def test_short_password_rejected(self, client):
        response = client.post("/login", json={"email": "ann@example.com", "password": "123"})
        assert response.status_code == 422

    def test_register_pending_confirmation(self, client):
        response = client.post("/register", json={"email": "cy@example.com", "password": "secret1"})

        assert response.status_code == 200
        assert response.json()["access_token"] is None
        assert "confirm" in response.json()["message"]

    def test_logout_drops_cached_user_data(self, app, client, ann):
        client.get("/cart", headers=ann)
        assert app.state.query_client.get_query_state(keys.cart_list("ann")) is not None

        response = client.post("/logout", headers=ann)

        assert response.status_code == 200
        assert app.state.query_client.get_query_state(keys.cart_list("ann")) is None


class TestProductRoutes:

    def test_create_and_list_on_dashboard(self, client, ann):
        product = _create_product(client, ann)

        response = client.get("/dashboard", headers=ann)

        assert response.status_code == 200
        body = response.json()
        assert [p["id"] for p in body["products"]["items"]] == [product["id"]]
        assert body["category"] == "All"
        assert body["products"]["has_more"] is False
        assert len(product["share_id"]) == 10

    def test_dashboard_unknown_category(self, client, ann):
        response = client.get("/dashboard", params={"category": "Groceries"}, headers=ann)
        assert response.status_code == 400

    def test_create_requires_image(self, client, ann):
        response = client.post("/products", json={
            "name": "Lamp", "price": "1.00", "image_urls": []
        }, headers=ann)
        assert response.status_code == 422

    def test_detail_hidden_from_other_users(self, client, ann, bo):
        product = _create_product(client, ann)

        assert client.get(f"/products/{product['id']}", headers=ann).status_code == 200
        assert client.get(f"/products/{product['id']}", headers=bo).status_code == 404

    def test_only_owner_can_update_or_delete(self, client, ann, bo):
        product = _create_product(client, ann)

        assert client.patch(f"/products/{product['id']}", json={"name": "Mine"}, headers=bo).status_code == 404
        assert client.delete(f"/products/{product['id']}", headers=bo).status_code == 404

        response = client.patch(f"/products/{product['id']}", json={"name": "Floor lamp"}, headers=ann)
        assert response.status_code == 200
        assert response.json()["name"] == "Floor lamp"

        assert client.delete(f"/products/{product['id']}", headers=ann).status_code == 204
        assert client.get(f"/products/{product['id']}", headers=ann).status_code == 404

    def test_share_link_is_public(self, client, ann):
        product = _create_product(client, ann)

        response = client.get(f"/p/{product['share_id']}")

        assert response.status_code == 200
        assert response.json()["name"] == "Desk lamp"
        assert client.get("/p/unknown123").status_code == 404

    def test_like_toggle(self, client, ann):
        product = _create_product(client, ann)

        first = client.post(f"/products/{product['id']}/like", headers=ann).json()
        second = client.post(f"/products/{product['id']}/like", headers=ann).json()

        assert first == {"product_id": product["id"], "liked": True}
        assert second["liked"] is False
        assert client.post("/products/missing/like", headers=ann).status_code == 404

    def test_image_upload(self, client, ann):
        response = client.post(
            "/products/images",
            files={"file": ("lamp.png", b"\x89PNG", "image/png")},
            headers=ann,
        )

        assert response.status_code == 201
        assert response.json()["url"].endswith(".png")
        assert "/storage/v1/object/public/products/ann/" in response.json()["url"]

    def test_non_image_upload_rejected(self, client, ann):
        response = client.post(
            "/products/images",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            headers=ann,
        )
        assert response.status_code == 400


class TestCartRoutes:

    def test_add_update_remove(self, client, ann):
        product = _create_product(client, ann, price="9.99")

        added = client.post("/cart/items", json={"product_id": product["id"], "quantity": 2}, headers=ann)
        assert added.status_code == 201
        row_id = added.json()["id"]

        cart = client.get("/cart", headers=ann).json()
        assert cart["total"] == "19.98"

        ignored = client.patch(f"/cart/items/{row_id}", json={"quantity": 0}, headers=ann)
        assert ignored.json()["items"][0]["quantity"] == 2

        updated = client.patch(f"/cart/items/{row_id}", json={"quantity": 3}, headers=ann)
        assert updated.json()["total"] == "29.97"

        assert client.delete(f"/cart/items/{row_id}", headers=ann).status_code == 204
        assert client.get("/cart", headers=ann).json()["items"] == []

    def test_unknown_product(self, client, ann):
        response = client.post("/cart/items", json={"product_id": "missing"}, headers=ann)
        assert response.status_code == 404

    def test_other_users_row_not_found(self, client, ann, bo):
        product = _create_product(client, ann)
        row_id = client.post("/cart/items", json={"product_id": product["id"]}, headers=ann).json()["id"]

        assert client.delete(f"/cart/items/{row_id}", headers=bo).status_code == 404

    def test_dashboard_marks_products_in_cart(self, client, ann):
        product = _create_product(client, ann)
        client.post("/cart/items", json={"product_id": product["id"]}, headers=ann)

        body = client.get("/dashboard", headers=ann).json()

        assert body["cart_product_ids"] == [product["id"]]

    def test_store_failure_maps_to_bad_gateway(self, app, client, ann):
        app.state.cart_view.cart_service.get_cart_items = lambda user_id: StoreResult(error=RuntimeError("down"))

        response = client.get("/cart", headers=ann)

        assert response.status_code == 502


class TestCheckoutRoutes:

    def test_empty_cart_redirects_to_cart(self, client, ann):
        response = client.get("/checkout", headers=ann)
        assert response.status_code == 303
        assert response.headers["location"] == "/cart"

    def test_empty_cart_cannot_be_paid(self, client, ann):
        response = client.post("/checkout", json=VALID_CARD, headers=ann)
        assert response.status_code == 400

    def test_card_details_validated(self, client, ann):
        for field, value in (
            ("card_number", "4242"),
            ("expiry", "13/29"),
            ("cvv", "12a"),
            ("cardholder_name", "Ann 2nd"),
        ):
            response = client.post("/checkout", json={**VALID_CARD, field: value}, headers=ann)
            assert response.status_code == 422, field

    def test_checkout_clears_cart(self, client, ann):
        product = _create_product(client, ann, price="10.00")
        client.post("/cart/items", json={"product_id": product["id"], "quantity": 2}, headers=ann)

        summary = client.get("/checkout", headers=ann)
        assert summary.status_code == 200
        assert summary.json()["total"] == "20.00"

        response = client.post("/checkout", json=VALID_CARD, headers=ann)

        assert response.status_code == 200
        assert response.json() == {"message": "Payment successful", "total_amount": "20.00", "item_count": 2}
        assert client.get("/cart", headers=ann).json()["items"] == []
