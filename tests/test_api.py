"""End-to-end flows through the HTTP surface."""

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def _create_product(client, headers, name="Kopi Robusta", price="1000", stock="2", files=None):
    response = client.post(
        "/products",
        data={"name": name, "price": price, "stock": stock, "description": "Kopi asli Garut"},
        files=files,
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["product"]


class TestProductEndpoints:
    def test_admin_creates_and_anyone_reads(self, client, admin, customer):
        product = _create_product(client, admin[1])
        assert product["stock"] == 2
        assert product["price"] == 1000

        response = client.get(f"/products/{product['id']}", headers=customer[1])
        assert response.status_code == 200
        assert response.json()["product"]["name"] == "Kopi Robusta"
        assert len(client.get("/products", headers=customer[1]).json()["products"]) == 1

    def test_reading_requires_login(self, client):
        assert client.get("/products").status_code == 401

    def test_user_cannot_create(self, client, customer):
        response = client.post("/products", data={"name": "X", "price": "1"}, headers=customer[1])
        assert response.status_code == 403

    def test_negative_stock_rejected(self, client, admin):
        response = client.post("/products", data={"name": "X", "price": "1", "stock": "-1"}, headers=admin[1])
        assert response.status_code == 400

    def test_update_and_delete(self, client, admin):
        product = _create_product(client, admin[1])
        response = client.put(f"/products/{product['id']}", data={"stock": "9"}, headers=admin[1])
        assert response.status_code == 200
        assert response.json()["product"]["stock"] == 9
        assert response.json()["product"]["name"] == "Kopi Robusta"

        response = client.delete(f"/products/{product['id']}", headers=admin[1])
        assert response.status_code == 200
        assert "warning" not in response.json()
        assert client.get(f"/products/{product['id']}", headers=admin[1]).status_code == 404

    def test_image_upload_is_served_to_logged_in_users(self, client, admin, customer, upload_dir):
        product = _create_product(client, admin[1], files={"image": ("kopi.png", PNG, "image/png")})
        filename = product["image"]
        assert filename.startswith("product-") and filename.endswith(".png")
        assert (upload_dir / "products" / filename).exists()

        assert client.get(f"/uploads/products/{filename}").status_code == 401
        response = client.get(f"/uploads/products/{filename}", headers=customer[1])
        assert response.status_code == 200
        assert response.content == PNG

        client.delete(f"/products/{product['id']}", headers=admin[1])
        assert not (upload_dir / "products" / filename).exists()

    def test_non_image_upload_rejected(self, client, admin):
        response = client.post(
            "/products",
            data={"name": "X", "price": "1"},
            files={"image": ("notes.txt", b"hello", "text/plain")},
            headers=admin[1],
        )
        assert response.status_code == 400
        assert client.get("/products", headers=admin[1]).json()["products"] == []

    def test_unknown_upload(self, client, customer):
        assert client.get("/uploads/products/missing.png", headers=customer[1]).status_code == 404
        assert client.get("/uploads/secrets/x.png", headers=customer[1]).status_code == 404


class TestShoppingFlow:
    def test_cart_to_order(self, client, admin, customer):
        product = _create_product(client, admin[1], price="1000", stock="2")
        headers = customer[1]

        empty = client.get("/cart", headers=headers).json()
        assert empty["cart"] == {"items": [], "total": 0}

        response = client.post("/cart", json={"product_id": product["id"], "quantity": 2}, headers=headers)
        assert response.status_code == 200
        assert response.json()["cart"]["total"] == 2000

        response = client.post("/orders/checkout", headers=headers)
        assert response.status_code == 201
        order = response.json()["order"]
        assert order["total"] == 2000
        assert order["status"] == "pending"
        assert order["items"][0]["product_id"] == product["id"]

        assert client.get(f"/products/{product['id']}", headers=headers).json()["product"]["stock"] == 0
        assert client.get("/cart", headers=headers).json()["cart"] == {"items": [], "total": 0}

        mine = client.get("/orders", headers=headers).json()["orders"]
        assert [o["id"] for o in mine] == [order["id"]]
        assert client.get(f"/orders/{order['id']}", headers=headers).status_code == 200

    def test_cart_item_updates(self, client, admin, customer):
        product = _create_product(client, admin[1], price="500", stock="5")
        headers = customer[1]
        cart = client.post("/cart", json={"product_id": product["id"], "quantity": 1}, headers=headers).json()["cart"]
        item_id = cart["items"][0]["id"]

        response = client.patch(f"/cart/{item_id}", json={"quantity": 4}, headers=headers)
        assert response.status_code == 200
        assert response.json()["cart"]["total"] == 2000

        assert client.patch(f"/cart/{item_id}", json={"quantity": 6}, headers=headers).status_code == 400
        assert client.patch(f"/cart/{item_id}", json={"quantity": 0}, headers=headers).status_code == 400

        response = client.delete(f"/cart/{item_id}", headers=headers)
        assert response.status_code == 200
        assert response.json()["cart"]["items"] == []
        assert client.delete(f"/cart/{item_id}", headers=headers).status_code == 404

    def test_cumulative_add_over_stock(self, client, admin, customer):
        product = _create_product(client, admin[1], stock="5")
        headers = customer[1]
        assert client.post("/cart", json={"product_id": product["id"], "quantity": 3}, headers=headers).status_code == 200
        response = client.post("/cart", json={"product_id": product["id"], "quantity": 3}, headers=headers)
        assert response.status_code == 400
        assert client.get("/cart", headers=headers).json()["cart"]["items"][0]["quantity"] == 3

    def test_checkout_empty_cart(self, client, customer):
        response = client.post("/orders/checkout", headers=customer[1])
        assert response.status_code == 400
        assert response.json()["message"] == "Cart is empty"

    def test_other_users_order_is_not_found(self, client, admin, customer, make_user):
        product = _create_product(client, admin[1])
        client.post("/cart", json={"product_id": product["id"], "quantity": 1}, headers=customer[1])
        order = client.post("/orders/checkout", headers=customer[1]).json()["order"]

        _, other = make_user(email="other@example.com")
        assert client.get(f"/orders/{order['id']}", headers=other).status_code == 404

    def test_admin_order_management(self, client, admin, customer):
        product = _create_product(client, admin[1])
        client.post("/cart", json={"product_id": product["id"], "quantity": 1}, headers=customer[1])
        order = client.post("/orders/checkout", headers=customer[1]).json()["order"]

        everything = client.get("/orders/admin", headers=admin[1]).json()["orders"]
        assert everything[0]["user"]["email"] == "budi@example.com"

        response = client.patch(f"/orders/{order['id']}/status", json={"status": "shipped"}, headers=admin[1])
        assert response.json()["order"]["status"] == "shipped"
        response = client.patch(f"/orders/{order['id']}/status", json={"status": "teleported"}, headers=admin[1])
        assert response.status_code == 400

        assert client.delete(f"/orders/{order['id']}", headers=admin[1]).status_code == 200
        assert client.get(f"/orders/{order['id']}", headers=customer[1]).status_code == 404


class TestUserEndpoints:
    def test_profile_update_and_password_change(self, client, customer):
        headers = customer[1]
        response = client.patch("/user/profile", data={"name": "Budi Santoso"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["user"]["name"] == "Budi Santoso"

        response = client.patch(
            "/user/password", json={"current_password": "wrong", "new_password": "n3w"}, headers=headers
        )
        assert response.status_code == 400
        response = client.patch(
            "/user/password", json={"current_password": "secret123", "new_password": "n3w"}, headers=headers
        )
        assert response.status_code == 200
        assert client.post("/auth/login", json={"email": "budi@example.com", "password": "n3w"}).status_code == 200

    def test_delete_own_account(self, client, customer):
        headers = customer[1]
        assert client.delete("/user/delete", headers=headers).status_code == 200
        assert client.get("/user/profile", headers=headers).status_code == 401

    def test_admin_manages_users(self, client, admin, customer):
        headers = admin[1]
        response = client.post(
            "/admin/user",
            data={"name": "Staff", "email": "staff@example.com", "password": "pw", "role": "admin"},
            files={"profile_image": ("me.jpg", PNG, "image/jpeg")},
            headers=headers,
        )
        assert response.status_code == 201
        staff = response.json()["user"]
        assert staff["role"] == "admin"
        assert staff["profile_image"].startswith("profile-")

        assert len(client.get("/admin", headers=headers).json()["users"]) == 3
        assert client.get(f"/admin/{staff['id']}", headers=headers).json()["user"]["email"] == "staff@example.com"

        response = client.patch(f"/admin/user/{staff['id']}", data={"role": "user"}, headers=headers)
        assert response.json()["user"]["role"] == "user"

        response = client.patch(f"/admin/password/{staff['id']}", json={"new_password": "pw2"}, headers=headers)
        assert response.status_code == 200
        assert client.post("/auth/login", json={"email": "staff@example.com", "password": "pw2"}).status_code == 200

        response = client.delete(f"/admin/delete/{staff['id']}", headers=headers)
        assert response.status_code == 200
        assert client.get(f"/admin/{staff['id']}", headers=headers).status_code == 404


def test_health(client):
    assert client.get("/").json() == {"message": "Storefront API"}
    assert client.get("/test").json()["connection_status"] == "Connected"
