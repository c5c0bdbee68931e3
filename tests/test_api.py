from conftest import auth_headers, product_data

ADDRESS = {
    "name": "Asha",
    "phone": "9876543210",
    "street": "12 Main Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560034",
}

PROFILE = {"name": "Asha", "phone": "9876543210", "address": "12 Main Road", "pincode": "560034", "lat": 12.9, "lng": 77.6}


def register_vendor(client, email="farm@example.com"):
    res = client.post("/vendors/register", json={
        "email": email,
        "password": "secret123",
        "companyName": "Green Farms",
        "phoneNumber": "9876543210",
        "companyPhotoUrl": "http://testserver/files/company-photos/logo",
    })
    assert res.status_code == 200, res.text
    body = res.json()
    return {"Authorization": f"Bearer {body['token']}"}, body["user"]["uid"]


def create_product(client, headers, name="Coconut Oil", original=120, discount=100):
    body = product_data(name, original=original, discount=discount)
    body.pop("createdAt")
    res = client.post("/vendor/products", json=body, headers=headers)
    assert res.status_code == 200, res.text
    return res.json()["id"]


def test_health(client):
    assert client.get("/").json() == {"message": "Organic Marketplace API running"}
    assert client.get("/test").json()["backend"] == "✅ Running"


def test_signup_login_and_me(client):
    headers, uid = auth_headers(client)
    assert client.get("/auth/me", headers=headers).json() == {"uid": uid, "email": "shopper@example.com"}
    dup = client.post("/auth/signup", json={"email": "shopper@example.com", "password": "secret123"})
    assert dup.status_code == 400
    ok = client.post("/auth/login", json={"email": "shopper@example.com", "password": "secret123"})
    assert ok.status_code == 200
    bad = client.post("/auth/login", json={"email": "shopper@example.com", "password": "wrong-one"})
    assert bad.status_code == 401


def test_user_routes_require_authentication(client):
    assert client.get("/cart").status_code == 401
    assert client.post("/favorites/p1/toggle").status_code == 401
    assert client.get("/cart", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_catalog_listing_and_filters(client):
    vendor_headers, company_id = register_vendor(client)
    product_id = create_product(client, vendor_headers)
    create_product(client, vendor_headers, name="Herbal Soap", original=80, discount=80)

    products = client.get("/products").json()
    assert len(products) == 2
    assert client.get("/products", params={"q": "coconut"}).json()[0]["id"] == product_id
    oils = client.get("/products", params={"sub": "Cold-Pressed Oils & Ghee"}).json()
    assert len(oils) == 2
    assert client.get("/products", params={"category": "Organic Pet Care"}).json() == []

    detail = client.get(f"/products/{product_id}").json()
    assert detail["company"]["name"] == "Green Farms"
    assert detail["companyId"] == company_id
    assert detail["price"] == 100
    assert client.get("/products/missing").status_code == 404
    assert "Organic Pet Care" in client.get("/categories").json()


def test_favorites_toggle_over_http(client):
    vendor_headers, _ = register_vendor(client)
    product_id = create_product(client, vendor_headers)
    headers, _ = auth_headers(client)

    res = client.post(f"/favorites/{product_id}/toggle", headers=headers)
    assert res.json()["value"] is True
    assert client.get(f"/products/{product_id}", headers=headers).json()["isFavorite"] is True
    assert [f["productId"] for f in client.get("/favorites", headers=headers).json()] == [product_id]
    res = client.post(f"/favorites/{product_id}/toggle", headers=headers)
    assert res.json()["value"] is False
    assert client.get("/favorites", headers=headers).json() == []


def test_cart_requires_profile_then_rejects_duplicates(client):
    vendor_headers, _ = register_vendor(client)
    product_id = create_product(client, vendor_headers)
    headers, _ = auth_headers(client)

    res = client.post("/cart", json={"productId": product_id, "quantity": 2}, headers=headers)
    assert res.status_code == 409
    assert res.json()["detail"] == "profile_required"

    assert client.put("/profile", json=PROFILE, headers=headers).status_code == 200
    assert client.post("/cart", json={"productId": product_id, "quantity": 2}, headers=headers).status_code == 200
    dup = client.post("/cart", json={"productId": product_id, "quantity": 1}, headers=headers)
    assert dup.status_code == 409

    assert client.patch(f"/cart/{product_id}", json={"quantity": 0}, headers=headers).json()["status"] == "ignored"
    assert client.patch(f"/cart/{product_id}", json={"quantity": 3}, headers=headers).status_code == 200
    cart = client.get("/cart", headers=headers).json()
    assert cart["items"][0]["quantity"] == 3
    assert cart["subtotal"] == 300
    assert cart["total"] == 399

    assert client.delete(f"/cart/{product_id}", headers=headers).status_code == 200
    assert client.get("/cart", headers=headers).json()["items"] == []


def test_profile_validation_and_patch(client):
    headers, _ = auth_headers(client)
    assert client.get("/profile", headers=headers).status_code == 404
    assert client.put("/profile", json={**PROFILE, "phone": "123"}, headers=headers).status_code == 422
    assert client.patch("/profile", json={"name": "Ravi"}, headers=headers).status_code == 404
    client.put("/profile", json=PROFILE, headers=headers)
    patched = client.patch("/profile", json={"name": "Ravi"}, headers=headers).json()
    assert patched["name"] == "Ravi"
    assert patched["phone"] == "9876543210"


def test_locate_reverse_geocodes(client):
    headers, _ = auth_headers(client)
    found = client.post("/profile/locate", json={"lat": 12.93, "lng": 77.62}, headers=headers).json()
    assert found["address"]["city"] == "Bengaluru"
    assert found["address"]["pincode"] == "560034"
    failed = client.post("/profile/locate", json={"lat": 0, "lng": 0}, headers=headers).json()
    assert failed["address"] is None


def test_full_checkout_and_vendor_dashboard(client):
    vendor_headers, _ = register_vendor(client)
    product_id = create_product(client, vendor_headers)
    headers, uid = auth_headers(client)
    client.put("/profile", json=PROFILE, headers=headers)

    empty = client.post("/checkout", headers=headers)
    assert empty.status_code == 400

    client.post("/cart", json={"productId": product_id, "quantity": 2}, headers=headers)
    opened = client.post("/checkout", headers=headers).json()
    assert opened["state"] == "address"
    assert opened["totals"] == {"subtotal": 200, "shipping": 99, "total": 299}

    bad = client.post("/checkout/address", json={"address": {**ADDRESS, "phone": "12"}}, headers=headers)
    assert bad.status_code == 400
    assert bad.json()["detail"] == "Phone number must be exactly 10 digits"

    ready = client.post(
        "/checkout/address",
        json={"address": ADDRESS, "device": {"lat": 13.0, "lng": 77.5}},
        headers=headers,
    ).json()
    assert ready["state"] == "payment"
    assert ready["locationSource"] == "device"

    placed = client.post("/checkout/payment/success", json={"paymentId": "pay_abc"}, headers=headers).json()
    assert placed["state"] == "placed"
    order_id = placed["orderId"]

    assert client.get("/cart", headers=headers).json()["items"] == []
    orders = client.get("/orders", headers=headers).json()
    assert [o["id"] for o in orders] == [order_id]
    assert orders[0]["total"] == 299
    assert client.get(f"/orders/{order_id}", headers=headers).json()["orderLocation"] == {"lat": 13.0, "lng": 77.5}
    assert client.get("/orders/nope", headers=headers).status_code == 404

    projected = client.get("/vendor/orders", headers=vendor_headers).json()
    scanned = client.get("/vendor/orders", params={"source": "scan"}, headers=vendor_headers).json()
    assert projected == scanned
    assert [(e["uid"], e["orderId"]) for e in projected] == [(uid, order_id)]


def test_payment_failure_returns_to_idle(client):
    vendor_headers, _ = register_vendor(client)
    product_id = create_product(client, vendor_headers)
    headers, _ = auth_headers(client)
    client.put("/profile", json=PROFILE, headers=headers)
    client.post("/cart", json={"productId": product_id}, headers=headers)
    client.post("/checkout", headers=headers)
    client.post("/checkout/address", json={"address": ADDRESS}, headers=headers)

    failed = client.post("/checkout/payment/failure", json={"description": "Payment cancelled by user"}, headers=headers)
    assert failed.json()["state"] == "idle"
    assert failed.json()["error"] == "Payment cancelled by user"
    assert client.post("/checkout/payment/success", json={"paymentId": "pay_x"}, headers=headers).status_code == 409
    assert len(client.get("/cart", headers=headers).json()["items"]) == 1


def test_direct_buy(client):
    vendor_headers, _ = register_vendor(client)
    product_id = create_product(client, vendor_headers)
    headers, _ = auth_headers(client)
    client.put("/profile", json=PROFILE, headers=headers)

    opened = client.post("/checkout", json={"productId": product_id, "quantity": 1}, headers=headers).json()
    assert opened["direct"] is True
    assert opened["totals"]["total"] == 199
    cancelled = client.post("/checkout/cancel", headers=headers).json()
    assert cancelled["state"] == "idle"


def test_vendor_product_management(client):
    vendor_headers, _ = register_vendor(client)
    shopper_headers, _ = auth_headers(client)
    product_id = create_product(client, vendor_headers)

    assert client.get("/vendor/products", headers=shopper_headers).status_code == 403
    assert client.get(f"/vendor/products/{product_id}", headers=vendor_headers).json()["productName"] == "Coconut Oil"

    bad = product_data(original=100, discount=150)
    assert client.post("/vendor/products", json=bad, headers=vendor_headers).status_code == 422

    res = client.put(f"/vendor/products/{product_id}", json={"discountPrice": 500}, headers=vendor_headers)
    assert res.status_code == 400
    res = client.put(f"/vendor/products/{product_id}", json={"stockQuantity": 4}, headers=vendor_headers)
    assert res.json()["stockQuantity"] == 4

    assert client.post(f"/vendor/products/{product_id}/stock", headers=vendor_headers).json() == {"outOfStock": True}
    assert client.delete(f"/vendor/products/{product_id}", headers=vendor_headers).json() == {"ok": True}
    assert client.get(f"/vendor/products/{product_id}", headers=vendor_headers).status_code == 404
    assert client.get("/products").json() == []


def test_vendor_application(client):
    headers, uid = auth_headers(client, email="applicant@example.com")
    assert client.get("/vendors/applications/me", headers=headers).status_code == 404
    res = client.post("/vendors/applications", json={
        "registrationType": "manufacturer",
        "companyName": "Hill Honey",
        "registerNo": "REG-1",
        "companyType": "LLP",
        "certificateUrl": "http://testserver/files/company-certificates/c",
        "gstNo": "29ABCDE1234F1Z5",
    }, headers=headers)
    assert res.json()["status"] == "pending"
    assert client.get("/vendors/applications/me", headers=headers).json()["uid"] == uid


def test_reviews_over_http(client):
    vendor_headers, _ = register_vendor(client)
    product_id = create_product(client, vendor_headers)
    headers, _ = auth_headers(client)
    assert client.post(f"/products/{product_id}/reviews", json={"rating": 4}, headers=headers).status_code == 200
    again = client.post(f"/products/{product_id}/reviews", json={"rating": 5}, headers=headers)
    assert again.status_code == 409
    assert client.post(f"/products/{product_id}/reviews", json={"rating": 9}, headers=headers).status_code == 422
    summary = client.get(f"/products/{product_id}/reviews").json()
    assert summary["reviewCount"] == 1
    assert summary["averageRating"] == 4.0
    assert client.get(f"/products/{product_id}", headers=headers).json()["hasReviewed"] is True


def test_upload_and_download(client):
    headers, _ = auth_headers(client)
    res = client.post(
        "/uploads/product-photos",
        files={"file": ("ghee.png", b"\x89PNG data", "image/png")},
        headers=headers,
    )
    url = res.json()["url"]
    assert url.startswith("http://testserver/files/product-photos/")
    download = client.get(url.replace("http://testserver", ""))
    assert download.status_code == 200
    assert download.content == b"\x89PNG data"
    assert download.headers["content-type"] == "image/png"

    unknown = client.post("/uploads/secrets", files={"file": ("a", b"x", "text/plain")}, headers=headers)
    assert unknown.status_code == 400
    assert client.get("/files/product-photos/missing").status_code == 404
