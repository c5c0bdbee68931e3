import httpx
import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from backend import build_backend
from database import DocumentTree
from geo import ReverseGeocoder
from settings import Settings

GEOCODE_URL = "https://geocode.test/reverse"


def geocode_handler(request: httpx.Request) -> httpx.Response:
    if request.url.params.get("latitude") == "0.0":
        return httpx.Response(500)
    return httpx.Response(200, json={
        "locality": "Koramangala",
        "city": "Bengaluru",
        "principalSubdivision": "Karnataka",
        "postcode": "560034",
    })


@pytest.fixture
def db():
    return mongomock.MongoClient().marketplace


@pytest.fixture
def tree(db):
    return DocumentTree(db)


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret-for-marketplace-tokens-0123456789",
        shipping_charge=99,
        public_base_url="http://testserver",
        reverse_geocode_url=GEOCODE_URL,
        geolocation_timeout=1,
    )


@pytest.fixture
def geocoder():
    return ReverseGeocoder(GEOCODE_URL, client=httpx.Client(transport=httpx.MockTransport(geocode_handler)))


@pytest.fixture
def backend(settings, db, geocoder):
    return build_backend(settings, db=db, geocoder=geocoder)


@pytest.fixture
def client(backend):
    main.app.state.backend = backend
    with TestClient(main.app) as c:
        yield c
    main.app.state.backend = None


def product_data(name="Cold Pressed Coconut Oil", original=250.0, discount=200.0, **extra):
    data = {
        "productName": name,
        "productDescription": "Wood pressed",
        "originalPrice": original,
        "discountPrice": discount,
        "stockQuantity": 20,
        "productPhotoUrls": ["http://testserver/files/product-photos/a"],
        "categories": [{"main": "Organic Groceries & Superfoods", "sub": "Cold-Pressed Oils & Ghee"}],
        "createdAt": 1,
    }
    data.update(extra)
    return data


def seed_company(tree, company_id, products, name="Green Farms", logo="http://testserver/logo.png"):
    tree.set(f"companies/{company_id}", {
        "uid": company_id,
        "companyName": name,
        "email": f"{company_id}@farms.test",
        "phoneNumber": "9876543210",
        "companyPhotoUrl": logo,
        "products": products,
    })


def seed_profile(tree, uid, lat=12.9, lng=77.6):
    tree.set(f"user/{uid}/profile", {
        "name": "Asha",
        "phone": "9876543210",
        "address": "12 Main Road",
        "pincode": "560034",
        "lat": lat,
        "lng": lng,
    })


def auth_headers(client, email="shopper@example.com", password="secret123"):
    res = client.post("/auth/signup", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    body = res.json()
    return {"Authorization": f"Bearer {body['token']}"}, body["user"]["uid"]
