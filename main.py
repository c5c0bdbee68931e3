import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import PyMongoError

import catalog
import shopping
import vendor
from auth import EmailTaken, InvalidCredentials, get_current_user, optional_user
from backend import Backend, build_backend
from checkout import EmptyCart, InvalidTransition, ProfileRequired
from database import InvalidPath
from geo import reported_location
from schemas import DeliveryAddress, Product, ProductUpdate, ProfilePatch, Registration, Review, UserProfile
from settings import Settings, configure_logging
from storage import UnknownFolder


def get_backend(request: Request) -> Backend:
    return request.app.state.backend


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "backend", None) is None:
        settings = Settings()
        configure_logging(settings.log_level)
        app.state.backend = build_backend(settings)
    app.state.backend.orders.reconcile_all()
    yield
    app.state.backend.close()


app = FastAPI(title="Organic Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------- Errors -----------------------
def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


@app.exception_handler(InvalidPath)
async def invalid_path(request: Request, exc: InvalidPath):
    return _error(400, str(exc))


@app.exception_handler(PyMongoError)
async def database_error(request: Request, exc: PyMongoError):
    return _error(503, "Something went wrong, please try again.")


@app.exception_handler(vendor.NotAVendor)
async def not_a_vendor(request: Request, exc: vendor.NotAVendor):
    return _error(403, "No company registered for this account")


@app.exception_handler(vendor.ProductNotFound)
async def product_not_found(request: Request, exc: vendor.ProductNotFound):
    return _error(404, "Product not found")


@app.exception_handler(vendor.InvalidProduct)
async def invalid_product(request: Request, exc: vendor.InvalidProduct):
    return _error(400, str(exc))


@app.exception_handler(ProfileRequired)
async def profile_required(request: Request, exc: ProfileRequired):
    return _error(409, "profile_required")


@app.exception_handler(InvalidTransition)
async def invalid_transition(request: Request, exc: InvalidTransition):
    return _error(409, str(exc))


@app.exception_handler(UnknownFolder)
async def unknown_folder(request: Request, exc: UnknownFolder):
    return _error(400, f"Unknown folder: {exc}")


RESULT_STATUS = {
    "invalid": 400,
    "not_found": 404,
    "profile_required": 409,
    "already_in_cart": 409,
    "error": 503,
}


def result_response(result: shopping.MutationResult) -> dict:
    if not result.ok:
        detail = "profile_required" if result.status == "profile_required" else result.message
        raise HTTPException(status_code=RESULT_STATUS.get(result.status, 400), detail=detail)
    return {"status": result.status, "message": result.message, "value": result.value}


# ----------------------- Models -----------------------
class SignupBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class VendorSignupBody(SignupBody):
    companyName: str = Field(..., min_length=1)
    phoneNumber: str
    companyPhotoUrl: str = Field(..., min_length=1)


class CartAddBody(BaseModel):
    productId: str
    quantity: int = 1


class QuantityBody(BaseModel):
    quantity: int


class Coordinates(BaseModel):
    lat: float
    lng: float


class DeviceFix(Coordinates):
    timestamp: Optional[float] = None


class CheckoutOpenBody(BaseModel):
    productId: Optional[str] = None
    quantity: int = Field(1, ge=1)


class AddressSubmission(BaseModel):
    address: DeliveryAddress
    device: Optional[DeviceFix] = None


class PaymentSuccessBody(BaseModel):
    paymentId: str = Field(..., min_length=1)


class PaymentFailureBody(BaseModel):
    description: Optional[str] = None


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Organic Marketplace API running"}


@app.get("/test")
def test_database(backend: Backend = Depends(get_backend)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = backend.db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/auth/signup")
def signup(body: SignupBody, backend: Backend = Depends(get_backend)):
    try:
        return backend.auth.create_account(body.email, body.password)
    except EmailTaken:
        raise HTTPException(status_code=400, detail="Email already registered")


@app.post("/auth/login")
def login(body: LoginBody, backend: Backend = Depends(get_backend)):
    try:
        return backend.auth.sign_in(body.email, body.password)
    except InvalidCredentials:
        raise HTTPException(status_code=401, detail="Invalid credentials")


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return user


# ----------------------- Uploads -----------------------
@app.post("/uploads/{folder}")
async def upload(folder: str, file: UploadFile = File(...), user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    data = await file.read()
    url = backend.storage.upload(folder, data, file.content_type or "application/octet-stream")
    return {"url": url}


@app.get("/files/{folder}/{key}")
def download(folder: str, key: str, backend: Backend = Depends(get_backend)):
    blob = backend.storage.download(folder, key)
    if not blob:
        raise HTTPException(status_code=404, detail="File not found")
    return Response(content=blob["data"], media_type=blob["content_type"])


# ----------------------- Catalog -----------------------
@app.get("/categories")
def list_categories():
    return catalog.CATEGORY_OPTIONS


@app.get("/products")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    sub: Optional[str] = None,
    backend: Backend = Depends(get_backend),
):
    return backend.catalog.search(q, category, sub)


def _catalog_product(backend: Backend, product_id: str) -> dict:
    product = backend.catalog.get(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.get("/products/{product_id}")
def get_product(product_id: str, user=Depends(optional_user), backend: Backend = Depends(get_backend)):
    product = _catalog_product(backend, product_id)
    reviews = catalog.list_reviews(backend.tree, product_id)
    result = {**product, **catalog.review_summary(reviews)}
    if user:
        result["isFavorite"] = backend.tree.exists(f"user/{user['uid']}/addfav/{product_id}")
        result["inCart"] = backend.tree.exists(f"user/{user['uid']}/addtocart/{product_id}")
        result["hasReviewed"] = any(r["uid"] == user["uid"] for r in reviews)
    return result


@app.get("/products/{product_id}/reviews")
def get_reviews(product_id: str, backend: Backend = Depends(get_backend)):
    reviews = catalog.list_reviews(backend.tree, product_id)
    return {"reviews": reviews, **catalog.review_summary(reviews)}


@app.post("/products/{product_id}/reviews")
def post_review(product_id: str, body: Review, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    _catalog_product(backend, product_id)
    try:
        return catalog.add_review(backend.tree, product_id, user["uid"], body.rating, body.reviewText)
    except catalog.AlreadyReviewed:
        raise HTTPException(status_code=409, detail="You have already reviewed this product!")


# ----------------------- Profile -----------------------
@app.get("/profile")
def get_profile(user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    profile = backend.tree.get(f"user/{user['uid']}/profile")
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@app.put("/profile")
def put_profile(body: UserProfile, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    profile = body.model_dump(exclude_none=True)
    backend.tree.set(f"user/{user['uid']}/profile", profile)
    return profile


@app.patch("/profile")
def patch_profile(body: ProfilePatch, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    path = f"user/{user['uid']}/profile"
    if not backend.tree.exists(path):
        raise HTTPException(status_code=404, detail="Profile not found")
    changes = body.model_dump(exclude_none=True)
    if changes:
        backend.tree.update(path, changes)
    return backend.tree.get(path)


@app.post("/profile/locate")
def locate(body: Coordinates, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return {"lat": body.lat, "lng": body.lng, "address": backend.geocoder.lookup(body.lat, body.lng)}


# ----------------------- Favorites -----------------------
@app.get("/favorites")
def list_favorites(user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return shopping.list_favorites(backend.tree, user["uid"])


@app.post("/favorites/{product_id}/toggle")
def toggle_favorite(product_id: str, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    product = _catalog_product(backend, product_id)
    return result_response(shopping.toggle_favorite(backend.tree, user["uid"], product))


@app.delete("/favorites/{product_id}")
def remove_favorite(product_id: str, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return result_response(shopping.remove_favorite(backend.tree, user["uid"], product_id))


# ----------------------- Cart -----------------------
@app.get("/cart")
def get_cart(user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    items = shopping.load_cart(backend.tree, user["uid"], backend.catalog.companies)
    return {"items": items, **shopping.cart_totals(items, backend.settings.shipping_charge)}


@app.post("/cart")
def add_to_cart(body: CartAddBody, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    product = _catalog_product(backend, body.productId)
    return result_response(shopping.add_to_cart(backend.tree, user["uid"], product, body.quantity))


@app.patch("/cart/{item_id}")
def update_cart_item(item_id: str, body: QuantityBody, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return result_response(shopping.update_quantity(backend.tree, user["uid"], item_id, body.quantity))


@app.delete("/cart/{item_id}")
def remove_cart_item(item_id: str, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return result_response(shopping.remove_item(backend.tree, user["uid"], item_id))


# ----------------------- Checkout -----------------------
@app.get("/checkout")
def checkout_state(user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return backend.checkouts.get(user["uid"]).as_dict()


@app.post("/checkout")
def open_checkout(body: Optional[CheckoutOpenBody] = None, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    flow = backend.checkouts.get(user["uid"])
    body = body or CheckoutOpenBody()
    with flow.lock:
        if body.productId:
            product = _catalog_product(backend, body.productId)
            items = backend.orders.direct_snapshot(product, body.quantity)
        else:
            items = backend.orders.cart_snapshot(user["uid"])
        try:
            flow.open(items, direct=bool(body.productId))
        except EmptyCart:
            raise HTTPException(status_code=400, detail=flow.error)
        return flow.as_dict()


@app.post("/checkout/address")
def submit_address(body: AddressSubmission, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    flow = backend.checkouts.get(user["uid"])
    provider = reported_location(body.device.lat, body.device.lng, body.device.timestamp) if body.device else None
    with flow.lock:
        if not flow.submit_address(body.address, provider):
            raise HTTPException(status_code=400, detail=flow.error)
        return flow.as_dict()


@app.post("/checkout/cancel")
def cancel_checkout(user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    flow = backend.checkouts.get(user["uid"])
    with flow.lock:
        flow.cancel()
        return flow.as_dict()


@app.post("/checkout/payment/success")
def payment_success(body: PaymentSuccessBody, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    flow = backend.checkouts.get(user["uid"])
    with flow.lock:
        if flow.payment_succeeded(body.paymentId) is None:
            raise HTTPException(status_code=503, detail=flow.error)
        return flow.as_dict()


@app.post("/checkout/payment/failure")
def payment_failure(body: PaymentFailureBody, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    flow = backend.checkouts.get(user["uid"])
    with flow.lock:
        flow.payment_failed(body.description)
        return flow.as_dict()


@app.post("/checkout/reconcile")
def reconcile(user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return {"orders": backend.orders.reconcile_payments(user["uid"])}


# ----------------------- Orders -----------------------
@app.get("/orders")
def list_orders(user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return backend.orders.list_orders(user["uid"])


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    order = backend.orders.get_order(user["uid"], order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


# ----------------------- Vendors -----------------------
@app.post("/vendors/register")
def register_vendor(body: VendorSignupBody, backend: Backend = Depends(get_backend)):
    try:
        return vendor.register_vendor(
            backend.auth,
            backend.tree,
            body.email,
            body.password,
            body.companyName,
            body.phoneNumber,
            body.companyPhotoUrl,
        )
    except EmailTaken:
        raise HTTPException(status_code=400, detail="Email already registered")


@app.post("/vendors/applications")
def submit_application(body: Registration, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return vendor.submit_application(backend.tree, user["uid"], body)


@app.get("/vendors/applications/me")
def my_application(user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    application = backend.tree.get(f"registrations/{user['uid']}")
    if not application:
        raise HTTPException(status_code=404, detail="No application found")
    return application


@app.get("/vendor/products")
def vendor_products(user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return vendor.list_products(backend.tree, user["uid"])


@app.post("/vendor/products")
def create_vendor_product(body: Product, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return vendor.create_product(backend.tree, user["uid"], body)


@app.get("/vendor/products/{product_id}")
def vendor_product(product_id: str, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return vendor.get_product(backend.tree, user["uid"], product_id)


@app.put("/vendor/products/{product_id}")
def update_vendor_product(product_id: str, body: ProductUpdate, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return vendor.update_product(backend.tree, user["uid"], product_id, body)


@app.delete("/vendor/products/{product_id}")
def delete_vendor_product(product_id: str, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    vendor.delete_product(backend.tree, user["uid"], product_id)
    return {"ok": True}


@app.post("/vendor/products/{product_id}/stock")
def toggle_stock(product_id: str, user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return {"outOfStock": vendor.toggle_stock(backend.tree, user["uid"], product_id)}


@app.get("/vendor/orders")
def vendor_orders(source: str = "projection", user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    if source == "scan":
        return vendor.scan_vendor_orders(backend.tree, user["uid"])
    if source != "projection":
        raise HTTPException(status_code=400, detail="source must be 'projection' or 'scan'")
    return vendor.projected_vendor_orders(backend.tree, user["uid"])


@app.post("/vendor/orders/rebuild")
def rebuild_vendor_orders(user=Depends(get_current_user), backend: Backend = Depends(get_backend)):
    return {"orders": vendor.rebuild_projection(backend.tree, user["uid"])}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
