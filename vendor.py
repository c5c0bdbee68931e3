from typing import Any, Dict, Iterable, List, Optional, Set

import structlog

from auth import AuthProvider
from catalog import find_product, now_ms
from database import DocumentTree
from schemas import Product, ProductUpdate, Registration

logger = structlog.get_logger(__name__)


class NotAVendor(Exception):
    pass


class ProductNotFound(Exception):
    pass


class InvalidProduct(ValueError):
    pass


# ----------------------- Registration -----------------------
def register_vendor(
    auth: AuthProvider,
    tree: DocumentTree,
    email: str,
    password: str,
    company_name: str,
    phone_number: str,
    company_photo_url: str,
) -> dict:
    session = auth.create_account(email, password)
    uid = session["user"]["uid"]
    tree.set(f"companies/{uid}", {
        "uid": uid,
        "companyName": company_name,
        "email": email,
        "phoneNumber": phone_number,
        "companyPhotoUrl": company_photo_url,
    })
    logger.info("vendor_registered", uid=uid, company=company_name)
    return session


def submit_application(tree: DocumentTree, uid: str, application: Registration) -> dict:
    record = {
        "uid": uid,
        **application.model_dump(exclude_none=True),
        "status": "pending",
        "submittedAt": now_ms(),
    }
    tree.set(f"registrations/{uid}", record)
    logger.info("application_submitted", uid=uid, type=application.registrationType)
    return record


def get_company(tree: DocumentTree, uid: str) -> dict:
    company = tree.get(f"companies/{uid}")
    if not company:
        raise NotAVendor(uid)
    return company


# ----------------------- Products -----------------------
def list_products(tree: DocumentTree, uid: str) -> List[dict]:
    get_company(tree, uid)
    products = tree.children(f"companies/{uid}/products")
    items = [{"id": pid, **p} for pid, p in products.items()]
    return sorted(items, key=lambda p: p.get("createdAt", 0), reverse=True)


def get_product(tree: DocumentTree, uid: str, product_id: str) -> dict:
    get_company(tree, uid)
    product = tree.get(f"companies/{uid}/products/{product_id}")
    if not product:
        raise ProductNotFound(product_id)
    return {"id": product_id, **product}


def create_product(tree: DocumentTree, uid: str, product: Product) -> dict:
    get_company(tree, uid)
    data = product.model_dump(exclude_none=True)
    data["createdAt"] = now_ms()
    product_id = tree.push(f"companies/{uid}/products", data)
    logger.info("product_created", uid=uid, product_id=product_id)
    return {"id": product_id, **data}


def update_product(tree: DocumentTree, uid: str, product_id: str, changes: ProductUpdate) -> dict:
    current = get_product(tree, uid, product_id)
    data = changes.model_dump(exclude_none=True)
    original = data.get("originalPrice", current.get("originalPrice", 0))
    discount = data.get("discountPrice", current.get("discountPrice"))
    if discount is not None and discount > original:
        raise InvalidProduct("discountPrice must not exceed originalPrice")
    if "productPhotoUrls" in data and not data["productPhotoUrls"]:
        raise InvalidProduct("At least one product photo is required")
    data["updatedAt"] = now_ms()
    tree.update(f"companies/{uid}/products/{product_id}", data)
    logger.info("product_updated", uid=uid, product_id=product_id, fields=sorted(data))
    return get_product(tree, uid, product_id)


def delete_product(tree: DocumentTree, uid: str, product_id: str) -> None:
    get_product(tree, uid, product_id)
    tree.remove(f"companies/{uid}/products/{product_id}")
    logger.info("product_deleted", uid=uid, product_id=product_id)


def toggle_stock(tree: DocumentTree, uid: str, product_id: str) -> bool:
    product = get_product(tree, uid, product_id)
    out_of_stock = not product.get("outOfStock", False)
    tree.update(f"companies/{uid}/products/{product_id}", {"outOfStock": out_of_stock, "updatedAt": now_ms()})
    return out_of_stock


# ----------------------- Orders -----------------------
def _entry(uid: str, order_id: str, order: dict, items: List[dict]) -> dict:
    return {
        "uid": uid,
        "orderId": order_id,
        "items": items,
        "total": order.get("total"),
        "status": order.get("status", "pending"),
        "purchaseTime": order.get("purchaseTime", 0),
        "deliveryAddress": order.get("deliveryAddress"),
    }


def _newest_first(entries: Iterable[dict]) -> List[dict]:
    return sorted(entries, key=lambda e: e.get("purchaseTime", 0), reverse=True)


def aggregate_vendor_orders(product_ids: Set[str], users: Optional[Dict[str, Any]]) -> List[dict]:
    """Scan every user's orders for items belonging to the vendor.

    Each returned entry keeps only the matching items; orders without a match
    are dropped. Cost grows with the total number of orders.
    """
    entries = []
    for uid, user in (users or {}).items():
        for order_id, order in ((user or {}).get("order") or {}).items():
            matching = [i for i in order.get("items") or [] if i.get("productId") in product_ids]
            if matching:
                entries.append(_entry(uid, order_id, order, matching))
    return _newest_first(entries)


def vendor_product_ids(tree: DocumentTree, uid: str) -> Set[str]:
    return set(tree.children(f"companies/{uid}/products"))


def scan_vendor_orders(tree: DocumentTree, uid: str) -> List[dict]:
    get_company(tree, uid)
    return aggregate_vendor_orders(vendor_product_ids(tree, uid), tree.get("user"))


def project_order(tree: DocumentTree, companies: Optional[Dict[str, Any]], uid: str, order_id: str, order: dict) -> None:
    """Write the order's per-vendor slices under vendorOrders/{companyId}/{orderId}."""
    by_company: Dict[str, List[dict]] = {}
    for item in order.get("items") or []:
        found = find_product(companies, item.get("productId") or "")
        if found:
            by_company.setdefault(found[0], []).append(item)
    for company_id, items in by_company.items():
        tree.set(f"vendorOrders/{company_id}/{order_id}", _entry(uid, order_id, order, items))


def projected_vendor_orders(tree: DocumentTree, uid: str) -> List[dict]:
    get_company(tree, uid)
    return _newest_first(tree.children(f"vendorOrders/{uid}").values())


def rebuild_projection(tree: DocumentTree, uid: str) -> int:
    entries = scan_vendor_orders(tree, uid)
    tree.set(f"vendorOrders/{uid}", {e["orderId"]: e for e in entries})
    logger.info("vendor_projection_rebuilt", uid=uid, orders=len(entries))
    return len(entries)
