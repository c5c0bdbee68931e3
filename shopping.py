"""Per-user favorites and cart collections.

Every mutation returns a MutationResult instead of raising, so a caller that
already applied the change locally knows whether it has to revert it.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog
from pymongo.errors import PyMongoError

from catalog import PLACEHOLDER_IMAGE, display_price, find_product, now_ms
from database import DocumentTree

logger = structlog.get_logger(__name__)


@dataclass
class MutationResult:
    ok: bool
    status: str
    message: str = ""
    value: Any = None


def _failed(event: str, **context) -> MutationResult:
    logger.exception(event, **context)
    return MutationResult(False, "error", "Something went wrong, please try again.")


def profile_exists(tree: DocumentTree, uid: str) -> bool:
    return tree.exists(f"user/{uid}/profile")


# ----------------------- Favorites -----------------------
def toggle_favorite(tree: DocumentTree, uid: str, product: Dict[str, Any]) -> MutationResult:
    path = f"user/{uid}/addfav/{product['id']}"
    try:
        if tree.exists(path):
            tree.remove(path)
            return MutationResult(True, "removed", "Removed from favorites", False)
        tree.set(path, {
            "productId": product["id"],
            "productName": product.get("productName", ""),
            "price": display_price(product),
            "addedAt": now_ms(),
        })
        return MutationResult(True, "added", "Added to favorites", True)
    except PyMongoError:
        return _failed("favorite_toggle_failed", uid=uid, product_id=product["id"])


def list_favorites(tree: DocumentTree, uid: str) -> List[Dict[str, Any]]:
    favorites = tree.children(f"user/{uid}/addfav")
    items = [{"id": key, **fav} for key, fav in favorites.items()]
    return sorted(items, key=lambda f: f.get("addedAt", 0), reverse=True)


def remove_favorite(tree: DocumentTree, uid: str, product_id: str) -> MutationResult:
    try:
        tree.remove(f"user/{uid}/addfav/{product_id}")
    except PyMongoError:
        return _failed("favorite_remove_failed", uid=uid, product_id=product_id)
    return MutationResult(True, "removed", "Removed from favorites", False)


# ----------------------- Cart -----------------------
def add_to_cart(tree: DocumentTree, uid: str, product: Dict[str, Any], quantity: int = 1) -> MutationResult:
    if quantity < 1:
        return MutationResult(False, "invalid", "Quantity must be at least 1")
    try:
        if not profile_exists(tree, uid):
            return MutationResult(False, "profile_required", "Complete your profile before adding to cart")
        path = f"user/{uid}/addtocart/{product['id']}"
        if tree.exists(path):
            return MutationResult(False, "already_in_cart", "This product is already in your cart!")
        item = {
            "productId": product["id"],
            "productName": product.get("productName", ""),
            "quantity": quantity,
            "price": display_price(product),
            "addedAt": now_ms(),
        }
        tree.set(path, item)
    except PyMongoError:
        return _failed("cart_add_failed", uid=uid, product_id=product["id"])
    logger.info("cart_item_added", uid=uid, product_id=product["id"], quantity=quantity)
    return MutationResult(True, "added", "Added to cart", item)


def update_quantity(tree: DocumentTree, uid: str, item_id: str, quantity: int) -> MutationResult:
    if quantity < 1:
        return MutationResult(True, "ignored", "Quantity below 1 was ignored")
    path = f"user/{uid}/addtocart/{item_id}"
    try:
        if not tree.exists(path):
            return MutationResult(False, "not_found", "Item is not in your cart")
        tree.update(path, {"quantity": quantity})
    except PyMongoError:
        return _failed("cart_update_failed", uid=uid, item_id=item_id)
    return MutationResult(True, "updated", "Quantity updated", quantity)


def remove_item(tree: DocumentTree, uid: str, item_id: str) -> MutationResult:
    try:
        tree.remove(f"user/{uid}/addtocart/{item_id}")
    except PyMongoError:
        return _failed("cart_remove_failed", uid=uid, item_id=item_id)
    return MutationResult(True, "removed", "Removed from cart")


def load_cart(tree: DocumentTree, uid: str, companies: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Cart rows with live thumbnail and original price resolved from the catalog."""
    items = []
    for key, data in tree.children(f"user/{uid}/addtocart").items():
        product_id = data.get("productId") or key
        found = find_product(companies, product_id)
        live = found[1] if found else {}
        photos = live.get("productPhotoUrls") or data.get("productPhotoUrls") or []
        items.append({
            "id": key,
            "productId": product_id,
            "productName": data.get("productName") or data.get("name") or "Unknown",
            "price": data.get("price") or live.get("discountPrice") or 0,
            "originalPrice": live.get("originalPrice") or data.get("originalPrice") or 0,
            "quantity": data.get("quantity") or 1,
            "image": photos[0] if photos else data.get("image") or PLACEHOLDER_IMAGE,
            "addedAt": data.get("addedAt"),
        })
    return items


def cart_totals(items: List[Dict[str, Any]], shipping: float) -> Dict[str, float]:
    subtotal = sum(item["price"] * item["quantity"] for item in items)
    return {"subtotal": subtotal, "shipping": shipping, "total": subtotal + shipping}
