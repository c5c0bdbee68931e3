"""Cart-to-order pipeline.

A CheckoutFlow walks idle -> address -> payment -> placed for one user, with
cancel returning to idle from the address or payment step. Orders are only
written after the payment gateway reports success. The captured payment is
recorded in a ledger keyed by the gateway token before the order is written,
so a failed commit can be replayed later without charging or ordering twice.
"""
import re
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import structlog
from pymongo.errors import PyMongoError

from catalog import display_price, now_ms
from database import DocumentTree
from geo import LocationProvider, acquire_location
from schemas import DeliveryAddress
from shopping import cart_totals, profile_exists
from vendor import project_order

logger = structlog.get_logger(__name__)

PHONE_RE = re.compile(r"[0-9]{10}", re.ASCII)
PINCODE_RE = re.compile(r"[0-9]{6}", re.ASCII)

COMMIT_FAILED_MESSAGE = "There was an error processing your order. Please try again."


def validate_delivery_address(address: Union[DeliveryAddress, Dict[str, Any]]) -> Optional[str]:
    """Return the message of the first failing rule, or None when the address is valid."""
    if isinstance(address, DeliveryAddress):
        address = address.model_dump()
    if not (address.get("name") or "").strip():
        return "Name is required"
    if not PHONE_RE.fullmatch(address.get("phone") or ""):
        return "Phone number must be exactly 10 digits"
    alt_phone = address.get("altPhone")
    if alt_phone and not PHONE_RE.fullmatch(alt_phone):
        return "Alternate phone number must be exactly 10 digits"
    for field in ("street", "city", "state"):
        if not (address.get(field) or "").strip():
            return f"{field.capitalize()} is required"
    if not PINCODE_RE.fullmatch(address.get("pincode") or ""):
        return "Pincode must be exactly 6 digits"
    return None


class CheckoutState(str, Enum):
    IDLE = "idle"
    ADDRESS = "address"
    PAYMENT = "payment"
    PLACED = "placed"


class EmptyCart(Exception):
    pass


class ProfileRequired(Exception):
    pass


class InvalidTransition(Exception):
    pass


class OrderCommitFailed(Exception):
    pass


# ----------------------- Orders -----------------------
class OrderService:
    def __init__(
        self,
        tree: DocumentTree,
        shipping: float,
        companies: Callable[[], Optional[Dict[str, Any]]],
        geolocation_timeout: float = 10,
        geolocation_max_age: float = 60,
    ):
        self.tree = tree
        self.shipping = shipping
        self.companies = companies
        self.geolocation_timeout = geolocation_timeout
        self.geolocation_max_age = geolocation_max_age

    def cart_snapshot(self, uid: str) -> List[Dict[str, Any]]:
        return [{"id": key, **row} for key, row in self.tree.children(f"user/{uid}/addtocart").items()]

    def direct_snapshot(self, product: Dict[str, Any], quantity: int) -> List[Dict[str, Any]]:
        return [{
            "id": product["id"],
            "productId": product["id"],
            "productName": product.get("productName", ""),
            "quantity": quantity,
            "price": display_price(product),
            "addedAt": now_ms(),
        }]

    def profile_location(self, uid: str) -> Dict[str, float]:
        profile = self.tree.get(f"user/{uid}/profile") or {}
        return {"lat": profile.get("lat") or 0, "lng": profile.get("lng") or 0}

    def locate(self, uid: str, provider: Optional[LocationProvider]):
        return acquire_location(
            provider,
            self.profile_location(uid),
            timeout=self.geolocation_timeout,
            max_age=self.geolocation_max_age,
        )

    def build_order(self, uid, items, address, order_location, payment_id=None) -> Dict[str, Any]:
        totals = cart_totals(items, self.shipping)
        return {
            "items": items,
            "subtotal": totals["subtotal"],
            "shipping": totals["shipping"],
            "total": totals["total"],
            "status": "pending",
            "purchaseTime": now_ms(),
            "deliveryAddress": {**address, **self.profile_location(uid)},
            "orderLocation": order_location,
            "paymentId": payment_id,
        }

    def commit(self, uid: str, payment_id: str, order: Dict[str, Any], clear_cart: bool = True) -> str:
        """Record the captured payment, write the order, then clear the cart.

        Replaying a payment id that already committed returns the existing
        order id. Raises OrderCommitFailed only when the ledger or order write
        fails; the ledger entry then stays "captured" for reconcile_payments().
        """
        ledger_path = f"payments/{uid}/{payment_id}"
        try:
            entry = self.tree.get(ledger_path)
            if entry and entry.get("status") == "committed":
                logger.info("order_commit_replayed", uid=uid, payment_id=payment_id, order_id=entry["orderId"])
                return entry["orderId"]
            if not entry:
                entry = {
                    "status": "captured",
                    "capturedAt": now_ms(),
                    "orderId": self.tree.new_key(),
                    "draft": {**order, "paymentId": payment_id},
                    "clearCart": clear_cart,
                }
                self.tree.set(ledger_path, entry)
            return self._finish(uid, payment_id, entry, clear_whole_cart=clear_cart)
        except PyMongoError as e:
            logger.exception("order_commit_failed", uid=uid, payment_id=payment_id)
            raise OrderCommitFailed(payment_id) from e

    def _finish(self, uid: str, payment_id: str, entry: Dict[str, Any], clear_whole_cart: bool) -> str:
        """Write the order if missing, then settle the ledger, cart and projection.

        Only the order write raises. Once the order exists the remaining steps
        are logged on failure and the order id is still returned.
        """
        order_id = entry["orderId"]
        order = entry["draft"]
        order_path = f"user/{uid}/order/{order_id}"
        stored = self.tree.exists(order_path)
        if not stored:
            self.tree.set(order_path, order)

        try:
            self.tree.update(f"payments/{uid}/{payment_id}", {"status": "committed", "committedAt": now_ms()})
        except PyMongoError:
            logger.exception("ledger_commit_failed", uid=uid, payment_id=payment_id, order_id=order_id)

        if not stored:
            try:
                if clear_whole_cart:
                    self.tree.remove(f"user/{uid}/addtocart")
                elif entry.get("clearCart"):
                    for item in order.get("items") or []:
                        self.tree.remove(f"user/{uid}/addtocart/{item['id']}")
            except PyMongoError:
                logger.exception("cart_clear_failed", uid=uid, order_id=order_id)

        try:
            project_order(self.tree, self.companies(), uid, order_id, order)
        except PyMongoError:
            logger.exception("order_projection_failed", uid=uid, order_id=order_id)

        logger.info("order_committed", uid=uid, order_id=order_id, total=order.get("total"))
        return order_id

    def reconcile_payments(self, uid: str) -> List[str]:
        """Replay orders whose payment was captured but never recorded."""
        replayed = []
        for payment_id, entry in self.tree.children(f"payments/{uid}").items():
            if entry.get("status") != "captured":
                continue
            try:
                replayed.append(self._finish(uid, payment_id, entry, clear_whole_cart=False))
            except PyMongoError:
                logger.exception("reconcile_failed", uid=uid, payment_id=payment_id)
        if replayed:
            logger.info("payments_reconciled", uid=uid, orders=replayed)
        return replayed

    def reconcile_all(self) -> int:
        count = 0
        for uid in self.tree.children("payments"):
            count += len(self.reconcile_payments(uid))
        return count

    def list_orders(self, uid: str) -> List[Dict[str, Any]]:
        orders = [{"id": key, **o} for key, o in self.tree.children(f"user/{uid}/order").items()]
        return sorted(orders, key=lambda o: o.get("purchaseTime", 0), reverse=True)

    def get_order(self, uid: str, order_id: str) -> Optional[Dict[str, Any]]:
        order = self.tree.get(f"user/{uid}/order/{order_id}")
        return {"id": order_id, **order} if order else None


# ----------------------- Flow -----------------------
class CheckoutFlow:
    def __init__(self, uid: str, orders: OrderService):
        self.uid = uid
        self.orders = orders
        self.lock = threading.Lock()
        self.error: Optional[str] = None
        self.order_id: Optional[str] = None
        self._reset()

    def _reset(self):
        self.state = CheckoutState.IDLE
        self.items: List[Dict[str, Any]] = []
        self.direct = False
        self.address: Optional[Dict[str, Any]] = None
        self.order_location: Optional[Dict[str, float]] = None
        self.location_source: Optional[str] = None

    def _require(self, *states: CheckoutState):
        if self.state not in states:
            raise InvalidTransition(f"Not allowed while checkout is {self.state.value}")

    def open(self, items: List[Dict[str, Any]], direct: bool = False):
        self._require(CheckoutState.IDLE, CheckoutState.PLACED)
        if not items:
            self._reset()
            self.order_id = None
            self.error = "Your cart is empty. Please add products to your cart."
            raise EmptyCart(self.uid)
        if not profile_exists(self.orders.tree, self.uid):
            raise ProfileRequired(self.uid)
        self._reset()
        self.items = items
        self.direct = direct
        self.error = None
        self.order_id = None
        self.state = CheckoutState.ADDRESS

    def submit_address(self, address: DeliveryAddress, provider: Optional[LocationProvider] = None) -> bool:
        self._require(CheckoutState.ADDRESS)
        self.error = validate_delivery_address(address)
        if self.error:
            return False
        self.address = address.model_dump(exclude_none=True)
        self.order_location, self.location_source = self.orders.locate(self.uid, provider)
        self.state = CheckoutState.PAYMENT
        return True

    def cancel(self):
        self._require(CheckoutState.ADDRESS, CheckoutState.PAYMENT)
        self._reset()
        self.error = None

    def payment_failed(self, description: Optional[str]):
        self._require(CheckoutState.PAYMENT)
        self._reset()
        self.error = description or "Unknown error"
        logger.warning("payment_failed", uid=self.uid, description=self.error)

    def payment_succeeded(self, payment_id: str) -> Optional[str]:
        self._require(CheckoutState.PAYMENT)
        order = self.orders.build_order(self.uid, self.items, self.address, self.order_location, payment_id)
        try:
            order_id = self.orders.commit(self.uid, payment_id, order, clear_cart=not self.direct)
        except OrderCommitFailed:
            self._reset()
            self.error = COMMIT_FAILED_MESSAGE
            return None
        self.state = CheckoutState.PLACED
        self.order_id = order_id
        self.error = None
        return order_id

    def as_dict(self) -> Dict[str, Any]:
        totals = cart_totals(self.items, self.orders.shipping) if self.items else None
        return {
            "state": self.state.value,
            "error": self.error,
            "items": self.items,
            "totals": totals,
            "direct": self.direct,
            "address": self.address,
            "orderLocation": self.order_location,
            "locationSource": self.location_source,
            "orderId": self.order_id,
        }


class CheckoutRegistry:
    """In-memory checkout flows, one per user."""

    def __init__(self, orders: OrderService):
        self.orders = orders
        self._flows: Dict[str, CheckoutFlow] = {}
        self._lock = threading.Lock()

    def get(self, uid: str) -> CheckoutFlow:
        with self._lock:
            flow = self._flows.get(uid)
            if flow is None:
                flow = self._flows[uid] = CheckoutFlow(uid, self.orders)
            return flow
