import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import structlog

from database import DocumentTree

logger = structlog.get_logger(__name__)

PLACEHOLDER_IMAGE = "https://via.placeholder.com/150"
PLACEHOLDER_LOGO = "/placeholder.svg"

CATEGORY_OPTIONS: Dict[str, List[str]] = {
    "Organic Groceries & Superfoods": [
        "Organic Staples & Grains",
        "Cold-Pressed Oils & Ghee",
        "Organic Spices & Condiments",
        "Superfoods & Immunity Boosters",
        "Natural Sweeteners",
        "Organic Snacks & Beverages",
        "Dairy & Plant-Based Alternatives",
    ],
    "Herbal & Natural Personal Care": [
        "Organic Skincare",
        "Herbal Haircare",
        "Natural Oral Care",
        "Chemical-Free Cosmetics",
        "Organic Fragrances",
    ],
    "Health & Wellness Products": [
        "Ayurvedic & Herbal Supplements",
        "Nutritional Supplements",
        "Detox & Gut Health",
        "Immunity Boosters",
        "Essential Oils & Aromatherapy",
    ],
    "Sustainable Home & Eco-Friendly Living": [
        "Organic Cleaning Products",
        "Reusable & Biodegradable Kitchen Essentials",
        "Organic Gardening",
        "Sustainable Home Décor",
    ],
    "Sustainable Fashion & Accessories": [
        "Organic Cotton & Hemp Clothing",
        "Eco-Friendly Footwear",
        "Bamboo & Wooden Accessories",
        "Handmade & Sustainable Jewelry",
    ],
    "Organic Baby & Kids Care": [
        "Organic Baby Food",
        "Natural Baby Skincare",
        "Eco-Friendly Baby Clothing",
        "Non-Toxic Toys & Accessories",
    ],
    "Organic Pet Care": ["Organic Pet Food", "Herbal Grooming & Skincare", "Natural Pet Supplements"],
    "Special Dietary & Lifestyle Products": [
        "Gluten-Free Foods",
        "Vegan & Plant-Based Alternatives",
        "Keto & Low-Carb Products",
        "Diabetic-Friendly Foods",
    ],
}


def now_ms() -> int:
    return int(time.time() * 1000)


def display_price(product: Dict[str, Any]) -> float:
    discount = product.get("discountPrice")
    if discount:
        return float(discount)
    return float(product.get("originalPrice") or 0)


def flatten_catalog(companies: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten companies[*].products[*] into one list with company name and logo attached."""
    products = []
    for company_id, company in (companies or {}).items():
        if not isinstance(company, dict):
            continue
        for product_id, data in (company.get("products") or {}).items():
            if not isinstance(data, dict):
                continue
            photos = data.get("productPhotoUrls") or []
            products.append({
                "id": product_id,
                **data,
                "productName": data.get("productName") or "",
                "productPhotoUrls": photos or [PLACEHOLDER_IMAGE],
                "price": display_price(data),
                "companyId": company_id,
                "company": {
                    "name": company.get("companyName") or "",
                    "logo": company.get("companyPhotoUrl") or PLACEHOLDER_LOGO,
                },
            })
    return products


def filter_products(
    products: List[Dict[str, Any]],
    search: Optional[str] = None,
    main_category: Optional[str] = None,
    sub_category: Optional[str] = None,
) -> List[Dict[str, Any]]:
    term = (search or "").lower()

    def matches(product):
        if term and term not in (product.get("productName") or "").lower():
            return False
        if main_category or sub_category:
            for cat in product.get("categories") or []:
                if main_category and cat.get("main") != main_category:
                    continue
                if sub_category and cat.get("sub") != sub_category:
                    continue
                return True
            return False
        return True

    return [p for p in products if matches(p)]


def find_product(companies: Optional[Dict[str, Any]], product_id: str) -> Optional[Tuple[str, Dict[str, Any]]]:
    for company_id, company in (companies or {}).items():
        products = (company or {}).get("products") or {}
        if product_id in products:
            return company_id, products[product_id]
    return None


class CatalogView:
    """Flattened product list kept current by a subscription on the company tree."""

    def __init__(self, tree: DocumentTree):
        self._lock = threading.Lock()
        self._companies: Dict[str, Any] = {}
        self._products: List[Dict[str, Any]] = []
        self._unsubscribe = tree.subscribe("companies", self._on_companies)

    def _on_companies(self, companies):
        products = flatten_catalog(companies)
        with self._lock:
            self._companies = companies or {}
            self._products = products
        logger.debug("catalog_refreshed", products=len(products))

    @property
    def companies(self) -> Dict[str, Any]:
        with self._lock:
            return self._companies

    @property
    def products(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._products)

    def search(self, search=None, main_category=None, sub_category=None):
        return filter_products(self.products, search, main_category, sub_category)

    def get(self, product_id: str) -> Optional[Dict[str, Any]]:
        for product in self.products:
            if product["id"] == product_id:
                return product
        return None

    def close(self) -> None:
        self._unsubscribe()


# ----------------------- Reviews -----------------------
class AlreadyReviewed(Exception):
    pass


def list_reviews(tree: DocumentTree, product_id: str) -> List[Dict[str, Any]]:
    reviews = tree.children(f"products/{product_id}/reviews")
    items = [{"uid": uid, **r} for uid, r in reviews.items()]
    return sorted(items, key=lambda r: r.get("createdAt", 0), reverse=True)


def review_summary(reviews: List[Dict[str, Any]]) -> Dict[str, Any]:
    count = len(reviews)
    average = round(sum(r["rating"] for r in reviews) / count, 1) if count else None
    return {"reviewCount": count, "averageRating": average}


def add_review(tree: DocumentTree, product_id: str, uid: str, rating: int, text: str) -> Dict[str, Any]:
    path = f"products/{product_id}/reviews/{uid}"
    if tree.exists(path):
        raise AlreadyReviewed(product_id)
    review = {"rating": rating, "reviewText": text, "createdAt": now_ms()}
    tree.set(path, review)
    logger.info("review_added", product_id=product_id, uid=uid, rating=rating)
    return review
