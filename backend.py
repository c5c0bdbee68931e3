from dataclasses import dataclass
from typing import Optional

import structlog
from pymongo.database import Database

from auth import AuthProvider
from catalog import CatalogView
from checkout import CheckoutRegistry, OrderService
from database import DocumentTree, connect
from geo import ReverseGeocoder
from settings import Settings
from storage import ObjectStorage

logger = structlog.get_logger(__name__)


@dataclass
class Backend:
    """Every client the routes talk to, built once at startup."""

    settings: Settings
    db: Database
    tree: DocumentTree
    auth: AuthProvider
    storage: ObjectStorage
    geocoder: ReverseGeocoder
    catalog: CatalogView
    orders: OrderService
    checkouts: CheckoutRegistry

    def close(self) -> None:
        self.catalog.close()
        self.geocoder.close()


def build_backend(settings: Settings, db: Optional[Database] = None, geocoder: Optional[ReverseGeocoder] = None) -> Backend:
    if db is None:
        db = connect(settings.database_url, settings.database_name)
    tree = DocumentTree(db)
    catalog = CatalogView(tree)
    orders = OrderService(
        tree,
        shipping=settings.shipping_charge,
        companies=lambda: catalog.companies,
        geolocation_timeout=settings.geolocation_timeout,
        geolocation_max_age=settings.geolocation_max_age,
    )
    backend = Backend(
        settings=settings,
        db=db,
        tree=tree,
        auth=AuthProvider(db, settings.jwt_secret, settings.jwt_ttl_days),
        storage=ObjectStorage(db, settings.public_base_url),
        geocoder=geocoder or ReverseGeocoder(settings.reverse_geocode_url, settings.reverse_geocode_timeout),
        catalog=catalog,
        orders=orders,
        checkouts=CheckoutRegistry(orders),
    )
    logger.info("backend_ready", database=settings.database_name, shipping=settings.shipping_charge)
    return backend
