import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import httpx
import structlog

logger = structlog.get_logger(__name__)

# Bounded pool shared by every location lookup.
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="geolocation")


@dataclass
class GeoFix:
    lat: float
    lng: float
    timestamp: float


LocationProvider = Callable[[], GeoFix]


def reported_location(lat: Optional[float], lng: Optional[float], timestamp: Optional[float] = None) -> Optional[LocationProvider]:
    """Wrap coordinates sent by the client device as a location provider."""
    if lat is None or lng is None:
        return None

    def provider() -> GeoFix:
        return GeoFix(lat, lng, timestamp if timestamp is not None else time.time())

    return provider


def acquire_location(
    provider: Optional[LocationProvider],
    fallback: Dict[str, float],
    timeout: float = 10,
    max_age: float = 60,
) -> Tuple[Dict[str, float], str]:
    """Device coordinates when available in time, otherwise the fallback.

    Returns the location and its source ("device" or "fallback"). Failures are
    not raised: a missing provider, an error, a timeout and a stale fix all
    degrade to the fallback.
    """
    if provider is None:
        return dict(fallback), "fallback"
    try:
        fix = _executor.submit(provider).result(timeout=timeout)
    except FutureTimeout:
        logger.warning("geolocation_timeout", timeout=timeout)
        return dict(fallback), "fallback"
    except Exception as e:
        logger.warning("geolocation_failed", error=str(e))
        return dict(fallback), "fallback"
    if time.time() - fix.timestamp > max_age:
        logger.warning("geolocation_stale", age=time.time() - fix.timestamp)
        return dict(fallback), "fallback"
    return {"lat": fix.lat, "lng": fix.lng}, "device"


class ReverseGeocoder:
    def __init__(self, url: str, timeout: float = 5, client: Optional[httpx.Client] = None):
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def lookup(self, lat: float, lng: float) -> Optional[Dict[str, str]]:
        """Best-effort address for the coordinates; None when the lookup fails."""
        try:
            response = self.client.get(self.url, params={
                "latitude": lat,
                "longitude": lng,
                "localityLanguage": "en",
            })
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("reverse_geocode_failed", lat=lat, lng=lng, error=str(e))
            return None
        return {
            "street": data.get("locality") or "",
            "city": data.get("city") or data.get("locality") or "",
            "state": data.get("principalSubdivision") or "",
            "pincode": data.get("postcode") or "",
            "fullAddress": data.get("display_name") or "",
        }

    def close(self) -> None:
        self.client.close()
