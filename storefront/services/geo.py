"""IP geolocation and great-circle distance helpers."""

from __future__ import annotations

import ipaddress
import math
from dataclasses import dataclass
from typing import Any, Optional

import requests
from loguru import logger

from storefront.core.concurrency import run_in_thread_geoip
from storefront.core.config import settings

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True, slots=True)
class Location:
    latitude: float
    longitude: float
    city: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    source: str = "ip"  # ip | fallback | client


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance between two WGS84 points on a 6371 km sphere."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def parse_ip(ip: str) -> Optional[ipaddress.IPv4Address | ipaddress.IPv6Address]:
    """Parse a client address, unwrapping IPv4-mapped IPv6; None when unparseable."""

    candidate = ip.strip()
    if candidate.startswith("::ffff:"):
        candidate = candidate[len("::ffff:"):]
    try:
        return ipaddress.ip_address(candidate)
    except ValueError:
        return None


def is_private_ip(ip: str) -> bool:
    """True for loopback, RFC1918, link-local and unspecified addresses."""

    addr = parse_ip(ip)
    if addr is None:
        return False
    return addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_unspecified


def fallback_location() -> Location:
    return Location(
        latitude=settings.FALLBACK_LATITUDE,
        longitude=settings.FALLBACK_LONGITUDE,
        city=settings.FALLBACK_CITY,
        country=settings.FALLBACK_COUNTRY,
        region=settings.FALLBACK_REGION,
        source="fallback",
    )


class GeoResolver:
    """Best-effort IP to location lookup against an ip-api compatible service.

    Never raises: any transport error, timeout, non-200 reply or a payload whose
    ``status`` is not ``"success"`` yields ``None``. Lookups run on worker
    threads, so without an injected client each one opens its own session.
    """

    def __init__(self, http: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self._http = http
        self._timeout = timeout if timeout is not None else settings.GEOIP_TIMEOUT_SEC

    def _fetch(self, ip: str) -> Optional[dict[str, Any]]:
        if self._http is not None:
            return self._request(self._http, ip)
        with requests.Session() as http:
            return self._request(http, ip)

    def _request(self, http: requests.Session, ip: str) -> Optional[dict[str, Any]]:
        response = http.get(
            settings.GEOIP_URL.format(ip=ip),
            params={"fields": settings.GEOIP_FIELDS},
            timeout=self._timeout,
        )
        if response.status_code != 200:
            logger.bind(ip=ip, status=response.status_code).warning("geoip_http_error")
            return None
        return response.json()

    async def resolve_from_ip(self, ip: Optional[str]) -> Optional[Location]:
        if not ip:
            return fallback_location()
        if parse_ip(ip) is None:
            logger.bind(ip=ip).info("geoip_unparseable_address")
            return None
        if is_private_ip(ip):
            return fallback_location()
        try:
            data = await run_in_thread_geoip(self._fetch, ip)
        except (requests.RequestException, ValueError) as exc:
            logger.bind(ip=ip, error=str(exc)).warning("geoip_lookup_failed")
            return None
        if not data or data.get("status") != "success":
            logger.bind(ip=ip, message=(data or {}).get("message")).info("geoip_no_match")
            return None
        try:
            return Location(
                latitude=float(data["lat"]),
                longitude=float(data["lon"]),
                city=data.get("city") or None,
                country=data.get("country") or None,
                region=data.get("regionName") or None,
                source="ip",
            )
        except (KeyError, TypeError, ValueError):
            logger.bind(ip=ip).warning("geoip_malformed_payload")
            return None
