from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import requests
from loguru import logger

from glutenscan.config import Configuration
from glutenscan.models import Anchor, RestaurantCandidate


RESTAURANT_CATEGORIES = "catering.restaurant,catering.cafe,catering.fast_food"


class GeoapifyError(RuntimeError):
    pass


@dataclass
class _RetryPolicy:
    retries: int = 2
    base_delay: float = 0.5


class GeoapifyClient:
    """Place-search and place-details provider backed by Geoapify."""

    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.geoapify_base_url.rstrip("/")
        self.session = session or requests.Session()
        self._cache_ttl = 60 * 30  # 30 minutes
        self._cache_max = 128
        self._places_cache: OrderedDict[str, Tuple[float, List[RestaurantCandidate]]] = OrderedDict()
        self._website_cache: OrderedDict[str, Tuple[float, Optional[str]]] = OrderedDict()

    @property
    def has_credential(self) -> bool:
        return bool(self.cfg.geoapify_api_key)

    def _cache_get(self, cache: OrderedDict[str, Tuple[float, Any]], key: str):  # type: ignore[valid-type]
        entry = cache.get(key)
        if not entry:
            return None
        ts, value = entry
        if time.time() - ts > self._cache_ttl:
            cache.pop(key, None)
            return None
        cache.move_to_end(key)
        return entry

    def _cache_set(self, cache: OrderedDict[str, Tuple[float, Any]], key: str, value):  # type: ignore[valid-type]
        if len(cache) >= self._cache_max:
            cache.popitem(last=False)
        cache[key] = (time.time(), value)

    def _get(self, path: str, params: dict) -> dict:
        url = f"{self.base}{path}"
        headers = {"Accept": "application/json"}
        params = {**params, "apiKey": self.cfg.geoapify_api_key}
        policy = _RetryPolicy()
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = self.session.get(url, headers=headers, params=params, timeout=self.cfg.geoapify_timeout)
            except requests.RequestException as exc:  # network error
                if attempt <= policy.retries:
                    time.sleep(policy.base_delay * attempt)
                    continue
                raise GeoapifyError(f"request error: {exc}") from exc

            if resp.status_code in (429, 500, 502, 503, 504):
                if attempt <= policy.retries:
                    time.sleep(policy.base_delay * attempt)
                    continue
                raise GeoapifyError(f"upstream {resp.status_code}: {resp.text[:300]}")

            if not resp.ok:
                raise GeoapifyError(f"upstream {resp.status_code}: {resp.text[:300]}")

            try:
                return resp.json()
            except ValueError as exc:
                raise GeoapifyError("invalid json response") from exc

    def _parse_candidates(self, features: List[dict]) -> List[RestaurantCandidate]:
        results: list[RestaurantCandidate] = []
        for feat in features:
            props = feat.get("properties") or {}
            name = props.get("name")
            if not name:
                continue
            address = props.get("formatted") or props.get("address_line2")
            lon = props.get("lon")
            lat = props.get("lat")
            if lon is None or lat is None:
                geom = feat.get("geometry") or {}
                coords = geom.get("coordinates") or [None, None]
                if isinstance(coords, list) and len(coords) >= 2:
                    lon, lat = coords[0], coords[1]
            try:
                lat_f, lon_f = float(lat), float(lon)
            except (TypeError, ValueError):
                logger.debug("skipping place without coordinates: {}", name)
                continue
            rating = props.get("rating") if isinstance(props.get("rating"), (int, float)) else None
            results.append(
                RestaurantCandidate(
                    name=str(name),
                    address=(str(address) if address else None),
                    lat=lat_f,
                    lng=lon_f,
                    rating=(float(rating) if rating is not None else None),
                    open_now=None,
                    place_id=(str(props["place_id"]) if props.get("place_id") else None),
                )
            )
        return results

    def search(self, anchor: Anchor, radius_m: Optional[float] = None) -> List[RestaurantCandidate]:
        """Restaurants within ``radius_m`` of the anchor, nearest first."""
        self.cfg.require_geoapify()
        radius = max(radius_m or self.cfg.search_radius_m, 100.0)
        limit = self.cfg.geoapify_max_results
        key = f"circle:{anchor.lng:.4f},{anchor.lat:.4f}:{radius:.0f}:{limit}"
        cached = self._cache_get(self._places_cache, key)
        if cached is not None:
            return list(cached[1])
        params = {
            "categories": RESTAURANT_CATEGORIES,
            "filter": f"circle:{anchor.lng},{anchor.lat},{radius:.0f}",
            "bias": f"proximity:{anchor.lng},{anchor.lat}",
            "limit": limit,
        }
        payload = self._get("/v2/places", params)
        results = self._parse_candidates(payload.get("features") or [])
        logger.info("geoapify search radius_m={:.0f} -> {} candidates", radius, len(results))
        self._cache_set(self._places_cache, key, list(results))
        return results

    def website_for(self, place_id: str) -> Optional[str]:
        """Website URL for a place, or None when unknown or unconfigured."""
        if not place_id or not self.has_credential:
            return None
        cached = self._cache_get(self._website_cache, place_id)
        if cached is not None:
            return cached[1]
        payload = self._get("/v2/place-details", {"id": place_id, "features": "details"})
        website: Optional[str] = None
        for feat in payload.get("features") or []:
            props = feat.get("properties") or {}
            value = props.get("website") or (props.get("contact") or {}).get("website")
            if value:
                website = str(value).strip() or None
                break
        self._cache_set(self._website_cache, place_id, website)
        return website
