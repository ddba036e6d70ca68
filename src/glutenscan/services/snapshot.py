from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from glutenscan.models import (
    MAX_EVIDENCE_CHARS,
    MAX_EVIDENCE_ITEMS,
    Anchor,
    FavoriteStatus,
    MenuScanStatus,
    Restaurant,
)
from glutenscan.services.kv_store import SNAPSHOT_NAMESPACE, KeyValueStore
from glutenscan.utils import now_millis


class CachedRestaurant(BaseModel):
    name: str
    address: Optional[str] = None
    has_gf: bool = False
    lat: float
    lng: float
    rating: Optional[float] = None
    open_now: Optional[bool] = None
    place_id: Optional[str] = None
    menu_url: Optional[str] = None
    menu_scan_status: MenuScanStatus = MenuScanStatus.NOT_STARTED
    menu_scan_timestamp: int = Field(default=0, ge=0)
    favorite_status: FavoriteStatus = FavoriteStatus.NONE
    notes: List[str] = Field(default_factory=list)
    menu: List[str] = Field(default_factory=list)

    @field_validator("lat", "lng")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("coordinate must be finite")
        return value

    @classmethod
    def from_restaurant(cls, r: Restaurant) -> "CachedRestaurant":
        return cls(
            name=r.name,
            address=r.address,
            has_gf=r.has_gluten_free_options,
            lat=r.latitude,
            lng=r.longitude,
            rating=r.rating,
            open_now=r.open_now,
            place_id=r.place_id,
            menu_url=r.menu_url,
            menu_scan_status=r.menu_scan_status,
            menu_scan_timestamp=r.menu_scan_timestamp,
            favorite_status=r.favorite_status,
            notes=list(r.crowd_notes),
            menu=list(r.gluten_free_menu_items),
        )

    def to_restaurant(self) -> Restaurant:
        status = self.menu_scan_status
        if self.menu_scan_timestamp == 0:
            status = MenuScanStatus.NOT_STARTED
        elif status == MenuScanStatus.FETCHING:
            # the scan was interrupted; nothing is in flight after a restart
            status = MenuScanStatus.FAILED
        return Restaurant(
            name=self.name,
            address=self.address,
            latitude=self.lat,
            longitude=self.lng,
            place_id=self.place_id or None,
            rating=self.rating,
            open_now=self.open_now,
            has_gluten_free_options=self.has_gf,
            gluten_free_menu_items=[m[:MAX_EVIDENCE_CHARS] for m in self.menu if m][:MAX_EVIDENCE_ITEMS],
            menu_url=self.menu_url or None,
            menu_scan_status=status,
            menu_scan_timestamp=self.menu_scan_timestamp,
            favorite_status=self.favorite_status,
            crowd_notes=[n for n in self.notes if n],
        )


class SnapshotBlob(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    saved_at: int
    items: List[CachedRestaurant]


@dataclass
class Snapshot:
    restaurants: List[Restaurant]
    anchor_lat: Optional[float]
    anchor_lng: Optional[float]
    saved_at: int

    @property
    def anchor(self) -> Optional[Anchor]:
        if self.anchor_lat is None or self.anchor_lng is None:
            return None
        return Anchor(self.anchor_lat, self.anchor_lng)


class SnapshotCache:
    """Offline copy of the last fetched restaurant list and its anchor."""

    def __init__(self, kv: KeyValueStore, namespace: str = SNAPSHOT_NAMESPACE) -> None:
        self.kv = kv
        self.namespace = namespace
        self._load_attempted = False

    def save(self, restaurants: Iterable[Restaurant], anchor_lat: Optional[float], anchor_lng: Optional[float]) -> int:
        blob = SnapshotBlob(
            lat=anchor_lat,
            lng=anchor_lng,
            saved_at=now_millis(),
            items=[CachedRestaurant.from_restaurant(r) for r in restaurants],
        )
        self.kv.set(self.namespace, blob.model_dump_json())
        logger.debug("snapshot saved: {} restaurants", len(blob.items))
        return blob.saved_at

    def load(self) -> Optional[Snapshot]:
        """Read the snapshot once; later calls return None."""
        if self._load_attempted:
            return None
        self._load_attempted = True
        return self.read()

    def read(self) -> Optional[Snapshot]:
        raw = self.kv.get(self.namespace)
        if not raw:
            return None
        try:
            blob = SnapshotBlob.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("ignoring malformed restaurant snapshot: {} error(s)", exc.error_count())
            return None
        anchor_lat, anchor_lng = blob.lat, blob.lng
        if anchor_lat is None or anchor_lng is None or not (math.isfinite(anchor_lat) and math.isfinite(anchor_lng)):
            anchor_lat = anchor_lng = None
        return Snapshot(
            restaurants=[item.to_restaurant() for item in blob.items],
            anchor_lat=anchor_lat,
            anchor_lng=anchor_lng,
            saved_at=blob.saved_at,
        )
