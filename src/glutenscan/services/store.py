from __future__ import annotations

import threading
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from glutenscan.models import (
    Anchor,
    FavoriteStatus,
    FilterPrefs,
    MenuScanStatus,
    Restaurant,
    RestaurantCandidate,
    RestaurantUiState,
    ScanOutcome,
    SortMode,
    UiStatus,
)
from glutenscan.services.annotations import AnnotationStore
from glutenscan.services.evidence import looks_gluten_free
from glutenscan.utils import haversine_m


NO_RESTAURANTS_MESSAGE = "No restaurants found"

Listener = Callable[[RestaurantUiState], None]


class RestaurantNotFound(LookupError):
    pass


def _matches(r: Restaurant, prefs: FilterPrefs) -> bool:
    if prefs.gf_only and not r.has_gluten_free_options:
        return False
    if prefs.open_now_only and r.open_now is not True:
        return False
    if prefs.max_distance_meters > 0 and r.distance_meters > prefs.max_distance_meters:
        return False
    if prefs.min_rating > 0 and (r.rating is None or r.rating < prefs.min_rating):
        return False
    return True


def filter_and_sort(restaurants: Iterable[Restaurant], prefs: FilterPrefs) -> List[Restaurant]:
    kept = [r for r in restaurants if _matches(r, prefs)]
    if prefs.sort_mode == SortMode.NAME:
        kept.sort(key=lambda r: r.name.casefold())
    else:
        kept.sort(key=lambda r: r.distance_meters)
    return kept


def _carry_scan_fields(target: Restaurant, previous: Restaurant) -> None:
    target.menu_url = previous.menu_url
    target.menu_scan_status = previous.menu_scan_status
    target.menu_scan_timestamp = previous.menu_scan_timestamp
    target.gluten_free_menu_items = list(previous.gluten_free_menu_items)
    target.has_gluten_free_options = target.has_gluten_free_options or previous.has_gluten_free_options


class RestaurantStore:
    """Sole owner of live restaurant state.

    Every mutation happens under one lock and ends with a fresh projection,
    so readers only ever see complete ``RestaurantUiState`` snapshots.
    Entities are always addressed by merge key.
    """

    def __init__(
        self,
        annotations: Optional[AnnotationStore] = None,
        prefs: Optional[FilterPrefs] = None,
    ) -> None:
        self.annotations = annotations
        self.prefs = prefs or FilterPrefs()
        self._raw: List[Restaurant] = []
        self._anchor: Optional[Anchor] = None
        self._banner: Optional[str] = None
        self._state = RestaurantUiState.idle()
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()

    # ---- reads -------------------------------------------------------

    @property
    def state(self) -> RestaurantUiState:
        return self._state

    @property
    def anchor(self) -> Optional[Anchor]:
        return self._anchor

    def snapshot(self) -> List[Restaurant]:
        with self._lock:
            return [r.copy() for r in self._raw]

    def get(self, key: str) -> Restaurant:
        with self._lock:
            return self._find(key).copy()

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    # ---- writes ------------------------------------------------------

    def ingest(self, candidates: Iterable[RestaurantCandidate], anchor: Anchor) -> RestaurantUiState:
        with self._lock:
            previous: Dict[str, Restaurant] = {r.key: r for r in self._raw}
            fresh: list[Restaurant] = []
            seen: set[str] = set()
            for c in candidates:
                r = Restaurant(
                    name=c.name,
                    address=c.address,
                    latitude=c.lat,
                    longitude=c.lng,
                    place_id=c.place_id or None,
                    rating=c.rating,
                    open_now=c.open_now,
                    has_gluten_free_options=looks_gluten_free(c.name),
                )
                if r.key in seen:
                    continue
                seen.add(r.key)
                old = previous.get(r.key)
                if old is not None:
                    _carry_scan_fields(r, old)
                    r.favorite_status = old.favorite_status
                    r.crowd_notes = list(old.crowd_notes)
                self._apply_annotations(r)
                fresh.append(r)
            self._raw = fresh
            self._set_anchor(anchor)
            self._banner = None
            logger.info("ingested {} restaurants ({} carried over)", len(fresh), len(previous.keys() & seen))
            return self._publish()

    def restore(
        self,
        restaurants: Iterable[Restaurant],
        anchor: Optional[Anchor],
        message: Optional[str] = None,
    ) -> RestaurantUiState:
        """Replace the raw list with previously saved restaurants."""
        with self._lock:
            self._raw = [r.copy() for r in restaurants]
            for r in self._raw:
                self._apply_annotations(r)
            self._set_anchor(anchor)
            self._banner = message
            return self._publish()

    def show_cached(self, message: str) -> RestaurantUiState:
        with self._lock:
            self._banner = message
            return self._publish()

    def set_filters(self, **changes) -> RestaurantUiState:
        with self._lock:
            self.prefs = replace(self.prefs, **changes)
            return self._publish()

    def set_favorite(self, key: str, status: FavoriteStatus) -> RestaurantUiState:
        with self._lock:
            r = self._find(key)
            r.favorite_status = status
            if self.annotations is not None:
                self.annotations.set_favorite(key, status)
            return self._publish()

    def add_note(self, key: str, text: str) -> RestaurantUiState:
        text = (text or "").strip()
        if not text:
            raise ValueError("note text must not be empty")
        with self._lock:
            r = self._find(key)
            if self.annotations is not None:
                r.crowd_notes = self.annotations.add_note(key, text)
            else:
                r.crowd_notes.append(text)
            return self._publish()

    def claim(self, key: str, eligible: Callable[[Restaurant], bool]) -> Optional[Restaurant]:
        """Atomically check ``eligible`` and flag the restaurant as in flight.

        Returns a detached copy to scan, or None when the restaurant is
        unknown or not eligible.
        """
        with self._lock:
            r = self._find_or_none(key)
            if r is None or not eligible(r):
                return None
            r.menu_scan_status = MenuScanStatus.FETCHING
            self._publish()
            return r.copy()

    def mark_fetching(self, key: str) -> Optional[Restaurant]:
        return self.claim(key, lambda r: True)

    def apply_scan(self, key: str, outcome: ScanOutcome) -> bool:
        with self._lock:
            r = self._find_or_none(key)
            if r is None:
                logger.debug("scan result for {} dropped: restaurant no longer listed", key)
                return False
            r.menu_scan_status = outcome.status
            r.menu_scan_timestamp = outcome.timestamp
            r.menu_url = outcome.menu_url
            r.gluten_free_menu_items = list(outcome.evidence)
            if outcome.status == MenuScanStatus.SUCCESS and outcome.evidence:
                r.has_gluten_free_options = True
            self._publish()
            return True

    # ---- internals ---------------------------------------------------

    def _find_or_none(self, key: str) -> Optional[Restaurant]:
        for r in self._raw:
            if r.key == key:
                return r
        return None

    def _find(self, key: str) -> Restaurant:
        r = self._find_or_none(key)
        if r is None:
            raise RestaurantNotFound(key)
        return r

    def _set_anchor(self, anchor: Optional[Anchor]) -> None:
        self._anchor = anchor
        if anchor is None:
            return
        for r in self._raw:
            r.distance_meters = max(0.0, haversine_m(anchor.lat, anchor.lng, r.latitude, r.longitude))

    def _apply_annotations(self, r: Restaurant) -> None:
        if self.annotations is None:
            return
        favorite = self.annotations.favorite_for(r.key)
        if favorite != FavoriteStatus.NONE:
            r.favorite_status = favorite
        notes = self.annotations.notes_for(r.key)
        if notes:
            r.crowd_notes = notes

    def project(self) -> RestaurantUiState:
        with self._lock:
            visible = filter_and_sort(self._raw, self.prefs)
            if not visible:
                return RestaurantUiState.error(NO_RESTAURANTS_MESSAGE, anchor=self._anchor)
            return RestaurantUiState(
                status=UiStatus.SUCCESS,
                restaurants=tuple(r.copy() for r in visible),
                message=self._banner,
                anchor=self._anchor,
            )

    def publish(self, state: RestaurantUiState) -> RestaurantUiState:
        """Push a state that did not come from the projection (loading, errors)."""
        self._state = state
        for listener in list(self._listeners):
            listener(state)
        return state

    def _publish(self) -> RestaurantUiState:
        return self.publish(self.project())
