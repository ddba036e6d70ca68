from __future__ import annotations

import asyncio
from typing import List, Optional, Protocol

from loguru import logger

from glutenscan.config import Configuration
from glutenscan.models import (
    Anchor,
    FavoriteStatus,
    RecommendedRestaurant,
    RestaurantCandidate,
    RestaurantUiState,
    ScanOutcome,
)
from glutenscan.services import recommend
from glutenscan.services.annotations import (
    AnnotationStore,
    InteractionTracker,
    InteractionType,
    StoredSignals,
)
from glutenscan.services.fetcher import PageFetcher
from glutenscan.services.geoapify import GeoapifyClient, GeoapifyError
from glutenscan.services.kv_store import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore
from glutenscan.services.robots import RobotsGate
from glutenscan.services.scanner import MenuScanner, PlaceDetailsProvider
from glutenscan.services.scheduler import ScanScheduler
from glutenscan.services.snapshot import SnapshotCache
from glutenscan.services.store import RestaurantStore


LOCATION_REQUIRED_MESSAGE = "Location permission is needed to find restaurants near you"
CREDENTIAL_REQUIRED_MESSAGE = "A place-search API key is required to find restaurants"
CACHED_RESULTS_MESSAGE = "Couldn't refresh restaurants; showing cached results"
LOADING_MESSAGE = "Finding restaurants near you"
SEARCH_FAILED_MESSAGE = "Couldn't load restaurants. Please try again."


class PlaceSearchProvider(Protocol):
    def search(self, anchor: Anchor, radius_m: Optional[float] = None) -> List[RestaurantCandidate]:
        ...


class RestaurantPipeline:
    """Wires search, store, snapshot, scan scheduling and scoring together.

    This is the surface a presentation layer (or the HTTP host) talks to.
    """

    def __init__(
        self,
        cfg: Configuration,
        kv: KeyValueStore,
        search: PlaceSearchProvider,
        details: PlaceDetailsProvider,
        scanner: Optional[MenuScanner] = None,
    ) -> None:
        self.cfg = cfg
        self.search = search
        self.annotations = AnnotationStore(kv)
        self.tracker = InteractionTracker(kv)
        self.signals = StoredSignals(self.annotations, self.tracker)
        self.snapshots = SnapshotCache(kv)
        self.store = RestaurantStore(self.annotations)
        if scanner is None:
            robots = RobotsGate(cfg)
            scanner = MenuScanner(details, PageFetcher(cfg, robots))
        self.scheduler = ScanScheduler(self.store, scanner, cfg)
        self.scheduler.on_complete = self._save_after_scan

    @classmethod
    def from_config(cls, cfg: Configuration) -> "RestaurantPipeline":
        kv: KeyValueStore
        if cfg.store_path:
            kv = JsonFileKeyValueStore(cfg.store_path)
        else:
            kv = InMemoryKeyValueStore()
        client = GeoapifyClient(cfg)
        return cls(cfg, kv, search=client, details=client)

    @property
    def state(self) -> RestaurantUiState:
        return self.store.state

    def warm_start(self) -> Optional[RestaurantUiState]:
        """Show the last saved snapshot, at most once per pipeline."""
        snapshot = self.snapshots.load()
        if snapshot is None or not snapshot.restaurants:
            return None
        logger.info("warm start from snapshot with {} restaurants", len(snapshot.restaurants))
        return self.store.restore(snapshot.restaurants, snapshot.anchor)

    async def refresh(self, anchor: Optional[Anchor], radius_m: Optional[float] = None) -> RestaurantUiState:
        if anchor is None:
            return self.store.publish(RestaurantUiState.permission_required(LOCATION_REQUIRED_MESSAGE))
        try:
            self.cfg.require_geoapify()
        except ValueError:
            return self.store.publish(RestaurantUiState.permission_required(CREDENTIAL_REQUIRED_MESSAGE))

        self.store.publish(RestaurantUiState.loading(LOADING_MESSAGE, anchor=anchor))
        try:
            candidates = await asyncio.to_thread(self.search.search, anchor, radius_m)
        except GeoapifyError as exc:
            logger.warning("restaurant search failed: {}", exc)
            return self._fall_back_to_cache()

        state = self.store.ingest(candidates, anchor)
        self._save_snapshot()
        self.scheduler.schedule_batch()
        return state

    def _save_snapshot(self) -> None:
        anchor = self.store.anchor
        self.snapshots.save(
            self.store.snapshot(),
            anchor.lat if anchor else None,
            anchor.lng if anchor else None,
        )

    def _save_after_scan(self, key: str, outcome: ScanOutcome) -> None:
        self._save_snapshot()

    def _fall_back_to_cache(self) -> RestaurantUiState:
        if self.store.snapshot():
            return self.store.show_cached(CACHED_RESULTS_MESSAGE)
        snapshot = self.snapshots.read()
        if snapshot is not None and snapshot.restaurants:
            return self.store.restore(snapshot.restaurants, snapshot.anchor, message=CACHED_RESULTS_MESSAGE)
        return self.store.publish(RestaurantUiState.error(SEARCH_FAILED_MESSAGE))

    def set_filters(self, **changes) -> RestaurantUiState:
        return self.store.set_filters(**changes)

    def set_favorite(self, key: str, status: FavoriteStatus) -> RestaurantUiState:
        return self.store.set_favorite(key, status)

    def add_note(self, key: str, text: str) -> RestaurantUiState:
        return self.store.add_note(key, text)

    def request_rescan(self, key: str) -> "asyncio.Task[ScanOutcome]":
        return self.scheduler.request_rescan(key)

    def record_interaction(self, key: str, kind: InteractionType) -> int:
        self.store.get(key)  # raises for unknown restaurants
        return self.tracker.record(key, kind)

    def recommendations(self, limit: int = 5) -> List[RecommendedRestaurant]:
        return recommend.top_n(self.store.snapshot(), self.signals, limit)

    def close(self) -> None:
        self.scheduler.close()
