from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional

from loguru import logger

from glutenscan.config import Configuration
from glutenscan.models import MenuScanStatus, Restaurant, ScanOutcome
from glutenscan.services.scanner import MenuScanner
from glutenscan.services.store import RestaurantNotFound, RestaurantStore
from glutenscan.utils import now_millis


DEFAULT_TTL_MS = 3 * 24 * 60 * 60 * 1000
DEFAULT_BATCH_LIMIT = 5


def needs_scan(r: Restaurant, now: int, ttl_ms: int = DEFAULT_TTL_MS) -> bool:
    if not r.place_id:
        return False
    status = r.effective_scan_status
    if status == MenuScanStatus.FETCHING:
        return False
    if status == MenuScanStatus.NOT_STARTED:
        return True
    return now - r.menu_scan_timestamp >= ttl_ms


class ScanScheduler:
    """Launches menu scans for stale restaurants, a few at a time.

    Candidates are claimed (marked FETCHING) synchronously on the calling
    event loop before any scan starts, so overlapping passes never launch the
    same restaurant twice. At most ``batch_limit`` scans start per pass; the
    rest are picked up by a later pass. Scans run on a bounded thread pool and
    their outcomes are written back to the store by merge key on the loop.
    """

    def __init__(
        self,
        store: RestaurantStore,
        scanner: MenuScanner,
        cfg: Optional[Configuration] = None,
        *,
        clock: Callable[[], int] = now_millis,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.store = store
        self.scanner = scanner
        self.ttl_ms = cfg.scan_ttl_ms if cfg else DEFAULT_TTL_MS
        self.batch_limit = max(1, cfg.scan_batch_limit if cfg else DEFAULT_BATCH_LIMIT)
        self.clock = clock
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.batch_limit, thread_name_prefix="menu-scan"
        )
        self.on_complete: Optional[Callable[[str, ScanOutcome], None]] = None
        self._inflight: set[asyncio.Task[ScanOutcome]] = set()

    def schedule_batch(self, restaurants: Optional[Iterable[Restaurant]] = None) -> List["asyncio.Task[ScanOutcome]"]:
        """Claim up to ``batch_limit`` stale restaurants and start scanning them.

        Must be called from a running event loop. Returns the launched tasks;
        callers may await them but do not have to.
        """
        loop = asyncio.get_running_loop()
        now = self.clock()
        pool = restaurants if restaurants is not None else self.store.snapshot()
        tasks: list[asyncio.Task[ScanOutcome]] = []
        for candidate in pool:
            if len(tasks) >= self.batch_limit:
                break
            target = self.store.claim(candidate.key, lambda r: needs_scan(r, now, self.ttl_ms))
            if target is None:
                continue
            tasks.append(self._spawn(loop, target))
        if tasks:
            logger.info("scan batch launched {} scan(s)", len(tasks))
        return tasks

    def request_rescan(self, key: str) -> "asyncio.Task[ScanOutcome]":
        """Scan one restaurant now, ignoring TTL and in-flight state."""
        loop = asyncio.get_running_loop()
        target = self.store.mark_fetching(key)
        if target is None:
            raise RestaurantNotFound(key)
        logger.info("manual rescan requested for {}", key)
        return self._spawn(loop, target)

    def _spawn(self, loop: asyncio.AbstractEventLoop, target: Restaurant) -> "asyncio.Task[ScanOutcome]":
        task = loop.create_task(self._run(target))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def _run(self, target: Restaurant) -> ScanOutcome:
        loop = asyncio.get_running_loop()
        try:
            outcome = await loop.run_in_executor(self._executor, self.scanner.scan, target)
        except Exception:
            logger.exception("menu scan crashed for {}", target.key)
            outcome = ScanOutcome(MenuScanStatus.FAILED, None, (), self.clock())
        self.store.apply_scan(target.key, outcome)
        if self.on_complete is not None:
            self.on_complete(target.key, outcome)
        return outcome

    def close(self) -> None:
        self._executor.shutdown(wait=False)
