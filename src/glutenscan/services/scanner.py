from __future__ import annotations

from typing import Callable, Optional, Protocol

from loguru import logger

from glutenscan.models import MenuScanStatus, Restaurant, ScanOutcome
from glutenscan.services.evidence import EvidenceExtractor, Extractor
from glutenscan.services.fetcher import PageFetcher
from glutenscan.services.geoapify import GeoapifyError
from glutenscan.services.menu_links import find_menu_link
from glutenscan.utils import now_millis


class PlaceDetailsProvider(Protocol):
    def website_for(self, place_id: str) -> Optional[str]:
        ...


class MenuScanner:
    """Website -> homepage -> menu page -> evidence, for a single restaurant.

    Never raises for network or provider trouble; everything is folded into
    the outcome status. The outcome timestamp is always the completion time so
    even failures push the next TTL-driven rescan out.
    """

    def __init__(
        self,
        details: PlaceDetailsProvider,
        fetcher: PageFetcher,
        extractor: Optional[Extractor] = None,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self.details = details
        self.fetcher = fetcher
        self.extractor = extractor or EvidenceExtractor()
        self.clock = clock

    def _resolve_website(self, restaurant: Restaurant) -> Optional[str]:
        if not restaurant.place_id:
            return None
        try:
            website = self.details.website_for(restaurant.place_id)
        except (GeoapifyError, ValueError) as exc:
            logger.warning("place details lookup failed for {}: {}", restaurant.name, exc)
            return None
        website = (website or "").strip()
        if not website:
            return None
        if "://" not in website:
            website = f"https://{website}"
        return website

    def scan(self, restaurant: Restaurant) -> ScanOutcome:
        logger.info("menu scan started: {} ({})", restaurant.name, restaurant.key)
        website = self._resolve_website(restaurant)
        if website is None:
            outcome = ScanOutcome(MenuScanStatus.NO_WEBSITE, None, (), self.clock())
            logger.info("menu scan {}: no website", restaurant.name)
            return outcome

        page = self.fetcher.fetch(website)
        menu_url: Optional[str] = None
        if page is not None:
            link = find_menu_link(page, website)
            if link and link.rstrip("/") != website.rstrip("/"):
                menu_url = link
                menu_page = self.fetcher.fetch(link)
                if menu_page is not None:
                    page = menu_page

        if page is None:
            logger.info("menu scan {}: site unreachable ({})", restaurant.name, website)
            return ScanOutcome(MenuScanStatus.FAILED, menu_url, (), self.clock())

        evidence = tuple(self.extractor.extract(page))
        logger.info(
            "menu scan {}: success menu_url={} evidence={}",
            restaurant.name,
            menu_url,
            len(evidence),
        )
        return ScanOutcome(MenuScanStatus.SUCCESS, menu_url, evidence, self.clock())
