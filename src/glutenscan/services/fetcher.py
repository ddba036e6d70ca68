from __future__ import annotations

from typing import Optional

import requests
from loguru import logger

from glutenscan.config import Configuration
from glutenscan.services.robots import RobotsGate


ACCEPT_HTML = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.5"


class PageFetcher:
    """Bounded GET for HTML pages. Every rejection comes back as None."""

    def __init__(
        self,
        cfg: Configuration,
        robots: RobotsGate,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.cfg = cfg
        self.robots = robots
        self.session = session or requests.Session()

    def fetch(self, url: str) -> Optional[str]:
        if not self.robots.is_allowed(url):
            return None
        headers = {"User-Agent": self.cfg.user_agent, "Accept": ACCEPT_HTML}
        timeout = (self.cfg.fetch_timeout, self.cfg.fetch_timeout)
        try:
            with self.session.get(url, headers=headers, timeout=timeout, stream=True) as resp:
                if resp.status_code != 200:
                    logger.debug("fetch {} -> status {}", url, resp.status_code)
                    return None
                content_type = resp.headers.get("Content-Type", "")
                if "text" not in content_type.lower():
                    logger.debug("fetch {} -> non-text content type {!r}", url, content_type)
                    return None
                if "charset=" not in content_type.lower():
                    resp.encoding = "utf-8"
                return self._read_capped(resp)
        except requests.RequestException as exc:
            logger.debug("fetch {} failed: {}", url, exc)
            return None

    def _read_capped(self, resp: requests.Response) -> str:
        limit = self.cfg.max_page_chars
        parts: list[str] = []
        total = 0
        for chunk in resp.iter_content(chunk_size=8192, decode_unicode=True):
            if not chunk:
                continue
            if isinstance(chunk, bytes):
                chunk = chunk.decode(resp.encoding or "utf-8", errors="replace")
            remaining = limit - total
            if len(chunk) >= remaining:
                parts.append(chunk[:remaining])
                break
            parts.append(chunk)
            total += len(chunk)
        return "".join(parts)
