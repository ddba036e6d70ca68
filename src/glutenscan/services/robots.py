from __future__ import annotations

import threading
from typing import Dict, List, Optional
from urllib.parse import urlparse

import requests
from loguru import logger

from glutenscan.config import Configuration


def parse_disallow_rules(text: str) -> List[str]:
    """Collect ``Disallow`` prefixes from the ``User-agent: *`` group(s)."""
    rules: list[str] = []
    in_wildcard = False
    seen_directive = False
    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        field, value = line.split(":", 1)
        field = field.strip().lower()
        value = value.strip()
        if field == "user-agent":
            # consecutive user-agent lines share one group
            if seen_directive:
                in_wildcard = False
                seen_directive = False
            if value == "*":
                in_wildcard = True
            continue
        seen_directive = True
        if in_wildcard and field == "disallow" and value:
            rules.append(value)
    return rules


class RobotsGate:
    """Per-host robots.txt cache answering allow/deny for URLs.

    Rules live for the lifetime of the gate. When robots.txt cannot be
    fetched the host is treated as fully allowed unless ``robots_fail_open``
    is switched off.
    """

    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.session = session or requests.Session()
        self._rules: Dict[str, Optional[List[str]]] = {}
        self._lock = threading.Lock()

    def _fetch_rules(self, scheme: str, host: str) -> Optional[List[str]]:
        url = f"{scheme}://{host}/robots.txt"
        try:
            resp = self.session.get(
                url,
                headers={"User-Agent": self.cfg.user_agent},
                timeout=self.cfg.robots_timeout,
            )
        except requests.RequestException as exc:
            logger.debug("robots.txt unreachable for {}: {}", host, exc)
            return None
        if resp.status_code != 200:
            logger.debug("robots.txt for {} returned {}", host, resp.status_code)
            return None
        return parse_disallow_rules(resp.text or "")

    def rules_for(self, url: str) -> Optional[List[str]]:
        parsed = urlparse(url)
        host = (parsed.netloc or "").lower()
        if not host:
            return []
        with self._lock:
            if host in self._rules:
                return self._rules[host]
        rules = self._fetch_rules(parsed.scheme or "https", host)
        with self._lock:
            # first writer wins if two threads raced on the same host
            return self._rules.setdefault(host, rules)

    def is_allowed(self, url: str) -> bool:
        rules = self.rules_for(url)
        if rules is None:
            return self.cfg.robots_fail_open
        path = urlparse(url).path or "/"
        for prefix in rules:
            if path.startswith(prefix):
                logger.debug("robots.txt disallows {} (prefix {})", url, prefix)
                return False
        return True
