from __future__ import annotations

from typing import Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup


def _resolve(href: str, base_url: str) -> Optional[str]:
    try:
        absolute = urljoin(base_url, href)
        parsed = urlparse(absolute)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return absolute


def find_menu_link(page: str, base_url: str) -> Optional[str]:
    """First anchor whose href mentions "menu", resolved against ``base_url``."""
    if not page:
        return None
    soup = BeautifulSoup(page, "html.parser")
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if "menu" not in href.lower():
            continue
        resolved = _resolve(href, base_url)
        if resolved:
            return resolved
    return None
