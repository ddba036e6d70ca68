from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field

from glutenscan.utils import mask_secret


DEFAULT_USER_AGENT = "glutenscan/0.1 (+menu scanner looking for gluten-free options; respects robots.txt)"


class Configuration(BaseModel):
    # Geoapify (place search + place details)
    geoapify_api_key: Optional[str] = Field(default=None)
    geoapify_base_url: str = Field(default="https://api.geoapify.com")
    geoapify_timeout: int = Field(default=8)
    geoapify_max_results: int = Field(default=20)
    search_radius_m: float = Field(default=5000.0)

    # Crawling
    robots_timeout: float = Field(default=5.0)
    fetch_timeout: float = Field(default=8.0)
    max_page_chars: int = Field(default=200_000)
    user_agent: str = Field(default=DEFAULT_USER_AGENT)
    robots_fail_open: bool = Field(default=True)

    # Scheduling
    scan_ttl_days: float = Field(default=3.0)
    scan_batch_limit: int = Field(default=5)

    # Storage / logging
    store_path: Optional[str] = Field(default=None)
    log_level: str = Field(default="INFO")

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Configuration":
        raw: dict[str, Any] = {}

        env_map = {
            "geoapify_api_key": os.getenv("GEOAPIFY_API_KEY"),
            "geoapify_base_url": os.getenv("GEOAPIFY_BASE_URL"),
            "geoapify_timeout": os.getenv("GEOAPIFY_TIMEOUT"),
            "geoapify_max_results": os.getenv("GEOAPIFY_MAX_RESULTS"),
            "search_radius_m": os.getenv("SEARCH_RADIUS_M"),
            "robots_timeout": os.getenv("ROBOTS_TIMEOUT"),
            "fetch_timeout": os.getenv("FETCH_TIMEOUT"),
            "max_page_chars": os.getenv("MAX_PAGE_CHARS"),
            "user_agent": os.getenv("SCANNER_USER_AGENT"),
            "robots_fail_open": os.getenv("ROBOTS_FAIL_OPEN"),
            "scan_ttl_days": os.getenv("SCAN_TTL_DAYS"),
            "scan_batch_limit": os.getenv("SCAN_BATCH_LIMIT"),
            "store_path": os.getenv("GLUTENSCAN_STORE_PATH"),
            "log_level": os.getenv("LOG_LEVEL"),
        }

        bool_fields = {"robots_fail_open"}

        for k, v in env_map.items():
            if v is None:
                continue
            if k in bool_fields:
                raw[k] = str(v).lower() in {"1", "true", "yes", "on"}
            else:
                raw[k] = v

        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**raw)

    def require_geoapify(self) -> None:
        if not self.geoapify_api_key:
            raise ValueError("GEOAPIFY_API_KEY is required")

    @property
    def scan_ttl_ms(self) -> int:
        return int(self.scan_ttl_days * 24 * 60 * 60 * 1000)

    def log_summary(self) -> str:
        return (
            "geoapify=%s base=%s radius_m=%s ttl_days=%s batch=%s robots_fail_open=%s store=%s api_key=%s"
            % (
                bool(self.geoapify_api_key),
                self.geoapify_base_url,
                self.search_radius_m,
                self.scan_ttl_days,
                self.scan_batch_limit,
                self.robots_fail_open,
                self.store_path or "memory",
                mask_secret(self.geoapify_api_key),
            )
        )
