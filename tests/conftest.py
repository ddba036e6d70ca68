from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Union

import pytest
import requests

from glutenscan.config import Configuration


class FakeResponse:
    def __init__(
        self,
        text: str = "",
        status_code: int = 200,
        content_type: str = "text/html; charset=utf-8",
        payload: Optional[dict] = None,
    ) -> None:
        self.text = text
        self.status_code = status_code
        self.headers = {"Content-Type": content_type}
        self.encoding = "utf-8"
        self._payload = payload

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> dict:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def iter_content(self, chunk_size: int = 1, decode_unicode: bool = False) -> Iterator[str]:
        for i in range(0, len(self.text), chunk_size):
            yield self.text[i : i + chunk_size]

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc) -> None:
        return None


Route = Union[FakeResponse, Exception, List[Union[FakeResponse, Exception]]]


class FakeSession:
    """Minimal stand-in for requests.Session keyed by exact URL."""

    def __init__(self, routes: Optional[Dict[str, Route]] = None) -> None:
        self.routes: Dict[str, Route] = dict(routes or {})
        self.calls: List[str] = []
        self.kwargs: List[dict] = []

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.calls.append(url)
        self.kwargs.append(kwargs)
        route = self.routes.get(url)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            return FakeResponse("not found", status_code=404)
        if isinstance(route, Exception):
            raise route
        return route


@pytest.fixture
def cfg() -> Configuration:
    return Configuration(geoapify_api_key="test-key-123456")


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def timeout_error():
    return requests.Timeout("timed out")
