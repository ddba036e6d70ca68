from __future__ import annotations

import io

import requests
from requests.structures import CaseInsensitiveDict
from requests.utils import get_encoding_from_headers

from glutenscan.config import Configuration
from glutenscan.services.fetcher import PageFetcher
from glutenscan.services.robots import RobotsGate


def _fetcher(cfg, session) -> PageFetcher:
    return PageFetcher(cfg, RobotsGate(cfg, session=session), session=session)


def test_fetch_returns_html(cfg, fake_session, fake_response) -> None:
    session = fake_session({"https://bistro.example/": fake_response("<p>hello</p>")})
    assert _fetcher(cfg, session).fetch("https://bistro.example/") == "<p>hello</p>"
    headers = session.kwargs[-1]["headers"]
    assert "glutenscan" in headers["User-Agent"]
    assert headers["Accept"].startswith("text/html")
    assert session.kwargs[-1]["timeout"] == (cfg.fetch_timeout, cfg.fetch_timeout)


def test_robots_denial_skips_request(cfg, fake_session, fake_response) -> None:
    session = fake_session(
        {
            "https://bistro.example/robots.txt": fake_response("User-agent: *\nDisallow: /menu\n"),
            "https://bistro.example/menu": fake_response("<p>gluten free</p>"),
        }
    )
    assert _fetcher(cfg, session).fetch("https://bistro.example/menu") is None
    assert "https://bistro.example/menu" not in session.calls


def test_non_200_and_non_text_rejected(cfg, fake_session, fake_response) -> None:
    session = fake_session(
        {
            "https://bistro.example/gone": fake_response("gone", status_code=410),
            "https://bistro.example/menu.pdf": fake_response("%PDF", content_type="application/pdf"),
            "https://bistro.example/data": fake_response("{}", content_type="application/json"),
        }
    )
    fetcher = _fetcher(cfg, session)
    assert fetcher.fetch("https://bistro.example/gone") is None
    assert fetcher.fetch("https://bistro.example/menu.pdf") is None
    assert fetcher.fetch("https://bistro.example/data") is None


def test_plain_text_is_accepted(cfg, fake_session, fake_response) -> None:
    session = fake_session({"https://bistro.example/menu.txt": fake_response("GF pasta", content_type="text/plain")})
    assert _fetcher(cfg, session).fetch("https://bistro.example/menu.txt") == "GF pasta"


def test_body_is_truncated_at_cap(fake_session, fake_response) -> None:
    small = Configuration(max_page_chars=20_000)
    session = fake_session({"https://big.example/": fake_response("a" * 50_000)})
    page = _fetcher(small, session).fetch("https://big.example/")
    assert page is not None
    assert len(page) == 20_000


def test_network_error_returns_none(cfg, fake_session) -> None:
    session = fake_session({"https://down.example/": requests.ConnectionError("dns failure")})
    assert _fetcher(cfg, session).fetch("https://down.example/") is None


def _real_response(body: bytes, content_type: str) -> requests.Response:
    resp = requests.Response()
    resp.status_code = 200
    resp.headers = CaseInsensitiveDict({"Content-Type": content_type})
    resp.encoding = get_encoding_from_headers(resp.headers)
    resp.raw = io.BytesIO(body)
    return resp


def test_utf8_page_without_charset_is_not_garbled(cfg, fake_session) -> None:
    body = "<p>Café gluten-free crêpe</p>".encode("utf-8")
    session = fake_session({"https://cafe.example/": _real_response(body, "text/html")})
    assert _fetcher(cfg, session).fetch("https://cafe.example/") == "<p>Café gluten-free crêpe</p>"


def test_declared_charset_is_respected(cfg, fake_session) -> None:
    body = "<p>Café sans gluten</p>".encode("latin-1")
    session = fake_session({"https://cafe.example/": _real_response(body, "text/html; charset=ISO-8859-1")})
    assert _fetcher(cfg, session).fetch("https://cafe.example/") == "<p>Café sans gluten</p>"
