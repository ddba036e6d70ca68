from __future__ import annotations

from unittest.mock import patch

import pytest

from glutenscan.config import Configuration
from glutenscan.models import Anchor
from glutenscan.services.geoapify import GeoapifyClient, GeoapifyError


PLACES_URL = "https://api.geoapify.com/v2/places"
DETAILS_URL = "https://api.geoapify.com/v2/place-details"

PLACES_PAYLOAD = {
    "features": [
        {
            "properties": {
                "name": "Gluten Free Bistro",
                "formatted": "1 Pike St, Seattle",
                "lat": 47.61,
                "lon": -122.33,
                "place_id": "abc123",
            }
        },
        {
            "properties": {"name": "Geometry Only", "place_id": "def456"},
            "geometry": {"coordinates": [-122.34, 47.62]},
        },
        {"properties": {"formatted": "no name"}},
        {"properties": {"name": "Nowhere"}},
    ]
}


def test_search_parses_candidates(cfg, fake_session, fake_response) -> None:
    session = fake_session({PLACES_URL: fake_response(content_type="application/json", payload=PLACES_PAYLOAD)})
    client = GeoapifyClient(cfg, session=session)
    found = client.search(Anchor(47.6, -122.3), 1500)
    assert [c.name for c in found] == ["Gluten Free Bistro", "Geometry Only"]
    assert found[0].place_id == "abc123"
    assert found[0].address == "1 Pike St, Seattle"
    assert (found[1].lat, found[1].lng) == (47.62, -122.34)
    params = session.kwargs[0]["params"]
    assert params["filter"] == "circle:-122.3,47.6,1500"
    assert params["apiKey"] == cfg.geoapify_api_key
    # second call is served from cache
    client.search(Anchor(47.6, -122.3), 1500)
    assert len(session.calls) == 1


def test_search_requires_key(fake_session) -> None:
    with pytest.raises(ValueError):
        GeoapifyClient(Configuration(), session=fake_session()).search(Anchor(0, 0))


def test_website_lookup(cfg, fake_session, fake_response) -> None:
    payload = {"features": [{"properties": {"website": "https://bistro.example/"}}]}
    session = fake_session({DETAILS_URL: fake_response(content_type="application/json", payload=payload)})
    client = GeoapifyClient(cfg, session=session)
    assert client.website_for("abc123") == "https://bistro.example/"
    assert session.kwargs[0]["params"]["id"] == "abc123"


def test_website_lookup_without_key_makes_no_request(fake_session) -> None:
    session = fake_session()
    assert GeoapifyClient(Configuration(), session=session).website_for("abc123") is None
    assert session.calls == []


def test_retries_then_raises(cfg, fake_session, fake_response) -> None:
    session = fake_session({PLACES_URL: fake_response("busy", status_code=503)})
    client = GeoapifyClient(cfg, session=session)
    with patch("glutenscan.services.geoapify.time.sleep") as sleep:
        with pytest.raises(GeoapifyError):
            client.search(Anchor(0, 0))
    assert len(session.calls) == 3
    assert sleep.call_count == 2
