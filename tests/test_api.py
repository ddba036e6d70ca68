from __future__ import annotations

from typing import List, Optional

from fastapi.testclient import TestClient

from glutenscan.config import Configuration
from glutenscan.main import create_app
from glutenscan.models import Anchor, MenuScanStatus, Restaurant, RestaurantCandidate, ScanOutcome
from glutenscan.services.kv_store import InMemoryKeyValueStore
from glutenscan.services.pipeline import LOCATION_REQUIRED_MESSAGE, RestaurantPipeline


class FakeSearch:
    def search(self, anchor: Anchor, radius_m: Optional[float] = None) -> List[RestaurantCandidate]:
        return [
            RestaurantCandidate("Celiac Cafe", "3 Pine", anchor.lat, anchor.lng, rating=4.5, place_id="c1"),
            RestaurantCandidate("Noodle House", "4 Pine", anchor.lat + 0.01, anchor.lng, place_id="n1"),
        ]


class FailingScanner:
    def scan(self, restaurant: Restaurant) -> ScanOutcome:
        return ScanOutcome(MenuScanStatus.FAILED, None, (), 1)


class NoDetails:
    def website_for(self, place_id: str) -> Optional[str]:
        return None


def _client() -> TestClient:
    pipeline = RestaurantPipeline(
        Configuration(geoapify_api_key="key"),
        InMemoryKeyValueStore(),
        search=FakeSearch(),
        details=NoDetails(),
        scanner=FailingScanner(),
    )
    return TestClient(create_app(pipeline))


def test_refresh_and_list() -> None:
    with _client() as client:
        assert client.get("/healthz").json()["status"] == "ok"
        body = client.post("/refresh", json={"lat": 47.6, "lng": -122.3}).json()
        assert body["status"] == "SUCCESS"
        assert [r["name"] for r in body["restaurants"]] == ["Celiac Cafe", "Noodle House"]
        assert body["restaurants"][0]["has_gluten_free_options"] is True
        assert client.get("/restaurants").json()["status"] == "SUCCESS"


def test_refresh_without_location() -> None:
    with _client() as client:
        body = client.post("/refresh", json={}).json()
        assert body["status"] == "PERMISSION_REQUIRED"
        assert body["message"] == LOCATION_REQUIRED_MESSAGE


def test_filters_favorites_and_notes() -> None:
    with _client() as client:
        client.post("/refresh", json={"lat": 47.6, "lng": -122.3})
        body = client.post("/filters", json={"gf_only": True}).json()
        assert [r["name"] for r in body["restaurants"]] == ["Celiac Cafe"]

        body = client.post("/favorite", json={"key": "pid:c1", "status": "safe"}).json()
        assert body["restaurants"][0]["favorite_status"] == "safe"

        body = client.post("/notes", json={"key": "pid:c1", "text": "dedicated fryer"}).json()
        assert body["restaurants"][0]["crowd_notes"] == ["dedicated fryer"]

        assert client.post("/favorite", json={"key": "pid:zzz", "status": "try"}).status_code == 404
        assert client.post("/notes", json={"key": "pid:c1", "text": ""}).status_code == 422


def test_rescan_interactions_and_recommendations() -> None:
    with _client() as client:
        client.post("/refresh", json={"lat": 47.6, "lng": -122.3})
        resp = client.post("/rescan", json={"key": "pid:n1"})
        assert resp.status_code == 202
        assert resp.json()["key"] == "pid:n1"
        assert resp.json()["menu_scan_status"] == "FETCHING"
        assert client.post("/rescan", json={"key": "pid:zzz"}).status_code == 404

        resp = client.post("/interactions", json={"key": "pid:n1", "type": "view"})
        assert resp.json()["count"] == 1
        assert client.post("/interactions", json={"key": "pid:zzz"}).status_code == 404

        recs = client.get("/recommendations", params={"limit": 1}).json()
        assert len(recs) == 1
        assert recs[0]["restaurant"]["name"] == "Celiac Cafe"
