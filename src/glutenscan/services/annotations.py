from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, List

from loguru import logger

from glutenscan.models import FavoriteStatus, RecommendationSignals, Restaurant
from glutenscan.services.kv_store import (
    FAVORITES_NAMESPACE,
    INTERACTIONS_NAMESPACE,
    NOTES_NAMESPACE,
    KeyValueStore,
)
from glutenscan.utils import now_millis


def _load_map(kv: KeyValueStore, namespace: str) -> Dict[str, Any]:
    raw = kv.get(namespace)
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("discarding malformed {} blob", namespace)
        return {}
    return data if isinstance(data, dict) else {}


def _save_map(kv: KeyValueStore, namespace: str, data: Dict[str, Any]) -> None:
    kv.set(namespace, json.dumps(data, ensure_ascii=False))


class AnnotationStore:
    """User favorites and notes, keyed by restaurant merge key."""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    def favorite_for(self, key: str) -> FavoriteStatus:
        return FavoriteStatus.parse(_load_map(self.kv, FAVORITES_NAMESPACE).get(key))

    def set_favorite(self, key: str, status: FavoriteStatus) -> None:
        favorites = _load_map(self.kv, FAVORITES_NAMESPACE)
        if status == FavoriteStatus.NONE:
            favorites.pop(key, None)
        else:
            favorites[key] = status.value
        _save_map(self.kv, FAVORITES_NAMESPACE, favorites)

    def notes_for(self, key: str) -> List[str]:
        notes = _load_map(self.kv, NOTES_NAMESPACE).get(key)
        if not isinstance(notes, list):
            return []
        return [str(n) for n in notes if isinstance(n, str) and n]

    def add_note(self, key: str, text: str) -> List[str]:
        text = (text or "").strip()
        if not text:
            raise ValueError("note text must not be empty")
        all_notes = _load_map(self.kv, NOTES_NAMESPACE)
        notes = all_notes.get(key)
        if not isinstance(notes, list):
            notes = []
        notes.append(text)
        all_notes[key] = notes
        _save_map(self.kv, NOTES_NAMESPACE, all_notes)
        return list(notes)

    def has_notes(self, key: str) -> bool:
        return bool(self.notes_for(key))


class InteractionType(str, Enum):
    VIEW = "view"  # restaurant shown in a list or card
    DETAIL_OPEN = "detail_open"


class InteractionTracker:
    """Counts how often a restaurant was viewed or opened."""

    _FIELDS = {
        InteractionType.VIEW: ("views", "last_viewed"),
        InteractionType.DETAIL_OPEN: ("detail_opens", "last_detail_open"),
    }

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    def record(self, key: str, kind: InteractionType) -> int:
        counter, stamp = self._FIELDS[kind]
        interactions = _load_map(self.kv, INTERACTIONS_NAMESPACE)
        entry = interactions.get(key)
        if not isinstance(entry, dict):
            entry = {}
        count = self._as_int(entry.get(counter)) + 1
        entry[counter] = count
        entry[stamp] = now_millis()
        interactions[key] = entry
        _save_map(self.kv, INTERACTIONS_NAMESPACE, interactions)
        return count

    def view_count(self, key: str) -> int:
        return self._count(key, "views")

    def _count(self, key: str, counter: str) -> int:
        entry = _load_map(self.kv, INTERACTIONS_NAMESPACE).get(key)
        if not isinstance(entry, dict):
            return 0
        return self._as_int(entry.get(counter))

    @staticmethod
    def _as_int(value: Any) -> int:
        try:
            return max(int(value), 0)
        except (TypeError, ValueError):
            return 0


class StoredSignals:
    """Recommendation signals read from the annotation and interaction stores."""

    def __init__(self, annotations: AnnotationStore, tracker: InteractionTracker) -> None:
        self.annotations = annotations
        self.tracker = tracker

    def __call__(self, restaurant: Restaurant) -> RecommendationSignals:
        key = restaurant.key
        return RecommendationSignals(
            favorite_status=self.annotations.favorite_for(key),
            has_notes=self.annotations.has_notes(key),
            view_count=self.tracker.view_count(key),
        )
