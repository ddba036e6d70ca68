from __future__ import annotations

import pytest

from glutenscan.models import FavoriteStatus, Restaurant
from glutenscan.services.annotations import (
    AnnotationStore,
    InteractionTracker,
    InteractionType,
    StoredSignals,
)
from glutenscan.services.kv_store import FAVORITES_NAMESPACE, InMemoryKeyValueStore


def test_favorites_round_trip_and_clear() -> None:
    store = AnnotationStore(InMemoryKeyValueStore())
    assert store.favorite_for("pid:x") == FavoriteStatus.NONE
    store.set_favorite("pid:x", FavoriteStatus.TRY)
    assert store.favorite_for("pid:x") == FavoriteStatus.TRY
    store.set_favorite("pid:x", FavoriteStatus.NONE)
    assert store.favorite_for("pid:x") == FavoriteStatus.NONE


def test_notes_append_in_order() -> None:
    store = AnnotationStore(InMemoryKeyValueStore())
    store.add_note("pid:x", "first")
    assert store.add_note("pid:x", " second ") == ["first", "second"]
    assert store.has_notes("pid:x")
    assert not store.has_notes("pid:y")
    with pytest.raises(ValueError):
        store.add_note("pid:x", "")


def test_malformed_blob_reads_as_empty() -> None:
    kv = InMemoryKeyValueStore({FAVORITES_NAMESPACE: "[1, 2"})
    store = AnnotationStore(kv)
    assert store.favorite_for("pid:x") == FavoriteStatus.NONE
    store.set_favorite("pid:x", FavoriteStatus.SAFE)
    assert store.favorite_for("pid:x") == FavoriteStatus.SAFE


def test_interaction_counts() -> None:
    tracker = InteractionTracker(InMemoryKeyValueStore())
    assert tracker.view_count("pid:x") == 0
    tracker.record("pid:x", InteractionType.VIEW)
    assert tracker.record("pid:x", InteractionType.VIEW) == 2
    assert tracker.record("pid:x", InteractionType.DETAIL_OPEN) == 1
    assert tracker.view_count("pid:x") == 2


def test_stored_signals() -> None:
    kv = InMemoryKeyValueStore()
    annotations = AnnotationStore(kv)
    tracker = InteractionTracker(kv)
    r = Restaurant(name="A", address="1", latitude=0, longitude=0, place_id="x")
    annotations.set_favorite(r.key, FavoriteStatus.SAFE)
    annotations.add_note(r.key, "good")
    tracker.record(r.key, InteractionType.VIEW)
    signals = StoredSignals(annotations, tracker)(r)
    assert signals.favorite_status == FavoriteStatus.SAFE
    assert signals.has_notes
    assert signals.view_count == 1
