"""Local recommendation scoring.

Scoring formula (0-100 scale, baseline 50):
- Favorite status: safe +40, try +15, avoid -60
- Has GF options: +20
- Rating: 0-5 mapped onto 0-15
- Distance: step function, 15 points under 500 m down to 0 beyond 10 km
- User notes: +5
- Open now: +5
- Viewed at least twice: +10
"""

from __future__ import annotations

from typing import Callable, Iterable, List

from glutenscan.models import (
    FavoriteStatus,
    RecommendationReason,
    RecommendationSignals,
    RecommendedRestaurant,
    Restaurant,
)


BASELINE = 50.0
HIGH_RATING = 4.0
NEARBY_METERS = 1000.0

FAVORITE_POINTS = {
    FavoriteStatus.SAFE: 40.0,
    FavoriteStatus.TRY: 15.0,
    FavoriteStatus.AVOID: -60.0,
}

FAVORITE_REASONS = {
    FavoriteStatus.SAFE: RecommendationReason.FAVORITED_SAFE,
    FavoriteStatus.TRY: RecommendationReason.FAVORITED_TRY,
}

# (upper bound in meters, points)
DISTANCE_STEPS = ((500.0, 15.0), (1000.0, 12.0), (2000.0, 10.0), (5000.0, 7.0), (10000.0, 3.0))

SignalsProvider = Callable[[Restaurant], RecommendationSignals]


def distance_points(distance_meters: float) -> float:
    for limit, points in DISTANCE_STEPS:
        if distance_meters < limit:
            return points
    return 0.0


def _fallback_reason(restaurant: Restaurant, signals: RecommendationSignals) -> str:
    if signals.favorite_status == FavoriteStatus.AVOID:
        return "Previously marked to avoid"
    if restaurant.has_gluten_free_options:
        return "Has gluten-free options"
    if restaurant.rating is not None and restaurant.rating >= HIGH_RATING:
        return "Highly rated"
    return "Nearby restaurant"


def score(restaurant: Restaurant, signals: RecommendationSignals) -> RecommendedRestaurant:
    total = BASELINE
    reasons: list[RecommendationReason] = []

    total += FAVORITE_POINTS.get(signals.favorite_status, 0.0)
    if signals.favorite_status in FAVORITE_REASONS:
        reasons.append(FAVORITE_REASONS[signals.favorite_status])

    if restaurant.has_gluten_free_options:
        total += 20.0
        reasons.append(RecommendationReason.HIGH_GF_OPTIONS)

    if restaurant.rating is not None and restaurant.rating > 0:
        total += (min(restaurant.rating, 5.0) / 5.0) * 15.0
        if restaurant.rating >= HIGH_RATING:
            reasons.append(RecommendationReason.HIGHLY_RATED)

    total += distance_points(restaurant.distance_meters)
    if restaurant.distance_meters < NEARBY_METERS:
        reasons.append(RecommendationReason.NEARBY)

    if signals.has_notes:
        total += 5.0
        reasons.append(RecommendationReason.HAS_NOTES)

    if restaurant.open_now is True:
        total += 5.0
        reasons.append(RecommendationReason.OPEN_NOW)

    if signals.view_count >= 2:
        total += 10.0
        reasons.append(RecommendationReason.PREVIOUSLY_VISITED)

    total = min(max(total, 0.0), 100.0)
    primary = reasons[0].display_name if reasons else _fallback_reason(restaurant, signals)
    return RecommendedRestaurant(restaurant=restaurant, score=total, reason=primary, reasons=reasons)


def rank(restaurants: Iterable[Restaurant], signals_for: SignalsProvider) -> List[RecommendedRestaurant]:
    scored = [score(r, signals_for(r)) for r in restaurants]
    scored.sort(key=lambda rec: rec.score, reverse=True)
    return scored


def top_n(restaurants: Iterable[Restaurant], signals_for: SignalsProvider, limit: int = 5) -> List[RecommendedRestaurant]:
    return rank(restaurants, signals_for)[: max(limit, 0)]
