"""Data models for the gluten-free menu scanner."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple


MAX_EVIDENCE_ITEMS = 8
MAX_EVIDENCE_CHARS = 140


class MenuScanStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    FETCHING = "FETCHING"
    SUCCESS = "SUCCESS"
    NO_WEBSITE = "NO_WEBSITE"
    FAILED = "FAILED"


class FavoriteStatus(str, Enum):
    SAFE = "safe"
    TRY = "try"
    AVOID = "avoid"
    NONE = "none"

    @classmethod
    def parse(cls, value: Optional[str]) -> "FavoriteStatus":
        if not value:
            return cls.NONE
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NONE


class SortMode(str, Enum):
    DISTANCE = "DISTANCE"
    NAME = "NAME"


class UiStatus(str, Enum):
    IDLE = "IDLE"
    LOADING = "LOADING"
    SUCCESS = "SUCCESS"
    PERMISSION_REQUIRED = "PERMISSION_REQUIRED"
    ERROR = "ERROR"


def merge_key(place_id: Optional[str], name: str, address: Optional[str]) -> str:
    """Identity used to reconcile two observations of the same restaurant.

    Place ids and name/address pairs live in separate key spaces, so a
    restaurant with a place id never matches one keyed by name and address.
    """
    if place_id:
        return f"pid:{place_id}"
    return f"na:{name}|{address or ''}"


@dataclass(frozen=True)
class Anchor:
    lat: float
    lng: float


@dataclass
class RestaurantCandidate:
    name: str
    address: Optional[str]
    lat: float
    lng: float
    rating: Optional[float] = None
    open_now: Optional[bool] = None
    place_id: Optional[str] = None


@dataclass
class Restaurant:
    name: str
    address: Optional[str]
    latitude: float
    longitude: float
    place_id: Optional[str] = None
    distance_meters: float = 0.0
    rating: Optional[float] = None
    open_now: Optional[bool] = None
    has_gluten_free_options: bool = False
    gluten_free_menu_items: List[str] = field(default_factory=list)
    menu_url: Optional[str] = None
    menu_scan_status: MenuScanStatus = MenuScanStatus.NOT_STARTED
    menu_scan_timestamp: int = 0  # epoch millis, 0 = never
    favorite_status: FavoriteStatus = FavoriteStatus.NONE
    crowd_notes: List[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return merge_key(self.place_id, self.name, self.address)

    @property
    def effective_scan_status(self) -> MenuScanStatus:
        if self.menu_scan_timestamp == 0 and self.menu_scan_status != MenuScanStatus.FETCHING:
            return MenuScanStatus.NOT_STARTED
        return self.menu_scan_status

    def copy(self) -> "Restaurant":
        return replace(
            self,
            gluten_free_menu_items=list(self.gluten_free_menu_items),
            crowd_notes=list(self.crowd_notes),
        )


@dataclass(frozen=True)
class ScanOutcome:
    status: MenuScanStatus
    menu_url: Optional[str]
    evidence: Tuple[str, ...]
    timestamp: int


@dataclass
class FilterPrefs:
    gf_only: bool = False
    open_now_only: bool = False
    max_distance_meters: float = 0.0  # 0 = unlimited
    min_rating: float = 0.0  # 0 = unlimited
    sort_mode: SortMode = SortMode.DISTANCE


@dataclass(frozen=True)
class RestaurantUiState:
    status: UiStatus
    restaurants: Tuple[Restaurant, ...] = ()
    message: Optional[str] = None
    anchor: Optional[Anchor] = None

    @classmethod
    def idle(cls) -> "RestaurantUiState":
        return cls(status=UiStatus.IDLE)

    @classmethod
    def loading(cls, message: Optional[str] = None, anchor: Optional[Anchor] = None) -> "RestaurantUiState":
        return cls(status=UiStatus.LOADING, message=message, anchor=anchor)

    @classmethod
    def permission_required(cls, message: str) -> "RestaurantUiState":
        return cls(status=UiStatus.PERMISSION_REQUIRED, message=message)

    @classmethod
    def error(cls, message: str, anchor: Optional[Anchor] = None) -> "RestaurantUiState":
        return cls(status=UiStatus.ERROR, message=message, anchor=anchor)


class RecommendationReason(Enum):
    FAVORITED_SAFE = ("Marked Safe", "You marked this restaurant as safe for gluten-free")
    FAVORITED_TRY = ("Want to Try", "You're interested in trying this restaurant")
    HIGH_GF_OPTIONS = ("Good GF Options", "Restaurant has confirmed gluten-free options")
    HIGHLY_RATED = ("Highly Rated", "Restaurant has a strong rating")
    NEARBY = ("Nearby", "Restaurant is close to you")
    HAS_NOTES = ("Your Notes", "You wrote notes about this restaurant")
    OPEN_NOW = ("Open Now", "Restaurant is currently open")
    PREVIOUSLY_VISITED = ("Visited Before", "You've shown interest in this restaurant")

    def __init__(self, display_name: str, description: str) -> None:
        self.display_name = display_name
        self.description = description


@dataclass(frozen=True)
class RecommendationSignals:
    favorite_status: FavoriteStatus = FavoriteStatus.NONE
    has_notes: bool = False
    view_count: int = 0


@dataclass
class RecommendedRestaurant:
    restaurant: Restaurant
    score: float
    reason: str
    reasons: List[RecommendationReason] = field(default_factory=list)
