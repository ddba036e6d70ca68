from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query
from loguru import logger
from pydantic import BaseModel, Field

from glutenscan.config import Configuration
from glutenscan.models import (
    Anchor,
    FavoriteStatus,
    RecommendedRestaurant,
    Restaurant,
    RestaurantUiState,
    SortMode,
)
from glutenscan.services.annotations import InteractionType
from glutenscan.services.pipeline import RestaurantPipeline
from glutenscan.services.store import RestaurantNotFound


class RestaurantPayload(BaseModel):
    key: str
    name: str
    address: Optional[str]
    latitude: float
    longitude: float
    place_id: Optional[str] = None
    distance_meters: float = 0.0
    rating: Optional[float] = None
    open_now: Optional[bool] = None
    has_gluten_free_options: bool = False
    gluten_free_menu_items: List[str] = []
    menu_url: Optional[str] = None
    menu_scan_status: str
    menu_scan_timestamp: int = 0
    favorite_status: str
    crowd_notes: List[str] = []

    @classmethod
    def from_restaurant(cls, r: Restaurant) -> "RestaurantPayload":
        return cls(
            key=r.key,
            name=r.name,
            address=r.address,
            latitude=r.latitude,
            longitude=r.longitude,
            place_id=r.place_id,
            distance_meters=round(r.distance_meters, 1),
            rating=r.rating,
            open_now=r.open_now,
            has_gluten_free_options=r.has_gluten_free_options,
            gluten_free_menu_items=list(r.gluten_free_menu_items),
            menu_url=r.menu_url,
            menu_scan_status=r.effective_scan_status.value,
            menu_scan_timestamp=r.menu_scan_timestamp,
            favorite_status=r.favorite_status.value,
            crowd_notes=list(r.crowd_notes),
        )


class UiStatePayload(BaseModel):
    status: str
    restaurants: List[RestaurantPayload]
    message: Optional[str] = None
    anchor: Optional[Dict[str, float]] = None

    @classmethod
    def from_state(cls, state: RestaurantUiState) -> "UiStatePayload":
        return cls(
            status=state.status.value,
            restaurants=[RestaurantPayload.from_restaurant(r) for r in state.restaurants],
            message=state.message,
            anchor=({"lat": state.anchor.lat, "lng": state.anchor.lng} if state.anchor else None),
        )


class RecommendationPayload(BaseModel):
    restaurant: RestaurantPayload
    score: float
    reason: str
    reasons: List[str] = []

    @classmethod
    def from_recommendation(cls, rec: RecommendedRestaurant) -> "RecommendationPayload":
        return cls(
            restaurant=RestaurantPayload.from_restaurant(rec.restaurant),
            score=round(rec.score, 2),
            reason=rec.reason,
            reasons=[r.display_name for r in rec.reasons],
        )


class RefreshRequest(BaseModel):
    lat: Optional[float] = Field(None, ge=-90, le=90, description="Anchor latitude; omit when location is unavailable")
    lng: Optional[float] = Field(None, ge=-180, le=180, description="Anchor longitude")
    radius_m: Optional[float] = Field(None, gt=0, description="Search radius in meters")


class FilterRequest(BaseModel):
    gf_only: Optional[bool] = None
    open_now_only: Optional[bool] = None
    max_distance_meters: Optional[float] = Field(None, ge=0)
    min_rating: Optional[float] = Field(None, ge=0, le=5)
    sort_mode: Optional[SortMode] = None


class FavoriteRequest(BaseModel):
    key: str
    status: FavoriteStatus


class NoteRequest(BaseModel):
    key: str
    text: str = Field(..., min_length=1)


class RescanRequest(BaseModel):
    key: str


class InteractionRequest(BaseModel):
    key: str
    type: InteractionType = InteractionType.VIEW


def create_app(pipeline: Optional[RestaurantPipeline] = None, cfg: Optional[Configuration] = None) -> FastAPI:
    cfg = cfg or (pipeline.cfg if pipeline else Configuration.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("cfg: {}", cfg.log_summary())
        app.state.pipeline.warm_start()
        yield
        app.state.pipeline.close()

    app = FastAPI(title="Gluten-free menu scanner", lifespan=lifespan)
    app.state.pipeline = pipeline or RestaurantPipeline.from_config(cfg)

    def _pipeline() -> RestaurantPipeline:
        return app.state.pipeline

    @app.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok", "inflight_scans": _pipeline().scheduler.inflight}

    @app.get("/restaurants", response_model=UiStatePayload)
    def restaurants() -> UiStatePayload:
        return UiStatePayload.from_state(_pipeline().state)

    @app.post("/refresh", response_model=UiStatePayload)
    async def refresh(req: RefreshRequest) -> UiStatePayload:
        anchor = Anchor(req.lat, req.lng) if req.lat is not None and req.lng is not None else None
        try:
            state = await _pipeline().refresh(anchor, req.radius_m)
        except Exception as exc:
            logger.exception("refresh failed: {}", exc)
            raise HTTPException(status_code=500, detail="refresh failed") from exc
        return UiStatePayload.from_state(state)

    @app.post("/filters", response_model=UiStatePayload)
    def filters(req: FilterRequest) -> UiStatePayload:
        changes: Dict[str, Any] = {k: v for k, v in req.model_dump().items() if v is not None}
        return UiStatePayload.from_state(_pipeline().set_filters(**changes))

    @app.post("/favorite", response_model=UiStatePayload)
    def favorite(req: FavoriteRequest) -> UiStatePayload:
        try:
            state = _pipeline().set_favorite(req.key, req.status)
        except RestaurantNotFound:
            raise HTTPException(status_code=404, detail=f"unknown restaurant {req.key}")
        return UiStatePayload.from_state(state)

    @app.post("/notes", response_model=UiStatePayload)
    def notes(req: NoteRequest) -> UiStatePayload:
        try:
            state = _pipeline().add_note(req.key, req.text)
        except RestaurantNotFound:
            raise HTTPException(status_code=404, detail=f"unknown restaurant {req.key}")
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc))
        return UiStatePayload.from_state(state)

    @app.post("/rescan", status_code=202, response_model=RestaurantPayload)
    async def rescan(req: RescanRequest) -> RestaurantPayload:
        p = _pipeline()
        try:
            p.request_rescan(req.key)
        except RestaurantNotFound:
            raise HTTPException(status_code=404, detail=f"unknown restaurant {req.key}")
        return RestaurantPayload.from_restaurant(p.store.get(req.key))

    @app.post("/interactions")
    def interactions(req: InteractionRequest) -> dict:
        try:
            count = _pipeline().record_interaction(req.key, req.type)
        except RestaurantNotFound:
            raise HTTPException(status_code=404, detail=f"unknown restaurant {req.key}")
        return {"key": req.key, "type": req.type.value, "count": count}

    @app.get("/recommendations", response_model=List[RecommendationPayload])
    def recommendations(limit: int = Query(5, ge=1, le=50)) -> List[RecommendationPayload]:
        return [RecommendationPayload.from_recommendation(rec) for rec in _pipeline().recommendations(limit)]

    return app


def run() -> None:
    import uvicorn

    load_dotenv()
    cfg = Configuration.from_env()
    logger.remove()
    logger.add(sys.stderr, level=cfg.log_level.upper())
    uvicorn.run(create_app(cfg=cfg), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
