"""
Live score endpoints.

GET /livescores           Every normalized live-score record.
GET /livescores/{sport}   Records for one sport.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends

from shared.models.domain import LiveScore
from shared.models.enums import Sport, normalize_sport_category

from api.dependencies import get_aggregator
from ingest.aggregator import Aggregator

router = APIRouter(prefix="/livescores", tags=["livescores"])


def _payload(scores: list[LiveScore], cached: bool, sport: Optional[Sport] = None) -> dict[str, Any]:
    return {
        "sport": sport.value if sport else None,
        "scores": [s.model_dump(mode="json") for s in scores],
        "total": len(scores),
        "cached": cached,
    }


@router.get("")
async def all_live_scores(aggregator: Aggregator = Depends(get_aggregator)) -> dict[str, Any]:
    scores, cached = await aggregator.get_live_scores()
    return _payload(scores, cached)


@router.get("/{sport}")
async def sport_live_scores(sport: str, aggregator: Aggregator = Depends(get_aggregator)) -> dict[str, Any]:
    canonical = normalize_sport_category(sport)
    scores, cached = await aggregator.get_live_scores(canonical)
    return _payload(scores, cached, canonical)
