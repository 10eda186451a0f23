"""
Sport browsing endpoints.

GET /sports              Sports present in the catalog with match and live counts.
GET /sports/{category}   Catalog matches for one sport; free-text categories are normalized.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from shared.models.enums import Sport, normalize_sport_category

from api.dependencies import get_aggregator
from api.routes.matches import catalog_meta, match_payload
from ingest.aggregator import Aggregator

router = APIRouter(prefix="/sports", tags=["sports"])


@router.get("")
async def list_sports(aggregator: Aggregator = Depends(get_aggregator)) -> dict[str, Any]:
    catalog = await aggregator.get_catalog()
    counts: dict[Sport, dict[str, int]] = {}
    for match in catalog.matches:
        bucket = counts.setdefault(match.sport, {"matches": 0, "live": 0})
        bucket["matches"] += 1
        if aggregator.is_live(match):
            bucket["live"] += 1
    sports = [
        {"sport": sport.value, **bucket}
        for sport, bucket in sorted(counts.items(), key=lambda kv: (-kv[1]["matches"], kv[0].value))
    ]
    return {"sports": sports, **catalog_meta(catalog)}


@router.get("/{category}")
async def sport_matches(category: str, aggregator: Aggregator = Depends(get_aggregator)) -> dict[str, Any]:
    sport = normalize_sport_category(category)
    catalog = await aggregator.get_catalog()
    matches = [m for m in catalog.matches if m.sport == sport]
    return {
        "sport": sport.value,
        "matches": [match_payload(m, aggregator.is_live(m)) for m in matches],
        "total": len(matches),
        **catalog_meta(catalog),
    }
