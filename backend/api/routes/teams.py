"""
Team lookup.

GET /team/{name}   Directory entry for a team plus catalogued matches involving it.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from api.container import Services
from api.dependencies import get_services
from api.routes.matches import match_payload
from ingest.aggregator import Aggregator

router = APIRouter(prefix="/team", tags=["teams"])


@router.get("/{name}")
async def team_lookup(name: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    result = await services.teams.fetch(name)
    teams = [t for t in (services.normalizer.normalize_team(r) for r in result.records) if t is not None]
    aggregator = services.aggregator
    catalog = await aggregator.get_catalog()
    matches = Aggregator.matches_for_team(catalog, name)
    return {
        "query": name,
        "team": teams[0].model_dump(mode="json") if teams else None,
        "teams": [t.model_dump(mode="json") for t in teams],
        "matches": [match_payload(m, aggregator.is_live(m)) for m in matches],
        "cached": result.cached,
        "stale": not result.success or catalog.stale,
    }
