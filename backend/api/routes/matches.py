"""
Match catalog REST endpoints.

GET /matches            Paginated ranked catalog.
GET /matches/live       Matches inside their sport's live window right now.
GET /matches/popular    Popular or recognized matches, top N.
GET /matches/{id}       One match with each source's stream resolved.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import math
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from shared.models.domain import CanonicalMatch, Catalog, Source
from shared.utils.logging import get_logger

from api.container import Services
from api.dependencies import get_aggregator, get_services
from ingest.aggregator import Aggregator
from ingest.providers.stream_listing import listing_key

logger = get_logger(__name__)
router = APIRouter(prefix="/matches", tags=["matches"])


def match_payload(match: CanonicalMatch, is_live: bool) -> dict[str, Any]:
    """Wire shape of a match; liveness is attached at read time, never stored."""
    data = match.model_dump(mode="json")
    data["is_live"] = is_live
    return data


def catalog_meta(catalog: Catalog) -> dict[str, Any]:
    return {
        "cached": catalog.cached,
        "stale": catalog.stale,
        "generated_at": catalog.generated_at.isoformat(),
        "failed_providers": catalog.failed_providers,
    }


def _compute_etag(payload: dict[str, Any]) -> str:
    raw = json.dumps(payload, sort_keys=True, default=str).encode()
    return f'W/"{hashlib.md5(raw).hexdigest()}"'


def _with_etag(request: Request, response: Response, body: dict[str, Any]) -> dict[str, Any] | Response:
    etag = _compute_etag(body["matches"])
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers={"ETag": etag})
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = "public, max-age=15"
    return body


@router.get("")
async def list_matches(
    request: Request,
    response: Response,
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    services: Services = Depends(get_services),
) -> Any:
    """Ranked catalog, priority first, then earliest start."""
    settings = services.settings
    size = min(page_size or settings.page_size_default, settings.page_size_max)
    aggregator = services.aggregator
    catalog = await aggregator.get_catalog()

    total = len(catalog.matches)
    start = (page - 1) * size
    items = catalog.matches[start:start + size]
    body = {
        "matches": [match_payload(m, aggregator.is_live(m)) for m in items],
        "total": total,
        "page": page,
        "page_size": size,
        "pages": math.ceil(total / size) if total else 0,
        **catalog_meta(catalog),
    }
    return _with_etag(request, response, body)


@router.get("/live")
async def live_matches(aggregator: Aggregator = Depends(get_aggregator)) -> dict[str, Any]:
    catalog = await aggregator.get_catalog()
    live = aggregator.live_matches(catalog)
    return {
        "matches": [match_payload(m, True) for m in live],
        "total": len(live),
        **catalog_meta(catalog),
    }


@router.get("/popular")
async def popular_matches(
    limit: Optional[int] = Query(None, ge=1, le=200),
    aggregator: Aggregator = Depends(get_aggregator),
) -> dict[str, Any]:
    catalog = await aggregator.get_catalog()
    popular = aggregator.popular_matches(catalog, limit)
    return {
        "matches": [match_payload(m, aggregator.is_live(m)) for m in popular],
        "total": len(popular),
        **catalog_meta(catalog),
    }


@router.get("/{match_id}")
async def get_match(match_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    """
    Match detail with playable streams.

    Each Source's first listed stream (or the channel URL itself) is run through
    the StreamResolver with bounded concurrency. Sources that do not resolve are
    still listed with resolved_url null.
    """
    aggregator = services.aggregator
    catalog = await aggregator.get_catalog()
    match = next((m for m in catalog.matches if m.id == match_id), None)
    if match is None:
        raise HTTPException(status_code=404, detail=f"Match {match_id} not found")

    is_live = aggregator.is_live(match)
    sem = asyncio.Semaphore(max(1, services.settings.resolver_concurrency))

    async def _resolve(src: Source) -> dict[str, Any]:
        async with sem:
            return await _resolve_source(services, src)

    streams, viewers = await asyncio.gather(
        asyncio.gather(*(_resolve(src) for src in match.sources)),
        services.probe.probe_match(match, is_live),
    )
    return {
        "match": match_payload(match, is_live),
        "streams": list(streams),
        "viewers": viewers,
        **catalog_meta(catalog),
    }


async def _resolve_source(services: Services, src: Source) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "source": src.source,
        "id": src.id,
        "name": src.name,
        "is_channel": src.is_channel,
        "embed_url": None,
        "resolved_url": None,
        "kind": "unresolved",
    }
    if src.is_channel:
        embed_url: Optional[str] = src.id
    else:
        result = await services.streams.fetch(listing_key(src.source, src.id))
        streams = [s for s in (services.normalizer.normalize_stream(r, src.source) for r in result.records) if s]
        embed_url = streams[0].embed_url if streams else None
    if not embed_url:
        return entry

    entry["embed_url"] = embed_url
    resolution = await services.resolver.resolve(embed_url)
    if resolution is not None:
        entry["resolved_url"] = resolution.resolved_url
        entry["kind"] = resolution.kind.value
    return entry
