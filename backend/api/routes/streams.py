"""
Stream endpoints.

GET /streams/{source}/{id}   Upstream stream list for one Source.
GET /resolve?url=            Resolve an embed URL to a playable media URL.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from api.container import Services
from api.dependencies import get_resolver, get_services
from ingest.providers.stream_listing import listing_key
from resolver.stream_resolver import StreamResolver

router = APIRouter(tags=["streams"])


@router.get("/streams/{source}/{source_id}")
async def list_streams(source: str, source_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    result = await services.streams.fetch(listing_key(source, source_id))
    streams = [
        s for s in (services.normalizer.normalize_stream(r, source) for r in result.records) if s is not None
    ]
    streams.sort(key=lambda s: s.stream_no)
    return {
        "source": source,
        "id": source_id,
        "streams": [s.model_dump(mode="json") for s in streams],
        "total": len(streams),
        "cached": result.cached,
        "stale": not result.success,
        "error": result.error_kind.value if result.error_kind else None,
    }


@router.get("/resolve")
async def resolve_embed(
    url: str = Query(..., min_length=8, max_length=2048),
    resolver: StreamResolver = Depends(get_resolver),
) -> dict[str, Any]:
    resolution = await resolver.resolve(url)
    if resolution is None:
        return {"embed_url": url, "found": False, "resolved_url": None, "kind": "unresolved", "via": None}
    return {
        "embed_url": url,
        "found": True,
        "resolved_url": resolution.resolved_url,
        "kind": resolution.kind.value,
        "via": resolution.via,
        "resolved_at": resolution.resolved_at.isoformat(),
    }
