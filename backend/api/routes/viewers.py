"""
Viewer presence endpoints.

GET  /viewers/{match_id}             Current viewer count.
POST /viewers/{match_id}/heartbeat   Body {"sessionId": "..."}; keeps a session counted.
POST /viewers/{match_id}/leave       Body {"sessionId": "..."}; stops counting a session.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from api.dependencies import get_presence
from api.presence import PresenceStore

router = APIRouter(prefix="/viewers", tags=["viewers"])


class SessionBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1, max_length=128)


@router.get("/{match_id}")
async def viewer_count(match_id: str, presence: PresenceStore = Depends(get_presence)) -> dict[str, Any]:
    return {"match_id": match_id, "count": await presence.get_viewer_count(match_id)}


@router.post("/{match_id}/heartbeat")
async def heartbeat(
    match_id: str,
    body: SessionBody,
    presence: PresenceStore = Depends(get_presence),
) -> dict[str, Any]:
    count = await presence.heartbeat(match_id, body.session_id)
    return {"match_id": match_id, "count": count}


@router.post("/{match_id}/leave")
async def leave(
    match_id: str,
    body: SessionBody,
    presence: PresenceStore = Depends(get_presence),
) -> dict[str, Any]:
    count = await presence.leave(match_id, body.session_id)
    return {"match_id": match_id, "count": count}
