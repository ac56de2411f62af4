"""
api/routes/progress.py -- Server-sent event streams for transfer and upload progress.

Routes:
  GET /api/transfer/progress/{job_id}           -- transfer job progress
  GET /api/objects/upload-progress/{encoded_key} -- single upload progress

Browsers open these with EventSource, which cannot set headers, so the usual
way in is a one-time ?ticket= from POST /api/auth/sse-ticket. Cookie and
Bearer auth work too. The authentication middleware has already resolved the
caller by the time a handler runs; get_current_identity() just reads it back.

Each stream sends the latest event whenever it changes and ends after a
terminal status (completed, failed, cancelled) or when the client goes away.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from auth.dependencies import get_current_identity
from auth.models import Identity, ResourceType
from auth.resolver import raw_request_path, stream_resource
from core.progress import ProgressBoard, is_terminal

_POLL_SECONDS = 0.5

router = APIRouter()


async def _event_stream(request: Request, board: ProgressBoard, kind: str, resource: str) -> AsyncIterator[str]:
    seen = 0
    while True:
        version = board.version(kind, resource)
        if version != seen:
            seen = version
            event = board.latest(kind, resource)
            if event is not None:
                yield f"data: {json.dumps(event)}\n\n"
                if is_terminal(event):
                    return
        if await request.is_disconnected():
            return
        await asyncio.sleep(_POLL_SECONDS)


def _stream(request: Request, resource_type: ResourceType) -> StreamingResponse:
    # Key the board by the raw path segment, the same value a ticket is scoped to.
    # The upload route accepts any path so a decoded %2F still routes here; an
    # empty key or one with a literal slash has no stream.
    scope = stream_resource(raw_request_path(request))
    if scope is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "No progress stream at this path"})
    resource, _ = scope
    board: ProgressBoard = request.app.state.progress
    return StreamingResponse(
        _event_stream(request, board, resource_type.value, resource),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/transfer/progress/{job_id}")
async def transfer_progress(
    request: Request,
    job_id: str,
    identity: Identity = Depends(get_current_identity),
) -> StreamingResponse:
    return _stream(request, ResourceType.transfer)


@router.get("/objects/upload-progress/{encoded_key:path}")
async def upload_progress(
    request: Request,
    encoded_key: str,
    identity: Identity = Depends(get_current_identity),
) -> StreamingResponse:
    return _stream(request, ResourceType.upload)
