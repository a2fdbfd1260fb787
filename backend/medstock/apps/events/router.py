from __future__ import annotations

import asyncio
import json
import os
import queue
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from medstock.apps.accounts import models as account_models
from medstock.database import get_db
from medstock.security import credentials_exception, ensure_active_user, get_user_from_token

from .broker import broker, format_sse, keepalive_message

router = APIRouter(prefix="/events", tags=["events"])

KEEPALIVE_SECONDS = float(os.getenv("EVENT_STREAM_KEEPALIVE_SEC", "15"))


def get_current_active_user_from_query(
    token: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
) -> account_models.User:
    """EventSource cannot send headers, so the stream takes its token as ?token=."""
    if not token:
        raise credentials_exception()
    user = ensure_active_user(get_user_from_token(db, token))
    # The stream outlives this session; release its read transaction now.
    db.close()
    return user


async def _event_stream(
    request: Request,
    *,
    last_event_id: Optional[str],
    entity_type: Optional[str],
    keepalive_seconds: float = KEEPALIVE_SECONDS,
) -> AsyncGenerator[str, None]:
    q = broker.subscribe()
    try:
        if last_event_id:
            replay, needs_refetch = broker.replay_since(last_event_id=last_event_id, entity_type=entity_type)
            if needs_refetch:
                yield format_sse(
                    json.dumps({"type": "reset", "reason": "last_event_id_out_of_window", "lastEventId": last_event_id}),
                    event="reset",
                )
            for event in replay:
                yield format_sse(event.to_json(), event=event.type, event_id=event.id)
        while True:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.to_thread(q.get, True, keepalive_seconds)
            except queue.Empty:
                yield keepalive_message()
                continue
            if entity_type and event.entityType != entity_type:
                continue
            yield format_sse(event.to_json(), event=event.type, event_id=event.id)
    finally:
        broker.unsubscribe(q)


@router.get("/stream")
async def stream_events(
    request: Request,
    entity_type: Optional[str] = None,
    current_user: account_models.User = Depends(get_current_active_user_from_query),
) -> StreamingResponse:
    """
    Server-sent stream of committed stock changes.

    Inventory screens refetch when an event arrives. A reconnecting client
    sends its last seen id (`Last-Event-ID` header or `lastEventId`) and gets
    the events it missed, or a `reset` event when that id is no longer held
    and a full refetch is needed.
    """
    last_event_id = request.headers.get("last-event-id") or request.query_params.get("lastEventId")
    return StreamingResponse(
        _event_stream(request, last_event_id=last_event_id, entity_type=entity_type),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
