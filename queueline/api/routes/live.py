"""Real-time line updates over WebSocket.

Clients connect to ``/queue/ws?token=...`` and send JSON commands:

* ``{"action": "join", "serviceType": "Bank", "date": "2024-05-01"}``
  subscribes to one line (``date`` defaults to today);
* ``{"action": "join_all"}`` subscribes a staff dashboard to every line;
* ``{"action": "leave"}`` drops every subscription of the connection.

Each join is answered with a ``snapshot`` event for the joining client only;
afterwards ``booked``, ``nowServing`` and ``completed`` events follow.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from queueline.core.config import get_settings
from queueline.dependencies.auth import resolve_identity_from_token
from queueline.lines.engine import QueueEngine
from queueline.lines.errors import QueueError
from queueline.lines.fanout import Subscriber
from queueline.lines.identity import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["live"])


def _error(detail: str) -> dict[str, Any]:
    return {"event": "error", "detail": detail}


async def handle_command(
    engine: QueueEngine,
    identity: Identity | None,
    subscriber: Subscriber,
    message: Any,
) -> None:
    """Apply one client command; failures are reported through the outbox."""

    if not isinstance(message, dict):
        subscriber.offer(_error("Commands must be JSON objects"))
        return

    action = message.get("action")
    try:
        if action == "join":
            raw_date = message.get("date")
            line_date = date.fromisoformat(raw_date) if raw_date else None
            await engine.subscribe(identity, subscriber, str(message.get("serviceType") or ""), line_date)
        elif action == "join_all":
            await engine.subscribe_all(identity, subscriber)
        elif action == "leave":
            engine.unsubscribe(subscriber)
        else:
            subscriber.offer(_error(f"Unknown action: {action!r}"))
    except QueueError as exc:
        subscriber.offer(_error(str(exc)))
    except (TypeError, ValueError) as exc:
        subscriber.offer(_error(f"Invalid date: {exc}"))


async def _receive(websocket: WebSocket, engine: QueueEngine, identity: Identity | None, subscriber: Subscriber) -> None:
    while True:
        try:
            text = await websocket.receive_text()
        except WebSocketDisconnect:
            return
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            subscriber.offer(_error("Malformed JSON"))
            continue
        await handle_command(engine, identity, subscriber, message)


async def _pump(websocket: WebSocket, subscriber: Subscriber) -> None:
    while True:
        payload = await subscriber.get()
        if payload is None:
            return
        await websocket.send_json(payload)


@router.websocket("/ws")
async def line_updates(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    engine: QueueEngine | None = getattr(websocket.app.state, "queue_engine", None)
    if engine is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    try:
        identity = resolve_identity_from_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    name = identity.user_id if identity is not None else "anonymous"
    subscriber = Subscriber(f"ws:{name}", maxsize=get_settings().subscriber_queue_size)
    receiver = asyncio.create_task(_receive(websocket, engine, identity, subscriber))
    sender = asyncio.create_task(_pump(websocket, subscriber))
    try:
        done, _ = await asyncio.wait({receiver, sender}, return_when=asyncio.FIRST_COMPLETED)
        if sender in done and sender.exception() is None:
            logger.info("Closing %r: outbox overflowed", subscriber)
            await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
    finally:
        engine.unsubscribe(subscriber)
        subscriber.close()
        for task in (receiver, sender):
            task.cancel()
        results = await asyncio.gather(receiver, sender, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, WebSocketDisconnect):
                logger.warning("WebSocket task for %r ended with %r", subscriber, result)
