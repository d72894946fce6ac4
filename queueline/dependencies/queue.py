from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from queueline.lines.engine import QueueEngine
from queueline.lines.queries import LineQueryService


async def get_queue_engine(request: Request) -> QueueEngine:
    engine = getattr(request.app.state, "queue_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Queue engine is not configured")
    return engine


async def get_line_queries(request: Request) -> LineQueryService:
    queries = getattr(request.app.state, "line_queries", None)
    if queries is None:
        raise HTTPException(status_code=503, detail="Line query service is not configured")
    return queries


QueueEngineDep = Annotated[QueueEngine, Depends(get_queue_engine)]
LineQueriesDep = Annotated[LineQueryService, Depends(get_line_queries)]
