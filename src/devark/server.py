"""FastAPI server exposing sessions and the UI message bus."""

import logging
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Query

from .messaging import MessageHandler
from .services import Services

logger = logging.getLogger(__name__)

app = FastAPI(title="devark", version="0.1.0")

# Services cache (populated on first request)
_services: Services | None = None


def _get_services() -> Services:
    """Lazily create and cache the services."""
    global _services
    if _services is None:
        _services = Services.create(with_adapters=False)
        logger.info("Detected sources: %s", _services.aggregator.sources)
    return _services


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/sources")
async def get_sources():
    """Return the tools whose history is readable on this machine."""
    return _get_services().aggregator.sources


@app.get("/api/sessions")
async def get_sessions(
    source: str | None = Query(None, description="Filter by source"),
    search: str | None = Query(None, description="Search in workspace names and highlights"),
    project: str | None = Query(None, description="Filter by workspace path"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """Return sessions across all sources, most recent first."""
    sessions = _get_services().aggregator.list_sessions(source=source, project_path=project)

    if search:
        search_lower = search.lower()
        sessions = [
            s for s in sessions
            if search_lower in s.workspace_name.lower()
            or search_lower in (s.workspace_path or "").lower()
            or any(search_lower in h.lower() for h in s.highlights)
        ]

    return {
        "total": len(sessions),
        "sessions": [s.to_dict() for s in sessions[offset: offset + limit]],
    }


@app.get("/api/active-session")
async def get_active_session():
    session = _get_services().aggregator.get_active_session()
    return {"session": session.to_dict() if session else None}


@app.get("/api/session/{source}/{session_id}")
async def get_session(source: str, session_id: str):
    """Return a session's metadata, messages and duration stats."""
    aggregator = _get_services().aggregator
    if source not in aggregator.sources:
        raise HTTPException(status_code=404, detail=f"Source not available: {source}")

    session = aggregator.get_session(source, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    messages = aggregator.get_messages(source, session_id)
    return {
        "session": session.to_dict(),
        "messages": [m.to_dict() for m in messages],
        "stats": aggregator.get_session_stats(source, session_id),
    }


@app.post("/api/message")
async def post_message(message: Any = Body(...)):
    """Deliver one UI message and return every message sent in reply."""
    replies: list[dict] = []
    handler = MessageHandler(_get_services(), lambda t, d: replies.append({"type": t, "data": d}))
    await handler.initialize()
    try:
        await handler.handle_message(message)
    finally:
        handler.dispose()
    return replies
