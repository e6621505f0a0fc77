import json

from ..coaching.models import SessionEvent


def format_sse_event(event_type: str, data: str) -> dict:
    """Format an SSE event for sse-starlette's EventSourceResponse."""
    return {"event": event_type, "data": data}


def sse_init(data: dict) -> dict:
    return format_sse_event("init", json.dumps(data))


def sse_session_event(event: SessionEvent) -> dict:
    return format_sse_event(event.type, json.dumps(event.data))


def sse_error(error: str) -> dict:
    return format_sse_event("error", error)
