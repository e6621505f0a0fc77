import asyncio
import logging

import httpx
from fastapi import APIRouter, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from sse_starlette.sse import EventSourceResponse

from ..coaching.models import SessionEvent
from ..coaching.session import CoachingSession
from ..errors import CoachingError, GatewayError, GatewayErrorKind
from .models import ChatRequest, CoachingRequest, ConversationCreate, ConversationOut, MessageOut
from .sse import sse_error, sse_init, sse_session_event

logger = logging.getLogger(__name__)
router = APIRouter()

# Strong references to in-flight chat sends
_send_tasks: set[asyncio.Task] = set()


def _session(request: Request, user_id: str | None) -> CoachingSession:
    if not user_id:
        raise HTTPException(status_code=401, detail="Please sign in to use AI coaching")
    return request.app.state.sessions.get(user_id)


@router.post("/api/coaching")
async def coaching_proxy(req: CoachingRequest, request: Request):
    """Forward a conversation to the LLM gateway and pipe its event stream back."""
    gateway = request.app.state.gateway
    messages = [m.model_dump(mode="json") for m in req.messages]
    try:
        upstream = await gateway.open_stream(messages)
    except GatewayError as e:
        status = 500 if e.kind is GatewayErrorKind.GENERIC else e.status_code
        return JSONResponse({"error": str(e)}, status_code=status)
    except (CoachingError, httpx.HTTPError) as e:
        logger.exception("AI coaching error")
        return JSONResponse({"error": str(e) or "Unknown error"}, status_code=500)

    async def relay():
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        finally:
            await upstream.aclose()

    return StreamingResponse(relay(), media_type="text/event-stream")


@router.post("/api/chat")
async def chat_endpoint(
    req: ChatRequest,
    request: Request,
    x_user_id: str | None = Header(default=None),
):
    session = _session(request, x_user_id)
    if not req.message.strip():
        raise HTTPException(status_code=400, detail="Message is empty")
    if not session.claim():
        raise HTTPException(status_code=409, detail="A coaching reply is already streaming")

    try:
        if req.conversation_id is None:
            session.new_conversation()
        elif session.current_conversation is None or session.current_conversation.id != req.conversation_id:
            conv = await session.conversation_store.get(req.conversation_id)
            if not conv:
                raise HTTPException(status_code=404, detail="Conversation not found")
            await session.select_conversation(conv)
    except BaseException:
        session.release()
        raise

    # The send owns the claim from here and runs to completion even if the client goes away
    queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue()

    async def run_send():
        try:
            await session.send_message(req.message, listener=queue.put_nowait, claimed=True)
        finally:
            queue.put_nowait(None)

    send_task = asyncio.create_task(run_send())
    _send_tasks.add(send_task)
    send_task.add_done_callback(_send_tasks.discard)

    async def event_generator():
        yield sse_init({"conversation_id": req.conversation_id})
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield sse_session_event(event)
        except Exception as e:
            logger.exception("Error in chat stream")
            yield sse_error(str(e))

    return EventSourceResponse(event_generator(), ping=15)


@router.get("/api/conversations", response_model=list[ConversationOut])
async def list_conversations(request: Request, x_user_id: str | None = Header(default=None)):
    session = _session(request, x_user_id)
    conversations = await session.refresh_conversations()
    return [c.to_dict() for c in conversations]


@router.post("/api/conversations", response_model=ConversationOut)
async def create_conversation(
    body: ConversationCreate,
    request: Request,
    x_user_id: str | None = Header(default=None),
):
    session = _session(request, x_user_id)
    if body.title:
        conv = await session.create_conversation(body.title)
    else:
        conv = await session.create_conversation()
    if not conv:
        raise HTTPException(status_code=500, detail="Failed to create conversation")
    return conv.to_dict()


@router.delete("/api/conversations/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: str,
    request: Request,
    x_user_id: str | None = Header(default=None),
):
    session = _session(request, x_user_id)
    if not await session.conversation_store.get(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    if not await session.delete_conversation(conversation_id):
        raise HTTPException(status_code=500, detail="Failed to delete conversation")
    return Response(status_code=204)


@router.get("/api/conversations/{conversation_id}/messages", response_model=list[MessageOut])
async def get_messages(
    conversation_id: str,
    request: Request,
    x_user_id: str | None = Header(default=None),
):
    session = _session(request, x_user_id)
    if not await session.conversation_store.get(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    messages = await session.message_store.fetch(conversation_id)
    if messages is None:
        raise HTTPException(status_code=500, detail="Failed to load messages")
    return [m.to_dict() for m in messages]
