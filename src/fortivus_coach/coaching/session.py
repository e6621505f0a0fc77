import asyncio
import logging
import time
from collections.abc import Callable

from ..config import DEFAULT_CONVERSATION_TITLE, SESSION_TTL_MINUTES, TITLE_MAX_CHARS
from ..data.sqlite_store import SQLiteStore
from ..errors import RemoteError
from ..gateway.stream import StreamingResponseReader
from .conversations import ConversationStore
from .messages import MessageStore
from .models import Conversation, Message, Notification, Role, SessionEvent, SessionState

logger = logging.getLogger(__name__)

Listener = Callable[[SessionEvent], None]


def title_from(text: str) -> str:
    """First TITLE_MAX_CHARS characters, with "..." appended only if cut."""
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text


class CoachingSession:
    """One user's coaching chat: active conversation, local history and the in-flight reply.

    The local `messages` list is what the user sees during the session; the
    SQLite tables are the record across sessions. User messages are shown
    before their insert is acknowledged, and the assistant reply is only
    written once its stream has finished cleanly.
    """

    def __init__(
        self,
        sqlite: SQLiteStore,
        reader: StreamingResponseReader,
        user_id: str | None,
    ) -> None:
        self.notifications: list[Notification] = []
        self.conversation_store = ConversationStore(sqlite, user_id, self.notify)
        self.message_store = MessageStore(sqlite)
        self._reader = reader
        self.current_conversation: Conversation | None = None
        self.messages: list[Message] = []
        self.state = SessionState.IDLE
        self.is_streaming = False
        self._claimed = False
        self._listener: Listener | None = None

    @property
    def conversations(self) -> list[Conversation]:
        return self.conversation_store.conversations

    def _publish(self, event_type: str, data: dict) -> None:
        if self._listener:
            self._listener(SessionEvent(type=event_type, data=data))

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)
        self._publish("notification", notification.to_dict())

    # --- Conversations ---

    async def refresh_conversations(self) -> list[Conversation]:
        await self.conversation_store.list()
        return self.conversations

    async def create_conversation(
        self, initial_title: str = DEFAULT_CONVERSATION_TITLE
    ) -> Conversation | None:
        conversation = await self.conversation_store.create(initial_title)
        if conversation is None:
            return None
        self.current_conversation = conversation
        self.messages = []
        self._publish("conversation", conversation.to_dict())
        return conversation

    async def select_conversation(self, conversation: Conversation) -> None:
        self.current_conversation = conversation
        fetched = await self.message_store.fetch(conversation.id)
        self.messages = fetched if fetched is not None else []

    def new_conversation(self) -> None:
        self.current_conversation = None
        self.messages = []

    async def delete_conversation(self, conversation_id: str) -> bool:
        deleted = await self.conversation_store.delete(conversation_id)
        if deleted and self.current_conversation and self.current_conversation.id == conversation_id:
            self.new_conversation()
        return deleted

    # --- Messages ---

    @property
    def busy(self) -> bool:
        """True from a successful claim() or the start of a send until that send ends."""
        return self._claimed or self.state is not SessionState.IDLE

    def claim(self) -> bool:
        """Reserve the session for one upcoming `send_message(..., claimed=True)`."""
        if self.busy:
            return False
        self._claimed = True
        return True

    def release(self) -> None:
        self._claimed = False

    async def send_message(
        self, content: str, listener: Listener | None = None, *, claimed: bool = False
    ) -> bool:
        """Send one user message and stream the coach's reply into `messages`.

        Returns False without touching any state when the text is blank or
        another send holds the session; the listener still gets a final
        `done` event. Every failure after that point is turned into a
        notification and the session ends back in IDLE.
        """
        held_elsewhere = self.state is not SessionState.IDLE or (self._claimed and not claimed)
        if not content.strip() or held_elsewhere:
            if claimed:
                self.release()
            if listener is not None:
                listener(SessionEvent(type="done", data={"ok": False}))
            return False

        self._claimed = True
        self._listener = listener
        ok = False
        try:
            ok = await self._send(content)
        except Exception as e:
            logger.exception("Unexpected error sending coaching message")
            self.notify(Notification(title="Error", description=str(e) or "Failed to send message"))
        finally:
            self.state = SessionState.IDLE
            self._claimed = False
            self._publish("done", {"ok": ok})
            self._listener = None
        return ok

    async def _send(self, content: str) -> bool:
        conversation = self.current_conversation
        if conversation is None:
            self.state = SessionState.AWAITING_CONVERSATION
            conversation = await self.create_conversation(title_from(content))
            if conversation is None:
                return False

        self.state = SessionState.SENDING
        is_first_message = not self.messages
        history = [m.to_prompt() for m in self.messages]

        user_message = Message(role=Role.USER, content=content)
        self.messages.append(user_message)
        self._publish("message", user_message.to_dict())
        persist_user = asyncio.create_task(
            self.message_store.append(conversation.id, Role.USER, content)
        )

        try:
            if is_first_message:
                await self._retitle(conversation, title_from(content))
            reply = await self._stream_reply(history + [user_message.to_prompt()])
        finally:
            await persist_user

        if reply is None:
            return False
        if reply:
            await self.message_store.append(conversation.id, Role.ASSISTANT, reply)
            try:
                conversation.updated_at = await self.conversation_store.touch(conversation.id)
            except RemoteError:
                logger.exception("Error updating conversation timestamp")
            self._publish("conversation", conversation.to_dict())
        return True

    async def _retitle(self, conversation: Conversation, title: str) -> None:
        try:
            await self.conversation_store.rename(conversation.id, title)
        except RemoteError:
            logger.exception("Error updating conversation title")
            return
        conversation.title = title
        self._publish("conversation", conversation.to_dict())

    async def _stream_reply(self, prompt: list[dict]) -> str | None:
        """Stream the reply into a placeholder message; None if the stream failed."""
        self.state = SessionState.STREAMING
        self.is_streaming = True
        placeholder = Message(role=Role.ASSISTANT, content="")

        try:
            async with self._reader.open(prompt) as deltas:
                self.messages.append(placeholder)
                self._publish("message", placeholder.to_dict())
                async for delta in deltas:
                    placeholder.content += delta
                    self._publish("delta", {"message_id": placeholder.id, "content": delta})
        except Exception as e:
            logger.exception("Streaming error")
            self.messages = [m for m in self.messages if m is not placeholder]
            self.notify(
                Notification(
                    title="Error",
                    description=str(e) or "Failed to get coaching response",
                )
            )
            return None
        finally:
            self.is_streaming = False
        return placeholder.content


class SessionRegistry:
    """Live sessions keyed by user; one per signed-in user.

    A session that has sat idle for `ttl_seconds` is dropped on the next
    lookup, so its history and notifications do not outlive the user's visit.
    Sessions with a send in flight are never dropped.
    """

    def __init__(
        self,
        sqlite: SQLiteStore,
        reader_factory: Callable[[], StreamingResponseReader],
        ttl_seconds: float = SESSION_TTL_MINUTES * 60,
    ) -> None:
        self._sqlite = sqlite
        self._reader_factory = reader_factory
        self._ttl_seconds = ttl_seconds
        self._sessions: dict[str, CoachingSession] = {}
        self._last_used: dict[str, float] = {}

    def get(self, user_id: str) -> CoachingSession:
        now = time.monotonic()
        self._evict_idle(now, keep=user_id)
        session = self._sessions.get(user_id)
        if session is None:
            session = CoachingSession(self._sqlite, self._reader_factory(), user_id)
            self._sessions[user_id] = session
        self._last_used[user_id] = now
        return session

    def _evict_idle(self, now: float, keep: str) -> None:
        expired = [
            uid
            for uid, last_used in self._last_used.items()
            if uid != keep
            and now - last_used >= self._ttl_seconds
            and not self._sessions[uid].busy
        ]
        for uid in expired:
            del self._sessions[uid]
            del self._last_used[uid]
        if expired:
            logger.info("Evicted %d idle coaching session(s)", len(expired))
