import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

import aiosqlite

from ..config import DEFAULT_CONVERSATION_TITLE
from ..data.sqlite_store import SQLiteStore
from ..errors import AuthRequiredError, RemoteError
from .models import Conversation, Notification

logger = logging.getLogger(__name__)


@asynccontextmanager
async def remote_call(operation: str):
    """Translate storage driver failures into RemoteError."""
    try:
        yield
    except aiosqlite.Error as e:
        raise RemoteError(f"{operation} failed: {e}") from e


class ConversationStore:
    """Conversation records for one user, with an in-memory listing cache.

    The cache mirrors the remote table for the lifetime of a session and is
    updated after every successful mutating call. It is never the source of
    truth: `list()` replaces it wholesale.
    """

    def __init__(
        self,
        sqlite: SQLiteStore,
        user_id: str | None,
        notify: Callable[[Notification], None],
    ) -> None:
        self._sqlite = sqlite
        self._user_id = user_id
        self._notify = notify
        self.conversations: list[Conversation] = []

    def _require_user(self) -> str:
        if not self._user_id:
            raise AuthRequiredError()
        return self._user_id

    async def list(self) -> list[Conversation] | None:
        try:
            user_id = self._require_user()
        except AuthRequiredError:
            logger.info("Skipping conversation list: no signed-in user")
            return None

        try:
            async with remote_call("list conversations"):
                rows = await self._sqlite.list_conversations(user_id)
        except RemoteError:
            logger.exception("Error fetching conversations")
            return None
        self.conversations = [Conversation.from_row(r) for r in rows]
        return self.conversations

    async def get(self, conversation_id: str) -> Conversation | None:
        user_id = self._require_user()
        async with remote_call("get conversation"):
            row = await self._sqlite.get_conversation(user_id, conversation_id)
        return Conversation.from_row(row) if row else None

    async def create(self, initial_title: str = DEFAULT_CONVERSATION_TITLE) -> Conversation | None:
        try:
            user_id = self._require_user()
        except AuthRequiredError:
            logger.info("Skipping conversation create: no signed-in user")
            return None

        try:
            async with remote_call("create conversation"):
                row = await self._sqlite.create_conversation(user_id, initial_title)
        except RemoteError:
            logger.exception("Error creating conversation")
            self._notify(Notification(title="Error", description="Failed to create conversation"))
            return None

        conversation = Conversation.from_row(row)
        self.conversations.insert(0, conversation)
        logger.info("Created conversation %s", conversation.id)
        return conversation

    async def rename(self, conversation_id: str, title: str) -> None:
        user_id = self._require_user()
        async with remote_call("rename conversation"):
            await self._sqlite.update_conversation_title(user_id, conversation_id, title)
        for c in self.conversations:
            if c.id == conversation_id:
                c.title = title

    async def touch(self, conversation_id: str) -> str:
        user_id = self._require_user()
        async with remote_call("touch conversation"):
            updated_at = await self._sqlite.touch_conversation(user_id, conversation_id)
        for c in self.conversations:
            if c.id == conversation_id:
                c.updated_at = updated_at
        return updated_at

    async def delete(self, conversation_id: str) -> bool:
        """Delete a conversation and, by cascade, its messages."""
        try:
            user_id = self._require_user()
            async with remote_call("delete conversation"):
                deleted = await self._sqlite.delete_conversation(user_id, conversation_id)
        except (AuthRequiredError, RemoteError):
            logger.exception("Error deleting conversation")
            self._notify(Notification(title="Error", description="Failed to delete conversation"))
            return False

        if not deleted:
            logger.warning("Conversation %s not found for delete", conversation_id)
            return False

        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        return True
