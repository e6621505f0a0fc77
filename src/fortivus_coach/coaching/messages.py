import logging

from ..data.sqlite_store import SQLiteStore
from ..errors import RemoteError
from .conversations import remote_call
from .models import Message, Role

logger = logging.getLogger(__name__)


class MessageStore:
    """Ordered retrieval and durable append of messages for a conversation."""

    def __init__(self, sqlite: SQLiteStore) -> None:
        self._sqlite = sqlite

    async def fetch(self, conversation_id: str) -> list[Message] | None:
        try:
            async with remote_call("fetch messages"):
                rows = await self._sqlite.get_messages(conversation_id)
        except RemoteError:
            logger.exception("Error fetching messages")
            return None

        messages = []
        for r in rows:
            try:
                role = Role.parse(r["role"])
            except ValueError:
                logger.warning("Skipping message %s with unknown role %r", r["id"], r["role"])
                continue
            messages.append(
                Message(role=role, content=r["content"], id=r["id"], created_at=r["created_at"])
            )
        return messages

    async def append(self, conversation_id: str, role: Role, content: str) -> dict | None:
        """Insert one message row. Failures are logged, never raised."""
        try:
            async with remote_call("append message"):
                return await self._sqlite.add_message(conversation_id, role.value, content)
        except RemoteError:
            logger.exception("Error saving %s message to %s", role.value, conversation_id)
            return None
