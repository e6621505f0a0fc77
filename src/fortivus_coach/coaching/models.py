import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum


def _now() -> str:
    return datetime.now(UTC).isoformat()


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: str) -> "Role":
        """Map a stored role tag onto the closed set, raising ValueError otherwise."""
        return cls(value)


@dataclass
class Conversation:
    id: str
    title: str
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: dict) -> "Conversation":
        return cls(
            id=row["id"],
            title=row["title"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Message:
    role: Role
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at,
        }

    def to_prompt(self) -> dict:
        return {"role": self.role.value, "content": self.content}


class NotificationVariant(str, Enum):
    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


@dataclass
class Notification:
    """A dismissible, non-blocking message for the user."""

    title: str
    description: str
    variant: NotificationVariant = NotificationVariant.DESTRUCTIVE

    def to_dict(self) -> dict:
        return {"title": self.title, "description": self.description, "variant": self.variant.value}


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_CONVERSATION = "awaiting_conversation"
    SENDING = "sending"
    STREAMING = "streaming"


@dataclass
class SessionEvent:
    """An update published by a session while it handles a send."""

    type: str  # "conversation", "message", "delta", "notification", "done"
    data: dict = field(default_factory=dict)
