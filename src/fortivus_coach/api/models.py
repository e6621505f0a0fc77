from pydantic import BaseModel

from ..coaching.models import Role


class ChatRequest(BaseModel):
    conversation_id: str | None = None
    message: str


class ConversationCreate(BaseModel):
    title: str | None = None


class PromptMessage(BaseModel):
    role: Role
    content: str


class CoachingRequest(BaseModel):
    messages: list[PromptMessage]


class ConversationOut(BaseModel):
    id: str
    title: str
    created_at: str
    updated_at: str


class MessageOut(BaseModel):
    id: str
    role: Role
    content: str
    created_at: str
