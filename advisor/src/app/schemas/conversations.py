from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class CreateConversationRequest(BaseModel):
    """Request to create a new conversation."""


class SendMessageRequest(BaseModel):
    """Request to send a message in a conversation."""

    content: str = Field(min_length=1)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value


class ConversationMetadata(BaseModel):
    """Conversation metadata for list view."""

    id: str
    created_at: datetime
    updated_at: datetime
    title: str
    message_count: int


class VoiceCompletionRequest(SendMessageRequest):
    pass


class VoiceCompletionResponse(BaseModel):
    content: str
