from __future__ import annotations

from fastapi import HTTPException, Request

from ..engine.chat_client import ChatCompletionClient
from ..services.conversation_store import ConversationStore
from ..services.json_store import get_default_store


def get_chat_client(request: Request) -> ChatCompletionClient:
    client = getattr(request.app.state, "chat_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="configuration_error")
    return client


def get_store() -> ConversationStore:
    return get_default_store()
