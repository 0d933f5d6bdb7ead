from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..dependencies import get_store
from ..schemas.conversations import ConversationMetadata, CreateConversationRequest
from ...engine.conversation import Conversation
from ...services.conversation_store import ConversationStore


router = APIRouter()


def _metadata(conversation: Conversation) -> ConversationMetadata:
    return ConversationMetadata(
        id=conversation.id,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        title=conversation.title,
        message_count=len(conversation.messages),
    )


@router.get("/api/conversations", response_model=List[ConversationMetadata])
async def list_conversations(
    q: Optional[str] = Query(default=None, description="Case-insensitive match on title or message content"),
    store: ConversationStore = Depends(get_store),
):
    """List conversations (metadata only), newest first, optionally filtered by `q`."""
    conversations = await store.load()
    if q:
        conversations = [c for c in conversations if c.matches(q)]
    return [_metadata(c) for c in conversations]


@router.post("/api/conversations", response_model=Conversation)
async def create_conversation(
    request: CreateConversationRequest,
    store: ConversationStore = Depends(get_store),
):
    """Create a new conversation."""
    conversation = Conversation()
    if not await store.upsert(conversation):
        raise HTTPException(status_code=500, detail="storage_error")
    return conversation


@router.get("/api/conversations/{conversation_id}", response_model=Conversation)
async def get_conversation(conversation_id: str, store: ConversationStore = Depends(get_store)):
    """Get a specific conversation with all its messages."""
    for conversation in await store.load():
        if conversation.id == conversation_id:
            return conversation
    raise HTTPException(status_code=404, detail="not_found")
