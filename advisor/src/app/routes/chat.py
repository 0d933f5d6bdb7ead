import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ..dependencies import get_chat_client, get_store
from ..schemas.conversations import SendMessageRequest, VoiceCompletionRequest, VoiceCompletionResponse
from ...engine.chat_client import ChatCompletionClient
from ...engine.conversation import Message
from ...engine.errors import ChatClientError, RequestConstructionError
from ...engine.events import Completed, Delta, Failed
from ...services.chat_manager import ChatManager, ConversationUpdate
from ...services.conversation_store import ConversationStore


logger = logging.getLogger(__name__)

router = APIRouter()


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _update_payload(update: ConversationUpdate) -> dict[str, Any]:
    event = update.event
    if event is None:
        return {
            "type": "message_saved",
            "conversation_id": update.conversation.id,
            "title": update.conversation.title,
        }
    if isinstance(event, Delta):
        return {"type": "delta", "content": event.text}
    if isinstance(event, Completed):
        return {"type": "complete", "conversation": update.conversation.model_dump(mode="json")}
    if isinstance(event, Failed):
        return {"type": "error", **event.error.to_dict()}
    raise TypeError(f"unknown stream event: {event!r}")


def _status_for(error: ChatClientError | None) -> int:
    if error is None or isinstance(error, RequestConstructionError):
        return 500
    return 502


@router.post("/api/conversations/{conversation_id}/message/stream")
async def send_message_stream(
    conversation_id: str,
    request: SendMessageRequest,
    client: ChatCompletionClient = Depends(get_chat_client),
    store: ConversationStore = Depends(get_store),
):
    """
    Send a message and stream the assistant's reply.
    Returns Server-Sent Events: one per saved snapshot, ending with `complete` or `error`.
    """
    manager = ChatManager(client, store)
    await manager.load(create_if_empty=False)
    try:
        manager.select_conversation(conversation_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="not_found")

    async def event_generator():
        async for update in manager.stream_message(request.content):
            yield _sse(_update_payload(update))

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/api/voice/completion", response_model=VoiceCompletionResponse)
async def voice_completion(
    request: VoiceCompletionRequest,
    client: ChatCompletionClient = Depends(get_chat_client),
):
    """One spoken turn in, one reply out (non-streaming)."""
    result = await client.get_completion([Message.user(request.content)])
    if not result.ok or result.content is None:
        code = result.error.code if result.error is not None else "internal_server_error"
        logger.info("voice_completion_failed code=%s status=%s", code, result.status_code)
        raise HTTPException(status_code=_status_for(result.error), detail=code)
    return VoiceCompletionResponse(content=result.content)
