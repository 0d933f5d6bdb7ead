"""Single-owner orchestration of user input, the completion client and the store.

The manager is the only writer of its conversation list. Stream events are
applied one at a time to a working copy, and each result is saved and handed
to the caller as a fresh snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from ..engine.chat_client import ChatCompletionClient, CompletionStream
from ..engine.conversation import Conversation, Message, derive_title, upsert_conversation
from ..engine.events import Completed, Delta, Failed, StreamEvent
from .conversation_store import ConversationStore

logger = logging.getLogger(__name__)

ERROR_REPLY_PREFIX = "Sorry, I encountered an error. "


@dataclass(frozen=True)
class ConversationUpdate:
    # None for the snapshot taken right after the user's message is added.
    event: Optional[StreamEvent]
    conversation: Conversation


class ChatManager:
    def __init__(self, client: ChatCompletionClient, store: ConversationStore):
        self._client = client
        self._store = store
        self.conversations: List[Conversation] = []
        self.current: Conversation | None = None
        self.is_loading = False
        self.error_message: str | None = None
        self._stream: CompletionStream | None = None
        self._streaming_conversation_id: str | None = None

    async def load(self, *, create_if_empty: bool = True) -> Conversation | None:
        self.conversations = await self._store.load()
        if not self.conversations:
            if not create_if_empty:
                return None
            return await self.create_conversation()
        self.current = self.conversations[0]
        return self.current

    async def create_conversation(self) -> Conversation:
        conversation = Conversation()
        self.conversations.insert(0, conversation)
        self.current = conversation
        await self._persist(conversation)
        return conversation

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        return next((c for c in self.conversations if c.id == conversation_id), None)

    def select_conversation(self, conversation_id: str) -> Conversation:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            raise KeyError(conversation_id)
        self.current = conversation
        return conversation

    def search(self, text: str) -> List[Conversation]:
        """Conversations whose title or any message contains ``text``, case-insensitively."""
        return [c for c in self.conversations if c.matches(text)]

    async def _persist(self, conversation: Conversation) -> None:
        # Only this conversation is written; others in the store are left as stored.
        if not await self._store.upsert(conversation):
            logger.warning("conversation_save_failed conversation_id=%s", conversation.id)

    async def _publish(self, conversation: Conversation) -> Conversation:
        self.conversations = upsert_conversation(self.conversations, conversation)
        if self.current is None or self.current.id == conversation.id:
            self.current = conversation
        await self._persist(conversation)
        return conversation.model_copy(deep=True)

    async def _drop_placeholder(self, conversation_id: str) -> Conversation | None:
        conversation = self.get_conversation(conversation_id)
        if conversation is None or conversation.pending_message is None:
            return conversation
        return await self._publish(conversation.without_pending())

    def _apply(self, conversation: Conversation, event: StreamEvent, received_text: bool) -> Conversation:
        if isinstance(event, Delta):
            if not received_text:
                return conversation.replace_pending(Message.assistant(event.text))
            return conversation.append_to_last_assistant(event.text)
        if isinstance(event, Completed):
            # Completed without any text: nothing replaced the placeholder.
            return conversation.without_pending()
        if isinstance(event, Failed):
            reply = ERROR_REPLY_PREFIX + event.error.user_message
            return conversation.without_pending().with_message(Message.assistant(reply))
        raise TypeError(f"unknown stream event: {event!r}")

    async def stream_message(self, content: str) -> AsyncIterator[ConversationUpdate]:
        if not content.strip() or self.current is None:
            return
        if self.is_loading:
            raise RuntimeError("a response is already in progress")

        conversation = self.current
        is_first_message = not conversation.messages
        conversation = conversation.with_message(Message.user(content)).with_message(Message.placeholder())
        if is_first_message:
            conversation = conversation.with_title(derive_title(content))

        self.error_message = None
        self.is_loading = True
        conversation_id = conversation.id
        snapshot = await self._publish(conversation)

        # The request is already running when the first snapshot is handed out.
        stream = self._client.stream_completion(conversation.history())
        self._stream = stream
        self._streaming_conversation_id = conversation_id
        received_text = False
        try:
            yield ConversationUpdate(None, snapshot)
            async for event in stream:
                working = self.get_conversation(conversation_id)
                if working is None:
                    stream.cancel()
                    break
                working = self._apply(working, event, received_text)
                if isinstance(event, Delta):
                    received_text = True
                elif isinstance(event, Failed):
                    self.is_loading = False
                    self.error_message = event.error.user_message
                else:
                    self.is_loading = False
                yield ConversationUpdate(event, await self._publish(working))
        finally:
            stream.cancel()
            if self._stream is stream:
                self._stream = None
                self._streaming_conversation_id = None
                self.is_loading = False
            if stream.cancelled:
                await self._drop_placeholder(conversation_id)

    async def send_message(self, content: str) -> Conversation | None:
        last: Conversation | None = None
        async for update in self.stream_message(content):
            last = update.conversation
        return last

    async def cancel_current_request(self) -> Conversation | None:
        stream, conversation_id = self._stream, self._streaming_conversation_id
        self._stream = None
        self._streaming_conversation_id = None
        self.is_loading = False
        if stream is None or conversation_id is None:
            return None
        stream.cancel()
        return await self._drop_placeholder(conversation_id)
