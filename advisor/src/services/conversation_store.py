from __future__ import annotations

from typing import List, Protocol

from ..engine.conversation import Conversation


class ConversationStore(Protocol):
    """Durable owner of the conversation list.

    ``save`` replaces the whole list. ``upsert`` re-reads the stored list and
    replaces (or inserts at the front) a single conversation, so writers
    working on different conversations never overwrite each other.
    """

    async def load(self) -> List[Conversation]: ...

    async def save(self, conversations: List[Conversation]) -> bool: ...

    async def upsert(self, conversation: Conversation) -> bool: ...
