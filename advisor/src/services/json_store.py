"""JSON-file based ConversationStore implementation."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import List

from pydantic import TypeAdapter, ValidationError

from ..config import CONVERSATIONS_FILE, DATA_DIR
from ..engine.conversation import Conversation, upsert_conversation
from .conversation_store import ConversationStore

logger = logging.getLogger(__name__)

_CONVERSATION_LIST = TypeAdapter(List[Conversation])


class JsonConversationStore:
    """All conversations in one JSON file, newest first."""

    def __init__(self, path: str | os.PathLike[str] | None = None):
        self._path = Path(path) if path is not None else Path(DATA_DIR) / CONVERSATIONS_FILE
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def ensure_data_dir(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

    async def load(self) -> List[Conversation]:
        if not self._path.exists():
            return []

        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return _CONVERSATION_LIST.validate_python(data)
        except (OSError, ValueError, ValidationError):
            logger.warning("conversation_store_load_failed path=%s", self._path, exc_info=True)
            return []

    async def save(self, conversations: List[Conversation]) -> bool:
        async with self._lock:
            return self._write(conversations)

    async def upsert(self, conversation: Conversation) -> bool:
        async with self._lock:
            return self._write(upsert_conversation(await self.load(), conversation))

    def _write(self, conversations: List[Conversation]) -> bool:
        payload = _CONVERSATION_LIST.dump_python(
            [c.for_storage() for c in conversations],
            mode="json",
        )
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self.ensure_data_dir()
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self._path)
        except OSError:
            logger.warning("conversation_store_save_failed path=%s", self._path, exc_info=True)
            return False
        return True


class InMemoryConversationStore:
    def __init__(self, conversations: List[Conversation] | None = None):
        self._conversations = [c.for_storage() for c in (conversations or [])]
        self.save_count = 0

    async def load(self) -> List[Conversation]:
        return [c.model_copy(deep=True) for c in self._conversations]

    async def save(self, conversations: List[Conversation]) -> bool:
        self._conversations = [c.for_storage() for c in conversations]
        self.save_count += 1
        return True

    async def upsert(self, conversation: Conversation) -> bool:
        self._conversations = upsert_conversation(self._conversations, conversation.for_storage())
        self.save_count += 1
        return True


_DEFAULT_STORE: ConversationStore = JsonConversationStore()


def get_default_store() -> ConversationStore:
    return _DEFAULT_STORE
