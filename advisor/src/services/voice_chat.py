"""Voice conversation loop over the non-streaming completion path.

Speech recognition and synthesis live outside this package; they are reached
through the ``VoiceIO`` protocol.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ..engine.chat_client import ChatCompletionClient
from ..engine.conversation import Message
from ..engine.errors import ChatClientError

logger = logging.getLogger(__name__)

APOLOGY_REPLY = "I'm sorry, I encountered an error. Please try again."


class VoiceIO(Protocol):
    async def transcribe(self) -> str:
        """Listen until the speaker stops and return the final transcript."""
        ...

    async def speak(self, text: str) -> None:
        """Say ``text``; returns once speaking has finished."""
        ...


@dataclass(frozen=True)
class VoiceTurn:
    transcript: str
    reply: Optional[str]
    error: Optional[ChatClientError] = None


class VoiceChatSession:
    def __init__(self, client: ChatCompletionClient, voice: VoiceIO):
        self._client = client
        self._voice = voice
        self._running = False
        self.error_message: str | None = None

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        self._running = False

    async def respond_once(self) -> VoiceTurn | None:
        transcript = (await self._voice.transcribe()).strip()
        if not transcript:
            return None

        # Each spoken turn is sent on its own, without earlier turns.
        result = await self._client.get_completion([Message.user(transcript)])
        if result.ok and result.content is not None:
            self.error_message = None
            await self._voice.speak(result.content)
            return VoiceTurn(transcript=transcript, reply=result.content)

        error = result.error
        self.error_message = error.user_message if error is not None else None
        logger.info("voice_turn_failed code=%s", error.code if error is not None else None)
        await self._voice.speak(APOLOGY_REPLY)
        return VoiceTurn(transcript=transcript, reply=None, error=error)

    async def run(self, max_turns: int | None = None) -> list[VoiceTurn]:
        """Listen, answer and speak until ``stop()`` or ``max_turns`` answered turns."""
        turns: list[VoiceTurn] = []
        self._running = True
        try:
            while self._running and (max_turns is None or len(turns) < max_turns):
                turn = await self.respond_once()
                if turn is not None:
                    turns.append(turn)
        finally:
            self._running = False
        return turns
