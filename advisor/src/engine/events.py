from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from .errors import ChatClientError


@dataclass(frozen=True)
class Delta:
    text: str


@dataclass(frozen=True)
class Completed:
    pass


@dataclass(frozen=True)
class Failed:
    error: ChatClientError


StreamEvent = Union[Delta, Completed, Failed]


class StreamState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamState.COMPLETED, StreamState.ERRORED, StreamState.CANCELLED)
