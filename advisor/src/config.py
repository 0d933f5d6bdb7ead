"""Configuration for the Advisor chat core."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace

from dotenv import load_dotenv

from .engine.errors import ConfigurationError

# Load local env files if present (never commit these).
# - `.env.local` is convenient for local dev.
# - `.env` is the default for docker-compose variable substitution.
load_dotenv(dotenv_path=".env.local", override=False)
load_dotenv(dotenv_path=".env", override=False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# OpenAI credential. Unset or placeholder values are rejected when a client is built.
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
PLACEHOLDER_API_KEY = "YOUR_API_KEY_HERE"

# Chat completions endpoint
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_CHAT_ENDPOINT = os.getenv("OPENAI_CHAT_ENDPOINT", "/chat/completions")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")

# Generation parameters. The voice path uses a smaller token cap.
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.7"))
CHAT_MAX_TOKENS = int(os.getenv("CHAT_MAX_TOKENS", "1000"))
VOICE_MAX_TOKENS = int(os.getenv("VOICE_MAX_TOKENS", "500"))

# Optional per-request timeout in seconds. Unset means the httpx client's own timeout applies.
OPENAI_TIMEOUT_SECONDS = os.getenv("OPENAI_TIMEOUT_SECONDS")

# Data directory for conversation storage
DATA_DIR = os.getenv("DATA_DIR", "data")
CONVERSATIONS_FILE = os.getenv("CONVERSATIONS_FILE", "conversations.json")

CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "*")


def _parse_optional_float(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_csv_list(value: str | None) -> list[str] | None:
    if not value:
        return None
    items = [v.strip() for v in value.split(",")]
    items = [v for v in items if v]
    return items or None


def cors_allow_origins() -> list[str]:
    return _parse_csv_list(CORS_ALLOW_ORIGINS) or ["*"]


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or LOG_LEVEL),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def has_valid_api_key(api_key: str | None) -> bool:
    if api_key is None:
        return False
    key = api_key.strip()
    return bool(key) and key != PLACEHOLDER_API_KEY


@dataclass(frozen=True)
class ChatClientConfig:
    api_key: str | None
    base_url: str = OPENAI_BASE_URL
    endpoint: str = OPENAI_CHAT_ENDPOINT
    model: str = OPENAI_MODEL
    temperature: float = CHAT_TEMPERATURE
    max_tokens: int = CHAT_MAX_TOKENS
    voice_max_tokens: int = VOICE_MAX_TOKENS
    timeout_seconds: float | None = None

    @classmethod
    def from_env(cls) -> "ChatClientConfig":
        return cls(
            api_key=OPENAI_API_KEY.strip() if OPENAI_API_KEY else OPENAI_API_KEY,
            base_url=OPENAI_BASE_URL,
            endpoint=OPENAI_CHAT_ENDPOINT,
            model=OPENAI_MODEL,
            temperature=CHAT_TEMPERATURE,
            max_tokens=CHAT_MAX_TOKENS,
            voice_max_tokens=VOICE_MAX_TOKENS,
            timeout_seconds=_parse_optional_float(OPENAI_TIMEOUT_SECONDS),
        )

    @property
    def url(self) -> str:
        return self.base_url.rstrip("/") + self.endpoint

    def validate(self) -> "ChatClientConfig":
        if not has_valid_api_key(self.api_key):
            raise ConfigurationError(
                "OpenAI API key is missing. Set OPENAI_API_KEY in the environment or .env file."
            )
        return self

    def with_overrides(self, **changes) -> "ChatClientConfig":
        return replace(self, **changes)
