from __future__ import annotations

import re


_RE_BEARER = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._\-+/=]{8,})")
_RE_OPENAI_PROJECT_SK = re.compile(r"\bsk-proj-[A-Za-z0-9_\-]{10,}\b")
_RE_OPENAI_SK = re.compile(r"\bsk-[A-Za-z0-9_\-]{10,}\b")
_RE_PEM = re.compile(r"-----BEGIN [^-]+-----.*?-----END [^-]+-----", re.DOTALL)


def redact_secrets(text: str) -> str:
    """
    Best-effort secret redaction for logs and error text shown to users.

    Server error bodies can echo the request's credential back (for example an
    "Incorrect API key provided: sk-..." message), so they pass through here
    before they are logged or surfaced.
    """
    if not text:
        return text

    out = text
    out = _RE_PEM.sub("-----BEGIN [REDACTED]-----\n[REDACTED]\n-----END [REDACTED]-----", out)
    out = _RE_BEARER.sub("Bearer [REDACTED]", out)
    out = _RE_OPENAI_PROJECT_SK.sub("[REDACTED]", out)
    out = _RE_OPENAI_SK.sub("[REDACTED]", out)
    return out


def mask_api_key(api_key: str | None) -> str:
    if not api_key:
        return "<missing>"
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:3]}...{api_key[-4:]}"
