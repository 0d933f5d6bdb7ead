"""Error taxonomy for the chat completion client.

Failures are delivered to callers as values (``Failed`` stream events or a
``CompletionResult`` with ``ok=False``); only ``ConfigurationError`` is raised,
when a client is constructed with an unusable credential.
"""

from __future__ import annotations


class ChatClientError(Exception):
    """Base class for classified chat completion failures."""

    code = "chat_client_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.user_message}


class ConfigurationError(ChatClientError):
    code = "configuration_error"


class RequestConstructionError(ChatClientError):
    code = "request_construction_error"

    @property
    def user_message(self) -> str:
        return f"Invalid request: {self.message}"


class ServerError(ChatClientError):
    code = "server_error"

    def __init__(self, status_code: int | None, message: str):
        self.status_code = status_code
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return f"API Error: {self.message}"


class NetworkError(ChatClientError):
    code = "network_error"

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(str(cause) or type(cause).__name__)
        self.__cause__ = cause

    @property
    def user_message(self) -> str:
        return f"Network Error: {self.message}"


class MalformedResponseError(ChatClientError):
    code = "malformed_response"

    @property
    def user_message(self) -> str:
        return f"Invalid response from server: {self.message}"
