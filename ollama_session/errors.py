"""
ollama_session.errors
=====================

Exception hierarchy shared by every module of the package.

Every failure is scoped to the call that raised it: the session object stays
usable afterwards and nothing is retried on the caller's behalf.
"""
from __future__ import annotations

from typing import Optional

__all__ = [
    "OllamaSessionError",
    "ValidationError",
    "NotReadyError",
    "UnavailableError",
    "RemoteError",
    "UnknownToolError",
]


class OllamaSessionError(Exception):
    """Base class for all errors raised by :mod:`ollama_session`."""


class ValidationError(OllamaSessionError, ValueError):
    """Bad argument shape, type or range. Raised before any request is sent."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class NotReadyError(OllamaSessionError):
    """The call needs an active model, another mode or a missing capability."""


class UnavailableError(OllamaSessionError):
    """The Ollama server cannot be reached."""


class RemoteError(OllamaSessionError):
    """The server (or the HTTP layer talking to it) reported a failure."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out


class UnknownToolError(OllamaSessionError, LookupError):
    """A tool call names a tool that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"unavailable tool: '{name}'")
        self.name = name
