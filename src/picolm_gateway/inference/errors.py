"""Typed failure taxonomy for the inference bridge.

Every failure is classified where it happens and carries an ``ErrorKind``
discriminant, so callers (the HTTP layer in particular) decide behaviour by
type and never by inspecting message text.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    CONFIGURATION = "configuration"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    ENGINE = "engine"
    MALFORMED = "malformed"


class InferenceError(Exception):
    """Base class for all bridge failures."""

    kind: ErrorKind = ErrorKind.ENGINE


class ConfigurationError(InferenceError):
    """Binary/model path missing or invalid, or a config value out of range.

    Raised at startup; never produced per request once the bridge is validated.
    """

    kind = ErrorKind.CONFIGURATION


class InferenceTimeout(InferenceError):
    """The run exceeded its deadline."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout: float, max_tokens: int) -> None:
        self.timeout = timeout
        self.max_tokens = max_tokens
        super().__init__(
            f"picolm inference timed out after {timeout:g}s (max_tokens: {max_tokens})"
        )


class InferenceCancelled(InferenceError):
    """The caller went away (e.g. the HTTP client disconnected)."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "request cancelled (client disconnected)") -> None:
        super().__init__(message)


class EngineError(InferenceError):
    """The engine failed to start, exited non-zero, or its output was unreadable."""

    kind = ErrorKind.ENGINE

    def __init__(self, message: str, stderr: str = "", exit_code: int | None = None) -> None:
        self.stderr = stderr
        self.exit_code = exit_code
        super().__init__(message)


class MalformedOutput(InferenceError):
    """Structured extraction failed.

    Never surfaces to callers: the output interpreter degrades to plain text.
    """

    kind = ErrorKind.MALFORMED
