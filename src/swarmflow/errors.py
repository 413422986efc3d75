"""Error kinds and exception types shared by the orchestration core."""

from __future__ import annotations

import asyncio
from enum import Enum


class ErrorKind(str, Enum):
    """Classification attached to failed results and raised errors."""

    SELECTION_FAILURE = "selection_failure"
    LOOP_EXHAUSTED = "loop_exhausted"
    STEP_FAILURE = "step_failure"
    TOPOLOGY_UNSUPPORTED = "topology_unsupported"
    STORE_UNAVAILABLE = "store_unavailable"
    ANALYSIS_PARSE_FAILURE = "analysis_parse_failure"
    PLAN_PARSE_FAILURE = "plan_parse_failure"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    CONTENT_FILTER = "content_filter"
    VALIDATION = "validation"
    INTERNAL = "internal"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.RATE_LIMIT, ErrorKind.TIMEOUT)


class SwarmflowError(RuntimeError):
    """Base error carrying an :class:`ErrorKind`."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class TaskStateError(SwarmflowError):
    """Raised on an illegal task lifecycle transition."""

    kind = ErrorKind.VALIDATION


class AgentExecutionError(SwarmflowError):
    """Raised by topology strategies when a single agent invocation fails."""

    def __init__(self, agent_name: str, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(f"Agent '{agent_name}' failed: {message}", kind=kind)
        self.agent_name = agent_name


class TopologyError(SwarmflowError):
    kind = ErrorKind.TOPOLOGY_UNSUPPORTED


class StoreUnavailableError(SwarmflowError):
    """Primary and every fallback store failed for an operation."""

    kind = ErrorKind.STORE_UNAVAILABLE


class MemoryValidationError(SwarmflowError, ValueError):
    kind = ErrorKind.VALIDATION


class LanguageModelError(SwarmflowError):
    """Raised by language model providers.

    ``kind`` tells callers whether the call may be retried: rate limits and
    timeouts are retryable, validation and content-filter failures are not.
    """


class ParseError(SwarmflowError):
    """Model output did not match the expected tagged layout or schema."""


def classify_error(error: BaseException) -> ErrorKind:
    """Map an arbitrary exception onto an :class:`ErrorKind`."""

    if isinstance(error, SwarmflowError):
        return error.kind
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    message = str(error).lower()
    if "rate limit" in message or "too many requests" in message:
        return ErrorKind.RATE_LIMIT
    if "content filter" in message:
        return ErrorKind.CONTENT_FILTER
    if "timeout" in message or "timed out" in message:
        return ErrorKind.TIMEOUT
    if isinstance(error, ValueError) or "context length" in message or "token limit" in message:
        return ErrorKind.VALIDATION
    return ErrorKind.INTERNAL
