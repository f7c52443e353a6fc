"""
Error taxonomy for the agent orchestration core.

Every error raised across an agent, the dispatcher or the request envelope is an
AgentCoreError subclass. The class-level ``code`` and ``status_code`` give the
stable external shape; ``details`` carries optional structured context (field
errors, provider status, ...).
"""
from typing import Any, Optional


class AgentCoreError(Exception):
    code = "InternalError"
    status_code = 500

    def __init__(self, message: str = "", details: Optional[Any] = None) -> None:
        self.message = message or self.code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationFailed(AgentCoreError):
    code = "ValidationFailed"
    status_code = 400


class Unauthenticated(AgentCoreError):
    code = "Unauthenticated"
    status_code = 401


class Forbidden(AgentCoreError):
    code = "Forbidden"
    status_code = 403


class NotFound(AgentCoreError):
    code = "NotFound"
    status_code = 404


class AlreadyRunning(AgentCoreError):
    code = "AlreadyRunning"
    status_code = 409


class AgentNotRunning(AgentCoreError):
    code = "AgentNotRunning"
    status_code = 409


class RateLimited(AgentCoreError):
    """Raised when a principal exceeds the request budget of a rate class."""

    code = "RateLimited"
    status_code = 429

    def __init__(self, limit: int, window: int, retry_after: int, scope: str) -> None:
        self.limit = limit
        self.window = window
        self.retry_after = retry_after
        self.scope = scope
        super().__init__(
            f"Rate limit exceeded: {limit} requests/{window}s",
            details={"scope": scope, "limit": limit, "window": window, "retryAfter": retry_after},
        )


class UpstreamUnavailable(AgentCoreError):
    code = "UpstreamUnavailable"
    status_code = 503


class UpstreamRejected(AgentCoreError):
    code = "UpstreamRejected"
    status_code = 502


class MalformedJson(AgentCoreError):
    code = "MalformedJson"
    status_code = 502


class SchemaViolation(AgentCoreError):
    code = "SchemaViolation"
    status_code = 502


class EmptyCompletion(AgentCoreError):
    code = "EmptyCompletion"
    status_code = 502


class InternalError(AgentCoreError):
    code = "InternalError"
    status_code = 500
