"""Error taxonomy for the protocol engine.

Every failure that leaves the engine is an ``EngineError``. Errors reported by
the bridge are mapped onto the hierarchy by ``classify_error`` so the recovery
layer can decide on a policy from the exception type alone.
"""

from __future__ import annotations

import re
from typing import Any

_SESSION_LOST = re.compile(r"session not found|no sessionid", re.IGNORECASE)
_AGENT_DOWN = re.compile(r"not connected|ACP service not available", re.IGNORECASE)


class EngineError(Exception):
    """Base class for all engine failures."""


class TransportError(EngineError):
    """The channel refused the message (socket not open, send failed)."""


class RpcTimeout(EngineError):
    """No response arrived for a call before its deadline."""

    def __init__(self, operation: str, timeout_s: float) -> None:
        super().__init__(f"Request timeout: {operation} after {timeout_s:g}s")
        self.operation = operation
        self.timeout_s = timeout_s


class ProtocolError(EngineError):
    """A message could not be interpreted at all."""


class RequestValidationError(EngineError):
    """A call was rejected locally before anything was sent."""


class RemoteError(EngineError):
    """The bridge or agent reported a failure that has no dedicated recovery policy."""

    def __init__(self, message: str, *, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class DomainError(RemoteError):
    """Remote failures with a known recovery policy."""


class SessionNotFound(DomainError):
    pass


class AgentNotConnected(DomainError):
    pass


class AuthRequired(DomainError):
    def __init__(self, message: str, *, auth_methods: list[Any] | None = None, code: int | None = None) -> None:
        super().__init__(message, code=code)
        self.auth_methods = list(auth_methods or [])


def is_timeout(exc: BaseException) -> bool:
    return isinstance(exc, RpcTimeout)


def classify_error(error: Any) -> RemoteError:
    """Map a wire error (string or ``{message, code, authRequired, authMethods}``) to an exception."""
    if isinstance(error, dict):
        message = str(error.get("message") or error.get("error") or "request failed")
        code = error.get("code") if isinstance(error.get("code"), int) else None
        if error.get("authRequired") is True:
            methods = error.get("authMethods") or error.get("auth_methods") or []
            return AuthRequired(message, auth_methods=methods if isinstance(methods, list) else [], code=code)
    else:
        message = str(error or "request failed")
        code = None
    if _SESSION_LOST.search(message):
        return SessionNotFound(message, code=code, data=error)
    if _AGENT_DOWN.search(message):
        return AgentNotConnected(message, code=code, data=error)
    return RemoteError(message, code=code, data=error)
