"""Failure-class driven recovery around session-scoped calls.

| failure            | action                                              |
|--------------------|-----------------------------------------------------|
| SessionNotFound    | new session, retry once with the new session id     |
| AgentNotConnected  | reconnect (forceRestart) + new session, retry once  |
| AuthRequired       | surface the auth methods, no retry                  |
| RpcTimeout         | surface without toast, no retry                     |
| anything else      | surface, no retry                                   |

A retry that fails again is surfaced as is; there is never a second retry.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tether.engine import auth
from tether.engine.agents import AgentManager
from tether.engine.errors import (
    AgentNotConnected,
    AuthRequired,
    EngineError,
    RpcTimeout,
    SessionNotFound,
    TransportError,
)
from tether.engine.sessions import SessionManager
from tether.log_utils import log_context, log_event

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EngineState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SESSION_ACTIVE = "session_active"
    PROMPTING = "prompting"


@dataclass(frozen=True)
class Notice:
    title: str
    message: str
    level: str = "error"
    toast: bool = True


def notice_for(exc: BaseException) -> Notice:
    if isinstance(exc, AuthRequired):
        methods = "\n".join(f"- {auth.describe_auth_method(m)}" for m in exc.auth_methods)
        message = f"{exc}\n{methods}" if methods else str(exc)
        return Notice(title="Authentication required", message=message, level="warning")
    if isinstance(exc, RpcTimeout):
        # Slow agent warm-up makes these common; log only.
        return Notice(title="Request timed out", message=str(exc), level="warning", toast=False)
    if isinstance(exc, TransportError):
        return Notice(title="Connection error", message=str(exc))
    if isinstance(exc, AgentNotConnected):
        return Notice(title="Agent not connected", message=str(exc))
    return Notice(title="Request failed", message=str(exc))


class RecoveryCoordinator:
    def __init__(
        self,
        agents: AgentManager,
        sessions: SessionManager,
        *,
        cwd: str,
        notify: Callable[[Notice], None] | None = None,
    ) -> None:
        self._agents = agents
        self._sessions = sessions
        self._cwd = cwd
        self._notify = notify
        self._state = EngineState.IDLE

    @property
    def state(self) -> EngineState:
        return self._state

    def _set_state(self, state: EngineState) -> None:
        if state != self._state:
            log_event(logger, "engine.state", level=logging.DEBUG, previous=self._state.value, state=state.value)
            self._state = state

    def settle_state(self, agent_id: str) -> None:
        """Derive the resting state from the agent and session bookkeeping."""
        if self._sessions.session_id(agent_id):
            self._set_state(EngineState.SESSION_ACTIVE)
        elif self._agents.is_connected(agent_id):
            self._set_state(EngineState.CONNECTED)
        else:
            self._set_state(EngineState.IDLE)

    def surface(self, exc: BaseException) -> Notice:
        notice = notice_for(exc)
        log_event(
            logger,
            "engine.notice",
            level=logging.WARNING,
            title=notice.title,
            error=type(exc).__name__,
            toast=notice.toast,
        )
        if self._notify is not None:
            self._notify(notice)
        return notice

    async def connect(self, agent_id: str, **params: Any) -> Any:
        self._set_state(EngineState.CONNECTING)
        try:
            result = await self._agents.connect(agent_id, **params)
        except EngineError as exc:
            self.settle_state(agent_id)
            self.surface(exc)
            raise
        self.settle_state(agent_id)
        return result

    async def new_session(self, agent_id: str, cwd: str | None = None) -> str:
        session = await self._sessions.new_session(agent_id, cwd or self._session_cwd(agent_id))
        self.settle_state(agent_id)
        return session.session_id or ""

    async def ensure_session(self, agent_id: str) -> str:
        session_id = self._sessions.session_id(agent_id)
        if session_id:
            return session_id
        return await self.new_session(agent_id)

    async def run(
        self,
        agent_id: str,
        call: Callable[[str], Awaitable[T]],
        *,
        operation: str = "prompt",
    ) -> T:
        """Run ``call(session_id)`` under the recovery table above."""
        try:
            session_id = await self.ensure_session(agent_id)
        except EngineError as exc:
            self.surface(exc)
            raise
        prompting = operation == "prompt"
        if prompting:
            self._set_state(EngineState.PROMPTING)
        try:
            try:
                return await call(session_id)
            except SessionNotFound as exc:
                failure: EngineError = exc
                recover = self._recover_session
            except AgentNotConnected as exc:
                failure = exc
                recover = self._recover_agent
            except EngineError as exc:
                self.surface(exc)
                raise
            with log_context(agent=agent_id, op=operation):
                log_event(logger, "recovery.start", failure=type(failure).__name__, error=str(failure))
                try:
                    new_session_id = await recover(agent_id)
                    result = await call(new_session_id)
                except EngineError as exc:
                    log_event(logger, "recovery.failed", level=logging.WARNING, error=str(exc))
                    self.surface(exc)
                    raise
                log_event(logger, "recovery.succeeded", session_id=new_session_id)
            return result
        finally:
            if prompting:
                self.settle_state(agent_id)

    async def _recover_session(self, agent_id: str) -> str:
        cwd = self._session_cwd(agent_id)
        self._sessions.invalidate(agent_id, reason="session_not_found")
        return await self.new_session(agent_id, cwd)

    async def _recover_agent(self, agent_id: str) -> str:
        cwd = self._session_cwd(agent_id)
        self._sessions.invalidate(agent_id, reason="agent_not_connected")
        params = self._agents.last_params(agent_id)
        self._set_state(EngineState.CONNECTING)
        await self._agents.connect(
            agent_id,
            agent_cmd=params.agent_cmd if params else None,
            env=params.env if params else None,
            cwd=params.cwd if params else None,
            proxy=params.proxy if params else None,
            force_restart=True,
        )
        return await self.new_session(agent_id, cwd)

    def _session_cwd(self, agent_id: str) -> str:
        session = self._sessions.current(agent_id)
        return session.cwd if session and session.cwd else self._cwd
