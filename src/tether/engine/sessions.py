"""Per-agent session state: creation, modes, models and the server-side session registry."""

from __future__ import annotations

import dataclasses
import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from tether.engine.errors import EngineError, ProtocolError, RequestValidationError
from tether.engine.normalizer import normalize_modes
from tether.engine.rpc import RpcCorrelator
from tether.log_utils import log_context, log_event

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    NO_SESSION = "no_session"
    CREATING = "creating"
    ACTIVE = "active"
    LOST = "lost"
    CLOSED = "closed"


@dataclass
class Session:
    session_id: str | None
    cwd: str
    current_mode_id: str | None = None
    available_modes: list[dict[str, Any]] = field(default_factory=list)
    available_models: list[dict[str, Any]] = field(default_factory=list)
    selected_model_id: str | None = None


@dataclass(frozen=True)
class SessionRegistry:
    sessions: list[dict[str, Any]]
    last_session_id: str | None = None


def extract_session_id(result: Any) -> str | None:
    if not isinstance(result, dict):
        return None
    for source in (result, result.get("data")):
        if isinstance(source, dict):
            value = source.get("sessionId") or source.get("session_id")
            if value:
                return str(value)
    return None


def parse_models(result: Any) -> tuple[list[dict[str, Any]], str | None]:
    """Return ``(models, current_model_id)`` from a models listing in any of the usual shapes."""
    current = None
    raw: Any = result
    if isinstance(result, dict):
        raw = result.get("models") or result.get("availableModels") or result.get("available_models") or []
        current = result.get("currentModelId") or result.get("current_model_id")
        if isinstance(raw, dict):
            current = current or raw.get("currentModelId") or raw.get("current_model_id")
            raw = raw.get("availableModels") or raw.get("available_models") or []
    models: list[dict[str, Any]] = []
    for model in raw if isinstance(raw, list) else []:
        if isinstance(model, str):
            models.append({"id": model, "name": model})
        elif isinstance(model, dict):
            model_id = model.get("modelId") or model.get("model_id") or model.get("id")
            if model_id:
                models.append({"id": str(model_id), "name": str(model.get("name") or model_id), "description": model.get("description")})
    return models, (str(current) if current else None)


def _parse_registry(result: Any) -> SessionRegistry:
    if isinstance(result, list):
        return SessionRegistry(sessions=[s if isinstance(s, dict) else {"id": str(s)} for s in result])
    if not isinstance(result, dict):
        return SessionRegistry(sessions=[])
    sessions = result.get("sessions") or []
    return SessionRegistry(
        sessions=[s if isinstance(s, dict) else {"id": str(s)} for s in sessions],
        last_session_id=result.get("lastSessionId") or result.get("last_session_id"),
    )


class SessionManager:
    """Tracks one ``Session`` per agent id.

    Mode changes requested with ``set_mode`` are not applied locally; the
    current mode only changes when the agent reports it.
    """

    def __init__(self, rpc: RpcCorrelator) -> None:
        self._rpc = rpc
        self._sessions: dict[str, Session] = {}
        self._states: dict[str, SessionState] = {}
        self._registries: dict[str, SessionRegistry] = {}

    def state(self, agent_id: str) -> SessionState:
        return self._states.get(agent_id, SessionState.NO_SESSION)

    def current(self, agent_id: str) -> Session | None:
        return self._sessions.get(agent_id)

    def session_id(self, agent_id: str) -> str | None:
        session = self._sessions.get(agent_id)
        return session.session_id if session else None

    def registry(self, agent_id: str) -> SessionRegistry:
        return self._registries.get(agent_id, SessionRegistry(sessions=[]))

    async def new_session(self, agent_id: str, cwd: str) -> Session:
        previous = self.state(agent_id)
        self._states[agent_id] = SessionState.CREATING
        with log_context(agent=agent_id):
            try:
                result = await self._rpc.call("session.new", {"cwd": cwd}, agent_id=agent_id)
                session_id = extract_session_id(result)
                if not session_id:
                    raise ProtocolError("agent did not return a sessionId")
            except Exception:
                self._states[agent_id] = previous if previous != SessionState.ACTIVE else SessionState.LOST
                raise
            modes = result.get("modes") if isinstance(result, dict) else None
            current_mode, available_modes = normalize_modes(modes)
            session = Session(
                session_id=session_id,
                cwd=cwd,
                current_mode_id=current_mode,
                available_modes=available_modes,
            )
            self._sessions[agent_id] = session
            self._states[agent_id] = SessionState.ACTIVE
            log_event(logger, "session.created", session_id=session_id, mode=current_mode, modes=len(available_modes))
        await self.list_models(agent_id)
        return session

    async def list_models(self, agent_id: str) -> list[dict[str, Any]]:
        """Best effort: an agent without model support yields an empty list."""
        session = self._sessions.get(agent_id)
        if session is None or not session.session_id:
            return []
        try:
            result = await self._rpc.call("models.list", {"sessionId": session.session_id}, agent_id=agent_id)
        except EngineError as exc:
            log_event(logger, "session.models_unavailable", level=logging.DEBUG, agent=agent_id, error=str(exc))
            return []
        models, current = parse_models(result)
        session.available_models = models
        if current:
            session.selected_model_id = current
        return models

    async def select_model(self, agent_id: str, model_id: str) -> bool:
        session = self._require(agent_id)
        try:
            await self._rpc.call(
                "model.select", {"sessionId": session.session_id, "modelId": model_id}, agent_id=agent_id
            )
        except EngineError as exc:
            log_event(logger, "session.model_select_failed", level=logging.WARNING, agent=agent_id, model=model_id, error=str(exc))
            return False
        session.selected_model_id = model_id
        return True

    async def set_mode(self, agent_id: str, mode_id: str) -> None:
        session = self._require(agent_id)
        await self._rpc.call("session.setMode", {"sessionId": session.session_id, "modeId": mode_id}, agent_id=agent_id)
        log_event(logger, "session.mode_requested", agent=agent_id, mode=mode_id)

    def set_current_mode(self, agent_id: str, mode_id: str) -> None:
        session = self._sessions.get(agent_id)
        if session is not None:
            session.current_mode_id = mode_id

    async def list_sessions(self, agent_id: str) -> SessionRegistry:
        registry = _parse_registry(await self._rpc.call("sessions.list", agent_id=agent_id))
        self._registries[agent_id] = registry
        return registry

    async def select_session(self, agent_id: str, session_id: str) -> Session:
        if not session_id:
            raise RequestValidationError("sessionId required")
        await self._rpc.call("session.select", {"sessionId": session_id}, agent_id=agent_id)
        await self.list_sessions(agent_id)
        old = self._sessions.get(agent_id)
        # Selecting swaps in a new Session object rather than editing the old one.
        session = Session(session_id=session_id, cwd=old.cwd if old else "")
        self._sessions[agent_id] = session
        self._states[agent_id] = SessionState.ACTIVE
        log_event(logger, "session.selected", agent=agent_id, session_id=session_id)
        return session

    async def delete_session(self, agent_id: str, session_id: str) -> SessionRegistry:
        if not session_id:
            raise RequestValidationError("sessionId required")
        await self._rpc.call("session.delete", {"sessionId": session_id}, agent_id=agent_id)
        registry = await self.list_sessions(agent_id)
        current = self._sessions.get(agent_id)
        if current is not None and current.session_id == session_id:
            if registry.last_session_id:
                self._sessions[agent_id] = Session(session_id=registry.last_session_id, cwd=current.cwd)
            else:
                self._sessions[agent_id] = dataclasses.replace(current, session_id=None)
                self._states[agent_id] = SessionState.CLOSED
        log_event(logger, "session.deleted", agent=agent_id, session_id=session_id)
        return registry

    def invalidate(self, agent_id: str, *, reason: str) -> None:
        """Clear the session id after the agent reported it gone or disconnected."""
        session = self._sessions.get(agent_id)
        if session is None or not session.session_id:
            return
        log_event(logger, "session.lost", level=logging.WARNING, agent=agent_id, session_id=session.session_id, reason=reason)
        self._sessions[agent_id] = dataclasses.replace(session, session_id=None)
        self._states[agent_id] = SessionState.LOST

    def close(self, agent_id: str) -> None:
        self._sessions.pop(agent_id, None)
        self._states[agent_id] = SessionState.CLOSED

    def _require(self, agent_id: str) -> Session:
        session = self._sessions.get(agent_id)
        if session is None or not session.session_id:
            raise RequestValidationError("no active session")
        return session
