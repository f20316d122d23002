"""The engine facade: one channel, one correlator, and the state built on top of them."""

from __future__ import annotations

import collections
import logging
from typing import Any, Callable, Literal

from tether.config import EngineConfig
from tether.engine.agents import AgentManager, InitializeResult
from tether.engine.channel import Channel
from tether.engine.context import ContextResolver
from tether.engine.errors import EngineError, RequestValidationError
from tether.engine.normalizer import normalize_content, normalize_update
from tether.engine.permissions import PermissionArbitrator
from tether.engine.recovery import Notice, RecoveryCoordinator
from tether.engine.rpc import RpcCorrelator
from tether.engine.sessions import Session, SessionManager, SessionRegistry
from tether.engine.tool_calls import ToolCallTracker
from tether.engine.transcript import ChatMessage, TranscriptBuilder
from tether.engine.workspace import ChannelFileSystem, ChannelGit, FileSystemService, GitService, TerminalOps
from tether.log_utils import log_context, log_event, log_updates_enabled

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 200

UpdateListener = Callable[[list[ChatMessage]], None]
NoticeListener = Callable[[Notice], None]


class AgentSessionEngine:
    """Wires inbound events to state and outbound intents to RPCs.

    UI code reads ``transcript``, ``permissions.pending`` and snapshots from
    ``tracker``; it never mutates engine state directly.
    """

    def __init__(
        self,
        channel: Channel,
        config: EngineConfig | None = None,
        *,
        fs: FileSystemService | None = None,
        git: GitService | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.rpc = RpcCorrelator(channel, timeout_for=self.config.timeout_for)
        self.agents = AgentManager(self.rpc, default_agent=self.config.default_agent)
        self.sessions = SessionManager(self.rpc)
        self.tracker = ToolCallTracker()
        self.transcript = TranscriptBuilder(self.tracker, on_mode=self._on_mode)
        self.permissions = PermissionArbitrator(self.rpc)
        self.context = ContextResolver(
            fs or ChannelFileSystem(self.rpc, tree_timeout_s=self.config.fs_timeout_s, open_timeout_s=self.config.open_timeout_s),
            git or ChannelGit(self.rpc, timeout_s=self.config.fs_timeout_s),
            limit=self.config.mention_limit,
        )
        self.terminals = TerminalOps(self.rpc)
        self.recovery = RecoveryCoordinator(self.agents, self.sessions, cwd=self.config.cwd, notify=self._emit_notice)
        self.stderr_tail: collections.deque[str] = collections.deque(maxlen=STDERR_TAIL_LINES)
        self.notices: collections.deque[Notice] = collections.deque(maxlen=50)
        self._update_listeners: list[UpdateListener] = []
        self._notice_listeners: list[NoticeListener] = []
        self._event_agent: str | None = None
        self.agents.on_disconnect(self._on_agent_gone)
        self._unsubscribe = channel.subscribe(self.handle_message)

    @property
    def agent_id(self) -> str:
        return self.agents.active_agent

    @property
    def session(self) -> Session | None:
        return self.sessions.current(self.agent_id)

    def on_update(self, listener: UpdateListener) -> None:
        self._update_listeners.append(listener)

    def on_notice(self, listener: NoticeListener) -> None:
        self._notice_listeners.append(listener)

    def close(self) -> None:
        self._unsubscribe()
        self.rpc.close("engine closed")

    # inbound

    def handle_message(self, message: dict[str, Any]) -> None:
        kind = message.get("type")
        agent_id = message.get("agentId") or self.agent_id
        if kind == "session_update":
            update = message.get("update")
            if update is None:
                update = {k: v for k, v in message.items() if k not in ("type", "agentId")}
            self._apply(agent_id, normalize_update(update))
        elif kind == "terminal_output":
            self._apply(agent_id, normalize_update(message))
        elif kind == "permission_request":
            self.permissions.on_request(message)
        elif kind == "agent_initialized":
            self.agents.handle_initialized(message)
            self.recovery.settle_state(agent_id)
        elif kind == "agent_exit":
            self.agents.handle_exit(message)
            self.recovery.settle_state(agent_id)
        elif kind == "agent_stderr":
            text = str(message.get("line") or message.get("data") or "")
            self.stderr_tail.extend(line for line in text.splitlines() if line.strip())
        elif log_updates_enabled() and "id" not in message:
            log_event(logger, "engine.unhandled_event", level=logging.DEBUG, type=kind)

    def _apply(self, agent_id: str, update: Any) -> None:
        self._event_agent = agent_id
        try:
            added = self.transcript.apply(update)
        finally:
            self._event_agent = None
        if added:
            for listener in list(self._update_listeners):
                listener(added)

    def _on_mode(self, mode_id: str) -> None:
        self.sessions.set_current_mode(self._event_agent or self.agent_id, mode_id)

    def _on_agent_gone(self, agent_id: str) -> None:
        self.sessions.invalidate(agent_id, reason="agent_disconnected")

    def _emit_notice(self, notice: Notice) -> None:
        self.notices.append(notice)
        for listener in list(self._notice_listeners):
            listener(notice)

    # outbound

    async def list_agents(self) -> list[Any]:
        return await self.agents.list_agents()

    async def connect(
        self,
        agent_id: str | None = None,
        *,
        agent_cmd: str | None = None,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        proxy: str | None = None,
        force_restart: bool = False,
    ) -> InitializeResult:
        agent_id = agent_id or self.agent_id
        if agent_id != self.agent_id:
            self.agents.select_agent(agent_id)
        return await self.recovery.connect(
            agent_id,
            agent_cmd=agent_cmd,
            env=env,
            cwd=cwd or self.config.cwd,
            proxy=proxy,
            force_restart=force_restart,
        )

    async def disconnect(self, agent_id: str | None = None) -> None:
        agent_id = agent_id or self.agent_id
        await self.agents.disconnect(agent_id)
        self.recovery.settle_state(agent_id)

    async def authenticate(self, method_id: str) -> Any:
        return await self._surfaced(self.agents.authenticate(self.agent_id, method_id))

    async def new_session(self, cwd: str | None = None) -> Session:
        await self._surfaced(self.recovery.new_session(self.agent_id, cwd or self.config.cwd))
        return self.sessions.current(self.agent_id)  # type: ignore[return-value]

    async def prompt(self, text: str) -> Any:
        """Send one prompt turn; the user's message is echoed into the transcript first."""
        if not text.strip() and not self.context.items:
            raise RequestValidationError("prompt is empty")
        agent_id = self.agent_id
        blocks = await self.context.build_prompt(text)
        echo = self.transcript.append("user", normalize_content(blocks), {"local": True})
        for listener in list(self._update_listeners):
            listener([echo])

        async def send(session_id: str) -> Any:
            return await self.rpc.call("prompt", {"sessionId": session_id, "prompt": blocks}, agent_id=agent_id)

        with log_context(agent=agent_id):
            log_event(logger, "engine.prompt", blocks=len(blocks), chars=len(text))
            return await self.recovery.run(agent_id, send, operation="prompt")

    async def cancel(self) -> Any:
        session_id = self.sessions.session_id(self.agent_id)
        if not session_id:
            raise RequestValidationError("no active session to cancel")
        log_event(logger, "engine.cancel", session_id=session_id)
        return await self._surfaced(self.rpc.call("cancel", {"sessionId": session_id}, agent_id=self.agent_id))

    async def set_mode(self, mode_id: str) -> None:
        agent_id = self.agent_id
        await self.recovery.run(agent_id, lambda _sid: self.sessions.set_mode(agent_id, mode_id), operation="session.setMode")

    async def list_models(self) -> list[dict[str, Any]]:
        return await self.sessions.list_models(self.agent_id)

    async def select_model(self, model_id: str) -> bool:
        agent_id = self.agent_id
        return await self.recovery.run(
            agent_id, lambda _sid: self.sessions.select_model(agent_id, model_id), operation="model.select"
        )

    async def list_sessions(self) -> SessionRegistry:
        return await self._surfaced(self.sessions.list_sessions(self.agent_id))

    async def select_session(self, session_id: str) -> Session:
        session = await self._surfaced(self.sessions.select_session(self.agent_id, session_id))
        self.recovery.settle_state(self.agent_id)
        return session

    async def delete_session(self, session_id: str) -> SessionRegistry:
        registry = await self._surfaced(self.sessions.delete_session(self.agent_id, session_id))
        self.recovery.settle_state(self.agent_id)
        return registry

    async def resolve_permission(self, outcome: Literal["selected", "cancelled"], option_id: str | None = None) -> Any:
        return await self._surfaced(self.permissions.resolve(outcome, option_id))

    async def _surfaced(self, awaitable: Any) -> Any:
        try:
            return await awaitable
        except EngineError as exc:
            self.recovery.surface(exc)
            raise
