"""Agent descriptors, connection bookkeeping and agent process control."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from acp import PROTOCOL_VERSION

from tether.engine import auth
from tether.engine.errors import RemoteError
from tether.engine.rpc import RpcCorrelator
from tether.log_utils import log_context, log_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentDescriptor:
    id: str
    title: str
    env_keys: tuple[str, ...] = ()
    default_command: str | None = None


BUILTIN_AGENTS: tuple[AgentDescriptor, ...] = (
    AgentDescriptor(
        id="claude",
        title="Claude Code ACP",
        env_keys=("ANTHROPIC_API_KEY", "CLAUDE_API_KEY"),
        default_command="npx -y @zed-industries/claude-code-acp",
    ),
    AgentDescriptor(
        id="gemini",
        title="Gemini CLI (ACP)",
        env_keys=("GEMINI_API_KEY", "GOOGLE_API_KEY"),
        default_command="npx -y @google/gemini-cli --experimental-acp",
    ),
)


@dataclass
class AgentConnection:
    agent_id: str
    connected: bool = False
    pid: int | None = None
    env_keys: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ConnectParams:
    agent_cmd: str | None = None
    env: dict[str, str] | None = None
    cwd: str | None = None
    proxy: str | None = None

    def payload(self, *, force_restart: bool) -> dict[str, Any]:
        body: dict[str, Any] = {"forceRestart": force_restart}
        if self.agent_cmd:
            body["agentCmd"] = self.agent_cmd
        if self.env:
            body["env"] = dict(self.env)
        if self.cwd:
            body["cwd"] = self.cwd
        if self.proxy:
            body["proxy"] = self.proxy
        return body


@dataclass(frozen=True)
class InitializeResult:
    protocol_version: Any
    auth_methods: list[Any]
    capabilities: dict[str, Any]


@dataclass(frozen=True)
class AgentStatus:
    connected: bool
    pid: int | None = None


def _descriptor(raw: Any) -> AgentDescriptor | None:
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    keys = raw.get("envKeys") or raw.get("env_keys") or []
    return AgentDescriptor(
        id=str(raw["id"]),
        title=str(raw.get("title") or raw.get("name") or raw["id"]),
        env_keys=tuple(str(key) for key in keys if key),
        default_command=raw.get("defaultCommand") or raw.get("command"),
    )


def parse_initialize(result: Any) -> InitializeResult:
    """Accept either the bare initialize response or the bridge's ``{ok, init}`` wrapper."""
    init = result.get("init") if isinstance(result, dict) and isinstance(result.get("init"), dict) else result
    init = init if isinstance(init, dict) else {}
    caps = init.get("agentCapabilities") or init.get("agent_capabilities") or init.get("capabilities") or {}
    return InitializeResult(
        protocol_version=init.get("protocolVersion", init.get("protocol_version")),
        auth_methods=auth.extract_auth_methods(init),
        capabilities=dict(caps) if isinstance(caps, dict) else {},
    )


class AgentManager:
    """One ``AgentConnection`` per agent id; connecting one agent leaves the others alone."""

    def __init__(self, rpc: RpcCorrelator, *, default_agent: str = "claude") -> None:
        self._rpc = rpc
        self._connections: dict[str, AgentConnection] = {}
        self._last_params: dict[str, ConnectParams] = {}
        self._descriptors: dict[str, AgentDescriptor] = {agent.id: agent for agent in BUILTIN_AGENTS}
        self._disconnect_listeners: list[Callable[[str], None]] = []
        self.active_agent = default_agent
        self.env_inputs: dict[str, str] = {}
        self.last_init: dict[str, InitializeResult] = {}

    def on_disconnect(self, listener: Callable[[str], None]) -> None:
        self._disconnect_listeners.append(listener)

    def connection(self, agent_id: str) -> AgentConnection | None:
        return self._connections.get(agent_id)

    def is_connected(self, agent_id: str) -> bool:
        conn = self._connections.get(agent_id)
        return bool(conn and conn.connected)

    def last_params(self, agent_id: str) -> ConnectParams | None:
        return self._last_params.get(agent_id)

    def descriptor(self, agent_id: str) -> AgentDescriptor | None:
        return self._descriptors.get(agent_id)

    def select_agent(self, agent_id: str) -> AgentDescriptor | None:
        """Make ``agent_id`` active; env inputs reset, other connections stay up."""
        self.active_agent = agent_id
        descriptor = self._descriptors.get(agent_id)
        self.env_inputs = {key: "" for key in (descriptor.env_keys if descriptor else ())}
        log_event(logger, "agent.selected", agent=agent_id)
        return descriptor

    async def list_agents(self) -> list[AgentDescriptor]:
        try:
            result = await self._rpc.call("agents.list")
        except RemoteError as exc:
            log_event(logger, "agent.list_failed", level=logging.DEBUG, error=str(exc))
            return list(self._descriptors.values())
        raw = result.get("agents") if isinstance(result, dict) else result
        parsed = [desc for desc in (_descriptor(item) for item in raw or []) if desc is not None]
        if not parsed:
            return list(self._descriptors.values())
        self._descriptors.update({desc.id: desc for desc in parsed})
        return parsed

    async def connect(
        self,
        agent_id: str,
        *,
        agent_cmd: str | None = None,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        proxy: str | None = None,
        force_restart: bool = False,
    ) -> InitializeResult:
        """Spawn or attach the agent and run protocol initialization.

        Errors are not retried here; the connection is left marked disconnected.
        """
        params = ConnectParams(agent_cmd=agent_cmd, env=env, cwd=cwd, proxy=proxy)
        self._last_params[agent_id] = params
        conn = self._connections.setdefault(agent_id, AgentConnection(agent_id=agent_id))
        conn.env_keys = sorted(env or {})
        with log_context(agent=agent_id):
            log_event(logger, "agent.connect", force_restart=force_restart, env_keys=conn.env_keys, cwd=cwd)
            try:
                result = await self._rpc.call("connect", params.payload(force_restart=force_restart), agent_id=agent_id)
            except Exception as exc:
                conn.connected = False
                log_event(logger, "agent.connect_failed", level=logging.WARNING, error=str(exc))
                raise
            init = parse_initialize(result)
            conn.connected = True
            self.last_init[agent_id] = init
            if init.protocol_version is not None and init.protocol_version != PROTOCOL_VERSION:
                log_event(
                    logger,
                    "agent.protocol_mismatch",
                    level=logging.WARNING,
                    agent_version=init.protocol_version,
                    client_version=PROTOCOL_VERSION,
                )
            log_event(logger, "agent.connected", auth_methods=[auth.method_id(m) for m in init.auth_methods])
        return init

    async def disconnect(self, agent_id: str) -> None:
        try:
            await self._rpc.call("disconnect", agent_id=agent_id)
        finally:
            self._drop(agent_id, reason="disconnect")

    async def status(self, agent_id: str) -> AgentStatus:
        result = await self._rpc.call("agent.status", agent_id=agent_id)
        result = result if isinstance(result, dict) else {}
        status = AgentStatus(connected=bool(result.get("connected")), pid=result.get("pid"))
        conn = self._connections.setdefault(agent_id, AgentConnection(agent_id=agent_id))
        conn.connected, conn.pid = status.connected, status.pid
        return status

    async def start(self, agent_id: str) -> Any:
        return await self._rpc.call("agent.start", agent_id=agent_id)

    async def stop(self, agent_id: str) -> Any:
        try:
            return await self._rpc.call("agent.stop", agent_id=agent_id)
        finally:
            self._drop(agent_id, reason="stop")

    async def auth_methods(self, agent_id: str) -> list[Any]:
        result = await self._rpc.call("authMethods", agent_id=agent_id)
        if isinstance(result, dict) and isinstance(result.get("methods"), list):
            return [method for method in result["methods"] if auth.method_id(method)]
        return auth.extract_auth_methods(result)

    async def authenticate(self, agent_id: str, method_id: str) -> Any:
        log_event(logger, "agent.authenticate", agent=agent_id, method=method_id)
        return await self._rpc.call("authenticate", {"methodId": method_id}, agent_id=agent_id)

    def handle_initialized(self, event: dict[str, Any]) -> str:
        agent_id = str(event.get("agentId") or self.active_agent)
        conn = self._connections.setdefault(agent_id, AgentConnection(agent_id=agent_id))
        conn.connected = True
        if isinstance(event.get("init"), dict):
            self.last_init[agent_id] = parse_initialize(event["init"])
        return agent_id

    def handle_exit(self, event: dict[str, Any]) -> str:
        agent_id = str(event.get("agentId") or self.active_agent)
        log_event(
            logger,
            "agent.exit",
            level=logging.WARNING,
            agent=agent_id,
            code=event.get("code"),
            signal=event.get("signal"),
        )
        self._drop(agent_id, reason="exit")
        return agent_id

    def _drop(self, agent_id: str, *, reason: str) -> None:
        if self._connections.pop(agent_id, None) is None:
            return
        log_event(logger, "agent.disconnected", level=logging.DEBUG, agent=agent_id, reason=reason)
        for listener in list(self._disconnect_listeners):
            listener(agent_id)
