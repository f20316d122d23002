from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable

import pytest

from tether.engine.channel import ListenerSet
from tether.engine.errors import TransportError

_NO_REPLY = object()


class ScriptedChannel:
    """In-memory stand-in for the bridge side of the WebSocket.

    ``script(op, *responses)`` queues replies for an operation; each response is
    ``{"result": ...}``, ``{"error": ...}`` or ``None`` (never answer). The last
    queued response repeats. Unscripted operations are answered with an error.
    """

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail_sends = False
        self._listeners = ListenerSet()
        self._scripts: dict[str, list[Any]] = {}

    @property
    def connected(self) -> bool:
        return not self.fail_sends

    def script(self, op: str, *responses: Any) -> None:
        self._scripts[op] = list(responses)

    def sent_ops(self, op: str | None = None) -> list[dict[str, Any]]:
        return [msg for msg in self.sent if op is None or msg.get("op") == op]

    async def send_json(self, message: dict[str, Any]) -> None:
        if self.fail_sends:
            raise TransportError("WebSocket is not open")
        self.sent.append(message)
        response = self._next_response(message.get("op", ""))
        if response is _NO_REPLY or response is None:
            return
        reply = {"id": message["id"], **response}
        asyncio.get_running_loop().call_soon(self.push, reply)

    def subscribe(self, listener: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        return self._listeners.add(listener)

    def push(self, message: dict[str, Any]) -> None:
        self._listeners.emit(message)

    def _next_response(self, op: str) -> Any:
        queue = self._scripts.get(op)
        if queue is None:
            return {"error": {"message": f"Unknown ACP operation: {op}"}}
        if not queue:
            return _NO_REPLY
        return queue.pop(0) if len(queue) > 1 else queue[0]


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path_factory, monkeypatch):
    """Force tests to use a temporary HOME/XDG dirs to avoid permission issues."""
    base = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(base))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(base / ".config"))
    monkeypatch.setenv("XDG_STATE_HOME", str(base / ".local" / "state"))
    monkeypatch.setenv("XDG_DATA_HOME", str(base / ".local" / "share"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(base / ".cache"))
    monkeypatch.setattr(Path, "home", lambda: base)
    for name in (
        "TETHER_HOME",
        "TETHER_WS_URL",
        "TETHER_AGENT",
        "TETHER_ACP_CONNECT_TIMEOUT_MS",
        "TETHER_ACP_PROMPT_TIMEOUT_MS",
        "TETHER_ACP_DEFAULT_TIMEOUT_MS",
        "TETHER_LOG_DIR",
        "TETHER_LOG_LEVEL",
        "TETHER_LOG_UPDATES",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def channel() -> ScriptedChannel:
    return ScriptedChannel()


@pytest.fixture
def bridge(channel: ScriptedChannel) -> ScriptedChannel:
    """A channel scripted with a healthy agent: connect, session s1, prompt ends the turn."""
    channel.script("connect", {"result": {"ok": True, "init": {"protocolVersion": 1, "authMethods": []}}})
    channel.script("session.new", {"result": {"sessionId": "s1", "modes": None}})
    channel.script("prompt", {"result": {"stopReason": "end_turn"}})
    return channel
