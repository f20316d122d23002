from __future__ import annotations

import pytest

from tether.client import slash
from tether.client.slash import SLASH_HANDLERS, handle_slash_command
from tether.client.state import ClientState
from tether.config import EngineConfig
from tether.engine.engine import AgentSessionEngine


@pytest.fixture
def printed(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []
    monkeypatch.setattr(slash.display, "print_info", lambda text, style=None: lines.append(text))
    return lines


@pytest.fixture
def engine(bridge) -> AgentSessionEngine:
    return AgentSessionEngine(bridge, EngineConfig(cwd="/work"))


def test_registry_has_core_commands() -> None:
    for name in ("/help", "/status", "/connect", "/new", "/mode", "/model", "/add", "/drop", "/allow", "/deny", "/cancel"):
        assert name in SLASH_HANDLERS


@pytest.mark.asyncio
async def test_help_lists_commands(engine, printed) -> None:
    assert await handle_slash_command("/help", engine, ClientState()) is True
    assert any(line.startswith("/thinking on|off") for line in printed)


@pytest.mark.asyncio
async def test_unknown_commands_fall_through(engine, printed) -> None:
    assert await handle_slash_command("/init project", engine, ClientState()) is False
    assert await handle_slash_command("plain text", engine, ClientState()) is False


@pytest.mark.asyncio
async def test_add_and_drop_context(engine, printed) -> None:
    state = ClientState()
    await handle_slash_command("/add src/a.py", engine, state)
    await handle_slash_command("/add --diff src/a.py", engine, state)

    assert [(i.type, i.path) for i in engine.context.items] == [("file", "src/a.py"), ("git_diff", "src/a.py")]

    await handle_slash_command("/drop src/a.py", engine, state)
    assert len(engine.context.items) == 1
    await handle_slash_command("/drop all", engine, state)
    assert engine.context.items == []


@pytest.mark.asyncio
async def test_thinking_toggle(engine, printed) -> None:
    state = ClientState()
    await handle_slash_command("/thinking off", engine, state)
    assert state.show_thinking is False
    await handle_slash_command("/thinking maybe", engine, state)
    assert state.show_thinking is False
    assert printed[-1] == "Usage: /thinking on|off"


@pytest.mark.asyncio
async def test_connect_and_new_session(engine, bridge, printed, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "secret")
    monkeypatch.delenv("CLAUDE_API_KEY", raising=False)
    state = ClientState()

    await handle_slash_command("/connect --restart my-agent --flag", engine, state)
    await handle_slash_command("/new", engine, state)

    payload = bridge.sent_ops("connect")[0]["payload"]
    assert payload["forceRestart"] is True
    assert payload["agentCmd"] == "my-agent --flag"
    assert payload["env"] == {"ANTHROPIC_API_KEY": "secret"}
    assert "[session s1]" in printed


@pytest.mark.asyncio
async def test_engine_errors_are_reported_not_raised(engine, bridge, printed) -> None:
    bridge.script("session.setMode", {"error": {"message": "unknown mode"}})
    state = ClientState()
    await handle_slash_command("/connect", engine, state)
    await handle_slash_command("/new", engine, state)

    assert await handle_slash_command("/mode turbo", engine, state) is True
    assert printed[-1] == "[/mode failed: unknown mode]"


@pytest.mark.asyncio
async def test_exit_raises_system_exit(engine, printed) -> None:
    with pytest.raises(SystemExit):
        await handle_slash_command("/quit", engine, ClientState())
