"""Client-side slash command registry and dispatch."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Awaitable, Callable

from tether.client import display
from tether.client.state import ClientState
from tether.engine import auth
from tether.engine.engine import AgentSessionEngine
from tether.engine.errors import EngineError

logger = logging.getLogger(__name__)

SlashHandler = Callable[[AgentSessionEngine, ClientState, str], Awaitable[bool] | bool]


@dataclass
class SlashCommandDef:
    description: str
    hint: str
    handler: SlashHandler


SLASH_HANDLERS: dict[str, SlashCommandDef] = {}


def register_slash_command(name: str, description: str, hint: str) -> Callable[[SlashHandler], SlashHandler]:
    """Decorator to register a slash command."""

    def _decorator(func: SlashHandler) -> SlashHandler:
        SLASH_HANDLERS[name] = SlashCommandDef(description=description, hint=hint, handler=func)
        return func

    return _decorator


def agent_env(engine: AgentSessionEngine, agent_id: str) -> dict[str, str]:
    """Values for the agent's declared env keys, taken from the process environment."""
    descriptor = engine.agents.descriptor(agent_id)
    keys = descriptor.env_keys if descriptor else ()
    return {key: os.environ[key] for key in keys if os.environ.get(key)}


@register_slash_command("/help", description="Show available slash commands.", hint="/help")
def _handle_help(_engine: AgentSessionEngine, _state: ClientState, _argument: str) -> bool:
    display.print_info("Available slash commands:")
    for entry in SLASH_HANDLERS.values():
        display.print_info(f"{entry.hint:<22} - {entry.description}")
    return True


@register_slash_command("/status", description="Show agent, session, mode and model.", hint="/status")
def _handle_status(engine: AgentSessionEngine, _state: ClientState, _argument: str) -> bool:
    session = engine.session
    display.print_info(f"agent:   {engine.agent_id} ({'connected' if engine.agents.is_connected(engine.agent_id) else 'disconnected'})")
    display.print_info(f"state:   {engine.recovery.state.value}")
    display.print_info(f"session: {session.session_id if session and session.session_id else '-'}")
    display.print_info(f"mode:    {session.current_mode_id if session and session.current_mode_id else '-'}")
    display.print_info(f"model:   {session.selected_model_id if session and session.selected_model_id else '-'}")
    if engine.stderr_tail:
        display.print_info(f"stderr:  {engine.stderr_tail[-1]}", style="dim")
    return True


@register_slash_command("/agents", description="List known agents.", hint="/agents")
async def _handle_agents(engine: AgentSessionEngine, _state: ClientState, _argument: str) -> bool:
    for agent in await engine.list_agents():
        marker = "*" if agent.id == engine.agent_id else " "
        keys = f" [env: {', '.join(agent.env_keys)}]" if agent.env_keys else ""
        display.print_info(f"{marker} {agent.id:<10} {agent.title}{keys}")
    return True


@register_slash_command("/agent", description="Switch the active agent.", hint="/agent <id>")
def _handle_agent(engine: AgentSessionEngine, _state: ClientState, argument: str) -> bool:
    if not argument:
        display.print_info("Usage: /agent <id>")
        return True
    engine.agents.select_agent(argument.split()[0])
    display.print_info(f"[agent -> {engine.agent_id}]")
    return True


@register_slash_command("/connect", description="Connect the active agent.", hint="/connect [--restart] [cmd]")
async def _handle_connect(engine: AgentSessionEngine, _state: ClientState, argument: str) -> bool:
    restart = argument.startswith("--restart")
    agent_cmd = argument.removeprefix("--restart").strip() or None
    init = await engine.connect(
        agent_cmd=agent_cmd, env=agent_env(engine, engine.agent_id), force_restart=restart
    )
    display.print_info(f"[connected {engine.agent_id} protocol={init.protocol_version}]", style="green")
    for method in init.auth_methods:
        display.print_info(f"  auth: {auth.describe_auth_method(method)}")
    return True


@register_slash_command("/auth", description="Authenticate with the agent.", hint="/auth [method]")
async def _handle_auth(engine: AgentSessionEngine, _state: ClientState, argument: str) -> bool:
    methods = await engine.agents.auth_methods(engine.agent_id)
    if not argument:
        for method in methods:
            display.print_info(f"  {auth.describe_auth_method(method)}")
        if not methods:
            display.print_info("[no auth methods advertised]")
        return True
    method = auth.find_auth_method(methods, argument)
    method_id = auth.method_id(method) if method is not None else argument.strip()
    await engine.authenticate(method_id)
    display.print_info(f"[authenticated via {method_id}]", style="green")
    return True


@register_slash_command("/new", description="Start a new session.", hint="/new [cwd]")
async def _handle_new(engine: AgentSessionEngine, _state: ClientState, argument: str) -> bool:
    session = await engine.new_session(argument or None)
    display.print_info(f"[session {session.session_id}]", style="green")
    return True


@register_slash_command("/sessions", description="List server-held sessions.", hint="/sessions")
async def _handle_sessions(engine: AgentSessionEngine, _state: ClientState, _argument: str) -> bool:
    registry = await engine.list_sessions()
    for entry in registry.sessions:
        session_id = entry.get("id") or entry.get("sessionId")
        marker = "*" if session_id == engine.sessions.session_id(engine.agent_id) else " "
        display.print_info(f"{marker} {session_id}")
    if not registry.sessions:
        display.print_info("[no sessions]")
    return True


@register_slash_command("/select", description="Switch to a server-held session.", hint="/select <id>")
async def _handle_select(engine: AgentSessionEngine, _state: ClientState, argument: str) -> bool:
    if not argument:
        display.print_info("Usage: /select <sessionId>")
        return True
    session = await engine.select_session(argument.split()[0])
    display.print_info(f"[session {session.session_id}]")
    return True


@register_slash_command("/delete", description="Delete a server-held session.", hint="/delete <id>")
async def _handle_delete(engine: AgentSessionEngine, _state: ClientState, argument: str) -> bool:
    if not argument:
        display.print_info("Usage: /delete <sessionId>")
        return True
    await engine.delete_session(argument.split()[0])
    display.print_info("[deleted]")
    return True


@register_slash_command("/mode", description="Request a session mode.", hint="/mode <id>")
async def _handle_mode(engine: AgentSessionEngine, _state: ClientState, argument: str) -> bool:
    session = engine.session
    if not argument:
        modes = session.available_modes if session else []
        for mode in modes:
            marker = "*" if session and mode["id"] == session.current_mode_id else " "
            display.print_info(f"{marker} {mode['id']:<16} {mode.get('name') or ''}")
        if not modes:
            display.print_info("Usage: /mode <id>")
        return True
    await engine.set_mode(argument.split()[0])
    display.print_info(f"[mode {argument.split()[0]} requested]", style="dim")
    return True


@register_slash_command("/models", description="List models offered by the agent.", hint="/models")
async def _handle_models(engine: AgentSessionEngine, _state: ClientState, _argument: str) -> bool:
    models = await engine.list_models()
    selected = engine.session.selected_model_id if engine.session else None
    for model in models:
        marker = "*" if model["id"] == selected else " "
        display.print_info(f"{marker} {model['id']:<32} {model.get('name') or ''}")
    if not models:
        display.print_info("[agent does not list models]")
    return True


@register_slash_command("/model", description="Select a model.", hint="/model <id>")
async def _handle_model(engine: AgentSessionEngine, _state: ClientState, argument: str) -> bool:
    if not argument:
        display.print_info("Usage: /model <id> (use /models to list available models)")
        return True
    selection = argument.split()[0]
    if await engine.select_model(selection):
        display.print_info(f"[model set to {selection}]")
    else:
        display.print_info(f"[failed to set model {selection}]", style="red")
    return True


@register_slash_command("/thinking", description="Toggle display of agent thought chunks.", hint="/thinking on|off")
def _handle_thinking(_engine: AgentSessionEngine, state: ClientState, argument: str) -> bool:
    if argument not in ("on", "off"):
        display.print_info("Usage: /thinking on|off")
        return True
    state.show_thinking = argument == "on"
    display.print_info("Thinking output enabled." if state.show_thinking else "Thinking output disabled.")
    return True


@register_slash_command("/context",description="Show attached context.", hint="/context")
def _handle_context(engine: AgentSessionEngine, _state: ClientState, _argument: str) -> bool:
    for item in engine.context.items:
        size = f" ({item.size_hint} bytes)" if item.size_hint is not None else ""
        display.print_info(f"{item.id:<8} {item.type:<9} {item.path}{size}")
    if not engine.context.items:
        display.print_info("[no context attached]")
    return True


@register_slash_command("/add", description="Attach a file, or a diff with --diff.", hint="/add [--diff] <path>")
def _handle_add(engine: AgentSessionEngine, _state: ClientState, argument: str) -> bool:
    is_diff = argument.startswith("--diff")
    path = argument.removeprefix("--diff").strip()
    if not path:
        display.print_info("Usage: /add [--diff] <path>")
        return True
    item = engine.context.add(path, type="git_diff" if is_diff else "file")
    display.print_info(f"[attached {item.type} {item.path}]")
    return True


@register_slash_command("/drop", description="Detach a context item.", hint="/drop <id|path>")
def _handle_drop(engine: AgentSessionEngine, _state: ClientState, argument: str) -> bool:
    if argument == "all":
        engine.context.clear()
        display.print_info("[context cleared]")
    elif not engine.context.remove(argument):
        display.print_info(f"[no context item {argument}]")
    return True


@register_slash_command("/allow", description="Allow the pending permission request.", hint="/allow [n|id]")
async def _handle_allow(engine: AgentSessionEngine, _state: ClientState, argument: str) -> bool:
    request = engine.permissions.pending
    if request is None:
        display.print_info("[no pending permission request]")
        return True
    option_id = argument or None
    if argument.isdigit() and 1 <= int(argument) <= len(request.options):
        option_id = request.options[int(argument) - 1].option_id
    if option_id is None:
        await engine.permissions.allow()
    else:
        await engine.resolve_permission("selected", option_id)
    display.print_info("[permission granted]", style="green")
    return True


@register_slash_command("/deny", description="Reject the pending permission request.", hint="/deny")
async def _handle_deny(engine: AgentSessionEngine, _state: ClientState, _argument: str) -> bool:
    if engine.permissions.pending is None:
        display.print_info("[no pending permission request]")
        return True
    await engine.resolve_permission("cancelled")
    display.print_info("[permission denied]", style="yellow")
    return True


@register_slash_command("/cancel", description="Cancel the running prompt.", hint="/cancel")
async def _handle_cancel(engine: AgentSessionEngine, _state: ClientState, _argument: str) -> bool:
    await engine.cancel()
    display.print_info("[cancelled]")
    return True


@register_slash_command("/exit", description="Exit the client.", hint="/exit")
@register_slash_command("/quit", description="Exit the client.", hint="/quit")
def _handle_exit(_engine: AgentSessionEngine, _state: ClientState, _argument: str) -> bool:
    display.print_info("[exiting]")
    raise SystemExit(0)


async def handle_slash_command(line: str, engine: AgentSessionEngine, state: ClientState) -> bool:
    """Dispatch client-side slash commands, returning True if handled."""
    trimmed = line.strip()
    if not trimmed.startswith("/"):
        return False

    parts = trimmed.split(maxsplit=1)
    command = parts[0] if parts else ""
    argument = parts[1].strip() if len(parts) > 1 else ""

    entry = SLASH_HANDLERS.get(command)
    if entry is None:
        return False

    try:
        result = entry.handler(engine, state, argument)
        if asyncio.iscoroutine(result):
            return bool(await result)
        return bool(result)
    except SystemExit:
        raise
    except EngineError as exc:
        logger.error("Slash command failed (%s): %s", command, exc)
        display.print_info(f"[{command} failed: {exc}]", style="red")
        return True
