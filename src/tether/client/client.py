"""Terminal client: connect to the bridge, start a session, run the REPL."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

from tether.client import display
from tether.client.repl import interactive_loop
from tether.client.slash import agent_env
from tether.client.state import ClientState
from tether.config import load_config
from tether.engine.channel import WebSocketChannel
from tether.engine.engine import AgentSessionEngine
from tether.engine.errors import AuthRequired, EngineError
from tether.log_utils import build_log_config, configure_logging, log_event

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tether", description="Drive an ACP agent through a WebSocket bridge.")
    parser.add_argument("--url", help="Bridge WebSocket URL (default: $TETHER_WS_URL or ws://127.0.0.1:3900/ws)")
    parser.add_argument("--agent", help="Agent id to connect (default: $TETHER_AGENT or claude)")
    parser.add_argument("--agent-cmd", help="Command line the bridge should spawn for the agent")
    parser.add_argument("--cwd", help="Working directory for the session (default: current directory)")
    parser.add_argument("--no-connect", action="store_true", help="Start without connecting an agent")
    return parser


async def run_client(args: argparse.Namespace) -> int:
    config = load_config()
    if args.url:
        config.ws_url = args.url
    if args.agent:
        config.default_agent = args.agent
    if args.cwd:
        config.cwd = os.path.abspath(args.cwd)

    channel = WebSocketChannel(config.ws_url)
    try:
        await channel.open()
    except EngineError as exc:
        print(f"Cannot reach bridge at {config.ws_url}: {exc}", file=sys.stderr)
        return 1

    engine = AgentSessionEngine(channel, config)
    state = ClientState()
    engine.on_update(lambda messages: [display.print_message(m, show_thinking=state.show_thinking) for m in messages])
    engine.on_notice(lambda notice: display.print_notice(notice) if notice.toast else None)
    engine.permissions.on_change(lambda request: display.print_permission(request) if request else None)

    try:
        if not args.no_connect:
            await _bootstrap(engine, args.agent_cmd)
        await engine.context.refresh_candidates(config.cwd)
        await interactive_loop(engine, state)
        return 0
    except KeyboardInterrupt:
        return 130
    finally:
        engine.close()
        await channel.close()


async def _bootstrap(engine: AgentSessionEngine, agent_cmd: str | None) -> None:
    agent_id = engine.agent_id
    engine.agents.select_agent(agent_id)
    try:
        await engine.connect(agent_id, agent_cmd=agent_cmd, env=agent_env(engine, agent_id))
        await engine.new_session()
    except AuthRequired:
        display.print_info("Use /auth <method> and then /new.", style="yellow")
    except EngineError as exc:
        log_event(logger, "client.bootstrap_failed", level=logging.WARNING, error=str(exc))
        display.print_info("Use /connect to retry.", style="yellow")


async def main(argv: list[str]) -> int:
    args = build_parser().parse_args(argv[1:])
    configure_logging(build_log_config(log_file_name="client.log"))
    return await run_client(args)


def run() -> None:
    try:
        raise SystemExit(asyncio.run(main(sys.argv)))
    except KeyboardInterrupt:
        raise SystemExit(130)
