"""Interactive REPL loop for the terminal client."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Iterable

from prompt_toolkit import PromptSession  # type: ignore
from prompt_toolkit.completion import Completer, Completion  # type: ignore
from prompt_toolkit.document import Document  # type: ignore
from prompt_toolkit.history import FileHistory  # type: ignore
from prompt_toolkit.key_binding import KeyBindings  # type: ignore
from prompt_toolkit.patch_stdout import patch_stdout  # type: ignore

from tether.client import display
from tether.client.slash import SLASH_HANDLERS, handle_slash_command
from tether.client.state import ClientState
from tether.engine.context import ContextResolver, detect_mention
from tether.engine.engine import AgentSessionEngine
from tether.engine.errors import EngineError
from tether.paths import history_file

logger = logging.getLogger(__name__)

CANCEL_TOKEN = "__CANCEL__"


class MentionCompleter(Completer):
    """Completes ``@query`` from the resolver's candidate pool and ``/cmd`` from the slash registry."""

    def __init__(self, resolver: ContextResolver) -> None:
        self._resolver = resolver

    def get_completions(self, document: Document, complete_event) -> Iterable[Completion]:  # type: ignore[override]
        text = document.text_before_cursor
        if text.startswith("/") and " " not in text:
            for name, entry in SLASH_HANDLERS.items():
                if name.startswith(text):
                    yield Completion(name, start_position=-len(text), display_meta=entry.description)
            return
        mention = detect_mention(text)
        if mention is None:
            return
        for candidate in self._resolver.suggest(text):
            yield Completion(
                f"@{candidate.label} ",
                start_position=mention.start - mention.end,
                display=candidate.label,
                display_meta=candidate.path,
            )


async def _run_prompt(engine: AgentSessionEngine, line: str) -> None:
    engine.context.attach_mentions(line)
    try:
        result = await engine.prompt(line)
    except EngineError as exc:
        # Already surfaced through the notice listener.
        logger.info("Prompt failed: %s", exc)
        return
    stop = result.get("stopReason") if isinstance(result, dict) else None
    if stop and stop != "end_turn":
        display.print_info(f"[stop: {stop}]", style="dim")


async def interactive_loop(engine: AgentSessionEngine, state: ClientState) -> None:
    """Read lines until EOF; prompts run in the background so Esc can cancel them."""
    kb = KeyBindings()

    @kb.add("escape")
    def _(event):  # type: ignore
        if not event.app.is_done:
            event.app.exit(result=CANCEL_TOKEN)

    session: PromptSession = PromptSession(
        key_bindings=kb,
        completer=MentionCompleter(engine.context),
        history=FileHistory(str(history_file())),
    )

    with patch_stdout():
        while True:
            try:
                line = await session.prompt_async(f"{engine.agent_id}> ")
            except EOFError:
                break
            except KeyboardInterrupt:
                print("", file=sys.stderr)
                continue

            if line == CANCEL_TOKEN:
                if state.prompting:
                    try:
                        await engine.cancel()
                    except EngineError as exc:
                        logger.warning("Cancel failed: %s", exc)
                    display.print_info("[cancelled]")
                continue

            line = line.strip()
            if not line:
                continue

            if line.startswith("/") and await handle_slash_command(line, engine, state):
                continue

            if state.prompting:
                display.print_info("[a prompt is already running; Esc to cancel]", style="yellow")
                continue
            state.prompt_task = asyncio.create_task(_run_prompt(engine, line))

    if state.prompt_task is not None and not state.prompt_task.done():
        state.prompt_task.cancel()
