"""Rich rendering of transcript entries, notices and permission prompts."""

from __future__ import annotations

import difflib
from io import StringIO
from threading import Lock
from typing import Any

from prompt_toolkit.formatted_text import ANSI  # type: ignore
from prompt_toolkit.shortcuts import print_formatted_text  # type: ignore
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from tether.engine import content as c
from tether.engine.permissions import PermissionRequest
from tether.engine.recovery import Notice
from tether.engine.transcript import ChatMessage

_render_buffer = StringIO()
_render_console = Console(
    file=_render_buffer,
    force_terminal=True,
    color_system="standard",
    markup=False,
    highlight=False,
)
_render_lock = Lock()

_TOOL_STYLES = {"completed": "green", "in_progress": "yellow", "pending": "yellow", "failed": "red"}


def render_to_ansi(*renderables: Any, end: str = "\n") -> str:
    with _render_lock:
        _render_buffer.seek(0)
        _render_buffer.truncate(0)
        _render_console.print(*renderables, end=end)
        return _render_buffer.getvalue()


def _render_and_print(*renderables: Any, end: str = "\n") -> None:
    output = render_to_ansi(*renderables, end=end)
    if output:
        print_formatted_text(ANSI(output), end="")


def diff_text(block: c.DiffBlock) -> str:
    lines = difflib.unified_diff(
        (block.old_text or "").splitlines(),
        block.new_text.splitlines(),
        fromfile=block.path or "before",
        tofile=block.path or "after",
        lineterm="",
    )
    return "\n".join(lines) or f"No changes for {block.path or '<file>'}"


def part_renderable(part: Any, style: str | None = None) -> Any:
    if isinstance(part, c.TextBlock):
        if "\x1b" in part.text:
            return Text.from_ansi(part.text)
        return Text(part.text, style=style or "")
    if isinstance(part, c.DiffBlock):
        return Syntax(diff_text(part), "diff", theme="ansi_dark", line_numbers=False)
    if isinstance(part, c.ResourceBlock):
        return Text(f"[resource {part.resource.uri}]", style="cyan")
    if isinstance(part, c.ResourceLinkBlock):
        return Text(f"[link {part.uri}]", style="cyan")
    if isinstance(part, (c.ImageBlock, c.AudioBlock)):
        return Text(f"[{part.type} {part.mime_type or ''}]".replace(" ]", "]"), style="cyan")
    if isinstance(part, c.TerminalBlock):
        return Text(f"[terminal {part.terminal_id}]", style="cyan")
    return Text(str(part))


def message_renderables(message: ChatMessage, *, show_thinking: bool = True) -> list[Any]:
    """Renderables for one transcript entry; empty when the entry is hidden."""
    if message.role == "user":
        return [part_renderable(part, "bold") for part in message.parts]
    if message.role == "assistant":
        if message.meta.get("thought"):
            return [part_renderable(part, "#aaaaaa") for part in message.parts] if show_thinking else []
        return [part_renderable(part) for part in message.parts]
    if message.role == "tool":
        style = _TOOL_STYLES.get(str(message.meta.get("status") or "pending"), "yellow")
        header, *rest = message.parts or [c.TextBlock(text="[tool]")]
        return [part_renderable(header, style), *(part_renderable(part) for part in rest)]
    if message.meta.get("plan"):
        table = Table(show_header=False, box=None)
        table.add_column("", width=2, style="cyan")
        table.add_column("Item")
        for line in message.text().splitlines():
            table.add_row(Text("•", style="orange1"), line.removeprefix("- "))
        return [table]
    if "mode" in message.meta:
        return [Text(f"[mode -> {message.meta['mode']}]", style="magenta")]
    return [part_renderable(part, "dim") for part in message.parts]


def print_message(message: ChatMessage, *, show_thinking: bool = True) -> None:
    renderables = message_renderables(message, show_thinking=show_thinking)
    if renderables:
        _render_and_print(*renderables)


def print_notice(notice: Notice) -> None:
    style = "red" if notice.level == "error" else "yellow"
    _render_and_print(Text(f"[{notice.title}] {notice.message}", style=style))


def print_permission(request: PermissionRequest) -> None:
    _render_and_print(Text(f"[permission] {request.title or request.request_id}", style="bold yellow"))
    for idx, option in enumerate(request.options, start=1):
        _render_and_print(Text(f"  {idx}) {option.name} ({option.option_id})"))
    _render_and_print(Text("  /allow [n|id] or /deny", style="dim"))


def print_info(text: str, *, style: str | None = None) -> None:
    _render_and_print(Text(text, style=style or ""))
