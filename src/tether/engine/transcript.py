"""Append-only chat transcript built from canonical updates."""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Literal, Mapping, Sequence

from tether.engine import content as c
from tether.engine.tool_calls import ToolCallTracker, render_header
from tether.log_utils import log_event, log_updates_enabled

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant", "system", "tool"]


@dataclass(frozen=True)
class ChatMessage:
    id: str
    role: Role
    parts: tuple[Any, ...]
    meta: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    timestamp: float = field(default_factory=time.time)

    def text(self) -> str:
        return "".join(part.text for part in self.parts if isinstance(part, c.TextBlock))


class TranscriptBuilder:
    """Turns each canonical update into zero or more new messages.

    Earlier messages are never touched: a tool-call update appends a new
    ``tool`` message showing the merged record as it stands now.
    """

    def __init__(
        self,
        tracker: ToolCallTracker | None = None,
        *,
        on_mode: Callable[[str], None] | None = None,
    ) -> None:
        self.tracker = tracker or ToolCallTracker()
        self._on_mode = on_mode
        self._messages: list[ChatMessage] = []
        self._seq = itertools.count()

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, role: Role, parts: Sequence[Any], meta: Mapping[str, Any] | None = None) -> ChatMessage:
        now = time.time()
        message = ChatMessage(
            id=f"{int(now * 1000)}-{next(self._seq)}",
            role=role,
            parts=tuple(parts),
            meta=MappingProxyType(dict(meta or {})),
            timestamp=now,
        )
        self._messages.append(message)
        return message

    def apply(self, update: c.CanonicalUpdate) -> list[ChatMessage]:
        if log_updates_enabled():
            log_event(logger, "transcript.update", level=logging.DEBUG, type=update.type)
        added: list[ChatMessage] = []

        def add(role: Role, parts: Sequence[Any], meta: Mapping[str, Any] | None = None) -> None:
            if parts:
                added.append(self.append(role, parts, meta))

        if isinstance(update, c.UserMessageChunk):
            add("user", _visible(update.content))
        elif isinstance(update, c.AgentMessageChunk):
            add("assistant", _visible(update.content))
        elif isinstance(update, c.AgentThoughtChunk):
            add("assistant", _visible(update.content), {"thought": True})
        elif isinstance(update, (c.ToolCall, c.ToolCallUpdate)):
            record = self.tracker.apply(update)
            if record is not None:
                parts = [c.TextBlock(text=render_header(record)), *_visible(record.content)]
                add("tool", parts, {"id": record.id, "status": record.status, "name": record.name, "kind": record.kind})
        elif isinstance(update, c.Plan):
            lines = [f"- {entry.content}" for entry in update.entries if entry.content.strip()]
            if lines:
                add("system", [c.TextBlock(text="\n".join(lines))], {"plan": True})
        elif isinstance(update, c.AvailableCommandsUpdate):
            lines = [
                f"- /{cmd.name}: {cmd.description}" if cmd.description else f"- /{cmd.name}"
                for cmd in update.available_commands
            ]
            if lines:
                add("system", [c.TextBlock(text="\n".join(lines))], {"commands": True})
        elif isinstance(update, (c.ModeUpdate, c.CurrentModeUpdate)):
            mode_id = update.mode_id if isinstance(update, c.ModeUpdate) else update.current_mode_id
            if mode_id:
                if self._on_mode is not None:
                    self._on_mode(mode_id)
                add("system", [c.TextBlock(text=f"Mode changed to {mode_id}")], {"mode": mode_id})
        elif isinstance(update, c.TerminalOutput):
            add("system", _text_parts(update.chunk), {"terminal_id": update.terminal_id, "stream": update.stream})
        elif isinstance(update, c.Unknown):
            add("system", _text_parts(update.text), {"raw_type": update.raw_type})
        return added


def _visible(blocks: Sequence[Any]) -> list[Any]:
    return [block for block in blocks if c.is_meaningful_block(block)]


def _text_parts(text: str | None) -> list[Any]:
    if not text:
        return []
    return _visible([c.TextBlock(text=text)])
