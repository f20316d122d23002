"""Fold streamed tool_call / tool_call_update events into one record per call id."""

from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from tether.engine.content import ContentBlock, ToolCall, ToolCallPayload, ToolCallUpdate
from tether.log_utils import log_event

logger = logging.getLogger(__name__)

_RAW_INPUT_LABELS = (
    ("path", "path"),
    ("abs_path", "abs_path"),
    ("pattern", "pattern"),
    ("glob", "glob"),
    ("output_mode", "output"),
    ("query", "query"),
    ("command", "cmd"),
)


@dataclass
class ToolCallRecord:
    id: str
    status: str = "pending"
    name: str | None = None
    kind: str | None = None
    raw_input: Any = None
    locations: list[Any] = field(default_factory=list)
    content: list[ContentBlock] = field(default_factory=list)

    def snapshot(self) -> "ToolCallRecord":
        return dataclasses.replace(self, locations=list(self.locations), content=list(self.content))


class ToolCallTracker:
    """Merge policy: scalar fields are last-write-wins, content accumulates."""

    def __init__(self) -> None:
        self._records: dict[str, ToolCallRecord] = {}

    def get(self, call_id: str) -> ToolCallRecord | None:
        record = self._records.get(call_id)
        return record.snapshot() if record else None

    def snapshot(self) -> dict[str, ToolCallRecord]:
        return {key: record.snapshot() for key, record in self._records.items()}

    def clear(self) -> None:
        self._records.clear()

    def apply(self, update: ToolCall | ToolCallUpdate) -> ToolCallRecord | None:
        """Apply one canonical event and return a snapshot of the resulting record."""
        payload = update.tool_call
        if not payload.id:
            log_event(logger, "tool_call.missing_id", level=logging.DEBUG, name=payload.name)
            return None
        previous = self._records.get(payload.id)
        if isinstance(update, ToolCall) or previous is None:
            record = ToolCallRecord(id=payload.id)
            # A restated call without a name keeps the one seen earlier.
            if previous is not None:
                record.name, record.kind = previous.name, previous.kind
            self._records[payload.id] = record
            self._merge(record, payload)
        else:
            record = previous
            if payload.status and record.status in {"completed", "failed"} and payload.status != record.status:
                log_event(
                    logger,
                    "tool_call.status_regressed",
                    level=logging.DEBUG,
                    id=record.id,
                    previous=record.status,
                    status=payload.status,
                )
            self._merge(record, payload)
        return record.snapshot()

    @staticmethod
    def _merge(record: ToolCallRecord, payload: ToolCallPayload) -> None:
        if payload.status:
            record.status = payload.status
        if payload.name:
            record.name = payload.name
        if payload.kind:
            record.kind = payload.kind
        if payload.raw_input is not None:
            record.raw_input = payload.raw_input
        if payload.locations is not None:
            record.locations = list(payload.locations)
        record.content.extend(payload.content)


def shorten_tool_name(name: str) -> str:
    """Turn long path-like tool titles into ``./src/...`` or a three-segment tail."""
    text = name.strip()
    if not re.search(r"[\\/]", text):
        return text
    lowered = text.lower()
    idx = lowered.find("\\src\\")
    if idx == -1:
        idx = lowered.find("/src/")
    if idx >= 0:
        return "." + text[idx:]
    sep = "\\" if "\\" in text else "/"
    parts = [part for part in re.split(r"[\\/]+", text) if part]
    return "." + sep + sep.join(parts[-3:])


def render_header(record: ToolCallRecord) -> str:
    """One-line summary of a tool call; recomputed from the record every time."""
    name = shorten_tool_name(record.name) if record.name else "tool"
    bits = [f"[tool {record.status or 'pending'}] {name} ({record.id})"]
    if isinstance(record.raw_input, dict):
        for key, label in _RAW_INPUT_LABELS:
            value = record.raw_input.get(key)
            if value:
                bits.append(f"{label}: {value}")
    if record.locations:
        bits.append(f"{len(record.locations)} location(s)")
    return " • ".join(bits)
