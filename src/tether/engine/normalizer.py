"""Map heterogeneous agent update payloads onto the canonical update models.

Agents disagree on where fields live: the update tag may be ``type``,
``sessionUpdate`` or ``updateType``; content may be a list, a single object,
or wrapped as ``{"type": "content", "content": ...}``; tool-call fields may be
nested under ``tool_call`` or sit at the top level. ``normalize_update`` folds
all of those into one shape and never raises on odd input.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from pydantic import TypeAdapter, ValidationError

from tether.engine import content as c
from tether.log_utils import log_event

logger = logging.getLogger(__name__)

_BLOCKS: TypeAdapter[Any] = TypeAdapter(c.ContentBlock)

_CANONICAL_TYPES = (
    c.UserMessageChunk,
    c.AgentMessageChunk,
    c.AgentThoughtChunk,
    c.ToolCall,
    c.ToolCallUpdate,
    c.Plan,
    c.AvailableCommandsUpdate,
    c.ModeUpdate,
    c.CurrentModeUpdate,
    c.TerminalOutput,
    c.Unknown,
)

_BLOCK_TYPES = (
    c.TextBlock,
    c.ImageBlock,
    c.AudioBlock,
    c.ResourceLinkBlock,
    c.ResourceBlock,
    c.DiffBlock,
    c.TerminalBlock,
)

_CHUNK_TYPES: dict[str, type[Any]] = {
    "user_message_chunk": c.UserMessageChunk,
    "user_message": c.UserMessageChunk,
    "agent_message_chunk": c.AgentMessageChunk,
    "agent_message": c.AgentMessageChunk,
    "assistant_message": c.AgentMessageChunk,
    "agent_thought_chunk": c.AgentThoughtChunk,
}


def first_present(source: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = source.get(key)
        if value not in (None, ""):
            return value
    return None


def update_type(raw: Mapping[str, Any]) -> str | None:
    value = first_present(raw, "type", "sessionUpdate", "updateType")
    return str(value) if value is not None else None


def _as_id(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    return str(value) if isinstance(value, (str, int)) else None


def unwrap_content(item: Any) -> Any:
    if isinstance(item, Mapping) and item.get("type") == "content" and item.get("content"):
        return item["content"]
    return item


def normalize_block(item: Any) -> Any | None:
    """Return a canonical content block, or None if the item is not one."""
    item = unwrap_content(item)
    if isinstance(item, _BLOCK_TYPES):
        return item
    if isinstance(item, str):
        return c.TextBlock(text=item)
    if not isinstance(item, Mapping):
        return None
    try:
        return _BLOCKS.validate_python(dict(item))
    except ValidationError as exc:
        log_event(
            logger,
            "normalizer.block_dropped",
            level=logging.DEBUG,
            block_type=item.get("type"),
            errors=exc.error_count(),
        )
        return None


def normalize_content(value: Any) -> list[Any]:
    """Canonical block list for a ``content`` field; placeholder text blocks are dropped."""
    if value is None:
        return []
    items: Iterable[Any] = value if isinstance(value, (list, tuple)) else [value]
    blocks = [normalize_block(item) for item in items]
    return [block for block in blocks if block is not None and c.is_meaningful_block(block)]


def _tool_call(raw: Mapping[str, Any]) -> c.ToolCallPayload:
    nested = first_present(raw, "tool_call", "toolCall")
    tc: Mapping[str, Any] = nested if isinstance(nested, Mapping) else {}
    if isinstance(tc.get("content"), (list, tuple)):
        blocks = normalize_content(tc["content"])
    else:
        blocks = normalize_content(raw.get("content"))
    return c.ToolCallPayload(
        id=_as_id(first_present(tc, "id", "toolCallId") or first_present(raw, "toolCallId", "tool_call_id", "id")),
        status=first_present(tc, "status") or first_present(raw, "status"),
        name=(
            first_present(tc, "name", "title")
            or first_present(raw, "title", "name")
            or first_present(tc, "kind")
            or first_present(raw, "kind")
        ),
        kind=first_present(tc, "kind") or first_present(raw, "kind"),
        raw_input=first_present(tc, "rawInput", "raw_input") or first_present(raw, "rawInput", "raw_input"),
        locations=first_present(tc, "locations") or first_present(raw, "locations"),
        content=blocks,
    )


def _plan(raw: Mapping[str, Any]) -> c.Plan:
    entries = raw.get("entries")
    if entries is None and isinstance(raw.get("plan"), Mapping):
        entries = raw["plan"].get("entries")
    parsed: list[c.PlanEntry] = []
    for entry in entries if isinstance(entries, (list, tuple)) else []:
        if isinstance(entry, str):
            parsed.append(c.PlanEntry(content=entry))
            continue
        if not isinstance(entry, Mapping):
            continue
        name = first_present(entry, "content", "title", "name", "text")
        if name is None:
            continue
        parsed.append(
            c.PlanEntry(content=str(name), status=entry.get("status"), priority=entry.get("priority"))
        )
    return c.Plan(entries=parsed)


def _commands(raw: Mapping[str, Any]) -> c.AvailableCommandsUpdate:
    commands = first_present(raw, "availableCommands", "available_commands", "commands")
    parsed: list[c.AvailableCommand] = []
    for cmd in commands if isinstance(commands, (list, tuple)) else []:
        if isinstance(cmd, str):
            parsed.append(c.AvailableCommand(name=cmd))
        elif isinstance(cmd, Mapping) and cmd.get("name"):
            parsed.append(c.AvailableCommand(name=str(cmd["name"]), description=cmd.get("description")))
    return c.AvailableCommandsUpdate(available_commands=parsed)


def current_mode_id(raw: Mapping[str, Any]) -> str | None:
    value = first_present(raw, "current_mode_id", "currentModeId", "modeId", "mode_id")
    if value is None and isinstance(raw.get("currentMode"), Mapping):
        value = raw["currentMode"].get("id")
    return str(value) if value is not None else None


def _meaningful_text(raw: Mapping[str, Any]) -> str | None:
    candidates: list[Any] = [raw.get("text")]
    body = raw.get("content")
    if isinstance(body, Mapping):
        candidates.append(body.get("text"))
    for value in candidates:
        if isinstance(value, str) and c.is_meaningful_block(c.TextBlock(text=value)):
            return value
    return None


def normalize_update(raw: Any) -> c.CanonicalUpdate:
    """Return the canonical form of ``raw``; canonical input is returned as is."""
    if isinstance(raw, _CANONICAL_TYPES):
        return raw
    if not isinstance(raw, Mapping):
        return c.Unknown(raw_type=None, data={"value": raw})

    kind = update_type(raw)
    try:
        return _classify(kind, raw)
    except ValidationError as exc:
        log_event(logger, "normalizer.update_degraded", level=logging.DEBUG, update_type=kind, errors=exc.error_count())
        return c.Unknown(raw_type=kind, text=_meaningful_text(raw), data=dict(raw))


def _classify(kind: str | None, raw: Mapping[str, Any]) -> c.CanonicalUpdate:
    if kind == "message":
        role = str(first_present(raw, "role") or "").lower()
        message = raw.get("message") if isinstance(raw.get("message"), Mapping) else {}
        role = role or str(message.get("role") or "").lower()
        body = raw.get("content", message.get("content"))
        cls = c.UserMessageChunk if role == "user" else c.AgentMessageChunk
        return cls(content=normalize_content(body))
    if kind in _CHUNK_TYPES:
        return _CHUNK_TYPES[kind](content=normalize_content(raw.get("content")))
    if kind == "tool_call":
        return c.ToolCall(tool_call=_tool_call(raw))
    if kind == "tool_call_update":
        return c.ToolCallUpdate(tool_call=_tool_call(raw))
    if kind == "plan":
        return _plan(raw)
    if kind == "available_commands_update":
        return _commands(raw)
    if kind == "mode_updated":
        value = first_present(raw, "modeId", "mode_id")
        return c.ModeUpdate(mode_id=str(value) if value is not None else None)
    if kind == "current_mode_update":
        return c.CurrentModeUpdate(current_mode_id=current_mode_id(raw))
    if kind == "terminal_output":
        chunk = first_present(raw, "chunk", "output")
        return c.TerminalOutput(
            terminal_id=_as_id(first_present(raw, "terminalId", "terminal_id")),
            stream=raw.get("stream"),
            chunk=str(chunk) if chunk is not None else "",
        )
    if kind == "unknown":
        data = raw.get("data")
        return c.Unknown(
            raw_type=first_present(raw, "rawType", "raw_type"),
            text=raw.get("text"),
            data=dict(data) if isinstance(data, Mapping) else {},
        )
    return c.Unknown(raw_type=kind, text=_meaningful_text(raw), data=dict(raw))


def normalize_modes(payload: Any) -> tuple[str | None, list[dict[str, Any]]]:
    """Return ``(current_mode_id, available_modes)`` from any agent's spelling of a modes payload."""
    if not isinstance(payload, Mapping):
        return None, []
    current = current_mode_id(payload)
    modes = first_present(payload, "available_modes", "availableModes", "modes") or []
    available: list[dict[str, Any]] = []
    for mode in modes if isinstance(modes, list) else []:
        if isinstance(mode, str):
            available.append({"id": mode, "name": mode})
        elif isinstance(mode, Mapping) and mode.get("id"):
            available.append(
                {
                    "id": str(mode["id"]),
                    "name": str(mode.get("name") or mode["id"]),
                    "description": mode.get("description"),
                }
            )
    return current, available
