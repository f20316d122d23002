from __future__ import annotations

import pytest

from tether.engine import content as c
from tether.engine.normalizer import normalize_content, normalize_modes, normalize_update

RAW_UPDATES = [
    {"sessionUpdate": "agent_message_chunk", "content": {"type": "text", "text": "hello"}},
    {"type": "user_message_chunk", "content": [{"type": "content", "content": {"type": "text", "text": "hi"}}]},
    {"updateType": "agent_thought_chunk", "content": "thinking"},
    {
        "sessionUpdate": "tool_call",
        "toolCallId": "t1",
        "title": "Read file",
        "kind": "read",
        "status": "pending",
        "rawInput": {"path": "a.py"},
        "content": [{"type": "content", "content": {"type": "text", "text": "x"}}],
    },
    {"sessionUpdate": "tool_call_update", "toolCall": {"id": "t1", "status": "completed"}},
    {"sessionUpdate": "plan", "entries": [{"content": "step one", "status": "pending"}]},
    {"sessionUpdate": "available_commands_update", "availableCommands": [{"name": "init", "description": "d"}]},
    {"sessionUpdate": "current_mode_update", "currentModeId": "plan"},
    {"type": "mode_updated", "modeId": "default"},
    {"type": "terminal_output", "terminalId": "term-1", "stream": "stdout", "chunk": "ok\n"},
    {"type": "something_new", "text": "visible"},
]


@pytest.mark.parametrize("raw", RAW_UPDATES)
def test_normalizing_canonical_update_is_noop(raw) -> None:
    once = normalize_update(raw)
    assert normalize_update(once) is once
    assert normalize_update(once.to_wire()) == once


def test_type_field_precedence() -> None:
    update = normalize_update({"type": "agent_message_chunk", "sessionUpdate": "user_message_chunk", "content": "x"})
    assert isinstance(update, c.AgentMessageChunk)


def test_single_content_object_is_wrapped_and_unwrapped() -> None:
    update = normalize_update(
        {"sessionUpdate": "agent_message_chunk", "content": {"type": "content", "content": {"type": "text", "text": "hi"}}}
    )
    assert update.content == [c.TextBlock(text="hi")]


def test_flat_tool_call_is_nested() -> None:
    update = normalize_update(RAW_UPDATES[3])
    assert isinstance(update, c.ToolCall)
    assert update.tool_call.id == "t1"
    assert update.tool_call.name == "Read file"
    assert update.tool_call.raw_input == {"path": "a.py"}
    assert update.tool_call.content == [c.TextBlock(text="x")]


def test_tool_call_name_falls_back_to_kind() -> None:
    update = normalize_update({"sessionUpdate": "tool_call", "id": "t2", "kind": "execute"})
    assert update.tool_call.name == "execute"
    assert update.tool_call.id == "t2"


def test_placeholder_text_blocks_are_dropped() -> None:
    blocks = normalize_content(["", "   ", "(no content)", {"type": "text", "text": "(No Content)"}, "real"])
    assert blocks == [c.TextBlock(text="real")]


def test_invalid_blocks_are_dropped() -> None:
    blocks = normalize_content([{"type": "image"}, {"type": "mystery", "x": 1}, 42, {"type": "text", "text": "ok"}])
    assert [type(block) for block in blocks] == [c.ImageBlock, c.TextBlock]


def test_diff_and_resource_blocks_survive() -> None:
    blocks = normalize_content(
        [
            {"type": "diff", "path": "a.py", "oldText": "a", "newText": "b"},
            {"type": "resource", "resource": {"uri": "file:///a.py", "text": "print()"}},
            {"type": "resource_link", "uri": "file:///big.bin"},
        ]
    )
    assert blocks[0] == c.DiffBlock(path="a.py", old_text="a", new_text="b")
    assert blocks[1].resource.text == "print()"
    assert blocks[2].uri == "file:///big.bin"


def test_role_tagged_messages_map_to_chunks() -> None:
    assert isinstance(normalize_update({"type": "message", "role": "user", "content": "q"}), c.UserMessageChunk)
    assert isinstance(normalize_update({"type": "message", "role": "assistant", "content": "a"}), c.AgentMessageChunk)
    assert isinstance(normalize_update({"type": "assistant_message", "content": "a"}), c.AgentMessageChunk)
    assert isinstance(normalize_update({"type": "user_message", "content": "q"}), c.UserMessageChunk)


def test_unknown_shapes_degrade_to_unknown() -> None:
    update = normalize_update({"type": "mystery", "content": {"text": "shown"}})
    assert isinstance(update, c.Unknown)
    assert update.raw_type == "mystery"
    assert update.text == "shown"

    quiet = normalize_update({"type": "mystery", "text": "(no content)"})
    assert quiet.text is None

    assert isinstance(normalize_update(["not", "a", "mapping"]), c.Unknown)
    assert isinstance(normalize_update({}), c.Unknown)


def test_numeric_ids_are_kept_as_text() -> None:
    update = normalize_update({"sessionUpdate": "tool_call_update", "toolCallId": 7, "status": "completed"})
    assert isinstance(update, c.ToolCallUpdate)
    assert update.tool_call.id == "7"
    assert update.tool_call.status == "completed"

    output = normalize_update({"type": "terminal_output", "terminalId": 3, "chunk": "x"})
    assert isinstance(output, c.TerminalOutput)
    assert output.terminal_id == "3"


@pytest.mark.parametrize(
    "raw",
    [
        {"sessionUpdate": "tool_call_update", "toolCallId": "t1", "status": 3},
        {"sessionUpdate": "tool_call", "toolCallId": "t1", "locations": {"path": "a.py"}},
        {"type": "terminal_output", "terminalId": "term-1", "stream": 1, "chunk": "x"},
        {"sessionUpdate": "plan", "entries": [{"content": "step", "priority": 2}]},
    ],
)
def test_mistyped_fields_degrade_to_unknown(raw) -> None:
    update = normalize_update(raw)
    assert isinstance(update, c.Unknown)
    assert update.raw_type == (raw.get("sessionUpdate") or raw.get("type"))
    assert update.data == raw


def test_non_list_collections_are_treated_as_empty() -> None:
    assert normalize_update({"sessionUpdate": "plan", "entries": 5}) == c.Plan(entries=[])
    commands = normalize_update({"sessionUpdate": "available_commands_update", "availableCommands": 5})
    assert commands == c.AvailableCommandsUpdate(available_commands=[])


@pytest.mark.parametrize(
    "payload",
    [
        {"current_mode_id": "plan", "available_modes": [{"id": "plan", "name": "Plan"}, {"id": "code"}]},
        {"currentModeId": "plan", "availableModes": [{"id": "plan", "name": "Plan"}, {"id": "code"}]},
        {"currentMode": {"id": "plan"}, "modes": [{"id": "plan", "name": "Plan"}, {"id": "code"}]},
    ],
)
def test_mode_spellings_normalize_to_one_shape(payload) -> None:
    current, modes = normalize_modes(payload)
    assert current == "plan"
    assert [(mode["id"], mode["name"]) for mode in modes] == [("plan", "Plan"), ("code", "code")]


def test_missing_modes_payload() -> None:
    assert normalize_modes(None) == (None, [])
