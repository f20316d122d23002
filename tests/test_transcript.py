from __future__ import annotations

import pytest

from tether.engine.normalizer import normalize_update
from tether.engine.transcript import TranscriptBuilder


def _apply(builder: TranscriptBuilder, raw: dict) -> list:
    return builder.apply(normalize_update(raw))


def test_each_chunk_is_its_own_message() -> None:
    builder = TranscriptBuilder()
    _apply(builder, {"sessionUpdate": "agent_message_chunk", "content": {"type": "text", "text": "Hel"}})
    _apply(builder, {"sessionUpdate": "agent_message_chunk", "content": {"type": "text", "text": "lo"}})
    _apply(builder, {"sessionUpdate": "user_message_chunk", "content": "question"})

    assert [(m.role, m.text()) for m in builder.messages] == [
        ("assistant", "Hel"),
        ("assistant", "lo"),
        ("user", "question"),
    ]


def test_thought_chunks_are_flagged() -> None:
    builder = TranscriptBuilder()
    (message,) = _apply(builder, {"sessionUpdate": "agent_thought_chunk", "content": "hmm"})
    assert message.role == "assistant"
    assert message.meta["thought"] is True


@pytest.mark.parametrize("placeholder", ["", "   ", "(no content)", "(NO CONTENT)"])
def test_placeholder_text_never_reaches_transcript(placeholder) -> None:
    builder = TranscriptBuilder()
    _apply(builder, {"sessionUpdate": "agent_message_chunk", "content": {"type": "text", "text": placeholder}})
    _apply(builder, {"sessionUpdate": "tool_call", "toolCallId": "t1", "content": [{"type": "content", "content": {"type": "text", "text": placeholder}}]})
    _apply(builder, {"type": "mystery", "text": placeholder})

    texts = [part.text for m in builder.messages for part in m.parts if hasattr(part, "text")]
    assert placeholder not in texts
    assert [m.role for m in builder.messages] == ["tool"]


def test_tool_updates_append_without_rewriting_history() -> None:
    builder = TranscriptBuilder()
    (first,) = _apply(builder, {"sessionUpdate": "tool_call", "toolCallId": "t1", "title": "Run", "status": "pending", "content": ["A"]})
    first_parts = first.parts
    (second,) = _apply(builder, {"sessionUpdate": "tool_call_update", "toolCallId": "t1", "status": "completed", "content": ["B"]})

    assert builder.messages[0] is first
    assert first.parts == first_parts
    assert first.meta["status"] == "pending"
    assert second.meta == {"id": "t1", "status": "completed", "name": "Run", "kind": None}
    assert second.parts[0].text == "[tool completed] Run (t1)"
    assert [part.text for part in second.parts[1:]] == ["A", "B"]


def test_meta_is_read_only() -> None:
    builder = TranscriptBuilder()
    (message,) = _apply(builder, {"sessionUpdate": "agent_thought_chunk", "content": "x"})
    with pytest.raises(TypeError):
        message.meta["thought"] = False  # type: ignore[index]


def test_plan_and_commands_render_as_system_lists() -> None:
    builder = TranscriptBuilder()
    (plan,) = _apply(builder, {"sessionUpdate": "plan", "entries": [{"content": "one"}, {"content": "two"}]})
    (commands,) = _apply(
        builder,
        {"sessionUpdate": "available_commands_update", "availableCommands": [{"name": "init", "description": "Set up"}, {"name": "bare"}]},
    )

    assert plan.role == "system" and plan.text() == "- one\n- two"
    assert commands.role == "system" and commands.text() == "- /init: Set up\n- /bare"


def test_mode_updates_notify_and_log() -> None:
    seen: list[str] = []
    builder = TranscriptBuilder(on_mode=seen.append)
    (message,) = _apply(builder, {"sessionUpdate": "current_mode_update", "current_mode_id": "plan"})
    _apply(builder, {"type": "mode_updated", "modeId": "code"})

    assert seen == ["plan", "code"]
    assert message.role == "system"
    assert message.text() == "Mode changed to plan"


def test_unknown_updates_need_meaningful_text() -> None:
    builder = TranscriptBuilder()
    assert _apply(builder, {"type": "usage", "tokens": 5}) == []
    (message,) = _apply(builder, {"type": "notice", "text": "agent restarted"})
    assert message.role == "system"
    assert message.meta["raw_type"] == "notice"
