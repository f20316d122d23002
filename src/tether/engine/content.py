"""Canonical content blocks and session updates.

Everything downstream of the normalizer works with these models only. Field
names are snake_case in Python and camelCase on the wire, so ``to_wire()``
output can be fed back through the normalizer unchanged.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CanonicalModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# Content blocks


class TextBlock(CanonicalModel):
    type: Literal["text"] = "text"
    text: str


class ImageBlock(CanonicalModel):
    type: Literal["image"] = "image"
    data: str | None = None
    mime_type: str | None = None
    uri: str | None = None


class AudioBlock(CanonicalModel):
    type: Literal["audio"] = "audio"
    data: str | None = None
    mime_type: str | None = None


class ResourceLinkBlock(CanonicalModel):
    type: Literal["resource_link"] = "resource_link"
    uri: str
    name: str | None = None
    mime_type: str | None = None
    size: int | None = None


class EmbeddedResource(CanonicalModel):
    uri: str
    text: str | None = None
    blob: str | None = None
    mime_type: str | None = None


class ResourceBlock(CanonicalModel):
    type: Literal["resource"] = "resource"
    resource: EmbeddedResource


class DiffBlock(CanonicalModel):
    type: Literal["diff"] = "diff"
    path: str
    old_text: str | None = None
    new_text: str = ""


class TerminalBlock(CanonicalModel):
    type: Literal["terminal"] = "terminal"
    terminal_id: str


ContentBlock = Annotated[
    Union[TextBlock, ImageBlock, AudioBlock, ResourceLinkBlock, ResourceBlock, DiffBlock, TerminalBlock],
    Field(discriminator="type"),
]


# Session updates


class ToolCallPayload(CanonicalModel):
    id: str | None = None
    status: str | None = None
    name: str | None = None
    kind: str | None = None
    raw_input: Any = None
    locations: list[Any] | None = None
    content: list[ContentBlock] = Field(default_factory=list)


class UserMessageChunk(CanonicalModel):
    type: Literal["user_message_chunk"] = "user_message_chunk"
    content: list[ContentBlock] = Field(default_factory=list)


class AgentMessageChunk(CanonicalModel):
    type: Literal["agent_message_chunk"] = "agent_message_chunk"
    content: list[ContentBlock] = Field(default_factory=list)


class AgentThoughtChunk(CanonicalModel):
    type: Literal["agent_thought_chunk"] = "agent_thought_chunk"
    content: list[ContentBlock] = Field(default_factory=list)


class ToolCall(CanonicalModel):
    type: Literal["tool_call"] = "tool_call"
    tool_call: ToolCallPayload


class ToolCallUpdate(CanonicalModel):
    type: Literal["tool_call_update"] = "tool_call_update"
    tool_call: ToolCallPayload


class PlanEntry(CanonicalModel):
    content: str
    status: str | None = None
    priority: str | None = None


class Plan(CanonicalModel):
    type: Literal["plan"] = "plan"
    entries: list[PlanEntry] = Field(default_factory=list)


class AvailableCommand(CanonicalModel):
    name: str
    description: str | None = None


class AvailableCommandsUpdate(CanonicalModel):
    type: Literal["available_commands_update"] = "available_commands_update"
    available_commands: list[AvailableCommand] = Field(default_factory=list)


class ModeUpdate(CanonicalModel):
    type: Literal["mode_updated"] = "mode_updated"
    mode_id: str | None = None


class CurrentModeUpdate(CanonicalModel):
    type: Literal["current_mode_update"] = "current_mode_update"
    current_mode_id: str | None = None


class TerminalOutput(CanonicalModel):
    type: Literal["terminal_output"] = "terminal_output"
    terminal_id: str | None = None
    stream: str | None = None
    chunk: str = ""


class Unknown(CanonicalModel):
    """Anything the normalizer could not classify; ``raw_type`` keeps the wire tag."""

    type: Literal["unknown"] = "unknown"
    raw_type: str | None = None
    text: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


CanonicalUpdate = Union[
    UserMessageChunk,
    AgentMessageChunk,
    AgentThoughtChunk,
    ToolCall,
    ToolCallUpdate,
    Plan,
    AvailableCommandsUpdate,
    ModeUpdate,
    CurrentModeUpdate,
    TerminalOutput,
    Unknown,
]


def block_text(block: Any) -> str | None:
    return block.text if isinstance(block, TextBlock) else None


def is_meaningful_block(block: Any) -> bool:
    """Whitespace-only text and the ``(no content)`` placeholder carry nothing worth showing."""
    text = block_text(block)
    if text is None:
        return True
    stripped = text.strip()
    return bool(stripped) and stripped.lower() != "(no content)"
