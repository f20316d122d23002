"""Resolve @mentions and attached files into prompt content blocks."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Literal

from acp import text_block
from acp.schema import EmbeddedResourceContentBlock, ResourceContentBlock, TextResourceContents

from tether.config import INLINE_LIMIT_BYTES
from tether.engine.errors import EngineError
from tether.engine.fuzzy import MentionCandidate, fuzzy_search
from tether.engine.workspace import FileSystemService, GitService
from tether.log_utils import log_event

logger = logging.getLogger(__name__)

ContextType = Literal["file", "git_diff"]


@dataclass(frozen=True)
class Mention:
    query: str
    start: int  # index of the "@"
    end: int  # caret


@dataclass(frozen=True)
class ContextItem:
    id: str
    type: ContextType
    path: str
    label: str
    size_hint: int | None = None


def detect_mention(text: str, caret: int | None = None) -> Mention | None:
    """Return the ``@query`` token ending at ``caret``, if the caret sits in one."""
    caret = len(text) if caret is None else max(0, min(caret, len(text)))
    start = caret
    while start > 0 and not text[start - 1].isspace():
        start -= 1
    if start >= len(text) or text[start] != "@":
        return None
    query = text[start + 1 : caret]
    if "@" in query or " " in query:
        return None
    return Mention(query=query, start=start, end=caret)


def file_uri(path: str) -> str:
    return f"file://{path}"


def _dump(block: Any) -> dict[str, Any]:
    return block.model_dump(by_alias=True, exclude_none=True)


def inline_or_link(path: str, label: str, text: str | None, size: int | None, *, mime_type: str = "text/plain") -> dict[str, Any]:
    """Embed ``text`` when it fits in ``INLINE_LIMIT_BYTES``, otherwise emit a resource link."""
    uri = file_uri(path)
    if text is not None:
        size = size if size is not None else len(text.encode("utf-8"))
        if size <= INLINE_LIMIT_BYTES:
            resource = TextResourceContents(text=text, uri=uri, mime_type=mime_type)
            return _dump(EmbeddedResourceContentBlock(resource=resource, type="resource"))
    return _dump(ResourceContentBlock(name=label, uri=uri, size=size, mime_type=mime_type, type="resource_link"))


class ContextResolver:
    """Holds the mention candidate pool and the set of attached context items."""

    def __init__(self, fs: FileSystemService, git: GitService | None = None, *, limit: int = 8) -> None:
        self._fs = fs
        self._git = git
        self._limit = limit
        self._tree: list[MentionCandidate] = []
        self._changed: list[MentionCandidate] = []
        self._items: dict[str, ContextItem] = {}
        self._seq = itertools.count(1)

    @property
    def items(self) -> list[ContextItem]:
        return list(self._items.values())

    async def refresh_candidates(self, root: str) -> list[MentionCandidate]:
        """Reload the file tree and git status; a failing service contributes nothing."""
        try:
            self._tree = await self._fs.tree(root, depth=4)
        except EngineError as exc:
            log_event(logger, "context.tree_failed", level=logging.WARNING, root=root, error=str(exc))
            self._tree = []
        self._changed = []
        if self._git is not None:
            try:
                paths = await self._git.changed_files()
            except EngineError as exc:
                log_event(logger, "context.git_failed", level=logging.WARNING, error=str(exc))
                paths = []
            self._changed = [
                MentionCandidate(key=f"git:{path}", label=path.rstrip("/").split("/")[-1], path=path, kind="git")
                for path in paths
            ]
        return self.candidates()

    def set_candidates(self, tree: list[MentionCandidate], changed: list[MentionCandidate] | None = None) -> None:
        self._tree = list(tree)
        self._changed = list(changed or [])

    def candidates(self) -> list[MentionCandidate]:
        """Tree entries first, then changed files not already listed; one entry per path."""
        seen: dict[str, MentionCandidate] = {}
        for candidate in itertools.chain(self._tree, self._changed):
            seen.setdefault(candidate.path, candidate)
        return list(seen.values())

    def suggest(self, text: str, caret: int | None = None) -> list[MentionCandidate]:
        mention = detect_mention(text, caret)
        if mention is None:
            return []
        return fuzzy_search(mention.query, self.candidates(), self._limit)

    def accept(self, text: str, caret: int | None, candidate: MentionCandidate) -> tuple[str, int]:
        """Replace the mention at ``caret`` with ``@label `` and attach the file.

        Returns the new text and caret position.
        """
        mention = detect_mention(text, caret)
        if mention is None:
            return text, len(text) if caret is None else caret
        replacement = f"@{candidate.label} "
        new_text = text[: mention.start] + replacement + text[mention.end :]
        if candidate.kind != "directory":
            self.add(candidate.path, label=candidate.label, size_hint=candidate.size)
        return new_text, mention.start + len(replacement)

    def attach_mentions(self, text: str) -> list[ContextItem]:
        """Attach every ``@token`` in ``text`` that names a known candidate by label or path."""
        pool = self.candidates()
        attached: list[ContextItem] = []
        for word in text.split():
            if not word.startswith("@") or len(word) < 2:
                continue
            ref = word[1:]
            match = next((cand for cand in pool if ref in (cand.label, cand.path)), None)
            if match is not None and match.kind != "directory":
                attached.append(self.add(match.path, label=match.label, size_hint=match.size))
        return attached

    def add(self, path: str, *, type: ContextType = "file", label: str | None = None, size_hint: int | None = None) -> ContextItem:
        key = f"{type}:{path}"
        existing = self._items.get(key)
        if existing is not None:
            return existing
        item = ContextItem(
            id=f"ctx-{next(self._seq)}",
            type=type,
            path=path,
            label=label or path.rstrip("/").split("/")[-1],
            size_hint=size_hint,
        )
        self._items[key] = item
        return item

    def remove(self, item_id_or_path: str) -> bool:
        for key, item in list(self._items.items()):
            if item_id_or_path in (item.id, item.path):
                del self._items[key]
                return True
        return False

    def clear(self) -> None:
        self._items.clear()

    async def resolve_item(self, item: ContextItem) -> dict[str, Any]:
        if item.type == "git_diff":
            if self._git is None:
                return inline_or_link(item.path, item.label, None, item.size_hint)
            try:
                diff = await self._git.diff(item.path)
            except EngineError as exc:
                log_event(logger, "context.diff_failed", level=logging.WARNING, path=item.path, error=str(exc))
                diff = None
            return inline_or_link(item.path, item.label, diff, None, mime_type="text/x-diff")
        try:
            opened = await self._fs.open(item.path)
        except EngineError as exc:
            log_event(logger, "context.open_failed", level=logging.WARNING, path=item.path, error=str(exc))
            return inline_or_link(item.path, item.label, None, item.size_hint)
        return inline_or_link(item.path, item.label, opened.text, opened.size)

    async def resolve_blocks(self) -> list[dict[str, Any]]:
        return [await self.resolve_item(item) for item in self._items.values()]

    async def build_prompt(self, text: str) -> list[dict[str, Any]]:
        """Prompt blocks for a submission: the typed text followed by every attached item."""
        blocks = [_dump(text_block(text))] if text else []
        blocks.extend(await self.resolve_blocks())
        return blocks
