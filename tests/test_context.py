from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from tether.config import INLINE_LIMIT_BYTES
from tether.engine.context import ContextResolver, detect_mention
from tether.engine.errors import RpcTimeout
from tether.engine.fuzzy import MentionCandidate, fuzzy_search, score
from tether.engine.workspace import OpenedFile


def _candidate(path: str, kind: str = "file") -> MentionCandidate:
    return MentionCandidate(key=f"{kind}:{path}", label=path.rsplit("/", 1)[-1], path=path, kind=kind)


def _resolver(**fs_kwargs) -> ContextResolver:
    fs = AsyncMock()
    for name, value in fs_kwargs.items():
        setattr(fs, name, value)
    git = AsyncMock()
    return ContextResolver(fs, git)


@pytest.mark.parametrize(
    ("text", "caret", "query"),
    [
        ("@read", None, "read"),
        ("look at @src/ma", None, "src/ma"),
        ("line one\n@x", None, "x"),
        ("@", None, ""),
        ("@readme more", 5, "read"),
    ],
)
def test_detect_mention(text, caret, query) -> None:
    mention = detect_mention(text, caret)
    assert mention is not None
    assert mention.query == query
    assert text[mention.start] == "@"


@pytest.mark.parametrize(("text", "caret"), [("plain", None), ("a@b", None), ("@a@b", None), ("@read ", None), ("", None)])
def test_detect_mention_rejects(text, caret) -> None:
    assert detect_mention(text, caret) is None


def test_prefix_match_ranks_first_and_ties_keep_pool_order() -> None:
    pool = [_candidate("readme.md"), _candidate("reader.ts")]
    assert [c.path for c in fuzzy_search("read", pool)] == ["readme.md", "reader.ts"]


def test_earlier_substring_outranks_later_one() -> None:
    pool = [_candidate("thread.py"), _candidate("reader.ts")]
    assert [c.path for c in fuzzy_search("read", pool)] == ["reader.ts", "thread.py"]


def test_in_order_fallback_and_misses() -> None:
    assert score("rdm", "readme.md") > 0
    assert score("rdm", "readme.md") < score("read", "thread.py")
    assert fuzzy_search("zzz", [_candidate("readme.md")]) == []


def test_results_are_capped() -> None:
    pool = [_candidate(f"file{i}.txt") for i in range(20)]
    assert len(fuzzy_search("file", pool)) == 8
    assert len(fuzzy_search("file", pool, limit=3)) == 3


@pytest.mark.asyncio
async def test_candidates_merge_tree_and_git_by_path() -> None:
    resolver = _resolver()
    resolver._fs.tree.return_value = [_candidate("src/a.py"), _candidate("src", "directory")]
    resolver._git.changed_files.return_value = ["src/a.py", "docs/new.md"]

    pool = await resolver.refresh_candidates("/work")

    assert [c.path for c in pool] == ["src/a.py", "src", "docs/new.md"]
    assert pool[0].kind == "file"
    resolver._fs.tree.assert_awaited_once_with("/work", depth=4)


@pytest.mark.asyncio
async def test_failing_services_yield_empty_pool() -> None:
    resolver = _resolver()
    resolver._fs.tree.side_effect = RpcTimeout("tree", 10)
    resolver._git.changed_files.side_effect = RpcTimeout("status", 10)
    assert await resolver.refresh_candidates("/work") == []


def test_accept_replaces_mention_and_attaches_file() -> None:
    resolver = _resolver()
    readme = _candidate("docs/readme.md")
    resolver.set_candidates([readme])

    text, caret = resolver.accept("see @rea", None, readme)

    assert text == "see @readme.md "
    assert caret == len(text)
    assert [(item.type, item.path) for item in resolver.items] == [("file", "docs/readme.md")]


def test_attach_mentions_by_label_or_path() -> None:
    resolver = _resolver()
    resolver.set_candidates([_candidate("docs/readme.md"), _candidate("src/app.py")])

    attached = resolver.attach_mentions("compare @readme.md with @src/app.py and @missing")

    assert [item.path for item in attached] == ["docs/readme.md", "src/app.py"]


def test_items_are_added_once_and_removed_explicitly() -> None:
    resolver = _resolver()
    first = resolver.add("a.py")
    assert resolver.add("a.py") is first
    resolver.add("a.py", type="git_diff")
    assert len(resolver.items) == 2
    assert resolver.remove(first.id) is True
    assert resolver.remove("nope") is False
    assert [item.type for item in resolver.items] == ["git_diff"]


@pytest.mark.asyncio
async def test_file_at_limit_is_inlined() -> None:
    text = "a" * INLINE_LIMIT_BYTES
    resolver = _resolver(open=AsyncMock(return_value=OpenedFile(text=text, size=len(text))))
    resolver.add("/w/exact.txt")

    (block,) = await resolver.resolve_blocks()

    assert INLINE_LIMIT_BYTES == 262144
    assert block["type"] == "resource"
    assert block["resource"]["uri"] == "file:///w/exact.txt"
    assert block["resource"]["text"] == text


@pytest.mark.asyncio
async def test_file_over_limit_is_linked() -> None:
    text = "a" * (INLINE_LIMIT_BYTES + 1)
    resolver = _resolver(open=AsyncMock(return_value=OpenedFile(text=text, size=None)))
    resolver.add("/w/big.txt")

    (block,) = await resolver.resolve_blocks()

    assert block["type"] == "resource_link"
    assert block["uri"] == "file:///w/big.txt"
    assert block["size"] == 262145


@pytest.mark.asyncio
async def test_multibyte_size_counts_bytes() -> None:
    text = "é" * (INLINE_LIMIT_BYTES // 2 + 1)
    resolver = _resolver(open=AsyncMock(return_value=OpenedFile(text=text, size=None)))
    resolver.add("/w/accents.txt")

    (block,) = await resolver.resolve_blocks()

    assert block["type"] == "resource_link"


@pytest.mark.asyncio
async def test_failed_or_binary_fetch_is_linked() -> None:
    resolver = _resolver(open=AsyncMock(side_effect=RpcTimeout("open", 15)))
    resolver.add("/w/slow.txt")
    (block,) = await resolver.resolve_blocks()
    assert block["type"] == "resource_link"

    resolver = _resolver(open=AsyncMock(return_value=OpenedFile(text=None, size=10)))
    resolver.add("/w/image.png")
    (block,) = await resolver.resolve_blocks()
    assert block["type"] == "resource_link"


@pytest.mark.asyncio
async def test_git_diff_items_use_same_policy() -> None:
    resolver = _resolver()
    resolver._git.diff.return_value = "--- a\n+++ b\n"
    resolver.add("src/a.py", type="git_diff")

    (block,) = await resolver.resolve_blocks()

    assert block["type"] == "resource"
    assert block["resource"]["text"] == "--- a\n+++ b\n"
    resolver._git.diff.assert_awaited_once_with("src/a.py")


@pytest.mark.asyncio
async def test_build_prompt_puts_text_first() -> None:
    resolver = _resolver(open=AsyncMock(return_value=OpenedFile(text="x = 1\n", size=6)))
    resolver.add("/w/x.py")

    blocks = await resolver.build_prompt("explain")

    assert blocks[0] == {"type": "text", "text": "explain"}
    assert blocks[1]["type"] == "resource"
