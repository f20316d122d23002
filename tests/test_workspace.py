from __future__ import annotations

import pytest

from tether.engine.errors import RequestValidationError
from tether.engine.rpc import RpcCorrelator
from tether.engine.workspace import ChannelFileSystem, ChannelGit, TerminalOps, flatten_tree

TREE = {
    "path": "/w",
    "type": "directory",
    "children": [
        {"name": "src", "path": "/w/src", "type": "directory", "children": [{"name": "a.py", "path": "/w/src/a.py", "type": "file", "size": 12}]},
        {"name": "README.md", "path": "/w/README.md", "type": "file"},
        {"name": "broken"},
    ],
}


def test_flatten_tree_is_depth_first() -> None:
    nodes = flatten_tree(TREE)

    assert [(n.kind, n.label, n.path) for n in nodes] == [
        ("directory", "src/", "/w/src"),
        ("file", "a.py", "/w/src/a.py"),
        ("file", "README.md", "/w/README.md"),
    ]
    assert nodes[1].key == "file:/w/src/a.py"
    assert nodes[1].size == 12
    assert flatten_tree(None) == []


@pytest.mark.asyncio
async def test_tree_request_shape(channel) -> None:
    channel.script("tree", {"result": TREE})
    fs = ChannelFileSystem(RpcCorrelator(channel))

    nodes = await fs.tree("/w", depth=2)

    assert len(nodes) == 3
    (msg,) = channel.sent
    assert msg["type"] == "fileSystem"
    assert msg["id"].startswith("fileSystem_")
    assert msg["payload"] == {"fileSystemData": {"operation": "tree", "path": "/w", "options": {"depth": 2}}}


@pytest.mark.asyncio
async def test_open_returns_text_only_for_utf8(channel) -> None:
    channel.script(
        "open",
        {"result": {"content": "hello", "encoding": "utf8", "size": 5}},
        {"result": {"content": "aGVsbG8=", "encoding": "base64", "size": 5}},
    )
    fs = ChannelFileSystem(RpcCorrelator(channel))

    text_file = await fs.open("/w/a.txt")
    binary_file = await fs.open("/w/a.png")

    assert (text_file.text, text_file.size) == ("hello", 5)
    assert (binary_file.text, binary_file.size) == (None, 5)


@pytest.mark.asyncio
async def test_changed_files_are_deduplicated(channel) -> None:
    channel.script(
        "status",
        {
            "result": {
                "gitData": {
                    "result": {
                        "status": {
                            "staged": ["a.py"],
                            "unstaged": ["a.py", "b.py"],
                            "untracked": ["c.md"],
                            "conflicted": [],
                        }
                    }
                }
            }
        },
    )
    git = ChannelGit(RpcCorrelator(channel))

    assert await git.changed_files() == ["a.py", "b.py", "c.md"]
    assert channel.sent[0]["type"] == "git"
    assert channel.sent[0]["payload"] == {"gitData": {"operation": "status", "options": {}}}


@pytest.mark.asyncio
async def test_diff_accepts_text_or_object(channel) -> None:
    channel.script("diff", {"result": {"gitData": {"result": "--- a"}}}, {"result": {"diff": "--- b"}}, {"result": {}})
    git = ChannelGit(RpcCorrelator(channel))

    assert await git.diff("a.py") == "--- a"
    assert await git.diff("b.py") == "--- b"
    assert await git.diff("c.py") is None


@pytest.mark.asyncio
async def test_terminal_lifecycle(channel) -> None:
    channel.script("terminal.create", {"result": {"terminalId": "term-1"}})
    channel.script("terminal.output", {"result": {"output": "ok\n", "truncated": False, "exitStatus": {"exitCode": 0}}})
    channel.script("terminal.release", {"result": {}})
    terminals = TerminalOps(RpcCorrelator(channel))

    terminal_id = await terminals.create("claude", "ls", args=["-la"], env={"LANG": "C"})
    snapshot = await terminals.output("claude", terminal_id)
    await terminals.release("claude", terminal_id)

    assert terminal_id == "term-1"
    assert channel.sent[0]["payload"] == {"command": "ls", "args": ["-la"], "env": [{"name": "LANG", "value": "C"}]}
    assert snapshot.output == "ok\n"
    assert snapshot.exit_code == 0


@pytest.mark.asyncio
async def test_terminal_calls_are_validated_before_sending(channel) -> None:
    terminals = TerminalOps(RpcCorrelator(channel))

    with pytest.raises(RequestValidationError):
        await terminals.output("claude", None)
    with pytest.raises(RequestValidationError):
        await terminals.kill("claude", "")
    with pytest.raises(RequestValidationError):
        await terminals.create("claude", "  ")
    with pytest.raises(RequestValidationError):
        await terminals.apply_diff("claude", "", "new")

    assert channel.sent == []


@pytest.mark.asyncio
async def test_apply_diff_payload(channel) -> None:
    channel.script("diff.apply", {"result": {"ok": True}})
    terminals = TerminalOps(RpcCorrelator(channel))

    await terminals.apply_diff("claude", "/w/a.py", "x = 2\n", old_text="x = 1\n")

    assert channel.sent[0]["payload"] == {"path": "/w/a.py", "newText": "x = 2\n", "oldText": "x = 1\n"}
