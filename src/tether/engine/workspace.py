"""Bridge-side services reached over the same channel: files, git, terminals, diffs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from tether.engine.errors import RequestValidationError
from tether.engine.fuzzy import MentionCandidate
from tether.engine.rpc import RpcCorrelator
from tether.log_utils import log_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpenedFile:
    text: str | None
    size: int | None


class FileSystemService(Protocol):
    async def tree(self, path: str, *, depth: int = 4) -> list[MentionCandidate]: ...

    async def open(self, path: str) -> OpenedFile: ...


class GitService(Protocol):
    async def changed_files(self) -> list[str]: ...

    async def diff(self, path: str) -> str | None: ...


def flatten_tree(node: Any) -> list[MentionCandidate]:
    """Depth-first list of every node below ``node``; directories get a trailing ``/`` label."""
    found: list[MentionCandidate] = []
    if not isinstance(node, dict):
        return found
    for child in node.get("children") or []:
        if not isinstance(child, dict) or not child.get("path"):
            continue
        kind = str(child.get("type") or "file")
        name = str(child.get("name") or child["path"].rstrip("/").split("/")[-1])
        found.append(
            MentionCandidate(
                key=f"{kind}:{child['path']}",
                label=f"{name}/" if kind == "directory" else name,
                path=str(child["path"]),
                kind=kind,
                size=child.get("size") if isinstance(child.get("size"), int) else None,
            )
        )
        if child.get("children"):
            found.extend(flatten_tree(child))
    return found


class ChannelFileSystem:
    def __init__(self, rpc: RpcCorrelator, *, tree_timeout_s: float = 10.0, open_timeout_s: float = 15.0) -> None:
        self._rpc = rpc
        self._tree_timeout_s = tree_timeout_s
        self._open_timeout_s = open_timeout_s

    async def tree(self, path: str, *, depth: int = 4) -> list[MentionCandidate]:
        result = await self._rpc.call(
            "tree",
            {"fileSystemData": {"operation": "tree", "path": path, "options": {"depth": depth}}},
            kind="fileSystem",
            timeout_s=self._tree_timeout_s,
        )
        return flatten_tree(result)

    async def open(self, path: str) -> OpenedFile:
        result = await self._rpc.call(
            "open",
            {"fileSystemData": {"operation": "open", "path": path}},
            kind="fileSystem",
            timeout_s=self._open_timeout_s,
        )
        if not isinstance(result, dict):
            return OpenedFile(text=None, size=None)
        size = result.get("size") if isinstance(result.get("size"), int) else None
        content = result.get("content")
        if result.get("encoding") in ("utf8", "utf-8") and isinstance(content, str):
            return OpenedFile(text=content, size=size)
        return OpenedFile(text=None, size=size)


class ChannelGit:
    def __init__(self, rpc: RpcCorrelator, *, timeout_s: float = 10.0) -> None:
        self._rpc = rpc
        self._timeout_s = timeout_s

    async def _git(self, operation: str, options: dict[str, Any]) -> Any:
        result = await self._rpc.call(
            operation,
            {"gitData": {"operation": operation, "options": options}},
            kind="git",
            timeout_s=self._timeout_s,
        )
        if isinstance(result, dict) and isinstance(result.get("gitData"), dict):
            return result["gitData"].get("result")
        return result

    async def changed_files(self) -> list[str]:
        result = await self._git("status", {})
        status = result.get("status") if isinstance(result, dict) else None
        changed: dict[str, None] = {}
        if isinstance(status, dict):
            for bucket in ("staged", "unstaged", "untracked", "conflicted"):
                for path in status.get(bucket) or []:
                    changed.setdefault(str(path), None)
        return list(changed)

    async def diff(self, path: str) -> str | None:
        result = await self._git("diff", {"path": path})
        if isinstance(result, str):
            return result
        if isinstance(result, dict) and isinstance(result.get("diff"), str):
            return result["diff"]
        return None


@dataclass(frozen=True)
class TerminalSnapshot:
    output: str
    truncated: bool
    exit_code: int | None
    signal: str | None


def _require_terminal(terminal_id: str | None) -> str:
    if not terminal_id:
        raise RequestValidationError("terminalId is required")
    return terminal_id


class TerminalOps:
    """Agent-host terminals and diff application, proxied through the bridge."""

    def __init__(self, rpc: RpcCorrelator) -> None:
        self._rpc = rpc

    async def create(
        self,
        agent_id: str,
        command: str,
        *,
        args: list[str] | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> str:
        if not command.strip():
            raise RequestValidationError("command is required")
        payload: dict[str, Any] = {"command": command, "args": list(args or [])}
        if cwd:
            payload["cwd"] = cwd
        if env:
            payload["env"] = [{"name": key, "value": value} for key, value in env.items()]
        result = await self._rpc.call("terminal.create", payload, agent_id=agent_id)
        terminal_id = (result or {}).get("terminalId") or (result or {}).get("terminal_id")
        if not terminal_id:
            raise RequestValidationError("terminal.create returned no terminalId")
        log_event(logger, "terminal.created", agent=agent_id, terminal_id=terminal_id, command=command)
        return str(terminal_id)

    async def output(self, agent_id: str, terminal_id: str | None) -> TerminalSnapshot:
        result = await self._rpc.call(
            "terminal.output", {"terminalId": _require_terminal(terminal_id)}, agent_id=agent_id
        )
        result = result or {}
        exit_status = result.get("exitStatus") or result.get("exit_status") or {}
        return TerminalSnapshot(
            output=str(result.get("output") or ""),
            truncated=bool(result.get("truncated")),
            exit_code=exit_status.get("exitCode", exit_status.get("exit_code")),
            signal=exit_status.get("signal"),
        )

    async def kill(self, agent_id: str, terminal_id: str | None) -> None:
        await self._rpc.call("terminal.kill", {"terminalId": _require_terminal(terminal_id)}, agent_id=agent_id)

    async def release(self, agent_id: str, terminal_id: str | None) -> None:
        await self._rpc.call("terminal.release", {"terminalId": _require_terminal(terminal_id)}, agent_id=agent_id)

    async def wait_for_exit(self, agent_id: str, terminal_id: str | None) -> TerminalSnapshot:
        result = await self._rpc.call(
            "terminal.waitForExit", {"terminalId": _require_terminal(terminal_id)}, agent_id=agent_id
        )
        result = result or {}
        return TerminalSnapshot(
            output="",
            truncated=False,
            exit_code=result.get("exitCode", result.get("exit_code")),
            signal=result.get("signal"),
        )

    async def apply_diff(self, agent_id: str, path: str, new_text: str, *, old_text: str | None = None) -> Any:
        if not path:
            raise RequestValidationError("path is required")
        payload: dict[str, Any] = {"path": path, "newText": new_text}
        if old_text is not None:
            payload["oldText"] = old_text
        return await self._rpc.call("diff.apply", payload, agent_id=agent_id)
