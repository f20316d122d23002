"""Logging for the engine and client.

Records are written to a rotating file (the terminal belongs to the REPL).
Engine code logs through ``log_event(logger, "rpc.timeout", op=..., ...)``: the
message is the dotted event name and the keyword fields travel on the record,
together with whatever ``log_context`` has bound for the current task. Fields
that look like credentials are masked before they reach a handler.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
import re
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping

from tether.paths import log_dir

ENV_PREFIX = "TETHER_LOG_"
MASK = "***"

_SECRET_FIELD = re.compile(r"(^|_)(api_?key|token|secret|password|authorization)$", re.IGNORECASE)
_BOUND: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("tether_log_bound", default={})
_UPDATES_ENABLED = False


@dataclass(frozen=True)
class LogConfig:
    log_file: Path
    level: int = logging.INFO
    stderr: bool = False
    json: bool = False
    log_updates: bool = False
    max_bytes: int = 5_000_000
    backup_count: int = 3
    # websockets logs every frame at DEBUG.
    quiet: Dict[str, int] = field(default_factory=lambda: {"websockets": logging.WARNING})


class _EnvSettings:
    """Typed reads of ``TETHER_LOG_<NAME>``; unparsable values give the default."""

    def __init__(self, prefix: str = ENV_PREFIX) -> None:
        self._prefix = prefix

    def raw(self, name: str) -> str | None:
        value = os.getenv(self._prefix + name)
        return value.strip() if value and value.strip() else None

    def level(self, name: str, default: int) -> int:
        value = self.raw(name)
        if value is None:
            return default
        if value.isdigit():
            return int(value)
        return logging.getLevelNamesMapping().get(value.upper(), default)

    def flag(self, name: str, default: bool = False) -> bool:
        value = self.raw(name)
        return default if value is None else value.lower() in {"1", "true", "yes", "on"}

    def number(self, name: str, default: int) -> int:
        value = self.raw(name)
        if value is None:
            return default
        with contextlib.suppress(ValueError):
            return int(value)
        return default


def build_log_config(*, log_file_name: str, default_level: int = logging.INFO) -> LogConfig:
    """Resolve a LogConfig from ``TETHER_LOG_*`` (DIR, LEVEL, STDERR, JSON, UPDATES, MAX_BYTES, BACKUPS)."""
    env = _EnvSettings()
    directory = Path(env.raw("DIR") or log_dir()).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    defaults = LogConfig(log_file=directory / log_file_name)
    return LogConfig(
        log_file=defaults.log_file,
        level=env.level("LEVEL", default_level),
        stderr=env.flag("STDERR"),
        json=env.flag("JSON"),
        log_updates=env.flag("UPDATES"),
        max_bytes=env.number("MAX_BYTES", defaults.max_bytes),
        backup_count=env.number("BACKUPS", defaults.backup_count),
    )


def configure_logging(config: LogConfig) -> None:
    """Replace the root handlers with the file (and optional stderr) handler described by ``config``."""
    global _UPDATES_ENABLED
    _UPDATES_ENABLED = config.log_updates

    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    ]
    if config.stderr:
        handlers.append(logging.StreamHandler())

    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
        old.close()
    root.setLevel(config.level)
    for handler in handlers:
        handler.addFilter(EventFilter())
        handler.setFormatter(EventFormatter(json_lines=config.json))
        root.addHandler(handler)

    for name, level in config.quiet.items():
        logging.getLogger(name).setLevel(level)


def log_updates_enabled() -> bool:
    """Whether every inbound session update should be logged."""
    return _UPDATES_ENABLED


@contextlib.contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind fields (``agent``, ``session_id``, ``op``) to every record logged inside the block."""
    bound = {**_BOUND.get(), **{key: value for key, value in fields.items() if value is not None}}
    token = _BOUND.set(bound)
    try:
        yield
    finally:
        _BOUND.reset(token)


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    logger.log(level, event, extra={"event_fields": fields})


def mask_secrets(fields: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: MASK if _SECRET_FIELD.search(key) and value else value for key, value in fields.items()}


class EventFilter(logging.Filter):
    """Attach bound context and masked event fields to each record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 - logging API name
        record.context_fields = mask_secrets(_BOUND.get())
        record.event_fields = mask_secrets(getattr(record, "event_fields", {}))
        return True


def _plain(value: Any) -> str:
    if isinstance(value, str):
        if not value or any(ch.isspace() or ch in '="' for ch in value):
            return json.dumps(value)
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=True, separators=(",", ":"), default=str)
    return str(value)


class EventFormatter(logging.Formatter):
    """``time LEVEL logger event k=v ...`` lines, or one JSON object per line."""

    def __init__(self, *, json_lines: bool = False, fmt: str = "%(asctime)s %(levelname)s %(name)s %(message)s") -> None:
        super().__init__(fmt)
        self.json_lines = json_lines

    def format(self, record: logging.LogRecord) -> str:
        context = getattr(record, "context_fields", {})
        fields = getattr(record, "event_fields", {})
        if self.json_lines:
            payload: Dict[str, Any] = {
                "timestamp": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "logger": record.name,
                "event": record.getMessage(),
            }
            if context:
                payload["context"] = context
            if fields:
                payload["fields"] = fields
            if record.exc_info:
                payload["exc"] = self.formatException(record.exc_info)
            return json.dumps(payload, ensure_ascii=True, default=str)
        line = super().format(record)
        pairs = [f"{key}={_plain(value)}" for scope in (context, fields) for key, value in sorted(scope.items()) if value is not None]
        if not pairs:
            return line
        head, sep, tail = line.partition("\n")
        return f"{head} {' '.join(pairs)}{sep}{tail}"
