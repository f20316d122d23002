"""JSON message channel consumed by the engine.

The engine only needs three things from the transport: send a JSON object,
subscribe to inbound JSON objects, and report whether the socket is up.
``WebSocketChannel`` provides that over ``websockets``; it does not reconnect
on its own.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Callable, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from tether.engine.errors import TransportError
from tether.log_utils import log_event

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]


class Channel(Protocol):
    @property
    def connected(self) -> bool: ...

    async def send_json(self, message: dict[str, Any]) -> None: ...

    def subscribe(self, listener: Listener) -> Callable[[], None]: ...


class ListenerSet:
    """Fan-out of inbound messages; one failing listener does not starve the others."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def add(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, message: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("channel.listener_failed type=%s", message.get("type"))


class WebSocketChannel:
    """Channel over a single WebSocket connection."""

    def __init__(self, url: str) -> None:
        self._url = url
        self._ws: Any = None
        self._reader: asyncio.Task[None] | None = None
        self._listeners = ListenerSet()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def open(self) -> None:
        try:
            self._ws = await websockets.connect(self._url, max_size=None)
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"WebSocket connect failed: {exc}") from exc
        log_event(logger, "channel.open", url=self._url)
        self._reader = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None

    async def send_json(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            raise TransportError("WebSocket is not open")
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as exc:
            self._ws = None
            raise TransportError(f"WebSocket send failed: {exc}") from exc

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self._listeners.add(listener)

    async def _read_loop(self) -> None:
        ws = self._ws
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except ValueError:
                    log_event(logger, "channel.bad_frame", level=logging.WARNING, size=len(raw))
                    continue
                if isinstance(message, dict):
                    self._listeners.emit(message)
        except ConnectionClosed as exc:
            log_event(logger, "channel.closed", reason=str(exc))
        finally:
            if self._ws is ws:
                self._ws = None
