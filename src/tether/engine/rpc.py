"""Request/response correlation over the shared JSON channel.

Each call gets a unique id, is sent as one envelope, and settles when an
inbound message carrying the same id arrives or when its deadline passes.
Responses may come back in any order.
"""

from __future__ import annotations

import asyncio
import logging
import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from tether.engine.channel import Channel
from tether.engine.errors import RpcTimeout, TransportError, classify_error
from tether.log_utils import log_event

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


class RpcRequest(BaseModel):
    """Outbound envelope. ``type`` is ``acp`` for agent calls or a service name (``fileSystem``, ``git``)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str = "acp"
    id: str
    op: str
    payload: dict[str, Any] = Field(default_factory=dict)
    agent_id: str | None = Field(None, alias="agentId")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class PendingCall:
    id: str
    operation: str
    future: asyncio.Future[Any]
    timeout_handle: asyncio.TimerHandle | None = None
    created_at: float = field(default_factory=time.monotonic)


def new_call_id(kind: str) -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"{kind}_{int(time.time() * 1000)}_{suffix}"


def response_outcome(message: dict[str, Any]) -> tuple[bool, Any]:
    """Return ``(ok, value)`` for a response in either ``{result|error}`` or ``{data: {success, ...}}`` form."""
    if message.get("error") is not None:
        return False, message["error"]
    if "result" in message:
        return True, message["result"]
    data = message.get("data")
    if isinstance(data, dict) and ("success" in data or "ok" in data):
        if data.get("success") is False or data.get("ok") is False:
            return False, data.get("error") or "request failed"
        if "data" in data:
            return True, data["data"]
        if "result" in data:
            return True, data["result"]
    if isinstance(data, dict) and data.get("error") is not None and len(data) == 1:
        return False, data["error"]
    return True, data


def _consume_exception(future: asyncio.Future[Any]) -> None:
    # Callers may have stopped awaiting; keep asyncio from warning about it.
    if not future.cancelled():
        future.exception()


class RpcCorrelator:
    """Owns the pending-call table for one channel."""

    def __init__(self, channel: Channel, *, timeout_for: Callable[[str], float] | None = None) -> None:
        self._channel = channel
        self._timeout_for = timeout_for or (lambda _op: 15.0)
        self._pending: dict[str, PendingCall] = {}
        self._unsubscribe = channel.subscribe(self.dispatch)

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)

    async def call(
        self,
        operation: str,
        payload: dict[str, Any] | None = None,
        *,
        agent_id: str | None = None,
        kind: str = "acp",
        timeout_s: float | None = None,
    ) -> Any:
        """Send one request and wait for its response.

        Cancelling the awaiting task does not withdraw the request; the pending
        entry still settles on response or timeout.
        """
        loop = asyncio.get_running_loop()
        call_id = new_call_id(kind)
        while call_id in self._pending:
            call_id = new_call_id(kind)
        deadline = timeout_s if timeout_s is not None else self._timeout_for(operation)
        future: asyncio.Future[Any] = loop.create_future()
        future.add_done_callback(_consume_exception)
        pending = PendingCall(id=call_id, operation=operation, future=future)
        pending.timeout_handle = loop.call_later(deadline, self._expire, call_id, deadline)
        self._pending[call_id] = pending

        request = RpcRequest(type=kind, id=call_id, op=operation, payload=payload or {}, agent_id=agent_id)
        try:
            await self._channel.send_json(request.to_wire())
        except TransportError:
            self._discard(call_id)
            raise
        except Exception as exc:
            self._discard(call_id)
            raise TransportError(f"send failed: {exc}") from exc
        log_event(logger, "rpc.send", level=logging.DEBUG, id=call_id, op=operation, agent=agent_id)
        return await asyncio.shield(future)

    def dispatch(self, message: dict[str, Any]) -> bool:
        """Settle the pending call matching ``message['id']``; return False if none matches."""
        call_id = message.get("id")
        if not isinstance(call_id, str):
            return False
        pending = self._pending.pop(call_id, None)
        if pending is None:
            return False
        if pending.timeout_handle is not None:
            pending.timeout_handle.cancel()
        if pending.future.done():
            return True
        ok, value = response_outcome(message)
        elapsed_ms = int((time.monotonic() - pending.created_at) * 1000)
        if ok:
            log_event(logger, "rpc.ok", level=logging.DEBUG, id=call_id, op=pending.operation, ms=elapsed_ms)
            pending.future.set_result(value)
        else:
            error = classify_error(value)
            log_event(
                logger,
                "rpc.error",
                id=call_id,
                op=pending.operation,
                ms=elapsed_ms,
                error=str(error),
                kind=type(error).__name__,
            )
            pending.future.set_exception(error)
        return True

    def close(self, reason: str = "channel closed") -> None:
        """Reject every pending call and stop listening."""
        self._unsubscribe()
        for call_id in list(self._pending):
            pending = self._discard(call_id)
            if pending is not None and not pending.future.done():
                pending.future.set_exception(TransportError(reason))

    def _expire(self, call_id: str, deadline: float) -> None:
        pending = self._pending.pop(call_id, None)
        if pending is None or pending.future.done():
            return
        log_event(logger, "rpc.timeout", level=logging.WARNING, id=call_id, op=pending.operation, timeout_s=deadline)
        pending.future.set_exception(RpcTimeout(pending.operation, deadline))

    def _discard(self, call_id: str) -> PendingCall | None:
        pending = self._pending.pop(call_id, None)
        if pending is not None and pending.timeout_handle is not None:
            pending.timeout_handle.cancel()
        return pending
