"""Single-slot permission prompt tracking."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from acp.schema import AllowedOutcome, DeniedOutcome

from tether.engine.errors import RequestValidationError
from tether.engine.rpc import RpcCorrelator
from tether.log_utils import log_context, log_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionChoice:
    option_id: str
    name: str
    kind: str | None = None


@dataclass(frozen=True)
class PermissionRequest:
    request_id: str | int
    options: tuple[PermissionChoice, ...]
    agent_id: str | None = None
    session_id: str | None = None
    tool_call: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return str(self.tool_call.get("title") or self.tool_call.get("name") or self.tool_call.get("toolCallId") or "")


def parse_options(raw: Any) -> tuple[PermissionChoice, ...]:
    choices: list[PermissionChoice] = []
    for opt in raw if isinstance(raw, list) else []:
        if not isinstance(opt, dict):
            continue
        option_id = opt.get("optionId") or opt.get("option_id") or opt.get("id")
        if not option_id:
            continue
        choices.append(
            PermissionChoice(
                option_id=str(option_id),
                name=str(opt.get("name") or opt.get("label") or option_id),
                kind=opt.get("kind"),
            )
        )
    return tuple(choices)


def _request_id(event: dict[str, Any]) -> str | int | None:
    for key in ("requestId", "request_id", "id"):
        value = event.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, int) or (isinstance(value, str) and value):
            return value
    return None


def parse_request(event: dict[str, Any]) -> PermissionRequest | None:
    """Read a permission request; fields may sit at the top level or under ``request``.

    The id keeps its wire type; the bridge matches it back numerically.
    """
    request_id = _request_id(event)
    if request_id is None:
        return None
    nested = event.get("request")
    body = {**nested, **{k: v for k, v in event.items() if k != "request"}} if isinstance(nested, dict) else event
    tool_call = body.get("toolCall") or body.get("tool_call")
    return PermissionRequest(
        request_id=request_id,
        options=parse_options(body.get("options")),
        agent_id=body.get("agentId"),
        session_id=body.get("sessionId") or body.get("session_id"),
        tool_call=dict(tool_call) if isinstance(tool_call, dict) else {},
    )


class PermissionArbitrator:
    """Tracks at most one live request; a newer request replaces the displayed one.

    The replaced request is not answered on the wire.
    """

    def __init__(self, rpc: RpcCorrelator) -> None:
        self._rpc = rpc
        self._listeners: list[Callable[[PermissionRequest | None], None]] = []
        self._pending: PermissionRequest | None = None

    def on_change(self, listener: Callable[[PermissionRequest | None], None]) -> None:
        self._listeners.append(listener)

    @property
    def pending(self) -> PermissionRequest | None:
        return self._pending

    def on_request(self, event: dict[str, Any]) -> PermissionRequest | None:
        request = parse_request(event)
        if request is None:
            log_event(logger, "permission.malformed", level=logging.WARNING, keys=sorted(event))
            return None
        previous = self._pending
        if previous is not None:
            # The earlier request is left unanswered on the agent side.
            log_event(
                logger,
                "permission.superseded",
                level=logging.WARNING,
                previous=previous.request_id,
                request=request.request_id,
            )
        with log_context(request_id=request.request_id):
            log_event(logger, "permission.request", options=[opt.option_id for opt in request.options], title=request.title)
        self._set(request)
        return request

    async def resolve(
        self,
        outcome: Literal["selected", "cancelled"],
        option_id: str | None = None,
        *,
        agent_id: str | None = None,
    ) -> Any:
        """Answer the live request; it is cleared whether or not the RPC succeeds."""
        request = self._pending
        if request is None:
            raise RequestValidationError("no pending permission request")
        if outcome == "selected":
            if not option_id:
                raise RequestValidationError("optionId is required for a selected outcome")
            decision: Any = AllowedOutcome(option_id=option_id, outcome="selected")
        else:
            decision = DeniedOutcome(outcome="cancelled")
        payload = {"requestId": request.request_id, **decision.model_dump(by_alias=True, exclude_none=True)}
        try:
            with log_context(request_id=request.request_id):
                log_event(logger, "permission.response", outcome=outcome, option=option_id)
            return await self._rpc.call("permission", payload, agent_id=agent_id or request.agent_id)
        finally:
            if self._pending is request:
                self._set(None)

    async def allow(self, option_id: str | None = None, *, agent_id: str | None = None) -> Any:
        """Select ``option_id``, or the first allow-kind option of the live request."""
        request = self._pending
        if request is None:
            raise RequestValidationError("no pending permission request")
        if option_id is None:
            allow = [opt for opt in request.options if (opt.kind or "").startswith("allow")]
            chosen = allow[0] if allow else (request.options[0] if request.options else None)
            if chosen is None:
                raise RequestValidationError("permission request has no options")
            option_id = chosen.option_id
        return await self.resolve("selected", option_id, agent_id=agent_id)

    async def deny(self, *, agent_id: str | None = None) -> Any:
        return await self.resolve("cancelled", agent_id=agent_id)

    def clear(self) -> None:
        self._set(None)

    def _set(self, request: PermissionRequest | None) -> None:
        self._pending = request
        for listener in list(self._listeners):
            listener(request)
