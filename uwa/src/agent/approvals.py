"""
Single-resolution approval requests.

Each pending request owns one future keyed by request id. The first resolve
wins; later or stale resolves are ignored, so an old listener can never
answer a newer request.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger("uwa.approvals")

_request_ids = itertools.count(1)


@dataclass(slots=True)
class PendingRequest:
    request_id: str
    kind: str
    payload: Dict[str, Any]
    future: "asyncio.Future[Any]"
    negative: Any = False
    on_approve: Optional[Callable[[Any], None]] = field(default=None)


class ApprovalBroker:
    """
    Holds the pending approvals of one owner (a session, or the tier gate).

    With latch=True a resolve that arrives while nothing is pending is kept
    and answers the next request, so an early operator signal is not lost.
    """

    def __init__(self, *, latch: bool = False) -> None:
        self._latch_enabled = latch
        self._latched: Dict[str, Tuple[bool, Any]] = {}
        self._pending: Dict[str, PendingRequest] = {}

    @property
    def pending(self) -> Optional[PendingRequest]:
        return next(iter(self._pending.values()), None)

    def pending_for(self, kind: str) -> Optional[PendingRequest]:
        return next((r for r in self._pending.values() if r.kind == kind), None)

    def open(
        self,
        kind: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        negative: Any = False,
        on_approve: Optional[Callable[[Any], None]] = None,
    ) -> PendingRequest:
        loop = asyncio.get_running_loop()
        request = PendingRequest(
            request_id=f"{kind}_{next(_request_ids)}",
            kind=kind,
            payload=dict(payload or {}),
            future=loop.create_future(),
            negative=negative,
            on_approve=on_approve,
        )
        self._pending[request.request_id] = request
        latched = self._latched.pop(kind, None) or self._latched.pop("*", None)
        if latched is not None:
            self._settle(request, latched[0], latched[1])
        return request

    async def wait(self, request: PendingRequest) -> Any:
        try:
            return await request.future
        finally:
            self._pending.pop(request.request_id, None)

    @staticmethod
    def _settle(request: PendingRequest, approved: bool, value: Any) -> bool:
        if request.future.done():
            return False
        if not approved:
            request.future.set_result(request.negative)
            return True
        if request.on_approve is not None:
            try:
                request.on_approve(value)
            except Exception as exc:
                logger.exception("approval side effect failed for %s", request.request_id)
                request.future.set_exception(exc)
                return True
        request.future.set_result(True if value is None else value)
        return True

    def resolve(
        self,
        approved: bool,
        value: Any = None,
        *,
        kind: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> bool:
        """Answer one pending request. Returns False when nothing was resolved."""
        if request_id is not None:
            request = self._pending.get(request_id)
            if request is None:
                logger.info("ignoring stale resolution for %s", request_id)
                return False
            return self._settle(request, approved, value)

        request = self.pending_for(kind) if kind else self.pending
        if request is None:
            if self._latch_enabled:
                self._latched[kind or "*"] = (approved, value)
                return True
            return False
        return self._settle(request, approved, value)

    def cancel_all(self) -> None:
        """Resolve every pending request negatively and drop any latched answer."""
        self._latched.clear()
        for request in list(self._pending.values()):
            if not request.future.done():
                request.future.set_result(request.negative)
        self._pending.clear()
