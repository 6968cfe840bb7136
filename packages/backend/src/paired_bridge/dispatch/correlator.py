"""Pending request correlator — sub-dispatch with exactly-once resolution.

Learn: Delegating to a specialist is a broadcast. The correlator stamps the
sub-request with a fresh request id, sends it to every connected transport,
and hands back an asyncio.Future. Whichever `AGENT_RESPONSE` carrying that
id arrives first wins; the timer fails the future if nothing arrives in
time.

Exactly-once is enforced by one rule: the pending entry is popped *before*
the future is touched. A second response, or a timer firing after a
response, finds no entry and does nothing.

    CREATED ──resolve()──▶ RESOLVED
       │
       ├──timer──────────▶ TIMED_OUT
       └──cancel_all()───▶ CANCELLED   (shutdown only)
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog

from paired_bridge.events.types import AGENT_REQUEST

logger = structlog.get_logger()

Broadcast = Callable[[dict[str, Any]], Awaitable[int]]


class DelegationTimeoutError(TimeoutError):
    """No specialist answered a sub-request in time."""

    def __init__(self, request_id: str, target_agent: str, timeout_ms: int):
        super().__init__(
            f"agent {target_agent} did not respond to {request_id} within {timeout_ms}ms"
        )
        self.request_id = request_id
        self.target_agent = target_agent
        self.timeout_ms = timeout_ms


@dataclass
class PendingRequest:
    request_id: str
    target_agent: str
    created_at: datetime
    future: asyncio.Future
    timer: Optional[asyncio.TimerHandle] = None


class PendingRequestCorrelator:
    """Tracks in-flight sub-dispatches keyed by request id."""

    def __init__(self, broadcast: Broadcast, default_timeout_ms: int = 5000):
        self._broadcast = broadcast
        self.default_timeout_ms = default_timeout_ms
        self._pending: dict[str, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def pending_ids(self) -> list[str]:
        return list(self._pending)

    async def dispatch(
        self,
        target_agent: str,
        payload: dict[str, Any],
        timeout_ms: Optional[int] = None,
    ) -> asyncio.Future:
        """Broadcast a sub-request for `target_agent` and return its future."""
        timeout_ms = timeout_ms or self.default_timeout_ms
        loop = asyncio.get_running_loop()
        request_id = str(uuid.uuid4())
        created_at = datetime.now(timezone.utc)

        entry = PendingRequest(
            request_id=request_id,
            target_agent=target_agent,
            created_at=created_at,
            future=loop.create_future(),
        )
        self._pending[request_id] = entry
        entry.timer = loop.call_later(timeout_ms / 1000, self._expire, request_id, timeout_ms)

        envelope = {
            **payload,
            "type": AGENT_REQUEST,
            "targetAgent": target_agent,
            "requestId": request_id,
            "timestamp": created_at.isoformat(),
        }
        delivered = await self._broadcast(envelope)
        logger.info(
            "correlator.dispatched",
            request_id=request_id,
            target_agent=target_agent,
            delivered=delivered,
            timeout_ms=timeout_ms,
        )
        return entry.future

    def resolve(self, request_id: Optional[str], payload: dict[str, Any]) -> bool:
        """Fulfil the waiter for `request_id`. Unknown or settled ids are a no-op."""
        entry = self._pending.pop(request_id, None) if isinstance(request_id, str) else None
        if entry is None:
            logger.debug("correlator.unmatched_response", request_id=request_id)
            return False
        if entry.timer is not None:
            entry.timer.cancel()
        if not entry.future.done():
            entry.future.set_result(payload)
        logger.info("correlator.resolved", request_id=request_id, target_agent=entry.target_agent)
        return True

    def _expire(self, request_id: str, timeout_ms: int) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        if not entry.future.done():
            entry.future.set_exception(
                DelegationTimeoutError(request_id, entry.target_agent, timeout_ms)
            )
        logger.warning(
            "correlator.timed_out",
            request_id=request_id,
            target_agent=entry.target_agent,
            timeout_ms=timeout_ms,
        )

    def cancel_all(self) -> int:
        """Cancel every waiter (shutdown). Returns how many were pending."""
        entries = list(self._pending.values())
        self._pending.clear()
        for entry in entries:
            if entry.timer is not None:
                entry.timer.cancel()
            entry.future.cancel()
        if entries:
            logger.info("correlator.cancelled", count=len(entries))
        return len(entries)
