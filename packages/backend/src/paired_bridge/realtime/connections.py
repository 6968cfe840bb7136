"""Connection registry — live transports, keyed by instance id.

Learn: The registry is the only thing that holds transport handles. It
assigns instance ids, keeps session bookkeeping in step with the socket
lifecycle, and feeds parsed envelopes to the dispatch engine.

Frames from one connection are parsed, counted and classified strictly in
arrival order. Conversational frames may wait several seconds on a
specialist, so they run as tracked background tasks; otherwise a client
that is both asking and answering (its own AGENT_RESPONSE arriving on the
same socket) would deadlock against itself.

Failure policy:
- malformed frame → log and drop, connection stays open, no reply
- write failure → treat the connection as closed, never raise
- anything unexpected while handling → fatal hook (gateway shuts down)
"""

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Optional, Protocol, Union

import structlog

from paired_bridge.schemas.envelope import Envelope, ProtocolError, utcnow
from paired_bridge.sessions.store import SessionStore

if TYPE_CHECKING:
    from paired_bridge.dispatch.engine import DispatchEngine

logger = structlog.get_logger()

FatalHook = Callable[[BaseException], None]


class TransportHandle(Protocol):
    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


@dataclass
class Connection:
    instance_id: str
    handle: TransportHandle
    connected_at: datetime = field(default_factory=utcnow)


def new_instance_id() -> str:
    return f"instance-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class ConnectionRegistry:
    """Instance id → live Connection (at most one per id)."""

    def __init__(self, sessions: SessionStore, on_fatal: Optional[FatalHook] = None):
        self.sessions = sessions
        self.engine: Optional["DispatchEngine"] = None
        self.on_fatal = on_fatal
        self._connections: dict[str, Connection] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_count(self) -> int:
        return len(self._connections)

    def instance_ids(self) -> list[str]:
        return list(self._connections)

    def is_connected(self, instance_id: str) -> bool:
        return instance_id in self._connections

    def get(self, instance_id: str) -> Optional[Connection]:
        return self._connections.get(instance_id)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ─── Lifecycle events ─────────────────────────────────

    def on_connect(self, handle: TransportHandle, instance_id: Optional[str] = None) -> str:
        """Register a transport. Reusing an id replaces the previous handle."""
        instance_id = instance_id or new_instance_id()
        previous = self._connections.get(instance_id)
        self._connections[instance_id] = Connection(instance_id=instance_id, handle=handle)
        self.sessions.mark_connected(instance_id)

        if previous is not None and previous.handle is not handle:
            logger.warning("bridge.connection_replaced", instance_id=instance_id)
            self._spawn(_close_quietly(previous.handle))

        logger.info("bridge.connected", instance_id=instance_id, active=self.active_count)
        return instance_id

    def on_close(self, instance_id: str, handle: Optional[TransportHandle] = None) -> None:
        """Forget the connection; the session record is kept."""
        connection = self._connections.get(instance_id)
        if connection is None:
            return
        if handle is not None and connection.handle is not handle:
            # A replaced handle closing late must not evict its successor
            return
        del self._connections[instance_id]
        self.sessions.mark_disconnected(instance_id)
        logger.info("bridge.disconnected", instance_id=instance_id, active=self.active_count)

    async def on_frame(self, instance_id: str, raw: Union[str, bytes]) -> None:
        """Parse, count and dispatch one inbound frame."""
        try:
            envelope = Envelope.from_frame(instance_id, raw)
        except ProtocolError as e:
            logger.warning("bridge.malformed_frame", instance_id=instance_id, error=str(e))
            return

        project_path = envelope.get("projectPath")
        self.sessions.touch(
            instance_id,
            project_path=project_path if isinstance(project_path, str) else None,
        )

        if self.engine is None:
            raise RuntimeError("ConnectionRegistry has no dispatch engine attached")

        if self.engine.is_conversational(envelope):
            self._spawn(self._answer(envelope))
            return

        try:
            reply = await self.engine.handle(envelope)
        except Exception as e:
            self._fatal(e)
            return
        if reply is not None:
            await self.send(instance_id, reply)

    async def _answer(self, envelope: Envelope) -> None:
        reply = await self.engine.handle(envelope)
        if reply is None:
            return
        if not await self.send(envelope.instance_id, reply):
            logger.info(
                "bridge.reply_discarded",
                instance_id=envelope.instance_id,
                type=reply.get("type"),
            )

    # ─── Outbound ─────────────────────────────────────────

    async def send(self, instance_id: str, message: dict[str, Any]) -> bool:
        """Best-effort write. False if the instance is gone or the write failed."""
        connection = self._connections.get(instance_id)
        if connection is None:
            return False
        try:
            await connection.handle.send_text(json.dumps(message, default=str))
        except Exception as e:
            logger.warning("bridge.send_failed", instance_id=instance_id, error=str(e))
            self.on_close(instance_id, connection.handle)
            return False
        return True

    async def broadcast(self, message: dict[str, Any], exclude: Optional[str] = None) -> int:
        """Send to every live connection; returns how many writes succeeded."""
        delivered = 0
        for instance_id in self.instance_ids():
            if instance_id != exclude and await self.send(instance_id, message):
                delivered += 1
        return delivered

    async def close_all(self, code: int = 1001) -> int:
        connections = list(self._connections.values())
        for connection in connections:
            await _close_quietly(connection.handle, code)
            self.on_close(connection.instance_id, connection.handle)
        return len(connections)

    async def drain(self) -> None:
        """Cancel in-flight conversational tasks and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ─── Internals ────────────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._fatal(exc)

    def _fatal(self, exc: BaseException) -> None:
        logger.error("bridge.fatal_error", error=repr(exc), exc_info=exc)
        if self.on_fatal is not None:
            self.on_fatal(exc)


async def _close_quietly(handle: TransportHandle, code: int = 1000) -> None:
    try:
        await handle.close(code=code)
    except Exception as e:
        logger.debug("bridge.close_failed", error=str(e))
