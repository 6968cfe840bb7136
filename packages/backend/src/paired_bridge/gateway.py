"""Gateway — the single owner of every piece of mutable bridge state.

Learn: Connections, sessions, specialists and pending requests are plain
fields on one Gateway object, built explicitly and stored on
`app.state.gateway`. Nothing lives in module globals, so tests can run
several independent gateways side by side.

All state is touched only from the event loop that runs the app. That
single owner is what makes the maps safe without locks.
"""

import asyncio
from datetime import timedelta
from typing import Any, Callable, Iterable, Optional

import structlog
from fastapi import Request

from paired_bridge import __version__
from paired_bridge.agents.registry import SpecialistRegistry, default_team
from paired_bridge.config import Settings
from paired_bridge.dispatch.correlator import PendingRequestCorrelator
from paired_bridge.dispatch.engine import DispatchEngine
from paired_bridge.realtime.connections import ConnectionRegistry
from paired_bridge.schemas.agent import SpecialistProfile
from paired_bridge.schemas.envelope import utcnow
from paired_bridge.sessions.store import Clock, SessionStore

logger = structlog.get_logger()

ShutdownHook = Callable[[], None]
FatalHandler = Callable[[BaseException], None]


class Gateway:
    def __init__(
        self,
        settings: Settings,
        specialists: Optional[Iterable[SpecialistProfile]] = None,
        clock: Clock = utcnow,
    ):
        self.settings = settings
        self.specialists = SpecialistRegistry(
            settings.default_agent,
            default_team() if specialists is None else specialists,
        )
        self.specialists.validate()

        self.sessions = SessionStore(clock)
        self.connections = ConnectionRegistry(self.sessions, on_fatal=self._on_fatal)
        self.correlator = PendingRequestCorrelator(
            self.connections.broadcast,
            default_timeout_ms=settings.response_timeout_ms,
        )
        self.engine = DispatchEngine(
            self.specialists,
            self.correlator,
            self.sessions,
            self.connections,
            response_timeout_ms=settings.response_timeout_ms,
        )
        self.connections.engine = self.engine

        self.fatal_handlers: list[FatalHandler] = []
        self.shutdown_hooks: list[ShutdownHook] = []
        self.fatal_error: Optional[BaseException] = None
        self._background: list[asyncio.Task] = []
        self._stopped = False

    # ─── Startup / shutdown ───────────────────────────────

    async def start(self) -> None:
        """Restore persisted sessions and start housekeeping loops."""
        self.sessions.load(self.settings.sessions_file)
        self._stopped = False
        self._background = [
            asyncio.create_task(
                self._every(self.settings.cleanup_interval_seconds, self.purge_stale_sessions),
                name="session-cleanup",
            ),
            asyncio.create_task(
                self._every(self.settings.snapshot_interval_seconds, self.persist_sessions),
                name="session-snapshot",
            ),
        ]
        logger.info(
            "gateway.started",
            version=__version__,
            sessions=len(self.sessions),
            specialists=len(self.specialists),
        )

    async def stop(self) -> None:
        """Close connections, cancel waiters, persist sessions, run shutdown hooks."""
        if self._stopped:
            return
        self._stopped = True

        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background = []

        closed = await self.connections.close_all()
        cancelled = self.correlator.cancel_all()
        await self.connections.drain()

        try:
            self.persist_sessions()
        except OSError as e:
            logger.error("gateway.persist_failed", error=str(e))

        for hook in self.shutdown_hooks:
            try:
                hook()
            except Exception:
                logger.exception("gateway.shutdown_hook_failed")

        logger.info("gateway.stopped", closed=closed, cancelled=cancelled)

    async def _every(self, interval: float, job: Callable[[], Any]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                job()
            except Exception:
                logger.exception("gateway.housekeeping_error", job=getattr(job, "__name__", "job"))

    # ─── Housekeeping ─────────────────────────────────────

    def purge_stale_sessions(self) -> int:
        retention = timedelta(hours=self.settings.session_retention_hours)
        purged = self.sessions.purge_stale(retention)
        if purged:
            self.persist_sessions()
        return purged

    def persist_sessions(self) -> None:
        self.sessions.save(self.settings.sessions_file)

    # ─── Fatal errors ─────────────────────────────────────

    def _on_fatal(self, exc: BaseException) -> None:
        if self.fatal_error is None:
            self.fatal_error = exc
        for handler in self.fatal_handlers:
            handler(exc)

    # ─── Introspection ────────────────────────────────────

    def health(self) -> dict[str, Any]:
        return {
            "status": "active",
            "service": "paired-bridge",
            "version": __version__,
            "connectedInstances": self.connections.active_count,
            "activeSessions": len(self.sessions),
            "specialists": len(self.specialists),
            "defaultAgent": self.specialists.default_agent,
            "pendingRequests": len(self.correlator),
        }


def get_gateway(request: Request) -> Gateway:
    """FastAPI dependency — the gateway owned by this app."""
    return request.app.state.gateway
