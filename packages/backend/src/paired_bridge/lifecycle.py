"""Lifecycle manager — singleton takeover, port binding, serving, shutdown.

Learn: Only one gateway should own the well-known port on a machine. The
PID lock file names the current owner; a new process asks it to exit
(SIGTERM) before binding, and cleans up a lock left behind by a process
that no longer exists.

Binding happens here, not inside uvicorn, so the port fallback is ours:
try the preferred port, then the next one, up to `port_attempts` ports.
The bound socket is handed to uvicorn as-is.

Shutdown has two triggers — SIGINT/SIGTERM (caught by uvicorn) and a fatal
error reported by the gateway — and both end in the app lifespan, which
runs Gateway.stop() and then the shutdown hooks (lock file removal).

Usage:
    paired-bridge serve
"""

import asyncio
import errno
import logging
import os
import signal
import socket
import time
from pathlib import Path
from typing import Optional

import structlog
import uvicorn

from paired_bridge.config import Settings
from paired_bridge.gateway import Gateway
from paired_bridge.main import create_app

logger = structlog.get_logger()


class PortUnavailableError(OSError):
    """Every port in the fallback range was already in use."""

    def __init__(self, first_port: int, attempts: int):
        self.first_port = first_port
        self.attempts = attempts
        last = first_port + attempts - 1
        super().__init__(
            errno.EADDRINUSE,
            f"no free port in {first_port}-{last} ({attempts} attempts)",
        )


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Console + file logging for the serve process.

    structlog events are rendered as key=value text and handed to the stdlib
    root logger, so both end up in the same handlers and format.
    """
    level_no = logging.getLevelName(level.upper())
    if not isinstance(level_no, int):
        level_no = logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=level_no,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
    )


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True


class LifecycleManager:
    def __init__(self, settings: Settings, gateway: Optional[Gateway] = None):
        self.settings = settings
        self.gateway = gateway
        self.pid_file = settings.pid_file
        self.port: Optional[int] = None
        self.server: Optional[uvicorn.Server] = None

    # ─── PID lock ─────────────────────────────────────────

    def read_lock(self) -> Optional[int]:
        """PID recorded in the lock file, or None if absent/unreadable."""
        try:
            text = self.pid_file.read_text().strip()
        except FileNotFoundError:
            return None
        try:
            return int(text)
        except ValueError:
            logger.warning("lifecycle.lock_corrupt", path=str(self.pid_file), content=text[:32])
            self.pid_file.unlink(missing_ok=True)
            return None

    async def take_over_existing(self) -> bool:
        """Ask a running gateway to exit. True if a live owner was signalled."""
        pid = self.read_lock()
        if pid is None or pid == os.getpid():
            return False

        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.info("lifecycle.stale_lock_removed", pid=pid, path=str(self.pid_file))
            self.pid_file.unlink(missing_ok=True)
            return False
        except PermissionError:
            logger.warning("lifecycle.takeover_denied", pid=pid)
            return False

        logger.info("lifecycle.takeover_requested", pid=pid)
        deadline = time.monotonic() + self.settings.takeover_wait_seconds
        while time.monotonic() < deadline:
            if not _pid_alive(pid):
                logger.info("lifecycle.previous_instance_exited", pid=pid)
                break
            await asyncio.sleep(0.1)
        else:
            logger.warning(
                "lifecycle.previous_instance_still_running",
                pid=pid,
                waited_seconds=self.settings.takeover_wait_seconds,
            )
        return True

    def write_lock(self) -> None:
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.pid_file.write_text(str(os.getpid()))
        logger.info("lifecycle.lock_written", pid=os.getpid(), path=str(self.pid_file))

    def release_lock(self) -> bool:
        """Remove the lock file, but only while it still names this process."""
        if self.read_lock() != os.getpid():
            return False
        self.pid_file.unlink(missing_ok=True)
        logger.info("lifecycle.lock_released", path=str(self.pid_file))
        return True

    # ─── Port binding ─────────────────────────────────────

    def bind(self, preferred_port: Optional[int] = None) -> socket.socket:
        """Bind and listen on the first free port starting at `preferred_port`."""
        first = self.settings.port if preferred_port is None else preferred_port
        attempts = self.settings.port_attempts
        family = socket.AF_INET6 if ":" in self.settings.host else socket.AF_INET

        for offset in range(attempts):
            port = first + offset
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.bind((self.settings.host, port))
                sock.listen(128)
            except OSError as e:
                sock.close()
                if e.errno != errno.EADDRINUSE:
                    raise
                logger.info("lifecycle.port_in_use", port=port)
                continue

            self.port = sock.getsockname()[1]
            if offset:
                logger.warning("lifecycle.port_fallback", requested=first, port=self.port)
            return sock

        raise PortUnavailableError(first, attempts)

    # ─── Serving ──────────────────────────────────────────

    async def serve(self, preferred_port: Optional[int] = None) -> int:
        """Take over, bind, serve until shutdown. Returns a process exit code."""
        if self.gateway is None:
            self.gateway = Gateway(self.settings)
        gateway = self.gateway

        await self.take_over_existing()
        sock = self.bind(preferred_port)
        self.write_lock()

        app = create_app(gateway)

        config = uvicorn.Config(app, log_config=None, lifespan="on")
        server = uvicorn.Server(config)
        self.server = server

        def request_exit(exc: BaseException) -> None:
            logger.error("lifecycle.fatal_shutdown", error=repr(exc))
            server.should_exit = True

        gateway.fatal_handlers.append(request_exit)
        # Runs inside the lifespan; uvicorn may re-raise the signal after serve()
        gateway.shutdown_hooks.append(self.release_lock)

        logger.info(
            "lifecycle.serving",
            host=self.settings.host,
            port=self.port,
            pid=os.getpid(),
        )
        try:
            await server.serve(sockets=[sock])
        finally:
            self.release_lock()
            sock.close()

        return 1 if gateway.fatal_error is not None else 0

    def run(self, preferred_port: Optional[int] = None) -> int:
        """Blocking entry point."""
        try:
            return asyncio.run(self.serve(preferred_port))
        except KeyboardInterrupt:
            return 0
