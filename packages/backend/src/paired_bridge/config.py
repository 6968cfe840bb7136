"""Gateway configuration via environment variables.

Uses pydantic-settings to load config from env vars with PAIRED_BRIDGE_ prefix.

Learn: The defaults mirror the long-standing bridge layout under ~/.paired —
port 7890, sessions.json in the data dir, and a PID lock file next to it.
Tests build their own Settings with a temporary data_dir instead of touching
the singleton.
"""

from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings

PAIRED_HOME = Path.home() / ".paired"


class Settings(BaseSettings):
    """All gateway configuration. Set via PAIRED_BRIDGE_* env vars."""

    # Server
    environment: str = "development"
    host: str = "127.0.0.1"
    port: int = 7890
    port_attempts: int = 10  # auto-increment budget when the port is taken

    # Persistence
    data_dir: Path = PAIRED_HOME / "cascade_bridge"
    pid_file: Path = PAIRED_HOME / "cascade_bridge_unified.pid"

    # Delegation
    default_agent: str = "alex"
    response_timeout_ms: int = 5000

    # Session housekeeping
    session_retention_hours: float = 24.0
    cleanup_interval_seconds: float = 3600.0
    snapshot_interval_seconds: float = 300.0

    # Singleton takeover
    takeover_wait_seconds: float = 2.0

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None  # defaults to <data_dir>/bridge.log

    model_config = {"env_prefix": "PAIRED_BRIDGE_"}

    @property
    def sessions_file(self) -> Path:
        return self.data_dir / "sessions.json"

    @property
    def resolved_log_file(self) -> Path:
        return self.log_file or self.data_dir / "bridge.log"

    @model_validator(mode="after")
    def validate_routing_settings(self):
        """Reject settings that would leave requests with nowhere to go."""
        if not self.default_agent.strip():
            raise ValueError(
                "PAIRED_BRIDGE_DEFAULT_AGENT must name the coordinator agent; "
                "unmatched requests are routed to it."
            )
        if self.response_timeout_ms <= 0:
            raise ValueError("PAIRED_BRIDGE_RESPONSE_TIMEOUT_MS must be positive")
        if self.port_attempts < 1:
            raise ValueError("PAIRED_BRIDGE_PORT_ATTEMPTS must be at least 1")
        return self


# Singleton — used by the CLI and the default app instance
settings = Settings()
