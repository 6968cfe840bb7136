"""Session store — per-instance activity history that outlives connections.

Learn: A session is created when an instance connects and updated on every
frame it sends. Disconnecting only stamps `disconnected_at`; the record
stays around so a returning instance (or `get_instances`) still sees its
history. The lifecycle manager purges records that have been disconnected
for longer than the retention window.

Persistence is a flat JSON map (instance id → record) written atomically:
the snapshot goes to a temp file in the same directory and is moved into
place with os.replace, so a crash mid-write never leaves a torn file.
"""

import json
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

import structlog
from pydantic import TypeAdapter, ValidationError

from paired_bridge.schemas.envelope import utcnow
from paired_bridge.schemas.session import SessionRecord

logger = structlog.get_logger()

Clock = Callable[[], datetime]

_snapshot_adapter = TypeAdapter(dict[str, SessionRecord])


class SessionStore:
    """Instance id → SessionRecord."""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._records: dict[str, SessionRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self._records

    def get(self, instance_id: str) -> Optional[SessionRecord]:
        return self._records.get(instance_id)

    def records(self) -> list[SessionRecord]:
        return list(self._records.values())

    # ─── Mutations ────────────────────────────────────────

    def ensure(
        self,
        instance_id: str,
        project_path: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> SessionRecord:
        """Create the record if absent; never counts as a message."""
        record = self._records.get(instance_id)
        if record is None:
            now = self._clock()
            record = SessionRecord(
                instance_id=instance_id,
                connected_at=now,
                last_activity=now,
            )
            self._records[instance_id] = record
        if project_path:
            record.project_path = project_path
        if project_name:
            record.project_name = project_name
        return record

    def touch(self, instance_id: str, project_path: Optional[str] = None) -> SessionRecord:
        """Record one inbound message from `instance_id`."""
        record = self.ensure(instance_id, project_path=project_path)
        record.message_count += 1
        record.last_activity = self._clock()
        return record

    def mark_connected(self, instance_id: str) -> SessionRecord:
        record = self.ensure(instance_id)
        record.connected_at = self._clock()
        record.disconnected_at = None
        return record

    def mark_disconnected(self, instance_id: str) -> Optional[SessionRecord]:
        record = self._records.get(instance_id)
        if record is not None:
            record.disconnected_at = self._clock()
        return record

    def purge_stale(self, retention: timedelta) -> int:
        """Drop records disconnected for longer than `retention`."""
        now = self._clock()
        stale = [
            instance_id
            for instance_id, record in self._records.items()
            if record.disconnected_at is not None
            and now - record.disconnected_at > retention
        ]
        for instance_id in stale:
            del self._records[instance_id]
        if stale:
            logger.info("sessions.purged", count=len(stale), remaining=len(self._records))
        return len(stale)

    # ─── Snapshot ─────────────────────────────────────────

    def snapshot(self) -> dict[str, dict]:
        return {
            instance_id: record.model_dump(mode="json", by_alias=True)
            for instance_id, record in self._records.items()
        }

    def restore(self, snapshot: dict) -> int:
        """Replace the whole map with the contents of `snapshot`."""
        self._records = dict(_snapshot_adapter.validate_python(snapshot))
        return len(self._records)

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self.snapshot(), f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("sessions.saved", path=str(path), count=len(self._records))

    def load(self, path: Path) -> int:
        """Restore from `path`. Missing or unreadable files leave the store empty.

        Loading happens before any transport is accepted, so a record saved
        while its instance was connected (the previous process died without
        a graceful shutdown) is stamped disconnected now. Otherwise it would
        never age out of the retention window.
        """
        if not path.exists():
            return 0
        try:
            count = self.restore(json.loads(path.read_text()))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("sessions.load_failed", path=str(path), error=str(e))
            return 0
        now = self._clock()
        orphaned = 0
        for record in self._records.values():
            if record.disconnected_at is None:
                record.disconnected_at = now
                orphaned += 1
        logger.info("sessions.loaded", path=str(path), count=count, orphaned=orphaned)
        return count
