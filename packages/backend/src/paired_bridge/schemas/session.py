"""Pydantic schemas for instance sessions.

Learn: SessionRecord is both the in-memory record and the persisted form,
so the snapshot written at shutdown is exactly `model_dump(mode="json")`
of every record. Datetimes are stored timezone-aware (UTC) and survive the
JSON round trip unchanged.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

_camel = {"alias_generator": to_camel, "populate_by_name": True}


# ─── Session ──────────────────────────────────────────────


class SessionRecord(BaseModel):
    instance_id: str
    project_path: Optional[str] = None
    project_name: Optional[str] = None
    message_count: int = Field(0, ge=0)
    connected_at: Optional[datetime] = None
    last_activity: datetime
    disconnected_at: Optional[datetime] = None

    model_config = _camel


# ─── Side channel ─────────────────────────────────────────


class InstanceRegistration(BaseModel):
    instance_id: str = Field(min_length=1)
    project_path: Optional[str] = None
    capabilities: list[str] = Field(default_factory=list)

    model_config = _camel


class InstanceRegistered(BaseModel):
    status: str = "registered"
    instance_id: str
    active_sessions: int
    default_agent: str

    model_config = _camel

