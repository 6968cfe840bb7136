"""Wire envelope — the unit of every WebSocket interaction.

Learn: Clients are loose about where they put type-specific fields. Some
send `{"type": "user_request", "originalMessage": ...}`, others nest them
under `"payload"`. Both shapes are folded into `Envelope.payload` so the
dispatch engine only ever looks in one place.

The connection a frame arrived on decides its instance id. A client may
echo an `instanceId` (often one it made up before connecting); it is kept
nowhere because bookkeeping must follow the transport.
"""

import json
from datetime import datetime, timezone
from typing import Any, Union

from pydantic import BaseModel, Field, ValidationError
from pydantic.alias_generators import to_camel

_ENVELOPE_FIELDS = frozenset({"type", "instanceId", "payload", "timestamp"})


class ProtocolError(ValueError):
    """Raised when a frame cannot be read as an envelope."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_now() -> str:
    return utcnow().isoformat()


class Envelope(BaseModel):
    type: str
    instance_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def text(self, *keys: str) -> str:
        """First non-empty value among `keys`, as text."""
        for key in keys:
            value = self.payload.get(key)
            if value is None or value == "":
                continue
            if isinstance(value, str):
                return value
            return json.dumps(value, default=str)
        return ""

    @classmethod
    def from_frame(cls, instance_id: str, raw: Union[str, bytes]) -> "Envelope":
        """Parse a raw frame, raising ProtocolError on anything malformed."""
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise ProtocolError(f"frame is not valid JSON: {e}") from e
        except RecursionError as e:
            raise ProtocolError("frame is nested too deeply") from e

        if not isinstance(data, dict):
            raise ProtocolError("frame must be a JSON object")

        kind = data.get("type")
        if not isinstance(kind, str) or not kind.strip():
            raise ProtocolError("frame has no 'type' string")

        payload: dict[str, Any] = {}
        nested = data.get("payload")
        if isinstance(nested, dict):
            payload.update(nested)
        payload.update({k: v for k, v in data.items() if k not in _ENVELOPE_FIELDS})

        fields: dict[str, Any] = {
            "type": kind,
            "instance_id": instance_id,
            "payload": payload,
        }
        if data.get("timestamp") is not None:
            fields["timestamp"] = data["timestamp"]

        try:
            return cls.model_validate(fields)
        except ValidationError as e:
            raise ProtocolError(f"invalid envelope: {e.errors()[0]['msg']}") from e
