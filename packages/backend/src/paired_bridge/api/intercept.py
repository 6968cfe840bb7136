"""HTTP routing endpoint — the conversational path without a socket.

Learn: Same routing as a `user_request` frame: coordinator answers
directly, or the request is delegated to a specialist through the
correlator and this call waits (bounded by the response timeout). The
delegated sub-request still goes out over the WebSocket broadcast, so a
specialist must be connected there to answer.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from paired_bridge.events.types import AGENT_REPLY
from paired_bridge.gateway import Gateway, get_gateway
from paired_bridge.schemas.envelope import iso_now

router = APIRouter()


class InterceptRequest(BaseModel):
    instance_id: str = Field(min_length=1)
    message: str = ""
    type: str = "user_message"
    project_path: Optional[str] = None
    requested_agent: str = ""

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


@router.post("/cascade-intercept")
async def cascade_intercept(
    body: InterceptRequest,
    gateway: Gateway = Depends(get_gateway),
):
    """Route one message and return the coordinator's or specialist's reply."""
    gateway.sessions.touch(body.instance_id, project_path=body.project_path)
    reply = await gateway.engine.converse(
        body.message,
        body.instance_id,
        project_path=body.project_path,
        requested_agent=body.requested_agent,
    )
    return {"type": AGENT_REPLY, **reply, "timestamp": iso_now()}
