"""Instance registration API.

Learn: Editors that cannot keep a socket open (or want to announce their
project before connecting) register over HTTP. Registration creates the
session record if needed and records the project path; it does not count
as a message.
"""

import structlog
from fastapi import APIRouter, Depends

from paired_bridge.gateway import Gateway, get_gateway
from paired_bridge.schemas.session import InstanceRegistered, InstanceRegistration

logger = structlog.get_logger()
router = APIRouter()


@router.post(
    "/register-instance",
    response_model=InstanceRegistered,
    response_model_by_alias=True,
)
async def register_instance(
    body: InstanceRegistration,
    gateway: Gateway = Depends(get_gateway),
):
    """Acknowledge an instance and remember its project path."""
    gateway.sessions.ensure(body.instance_id, project_path=body.project_path)
    logger.info(
        "instances.registered",
        instance_id=body.instance_id,
        project_path=body.project_path,
        capabilities=body.capabilities,
    )
    return InstanceRegistered(
        instance_id=body.instance_id,
        active_sessions=len(gateway.sessions),
        default_agent=gateway.specialists.default_agent,
    )


@router.get("/instances")
async def list_instances(gateway: Gateway = Depends(get_gateway)):
    """All known sessions, flagged by whether a socket is currently open."""
    return {
        "instances": gateway.engine.list_instances(),
        "totalActive": gateway.connections.active_count,
    }
