"""Health check endpoints.

Learn: /health is the liveness probe used by the startup scripts and the
`paired-bridge status` command. It reports live connection and session
counts straight from the gateway's in-memory state.
"""

from fastapi import APIRouter, Depends

from paired_bridge.gateway import Gateway, get_gateway
from paired_bridge.schemas.envelope import iso_now

router = APIRouter()


@router.get("/health")
async def health_check(gateway: Gateway = Depends(get_gateway)):
    """Report gateway liveness and connection/session counts."""
    return gateway.health()


@router.get("/test-relay")
async def test_relay(gateway: Gateway = Depends(get_gateway)):
    """Confirm the relay chain is wired: coordinator registered, specialists loaded."""
    coordinator = gateway.specialists.lookup(gateway.specialists.default_agent)
    return {
        "status": "success",
        "message": "Relay chain operational",
        "coordinatorActive": coordinator is not None,
        "teamAgents": len(gateway.specialists) - (1 if coordinator else 0),
        "timestamp": iso_now(),
    }
