"""Specialist registration API.

Learn: Registration is last-write-wins by agent id. The routing table
endpoint returns the exact ordered list the keyword matcher walks, so a
client can predict where a message will go.
"""

from fastapi import APIRouter, Depends

from paired_bridge.gateway import Gateway, get_gateway
from paired_bridge.schemas.agent import AgentRegistered, RoutingEntry, SpecialistProfile

router = APIRouter()


@router.post("/register-agent", response_model=AgentRegistered, response_model_by_alias=True)
async def register_agent(
    profile: SpecialistProfile,
    gateway: Gateway = Depends(get_gateway),
):
    """Register (or re-register) a specialist profile."""
    gateway.specialists.register(profile)
    return AgentRegistered(
        message=f"Agent {profile.label} registered successfully",
        total_agents=len(gateway.specialists),
    )


@router.get("/agents", response_model=list[RoutingEntry], response_model_by_alias=True)
async def list_agents(gateway: Gateway = Depends(get_gateway)):
    """Every registered agent, in keyword-matching order."""
    order = {agent_id: i for i, (agent_id, _) in enumerate(gateway.specialists.routing_table())}
    profiles = sorted(
        gateway.specialists.profiles(),
        key=lambda p: order.get(p.agent_id, len(order)),
    )
    return [
        RoutingEntry(
            agent_id=p.agent_id,
            display_name=p.label,
            routing_keywords=list(p.routing_keywords),
            priority=p.priority,
        )
        for p in profiles
    ]
