"""Pydantic schemas for specialist profiles.

Learn: A profile is immutable once built. Changing a specialist means
registering a new profile under the same agent id (last write wins).
`agentName` is accepted as an alias of `displayName` because that is
what older registration clients send.
"""

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


class SpecialistProfile(BaseModel):
    agent_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("agentId", "agent_id"),
    )
    display_name: str = Field(
        "",
        validation_alias=AliasChoices("displayName", "agentName", "display_name"),
    )
    routing_keywords: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("routingKeywords", "keywords", "routing_keywords"),
    )
    priority: int = 0
    emoji: str = "🤖"
    role: str = ""

    model_config = {"alias_generator": to_camel, "populate_by_name": True, "frozen": True}

    @field_validator("agent_id")
    @classmethod
    def normalize_agent_id(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("agentId must not be blank")
        return v

    @field_validator("routing_keywords")
    @classmethod
    def normalize_keywords(cls, v: list[str]) -> list[str]:
        return [k.strip().lower() for k in v if k and k.strip()]

    @property
    def label(self) -> str:
        return self.display_name or self.agent_id


class AgentRegistered(BaseModel):
    success: bool = True
    message: str
    total_agents: int

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class RoutingEntry(BaseModel):
    agent_id: str
    display_name: str
    routing_keywords: list[str]
    priority: int

    model_config = {"alias_generator": to_camel, "populate_by_name": True}
