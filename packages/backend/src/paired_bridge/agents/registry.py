"""Specialist registry — who can answer, and which words send work their way.

Learn: Routing policy is data, not code. `routing_table()` returns the
ordered list of (agent_id, keywords) pairs and `match_by_keyword()` is a
single generic loop over it. Swapping the team or its keywords never
touches the dispatch engine, and tests can assert exact outcomes for
fixture strings.

Order: registration order, stable-sorted by descending priority. With the
built-in roster every profile has priority 0, so it is plain registration
order and the first profile with any matching keyword wins.
"""

from typing import Iterable, Optional

import structlog

from paired_bridge.schemas.agent import SpecialistProfile

logger = structlog.get_logger()


class RoutingConfigError(Exception):
    """Raised when routing could leave a request with no destination."""


# ═══════════════════════════════════════════════════════════
# Built-in roster
# ═══════════════════════════════════════════════════════════

DEFAULT_TEAM: list[dict] = [
    {"agent_id": "alex", "display_name": "Alex (PM)", "emoji": "👑",
     "role": "Global Primary Interface & Project Manager", "routing_keywords": []},
    {"agent_id": "sherlock", "display_name": "Sherlock (QA)", "emoji": "🕵️",
     "role": "Quality Detective",
     "routing_keywords": ["review", "test", "quality", "bug", "issue"]},
    {"agent_id": "leonardo", "display_name": "Leonardo (Architecture)", "emoji": "🏛️",
     "role": "System Architect",
     "routing_keywords": ["architecture", "design", "pattern", "structure"]},
    {"agent_id": "edison", "display_name": "Edison (Dev)", "emoji": "⚡",
     "role": "Problem Solver",
     "routing_keywords": ["code", "implement", "debug", "fix", "develop"]},
    {"agent_id": "maya", "display_name": "Maya (UX)", "emoji": "🎨",
     "role": "Experience Designer",
     "routing_keywords": ["ux", "user", "interface", "design", "experience"]},
    {"agent_id": "vince", "display_name": "Vince (Scrum Master)", "emoji": "🏈",
     "role": "Team Coach",
     "routing_keywords": ["sprint", "scrum", "process", "team", "ceremony"]},
    {"agent_id": "marie", "display_name": "Marie (Analyst)", "emoji": "🔬",
     "role": "Data Scientist",
     "routing_keywords": ["data", "analyze", "research", "metrics", "insights"]},
]


def default_team() -> list[SpecialistProfile]:
    return [SpecialistProfile(**entry) for entry in DEFAULT_TEAM]


# ═══════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════


class SpecialistRegistry:
    """Agent id → SpecialistProfile, plus the default coordinator."""

    def __init__(
        self,
        default_agent: Optional[str],
        profiles: Iterable[SpecialistProfile] = (),
    ):
        self.default_agent = (default_agent or "").strip().lower() or None
        self._profiles: dict[str, SpecialistProfile] = {}
        for profile in profiles:
            self.register(profile)

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, agent_id: object) -> bool:
        return isinstance(agent_id, str) and agent_id.lower() in self._profiles

    def register(self, profile: SpecialistProfile) -> None:
        """Insert or overwrite by agent id (last write wins)."""
        previous = self._profiles.get(profile.agent_id)
        self._profiles[profile.agent_id] = profile
        if previous is not None:
            logger.info(
                "specialists.overwritten",
                agent_id=profile.agent_id,
                previous=previous.label,
                current=profile.label,
            )
        else:
            logger.info("specialists.registered", agent_id=profile.agent_id, name=profile.label)

    def lookup(self, agent_id: Optional[str]) -> Optional[SpecialistProfile]:
        if not isinstance(agent_id, str) or not agent_id:
            return None
        return self._profiles.get(agent_id.strip().lower())

    def profiles(self) -> list[SpecialistProfile]:
        return list(self._profiles.values())

    def agent_ids(self) -> list[str]:
        return list(self._profiles)

    def routing_table(self) -> list[tuple[str, list[str]]]:
        """The ordered (agent_id, keywords) pairs `match_by_keyword` walks."""
        ordered = sorted(self._profiles.values(), key=lambda p: -p.priority)
        return [(p.agent_id, list(p.routing_keywords)) for p in ordered if p.routing_keywords]

    def match_by_keyword(self, text: str) -> str:
        """First agent whose keywords appear in `text`, else the default coordinator.

        Agents are tried in `routing_table()` order: registration order, except
        that a non-zero `priority` moves a profile ahead of (or behind) the
        priority-0 profiles registered before it.
        """
        if text:
            lowered = text.lower()
            for agent_id, keywords in self.routing_table():
                if any(keyword in lowered for keyword in keywords):
                    return agent_id
        if self.default_agent is None:
            raise RoutingConfigError("no keyword matched and no default agent is configured")
        return self.default_agent

    def validate(self) -> None:
        """Fail fast on a configuration that cannot route every request."""
        if self.default_agent is None:
            raise RoutingConfigError("a default coordinator agent must be configured")
        if self.default_agent not in self._profiles:
            raise RoutingConfigError(
                f"default coordinator {self.default_agent!r} is not a registered agent"
            )
