"""Request analysis — cheap keyword heuristics over the request text.

Learn: Only `primary_agent` decides where a request goes. Team, complexity
and urgency flags change how the coordinator frames its answer, never the
destination.
"""

from dataclasses import dataclass

from paired_bridge.agents.registry import SpecialistRegistry

TEAM_TRIGGERS = (
    "team",
    "agents",
    "everyone",
    "all of you",
    "what do you think",
    "review this",
    "analyze this",
    "help me with",
    "work on this",
)

COMPLEXITY_INDICATORS = ("architecture", "system", "design", "multiple", "complex")

URGENCY_INDICATORS = ("urgent", "asap", "immediately", "critical", "emergency")


def _contains_any(text: str, needles: tuple[str, ...]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(needle in lowered for needle in needles)


def detects_team_request(text: str) -> bool:
    return _contains_any(text, TEAM_TRIGGERS)


def assess_complexity(text: str) -> bool:
    return _contains_any(text, COMPLEXITY_INDICATORS)


def assess_urgency(text: str) -> bool:
    return _contains_any(text, URGENCY_INDICATORS)


@dataclass(frozen=True)
class RequestAnalysis:
    primary_agent: str
    requires_team: bool
    complex: bool
    urgent: bool
    explicit: bool  # caller named the agent


def analyze_request(
    text: str,
    registry: SpecialistRegistry,
    requested_agent: str = "",
) -> RequestAnalysis:
    """Pick the destination agent and the framing flags for `text`.

    A registered agent named by the caller wins over the keyword match.
    """
    explicit = registry.lookup(requested_agent)
    primary = explicit.agent_id if explicit else registry.match_by_keyword(text)
    return RequestAnalysis(
        primary_agent=primary,
        requires_team=detects_team_request(text),
        complex=assess_complexity(text),
        urgent=assess_urgency(text),
        explicit=explicit is not None,
    )
