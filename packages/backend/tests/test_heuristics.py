"""Request analysis tests."""

from paired_bridge.agents.registry import SpecialistRegistry, default_team
from paired_bridge.dispatch.heuristics import (
    analyze_request,
    assess_complexity,
    assess_urgency,
    detects_team_request,
)


def test_team_triggers():
    assert detects_team_request("What do you think about this?")
    assert detects_team_request("can the TEAM look")
    assert not detects_team_request("rename the variable")
    assert not detects_team_request("")


def test_complexity_and_urgency():
    assert assess_complexity("a complex migration")
    assert not assess_complexity("typo")
    assert assess_urgency("Need this ASAP")
    assert not assess_urgency("whenever")


def test_analysis_uses_keyword_match():
    registry = SpecialistRegistry("alex", default_team())
    analysis = analyze_request("urgent: fix the crash", registry)
    assert analysis.primary_agent == "edison"
    assert analysis.urgent
    assert not analysis.explicit


def test_named_agent_overrides_keywords():
    registry = SpecialistRegistry("alex", default_team())
    analysis = analyze_request("please review this", registry, requested_agent="Marie")
    assert analysis.primary_agent == "marie"
    assert analysis.explicit
    assert analysis.requires_team


def test_unknown_named_agent_is_ignored():
    registry = SpecialistRegistry("alex", default_team())
    analysis = analyze_request("please review this", registry, requested_agent="nobody")
    assert analysis.primary_agent == "sherlock"
    assert not analysis.explicit
