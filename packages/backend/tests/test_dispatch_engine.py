"""Dispatch engine tests — classification, direct kinds, delegation.

Learn: The engine only needs four things from the connection layer, so a
FakeTransport stands in for real sockets. A specialist is simulated by a
broadcast hook that answers the AGENT_REQUEST through `engine.handle`,
exactly as a connected responder's AGENT_RESPONSE frame would.
"""

import asyncio

import pytest

from paired_bridge.agents.registry import SpecialistRegistry, default_team
from paired_bridge.dispatch.correlator import PendingRequestCorrelator
from paired_bridge.dispatch.engine import DispatchEngine
from paired_bridge.schemas.envelope import Envelope
from paired_bridge.sessions.store import SessionStore


class FakeTransport:
    def __init__(self, connected=()):
        self.connected = list(connected)
        self.sent = []

    @property
    def active_count(self):
        return len(self.connected)

    def instance_ids(self):
        return list(self.connected)

    def is_connected(self, instance_id):
        return instance_id in self.connected

    async def send(self, instance_id, message):
        if instance_id not in self.connected:
            return False
        self.sent.append((instance_id, message))
        return True


class Specialist:
    """Answers every AGENT_REQUEST it sees, after `delay` seconds."""

    def __init__(self, answer="On it.", delay=0.0):
        self.answer = answer
        self.delay = delay
        self.requests = []
        self.engine = None

    async def __call__(self, message):
        self.requests.append(message)
        if self.answer is not None:
            asyncio.get_running_loop().create_task(self._reply(message))
        return 1

    async def _reply(self, message):
        await asyncio.sleep(self.delay)
        await self.engine.handle(
            _env("AGENT_RESPONSE", "specialist", requestId=message["requestId"], response=self.answer)
        )


def _env(kind, instance_id="editor", **payload):
    return Envelope(type=kind, instance_id=instance_id, payload=payload)


def _build(specialist=None, transport=None, timeout_ms=1000):
    specialist = specialist or Specialist()
    registry = SpecialistRegistry("alex", default_team())
    sessions = SessionStore()
    transport = transport or FakeTransport(["editor"])
    correlator = PendingRequestCorrelator(specialist, default_timeout_ms=timeout_ms)
    engine = DispatchEngine(registry, correlator, sessions, transport, response_timeout_ms=timeout_ms)
    specialist.engine = engine
    return engine, specialist, transport


# ═══════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════


def test_conversational_kinds():
    engine, _, _ = _build()
    assert engine.is_conversational(_env("user_request"))
    assert engine.is_conversational(_env("agent_request"))
    assert engine.is_conversational(_env("AGENT_MESSAGE"))
    assert engine.is_conversational(_env("agent_message", message="hi"))
    assert not engine.is_conversational(_env("agent_message", targetInstance="other"))
    assert not engine.is_conversational(_env("health_check"))
    assert not engine.is_conversational(_env("AGENT_RESPONSE"))


@pytest.mark.asyncio
async def test_unknown_kind_is_ignored():
    engine, specialist, transport = _build()
    assert await engine.handle(_env("no_such_kind", message="review")) is None
    assert specialist.requests == []
    assert transport.sent == []


# ═══════════════════════════════════════════════════════════
# Conversational routing
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_coordinator_answers_directly():
    engine, specialist, _ = _build()
    reply = await engine.handle(_env("user_request", originalMessage="good morning", requestId="r1"))

    assert reply["type"] == "agent_response"
    assert reply["agent"] == "alex"
    assert reply["status"] == "direct"
    assert reply["delegated"] is False
    assert reply["requestId"] == "r1"
    assert reply["response"].startswith("👑 Alex (PM): ")
    assert specialist.requests == []


@pytest.mark.asyncio
async def test_delegation_returns_specialist_answer():
    engine, specialist, _ = _build(Specialist(answer="Found two bugs."))
    reply = await engine.handle(_env("user_request", originalMessage="please review this"))

    [request] = specialist.requests
    assert request["targetAgent"] == "sherlock"
    assert request["message"] == "please review this"
    assert request["sourceInstance"] == "editor"

    assert reply["type"] == "agent_response"
    assert reply["agent"] == "sherlock"
    assert reply["status"] == "ok"
    assert reply["delegated"] is True
    assert reply["response"] == "Found two bugs."
    assert reply["delegationId"] == request["requestId"]
    assert "Sherlock (QA)" in reply["preface"]
    assert len(engine.correlator) == 0


@pytest.mark.asyncio
async def test_delegation_timeout_is_labelled():
    engine, specialist, _ = _build(Specialist(answer=None), timeout_ms=50)
    reply = await engine.handle(_env("user_request", originalMessage="please review this"))

    assert reply["type"] == "agent_response"
    assert reply["status"] == "timeout"
    assert reply["timedOut"] is True
    assert reply["agent"] == "alex"
    assert reply["targetAgent"] == "sherlock"
    assert "Delegation failed" in reply["response"]
    assert len(engine.correlator) == 0


@pytest.mark.asyncio
async def test_requested_agent_overrides_keywords():
    engine, specialist, _ = _build()
    await engine.handle(
        _env("user_request", originalMessage="please review this", requestedAgent="edison")
    )
    assert specialist.requests[0]["targetAgent"] == "edison"


@pytest.mark.asyncio
async def test_direct_agent_message_replies_in_kind():
    engine, specialist, _ = _build(Specialist(answer="Sprint looks fine."))
    reply = await engine.handle(_env("AGENT_MESSAGE", message="status?", agent="vince"))

    assert reply["type"] == "AGENT_RESPONSE"
    assert reply["agent"] == "vince"
    assert reply["message"] == "Sprint looks fine."


@pytest.mark.asyncio
async def test_project_path_frames_coordinator_answer():
    engine, _, _ = _build()
    engine.sessions.ensure("editor", project_path="/home/dev/shop-api")
    reply = await engine.handle(_env("agent_request", message="hello"))
    assert "in shop-api" in reply["response"]


# ═══════════════════════════════════════════════════════════
# Direct kinds
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_health_kinds():
    engine, _, _ = _build()
    for kind in ("health_check", "HEALTH_CHECK"):
        reply = await engine.handle(_env(kind))
        assert reply["type"] == "health_response"
        assert reply["status"] == "healthy"
        assert reply["agents"] == 7
        assert reply["connections"] == 1

    reply = await engine.handle(_env("AGENT_HEALTH"))
    assert reply["type"] == "AGENT_HEALTH_RESPONSE"
    assert "sherlock" in reply["agents"]


@pytest.mark.asyncio
async def test_get_instances_flags_connected():
    engine, _, _ = _build(transport=FakeTransport(["editor"]))
    engine.sessions.touch("editor", project_path="/p")
    engine.sessions.touch("gone")

    reply = await engine.handle(_env("get_instances"))
    by_id = {i["id"]: i for i in reply["instances"]}

    assert reply["type"] == "instances_list"
    assert by_id["editor"]["isActive"] is True
    assert by_id["editor"]["projectPath"] == "/p"
    assert by_id["gone"]["isActive"] is False
    assert by_id["gone"]["projectPath"] == "Unknown"


@pytest.mark.asyncio
async def test_project_connect_records_project():
    engine, _, _ = _build()
    reply = await engine.handle(
        _env("PROJECT_CONNECT", project={"name": "shop", "path": "/work/shop"})
    )

    assert reply["type"] == "PROJECT_CONNECTED"
    assert reply["instanceId"] == "editor"
    record = engine.sessions.get("editor")
    assert record.project_path == "/work/shop"
    assert record.project_name == "shop"


@pytest.mark.asyncio
async def test_project_connect_without_project_is_error():
    engine, _, _ = _build()
    reply = await engine.handle(_env("PROJECT_CONNECT"))
    assert reply["type"] == "ERROR"


@pytest.mark.asyncio
async def test_context_share_skips_source():
    transport = FakeTransport(["editor", "b", "c"])
    engine, _, _ = _build(transport=transport)

    reply = await engine.handle(_env("context_share", context={"file": "main.py"}))

    assert reply is None
    assert sorted(target for target, _ in transport.sent) == ["b", "c"]
    assert transport.sent[0][1]["type"] == "context_shared"
    assert transport.sent[0][1]["source"] == "editor"


@pytest.mark.asyncio
async def test_context_share_to_named_targets():
    transport = FakeTransport(["editor", "b", "c"])
    engine, _, _ = _build(transport=transport)
    await engine.handle(_env("context_share", context={}, targetInstances=["c", "missing"]))
    assert [target for target, _ in transport.sent] == ["c"]


@pytest.mark.asyncio
async def test_targeted_agent_message_is_relayed():
    transport = FakeTransport(["editor", "peer"])
    engine, specialist, _ = _build(transport=transport)

    reply = await engine.handle(_env("agent_message", targetInstance="peer", message="ping"))

    assert reply is None
    [(target, message)] = transport.sent
    assert target == "peer"
    assert message["type"] == "agent_message"
    assert message["source"] == "editor"
    assert message["message"] == "ping"
    assert specialist.requests == []


@pytest.mark.asyncio
async def test_odd_field_types_are_tolerated():
    """Non-string ids and paths from a sloppy client are ignored, not fatal."""
    transport = FakeTransport(["editor", "b"])
    engine, specialist, _ = _build(transport=transport)

    reply = await engine.handle(
        _env("user_request", originalMessage="good morning", requestedAgent=["x"], projectPath=7)
    )
    assert reply["agent"] == "alex"

    assert await engine.handle(_env("context_share", context={}, targetInstances=[{"id": "b"}, "b"])) is None
    assert [target for target, _ in transport.sent] == ["b"]

    assert await engine.handle(_env("AGENT_RESPONSE", requestId=["not", "hashable"])) is None
