"""Dispatch engine — classify each envelope and decide who answers it.

Learn: Every inbound kind maps to exactly one handler in `_handlers`.
There are two families:

1. Conversational kinds (user_request, agent_request, AGENT_MESSAGE and
   untargeted agent_message). The request text is analysed; if the
   destination is the default coordinator the engine answers directly,
   otherwise it delegates through the correlator and waits. A caller
   always gets an answer: the specialist's, or a coordinator reply that
   says the delegation timed out.
2. Everything else (health probes, instance listing, project connect,
   context broadcast, specialist replies). These are direct and never
   touch the correlator.

Unknown kinds are logged and ignored; they never produce a reply.
"""

from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Protocol

import structlog

from paired_bridge.agents.registry import SpecialistRegistry
from paired_bridge.dispatch.correlator import DelegationTimeoutError, PendingRequestCorrelator
from paired_bridge.dispatch.heuristics import RequestAnalysis, analyze_request
from paired_bridge.events import types as kinds
from paired_bridge.schemas.agent import SpecialistProfile
from paired_bridge.schemas.envelope import Envelope, iso_now
from paired_bridge.sessions.store import SessionStore

logger = structlog.get_logger()


class Transport(Protocol):
    """What the engine needs from the connection registry."""

    @property
    def active_count(self) -> int: ...

    def instance_ids(self) -> list[str]: ...

    def is_connected(self, instance_id: str) -> bool: ...

    async def send(self, instance_id: str, message: dict[str, Any]) -> bool: ...


Handler = Callable[[Envelope], Awaitable[Optional[dict[str, Any]]]]


class DispatchEngine:
    def __init__(
        self,
        specialists: SpecialistRegistry,
        correlator: PendingRequestCorrelator,
        sessions: SessionStore,
        transport: Transport,
        response_timeout_ms: int = 5000,
    ):
        self.specialists = specialists
        self.correlator = correlator
        self.sessions = sessions
        self.transport = transport
        self.response_timeout_ms = response_timeout_ms

        self._handlers: dict[str, Handler] = {
            kinds.HEALTH_CHECK: self._on_health_check,
            kinds.HEALTH_CHECK_LEGACY: self._on_health_check,
            kinds.AGENT_HEALTH: self._on_agent_health,
            kinds.GET_INSTANCES: self._on_get_instances,
            kinds.PROJECT_CONNECT: self._on_project_connect,
            kinds.CONTEXT_SHARE: self._on_context_share,
            kinds.AGENT_RESPONSE: self._on_agent_response,
            kinds.USER_REQUEST: self._on_user_request,
            kinds.AGENT_REQUEST_INBOUND: self._on_agent_request,
            kinds.AGENT_MESSAGE_DIRECT: self._on_direct_agent_message,
            kinds.AGENT_MESSAGE: self._on_agent_message,
        }

    # ─── Classification ───────────────────────────────────

    def is_conversational(self, envelope: Envelope) -> bool:
        """True if handling may wait on a specialist."""
        if envelope.type == kinds.AGENT_MESSAGE and _opt_str(envelope.get("targetInstance")):
            return False
        return envelope.type in kinds.CONVERSATIONAL_KINDS

    async def handle(self, envelope: Envelope) -> Optional[dict[str, Any]]:
        """Process one envelope and return the reply for its sender, if any."""
        handler = self._handlers.get(envelope.type)
        if handler is None:
            logger.info(
                "dispatch.unknown_type",
                type=envelope.type,
                instance_id=envelope.instance_id,
            )
            return None
        return await handler(envelope)

    # ─── Conversation ─────────────────────────────────────

    async def converse(
        self,
        text: str,
        instance_id: str,
        project_path: Optional[str] = None,
        requested_agent: str = "",
    ) -> dict[str, Any]:
        """Route `text` and produce the reply body (without an envelope type)."""
        analysis = analyze_request(text, self.specialists, requested_agent)
        if project_path is None:
            session = self.sessions.get(instance_id)
            project_path = session.project_path if session else None
        context = f" in {Path(project_path).name}" if project_path else ""

        logger.info(
            "dispatch.routed",
            instance_id=instance_id,
            agent=analysis.primary_agent,
            explicit=analysis.explicit,
            team=analysis.requires_team,
        )
        if analysis.primary_agent == self.specialists.default_agent:
            return self._coordinator_answer(text, analysis, context)
        return await self._delegate(text, instance_id, analysis, context)

    def _coordinator(self) -> SpecialistProfile:
        profile = self.specialists.lookup(self.specialists.default_agent)
        if profile is None:
            return SpecialistProfile(agent_id=self.specialists.default_agent or "coordinator")
        return profile

    def _coordinator_answer(
        self, text: str, analysis: RequestAnalysis, context: str
    ) -> dict[str, Any]:
        coordinator = self._coordinator()
        if analysis.complex:
            body = (
                f"I'm analyzing this strategic request{context}. "
                "Let me coordinate the approach and resources needed."
            )
        elif analysis.requires_team:
            body = (
                f"I'll orchestrate the team for this request{context}. "
                "Coordinating with specialists now."
            )
        else:
            body = f"I'm coordinating this request{context}: \"{text}\""
        if analysis.urgent:
            body = f"Treating this as urgent. {body}"

        return {
            "agent": coordinator.agent_id,
            "name": coordinator.label,
            "emoji": coordinator.emoji,
            "response": f"{coordinator.emoji} {coordinator.label}: {body}",
            "status": "direct",
            "delegated": False,
            "urgent": analysis.urgent,
            "complexity": "high" if analysis.complex else "medium",
        }

    async def _delegate(
        self, text: str, instance_id: str, analysis: RequestAnalysis, context: str
    ) -> dict[str, Any]:
        coordinator = self._coordinator()
        specialist = self.specialists.lookup(analysis.primary_agent)
        if specialist is None:
            specialist = SpecialistProfile(agent_id=analysis.primary_agent)

        future = await self.correlator.dispatch(
            specialist.agent_id,
            {
                "agentId": specialist.agent_id,
                "message": text,
                "sourceInstance": instance_id,
            },
            self.response_timeout_ms,
        )
        try:
            reply = await future
        except DelegationTimeoutError as e:
            logger.warning(
                "dispatch.delegation_timeout",
                instance_id=instance_id,
                agent=specialist.agent_id,
                request_id=e.request_id,
            )
            return {
                "agent": coordinator.agent_id,
                "name": coordinator.label,
                "emoji": coordinator.emoji,
                "targetAgent": specialist.agent_id,
                "delegationId": e.request_id,
                "response": (
                    f"{coordinator.emoji} {coordinator.label}: I tried to delegate this to "
                    f"{specialist.label}{context}, but they did not respond within "
                    f"{e.timeout_ms}ms. Delegation failed, so I'll handle it directly."
                ),
                "status": "timeout",
                "timedOut": True,
                "delegated": False,
            }

        answer = _answer_text(reply) or f"{specialist.emoji} {specialist.label}: Processing your request..."
        return {
            "agent": specialist.agent_id,
            "name": specialist.label,
            "emoji": specialist.emoji,
            "preface": (
                f"{coordinator.emoji} {coordinator.label}: "
                f"I'm delegating this to {specialist.label}{context}."
            ),
            "response": answer,
            "coordinator": coordinator.agent_id,
            "delegationId": reply.get("requestId"),
            "status": "ok",
            "delegated": True,
        }

    async def _on_user_request(self, envelope: Envelope) -> dict[str, Any]:
        body = await self.converse(
            envelope.text("originalMessage", "message", "content"),
            envelope.instance_id,
            project_path=_opt_str(envelope.get("projectPath")),
            requested_agent=_opt_str(envelope.get("requestedAgent")) or "",
        )
        return _reply(kinds.AGENT_REPLY, body, envelope)

    async def _on_agent_request(self, envelope: Envelope) -> dict[str, Any]:
        body = await self.converse(
            envelope.text("message", "originalMessage", "content"),
            envelope.instance_id,
            project_path=_opt_str(envelope.get("projectPath")),
            requested_agent=_opt_str(envelope.get("agentName")) or "",
        )
        return _reply(kinds.AGENT_REPLY, body, envelope)

    async def _on_direct_agent_message(self, envelope: Envelope) -> dict[str, Any]:
        body = await self.converse(
            envelope.text("message", "content"),
            envelope.instance_id,
            requested_agent=_opt_str(envelope.get("agent")) or "",
        )
        body["message"] = body["response"]
        return _reply(kinds.AGENT_RESPONSE, body, envelope)

    async def _on_agent_message(self, envelope: Envelope) -> Optional[dict[str, Any]]:
        target = _opt_str(envelope.get("targetInstance"))
        if target:
            relayed = {
                **envelope.payload,
                "type": kinds.AGENT_MESSAGE,
                "source": envelope.instance_id,
                "timestamp": iso_now(),
            }
            delivered = await self.transport.send(target, relayed)
            logger.info(
                "dispatch.relayed",
                source=envelope.instance_id,
                target=target,
                delivered=delivered,
            )
            return None

        body = await self.converse(
            envelope.text("message", "content"),
            envelope.instance_id,
            project_path=_opt_str(envelope.get("projectPath")),
            requested_agent=_opt_str(envelope.get("agent")) or "",
        )
        return _reply(kinds.AGENT_REPLY, body, envelope)

    # ─── Direct kinds ─────────────────────────────────────

    async def _on_health_check(self, envelope: Envelope) -> dict[str, Any]:
        return {
            "type": kinds.HEALTH_RESPONSE,
            "status": "healthy",
            "bridge": "running",
            "agents": len(self.specialists),
            "connections": self.transport.active_count,
            "timestamp": iso_now(),
        }

    async def _on_agent_health(self, envelope: Envelope) -> dict[str, Any]:
        return {
            "type": kinds.AGENT_HEALTH_RESPONSE,
            "status": "healthy",
            "agents": self.specialists.agent_ids(),
            "timestamp": iso_now(),
        }

    async def _on_get_instances(self, envelope: Envelope) -> dict[str, Any]:
        return {
            "type": kinds.INSTANCES_LIST,
            "instances": self.list_instances(),
            "totalActive": self.transport.active_count,
        }

    def list_instances(self) -> list[dict[str, Any]]:
        return [
            {
                "id": record.instance_id,
                "projectPath": record.project_path or "Unknown",
                "lastActivity": record.last_activity.isoformat(),
                "messageCount": record.message_count,
                "isActive": self.transport.is_connected(record.instance_id),
            }
            for record in self.sessions.records()
        ]

    async def _on_project_connect(self, envelope: Envelope) -> dict[str, Any]:
        project = envelope.get("project")
        if not isinstance(project, dict) or not (project.get("path") or project.get("name")):
            logger.warning("dispatch.project_connect_invalid", instance_id=envelope.instance_id)
            return {
                "type": kinds.ERROR,
                "message": "Failed to connect project",
                "error": "PROJECT_CONNECT requires a project object with a path or name",
                "timestamp": iso_now(),
            }

        self.sessions.ensure(
            envelope.instance_id,
            project_path=_opt_str(project.get("path")),
            project_name=_opt_str(project.get("name")),
        )
        logger.info(
            "dispatch.project_connected",
            instance_id=envelope.instance_id,
            project=project.get("name") or project.get("path"),
        )
        return {
            "type": kinds.PROJECT_CONNECTED,
            "project": project,
            "instanceId": envelope.instance_id,
            "timestamp": iso_now(),
        }

    async def _on_context_share(self, envelope: Envelope) -> None:
        targets = envelope.get("targetInstances")
        if isinstance(targets, list):
            targets = [t for t in targets if isinstance(t, str)]
        else:
            targets = self.transport.instance_ids()

        message = {
            "type": kinds.CONTEXT_SHARED,
            "source": envelope.instance_id,
            "context": envelope.get("context"),
            "timestamp": iso_now(),
        }
        shared = 0
        for target in targets:
            if target != envelope.instance_id and await self.transport.send(target, message):
                shared += 1
        logger.info("dispatch.context_shared", source=envelope.instance_id, shared=shared)
        return None

    async def _on_agent_response(self, envelope: Envelope) -> None:
        self.correlator.resolve(envelope.get("requestId"), envelope.payload)
        return None


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _answer_text(reply: dict[str, Any]) -> str:
    for key in ("response", "content", "message"):
        value = reply.get(key)
        if isinstance(value, dict):
            value = value.get("content") or value.get("response")
        if value:
            return value if isinstance(value, str) else str(value)
    return ""


def _reply(kind: str, body: dict[str, Any], envelope: Envelope) -> dict[str, Any]:
    reply = {"type": kind, **body, "timestamp": iso_now()}
    if envelope.get("requestId"):
        reply["requestId"] = envelope.get("requestId")
    return reply
