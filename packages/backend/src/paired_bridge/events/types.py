"""Envelope type constants.

Learn: Centralizing message kinds as constants prevents typos and makes it
easy to see the closed set of kinds the gateway understands. Some kinds
exist in two spellings because older clients send the upper-case form.
"""

# ─── Inbound: health + discovery ─────────────────────────

HEALTH_CHECK = "health_check"
HEALTH_CHECK_LEGACY = "HEALTH_CHECK"
AGENT_HEALTH = "AGENT_HEALTH"
GET_INSTANCES = "get_instances"
PROJECT_CONNECT = "PROJECT_CONNECT"

# ─── Inbound: conversation ───────────────────────────────

USER_REQUEST = "user_request"
AGENT_REQUEST_INBOUND = "agent_request"
AGENT_MESSAGE = "agent_message"
AGENT_MESSAGE_DIRECT = "AGENT_MESSAGE"
CONTEXT_SHARE = "context_share"

# ─── Inbound: specialist replies ─────────────────────────

AGENT_RESPONSE = "AGENT_RESPONSE"

# ─── Outbound ────────────────────────────────────────────

HEALTH_RESPONSE = "health_response"
AGENT_HEALTH_RESPONSE = "AGENT_HEALTH_RESPONSE"
INSTANCES_LIST = "instances_list"
PROJECT_CONNECTED = "PROJECT_CONNECTED"
CONTEXT_SHARED = "context_shared"
AGENT_REPLY = "agent_response"
AGENT_REQUEST = "AGENT_REQUEST"  # broadcast sub-request to specialists
ERROR = "ERROR"

# ─── Groupings used by the dispatch engine ───────────────

CONVERSATIONAL_KINDS = frozenset({
    USER_REQUEST,
    AGENT_REQUEST_INBOUND,
    AGENT_MESSAGE,
    AGENT_MESSAGE_DIRECT,
})
