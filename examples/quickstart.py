#!/usr/bin/env python3
"""
PAIRED Bridge Quickstart — the HTTP side channel in one script.

Checks health → registers a specialist → registers an instance →
routes two messages (one the coordinator answers, one it delegates).
Run with: python examples/quickstart.py

Requires: pip install httpx
Gateway must be running: paired-bridge serve  (http://127.0.0.1:7890)
"""

import sys

import httpx

BASE = "http://127.0.0.1:7890"


def main():
    client = httpx.Client(base_url=BASE, timeout=10)

    # ── Health check ──────────────────────────────────────────────
    print("Checking gateway health...")
    try:
        resp = client.get("/health")
    except httpx.ConnectError:
        print(f"Gateway not reachable at {BASE}")
        print("Start it with:  paired-bridge serve")
        sys.exit(1)
    health = resp.json()
    print(f"  Status:      {health['status']} (v{health['version']})")
    print(f"  Specialists: {health['specialists']}")
    print(f"  Connected:   {health['connectedInstances']}")

    # ── Register a specialist ─────────────────────────────────────
    print("\n1. Registering a security specialist...")
    resp = client.post("/register-agent", json={
        "agentId": "quinn",
        "displayName": "Quinn (Security)",
        "emoji": "🛡️",
        "routingKeywords": ["security", "vulnerability", "cve"],
        "priority": 10,
    })
    assert resp.status_code == 200, f"Failed: {resp.text}"
    print(f"   {resp.json()['message']} ({resp.json()['totalAgents']} agents)")

    # ── Routing table ─────────────────────────────────────────────
    print("\n2. Routing table (first match wins):")
    for agent in client.get("/agents").json():
        keywords = ", ".join(agent["routingKeywords"]) or "(default)"
        print(f"   {agent['agentId']:<10} p={agent['priority']:<3} {keywords}")

    # ── Register an instance ──────────────────────────────────────
    print("\n3. Registering this script as an instance...")
    resp = client.post("/register-instance", json={
        "instanceId": "quickstart",
        "projectPath": "/tmp/quickstart-project",
    })
    assert resp.status_code == 200, f"Failed: {resp.text}"
    print(f"   Default agent: {resp.json()['defaultAgent']}")

    # ── Route messages ────────────────────────────────────────────
    print("\n4. Routing messages...")
    for message in ("good morning", "is there a CVE in our deps?"):
        resp = client.post("/cascade-intercept", json={
            "instanceId": "quickstart",
            "message": message,
        }, timeout=30)
        reply = resp.json()
        print(f"   > {message}")
        print(f"     [{reply['status']}] {reply['response']}")
    print("\n   (Delegated messages time out unless a specialist is connected")
    print("    over the WebSocket and answers AGENT_REQUEST frames.)")

    # ── Instances ─────────────────────────────────────────────────
    print("\n5. Known instances:")
    for instance in client.get("/instances").json()["instances"]:
        state = "connected" if instance["isActive"] else "offline"
        print(f"   {instance['id']:<30} {state:<10} {instance['messageCount']} msgs")


if __name__ == "__main__":
    main()
