"""PAIRED Bridge CLI — run the gateway and inspect a running one.

Usage:
    paired-bridge serve                                  # Run the gateway (takes over a running one)
    paired-bridge status                                 # Health, connections, sessions
    paired-bridge agents                                 # Routing table, in match order
    paired-bridge instances                              # Known instances and whether connected
    paired-bridge register-agent sherlock -k review      # Register/overwrite a specialist
    paired-bridge register-instance my-editor -p ~/code  # Announce an instance
    paired-bridge stop                                   # SIGTERM the lock-file owner
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import signal
import sys
from typing import Optional

import click
import httpx

from paired_bridge import __version__
from paired_bridge.config import settings

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _api_url() -> str:
    default = f"http://{settings.host}:{settings.port}"
    return os.environ.get("PAIRED_BRIDGE_URL", default).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the running gateway."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=10.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


async def _request(method: str, path: str, **kwargs) -> dict | list:
    async with _client() as client:
        resp = await client.request(method, path, **kwargs)
        resp.raise_for_status()
        return resp.json()


def _call(method: str, path: str, **kwargs) -> dict | list:
    """Synchronous API call with friendly errors."""
    try:
        return _run(_request(method, path, **kwargs))
    except httpx.ConnectError:
        click.secho(f"Error: no gateway reachable at {_api_url()}", fg="red", err=True)
        sys.exit(1)
    except httpx.HTTPStatusError as e:
        click.secho(
            f"Error: {e.response.status_code} {e.response.text}",
            fg="red",
            err=True,
        )
        sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="paired-bridge")
def main():
    """PAIRED Bridge — route editor requests to specialist agents."""


# ---------------------------------------------------------------------------
# paired-bridge serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--port", type=int, help="Preferred port (falls back upward if taken)")
@click.option("--host", help="Interface to bind")
def serve(port: Optional[int], host: Optional[str]):
    """Run the gateway in the foreground."""
    from paired_bridge.lifecycle import LifecycleManager, PortUnavailableError, configure_logging

    config = settings.model_copy(update={"host": host}) if host else settings
    configure_logging(config.log_level, config.resolved_log_file)

    try:
        code = LifecycleManager(config).run(port)
    except PortUnavailableError as e:
        click.secho(f"Error: {e.strerror}", fg="red", err=True)
        sys.exit(1)
    sys.exit(code)


# ---------------------------------------------------------------------------
# paired-bridge status
# ---------------------------------------------------------------------------


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def status(as_json: bool):
    """Show gateway health."""
    data = _call("GET", "/health")
    if as_json:
        click.echo(_pretty_json(data))
        return

    click.secho(f"{data.get('service', 'paired-bridge')} {data.get('version', '')}", bold=True)
    click.secho(f"  status:      {data.get('status')}", fg="green")
    click.echo(f"  connected:   {data.get('connectedInstances', 0)}")
    click.echo(f"  sessions:    {data.get('activeSessions', 0)}")
    click.echo(f"  specialists: {data.get('specialists', 0)}")
    click.echo(f"  pending:     {data.get('pendingRequests', 0)}")
    click.echo(f"  coordinator: {data.get('defaultAgent')}")


# ---------------------------------------------------------------------------
# paired-bridge agents / instances
# ---------------------------------------------------------------------------


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def agents(as_json: bool):
    """List registered agents in keyword-matching order."""
    data = _call("GET", "/agents")
    if as_json:
        click.echo(_pretty_json(data))
        return

    rows = [{**a, "keywords": ", ".join(a.get("routingKeywords", []))} for a in data]
    _print_table(rows, [
        ("AGENT", "agentId", 12),
        ("NAME", "displayName", 20),
        ("PRI", "priority", 4),
        ("KEYWORDS", "keywords", 50),
    ])


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def instances(as_json: bool):
    """List known instances."""
    data = _call("GET", "/instances")
    if as_json:
        click.echo(_pretty_json(data))
        return

    rows = [{**i, "active": "yes" if i.get("isActive") else "no"} for i in data["instances"]]
    _print_table(rows, [
        ("INSTANCE", "id", 36),
        ("ACTIVE", "active", 6),
        ("MSGS", "messageCount", 5),
        ("PROJECT", "projectPath", 40),
    ])
    click.echo(f"\n{data.get('totalActive', 0)} connected")


# ---------------------------------------------------------------------------
# paired-bridge register-agent / register-instance
# ---------------------------------------------------------------------------


@main.command("register-agent")
@click.argument("agent_id")
@click.option("--name", "-n", default="", help="Display name")
@click.option("--keyword", "-k", "keywords", multiple=True, help="Routing keyword (repeatable)")
@click.option("--priority", "-p", type=int, default=0, help="Higher is matched first")
@click.option("--emoji", default=None, help="Display emoji")
def register_agent(agent_id: str, name: str, keywords: tuple[str, ...],
                   priority: int, emoji: Optional[str]):
    """Register (or overwrite) a specialist on the running gateway."""
    body: dict = {
        "agentId": agent_id,
        "displayName": name,
        "routingKeywords": list(keywords),
        "priority": priority,
    }
    if emoji:
        body["emoji"] = emoji
    data = _call("POST", "/register-agent", json=body)
    click.secho(data.get("message", "registered"), fg="green")
    click.echo(f"  total agents: {data.get('totalAgents')}")


@main.command("register-instance")
@click.argument("instance_id")
@click.option("--project-path", "-p", default=None, help="Project directory")
def register_instance(instance_id: str, project_path: Optional[str]):
    """Announce an instance to the running gateway."""
    body = {"instanceId": instance_id, "projectPath": project_path}
    data = _call("POST", "/register-instance", json=body)
    click.secho(f"Registered {data.get('instanceId')}", fg="green")
    click.echo(f"  active sessions: {data.get('activeSessions')}")
    click.echo(f"  default agent:   {data.get('defaultAgent')}")


# ---------------------------------------------------------------------------
# paired-bridge stop
# ---------------------------------------------------------------------------


@main.command()
def stop():
    """Ask the gateway named in the lock file to shut down."""
    from paired_bridge.lifecycle import LifecycleManager

    manager = LifecycleManager(settings)
    pid = manager.read_lock()
    if pid is None:
        click.echo("No gateway lock file found.")
        return
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        settings.pid_file.unlink(missing_ok=True)
        click.echo(f"Process {pid} is not running; removed stale lock file.")
        return
    except PermissionError:
        click.secho(f"Error: not allowed to signal process {pid}", fg="red", err=True)
        sys.exit(1)
    click.secho(f"Sent SIGTERM to gateway (pid {pid})", fg="green")


if __name__ == "__main__":
    main()
