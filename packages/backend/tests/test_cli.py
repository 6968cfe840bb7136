"""CLI tests — commands run against an in-process gateway.

Learn: `_client()` is the single place the CLI builds its HTTP client, so
pointing it at an ASGITransport runs every command against the app without
a server or a port.
"""

import os
import signal
import subprocess
import sys

import httpx
import pytest
from click.testing import CliRunner

from paired_bridge.cli import main as cli
from paired_bridge.main import create_app


@pytest.fixture()
def runner(gateway, monkeypatch):
    app = create_app(gateway)

    def in_process_client():
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")

    monkeypatch.setattr(cli, "_client", in_process_client)
    return CliRunner()


def test_status(runner):
    result = runner.invoke(cli.main, ["status"])
    assert result.exit_code == 0, result.output
    assert "specialists: 7" in result.output
    assert "coordinator: alex" in result.output


def test_status_json(runner):
    result = runner.invoke(cli.main, ["status", "--json"])
    assert result.exit_code == 0
    assert '"service": "paired-bridge"' in result.output


def test_register_agent_then_list(runner, gateway):
    result = runner.invoke(cli.main, [
        "register-agent", "quinn", "--name", "Quinn", "-k", "security", "-k", "cve", "-p", "3",
    ])
    assert result.exit_code == 0, result.output
    assert "total agents: 8" in result.output
    assert gateway.specialists.lookup("quinn").routing_keywords == ["security", "cve"]

    result = runner.invoke(cli.main, ["agents"])
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0].startswith("AGENT")
    assert lines[2].startswith("quinn")


def test_register_instance_then_list(runner):
    result = runner.invoke(cli.main, ["register-instance", "editor-9", "-p", "/work/shop"])
    assert result.exit_code == 0, result.output
    assert "Registered editor-9" in result.output

    result = runner.invoke(cli.main, ["instances"])
    assert "editor-9" in result.output
    assert "0 connected" in result.output


def test_unreachable_gateway(monkeypatch):
    monkeypatch.setattr(
        cli, "_client",
        lambda: httpx.AsyncClient(base_url="http://127.0.0.1:9", timeout=1.0),
    )
    result = CliRunner().invoke(cli.main, ["status"])
    assert result.exit_code == 1


def test_stop_signals_lock_owner(settings, monkeypatch):
    monkeypatch.setattr(cli, "settings", settings)
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    try:
        settings.pid_file.write_text(str(proc.pid))
        result = CliRunner().invoke(cli.main, ["stop"])
        assert result.exit_code == 0
        assert proc.wait(timeout=5) == -signal.SIGTERM
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


def test_stop_without_lock(settings, monkeypatch):
    monkeypatch.setattr(cli, "settings", settings)
    result = CliRunner().invoke(cli.main, ["stop"])
    assert result.exit_code == 0
    assert "No gateway lock file" in result.output


def test_stop_removes_stale_lock(settings, monkeypatch):
    monkeypatch.setattr(cli, "settings", settings)
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    settings.pid_file.write_text(str(proc.pid))

    result = CliRunner().invoke(cli.main, ["stop"])
    assert result.exit_code == 0
    assert not os.path.exists(settings.pid_file)
