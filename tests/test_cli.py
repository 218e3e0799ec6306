from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from slipstream import cli
from slipstream.config import SlipstreamSettings
from slipstream.errors import StartupTimeoutError
from slipstream.lifecycle import HealthResult, StopOutcome, WorkerStatus
from slipstream.preferences import UserConfig
from slipstream.sessions import SessionBinder
from slipstream.state import StateStore, WorkerRecord


class StubOrchestrator:
    def __init__(self, *, port: int = 4096, error: Exception | None = None) -> None:
        self.port = port
        self.error = error
        self.ensure_calls: list[int] = []
        self.restart_calls: list[int] = []
        self.status_result = WorkerStatus(record=None, health=None)
        self.stop_result = StopOutcome(port=None, method="sweep")
        self.worker_match = "slipstream.worker"

    async def ensure_worker(self, preferred_port: int) -> int:
        self.ensure_calls.append(preferred_port)
        if self.error is not None:
            raise self.error
        return self.port

    async def restart_worker(self, port: int) -> int:
        self.restart_calls.append(port)
        if self.error is not None:
            raise self.error
        return self.port

    async def stop_worker(self) -> StopOutcome:
        return self.stop_result

    async def status(self) -> WorkerStatus:
        return self.status_result


class StubProbe:
    def __init__(self) -> None:
        self.touched: list[tuple[int, str | None]] = []

    async def touch(self, port: int, session_id: str | None) -> bool:
        self.touched.append((port, session_id))
        return True


@pytest.fixture
def context(monkeypatch, tmp_path: Path) -> cli.CliContext:
    settings = SlipstreamSettings(config_dir=tmp_path, attach_command="opencode run --attach {url} --agent {agent}")
    ctx = cli.CliContext(
        settings=settings,
        preferences=UserConfig(),
        store=StateStore.from_settings(settings),
        orchestrator=StubOrchestrator(),
        probe=StubProbe(),
    )
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    monkeypatch.setattr(cli, "load_context", lambda _settings: ctx)
    monkeypatch.setattr(cli, "SessionBinder", lambda store: SessionBinder(store, terminal_lookup=lambda: None))
    return ctx


def test_build_attach_command() -> None:
    cmd = cli.build_attach_command(
        "opencode run --attach {url} --agent {agent}",
        url="http://localhost:4096",
        agent="slipstream",
        prompt="list files",
        session_id="slip-_dev_pts_1",
        model="anthropic/claude-sonnet",
    )
    assert cmd == [
        "opencode",
        "run",
        "--attach",
        "http://localhost:4096",
        "--agent",
        "slipstream",
        "--session",
        "slip-_dev_pts_1",
        "--model",
        "anthropic/claude-sonnet",
        "list files",
    ]


def test_run_attaches_to_worker_with_bound_session(context, monkeypatch) -> None:
    launched: list[list[str]] = []

    class Completed:
        returncode = 0

    def fake_run(cmd):
        launched.append(cmd)
        return Completed()

    monkeypatch.setattr(cli.subprocess, "run", fake_run)

    assert cli.main(["run", "find", "large", "files"]) == 0

    expected_session = f"slip-pid-{os.getpid()}"
    assert context.orchestrator.ensure_calls == [4096]
    assert context.probe.touched == [(4096, expected_session)]
    assert launched[0][:6] == ["opencode", "run", "--attach", "http://localhost:4096", "--agent", "slipstream"]
    assert launched[0][-3:] == ["--session", expected_session, "find large files"]
    assert context.store.load_bindings() == {}


def test_run_new_session_skips_binding(context, monkeypatch) -> None:
    launched: list[list[str]] = []

    class Completed:
        returncode = 3

    monkeypatch.setattr(cli.subprocess, "run", lambda cmd: launched.append(cmd) or Completed())

    assert cli.main(["run", "--new", "--port", "5000", "hello"]) == 3
    assert context.orchestrator.ensure_calls == [5000]
    assert "--session" not in launched[0]
    assert context.store.load_bindings() == {}


def test_run_without_prompt_prints_usage(context, capsys) -> None:
    assert cli.main(["run"]) == 2
    assert "Usage" in capsys.readouterr().out
    assert context.orchestrator.ensure_calls == []


def test_run_reports_missing_attach_binary(context, monkeypatch, capsys) -> None:
    def fake_run(cmd):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(cli.subprocess, "run", fake_run)

    assert cli.main(["run", "hi"]) == 127
    assert "opencode" in capsys.readouterr().err


def test_learn_uses_learner_agent_and_default_prompt(context, monkeypatch) -> None:
    launched: list[list[str]] = []

    class Completed:
        returncode = 0

    monkeypatch.setattr(cli.subprocess, "run", lambda cmd: launched.append(cmd) or Completed())

    assert cli.main(["learn"]) == 0

    expected_session = f"slip-pid-{os.getpid()}"
    assert context.orchestrator.ensure_calls == [4096]
    assert context.probe.touched == [(4096, expected_session)]
    assert launched[0][4:6] == ["--agent", "slipstream/learner"]
    assert launched[0][-3:] == ["--session", expected_session, cli.LEARN_PROMPT]


def test_learn_accepts_agent_and_prompt_overrides(context, monkeypatch) -> None:
    launched: list[list[str]] = []
    context.preferences = UserConfig(model="anthropic/claude-sonnet")

    class Completed:
        returncode = 0

    monkeypatch.setattr(cli.subprocess, "run", lambda cmd: launched.append(cmd) or Completed())

    assert cli.main(["learn", "--agent", "curator", "review", "shell", "history"]) == 0
    assert launched[0][4:6] == ["--agent", "curator"]
    assert launched[0][-3:] == ["--model", "anthropic/claude-sonnet", "review shell history"]


def test_learn_stops_when_worker_fails(context, monkeypatch, capsys) -> None:
    context.orchestrator.error = StartupTimeoutError(4096, 10.0)
    monkeypatch.setattr(cli.subprocess, "run", lambda cmd: pytest.fail("attach should not run"))

    assert cli.main(["learn"]) == 1
    assert capsys.readouterr().err.startswith("Error: ")


def test_server_start_reports_startup_timeout(context, capsys) -> None:
    context.orchestrator.error = StartupTimeoutError(4096, 10.0)

    assert cli.main(["server", "start"]) == 1
    err = capsys.readouterr().err
    assert err.startswith("Error: ")
    assert "failed to become healthy" in err


def test_server_start_prints_port(context, capsys) -> None:
    context.orchestrator.port = 4097
    assert cli.main(["server", "start"]) == 0
    assert "4097" in capsys.readouterr().out


def test_server_status_json(context, capsys) -> None:
    started = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
    context.orchestrator.status_result = WorkerStatus(
        record=WorkerRecord(port=4096, pid=321, started_at=started),
        health=HealthResult(healthy=True, version="1.0.0"),
    )

    assert cli.main(["server", "status", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload == {
        "record": {"port": 4096, "pid": 321, "startedAt": "2024-05-01T09:00:00Z"},
        "healthy": True,
        "version": "1.0.0",
    }


def test_server_status_without_worker(context, capsys) -> None:
    assert cli.main(["server", "status"]) == 1
    assert "No worker tracked" in capsys.readouterr().out


def test_server_status_unhealthy(context, capsys) -> None:
    context.orchestrator.status_result = WorkerStatus(
        record=WorkerRecord(port=4096),
        health=HealthResult(healthy=False),
    )
    assert cli.main(["server", "status"]) == 1
    assert "not responding" in capsys.readouterr().out


def test_server_stop_messages(context, capsys) -> None:
    assert cli.main(["server", "stop"]) == 0
    assert "stray" in capsys.readouterr().out

    context.orchestrator.stop_result = StopOutcome(port=4096, method="graceful")
    assert cli.main(["server", "stop"]) == 0
    assert "stopped gracefully" in capsys.readouterr().out

    context.orchestrator.stop_result = StopOutcome(port=None, method="sweep", terminated=[812])
    assert cli.main(["server", "stop"]) == 0
    assert "812" in capsys.readouterr().out


def test_server_stop_reports_when_nothing_was_killed(context, capsys) -> None:
    context.orchestrator.stop_result = StopOutcome(port=4096, method="forced", terminated=[])
    assert cli.main(["server", "stop"]) == 1
    captured = capsys.readouterr()
    assert "force-killed" not in captured.out
    assert "no process matching 'slipstream.worker'" in captured.err

    context.orchestrator.stop_result = StopOutcome(port=4096, method="forced", terminated=[901])
    assert cli.main(["server", "stop"]) == 0
    assert "force-killed (pids: 901)" in capsys.readouterr().out


def test_server_restart_uses_preferred_port(context, capsys) -> None:
    assert cli.main(["server", "restart"]) == 0
    assert context.orchestrator.restart_calls == [4096]
    assert "restarted on port 4096" in capsys.readouterr().out


def test_session_show_and_list(context, monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli, "SessionBinder", lambda store: SessionBinder(store, terminal_lookup=lambda: "/dev/pts/7"))

    assert cli.main(["session", "show", "--json"]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown == {"terminal": "/dev/pts/7", "sessionId": "slip-_dev_pts_7", "updatedAt": shown["updatedAt"]}

    assert cli.main(["session", "list", "--json"]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert [item["sessionId"] for item in listed] == [shown["sessionId"]]


def test_session_list_empty(context, capsys) -> None:
    assert cli.main(["session", "list"]) == 0
    assert "No slipstream sessions found" in capsys.readouterr().out


def test_main_without_command_prints_help(capsys) -> None:
    assert cli.main([]) == 0
    assert "usage: slip" in capsys.readouterr().out
