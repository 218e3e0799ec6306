"""Slipstream command-line client."""

from __future__ import annotations

import argparse
import asyncio
import json
import shlex
import subprocess
import sys
from dataclasses import dataclass

from . import __version__
from .config import SlipstreamSettings, get_settings
from .errors import LifecycleError
from .lifecycle import WorkerOrchestrator, WorkerProbe
from .lifecycle.probes import worker_url
from .logs import configure_logging
from .preferences import UserConfig, load_user_config
from .sessions import SessionBinder, display_name
from .state import StateStore

LEARN_PROMPT = "analyze recent activity and update skills"


@dataclass(slots=True)
class CliContext:
    settings: SlipstreamSettings
    preferences: UserConfig
    store: StateStore
    orchestrator: WorkerOrchestrator
    probe: WorkerProbe


def load_context(settings: SlipstreamSettings) -> CliContext:
    """Wire the store, probes and orchestrator from settings."""

    preferences = load_user_config(settings.user_config_file)
    store = StateStore.from_settings(settings)
    probe = WorkerProbe.from_settings(settings)
    orchestrator = WorkerOrchestrator(store, settings=settings, probe=probe)
    return CliContext(
        settings=settings,
        preferences=preferences,
        store=store,
        orchestrator=orchestrator,
        probe=probe,
    )


def _preferred_port(args: argparse.Namespace, ctx: CliContext) -> int:
    port = getattr(args, "port", None)
    return port if port is not None else ctx.preferences.daemon.port


def _ensure(ctx: CliContext, port: int) -> int | None:
    try:
        return asyncio.run(ctx.orchestrator.ensure_worker(port))
    except LifecycleError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return None


def build_attach_command(
    template: str,
    *,
    url: str,
    agent: str,
    prompt: str,
    session_id: str | None = None,
    model: str | None = None,
) -> list[str]:
    """Expand the attach command template and append the per-call options."""

    cmd = [part.format(url=url, agent=agent) for part in shlex.split(template)]
    if session_id:
        cmd.extend(["--session", session_id])
    if model:
        cmd.extend(["--model", model])
    cmd.append(prompt)
    return cmd


def cmd_run(args: argparse.Namespace) -> int:
    prompt = " ".join(args.prompt).strip()
    if not prompt:
        print('Usage: slip run "your prompt here"')
        return 2

    ctx = load_context(get_settings())
    port = _ensure(ctx, _preferred_port(args, ctx))
    if port is None:
        return 1

    session_id = None if args.new else SessionBinder(ctx.store).bind_current().session_id
    return _attach(
        ctx,
        port,
        prompt=prompt,
        agent=args.agent or ctx.preferences.agent,
        session_id=session_id,
        model=args.model or ctx.preferences.model,
    )


def cmd_learn(args: argparse.Namespace) -> int:
    ctx = load_context(get_settings())
    port = _ensure(ctx, _preferred_port(args, ctx))
    if port is None:
        return 1

    return _attach(
        ctx,
        port,
        prompt=" ".join(args.prompt).strip() or LEARN_PROMPT,
        agent=args.agent or ctx.preferences.learner_agent,
        session_id=SessionBinder(ctx.store).bind_current().session_id,
        model=ctx.preferences.model,
    )


def _attach(
    ctx: CliContext,
    port: int,
    *,
    prompt: str,
    agent: str,
    session_id: str | None,
    model: str | None,
) -> int:
    asyncio.run(ctx.probe.touch(port, session_id))
    cmd = build_attach_command(
        ctx.settings.attach_command,
        url=worker_url(port),
        agent=agent,
        prompt=prompt,
        session_id=session_id,
        model=model,
    )
    try:
        completed = subprocess.run(cmd)
    except OSError as exc:
        print(f"Error: failed to run '{cmd[0]}': {exc}", file=sys.stderr)
        return 127
    return completed.returncode


def cmd_server_start(args: argparse.Namespace) -> int:
    ctx = load_context(get_settings())
    port = _ensure(ctx, _preferred_port(args, ctx))
    if port is None:
        return 1
    print(f"✓ Worker ready on port {port}")
    return 0


def cmd_server_stop(args: argparse.Namespace) -> int:
    ctx = load_context(get_settings())
    outcome = asyncio.run(ctx.orchestrator.stop_worker())
    if outcome.method == "graceful":
        print(f"✓ Worker on port {outcome.port} stopped gracefully")
    elif outcome.method == "forced" and outcome.terminated:
        print(f"Worker on port {outcome.port} force-killed (pids: {_format_pids(outcome.terminated)})")
    elif outcome.method == "forced":
        print(
            f"Worker on port {outcome.port} did not accept dispose and no process matching "
            f"'{ctx.orchestrator.worker_match}' was found",
            file=sys.stderr,
        )
        return 1
    elif outcome.terminated:
        print(f"No tracked worker, killed stray worker processes (pids: {_format_pids(outcome.terminated)})")
    else:
        print("No tracked worker and no stray worker processes found")
    return 0


def _format_pids(pids: list[int]) -> str:
    return ", ".join(str(pid) for pid in pids)


def cmd_server_status(args: argparse.Namespace) -> int:
    ctx = load_context(get_settings())
    status = asyncio.run(ctx.orchestrator.status())
    if args.json:
        payload = {
            "record": status.record.to_json() if status.record else None,
            "healthy": status.healthy,
            "version": status.health.version if status.health else None,
        }
        print(json.dumps(payload, indent=2))
        return 0 if status.healthy else 1

    if status.record is None:
        print("No worker tracked")
        return 1
    if status.healthy:
        print(f"✓ Healthy on port {status.record.port} (v{status.health.version})")
        if status.record.started_at:
            print(f"  Started: {status.record.started_at.isoformat()}")
        if status.record.pid:
            print(f"  PID: {status.record.pid}")
        return 0
    print(f"✗ Worker on port {status.record.port} not responding")
    return 1


def cmd_server_restart(args: argparse.Namespace) -> int:
    ctx = load_context(get_settings())
    try:
        port = asyncio.run(ctx.orchestrator.restart_worker(_preferred_port(args, ctx)))
    except LifecycleError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"✓ Worker restarted on port {port}")
    return 0


def cmd_session_show(args: argparse.Namespace) -> int:
    ctx = load_context(get_settings())
    binding = SessionBinder(ctx.store).bind_current()
    if args.json:
        print(json.dumps({"terminal": binding.terminal_key, **binding.to_json()}, indent=2))
    else:
        print(binding.session_id)
    return 0


def cmd_session_list(args: argparse.Namespace) -> int:
    ctx = load_context(get_settings())
    bindings = SessionBinder(ctx.store).list_bindings()
    if args.json:
        print(json.dumps([{"terminal": item.terminal_key, **item.to_json()} for item in bindings], indent=2))
        return 0
    if not bindings:
        print("No slipstream sessions found")
        return 0
    for item in bindings:
        print(f"{display_name(item.session_id):<12} {item.updated_at.isoformat()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="slip", description="Terminal AI assistant backed by a warm worker")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log lifecycle decisions")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="Send a prompt through the worker")
    p_run.add_argument("prompt", nargs="*", help="Natural language prompt")
    p_run.add_argument("-n", "--new", action="store_true", help="Start a new session")
    p_run.add_argument("-a", "--agent", help="Agent to use")
    p_run.add_argument("-m", "--model", help="Model to use")
    p_run.add_argument("-p", "--port", type=int, help="Preferred worker port")
    p_run.set_defaults(func=cmd_run)

    p_learn = sub.add_parser("learn", help="Trigger background learning from recent activity")
    p_learn.add_argument("prompt", nargs="*", help="Override the learning prompt")
    p_learn.add_argument("-a", "--agent", help="Learner agent to use")
    p_learn.add_argument("-p", "--port", type=int, help="Preferred worker port")
    p_learn.set_defaults(func=cmd_learn)

    p_server = sub.add_parser("server", help="Manage the background worker")
    server_sub = p_server.add_subparsers(dest="server_cmd")

    p_start = server_sub.add_parser("start", help="Start the worker if it is not running")
    p_start.add_argument("-p", "--port", type=int)
    p_start.set_defaults(func=cmd_server_start)

    p_stop = server_sub.add_parser("stop", help="Stop the worker")
    p_stop.set_defaults(func=cmd_server_stop)

    p_status = server_sub.add_parser("status", help="Check worker health")
    p_status.add_argument("--json", action="store_true", help="Output JSON")
    p_status.set_defaults(func=cmd_server_status)

    p_restart = server_sub.add_parser("restart", help="Restart the worker")
    p_restart.add_argument("-p", "--port", type=int)
    p_restart.set_defaults(func=cmd_server_restart)

    p_session = sub.add_parser("session", help="Inspect terminal sessions")
    session_sub = p_session.add_subparsers(dest="session_cmd")

    p_show = session_sub.add_parser("show", help="Show the session bound to this terminal")
    p_show.add_argument("--json", action="store_true", help="Output JSON")
    p_show.set_defaults(func=cmd_session_show)

    p_list = session_sub.add_parser("list", help="List known terminal sessions")
    p_list.add_argument("--json", action="store_true", help="Output JSON")
    p_list.set_defaults(func=cmd_session_list)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    settings = get_settings()
    verbose = args.verbose or load_user_config(settings.user_config_file).ui.verbose
    level = "INFO" if verbose and settings.log_level not in {"DEBUG", "INFO"} else settings.log_level
    configure_logging(level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
