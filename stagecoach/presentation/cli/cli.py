"""
CLI Module

Architectural Intent:
- Command-line interface for Stagecoach
- Entry point for all user interactions
- Delegates to application use cases via composition root
- Supports --verbose/--debug flags for log level control

Exit Codes:
- 0: plan completed
- 1: plan halted (fix the cause, then re-invoke)
- 2: paused for reboot (reboot the listed nodes, then re-invoke)
- 3: configuration, plan, persistence or unexpected error
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import signal
import sys
import traceback
from typing import Optional

from stagecoach.application.dtos.deployment_dtos import (
    DeploymentStatusResponse,
    RemoveNodeRequest,
    RunDeploymentRequest,
)
from stagecoach.domain.errors import ConfigError, StagecoachError
from stagecoach.infrastructure.config import load_config
from stagecoach.infrastructure.logging import configure_logging, parse_level

EXIT_ERROR = 3

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stagecoach",
        description="Stagecoach: resumable, reboot-aware staged deployments",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug output with tracebacks"
    )
    parser.add_argument(
        "--json-logs", action="store_true", help="Emit structured JSON log lines"
    )
    parser.add_argument(
        "--config", "-c", default=None, help="Path to stagecoach.json"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser(
        "run", help="Start or resume a deployment plan"
    )
    run_parser.add_argument("--plan", "-p", required=True, help="Path to the plan JSON")
    run_parser.add_argument(
        "--targets", "-t", default="", help="Comma-separated list of targets"
    )
    run_parser.add_argument(
        "--plan-id", default=None, help="Override the plan id (one state file per id)"
    )
    run_parser.add_argument(
        "--from-stage",
        default=None,
        help="Expected resume stage; refuse to run if the persisted state disagrees",
    )

    status_parser = subparsers.add_parser("status", help="Show persisted plan state")
    status_parser.add_argument("plan_id", help="Plan id")
    status_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    subparsers.add_parser("list", help="List plans with persisted state")

    remove_parser = subparsers.add_parser(
        "remove-node", help="Explicitly drop a node from a running plan"
    )
    remove_parser.add_argument("plan_id", help="Plan id")
    remove_parser.add_argument("node", help="Node id (host)")
    remove_parser.add_argument("--reason", "-r", required=True, help="Audit reason")

    cleanup_parser = subparsers.add_parser(
        "cleanup", help="Delete a plan's state file"
    )
    cleanup_parser.add_argument("plan_id", help="Plan id")
    cleanup_parser.add_argument(
        "--force", action="store_true", help="Delete even if the plan is unfinished"
    )

    history_parser = subparsers.add_parser("history", help="Show transition history")
    history_parser.add_argument("plan_id", nargs="?", default=None, help="Plan id")
    history_parser.add_argument(
        "--limit", "-n", type=int, default=100, help="Number of most recent entries to show"
    )

    dash_parser = subparsers.add_parser("dash", help="Launch the plan status dashboard")
    dash_parser.add_argument("plan_id", help="Plan id")
    dash_parser.add_argument(
        "--interval", "-i", type=float, default=5.0, help="Refresh interval in seconds"
    )

    return parser


def print_status(status: DeploymentStatusResponse) -> None:
    print(f"Plan:      {status.plan_id}")
    print(f"State:     {status.status}" + (f" ({status.status_reason})" if status.status_reason else ""))
    print(f"Current:   {status.current_stage_id or '-'}")
    print(f"Completed: {', '.join(status.completed_stage_ids) or '-'}")
    print(f"Nodes:     {', '.join(status.node_set)}")
    print(f"Updated:   {status.last_updated_at}")
    for stage_id, views in status.stages.items():
        print(f"  [{stage_id}]")
        for view in views:
            detail = f"  {view.detail}" if view.detail else ""
            print(f"    {view.node:<24} {view.outcome:<14} attempt {view.attempt}{detail}")
    if status.remediation:
        print("Remediation:")
        for node, stage_id in status.remediation.items():
            print(f"  {node} (failed {stage_id})")
    if status.removed_nodes:
        print(f"Removed:   {', '.join(status.removed_nodes)}")


async def _run(container, args) -> int:
    targets = [t.strip() for t in args.targets.split(",") if t.strip()]
    request = RunDeploymentRequest(
        plan_path=args.plan,
        targets=targets,
        plan_id=args.plan_id,
        resume_from=args.from_stage,
    )
    use_case = container.run_deployment

    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, use_case.request_abort)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.debug("Cannot install handler for %s on this platform", sig)

    try:
        print(f"[*] Running plan {args.plan}...")
        response = await use_case.execute(request)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)

    marker = "[+]" if response.exit_code == 0 else "[-]"
    print(f"{marker} {response.plan_id}: {response.state}")
    if response.instructions:
        print(f"[*] {response.instructions}")
    return response.exit_code


async def _dispatch(container, args) -> int:
    if args.command == "run":
        return await _run(container, args)

    if args.command == "status":
        status = container.inspect.status(args.plan_id)
        if args.json:
            print(json.dumps(dataclasses.asdict(status), indent=2))
        else:
            print_status(status)
        return 0

    if args.command == "list":
        plans = container.inspect.list_plans()
        if not plans:
            print("[*] No persisted plans.")
        for plan_id in plans:
            print(plan_id)
        return 0

    if args.command == "remove-node":
        state = container.remove_node.execute(
            RemoveNodeRequest(plan_id=args.plan_id, node_id=args.node, reason=args.reason)
        )
        print(f"[+] Removed {args.node}; remaining nodes: {', '.join(state.node_set)}")
        return 0

    if args.command == "cleanup":
        if container.inspect.cleanup(args.plan_id, force=args.force):
            print(f"[+] Deleted state for {args.plan_id}.")
        else:
            print(f"[*] No state for {args.plan_id}.")
        return 0

    if args.command == "history":
        if container.history is None:
            raise ConfigError("Transition history is disabled (history.db_path is empty)")
        for entry in container.history.get_history(args.plan_id, limit=args.limit):
            reason = f"  {entry['reason']}" if entry["reason"] else ""
            print(
                f"{entry['occurred_at']}  {entry['plan_id']}  "
                f"{entry['from_state']} -> {entry['to_state']}{reason}"
            )
        return 0

    if args.command == "dash":
        from stagecoach.presentation.tui.dashboard import Dashboard

        app = Dashboard(container.state_store, args.plan_id, refresh_interval=args.interval)
        await app.run_async()
        return 0

    return EXIT_ERROR


async def async_main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_ERROR

    verbose = args.verbose or args.debug
    container = None
    try:
        config = load_config(args.config)

        # Configure logging based on flags
        if args.debug:
            level = logging.DEBUG
        elif args.verbose:
            level = logging.INFO
        else:
            level = parse_level(config.log_level)
        configure_logging(level=level, json_format=args.json_logs)

        from stagecoach.composition_root import create_container

        container = create_container(config)
        return await _dispatch(container, args)
    except FileNotFoundError as e:
        print(f"[-] File not found: {e.filename or e}")
        return EXIT_ERROR
    except StagecoachError as e:
        print(f"[-] {type(e).__name__}: {e}")
        if verbose:
            traceback.print_exc()
        return EXIT_ERROR
    except Exception as e:
        print(f"[-] Unexpected error: {e}")
        if verbose:
            traceback.print_exc()
        return EXIT_ERROR
    finally:
        if container is not None:
            container.close()


def main():
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
