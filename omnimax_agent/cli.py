"""Command-line interface for the assistant."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from omnimax_agent.config.settings import SettingsError, load_settings, validate_settings
from omnimax_agent.orchestration.orchestrator import (
    AssistantService,
    Orchestrator,
    OrchestratorConfig,
)
from omnimax_agent.orchestration.workflow import WorkflowNodes, generate_workflow_diagram

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="omnimax-agent", description="Omni Max assistant CLI")
    parser.add_argument("--config", type=str, help="Path to settings file")
    parser.add_argument("--env-file", type=str, help="Path to .env file")
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("LOG_LEVEL", "WARNING"),
        help="Logging level (default: LOG_LEVEL or WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    ask = subparsers.add_parser("ask", help="Ask the assistant about a session")
    ask.add_argument("query", type=str, help="Question for the assistant")
    ask.add_argument("--protocol", required=True, help="Protocol number")
    ask.add_argument("--attendance", required=True, help="Active attendance (session) id")
    ask.add_argument("--contact", required=True, help="Customer contact id")
    ask.add_argument("--base-url", required=True, help="Host platform base URL")
    ask.add_argument("--persona", default=None, help="Persona id")

    history = subparsers.add_parser("history", help="List checkpoints of a thread")
    history.add_argument("thread_id", type=str, help="Thread id ({protocol}:{attendance})")
    history.add_argument("--limit", type=int, default=None, help="Maximum entries")

    clear = subparsers.add_parser("clear", help="Delete all checkpoints of a thread")
    clear.add_argument("thread_id", type=str, help="Thread id ({protocol}:{attendance})")

    diagram = subparsers.add_parser("diagram", help="Print the workflow diagram")
    diagram.add_argument("--output", type=str, default=None, help="File to save the diagram to")

    validate = subparsers.add_parser("validate-config", help="Validate a settings file")
    validate.add_argument("path", type=str, help="Settings file to validate")

    return parser.parse_args(argv)


async def _ask(args: argparse.Namespace, service: AssistantService) -> str:
    return await service.handle(
        {
            "query": args.query,
            "personaId": args.persona,
            "sessionContext": {
                "protocolNumber": args.protocol,
                "attendanceId": args.attendance,
                "contactId": args.contact,
                "baseUrl": args.base_url,
            },
        }
    )


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "diagram":
        print(generate_workflow_diagram(Path(args.output) if args.output else None))
        return 0

    if args.command == "validate-config":
        path = Path(args.path).expanduser()
        try:
            settings = validate_settings(path)
        except SettingsError as e:
            print(f"Invalid config: {e}", file=sys.stderr)
            return 1
        print(f"Config validated: {path} ({len(settings.personas)} personas)")
        return 0

    try:
        settings = load_settings(
            Path(args.config).expanduser() if args.config else None,
            env_file=Path(args.env_file).expanduser() if args.env_file else None,
        )
    except SettingsError as e:
        print(f"Invalid config: {e}", file=sys.stderr)
        return 1

    if args.command == "ask":
        print(asyncio.run(_ask(args, AssistantService(settings))))
        return 0

    config = OrchestratorConfig.from_settings(settings)
    orchestrator = Orchestrator(config, nodes=WorkflowNodes(max_retries=config.max_retries))

    if args.command == "history":
        entries = asyncio.run(orchestrator.get_history(args.thread_id, limit=args.limit))
        print(f"Found {len(entries)} checkpoints:")
        for entry in entries:
            print(
                f"  {entry.checkpoint_id}: step={entry.step} source={entry.source} "
                f"messages={entry.message_count} parent={entry.parent_checkpoint_id}"
            )
        return 0

    asyncio.run(orchestrator.clear_thread(args.thread_id))
    print(f"Deleted checkpoints of thread {args.thread_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
