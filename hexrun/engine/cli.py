"""CLI entry point for the agent runtime.

Usage:
    hexrun "Add a --verbose flag to main.py"
    hexrun --backend codex --cwd ../worktree "Fix the failing test"
    hexrun --config hexrun.yaml --task-file tasks/feature.md
    hexrun --list-backends
    hexrun --list-models

Events are written to stdout as JSON lines; logs go to stderr.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from .backends.base import Backend
from .backends.registry import build_backend, validate
from .config import EngineConfig
from .errors import HexrunError
from .event_bus import EventBus
from .llm.provider import MODELS
from .yaml_config import HexrunConfig, load_yaml_config

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hexrun",
        description="Run a coding task on the native loop or an agent CLI",
    )
    parser.add_argument(
        "task",
        nargs="?",
        default=None,
        help="The task to run (inline string)",
    )
    parser.add_argument(
        "--task-file", "-f",
        default=None,
        help="Read task from a file (.md, .txt, etc.)",
    )
    parser.add_argument(
        "--backend", "-b",
        default=None,
        help="native, claude-code or codex (default: from config)",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Model override for the chosen backend",
    )
    parser.add_argument(
        "--cwd",
        default=None,
        help="Working directory for the task (default: current dir)",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file",
    )
    parser.add_argument(
        "--list-backends",
        action="store_true",
        help="Print which backends can run on this host and exit",
    )
    parser.add_argument(
        "--list-models",
        action="store_true",
        help="Print the model catalog (ids usable as HEXRUN_MODEL) and exit",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    yaml_config: HexrunConfig | None = None
    if args.config:
        try:
            yaml_config = load_yaml_config(args.config)
        except FileNotFoundError:
            print(f"Error: Config file not found: {args.config}", file=sys.stderr)
            return 1
        except HexrunError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        config = yaml_config.engine
    else:
        config = EngineConfig.from_env()

    level = logging.DEBUG if args.verbose else getattr(
        logging, config.log_level.upper(), logging.INFO,
    )
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    if args.list_backends:
        print(json.dumps(validate(yaml_config), indent=2))
        return 0

    if args.list_models:
        print(json.dumps([asdict(m) for m in MODELS], indent=2))
        return 0

    if args.cwd is not None:
        config.default_cwd = args.cwd

    task = _resolve_task(args.task, args.task_file)
    if task is None:
        return 1

    bus = EventBus(
        maxsize=config.event_queue_size,
        put_timeout=config.event_put_timeout_seconds,
    )
    try:
        backend = build_backend(
            args.backend,
            config,
            yaml_config=yaml_config,
            event_bus=bus,
            model=args.model,
        )
    except HexrunError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    try:
        asyncio.run(_run(backend, bus, task))
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    except HexrunError as exc:
        logger.error("Task failed: %s", exc)
        return 1
    return 0


async def _run(backend: Backend, bus: EventBus, task: str) -> str:
    printer = asyncio.create_task(_print_events(bus))
    try:
        return await backend.run(task)
    finally:
        await backend.close()
        bus.close()
        await printer


async def _print_events(bus: EventBus) -> None:
    async for event in bus.consume():
        print(event.to_json(), flush=True)


def _resolve_task(inline: str | None, file_path: str | None) -> str | None:
    """Get task from inline arg or file. Exactly one must be provided."""
    if inline and file_path:
        print("Error: Provide either a task string or --task-file, not both.", file=sys.stderr)
        return None

    if file_path:
        p = Path(file_path)
        if not p.is_file():
            print(f"Error: Task file not found: {file_path}", file=sys.stderr)
            return None
        return p.read_text(encoding="utf-8").strip()

    if inline:
        return inline

    print("Error: Provide a task string or --task-file.", file=sys.stderr)
    return None


if __name__ == "__main__":
    sys.exit(main())
