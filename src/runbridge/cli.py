"""Command line interface for the runbridge utilities."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence, TextIO

from .config import BridgeConfig
from .core.adapters.stream import Fragment, ScriptedAdapter, fragments_from_script
from .core.errors import BridgeError, MalformedThread, ProtocolViolation
from .core.events import EventSequenceValidator, parse_event
from .core.message import RunInput
from .io.schema import parse_run_input
from .io.sinks import JsonLinesSink
from .runtime.machine import run_agent

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERRORED = 1
EXIT_MALFORMED = 2


def build_parser(config: BridgeConfig | None = None) -> argparse.ArgumentParser:
    config = config or BridgeConfig()
    parser = argparse.ArgumentParser(
        description="Replay and check agent run event streams"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity written to stderr",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    replay_parser = subparsers.add_parser(
        "replay", help="run a scripted fragment file and print the resulting events"
    )
    replay_parser.add_argument("input", type=Path, help="Run input JSON file")
    replay_parser.add_argument(
        "fragments", type=Path, help="JSON array of scripted backend fragments"
    )
    replay_parser.add_argument(
        "--format",
        choices=["sse", "jsonl"],
        default=config.encoding,
        help="Wire framing of the emitted events (default: %(default)s)",
    )
    replay_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Write events to this path instead of stdout",
    )
    replay_parser.add_argument(
        "--id-prefix",
        default=config.id_prefix,
        help="Prefix for the deterministic message identifiers",
    )
    replay_parser.add_argument(
        "--chunk-timeout",
        type=float,
        default=config.chunk_timeout,
        help="Seconds to wait for each scripted fragment before faulting the run",
    )

    check_parser = subparsers.add_parser(
        "check", help="validate a JSON-lines event log against the framing rules"
    )
    check_parser.add_argument("events", type=Path, help="JSON-lines event log")

    return parser


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _handle_replay(args: argparse.Namespace, config: BridgeConfig) -> int:
    try:
        config = replace(
            config,
            encoding=args.format,
            id_prefix=args.id_prefix,
            chunk_timeout=args.chunk_timeout,
        )
        run_input = parse_run_input(args.input.read_bytes())
        fragments = fragments_from_script(_load_json(args.fragments))
    except (OSError, ValueError, BridgeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_MALFORMED

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with args.output.open("w", encoding="utf-8") as handle:
            return _replay(run_input, fragments, handle, config)
    return _replay(run_input, fragments, sys.stdout, config)


def _replay(
    run_input: RunInput,
    fragments: list[Fragment],
    stream: TextIO,
    config: BridgeConfig,
) -> int:
    LOGGER.info("replaying %s fragments for run %s", len(fragments), run_input.run_id)
    sink = JsonLinesSink(stream, format=config.encoder().format)
    adapter = ScriptedAdapter(fragments, chunk_timeout=config.chunk_timeout)
    try:
        result = asyncio.run(
            run_agent(
                adapter,
                run_input,
                sink,
                id_generator=config.id_generator(deterministic=True),
            )
        )
    except MalformedThread as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_MALFORMED
    if result.error is not None:
        print(f"run errored: {result.error}", file=sys.stderr)
        return EXIT_ERRORED
    return EXIT_OK


def _handle_check(args: argparse.Namespace) -> int:
    validator = EventSequenceValidator()
    try:
        with args.events.open(encoding="utf-8") as handle:
            for number, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                if line.startswith("data:"):
                    line = line[len("data:"):].strip()
                try:
                    validator.observe(parse_event(line))
                except ProtocolViolation as exc:
                    raise ProtocolViolation(f"line {number}: {exc}") from exc
        validator.finish()
    except OSError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_MALFORMED
    except ProtocolViolation as exc:
        print(f"invalid: {exc}", file=sys.stderr)
        return EXIT_ERRORED
    print(f"ok: {validator.count} events")
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    try:
        config = BridgeConfig.from_env()
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_MALFORMED
    parser = build_parser(config)
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if args.command == "replay":
        return _handle_replay(args, config)
    if args.command == "check":
        return _handle_check(args)
    parser.error("no command provided")
    return EXIT_MALFORMED


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
