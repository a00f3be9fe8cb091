"""agent_breaker.cli

CLI entrypoint for Agent Breaker.

Usage:
    agent-breaker demo                      Run the runaway-agent scenarios
    agent-breaker demo --config F           ...with limits from a JSON/JSONC file
    agent-breaker demo --json-out F         Save JSON report to file
    agent-breaker check-config F            Validate a config file and print it resolved
    agent-breaker version                   Print version
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import load_config
from .errors import ConfigError


def cmd_demo(args: argparse.Namespace) -> None:
    """Run the scripted scenarios."""
    from .demo import print_report, run_all, save_json_report

    config = load_config(args.config)
    results = run_all(config)
    print_report(results)

    if args.json_out:
        save_json_report(results, args.json_out)


def cmd_check_config(args: argparse.Namespace) -> None:
    """Validate a config file and print the resolved settings."""
    if not Path(args.path).is_file():
        raise ConfigError(f"no such config file: {args.path}")
    config = load_config(args.path)
    print(json.dumps(config.to_dict(), indent=2, sort_keys=True))


def cmd_version(args: argparse.Namespace) -> None:
    """Print version."""
    from . import __version__
    print(f"agent-breaker {__version__}")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="agent-breaker",
        description="Agent Breaker: per-session circuit breaker for tool-using LLM agents.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log guardrail events to stderr")
    subparsers = parser.add_subparsers(dest="command")

    # demo
    demo_parser = subparsers.add_parser("demo", help="Run the runaway-agent scenarios")
    demo_parser.add_argument("--config", type=str, help="Guardrails config file (JSON/JSONC)")
    demo_parser.add_argument("--json-out", type=str, help="Save JSON report to this path")
    demo_parser.set_defaults(func=cmd_demo)

    # check-config
    check_parser = subparsers.add_parser("check-config", help="Validate a guardrails config file")
    check_parser.add_argument("path", type=str, help="Path to the config file")
    check_parser.set_defaults(func=cmd_check_config)

    # version
    version_parser = subparsers.add_parser("version", help="Print version")
    version_parser.set_defaults(func=cmd_version)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        args.func(args)
    except ConfigError as exc:
        print(f"  Config error: {exc}", file=sys.stderr)
        if exc.guidance:
            print(f"  {exc.guidance}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
