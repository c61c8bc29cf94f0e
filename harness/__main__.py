#!/usr/bin/env python3
"""
Environment probe for harness runs.

Run:  python -m harness health [--wait] [--json] [--no-db]

Exits 0 when every dependency is healthy, 1 otherwise.
"""
import argparse
import asyncio
import json
import sys

from .errors import TransportError
from .health import check_environment, wait_for_services
from .logging_config import setup_logging_from_settings
from .settings import load_settings, validate_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m harness", description=__doc__.splitlines()[1])
    sub = parser.add_subparsers(dest="command", required=True)

    health = sub.add_parser("health", help="check every platform service and the test database")
    health.add_argument("--wait", action="store_true", help="poll until the services are up")
    health.add_argument("--attempts", type=int, default=30, help="polling rounds with --wait")
    health.add_argument("--delay", type=float, default=1.0, help="seconds between rounds with --wait")
    health.add_argument("--json", action="store_true", help="print the raw report as JSON")
    health.add_argument("--no-db", action="store_true", help="skip the MongoDB check")
    health.add_argument("services", nargs="*", help="only these services (default: all)")
    return parser


async def run_health(args) -> int:
    current = validate_settings(load_settings())
    services = args.services or None

    if args.wait:
        try:
            await wait_for_services(current, services, attempts=args.attempts, delay=args.delay)
        except TransportError as e:
            print(f"  [DOWN] {e}")
            return 1

    report = await check_environment(current, services, include_database=not args.no_db)

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        for name, result in report["dependencies"].items():
            tag = "UP" if result["status"] == "healthy" else "DOWN"
            print(f"  [{tag}] {name:<13} {result['response_time_ms']:>8.1f} ms  {result['message']}")
        print(f"\nOverall: {report['status']}")

    return 0 if report["status"] == "healthy" else 1


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging_from_settings(load_settings())
    if args.command == "health":
        return asyncio.run(run_health(args))
    return 2


if __name__ == "__main__":
    sys.exit(main())
