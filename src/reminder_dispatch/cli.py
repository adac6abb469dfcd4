#!/usr/bin/env python3
"""Command line client for a running Reminder Dispatch server.

Usage:
    python -m reminder_dispatch.cli serve                    # Run the API server
    python -m reminder_dispatch.cli submit +15551234567 "Take medicine" --in-minutes 10
    python -m reminder_dispatch.cli list                     # List reminders
    python -m reminder_dispatch.cli cancel <id>              # Cancel a reminder
    python -m reminder_dispatch.cli status <call-sid>        # Call status
    python -m reminder_dispatch.cli call-now +15551234567 "Take medicine"
    python -m reminder_dispatch.cli health                   # Health check
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from typing import Any

import httpx

DEFAULT_SERVER = os.getenv("RD_SERVER_URL", "http://localhost:8080")


def _client(args: argparse.Namespace) -> httpx.Client:
    return httpx.Client(base_url=args.server, timeout=args.timeout)


def _print_response(response: httpx.Response) -> int:
    try:
        body: Any = response.json()
    except ValueError:
        body = response.text

    print(json.dumps(body, indent=2) if not isinstance(body, str) else body)
    return 0 if response.is_success else 1


def serve(args: argparse.Namespace) -> int:
    """Run the API server in the foreground."""
    from reminder_dispatch.main import run

    run()
    return 0


def submit(args: argparse.Namespace) -> int:
    """Register a reminder call."""
    if args.at:
        call_at: Any = args.at
    else:
        now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
        call_at = now_ms + int(args.in_minutes * 60_000)

    payload = {
        "destination": args.destination,
        "title": args.title,
        "description": args.description,
        "callAt": call_at,
    }
    if args.id:
        payload["id"] = args.id

    with _client(args) as client:
        return _print_response(client.post("/api/v1/reminders", json=payload))


def cancel(args: argparse.Namespace) -> int:
    """Cancel a reminder call."""
    with _client(args) as client:
        return _print_response(client.delete(f"/api/v1/reminders/{args.id}"))


def list_reminders(args: argparse.Namespace) -> int:
    """List scheduled reminders."""
    with _client(args) as client:
        response = client.get("/api/v1/reminders")

    if args.json or not response.is_success:
        return _print_response(response)

    rows = response.json()
    if not rows:
        print("No reminders scheduled")
        return 0

    for row in rows:
        call_at = datetime.fromtimestamp(row["call_at"] / 1000, tz=timezone.utc)
        print(
            f"{row['id']:<38} {call_at:%Y-%m-%d %H:%M}Z  {row['status']:<12} "
            f"{row['destination']:<16} {row['title']}"
        )
    return 0


def call_status(args: argparse.Namespace) -> int:
    """Show the status of a dispatched call."""
    with _client(args) as client:
        return _print_response(client.get(f"/api/v1/calls/{args.call_sid}"))


def call_now(args: argparse.Namespace) -> int:
    """Place a reminder call immediately."""
    payload = {
        "destination": args.destination,
        "title": args.title,
        "description": args.description,
    }
    with _client(args) as client:
        return _print_response(client.post("/api/v1/calls", json=payload))


def health(args: argparse.Namespace) -> int:
    """Query the health endpoint."""
    with _client(args) as client:
        return _print_response(client.get("/health"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reminder Dispatch CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--server", default=DEFAULT_SERVER,
        help=f"Server base URL (default: {DEFAULT_SERVER})",
    )
    parser.add_argument(
        "--timeout", type=float, default=30.0, help="Request timeout in seconds",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # serve
    subparsers.add_parser("serve", help="Run the API server")

    # submit
    submit_parser = subparsers.add_parser("submit", help="Schedule a reminder call")
    submit_parser.add_argument("destination", help="Phone number (E.164)")
    submit_parser.add_argument("title", help="Reminder title")
    submit_parser.add_argument("--description", default="", help="Spoken details")
    submit_parser.add_argument("--id", default=None, help="Client chosen reminder id")
    when = submit_parser.add_mutually_exclusive_group()
    when.add_argument("--at", default=None, help="ISO-8601 time or epoch milliseconds")
    when.add_argument(
        "--in-minutes", type=float, default=1.0,
        help="Minutes from now (default: 1)",
    )

    # cancel
    cancel_parser = subparsers.add_parser("cancel", help="Cancel a reminder")
    cancel_parser.add_argument("id", help="Reminder id")

    # list
    list_parser = subparsers.add_parser("list", help="List reminders")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # status
    status_parser = subparsers.add_parser("status", help="Show a call's status")
    status_parser.add_argument("call_sid", help="Call reference (Twilio CallSid)")

    # call-now
    now_parser = subparsers.add_parser("call-now", help="Place a reminder call now")
    now_parser.add_argument("destination", help="Phone number (E.164)")
    now_parser.add_argument("title", help="Reminder title")
    now_parser.add_argument("--description", default="", help="Spoken details")

    # health
    subparsers.add_parser("health", help="Server health check")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "serve": serve,
        "submit": submit,
        "cancel": cancel,
        "list": list_reminders,
        "status": call_status,
        "call-now": call_now,
        "health": health,
    }

    try:
        return commands[args.command](args)
    except httpx.HTTPError as e:
        print(f"Request to {args.server} failed: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
