#!/usr/bin/env python3
"""Inspect and revoke user sessions from the command line.

Usage:
    python scripts/manage_sessions.py list USER_ID
    python scripts/manage_sessions.py revoke USER_ID TOKEN_ID
    python scripts/manage_sessions.py revoke-all USER_ID [--dry-run]

Environment Variables:
    REDIS_URL: Redis connection string (default redis://localhost:6379/0)
    JWT_ACCESS_SECRET / JWT_REFRESH_SECRET: only needed to keep config valid;
        this tool never mints tokens
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def run_command(args: argparse.Namespace, runtime=None) -> dict:
    """Execute one subcommand and return a summary dict."""
    # Import here to avoid loading config before env vars are set
    from sessionkeeper.service.runtime import Runtime

    owns_runtime = runtime is None
    runtime = runtime or Runtime()
    try:
        await runtime.verify_connection()
        if args.command == "list":
            sessions = await runtime.auth.list_sessions(args.user_id)
            for session in sorted(sessions, key=lambda s: s.last_used, reverse=True):
                print(
                    f"{session.token_id}  device={session.device_info}  ip={session.ip_address}  "
                    f"last_used={session.last_used.isoformat()}  expires={session.expiry_time.isoformat()}"
                )
            return {"status": "listed", "count": len(sessions)}

        if args.command == "revoke":
            await runtime.auth.revoke(args.user_id, args.token_id)
            print(f"Revoked session {args.token_id} for user {args.user_id}")
            return {"status": "revoked", "count": 1}

        if args.dry_run:
            count = await runtime.sessions.count_for(args.user_id)
            print(f"[DRY RUN] Would revoke {count} session(s) for user {args.user_id}")
            return {"status": "dry_run", "count": count}
        count = await runtime.auth.revoke_all(args.user_id)
        print(f"Revoked {count} session(s) for user {args.user_id}")
        return {"status": "revoked", "count": count}
    finally:
        if owns_runtime:
            await runtime.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage SessionKeeper user sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="List active sessions for a user")
    list_cmd.add_argument("user_id")

    revoke_cmd = sub.add_parser("revoke", help="Revoke one session")
    revoke_cmd.add_argument("user_id")
    revoke_cmd.add_argument("token_id")

    revoke_all_cmd = sub.add_parser("revoke-all", help="Revoke every session of a user")
    revoke_all_cmd.add_argument("user_id")
    revoke_all_cmd.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    from sessionkeeper.service.errors import ServiceError

    try:
        asyncio.run(run_command(args))
    except ServiceError as e:
        print(f"Error: {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
