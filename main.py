#!/usr/bin/env python3
"""
FieldDay Auth -- administrative command line.

The HTTP API covers every user-facing flow. This CLI covers the operator
tasks that need to work before any admin account exists.

Usage:
  python main.py grant-role <user-id> admin
  python main.py find-user a@b.com
  python main.py reset-limit otp +15551234567
  python main.py unblock +15551234567
  python main.py issue-token <user-id>

Configuration is read from the environment / .env exactly as the API reads
it (DATABASE_URL, REDIS_URL, JWT_SECRET, ...). reset-limit and unblock only
make sense against a shared Redis store: the in-memory store belongs to the
server process.
"""

import argparse
import sys

from auth.models import Role
from auth.notifier import ConsoleNotifier
from auth.service import build_auth_service
from auth.store import UserStore
from cache.store import create_secret_store
from core.config import get_settings


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="fieldday-auth",
        description="Administrative tasks for FieldDay Auth.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py grant-role 3f2a9c... admin
  python main.py find-user +15551234567
  python main.py reset-limit magic a@b.com
  python main.py unblock +15551234567
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    grant = sub.add_parser("grant-role", help="Grant a role to a user")
    grant.add_argument("user_id")
    grant.add_argument("role", choices=[r.value for r in Role])

    find = sub.add_parser("find-user", help="Look up a user by email or phone")
    find.add_argument("identifier")

    reset = sub.add_parser("reset-limit", help="Clear a rate-limit counter")
    reset.add_argument("purpose", choices=["otp", "magic", "login"])
    reset.add_argument("identifier")

    unblock = sub.add_parser("unblock", help="Lift an OTP lockout and discard any live code")
    unblock.add_argument("identifier")

    issue = sub.add_parser("issue-token", help="Print a token pair for a user (testing and support)")
    issue.add_argument("user_id")

    args = parser.parse_args()

    settings = get_settings()
    users = UserStore(settings.database_url)
    try:
        if args.command == "grant-role":
            user = users.add_role(args.user_id, Role(args.role))
            if user is None:
                print(f"  [!] No user with id {args.user_id}")
                sys.exit(1)
            print(f"  {user.username}: {', '.join(r.value for r in user.roles)}")
            return

        if args.command == "find-user":
            user = users.get_by_identifier(args.identifier)
            if user is None:
                print(f"  [!] No user for {args.identifier}")
                sys.exit(1)
            status = "active" if user.is_active else "inactive"
            print(f"  {user.id}  {user.username}  [{', '.join(r.value for r in user.roles)}]  {status}")
            return

        auth = build_auth_service(settings, create_secret_store(settings), users, ConsoleNotifier())
        try:
            if args.command == "reset-limit":
                auth.reset_rate_limit(args.purpose, args.identifier)
                print(f"  Cleared {args.purpose} limit for {args.identifier}")
            elif args.command == "unblock":
                auth.otp.unblock(args.identifier)
                print(f"  Unblocked {args.identifier}")
            elif args.command == "issue-token":
                user = users.get_by_id(args.user_id)
                if user is None:
                    print(f"  [!] No user with id {args.user_id}")
                    sys.exit(1)
                pair = auth.issue_token_pair(user)
                print(f"  access:  {pair.access_token}")
                print(f"  refresh: {pair.refresh_token}")
        finally:
            auth.close()
    finally:
        users.close()


if __name__ == "__main__":
    main()
