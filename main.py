#!/usr/bin/env python3
"""
Threadboard -- operations CLI for the credential, token and vote core.

Usage:
  python main.py register alice --password hunter22
  python main.py login alice
  python main.py verify <token>
  python main.py tally <post-id> [<post-id> ...]
  python main.py posts --limit 5
  python main.py --json login alice --password hunter22

Environment variables:
  SECRET_KEY     Required. Token signing secret, at least 32 characters.
  DATABASE_URL   Required. SQLAlchemy URL of the document store,
                 e.g. sqlite:///threadboard.db
  PASSWORD_SCHEME, TOKEN_EXPIRE_SECONDS, LOG_LEVEL -- see core/config.py.
"""

import argparse
import getpass
import json
import sys
from typing import Optional

from auth.pipeline import Authenticated, AuthError
from content.posts import PostService
from content.profiles import ProfileService
from core.config import get_settings
from core.errors import ServiceError
from core.service import ServiceContext, configure_logging


def _password(args: argparse.Namespace) -> str:
    return args.password if args.password is not None else getpass.getpass("Password: ")


def _emit(args: argparse.Namespace, payload, text: str) -> None:
    print(json.dumps(payload, indent=2) if args.json else text)


def cmd_register(ctx: ServiceContext, args: argparse.Namespace) -> int:
    session = ProfileService(ctx).register(args.username, _password(args))
    _emit(args, session, f"  Registered {session['user']['username']} ({session['user']['id']})\n  token: {session['token']}")
    return 0


def cmd_login(ctx: ServiceContext, args: argparse.Namespace) -> int:
    session = ProfileService(ctx).login(args.username, _password(args))
    _emit(args, session, session["token"])
    return 0


def cmd_verify(ctx: ServiceContext, args: argparse.Namespace) -> int:
    result = ctx.auth.authenticate_header(args.token)
    if isinstance(result, Authenticated):
        user = ctx.credentials.get_user(result.user_id)
        _emit(args, {"authenticated": True, "user": user.to_dict()}, f"  valid -- {user.username} ({user.id})")
        return 0
    if isinstance(result, AuthError):
        raise result.error
    _emit(args, {"authenticated": False, "reason": result.reason}, f"  [!] invalid token: {result.reason}")
    return 1


def cmd_tally(ctx: ServiceContext, args: argparse.Namespace) -> int:
    tallies = ctx.votes.get_tallies(args.post_ids)
    _emit(args, tallies, "\n".join(f"  {pid}  {tally:+d}" for pid, tally in tallies.items()))
    return 0


def cmd_posts(ctx: ServiceContext, args: argparse.Namespace) -> int:
    page = PostService(ctx).list_posts(limit=args.limit, last=args.last)
    lines = [f"  {p['date']}  {p['reactions']:+d}  {p['title']}  ({p['id']})" for p in page["posts"]]
    if not page["loadedAll"]:
        lines.append(f"\n  More posts: --last {page['last']}")
    _emit(args, page, "\n".join(lines) or "  No posts.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="threadboard",
        description="Operate on the Threadboard credential, token and vote store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py register alice --password hunter22
  python main.py login alice
  python main.py verify "Bearer eyJhbGciOi..."
  python main.py tally 3f0c9a4e-...
        """,
    )
    parser.add_argument("--json", action="store_true", help="Output structured JSON")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("register", help="Create a user and print a token")
    p.add_argument("username")
    p.add_argument("--password", help="Password (prompted for when omitted)")
    p.set_defaults(func=cmd_register)

    p = sub.add_parser("login", help="Check a password and print a token")
    p.add_argument("username")
    p.add_argument("--password", help="Password (prompted for when omitted)")
    p.set_defaults(func=cmd_login)

    p = sub.add_parser("verify", help="Verify a bearer token")
    p.add_argument("token", help='Token, or a full "Bearer <token>" header value')
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("tally", help="Print the live vote tally of one or more posts")
    p.add_argument("post_ids", nargs="+", metavar="POST-ID")
    p.set_defaults(func=cmd_tally)

    p = sub.add_parser("posts", help="List posts, newest first")
    p.add_argument("--limit", type=int, default=None, help="Page size (capped at PAGE_SIZE_MAX)")
    p.add_argument("--last", type=int, default=None, metavar="DATE", help="Date of the last post already seen")
    p.set_defaults(func=cmd_posts)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    try:
        settings = get_settings()
    except ValueError as e:
        print(f"  [!] Configuration error: {e}", file=sys.stderr)
        return 2
    configure_logging("DEBUG" if settings.debug else settings.log_level)

    with ServiceContext(settings) as ctx:
        try:
            return args.func(ctx, args)
        except ServiceError as e:
            if args.json:
                print(json.dumps({"error": e.to_dict()}, indent=2))
            else:
                print(f"  [!] {e.code}: {e.message}", file=sys.stderr)
            return 1


if __name__ == "__main__":
    sys.exit(main())
