"""Command-line entry point: sign in, sign out, or issue one API request."""

import argparse
import asyncio
import json
import logging
import sys

from api_client import ApiClient
from auth.session import AuthSession
from config import get_settings
from errors import ApiError

log = logging.getLogger(__name__)


def _json_body(text: str):
    try:
        return json.loads(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}") from e


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="delivery-api")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="sign in and store tokens")
    login.add_argument("identifier")
    login.add_argument("password")
    login.add_argument("--phone", action="store_true", help="identifier is a phone number")

    sub.add_parser("logout", help="delete stored tokens")
    sub.add_parser("status", help="show whether a session is stored")

    req = sub.add_parser("request", help="issue an authenticated request")
    req.add_argument("method")
    req.add_argument("path")
    req.add_argument("--data", type=_json_body, help="JSON request body")
    req.add_argument("--no-auth", action="store_true")
    return parser.parse_args(argv)


async def _run(args) -> int:
    settings = get_settings()
    async with ApiClient.from_settings(settings) as client:
        session = AuthSession(client)

        if args.command == "login":
            ok = await session.sign_in(args.identifier, args.password, is_email=not args.phone)
            print("signed in" if ok else "sign-in response carried no session")
            return 0 if ok else 1

        if args.command == "logout":
            await session.sign_out()
            print("signed out")
            return 0

        if args.command == "status":
            if session.is_authenticated:
                print(f"signed in as {session.user_id}")
                return 0
            print("signed out")
            return 1

        resp = await client.request(args.method, args.path, json=args.data, auth=not args.no_auth)
        print(resp.text)
        return 0 if resp.ok else 1


def main(argv=None) -> int:
    args = _parse_args(argv)
    level = args.log_level or get_settings().log_level
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except ApiError as e:
        log.error("%s: %s", type(e).__name__, e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
