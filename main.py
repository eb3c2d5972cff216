#!/usr/bin/env python3
"""
Fragrance Collect auth service -- command-line entry point.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py verify-token eyJhbGciOiJSUzI1NiIs...
  python main.py verify-token --audience 1234.apps.googleusercontent.com eyJ...
  python main.py hash-password

Environment variables (see core/config.py for the full list):
  GOOGLE_CLIENT_ID   Expected audience of Google ID tokens. Required unless DEBUG=true.
  DATABASE_URL       SQLAlchemy URL of the user/session store.
  DEBUG              true enables dev mode (relaxed startup checks, /api/docs).
"""

import argparse
import asyncio
import getpass
import json
import sys
from typing import Optional

from auth.passwords import hash_password, validate_password_complexity
from core.config import get_settings
from core.errors import VerificationFailedError
from identity.keyring import KeyRing
from identity.service import IdentityVerifier


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=get_settings().log_level.lower(),
    )
    return 0


async def _verify(token: str, audience: Optional[str]) -> dict:
    settings = get_settings()
    keyring = KeyRing(
        settings.google_certs_url,
        ttl_seconds=settings.key_cache_ttl_seconds,
        timeout_seconds=settings.key_fetch_timeout_seconds,
    )
    verifier = IdentityVerifier(keyring, audience=settings.google_client_id, issuers=settings.google_issuers)
    try:
        identity = await verifier.verify_identity_token(token, expected_audience=audience)
    finally:
        await keyring.close()
    return {**identity.public_profile(), "subject": identity.subject, "email_verified": identity.email_verified}


def _verify_token(args: argparse.Namespace) -> int:
    """Verify one Google ID token end-to-end and print the identity as JSON."""
    try:
        result = asyncio.run(_verify(args.token.strip(), args.audience))
    except VerificationFailedError as exc:
        print(f"  [!] Verification failed -- {exc.reason.code}: {exc.reason.message}", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2))
    return 0


def _hash_password(args: argparse.Namespace) -> int:
    """Prompt for a password and print its stored form (for seeding or migrating accounts)."""
    if args.stdin:
        password = sys.stdin.readline().rstrip("\n")
    else:
        password = getpass.getpass("Password: ")
        if getpass.getpass("Confirm:  ") != password:
            print("  [!] Passwords do not match.", file=sys.stderr)
            return 1

    problems = validate_password_complexity(password)
    if problems:
        for problem in problems:
            print(f"  [!] {problem}", file=sys.stderr)
        if not args.force:
            print("  Re-run with --force to hash it anyway.", file=sys.stderr)
            return 1

    print(hash_password(password))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fragrance-collect-auth",
        description="Session authentication and Google ID token verification for Fragrance Collect.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py verify-token "$ID_TOKEN"
  echo 'Abcd123!' | python main.py hash-password --stdin
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=_serve)

    verify = sub.add_parser("verify-token", help="Verify a Google ID token and print its identity")
    verify.add_argument("token", help="Compact ID token (header.payload.signature)")
    verify.add_argument(
        "--audience",
        metavar="CLIENT_ID",
        default=None,
        help="Expected audience (default: GOOGLE_CLIENT_ID from settings)",
    )
    verify.set_defaults(func=_verify_token)

    hasher = sub.add_parser("hash-password", help="Print the stored PBKDF2 form of a password")
    hasher.add_argument("--stdin", action="store_true", help="Read the password from stdin instead of prompting")
    hasher.add_argument("--force", action="store_true", help="Hash even if the password fails the complexity policy")
    hasher.set_defaults(func=_hash_password)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
