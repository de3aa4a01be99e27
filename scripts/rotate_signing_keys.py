#!/usr/bin/env python3
"""Signing key maintenance utility for tokenvault.

Forces a new active key pair, prunes retired pairs and expired revocation
records, or prints the public key set. Existing tokens stay verifiable
after --rotate; old pairs are only removed by --prune once every token
they produced has expired.

Usage:
    python scripts/rotate_signing_keys.py --rotate
    python scripts/rotate_signing_keys.py --prune
    python scripts/rotate_signing_keys.py --jwks
"""

import argparse
import asyncio
import json
import os
import sys


async def _run(args: argparse.Namespace) -> int:
    # Imported late so --database-url is in place before the engine is built
    from tokenvault.core import async_session_maker, engine, settings
    from tokenvault.services.auth import AuthService
    from tokenvault.services.errors import InfrastructureError

    try:
        async with async_session_maker() as db:
            service = AuthService(db, settings=settings)

            if args.rotate:
                key = await service.keys.rotate()
                print(f"Created key pair {key.kid} (active until {key.expires_at.isoformat()})")

            if args.prune:
                removed = await service.run_maintenance()
                print(
                    f"Removed {removed['key_pairs']} key pairs, "
                    f"{removed['refresh_tokens']} refresh tokens, "
                    f"{removed['blacklist']} blacklist entries"
                )

            if args.jwks:
                print(json.dumps(await service.public_key_set(), indent=2))
    except InfrastructureError as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        await engine.dispose()

    return 0


def main():
    parser = argparse.ArgumentParser(description="Manage tokenvault signing key pairs")
    parser.add_argument("--rotate", action="store_true", help="Create a new active key pair")
    parser.add_argument(
        "--prune",
        action="store_true",
        help="Delete retired key pairs and expired refresh/blacklist records",
    )
    parser.add_argument("--jwks", action="store_true", help="Print the public key set")
    parser.add_argument(
        "--database-url",
        help="Database URL (default: from DATABASE_URL env var)",
    )
    args = parser.parse_args()

    if not (args.rotate or args.prune or args.jwks):
        parser.print_help()
        sys.exit(1)

    if args.database_url:
        os.environ["DATABASE_URL"] = args.database_url
    elif not os.environ.get("DATABASE_URL"):
        print("ERROR: Provide --database-url or set DATABASE_URL env var")
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
