"""bunqers command line."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any

from bunqers.client import SessionClient
from bunqers.config import resolve_config
from bunqers.connect import connect
from bunqers.credential_store import CredentialStore
from bunqers.credentials import rank
from bunqers.errors import ApiError, BunqersError

DEFAULT_DEVICE_DESCRIPTION = "bunqers-cli"


def _add_common(parser: argparse.ArgumentParser, *, network: bool) -> None:
    parser.add_argument("--home", default=None)
    parser.add_argument("--json", action="store_true")
    parser.add_argument("--verbose", "-v", action="store_true")
    if network:
        parser.add_argument("--api-key", default=None)
        parser.add_argument("--api-url", default=None)
        parser.add_argument("--device", default=DEFAULT_DEVICE_DESCRIPTION)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bunqers", description="bunqers CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    connect_parser = subparsers.add_parser("connect", help="Install, register and open a session")
    _add_common(connect_parser, network=True)

    user_parser = subparsers.add_parser("user", help="Show the session's user")
    _add_common(user_parser, network=True)

    accounts_parser = subparsers.add_parser("accounts", help="List monetary accounts")
    _add_common(accounts_parser, network=True)

    status_parser = subparsers.add_parser("status", help="Show the stored credential stage")
    _add_common(status_parser, network=False)

    return parser


def _print(args: argparse.Namespace, payload: dict[str, Any], lines: list[str]) -> None:
    if args.json:
        print(json.dumps(payload, sort_keys=True))
        return
    for line in lines:
        print(line)


def _status(args: argparse.Namespace) -> int:
    store = CredentialStore(args.home)
    credential = store.load()
    _print(
        args,
        {"command": "status", "stage": credential.stage, "rank": rank(credential), "path": str(store.path)},
        [f"stage: {credential.stage}", f"path: {store.path}"],
    )
    return 0


async def _run_network(args: argparse.Namespace, api_key: str) -> int:
    store = CredentialStore(args.home)
    config = resolve_config(base_url=args.api_url)
    client: SessionClient = await connect(api_key, args.device, store=store, config=config)
    async with client:
        if args.command == "connect":
            _print(
                args,
                {"command": "connect", "owner_id": client.owner_id, "path": str(store.path)},
                [f"Session ready for owner {client.owner_id}", f"path: {store.path}"],
            )
            return 0

        if args.command == "user":
            user = await client.get_user()
            _print(
                args,
                {"command": "user", "id": user.id, "display_name": user.display_name, "kind": user.kind},
                [f"Hello, {user.display_name}!"],
            )
            return 0

        accounts = await client.get_monetary_accounts()
        rows = [
            {
                "id": account.id,
                "description": account.description,
                "status": account.status,
                "balance": str(account.balance.value),
                "currency": account.balance.currency,
            }
            for account in accounts
        ]
        _print(
            args,
            {"command": "accounts", "count": len(rows), "accounts": rows},
            [f"{row['id']}\t{row['description']}\t{row['balance']} {row['currency']}" for row in rows]
            or ["No monetary accounts found."],
        )
        return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "status":
            return _status(args)

        api_key = args.api_key or os.environ.get("BUNQERS_API_KEY")
        if not api_key:
            parser.error("--api-key or BUNQERS_API_KEY is required")
        return asyncio.run(_run_network(args, api_key))
    except ApiError as error:
        if not error.errors:
            print(f"error: {error}", file=sys.stderr)
        for description in error.errors:
            print(f"error: {description.description}", file=sys.stderr)
        return 1
    except BunqersError as error:
        print(f"error: {error}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
