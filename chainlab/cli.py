from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from chainlab.store import JsonFileIdentityStore


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="chainlab",
        description="Per-owner blockchain sandbox orchestrator.",
    )
    parser.add_argument(
        "--env-file", help="Environment file to load (default: .env if present)."
    )
    parser.add_argument(
        "--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API server.")
    serve.add_argument("--host", help="Bind address (default: CHAINLAB_HOST).")
    serve.add_argument("--port", type=int, help="Bind port (default: CHAINLAB_PORT).")
    serve.add_argument(
        "--reload", action="store_true", help="Reload on code changes (development)."
    )

    register = sub.add_parser(
        "register", help="Create an owner record in the file identity store."
    )
    register.add_argument("owner_id", help="Owner identifier.")
    register.add_argument(
        "--store-path", help="Store directory (default: CHAINLAB_STORE_PATH)."
    )

    show = sub.add_parser("show", help="Print an owner's sandbox handle as JSON.")
    show.add_argument("owner_id", help="Owner identifier.")
    show.add_argument(
        "--store-path", help="Store directory (default: CHAINLAB_STORE_PATH)."
    )
    return parser.parse_args(argv)


def _serve(args: argparse.Namespace) -> int:
    import uvicorn
    from chainlab.server.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "chainlab.server:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
    )
    return 0


def _store(args: argparse.Namespace) -> JsonFileIdentityStore:
    from chainlab.server.config import get_settings

    return JsonFileIdentityStore(args.store_path or get_settings().store_path)


async def _register(args: argparse.Namespace) -> int:
    record = await _store(args).create_owner(args.owner_id)
    print(json.dumps(record.model_dump(mode="json"), ensure_ascii=True))
    return 0


async def _show(args: argparse.Namespace) -> int:
    record = await _store(args).get(args.owner_id)
    print(json.dumps(record.handle.model_dump(mode="json"), ensure_ascii=True))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    load_dotenv(args.env_file)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.command == "serve":
            return _serve(args)
        if args.command == "register":
            return asyncio.run(_register(args))
        return asyncio.run(_show(args))
    except Exception as exc:  # noqa: BLE001
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
