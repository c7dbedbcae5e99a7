#!/usr/bin/env python3
"""Watch a user record through the middleware.

Wires a :class:`pyuserflow.Store` with :class:`pyuserflow.UserMiddleware`
and :class:`pyuserflow.RestUserStorage`, dispatches ``Register(key)`` and
prints every state the change stream delivers.

Configuration comes from ``USERFLOW_*`` environment variables.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

import aiohttp  # noqa: E402

from pyuserflow import (  # noqa: E402
    Action,
    OperationKind,
    Register,
    RestUserStorage,
    StateChanged,
    Store,
    UserflowConfig,
    UserMiddleware,
    UserState,
)
from pyuserflow._redact import redact_for_log  # noqa: E402

_LOG = logging.getLogger("watch_user")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print live changes of one user record.")
    parser.add_argument("key", help="User record key to watch.")
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _reduce(state: UserState, action: Action) -> UserState:
    match action:
        case Register(id=key):
            return state.model_copy(update={"key": key})
        case StateChanged(state=new_state):
            return new_state
        case _:
            return state


def _print_state(state: UserState) -> None:
    print(json.dumps(redact_for_log(state), indent=2, ensure_ascii=False))


def _report(kind: OperationKind, exc: BaseException) -> None:
    print(f"[watch] {kind.value} failed: {exc}", file=sys.stderr)


async def _watch(config: UserflowConfig, key: str, duration: int) -> None:
    async with aiohttp.ClientSession() as http:
        provider = RestUserStorage(config, http)
        middleware = UserMiddleware(provider, config=config, logger=_LOG, error_sink=_report)
        store = Store(_reduce, middleware)
        store.subscribe(_print_state)
        store.dispatch(Register(id=key))
        try:
            if duration > 0:
                await asyncio.sleep(duration)
            else:
                await asyncio.Event().wait()
        finally:
            await middleware.aclose()


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = UserflowConfig.from_env()
    try:
        asyncio.run(_watch(config, args.key, args.duration))
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
