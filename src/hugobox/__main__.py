"""Entry point for `python -m hugobox` / `hugobox`.

Subcommands:
    hugobox [server]        Serve the site and restart it on file changes (default)
    hugobox build [ARGS]    Build the site once, non-interactively
    hugobox shell           Open an interactive shell in the site image
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from pydantic import ValidationError


def _load_settings():
    from hugobox.config import get_settings
    from hugobox.logger import configure_logging, logger

    try:
        s = get_settings()
    except ValidationError as exc:
        logger.error("Invalid configuration", err=str(exc))
        sys.exit(1)
    configure_logging(s.logging)
    return s


def _server() -> int:
    from hugobox.app import run_server

    return asyncio.run(run_server(_load_settings()))


def _build(extra: list[str]) -> int:
    from hugobox.app import run_once

    return asyncio.run(run_once(_load_settings(), extra, interactive=False))


def _shell() -> int:
    from hugobox.app import run_once

    return asyncio.run(run_once(_load_settings(), [], interactive=True, entrypoint="/bin/sh"))


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="hugobox",
        description="Live-preview a Hugo site from a container",
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("server", help="Serve the site and restart the container on changes")
    sub.add_parser(
        "build",
        help="Build the site once and exit with its status; further arguments go to the generator",
    )
    sub.add_parser("shell", help="Open an interactive shell in the site image")

    # Everything after `build` belongs to the generator, options included.
    args, extra = parser.parse_known_args()
    if extra and args.command != "build":
        parser.error(f"unrecognized arguments: {' '.join(extra)}")

    match args.command:
        case "build":
            sys.exit(_build(extra))
        case "shell":
            sys.exit(_shell())
        case _:
            sys.exit(_server())


if __name__ == "__main__":
    main()
