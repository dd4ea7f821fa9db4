"""Run the ban API under uvicorn with logging configured from settings."""

from __future__ import annotations

import argparse

import uvicorn

from banhammer.backend.api import create_app
from banhammer.backend.config import configure_logging, load_settings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Banhammer API server")
    parser.add_argument("--host", default=None, help="overrides BANHAMMER_HOST")
    parser.add_argument("--port", type=int, default=None, help="overrides BANHAMMER_PORT")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = load_settings()
    configure_logging(settings.log_level)

    app = create_app(settings=settings)
    uvicorn.run(
        app,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
