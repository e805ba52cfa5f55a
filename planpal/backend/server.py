"""Command line entry point that serves the API with uvicorn."""

from __future__ import annotations

import argparse
import logging

import uvicorn

from planpal.backend.config import load_settings
from planpal.backend.logging_config import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    settings = load_settings()
    parser = argparse.ArgumentParser(description="PlanPal realtime server")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--log-level", default=settings.log_level)
    parser.add_argument("--reload", action="store_true")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = load_settings()
    setup_logging(level=args.log_level, log_file=settings.log_file)
    logger.info("Starting server on %s:%d", args.host, args.port)
    uvicorn.run(
        "planpal.backend.api:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
