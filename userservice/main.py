"""Command that serves the user service over HTTP."""

from __future__ import annotations

import argparse
import logging
import os
from typing import Mapping, Optional, Sequence, Tuple

import uvicorn

from .app import create_app

logger = logging.getLogger(__name__)

HOST = "0.0.0.0"
DEFAULT_PORT = "80"


def bind_address(environ: Mapping[str, str]) -> Tuple[str, int]:
    """Return the host and port to listen on, taken from ``PORT``."""
    port = environ.get("PORT", DEFAULT_PORT)
    try:
        number = int(port)
    except ValueError:
        raise ValueError(f"invalid PORT: {port!r}") from None
    if not 0 <= number <= 65535:
        raise ValueError(f"invalid PORT: {port!r}")
    return HOST, number


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="userservice", description="Serve the users HTTP API.")
    parser.parse_args(argv)

    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "ERROR").upper())

    host, port = bind_address(os.environ)
    logger.info("Binding to %s:%d", host, port)
    app = create_app()
    logger.info("Serving traffic")
    uvicorn.run(app, host=host, port=port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())