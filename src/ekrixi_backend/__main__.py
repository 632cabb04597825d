"""CLI entry point for the Ekrixi backend."""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from ekrixi_backend.app import create_app
from ekrixi_backend.config import ConfigurationError, Settings

logger = logging.getLogger("ekrixi_backend")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Ekrixi Backend - Gemini generation proxy"
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Host to bind to (default: HOST env var or 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to run the server on (default: PORT env var or 8080)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: ./config.yaml if present)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Run the Ekrixi backend server."""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = Settings.load(config_path=args.config)
    except ConfigurationError as e:
        # Exit before binding a port
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    settings = settings.with_overrides(host=args.host, port=args.port)
    logging.getLogger().setLevel(settings.log_level)

    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        server_header=False,
    )


if __name__ == "__main__":
    main()
