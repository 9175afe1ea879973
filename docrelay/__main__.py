"""CLI entry point for docrelay."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import load_config

logger = logging.getLogger("docrelay")


class JSONFormatter(logging.Formatter):
    """JSON lines for relay logs.

    Records logged with a connection's `log_context` carry a `client`
    field, so one client's session can be followed with a simple filter.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name.removeprefix("docrelay."),
            "message": record.getMessage(),
        }

        client = getattr(record, "client", None)
        if client:
            log_data["client"] = client

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )

    # Per-request access lines drown out session logs unless debugging
    if level > logging.DEBUG:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


async def serve(args: argparse.Namespace) -> int:
    """Load the document and run the relay until terminated."""
    config = load_config(args.config)
    if args.port is not None:
        config.server.port = args.port
    if args.host is not None:
        config.server.host = args.host

    import uvicorn

    from .server import create_app

    logger.info(f"boot {datetime.now().isoformat()}")
    logger.info(f"Snapshot: {Path(config.storage.snapshot_path).resolve()}")

    app = create_app(config)

    logger.info(f"Server running at http://localhost:{config.server.port}")
    uvicorn_config = uvicorn.Config(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level="info" if args.verbose else "warning",
    )
    server = uvicorn.Server(uvicorn_config)
    await server.serve()
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="docrelay",
        description="Real-time full-state document synchronization relay",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Port to listen on (default: $PORT or 8080)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: 0.0.0.0)",
    )

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json)

    try:
        return asyncio.run(serve(args))
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0


if __name__ == "__main__":
    sys.exit(main())
