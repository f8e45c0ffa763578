"""Main entry point for Crosslink."""

from __future__ import annotations

import argparse
import logging
import sys

from .config import Config, get_config
from .server import mcp


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Crosslink - cross-module record linking engine"
    )
    parser.add_argument(
        "--mode",
        choices=["server", "dashboard", "sweep"],
        default="server",
        help="Run mode: 'server' runs the MCP server, "
        "'dashboard' starts the operator JSON API, "
        "'sweep' runs the background sweeps in the foreground (default: server)",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default=None,
        help="Transport mode for server mode (default: from env or stdio)",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Host to bind to (default: from env or 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: from env or 8765)",
    )
    parser.add_argument(
        "--dashboard-port",
        type=int,
        default=8766,
        help="Port for the dashboard API (default: 8766)",
    )
    parser.add_argument(
        "--no-sweep",
        action="store_true",
        help="In server mode, do not run background sweeps in-process",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="In sweep mode, run every sweep once and exit",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def run_server_mode(
    transport: str,
    host: str,
    port: int,
    config: Config,
    sweep: bool,
    logger: logging.Logger,
) -> None:
    """Run the MCP server, with background sweeps unless disabled."""
    from .container import get_container
    from .worker import SweepWorker

    logger.info(f"Transport: {transport}")

    worker = SweepWorker(container=get_container(), config=config) if sweep else None
    if worker is not None:
        worker.start()

    try:
        if transport == "stdio":
            mcp.run()
        elif transport in ("sse", "streamable-http"):
            mcp.settings.host = host
            mcp.settings.port = port
            logger.info(f"MCP URL: http://{host}:{port}")
            mcp.run(transport=transport)
        else:
            logger.error(f"Unknown transport: {transport}")
            sys.exit(1)
    finally:
        if worker is not None:
            worker.stop()


def run_dashboard_mode(host: str, port: int, logger: logging.Logger) -> None:
    """Run the operator dashboard API."""
    import uvicorn

    from .dashboard import create_dashboard_app

    logger.info(f"Starting Crosslink Dashboard on http://{host}:{port}")

    app = create_dashboard_app()
    uvicorn.run(app, host=host, port=port, log_level="info")


def run_sweep_mode(config: Config, once: bool, logger: logging.Logger) -> None:
    """Run the background sweeps in the foreground."""
    from .worker import SweepWorker

    worker = SweepWorker(config=config)
    if once:
        results = worker.run_once()
        if results is None:
            logger.warning("Another process is sweeping this data directory")
            return
        for name, result in results.items():
            logger.info(f"{name} sweep: {result}")
        return
    worker.run_forever()


def main(argv: list[str] | None = None) -> None:
    """Run Crosslink."""
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    config = get_config()

    # CLI args override config/env
    host = args.host or config.server_host
    port = args.port or config.server_port

    logger.info("Starting Crosslink")
    logger.info(f"Data directory: {config.data_dir}")
    logger.info(f"Mode: {args.mode}")

    if args.mode == "dashboard":
        run_dashboard_mode(host, args.dashboard_port, logger)
    elif args.mode == "sweep":
        run_sweep_mode(config, args.once, logger)
    else:
        transport = args.transport or config.server_transport
        run_server_mode(transport, host, port, config, not args.no_sweep, logger)


if __name__ == "__main__":
    main()
