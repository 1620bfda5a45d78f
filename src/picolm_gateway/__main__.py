"""PicoLM Gateway entry point — CLI argument parsing, validation, and server launch."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from picolm_gateway.config import load_config
from picolm_gateway.inference.errors import ConfigurationError

logger = logging.getLogger("picolm_gateway")

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def _get_version() -> str:
    """Return the installed package version, or fall back to 'unknown'."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return f"picolm-gateway {version('picolm-gateway')}"
    except PackageNotFoundError:
        return "picolm-gateway (unknown version — not installed as package)"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="picolm-gateway",
        description="OpenAI-compatible chat completion server backed by the PicoLM CLI",
    )
    parser.add_argument(
        "--version",
        "-V",
        action="version",
        version=_get_version(),
    )
    parser.add_argument(
        "--config",
        "-c",
        help="Path to config.toml file",
    )
    parser.add_argument(
        "--host",
        help="Address to bind (overrides config)",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        help="Port to listen on (overrides config)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-file",
        metavar="PATH",
        help="Write all log messages (DEBUG level) to a file.",
    )
    parser.add_argument(
        "--prompt",
        metavar="TEXT",
        help="Run a single prompt without starting the server and exit. "
        "Response text goes to stdout (pipeable), diagnostics to stderr.",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        print(f"Error: failed to load config: {exc}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    level = logging.DEBUG if args.verbose else _LOG_LEVELS.get(config.logging.level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.log_file:
        file_handler = logging.FileHandler(args.log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logging.getLogger().addHandler(file_handler)
        logging.getLogger().setLevel(logging.DEBUG)

    from picolm_gateway.inference.bridge import PicoLMBridge

    bridge = PicoLMBridge(config.picolm)
    logger.info("Validating PicoLM configuration...")
    try:
        bridge.validate()
    except ConfigurationError as exc:
        print(f"Error: picolm validation failed: {exc}", file=sys.stderr)
        sys.exit(1)
    logger.info("PicoLM configuration valid (model: %s)", config.picolm.model_path)

    if args.prompt:
        from picolm_gateway.headless import run_headless

        sys.exit(asyncio.run(run_headless(bridge, args.prompt)))

    import uvicorn

    from picolm_gateway.server.app import create_app

    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    app = create_app(config, bridge)
    logger.info("Starting server on %s:%d", config.server.host, config.server.port)
    logger.info("Endpoints:")
    logger.info("  POST /v1/chat/completions")
    logger.info("  GET  /v1/models")
    logger.info("  GET  /v1/models/{model_id}")
    logger.info("  GET  /health")

    uvicorn.run(app, host=config.server.host, port=config.server.port, log_config=None)


if __name__ == "__main__":
    main()
