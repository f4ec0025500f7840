# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import argparse
import asyncio
import logging
import os

from . import __version__
from .api.server import start_server
from .config import Config
from .orchestrator import StreamingOrchestrator


LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

LOG_FORMAT = "[%(levelname)s] [%(name)s] %(message)s"


def setup_logging(config: Config, override_level: str | None = None) -> int:
    """Configure the root logger from --log-level or log.level; returns the level used."""
    name = (override_level or str(config.get("log.level", "info"))).lower()
    level = LOG_LEVELS.get(name, logging.INFO)

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler()], force=True)
    # aiohttp logs each request at info
    logging.getLogger("aiohttp.access").setLevel(max(level, logging.WARNING))
    return level


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="srtcast", description="Stream the screen to an SRT ingest endpoint")
    parser.add_argument("--host", help="Address for the control API (default: server.host)")
    parser.add_argument("--port", type=int, help="Port for the control API (default: server.port)")
    parser.add_argument("--config", help="YAML/TOML/JSON file with config overrides")
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS),
        type=str.lower,
        help="Logging level (overrides log.level)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def use_fast_event_loop(logger: logging.Logger) -> None:
    """Switch to winloop/uvloop when the optional 'speed' extra is installed."""
    module_name = "winloop" if os.name == "nt" else "uvloop"
    try:
        module = __import__(module_name)
    except ImportError:
        logger.info(f"{module_name} not available, using default asyncio loop")
        return
    asyncio.set_event_loop_policy(module.EventLoopPolicy())
    logger.info(f"{module_name} enabled")


async def serve(host: str, port: int) -> None:
    """Run the control API until cancelled, then stop any live session."""
    logger = logging.getLogger("main")
    orchestrator = StreamingOrchestrator()

    # Warm the capability cache
    capability = await orchestrator.get_capability()
    if capability.ok:
        cap = capability.value
        logger.info(f"engine {cap.executable_path} {cap.version_string}: {cap.requirements_message}")
    else:
        logger.warning(f"no encoding engine: {capability.error.message}")

    runner = await start_server(orchestrator, host, port)
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


def run(argv: list[str] | None = None) -> None:
    """Console script entry point."""
    args = build_parser().parse_args(argv)

    config = Config()
    config.load(args.config)
    setup_logging(config, args.log_level)

    logger = logging.getLogger("main")
    logger.debug(f"config: {config.get()}")
    use_fast_event_loop(logger)

    host = args.host or config.get("server.host", "127.0.0.1")
    port = args.port or int(config.get("server.port", 8790))
    try:
        asyncio.run(serve(host, port))
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    run()
