"""
CLI entry point.

Commands:
- init: Initialize data directory and snapshot database
- ingest <text>: Store one observation
- query <text>: Retrieve ranked results
- status: Show layer and engine status
- consolidate: Run a consolidation pass now
- run: Keep the engine alive with background maintenance

Flags:
- --debug: Enable debug logging to file
"""

import asyncio
import json
import logging
import signal
import sys

from strata.core.config import Settings, get_settings
from strata.core.errors import StrataError
from strata.core.logging import get_logger, setup_logging
from strata.service import MemoryService

USAGE = """Usage: strata [--debug] <command> [text]
Commands: init, ingest <text>, query <text>, status, consolidate, run
Flags: --debug (enable debug logging to data/strata.log)"""


def main() -> int:
    """Main entry point."""
    settings = get_settings()

    # Parse --debug flag (enables verbose DEBUG traces)
    debug_mode = "--debug" in sys.argv
    if debug_mode:
        sys.argv.remove("--debug")

    log_level = logging.DEBUG if debug_mode else logging.INFO
    log_file = settings.data_dir / "strata.log"
    setup_logging(level=log_level, log_file=log_file)
    logger = get_logger("cli")

    logger.info(f"Logging to {log_file}" + (" (debug mode)" if debug_mode else ""))

    if len(sys.argv) < 2:
        print(USAGE)
        return 1

    command = sys.argv[1]
    text = " ".join(sys.argv[2:]).strip()

    if command == "init":
        return asyncio.run(_init(settings))

    if command in ("ingest", "query"):
        if not text:
            print(f"Usage: strata {command} <text>")
            return 1
        handler = _ingest if command == "ingest" else _query
        return asyncio.run(handler(settings, text))

    if command == "status":
        return asyncio.run(_status(settings))

    if command == "consolidate":
        return asyncio.run(_consolidate(settings))

    if command == "run":
        logger.info("Starting memory service")
        return asyncio.run(_run(settings))

    print(f"Unknown command: {command}")
    return 1


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _init(settings: Settings) -> int:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    service = MemoryService(settings)
    try:
        await service.start()
        if not service.store.connected:
            print(f"Error: cannot open {settings.db_path}")
            return 1
    except StrataError as e:
        print(f"Error: {e}")
        return 1
    finally:
        await service.stop()
    get_logger("cli").info(f"Initialized data directory: {settings.data_dir}")
    print(f"Created: {settings.db_path}")
    return 0


async def _ingest(settings: Settings, text: str) -> int:
    service = MemoryService(settings)
    try:
        await service.start()
        result = await service.engine.ingest(text)
        _print_json(result.to_dict())
    except (StrataError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    finally:
        await service.stop()
    return 0


async def _query(settings: Settings, text: str) -> int:
    service = MemoryService(settings)
    try:
        await service.start()
        result = await service.engine.retrieve(text)
    except (StrataError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    finally:
        await service.stop()

    if not result.results:
        print("No results.")
        return 0
    for hit in result.results:
        print(f"[{hit.layer.value:8}] {hit.score:6.2f}  {hit.content}")
    confidence = result.confidence
    print(f"\nconfidence: avg {confidence['average']:.2f}, max {confidence['maximum']:.2f}")
    return 0


async def _status(settings: Settings) -> int:
    service = MemoryService(settings)
    try:
        await service.start()
        _print_json(service.status())
    except StrataError as e:
        print(f"Error: {e}")
        return 1
    finally:
        await service.stop()
    return 0


async def _consolidate(settings: Settings) -> int:
    service = MemoryService(settings)
    try:
        await service.start()
        report = await service.engine.consolidate()
        _print_json(report.to_dict())
    except StrataError as e:
        print(f"Error: {e}")
        return 1
    finally:
        await service.stop()
    return 0 if not report.failures else 1


async def _run(settings: Settings) -> int:
    """Run the engine with its scheduler until SIGINT/SIGTERM."""
    service = MemoryService(settings)
    logger = get_logger("cli.run")

    def handle_shutdown_signal(signum: int, frame: object | None) -> None:
        """Handle shutdown signals."""
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, initiating graceful shutdown")
        service.request_shutdown()

    signal.signal(signal.SIGINT, handle_shutdown_signal)
    signal.signal(signal.SIGTERM, handle_shutdown_signal)

    try:
        await service.start(background=True)
        print("Memory service running. Press Ctrl+C to stop.")
        await service.wait_for_shutdown()
        print("\nShutting down gracefully...")
    except StrataError as e:
        logger.error(f"Error running service: {e}", exc_info=True)
        print(f"Error: {e}")
        return 1
    finally:
        await service.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
