"""
Process entry point.

Usage:
    python -m ingestion_service [--port 5000] [--host 0.0.0.0]

Port precedence: --port > PORT > 5000.
"""

import argparse
import asyncio
import signal
import sys
from typing import Optional, Sequence

from .core.config import resolve_config
from .core.logging import get_logger, setup_logging
from .api.server import start

logger = get_logger("process")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ingestion_service", description=__doc__.splitlines()[1])
    parser.add_argument("--port", type=int, default=None, help="listen port (overrides PORT)")
    parser.add_argument("--host", default=None, help="listen address (overrides HOST)")
    return parser.parse_args(argv)


async def serve(port: Optional[int] = None, host: Optional[str] = None) -> None:
    config = resolve_config(port=port)
    if host:
        config = config.model_copy(update={"host": host})
    handle = await start(config)
    await handle.wait_closed()


def _terminate(signum, frame):
    raise SystemExit(128 + signum)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    logger.info("starting_server")

    signal.signal(signal.SIGTERM, _terminate)
    exit_code = 0
    try:
        asyncio.run(serve(port=args.port, host=args.host))
    except KeyboardInterrupt:
        exit_code = 130
    except SystemExit as e:
        exit_code = e.code if isinstance(e.code, int) else 1
    except Exception:
        logger.exception("server_crashed")
        exit_code = 1
    finally:
        logger.info("process_exiting", code=exit_code)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
