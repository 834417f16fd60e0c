"""rtcstats relay entry point.

Usage:
    python -m rtcstats_push --jicofo-address URL --rtcstats-server URL [--interval MS]

Every option can also be set through its environment variable
(``JICOFO_ADDRESS``, ``RTCSTATS_SERVER``, ``INTERVAL``, ``DISPLAY_NAME``).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from .config import ConfigError, RelayConfig
from .relay import StatsRelay
from .source import FocusClient
from .tracker import SessionTracker
from .transport import StatsTransport

logger = logging.getLogger("rtcstats_push")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rtcstats-push",
        description="Push Jicofo conference stats to an rtcstats server",
    )
    parser.add_argument(
        "--jicofo-address", "-j",
        default=None,
        help="Address of the Jicofo whose REST API will be queried (http://127.0.0.1:8888)",
    )
    parser.add_argument(
        "--rtcstats-server", "-r",
        default=None,
        help="Address of the rtcstats server websocket (ws://127.0.0.1:3000)",
    )
    parser.add_argument(
        "--interval", "-i",
        type=int,
        default=None,
        help="Interval in milliseconds at which stats are pulled and pushed (default: 30000)",
    )
    parser.add_argument(
        "--display-name",
        default=None,
        help="Name identifying this relay to the rtcstats server (default: host name)",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to a JSON config file",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def load_config(args: argparse.Namespace, environ=None) -> RelayConfig:
    """Resolve config from file, environment and CLI flags, then validate."""
    config = RelayConfig.load(args.config) if args.config else RelayConfig()
    config.apply_env(environ)
    config.apply_overrides(
        jicofo_address=args.jicofo_address,
        rtcstats_server=args.rtcstats_server,
        interval=args.interval,
        display_name=args.display_name,
    )
    config.validate()
    return config


def build_relay(config: RelayConfig) -> StatsRelay:
    return StatsRelay(
        source=FocusClient(config.jicofo_address),
        transport=StatsTransport(config.rtcstats_server, display_name=config.display_name),
        tracker=SessionTracker(display_name=config.display_name),
        interval_ms=config.interval,
    )


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        config = load_config(args)
    except ConfigError as exc:
        parser.error(str(exc))

    logger.info(
        "Querying Jicofo REST API at %s/rtcstats every %d ms",
        config.jicofo_address.rstrip("/"),
        config.interval,
    )
    logger.info("Sending stats data to rtcstats server at %s", config.rtcstats_server)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    relay = build_relay(config)
    stopped = asyncio.Event()

    def _shutdown(sig: int) -> None:
        logger.info("Received signal %d, shutting down", sig)
        stopped.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown, sig)

    async def _run() -> None:
        await relay.start()
        await stopped.wait()

    try:
        loop.run_until_complete(_run())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(relay.stop())
        loop.close()


if __name__ == "__main__":
    main()
