"""
rtmbot CLI entry point.

Usage:
    rtmbot --token xoxb-...        # Run the example bot
    SLACK_TOKEN=xoxb-... rtmbot    # Token from env (.env supported)
    rtmbot --help
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

from rtmbot import __version__


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
        level=level,
    )
    if log_file:
        logger.add(
            Path(log_file).expanduser(),
            rotation="10 MB",
            retention="7 days",
            level="DEBUG",
        )


def main(argv: list[str] | None = None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="rtmbot",
        description="rtmbot - rule-based real-time chat bot",
    )
    parser.add_argument(
        "--token",
        default=os.getenv("SLACK_TOKEN", ""),
        help="Bot token to run with (default: $SLACK_TOKEN)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Log level for stderr (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        default=os.getenv("RTMBOT_LOG_FILE", ""),
        help="Also write DEBUG logs to this file (rotated at 10 MB)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"rtmbot {__version__}",
    )

    args = parser.parse_args(argv)
    if not args.token:
        print("ERROR: Must specify bot token with --token=your-token or SLACK_TOKEN", file=sys.stderr)
        return 2

    configure_logging(args.log_level, args.log_file or None)
    try:
        return asyncio.run(_run_bot(args.token))
    except KeyboardInterrupt:
        logger.info("rtmbot stopped")
        return 0


async def _run_bot(token: str) -> int:
    from rtmbot.bot import Bot
    from rtmbot.connection import ConnectionConfig
    from rtmbot.errors import BackendRejected, HandshakeFailed

    bot = Bot(token, config=ConnectionConfig.from_env())
    bot.respond_with("whats up dog", lambda user, groups: "not much, you?")

    try:
        await bot.start()
    except (HandshakeFailed, BackendRejected) as exc:
        await bot.web.aclose()
        logger.error(f"Error connecting: {exc}")
        return 1

    logger.info("rtmbot running")
    await bot.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
