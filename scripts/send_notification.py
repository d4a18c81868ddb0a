#!/usr/bin/env python3
"""Send one notification through the channels configured in the environment.

Usage examples:
    # Every channel listed in WEBNOTIFY_CHANNELS
    uv run python scripts/send_notification.py "Hello, this is a test notification!"

    # Only email, giving up after 10 seconds
    uv run python scripts/send_notification.py "Hello with timeout!" --channels email --timeout 10
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from webnotifications import AggregateError, DeliveryContext, Dispatcher
from webnotifications.settings import Settings

logger = logging.getLogger("send_notification")


async def send(message: str, settings: Settings) -> int:
    """Build a dispatcher from *settings* and send *message* once."""
    dispatcher = Dispatcher.build(settings.to_notifier_config(), *settings.get_channel_kinds())
    if not dispatcher.senders:
        logger.warning("No channel is fully configured; nothing to send")
        return 0

    logger.info("Sending via %s", ", ".join(dispatcher.channel_names))
    if settings.timeout > 0:
        ctx = DeliveryContext.with_timeout(settings.timeout)
    else:
        ctx = DeliveryContext.background()

    try:
        await dispatcher.notify_with_context(ctx, message)
    except AggregateError as exc:
        print(f"Error sending notification: {exc}", file=sys.stderr)
        return 1
    print(f"Sent via {', '.join(dispatcher.channel_names)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Send a notification")
    parser.add_argument("message", help="Message text")
    parser.add_argument("--channels", help="Comma-separated channels (overrides WEBNOTIFY_CHANNELS)")
    parser.add_argument("--timeout", type=float, help="Seconds before giving up (0 = no deadline)")
    args = parser.parse_args(argv)

    overrides: dict[str, object] = {}
    if args.channels is not None:
        overrides["channels"] = args.channels
    if args.timeout is not None:
        overrides["timeout"] = args.timeout
    try:
        settings = Settings(**overrides)
        settings.get_channel_kinds()
    except ValueError as exc:
        print(f"ERROR: invalid configuration: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return asyncio.run(send(args.message, settings))


if __name__ == "__main__":
    sys.exit(main())
