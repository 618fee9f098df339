import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Load configuration from single .env file
load_dotenv("sense-smartthings-bridge.env")

from scheduler import ConnectionState, PushPolicy, UpdateScheduler
from sources.sense import SenseSource
from sinks import smartthings
from sinks.smartthings import push_to_smartthings

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(levelname)s - %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_source() -> SenseSource:
    """Initialize the Sense source with hard fail on misconfiguration"""
    email = os.getenv("SENSE_EMAIL")
    password = os.getenv("SENSE_PASSWORD")
    if not email or not password:
        logger.error("Sense: SENSE_EMAIL and SENSE_PASSWORD must be configured in sense-smartthings-bridge.env")
        sys.exit(1)
    return SenseSource(email=email, password=password)


def _env_number(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except ValueError:
        logger.error(f"{name} must be a number, got {value!r}")
        sys.exit(1)
    if number < 0:
        logger.error(f"{name} must not be negative, got {value!r}")
        sys.exit(1)
    return number


def get_policy(args=None) -> PushPolicy:
    """Build the push policy from the environment, overridden by CLI flags"""
    defaults = PushPolicy()
    policy = PushPolicy(
        usage_threshold=_env_number("USAGE_THRESHOLD", defaults.usage_threshold),
        max_interval_seconds=_env_number("MAX_SECONDS_BETWEEN_PUSH", defaults.max_interval_seconds),
        min_interval_seconds=_env_number("MIN_SECONDS_BETWEEN_PUSH", defaults.min_interval_seconds),
        auto_reconnect=os.getenv("AUTO_RECONNECT", "true").strip().lower() not in ("0", "false", "no", "off"),
    )

    if args is not None:
        if args.usage_threshold is not None:
            policy.usage_threshold = args.usage_threshold
        if args.max_interval is not None:
            policy.max_interval_seconds = args.max_interval
        if args.min_interval is not None:
            policy.min_interval_seconds = args.min_interval
        if args.no_reconnect:
            policy.auto_reconnect = False

    if policy.min_interval_seconds > policy.max_interval_seconds:
        logger.warning(
            f"Minimum push interval ({policy.min_interval_seconds:g}s) exceeds maximum "
            f"({policy.max_interval_seconds:g}s); changes are never pushed early and the list "
            f"is sent every {policy.max_interval_seconds:g}s"
        )
    return policy


def check_sink() -> None:
    """Hard fail when the SmartThings hub address is missing"""
    if not smartthings.SMARTTHINGS_HUB_IP:
        logger.error("SmartThings: SMARTTHINGS_HUB_IP not configured in sense-smartthings-bridge.env")
        sys.exit(1)


async def idle_forever():
    """Keep the process alive until it is terminated externally"""
    await asyncio.Event().wait()


async def main(policy: PushPolicy):
    source = get_source()
    check_sink()

    scheduler = UpdateScheduler(
        source=source,
        deliver=push_to_smartthings,
        policy=policy
    )

    logger.info(
        f"Pushing on changes over {policy.usage_threshold:g} W, "
        f"every {policy.min_interval_seconds:g}-{policy.max_interval_seconds:g}s"
    )

    await scheduler.run()
    await scheduler.drain()

    if scheduler.state is ConnectionState.IDLE:
        logger.error("No telemetry connection. Idling until stopped.")
        await idle_forever()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Sense to SmartThings Power Bridge")
    parser.add_argument(
        "--usage-threshold",
        type=float,
        help="Per-device change in Watts that triggers a push (default: 200)"
    )
    parser.add_argument(
        "--max-interval",
        type=float,
        help="Maximum seconds between pushes (default: 60)"
    )
    parser.add_argument(
        "--min-interval",
        type=float,
        help="Minimum seconds between pushes (default: 10)"
    )
    parser.add_argument(
        "--no-reconnect",
        action="store_true",
        help="Do not reconnect when the Sense stream closes"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        asyncio.run(main(get_policy(args)))
    except KeyboardInterrupt:
        logger.info("Script stopped by user.")
