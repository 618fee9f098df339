"""Update scheduler - decides when the device summary is pushed downstream"""
import asyncio
import contextlib
import enum
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from registry import DeviceRegistry, is_catch_all
from sources.base import DeviceSample, StreamEvent, TelemetrySource, name_is_guessed

logger = logging.getLogger(__name__)

# The first batch is always pushed
INITIAL_PUSH_AGE = 24 * 60 * 60


@dataclass
class PushPolicy:
    """
    Push throttling rules.

    Attributes:
        usage_threshold: Per-device change in Watts that counts as significant.
        max_interval_seconds: Push at least this often, changes or not.
        min_interval_seconds: Never push more often than this.
        auto_reconnect: Reconnect when the stream closes or fails.
    """
    usage_threshold: float = 200
    max_interval_seconds: float = 60
    min_interval_seconds: float = 10
    auto_reconnect: bool = True


class ConnectionState(enum.Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    IDLE = "idle"


def samples_from_message(message: dict) -> list[DeviceSample]:
    """
    Extract device samples from a realtime stream message.

    Anything that is not a realtime_update with devices yields an empty
    list. Device entries without id, name or wattage are skipped.
    """
    if not isinstance(message, dict) or message.get("type") != "realtime_update":
        return []

    payload = message.get("payload")
    if not isinstance(payload, dict):
        return []

    samples = []
    for dev in payload.get("devices") or []:
        if not isinstance(dev, dict) or "id" not in dev or "name" not in dev:
            logger.debug(f"Ignoring malformed device entry: {dev!r}")
            continue

        watts = dev.get("w")
        # bool is an int subclass
        if isinstance(watts, bool) or not isinstance(watts, (int, float)):
            logger.debug(f"Ignoring device entry without wattage: {dev!r}")
            continue

        samples.append(DeviceSample(
            id=dev["id"],
            name=dev["name"],
            watts=watts,
            name_is_guessed=name_is_guessed(dev)
        ))
    return samples


class UpdateScheduler:
    """
    Folds realtime batches into a DeviceRegistry and pushes the full
    device list when something significant changed, or when the push
    has been quiet for too long.

    Delivery runs as a fire-and-forget task: its outcome is only logged
    and never touches registry or timer state.
    """

    def __init__(
        self,
        source: TelemetrySource,
        deliver: Callable[[list[dict]], Awaitable[bool]],
        policy: PushPolicy | None = None,
        registry: DeviceRegistry | None = None,
        clock: Callable[[], float] = time.time
    ):
        self.source = source
        self.deliver = deliver
        self.policy = policy or PushPolicy()
        self.registry = registry if registry is not None else DeviceRegistry()
        self.clock = clock

        self.state = ConnectionState.CONNECTING
        self.reconnect_pending = False
        self.last_push_at = clock() - INITIAL_PUSH_AGE
        self.last_pushed_total = 0.0
        self._deliveries: set[asyncio.Task] = set()

    # --- Batch folding ---

    def handle_message(self, message: dict) -> bool:
        """Fold a raw stream message. Returns True when a push was scheduled."""
        samples = samples_from_message(message)
        if not samples:
            return False
        return self.process_batch(samples)

    def process_batch(self, samples: list[DeviceSample]) -> bool:
        """
        Fold one batch of samples and push if warranted.

        Returns:
            True when a push was scheduled for this batch.
        """
        registry = self.registry
        update_now = False

        registry.begin_batch()

        for sample in samples:
            result = registry.apply_sample(
                sample.id, sample.name, sample.watts, sample.name_is_guessed
            )
            if is_catch_all(result.device.source_name):
                continue

            if result.turned_on:
                logger.info(f"{sample.name} turned on!")
                update_now = True

            if result.usage_delta is not None and abs(result.usage_delta) > self.policy.usage_threshold:
                logger.info(f"{sample.name} usage changed by {result.usage_delta:g} W")
                update_now = True

        for device in registry.end_batch():
            if is_catch_all(device.source_name):
                continue
            logger.info(f"{device.name} turned off!")
            update_now = True

        now = self.clock()
        seconds_since_last_push = now - self.last_push_at

        # Debounce wins over significance
        if seconds_since_last_push <= self.policy.min_interval_seconds:
            update_now = False

        if not update_now and seconds_since_last_push < self.policy.max_interval_seconds:
            return False

        devices = registry.snapshot()
        self.last_pushed_total = devices[-1]["usage"]
        # Optimistic: a failed delivery still counts as a push
        self.last_push_at = now
        self._schedule_delivery(devices)
        return True

    # --- Delivery ---

    def _schedule_delivery(self, devices: list[dict]) -> None:
        task = asyncio.create_task(self._deliver(devices))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, devices: list[dict]) -> None:
        try:
            delivered = await self.deliver(devices)
        except Exception as e:
            logger.error(f"Delivery failed: {e}")
            return

        if delivered:
            logger.debug(f"Pushed {len(devices)} devices, total {devices[-1]['usage']:g} W")

    async def drain(self) -> None:
        """Wait for all in-flight deliveries to finish."""
        if self._deliveries:
            await asyncio.gather(*self._deliveries)

    # --- Stream lifecycle ---

    def request_reconnect(self) -> bool:
        """
        Ask for a fresh connection after the stream ended.

        Returns:
            True when a reconnect attempt should start now.
        """
        if not self.policy.auto_reconnect:
            self.state = ConnectionState.IDLE
            return False

        if self.reconnect_pending:
            return False

        self.reconnect_pending = True
        self.state = ConnectionState.RECONNECTING
        logger.info("Reconnecting...")
        return True

    async def _connect(self) -> bool:
        try:
            devices = await self.source.connect()
        except Exception as e:
            logger.error(f"Telemetry connection failed: {e}")
            self.state = ConnectionState.IDLE
            return False

        for dev in devices:
            self.registry.upsert(dev.id, dev.name, dev.name_is_guessed)

        self.reconnect_pending = False
        self.state = ConnectionState.STREAMING
        return True

    async def _consume(self) -> None:
        """Fold data events until the stream reports close or error."""
        async with contextlib.aclosing(self.source.stream()) as events:
            async for event in events:
                if event.kind == "data":
                    self.handle_message(event.message)
                elif event.kind in ("close", "error"):
                    self._log_stream_end(event)
                    break

    def _log_stream_end(self, event: StreamEvent) -> None:
        if event.kind == "error":
            logger.warning(f"Stream error: {event.error}")
        else:
            logger.info("Stream closed.")

    async def run(self) -> None:
        """
        Connect, stream and reconnect until the connection cannot be
        (re)established or reconnecting is disabled.

        Ends in the IDLE state.
        """
        self.state = ConnectionState.CONNECTING

        while True:
            if not await self._connect():
                return

            await self._consume()

            if not self.request_reconnect():
                self.state = ConnectionState.IDLE
                return
