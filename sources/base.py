"""Base definitions for telemetry sources - data contracts and protocols"""
from dataclasses import dataclass, field
from typing import Protocol, AsyncIterator


@dataclass
class DeviceInfo:
    """
    Device as listed by the telemetry source before streaming starts.

    Attributes:
        id: Stable device identifier.
        name: Display name as reported by the source.
        name_is_guessed: True when the source flagged the name as a guess.
    """
    id: str
    name: str
    name_is_guessed: bool = False


@dataclass
class DeviceSample:
    """One device observation inside a realtime batch."""
    id: str
    name: str
    watts: float
    name_is_guessed: bool = False


@dataclass
class StreamEvent:
    """
    Lifecycle event emitted by a telemetry stream.

    Attributes:
        kind: "data", "close" or "error".
        message: Decoded JSON message, only set for "data" events.
        error: Exception that ended the stream, only set for "error" events.
    """
    kind: str
    message: dict = field(default_factory=dict)
    error: Exception | None = None


class TelemetrySource(Protocol):
    """
    Protocol for ingress sources (Sense realtime feed, test doubles, etc).

    Uses Protocol for duck typing - implementations don't need to inherit,
    just implement the methods with matching signatures.
    """

    async def connect(self) -> list[DeviceInfo]:
        """
        Authenticate and fetch the initial device list.

        Should raise an exception if the connection fails.
        """
        ...

    def stream(self) -> AsyncIterator[StreamEvent]:
        """
        Stream lifecycle events as they arrive.

        Should be an async generator yielding "data" events and ending
        with exactly one "close" or "error" event. Does not reconnect;
        the caller decides whether to call connect() again.
        """
        ...


def name_is_guessed(device: dict) -> bool:
    """Sense marks names it made up itself with the NameUserGuess tag."""
    tags = device.get("tags") or {}
    return str(tags.get("NameUserGuess", "")).lower() == "true"
