"""Device registry - last-known on/off and usage state per device"""
from dataclasses import dataclass

# Usage value of a device that has never been observed in a batch
NEVER_OBSERVED = -1

# Sense reports unattributed load under this name
CATCH_ALL_NAME = "Other"

TOTAL_DEVICE_ID = "TotalUsage"
GUESSED_NAME_SUFFIX = " (?)"


def is_catch_all(name: str) -> bool:
    """The catch-all bucket never forces a push on its own."""
    return name == CATCH_ALL_NAME


@dataclass
class Device:
    """
    Tracked device state.

    Attributes:
        id: Stable device identifier.
        name: Display name, suffixed with " (?)" when guessed by the source.
        source_name: Name exactly as reported by the source.
        state: "unknown" until first observed, then "on" or "off".
        usage: Last observed Watts. -1 before the first observation,
            0 while off, at least 1 while on.
        currently_on: Device was present in the most recent batch.
        recently_changed: Device was created or switched on/off this batch.
    """
    id: str
    name: str
    source_name: str = ""
    state: str = "unknown"
    usage: float = NEVER_OBSERVED
    currently_on: bool = False
    recently_changed: bool = True

    def __post_init__(self):
        if not self.source_name:
            self.source_name = self.name

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state,
            "usage": self.usage,
            "currentlyOn": self.currently_on,
            "recentlyChanged": self.recently_changed,
        }


@dataclass
class SampleResult:
    """
    Outcome of folding one sample into the registry.

    Attributes:
        device: The updated device.
        turned_on: Device switched from off to on (never from unknown).
        usage_delta: Raw Watts minus previously stored usage, None on the
            very first observation.
    """
    device: Device
    turned_on: bool
    usage_delta: float | None


class DeviceRegistry:
    """In-memory map of device id to Device, kept in insertion order."""

    def __init__(self):
        self.devices: dict[str, Device] = {}

    def __contains__(self, device_id: str) -> bool:
        return device_id in self.devices

    def __getitem__(self, device_id: str) -> Device:
        return self.devices[device_id]

    def __len__(self) -> int:
        return len(self.devices)

    def upsert(self, device_id: str, name: str, name_is_guessed: bool = False) -> Device:
        """Add a device in the unknown state. Existing devices are left untouched."""
        device = self.devices.get(device_id)
        if device is None:
            display_name = name + GUESSED_NAME_SUFFIX if name_is_guessed else name
            device = Device(id=device_id, name=display_name, source_name=name)
            self.devices[device_id] = device
        return device

    def begin_batch(self) -> None:
        """Mark every device as not yet seen in the new batch."""
        for device in self.devices.values():
            device.currently_on = False
            # Keep the flag set for devices still waiting for their first sample
            if device.usage != NEVER_OBSERVED:
                device.recently_changed = False

    def apply_sample(
        self,
        device_id: str,
        name: str,
        watts: float,
        name_is_guessed: bool = False
    ) -> SampleResult:
        """
        Record that a device is drawing power in the current batch.

        The delta is computed from the raw Watts against the stored usage;
        the stored usage is clamped to at least 1 W so "on" never reads 0.
        """
        device = self.upsert(device_id, name, name_is_guessed)

        previous_state = device.state
        previous_usage = device.usage

        turned_on = previous_state not in ("on", "unknown")
        usage_delta = None if previous_usage == NEVER_OBSERVED else watts - previous_usage

        device.state = "on"
        device.usage = max(watts, 1)
        device.currently_on = True
        if turned_on:
            device.recently_changed = True

        return SampleResult(device=device, turned_on=turned_on, usage_delta=usage_delta)

    def end_batch(self) -> list[Device]:
        """
        Switch off every device missing from the batch.

        Returns:
            Devices that were on before this batch and are now off.
        """
        turned_off = []
        for device in self.devices.values():
            if device.currently_on:
                continue
            if device.state == "on":
                device.recently_changed = True
                turned_off.append(device)
            device.state = "off"
            device.usage = 0
        return turned_off

    def total_usage(self) -> float:
        return sum(device.usage for device in self.devices.values())

    def total_device(self) -> dict:
        return {
            "id": TOTAL_DEVICE_ID,
            "name": TOTAL_DEVICE_ID,
            "state": "on",
            "usage": self.total_usage(),
        }

    def snapshot(self) -> list[dict]:
        """All devices in insertion order, followed by the aggregate total."""
        devices = [device.to_payload() for device in self.devices.values()]
        devices.append(self.total_device())
        return devices
