"""Sense ingress module - streams per-device power data via WebSocket"""
import asyncio
import json
import logging
import requests
import websockets
from typing import AsyncIterator

from sources.base import DeviceInfo, StreamEvent, name_is_guessed

logger = logging.getLogger(__name__)


class SenseError(Exception):
    """Raised when the Sense HTTP bootstrap fails."""


class SenseSource:
    """
    Sense energy monitor source.

    Authenticates against the Sense REST API, fetches the device list
    and subscribes to the realtime WebSocket feed of the first monitor.
    """

    def __init__(
        self,
        email: str,
        password: str,
        api_url: str = "https://api.sense.com/apiservice/api/v1",
        realtime_url: str = "wss://clientrt.sense.com/monitors",
        user_agent: str = "Sense-SmartThings-Bridge/0.1.0"
    ):
        """
        Initialize Sense source.

        Args:
            email: Sense account email
            password: Sense account password
            api_url: REST API base URL for bootstrap
            realtime_url: WebSocket base URL for the realtime feed
            user_agent: User-Agent header for requests
        """
        self.email = email
        self.password = password
        self.api_url = api_url
        self.realtime_url = realtime_url
        self.user_agent = user_agent
        self.access_token = None
        self.monitor_id = None

    @property
    def wss_url(self) -> str:
        return f"{self.realtime_url}/{self.monitor_id}/realtimefeed?access_token={self.access_token}"

    def _authenticate(self) -> dict:
        response = requests.post(
            f"{self.api_url}/authenticate",
            data={"email": self.email, "password": self.password},
            headers={"User-Agent": self.user_agent},
            timeout=10
        )
        response.raise_for_status()
        return response.json()

    def _fetch_devices(self) -> list:
        response = requests.get(
            f"{self.api_url}/app/monitors/{self.monitor_id}/devices",
            headers={
                "Authorization": f"bearer {self.access_token}",
                "User-Agent": self.user_agent
            },
            timeout=10
        )
        response.raise_for_status()
        return response.json()

    async def connect(self) -> list[DeviceInfo]:
        """
        Phase 1: HTTP Bootstrap.
        Authenticate, pick the first monitor and fetch its device list.

        Raises:
            SenseError: when authentication or the device fetch fails.
        """
        if not self.email or not self.password:
            raise SenseError("SENSE_EMAIL / SENSE_PASSWORD not configured.")

        try:
            auth = await asyncio.to_thread(self._authenticate)
        except (requests.RequestException, ValueError) as e:
            raise SenseError(f"Authentication failed: {e}") from e

        self.access_token = auth.get("access_token")
        monitors = auth.get("monitors") or []

        if not self.access_token:
            raise SenseError("No access token received.")

        if not monitors:
            raise SenseError("No monitor found on this account.")

        self.monitor_id = monitors[0]["id"]
        logger.info(f"Sense: Found monitor {self.monitor_id}")

        try:
            raw_devices = await asyncio.to_thread(self._fetch_devices)
        except (requests.RequestException, ValueError) as e:
            raise SenseError(f"Device list fetch failed: {e}") from e

        devices = [
            DeviceInfo(id=dev["id"], name=dev["name"], name_is_guessed=name_is_guessed(dev))
            for dev in raw_devices
            if "id" in dev and "name" in dev
        ]
        logger.info(f"Sense: Successfully connected, {len(devices)} devices known. Data incoming!")
        return devices

    async def stream(self) -> AsyncIterator[StreamEvent]:
        """
        Phase 2: WebSocket Stream.

        Yields a "data" event per decoded message, then exactly one
        "close" or "error" event when the connection ends. Reconnecting
        is left to the caller.
        """
        logger.info(f"Sense: Connect WebSocket for monitor {self.monitor_id}")

        try:
            async with websockets.connect(
                self.wss_url,
                additional_headers={"User-Agent": self.user_agent}
            ) as websocket:
                async for message in websocket:
                    try:
                        data = json.loads(message)
                    except json.JSONDecodeError:
                        logger.debug(f"Sense: Ignoring undecodable message: {message!r}")
                        continue

                    if isinstance(data, dict):
                        yield StreamEvent(kind="data", message=data)

            logger.info("Sense: Connection closed.")
            yield StreamEvent(kind="close")

        except websockets.ConnectionClosed as e:
            logger.warning(f"Sense: Connection closed: {e}")
            yield StreamEvent(kind="close")
        except Exception as e:
            logger.error(f"Sense: An error occurred. {e}")
            yield StreamEvent(kind="error", error=e)
