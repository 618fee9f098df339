"""SmartThings hub egress module - pushes the device list via HTTP"""
import asyncio
import logging
import os
import requests

logger = logging.getLogger(__name__)

# Configuration
SMARTTHINGS_HUB_IP = os.environ.get("SMARTTHINGS_HUB_IP")
SMARTTHINGS_HUB_PORT = 39500
SOURCE_HEADER = "STSense"


def _perform_http_request(payload) -> bool:
    """
    Executes the HTTP Push to the SmartThings hub.
    Is ran in a thread to not block the main loop.

    Returns:
        True when the hub accepted the push.
    """
    if not SMARTTHINGS_HUB_IP:
        logger.warning("SmartThings configuration missing. Skipping push.")
        return False

    try:
        r = requests.post(
            f"http://{SMARTTHINGS_HUB_IP}:{SMARTTHINGS_HUB_PORT}/event",
            json=payload,
            headers={"source": SOURCE_HEADER}
        )
        r.raise_for_status()
    except requests.RequestException as e:
        logger.warning(f"SmartThings: Unable to connect to hub: {e}")
        return False

    logger.info("SmartThings: Data successfully sent to hub")
    return True


async def send_http_payload(payload) -> bool:
    """
    Offloads the blocking HTTP request to a thread.
    """
    return await asyncio.to_thread(_perform_http_request, payload)


async def push_to_smartthings(devices: list[dict]) -> bool:
    """
    Wraps the device list and sends it to a thread.

    Args:
        devices: Device records followed by the TotalUsage record
    """
    payload = {"devices": devices}

    # Offload blocking call to a thread
    return await send_http_payload(payload)
