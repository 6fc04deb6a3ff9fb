"""
HTTP transport to the device.

One bounded POST per call, no retries: a retried STOP would reach the
device with a stale timestamp, so retry policy stays with the caller.
"""

import asyncio
import json
import logging
from typing import Any

import aiohttp

from rover_relay.endpoints import EndpointRegistry
from rover_relay.errors import DeviceRejected, DeviceUnreachable

logger = logging.getLogger(__name__)


async def post_json(session: aiohttp.ClientSession, url: str, payload: Any) -> Any:
    """
    POST a JSON payload and decode the answer.

    Returns:
        Decoded JSON body, or an empty dict when the body is empty or not JSON.

    Raises:
        DeviceRejected: non-2xx status
        DeviceUnreachable: connection error or timeout
    """
    try:
        async with session.post(url, json=payload) as response:
            text = await response.text()
            if not 200 <= response.status < 300:
                raise DeviceRejected(response.status, text)
    except asyncio.TimeoutError as exc:
        raise DeviceUnreachable(exc) from exc
    except aiohttp.ClientError as exc:
        raise DeviceUnreachable(exc) from exc

    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except ValueError:
        logger.debug(f"Non-JSON response from {url}, treating as empty")
        return {}


class DeviceTransport:
    def __init__(
        self,
        registry: EndpointRegistry,
        *,
        timeout_s: float = 2.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._registry = registry
        self._timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def relay(self, endpoint_path: str, payload: Any) -> Any:
        # Read the endpoint per call so a reconfiguration applies to the next command.
        url = self._registry.url_for(endpoint_path)
        session = await self._ensure_session()
        logger.debug(f"POST {url} {payload}")
        return await post_json(session, url, payload)
