"""
Controller-side client for the relay's HTTP API.

Pair it with ContinuousMovementController to drive the rover from a
Python process with the same timing as the browser UI.
"""

import asyncio
from typing import Any

import aiohttp

from rover_relay.errors import DeviceRejected, DeviceUnreachable
from rover_relay.messages import Command, DriveMode
from rover_relay.transport import post_json


class RelayClient:
    def __init__(self, base_url: str, *, timeout_s: float = 2.0, session: aiohttp.ClientSession | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout_s))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        session = await self._ensure_session()
        return await post_json(session, f"{self._base_url}{path}", payload)

    async def issue_command(self, cmd: Command) -> Any:
        # The relay stamps the device payload itself.
        payload = cmd.to_payload()
        payload.pop("timestamp", None)
        return await self._post("/command", payload)

    async def issue_stop(self) -> Any:
        return await self._post("/stop", {})

    async def set_mode(self, mode: DriveMode | str) -> Any:
        return await self._post("/mode", {"mode": DriveMode(mode).value})

    async def connect(self, device_base_address: str, telemetry_source_address: str | None = None) -> Any:
        payload = {"deviceBaseAddress": device_base_address}
        if telemetry_source_address:
            payload["telemetrySourceAddress"] = telemetry_source_address
        return await self._post("/connect", payload)

    async def status(self) -> dict[str, Any]:
        session = await self._ensure_session()
        url = f"{self._base_url}/status"
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    raise DeviceRejected(response.status, await response.text())
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DeviceUnreachable(exc) from exc
