import asyncio
import json
import logging
from enum import Enum
from typing import Any

import aiohttp

from rover_relay.errors import MalformedUplinkFrame
from rover_relay.hub import TelemetryHub
from rover_relay.messages import TelemetryEvent

logger = logging.getLogger(__name__)


class UplinkState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def decode_frame(raw: str | bytes) -> Any:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedUplinkFrame(repr(raw)) from exc
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise MalformedUplinkFrame(raw) from exc


class UplinkBridge:
    """
    One connection to the device's telemetry websocket.

    run() connects, republishes every frame on the hub and returns when the
    connection ends. Connection problems become telemetry lines, never exceptions.
    Reconnecting is left to UplinkSupervisor.
    """

    def __init__(
        self,
        source: str,
        hub: TelemetryHub,
        *,
        session: aiohttp.ClientSession | None = None,
        connect_timeout_s: float = 5.0,
    ) -> None:
        self.source = source
        self.state = UplinkState.DISCONNECTED
        self._hub = hub
        self._session = session
        self._connect_timeout_s = connect_timeout_s

    async def run(self) -> bool:
        """Returns True if the connection was established at some point."""
        self.state = UplinkState.CONNECTING
        session = self._session or aiohttp.ClientSession()
        try:
            return await self._run(session)
        finally:
            self.state = UplinkState.DISCONNECTED
            if self._session is None:
                await session.close()

    async def _run(self, session: aiohttp.ClientSession) -> bool:
        try:
            ws = await asyncio.wait_for(
                session.ws_connect(self.source),
                timeout=self._connect_timeout_s,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            detail = str(exc) or type(exc).__name__
            logger.warning(f"Uplink connection to {self.source} failed: {detail}")
            self._hub.publish(TelemetryEvent.failure(f"Device telemetry connection failed: {detail}", exc))
            return False

        self.state = UplinkState.CONNECTED
        logger.info(f"Uplink connected to {self.source}")
        self._hub.publish(TelemetryEvent.system("Connected to device telemetry websocket.", {"ok": True}))
        async with ws:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self._on_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    exc = ws.exception()
                    logger.warning(f"Uplink error: {exc}")
                    self._hub.publish(
                        TelemetryEvent.system(f"Device websocket error: {exc}", {"ok": False, "error": str(exc)})
                    )
                    break

        logger.info(f"Uplink to {self.source} closed (code {ws.close_code})")
        self._hub.publish(
            TelemetryEvent.system("Device telemetry websocket closed.", {"ok": False, "code": ws.close_code})
        )
        return True

    def _on_frame(self, raw: str | bytes) -> None:
        try:
            frame = decode_frame(raw)
        except MalformedUplinkFrame as exc:
            logger.warning(str(exc))
            self._hub.publish(TelemetryEvent.system(str(exc), {"ok": False, "raw": exc.raw}))
            return
        self._hub.publish(TelemetryEvent.from_device(frame))


class UplinkSupervisor:
    """Keeps an UplinkBridge running against the current telemetry source, with backoff."""

    def __init__(
        self,
        hub: TelemetryHub,
        *,
        reconnect: bool = True,
        connect_timeout_s: float = 5.0,
        backoff_initial_s: float = 1.0,
        backoff_max_s: float = 30.0,
    ) -> None:
        self._hub = hub
        self.reconnect = reconnect
        self._connect_timeout_s = connect_timeout_s
        self._backoff_initial_s = backoff_initial_s
        self._backoff_max_s = backoff_max_s
        self._task: asyncio.Task[None] | None = None
        self._restart_lock = asyncio.Lock()
        self.source: str | None = None
        self.bridge: UplinkBridge | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, source: str | None) -> None:
        if not source:
            logger.info("No telemetry source configured, uplink disabled")
            return
        if self.running:
            raise RuntimeError("uplink already running")
        self.source = source
        self._task = asyncio.create_task(self._supervise(source))

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def restart(self, source: str | None) -> None:
        # Concurrent reconfigurations apply one after another; the last one wins.
        async with self._restart_lock:
            await self.stop()
            self.start(source)

    async def _supervise(self, source: str) -> None:
        delay = self._backoff_initial_s
        while True:
            self.bridge = UplinkBridge(source, self._hub, connect_timeout_s=self._connect_timeout_s)
            connected = await self.bridge.run()
            if not self.reconnect:
                return
            if connected:
                delay = self._backoff_initial_s
            logger.info(f"Reconnecting uplink in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._backoff_max_s)
