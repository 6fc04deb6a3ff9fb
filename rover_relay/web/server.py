import asyncio
import json
import logging
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from rover_relay.commands import CommandHandler
from rover_relay.config import config
from rover_relay.endpoints import EndpointRegistry
from rover_relay.errors import InvalidCommand, RelayError
from rover_relay.hub import Subscription, TelemetryHub
from rover_relay.messages import Command, JoystickIntent, TelemetryEvent
from rover_relay.movement import ContinuousMovementController
from rover_relay.transport import DeviceTransport
from rover_relay.uplink import UplinkSupervisor

logger = logging.getLogger(__name__)

app = FastAPI()

registry = EndpointRegistry.from_config(config.device)
hub = TelemetryHub(queue_size=config.telemetry.queue_size)
transport = DeviceTransport(registry, timeout_s=config.device.request_timeout_s)
command_handler = CommandHandler(transport, hub, registry)
uplink = UplinkSupervisor(
    hub,
    reconnect=config.uplink.reconnect,
    connect_timeout_s=config.uplink.connect_timeout_s,
    backoff_initial_s=config.uplink.backoff_initial_s,
    backoff_max_s=config.uplink.backoff_max_s,
)


@app.on_event("startup")
async def on_startup() -> None:
    uplink.start(registry.current.telemetry_source_address)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await uplink.stop()
    await transport.close()


@app.exception_handler(InvalidCommand)
async def invalid_command_handler(request: Request, exc: InvalidCommand) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in e['loc'] if p != 'body') or 'body'}: {e['msg']}" for e in errors
    )
    return JSONResponse(status_code=400, content={"error": message or "invalid request"})


class CommandRequest(BaseModel):
    command: str | None = None
    speed: float | None = Field(None, ge=0.0, le=1.0)
    direction: Any = None
    continuous: bool = False
    vector: dict[str, float] | None = None


class ModeRequest(BaseModel):
    mode: str | None = None


class ConnectRequest(BaseModel):
    deviceBaseAddress: str | None = None  # noqa: N815 - wire format
    telemetrySourceAddress: str | None = None  # noqa: N815 - wire format


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/config")
async def get_config() -> dict[str, Any]:
    """Display hints for the control UI."""
    endpoint = registry.current
    return {
        "cameraStreamUrl": config.device.camera_stream_url,
        "deviceBaseAddress": endpoint.device_base_address,
        "telemetrySourceAddress": endpoint.telemetry_source_address,
    }


@app.get("/status")
async def status() -> dict[str, Any]:
    return {
        "status": "online",
        "lastCommand": command_handler.last_command,
        "deviceBaseAddress": command_handler.endpoint.device_base_address,
    }


@app.post("/command")
async def post_command(body: CommandRequest) -> dict[str, Any]:
    cmd = Command.from_mapping(body.model_dump(exclude_none=True))
    await command_handler.issue_command(cmd)
    return {"success": True}


@app.post("/mode")
async def post_mode(body: ModeRequest) -> dict[str, Any]:
    if not body.mode:
        raise InvalidCommand("mode is required")
    await command_handler.set_mode(body.mode)
    return {"success": True}


@app.post("/stop")
async def post_stop() -> dict[str, Any]:
    # Body is ignored: a stop never fails validation.
    await command_handler.issue_stop()
    return {"success": True}


@app.post("/connect")
async def post_connect(body: ConnectRequest) -> dict[str, Any]:
    if not body.deviceBaseAddress:
        raise InvalidCommand("deviceBaseAddress is required")
    endpoint = command_handler.reconfigure_endpoint(body.deviceBaseAddress, body.telemetrySourceAddress)
    await uplink.restart(endpoint.telemetry_source_address)
    return {
        "success": True,
        "deviceBaseAddress": endpoint.device_base_address,
        "telemetrySourceAddress": endpoint.telemetry_source_address,
    }


def _frame(event: TelemetryEvent) -> str:
    return json.dumps({"event": "telemetry", "data": event.to_dict()})


async def _pump(ws: WebSocket, subscription: Subscription) -> None:
    """Drain one observer's queue; a send that stalls past the timeout evicts the observer."""
    while True:
        event = await subscription.get()
        try:
            await asyncio.wait_for(ws.send_text(_frame(event)), timeout=config.telemetry.send_timeout_s)
        except WebSocketDisconnect:
            return
        except asyncio.TimeoutError:
            logger.warning(f"Observer {subscription.id} stalled, closing session")
            await ws.close(code=1011)
            return


class ControllerSession:
    """
    Inbound side of one real-time session.

    Device relays run as tasks owned by the session, so a stop is never
    queued behind earlier frames. Joystick frames collapse to the newest
    one: at most one is in flight, a newer frame replaces the pending one.
    """

    def __init__(self, ws: WebSocket, subscription: Subscription) -> None:
        self.ws = ws
        self.subscription = subscription
        self.movement = ContinuousMovementController(
            command_handler, interval_s=config.movement.repeat_interval_ms / 1000
        )
        self.drove = False
        self._tasks: set[asyncio.Task[Any]] = set()
        self._joystick_pending: JoystickIntent | None = None
        self._joystick_task: asyncio.Task[None] | None = None

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, RelayError):
            # Already announced to every observer by the command handler.
            logger.debug(f"Session {self.subscription.id}: relay failed: {exc}")
        elif exc is not None:
            logger.error(f"Session {self.subscription.id}: relay task crashed: {exc!r}")

    async def _drain_joystick(self) -> None:
        while self._joystick_pending is not None:
            intent, self._joystick_pending = self._joystick_pending, None
            try:
                await command_handler.issue_joystick(intent)
            except RelayError as exc:
                logger.debug(f"Session {self.subscription.id}: joystick failed: {exc}")

    def _halt(self) -> None:
        self._joystick_pending = None
        self.movement.disarm()

    def handle(self, text: str) -> None:
        try:
            msg = json.loads(text)
            if not isinstance(msg, dict):
                raise ValueError("frame must be an object")
        except ValueError as exc:
            self.reply(f"Malformed frame ignored: {exc}")
            return

        event = msg.get("event")
        data = msg.get("data") or {}
        try:
            if event == "joystick":
                self.drove = True
                self._joystick_pending = JoystickIntent.from_mapping(data)
                if self._joystick_task is None or self._joystick_task.done():
                    self._joystick_task = self._spawn(self._drain_joystick())
            elif event == "telemetry":
                hub.publish(TelemetryEvent.from_controller(data))
            elif event == "move_begin":
                command = data.get("command") if isinstance(data, dict) else None
                if self.movement.arm(command):
                    self.drove = True
                    self._spawn(self.movement.emit(command))
            elif event == "move_end":
                self._halt()
                self._spawn(self.movement.emit_stop())
            elif event == "stop":
                self._halt()
                self._spawn(command_handler.issue_stop())
            else:
                self.reply(f"Unknown event {event!r} ignored")
        except InvalidCommand as exc:
            self.reply(f"Rejected {event}: {exc}")

    def reply(self, message: str) -> None:
        self.subscription.offer(TelemetryEvent.system(message, {"ok": False}))

    async def close(self) -> None:
        self._joystick_pending = None
        if self.drove:
            await self.movement.end()
        else:
            self.movement.disarm()
        # In-flight relays are bounded by the device timeout.
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


async def _read(ws: WebSocket, session: ControllerSession) -> None:
    while True:
        message = await ws.receive()
        if message["type"] == "websocket.disconnect":
            logger.info(f"Controller session {session.subscription.id} disconnected")
            return
        text = message.get("text")
        if text is None:
            session.reply("Binary frame ignored: send JSON text frames")
            continue
        session.handle(text)


@app.websocket("/telemetry")
async def ws_telemetry(ws: WebSocket) -> None:
    await ws.accept()
    subscription = hub.subscribe()
    session = ControllerSession(ws, subscription)
    reader = asyncio.create_task(_read(ws, session))
    pump = asyncio.create_task(_pump(ws, subscription))
    try:
        await asyncio.wait({reader, pump}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        reader.cancel()
        pump.cancel()
        for name, result in zip(("reader", "pump"), await asyncio.gather(reader, pump, return_exceptions=True)):
            if isinstance(result, Exception):
                logger.error(f"Session {subscription.id} {name} failed: {result!r}")
        hub.unsubscribe(subscription)
        await session.close()
