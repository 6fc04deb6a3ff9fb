import logging
from typing import Any, Protocol

from rover_relay.endpoints import EndpointConfig, EndpointRegistry
from rover_relay.errors import InvalidCommand, RelayError
from rover_relay.hub import TelemetryHub
from rover_relay.messages import Command, CommandKind, DriveMode, JoystickIntent, TelemetryEvent, now_ms

logger = logging.getLogger(__name__)

MOVE_PATH = "/move"
MODE_PATH = "/mode"
STOP_PATH = "/stop"

_MODE_KINDS = {CommandKind.MODE_AUTO.value, CommandKind.MODE_MANUAL.value}


class Transport(Protocol):
    async def relay(self, endpoint_path: str, payload: Any) -> Any: ...


def path_for(kind: str) -> str:
    if kind == CommandKind.STOP.value:
        return STOP_PATH
    if kind in _MODE_KINDS:
        return MODE_PATH
    return MOVE_PATH


class CommandHandler:
    """
    Validates commands, records the last accepted one and relays it to the device.

    Every relay outcome is announced on the telemetry hub. Failures are
    re-raised as RelayError so the caller can report them; the last command
    slot is never rolled back.
    """

    def __init__(self, transport: Transport, hub: TelemetryHub, registry: EndpointRegistry) -> None:
        self._transport = transport
        self._hub = hub
        self._registry = registry
        self._last_command = "None"

    @property
    def last_command(self) -> str:
        return self._last_command

    @property
    def endpoint(self) -> EndpointConfig:
        return self._registry.current

    async def _relay(self, path: str, payload: dict[str, Any], success: str, failure: str) -> Any:
        try:
            result = await self._transport.relay(path, payload)
        except RelayError as exc:
            logger.warning(f"{failure}: {exc}")
            self._hub.publish(TelemetryEvent.failure(f"{failure}: {exc}", exc))
            raise
        logger.info(success)
        self._hub.publish(TelemetryEvent.system(success, {"ok": True}))
        return result

    async def issue_command(self, cmd: Command) -> Any:
        if not cmd.kind:
            raise InvalidCommand("command is required")
        self._last_command = cmd.kind
        return await self._relay(
            path_for(cmd.kind),
            cmd.to_payload(),
            success=f"Backend relayed {cmd.kind} to device",
            failure=f"Failed to relay {cmd.kind}",
        )

    async def issue_stop(self) -> Any:
        self._last_command = CommandKind.STOP.value
        return await self._relay(
            STOP_PATH,
            {"command": CommandKind.STOP.value, "timestamp": now_ms()},
            success="Emergency stop relayed to device",
            failure="Emergency stop failed",
        )

    async def set_mode(self, mode: DriveMode | str) -> Any:
        try:
            mode = DriveMode(mode)
        except ValueError as exc:
            raise InvalidCommand(f"mode must be MANUAL or AUTONOMOUS, got {mode!r}") from exc
        kind = mode.command_kind.value
        self._last_command = kind
        return await self._relay(
            MODE_PATH,
            {"mode": mode.value, "command": kind, "timestamp": now_ms()},
            success=f"Mode set to {mode.value}",
            failure=f"Failed to set mode {mode.value}",
        )

    async def issue_joystick(self, intent: JoystickIntent) -> Any:
        # Joystick frames arrive at display rate; only failures are announced.
        self._last_command = CommandKind.JOYSTICK.value
        try:
            return await self._transport.relay(MOVE_PATH, intent.to_payload())
        except RelayError as exc:
            logger.warning(f"Joystick relay failed: {exc}")
            self._hub.publish(TelemetryEvent.failure(f"Joystick relay failed: {exc}", exc))
            raise

    def reconfigure_endpoint(self, base: str, telemetry_source: str | None = None) -> EndpointConfig:
        endpoint = self._registry.replace(base, telemetry_source)
        self._hub.publish(
            TelemetryEvent.system(
                f"Relay target set to {endpoint.device_base_address}",
                {
                    "deviceBaseAddress": endpoint.device_base_address,
                    "telemetrySourceAddress": endpoint.telemetry_source_address,
                },
            )
        )
        return endpoint
