import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from rover_relay.errors import InvalidCommand


class CommandKind(str, Enum):
    MOVE_FORWARD = "MOVE_FORWARD"
    MOVE_BACKWARD = "MOVE_BACKWARD"
    TURN_LEFT = "TURN_LEFT"
    TURN_RIGHT = "TURN_RIGHT"
    STOP = "STOP"
    JOYSTICK = "JOYSTICK"
    MODE_AUTO = "MODE_AUTO"
    MODE_MANUAL = "MODE_MANUAL"


class DriveMode(str, Enum):
    MANUAL = "MANUAL"
    AUTONOMOUS = "AUTONOMOUS"

    @property
    def command_kind(self) -> CommandKind:
        if self is DriveMode.AUTONOMOUS:
            return CommandKind.MODE_AUTO
        return CommandKind.MODE_MANUAL


class Origin(str, Enum):
    SYSTEM = "system"
    DEVICE = "device"
    CONTROLLER = "controller"


def now_ms() -> int:
    return int(time.time() * 1000)


def _as_float(data: Mapping[str, Any], key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidCommand(f"{key} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidCommand(f"{key} must be a number") from exc


def _check_speed(speed: float | None) -> None:
    if speed is not None and not 0.0 <= speed <= 1.0:
        raise InvalidCommand(f"speed must be within [0, 1], got {speed}")


@dataclass(frozen=True)
class Vector:
    x: float  # -1..1, right positive
    y: float  # -1..1, screen coordinates (down positive)

    def __post_init__(self) -> None:
        for axis, value in (("x", self.x), ("y", self.y)):
            if not -1.0 <= value <= 1.0:
                raise InvalidCommand(f"vector.{axis} must be within [-1, 1], got {value}")

    @classmethod
    def from_mapping(cls, data: Any) -> "Vector":
        if not isinstance(data, Mapping):
            raise InvalidCommand("vector must be an object with x and y")
        x = _as_float(data, "x")
        y = _as_float(data, "y")
        return cls(x=x or 0.0, y=y or 0.0)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class Command:
    kind: str
    continuous: bool = False
    speed: float | None = None
    vector: Vector | None = None
    direction: Any = None
    issued_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if isinstance(self.kind, Enum):
            object.__setattr__(self, "kind", self.kind.value)
        _check_speed(self.speed)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Command":
        """Build a command from the ``/command`` request body shape."""
        kind = data.get("command")
        if not kind or not isinstance(kind, str):
            raise InvalidCommand("command is required")
        vector = data.get("vector")
        return cls(
            kind=kind,
            continuous=bool(data.get("continuous", False)),
            speed=_as_float(data, "speed"),
            vector=Vector.from_mapping(vector) if vector is not None else None,
            direction=data.get("direction"),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"command": self.kind, "continuous": self.continuous}
        if self.speed is not None:
            payload["speed"] = self.speed
        if self.direction is not None:
            payload["direction"] = self.direction
        if self.vector is not None:
            payload["vector"] = self.vector.to_dict()
        payload["timestamp"] = int(self.issued_at * 1000)
        return payload


@dataclass(frozen=True)
class JoystickIntent:
    speed: float
    vector: Vector
    angle: float | None = None

    def __post_init__(self) -> None:
        _check_speed(self.speed)

    @classmethod
    def from_mapping(cls, data: Any) -> "JoystickIntent":
        if not isinstance(data, Mapping):
            raise InvalidCommand("joystick payload must be an object")
        speed = _as_float(data, "speed")
        if speed is None:
            raise InvalidCommand("speed is required")
        if data.get("vector") is None:
            raise InvalidCommand("vector is required")
        return cls(speed=speed, vector=Vector.from_mapping(data["vector"]), angle=_as_float(data, "angle"))

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "command": CommandKind.JOYSTICK.value,
            "speed": self.speed,
            "vector": self.vector.to_dict(),
        }
        if self.angle is not None:
            payload["angle"] = self.angle
        payload["timestamp"] = now_ms()
        return payload


@dataclass(frozen=True)
class TelemetryEvent:
    origin: Origin
    message: str
    payload: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def system(cls, message: str, payload: Any = None) -> "TelemetryEvent":
        return cls(origin=Origin.SYSTEM, message=message, payload=payload)

    @classmethod
    def failure(cls, message: str, error: BaseException) -> "TelemetryEvent":
        return cls.system(message, {"ok": False, "error": str(error)})

    @classmethod
    def from_device(cls, frame: Any) -> "TelemetryEvent":
        message = ""
        if isinstance(frame, Mapping) and isinstance(frame.get("message"), str):
            message = frame["message"]
        return cls(origin=Origin.DEVICE, message=message, payload=frame)

    @classmethod
    def from_controller(cls, data: Any) -> "TelemetryEvent":
        if isinstance(data, Mapping):
            return cls(origin=Origin.CONTROLLER, message=str(data.get("message", "")), payload=data.get("payload"))
        return cls(origin=Origin.CONTROLLER, message=str(data))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "origin": self.origin.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.payload is not None:
            data["payload"] = self.payload
        return data
