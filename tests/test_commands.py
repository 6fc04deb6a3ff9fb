"""Тесты обработчика команд с фейковым транспортом."""

import asyncio
from typing import Any

import pytest

from rover_relay.commands import CommandHandler, path_for
from rover_relay.endpoints import EndpointConfig, EndpointRegistry
from rover_relay.errors import DeviceRejected, DeviceUnreachable, InvalidCommand
from rover_relay.hub import TelemetryHub
from rover_relay.messages import Command, CommandKind, JoystickIntent, Vector


class _FakeTransport:
    """Транспорт, запоминающий вызовы и умеющий падать."""

    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.error = error

    async def relay(self, endpoint_path: str, payload: Any) -> Any:
        self.calls.append((endpoint_path, payload))
        if self.error is not None:
            raise self.error
        return {}


def _make_handler(error: Exception | None = None):
    transport = _FakeTransport(error)
    hub = TelemetryHub()
    registry = EndpointRegistry(EndpointConfig("http://192.168.4.1"))
    observer = hub.subscribe()
    observer.get_nowait()  # connection announcement
    return CommandHandler(transport, hub, registry), transport, observer


def test_path_for_kinds() -> None:
    """Команды маршрутизируются на /move, /mode и /stop."""
    assert path_for("MOVE_FORWARD") == "/move"
    assert path_for("JOYSTICK") == "/move"
    assert path_for("WAVE_ARM") == "/move"
    assert path_for("MODE_AUTO") == "/mode"
    assert path_for("MODE_MANUAL") == "/mode"
    assert path_for("STOP") == "/stop"


def test_issue_command_relays_and_announces() -> None:
    """Успешная команда обновляет lastCommand и публикует системное событие."""
    handler, transport, observer = _make_handler()

    asyncio.run(handler.issue_command(Command(kind=CommandKind.MOVE_FORWARD, continuous=True, speed=0.6)))

    assert handler.last_command == "MOVE_FORWARD"
    path, payload = transport.calls[0]
    assert path == "/move"
    assert payload["command"] == "MOVE_FORWARD"
    assert payload["continuous"] is True
    assert payload["speed"] == 0.6
    event = observer.get_nowait()
    assert event.message == "Backend relayed MOVE_FORWARD to device"
    assert event.payload == {"ok": True}


def test_issue_command_without_kind_is_never_relayed() -> None:
    """Команда без kind отклоняется и не доходит до транспорта."""
    handler, transport, observer = _make_handler()

    with pytest.raises(InvalidCommand):
        asyncio.run(handler.issue_command(Command(kind="")))

    assert transport.calls == []
    assert handler.last_command == "None"
    assert observer.pending() == 0


@pytest.mark.parametrize(
    "error",
    [DeviceRejected(500, "boom"), DeviceUnreachable(TimeoutError("timed out"))],
)
def test_failed_relay_keeps_last_command_and_reports(error: Exception) -> None:
    """При ошибке реле lastCommand не откатывается, ошибка видна в телеметрии и у вызывающего."""
    handler, transport, observer = _make_handler(error)

    with pytest.raises(type(error)):
        asyncio.run(handler.issue_command(Command(kind="TURN_LEFT")))

    assert handler.last_command == "TURN_LEFT"
    event = observer.get_nowait()
    assert event.message.startswith("Failed to relay TURN_LEFT")
    assert event.payload["ok"] is False


def test_issue_stop_single_attempt() -> None:
    """Стоп отправляется ровно один раз, даже при ошибке."""
    handler, transport, observer = _make_handler(DeviceUnreachable("no route"))

    with pytest.raises(DeviceUnreachable):
        asyncio.run(handler.issue_stop())

    assert handler.last_command == "STOP"
    assert len(transport.calls) == 1
    path, payload = transport.calls[0]
    assert path == "/stop"
    assert payload["command"] == "STOP"
    assert isinstance(payload["timestamp"], int)
    assert observer.get_nowait().message.startswith("Emergency stop failed")


@pytest.mark.parametrize(("mode", "kind"), [("MANUAL", "MODE_MANUAL"), ("AUTONOMOUS", "MODE_AUTO")])
def test_set_mode(mode: str, kind: str) -> None:
    """Режим отображается на команду MODE_* и уходит на /mode."""
    handler, transport, observer = _make_handler()

    asyncio.run(handler.set_mode(mode))

    assert handler.last_command == kind
    assert transport.calls == [("/mode", {"mode": mode, "command": kind, "timestamp": transport.calls[0][1]["timestamp"]})]
    assert observer.get_nowait().message == f"Mode set to {mode}"


def test_set_mode_rejects_unknown() -> None:
    """Неизвестный режим - ошибка вызывающего."""
    handler, transport, _observer = _make_handler()

    with pytest.raises(InvalidCommand):
        asyncio.run(handler.set_mode("TURBO"))
    assert transport.calls == []


def test_joystick_updates_last_command_and_stays_quiet_on_success() -> None:
    """Джойстик идёт через обработчик, но успех не засоряет ленту."""
    handler, transport, observer = _make_handler()

    asyncio.run(handler.issue_joystick(JoystickIntent(speed=0.3, vector=Vector(0.1, -0.3))))

    assert handler.last_command == "JOYSTICK"
    assert transport.calls[0][0] == "/move"
    assert transport.calls[0][1]["command"] == "JOYSTICK"
    assert observer.pending() == 0


def test_joystick_failure_is_announced() -> None:
    """Ошибка джойстика публикуется в телеметрию."""
    handler, _transport, observer = _make_handler(DeviceRejected(503, "busy"))

    with pytest.raises(DeviceRejected):
        asyncio.run(handler.issue_joystick(JoystickIntent(speed=0.3, vector=Vector(0.0, 0.0))))

    assert observer.get_nowait().message.startswith("Joystick relay failed")


def test_reconfigure_endpoint_derives_telemetry_and_announces() -> None:
    """Смена адреса вычисляет адрес телеметрии и объявляет новую цель."""
    handler, _transport, observer = _make_handler()

    endpoint = handler.reconfigure_endpoint("http://10.0.0.5")

    assert handler.endpoint is endpoint
    assert endpoint.device_base_address == "http://10.0.0.5"
    assert endpoint.telemetry_source_address == "ws://10.0.0.5:82/ws"
    event = observer.get_nowait()
    assert "10.0.0.5" in event.message
    assert event.payload["telemetrySourceAddress"] == "ws://10.0.0.5:82/ws"
