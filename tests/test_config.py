"""Тесты для конфигурации релея."""

import pytest
from pydantic import ValidationError

from rover_relay.config import Config, DeviceConfig, MovementConfig


def test_config_defaults() -> None:
    """Проверка дефолтных значений Config."""
    config = Config()

    assert config.server.port == 3000
    assert config.device.base_address == "http://192.168.4.1"
    assert config.device.telemetry_source_address is None
    assert config.device.camera_stream_url == "http://192.168.4.1:81/stream"
    assert config.movement.repeat_interval_ms == 200
    assert config.uplink.reconnect is True


def test_config_reads_nested_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Значения можно переопределить переменными окружения ROVER_*."""
    monkeypatch.setenv("ROVER_DEVICE__BASE_ADDRESS", "http://10.0.0.5")
    monkeypatch.setenv("ROVER_DEVICE__TELEMETRY_SOURCE_ADDRESS", "ws://10.0.0.5:82/ws")
    monkeypatch.setenv("ROVER_SERVER__PORT", "8080")

    config = Config()

    assert config.device.base_address == "http://10.0.0.5"
    assert config.device.telemetry_source_address == "ws://10.0.0.5:82/ws"
    assert config.server.port == 8080


def test_movement_interval_bounds() -> None:
    """Период повтора ограничен снизу и сверху."""
    with pytest.raises(ValidationError):
        MovementConfig(repeat_interval_ms=10)
    with pytest.raises(ValidationError):
        MovementConfig(repeat_interval_ms=5000)


def test_device_timeout_must_be_positive() -> None:
    """Таймаут запроса к устройству должен быть положительным."""
    with pytest.raises(ValidationError):
        DeviceConfig(request_timeout_s=0)
