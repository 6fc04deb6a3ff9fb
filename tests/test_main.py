"""Тесты точки входа и остановки сервера."""

import asyncio
import importlib
import signal
from typing import Any

import pytest

import main

server = importlib.import_module("rover_relay.web.server")


def test_main_runs_uvicorn_without_own_signal_handlers(monkeypatch: pytest.MonkeyPatch) -> None:
    """main передаёт настройки в uvicorn и не перехватывает сигналы сам."""
    calls: list[tuple[str, dict[str, Any]]] = []
    monkeypatch.setattr(main.uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))
    before = signal.getsignal(signal.SIGTERM)

    main.main()

    assert calls == [
        (
            "rover_relay.web.server:app",
            {
                "host": main.config.server.host,
                "port": main.config.server.port,
                "reload": main.config.server.reload,
                "log_level": "info",
            },
        )
    ]
    assert signal.getsignal(signal.SIGTERM) is before


def test_shutdown_stops_uplink_and_closes_transport(monkeypatch: pytest.MonkeyPatch) -> None:
    """Хук остановки гасит uplink и закрывает HTTP сессию к устройству."""
    events: list[str] = []

    class _Uplink:
        async def stop(self) -> None:
            events.append("uplink")

    class _Transport:
        async def close(self) -> None:
            events.append("transport")

    monkeypatch.setattr(server, "uplink", _Uplink())
    monkeypatch.setattr(server, "transport", _Transport())

    asyncio.run(server.on_shutdown())

    assert events == ["uplink", "transport"]
