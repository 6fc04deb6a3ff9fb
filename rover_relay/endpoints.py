import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

from rover_relay.config import DeviceConfig
from rover_relay.errors import InvalidCommand

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EndpointConfig:
    device_base_address: str
    telemetry_source_address: str | None = None


def normalize_base(address: str) -> str:
    parts = urlsplit(address.strip())
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise InvalidCommand(f"deviceBaseAddress must be an http(s) URL, got {address!r}")
    return address.strip().rstrip("/")


def derive_telemetry_source(base: str, port: int = 82, path: str = "/ws") -> str:
    """Telemetry lives on the same host as the HTTP API, on a fixed port and path."""
    parts = urlsplit(base)
    scheme = "wss" if parts.scheme == "https" else "ws"
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    if not path.startswith("/"):
        path = "/" + path
    return f"{scheme}://{host}:{port}{path}"


class EndpointRegistry:
    """Holds the current device endpoints; readers always see one whole EndpointConfig."""

    def __init__(self, initial: EndpointConfig, telemetry_port: int = 82, telemetry_path: str = "/ws") -> None:
        self._current = initial
        self.telemetry_port = telemetry_port
        self.telemetry_path = telemetry_path

    @classmethod
    def from_config(cls, device: DeviceConfig) -> "EndpointRegistry":
        initial = EndpointConfig(
            device_base_address=normalize_base(device.base_address),
            telemetry_source_address=device.telemetry_source_address or None,
        )
        return cls(initial, telemetry_port=device.telemetry_port, telemetry_path=device.telemetry_path)

    @property
    def current(self) -> EndpointConfig:
        return self._current

    def replace(self, base: str, telemetry_source: str | None = None) -> EndpointConfig:
        base = normalize_base(base)
        if not telemetry_source:
            telemetry_source = derive_telemetry_source(base, self.telemetry_port, self.telemetry_path)
        endpoint = EndpointConfig(device_base_address=base, telemetry_source_address=telemetry_source)
        self._current = endpoint
        logger.info(f"Device endpoint set to {endpoint.device_base_address} (telemetry {telemetry_source})")
        return endpoint

    def url_for(self, path: str) -> str:
        return f"{self._current.device_base_address}{path}"
