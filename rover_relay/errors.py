from typing import Any


class RelayError(Exception):
    """Base class for every failure the relay reports to callers."""


class InvalidCommand(RelayError):
    """Caller error: a required field is missing or out of range. Never relayed."""


class DeviceUnreachable(RelayError):
    """Network failure or timeout while talking to the device."""

    def __init__(self, cause: BaseException | str) -> None:
        self.cause = cause
        detail = str(cause) or type(cause).__name__
        super().__init__(f"Device unreachable: {detail}")


class DeviceRejected(RelayError):
    """The device answered with a non-2xx status."""

    def __init__(self, status: int, body: Any) -> None:
        self.status = status
        self.body = body
        super().__init__(f"Device responded with {status}: {body}")


class MalformedUplinkFrame(RelayError):
    """An inbound telemetry frame from the device could not be decoded."""

    def __init__(self, raw: str) -> None:
        self.raw = raw
        super().__init__(f"Malformed device telemetry: {raw}")
