"""Exception hierarchy for the Wave Plus monitor."""

from __future__ import annotations


class MonitorError(Exception):
    """Base exception for all monitor errors."""

    def __init__(self, message: str, details: str | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigError(MonitorError):
    """Invalid settings value."""

    pass


class RadioError(MonitorError):
    """Error reported by the Bluetooth LE adapter."""

    pass


class RadioUnavailableError(RadioError):
    """Adapter is powered off or cannot be opened."""

    def __init__(self, details: str | None = None) -> None:
        super().__init__("Bluetooth LE adapter is not available", details)


class TransportError(RadioError):
    """Connection-level failure on a peripheral."""

    def __init__(self, address: str, details: str | None = None) -> None:
        self.address = address
        super().__init__(f"Transport error on {address}", details)


class ConnectCancelledError(RadioError):
    """An in-flight connect was cancelled through cancel_connect()."""

    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"Connect to {address} was cancelled")


class CharacteristicNotFoundError(RadioError):
    """The connected peripheral does not expose the requested characteristic."""

    def __init__(self, uuid: str, details: str | None = None) -> None:
        self.uuid = uuid
        super().__init__(f"Characteristic {uuid} not found", details)


class DecodeError(MonitorError, ValueError):
    """Binary payload does not match the expected layout."""

    pass
