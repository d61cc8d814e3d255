"""Exception hierarchy for the Apex MQTT bridge."""


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class ConfigurationError(BridgeError):
    """Malformed or missing required setting at startup."""


class TransportError(BridgeError):
    """Controller or broker unreachable, timed out or returned garbage."""

    def __init__(self, message: str, *, endpoint: str = "", status_code: int | None = None) -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


class ProtocolMismatchError(BridgeError):
    """Two snapshots that should line up do not list the same entities."""
