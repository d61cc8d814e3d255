"""
Apex MQTT Bridge State

Status snapshot models, shared error state and the application context.
"""

from collections.abc import Callable
import datetime
import logging
import threading
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator

from constants import OutletState

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------------
# Models
# ------------------------------------------------------------------------------------


class Outlet(BaseModel):
    """A controllable power outlet as read from one poll."""

    model_config = ConfigDict(frozen=True)

    name: str
    state: OutletState


class Probe(BaseModel):
    """A read-only sensor channel; the value is transmitted verbatim."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def _strip_value(cls, value: Any) -> str:
        return str(value).strip() if value is not None else ""


class StatusSnapshot(BaseModel):
    """Outlet and probe states captured atomically from one poll."""

    model_config = ConfigDict(frozen=True)

    outlets: tuple[Outlet, ...] = ()
    probes: tuple[Probe, ...] = ()
    captured_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.timezone.utc))

    def outlet_names(self) -> list[str]:
        return [outlet.name for outlet in self.outlets]

    def probe_names(self) -> list[str]:
        return [probe.name for probe in self.probes]


# ------------------------------------------------------------------------------------
# Application Context
# ------------------------------------------------------------------------------------

ErrorListener: TypeAlias = Callable[[str | None], None]


class AppContext:
    """
    Application context holding configuration, error state and metadata.

    This class is intended to be passed to components, reducing reliance on global state.
    """

    def __init__(self):
        self.lock = threading.RLock()

        # Configuration (To be populated as ConfigModel)
        self.config: Any = None

        # Error State
        self.lasterror_apex: str | None = None
        self.lasterror_mqtt: str | None = None
        self.lasterror_share: str | None = None
        self._error_listener: ErrorListener | None = None

        # Metadata
        self.apex_mqtt_version: str = "Unknown"

    def register_error_listener(self, listener: ErrorListener | None) -> None:
        """Register a callable invoked with the combined error whenever it changes."""
        self._error_listener = listener

    def set_error(self, message: str | None, category: str = "apex", notify: bool = True):
        """Set or clear an error state."""
        changed = False
        if category == "apex":
            if message != self.lasterror_apex:
                self.lasterror_apex = message
                changed = True
        else:
            if message != self.lasterror_mqtt:
                self.lasterror_mqtt = message
                changed = True

        if changed:
            errors = []
            if self.lasterror_apex:
                errors.append(self.lasterror_apex)
            if self.lasterror_mqtt:
                errors.append(self.lasterror_mqtt)

            new_error = " | ".join(errors) if errors else None

            with self.lock:
                self.lasterror_share = new_error

            if message:
                logger.error(f"[{category.upper()}] {message}")

            if notify and self._error_listener:
                try:
                    self._error_listener(new_error)
                except Exception as e:
                    logger.error(f"Failed to publish error state: {e}")

    def reset(self) -> None:
        """Clear error state and listeners."""
        with self.lock:
            self.lasterror_apex = None
            self.lasterror_mqtt = None
            self.lasterror_share = None
        self._error_listener = None


# ------------------------------------------------------------------------------------
# Global Instance
# ------------------------------------------------------------------------------------
_context = AppContext()


def get_context() -> AppContext:
    return _context
