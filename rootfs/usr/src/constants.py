"""
Apex MQTT Bridge Constants

Shared constants and enums for type safety across the application.
"""

from enum import StrEnum


class ConnectionStatus(StrEnum):
    """MQTT connection status values."""

    ONLINE = "online"
    OFFLINE = "offline"


class OutletState(StrEnum):
    """Outlet states as reported by the Apex status feed."""

    ON = "ON"
    OFF = "OFF"
    AUTO_ON = "AON"
    AUTO_OFF = "AOF"


class OutletCommandState(StrEnum):
    """Outlet states that can be commanded."""

    ON = "on"
    OFF = "off"
    AUTO = "auto"


class FeedCycle(StrEnum):
    """Feed cycles selectable on the controller."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"
    CANCEL = "CANCEL"


class SyncState(StrEnum):
    """Lifecycle of the sync loop."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class TopicSegment(StrEnum):
    """MQTT topic segments below the bridge root."""

    OUTLETS = "outlets"
    PROBES = "probes"
    FEED_CYCLE = "feedCycle"
    SET = "set"
    STATUS = "status"
    ERROR = "error"


FEED_TOPIC_SUFFIX = f"/{TopicSegment.FEED_CYCLE}/{TopicSegment.SET}"
NO_ERROR = "No Error"
