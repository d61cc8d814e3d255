"""
Diff Engine

Compares two status snapshots and yields the topic updates to publish.
"""

import logging
from typing import TypeAlias

from constants import OutletCommandState, OutletState, TopicSegment
from exceptions import ProtocolMismatchError
from state import StatusSnapshot
from utils import slugify

logger = logging.getLogger(__name__)

Update: TypeAlias = tuple[str, str]


def outlet_wire_value(state: OutletState) -> str:
    """Map a controller outlet state to its MQTT value; both auto states collapse to 'auto'."""
    match state:
        case OutletState.ON:
            return OutletCommandState.ON.value
        case OutletState.OFF:
            return OutletCommandState.OFF.value
        case OutletState.AUTO_ON | OutletState.AUTO_OFF:
            return OutletCommandState.AUTO.value
    raise ValueError(f"Unknown outlet state: {state!r}")


def check_shape(previous: StatusSnapshot, current: StatusSnapshot) -> None:
    """
    Verify both snapshots list the same entities in the same order.

    Raises:
        ProtocolMismatchError: If outlets or probes were added, removed, renamed or reordered.
    """
    if previous.outlet_names() != current.outlet_names():
        raise ProtocolMismatchError(
            f"Outlet list changed between polls ({len(previous.outlets)} -> {len(current.outlets)} outlets)"
        )
    if previous.probe_names() != current.probe_names():
        raise ProtocolMismatchError(
            f"Probe list changed between polls ({len(previous.probes)} -> {len(current.probes)} probes)"
        )


def diff_snapshots(
    previous: StatusSnapshot,
    current: StatusSnapshot,
    only_changed_outlets: bool = True,
    publish_unchanged_probes: bool = True,
) -> list[Update]:
    """
    Compare two snapshots entry by entry.

    Outlets are emitted when their state changed, or always when
    only_changed_outlets is False. Probes are live telemetry: with
    publish_unchanged_probes they are emitted every time, otherwise only on change.

    Args:
        previous: The cached snapshot.
        current: The freshly polled snapshot.
        only_changed_outlets: Suppress outlets whose state did not change.
        publish_unchanged_probes: Emit probes even when their value did not change.

    Returns:
        list[Update]: Ordered (topic suffix, value) pairs, outlets first.

    Raises:
        ProtocolMismatchError: If the snapshots do not line up.
    """
    check_shape(previous, current)

    updates: list[Update] = []
    for old, new in zip(previous.outlets, current.outlets):
        if only_changed_outlets and old.state == new.state:
            continue
        updates.append((f"/{TopicSegment.OUTLETS}/{slugify(new.name)}", outlet_wire_value(new.state)))

    for old, new in zip(previous.probes, current.probes):
        if not publish_unchanged_probes and old.value == new.value:
            continue
        updates.append((f"/{TopicSegment.PROBES}/{slugify(new.name)}", new.value))

    return updates
