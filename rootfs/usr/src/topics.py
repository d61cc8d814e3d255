"""
Topic Mapper

Builds the MQTT topic namespace for the current outlet and probe lists and
resolves inbound command topics back to outlet names.
"""

from collections.abc import Mapping
import logging
from types import MappingProxyType

from constants import TopicSegment
from diff import outlet_wire_value
from state import StatusSnapshot
from utils import slugify

logger = logging.getLogger(__name__)


def outlet_topic(root: str, name: str) -> str:
    return f"{root}/{TopicSegment.OUTLETS}/{slugify(name)}"


def outlet_command_topic(root: str, name: str) -> str:
    return f"{outlet_topic(root, name)}/{TopicSegment.SET}"


def probe_topic(root: str, name: str) -> str:
    return f"{root}/{TopicSegment.PROBES}/{slugify(name)}"


class TopicMapper:
    """
    Owns the command-topic to outlet-name map.

    The map is rebuilt as a whole on every refresh and swapped in by reference,
    so readers on other threads always see either the old or the new map.
    """

    def __init__(self, root: str) -> None:
        self.root = root.rstrip("/")
        self._topic_map: Mapping[str, str] = MappingProxyType({})

    @property
    def topic_map(self) -> Mapping[str, str]:
        return self._topic_map

    @property
    def subscriptions(self) -> list[str]:
        """Topic filters the bridge listens on."""
        return [
            f"{self.root}/{TopicSegment.OUTLETS}/+/{TopicSegment.SET}",
            f"{self.root}/{TopicSegment.FEED_CYCLE}/{TopicSegment.SET}",
        ]

    def refresh(self, snapshot: StatusSnapshot) -> Mapping[str, str]:
        """
        Replace the topic map with one built from the snapshot's outlets.

        If building the new map fails, the current map is left untouched.

        Returns:
            Mapping[str, str]: The new map.
        """
        new_map = {}
        for outlet in snapshot.outlets:
            topic = outlet_command_topic(self.root, outlet.name)
            if topic in new_map and new_map[topic] != outlet.name:
                logger.warning(
                    f"Outlets '{new_map[topic]}' and '{outlet.name}' share command topic '{topic}', "
                    f"using '{outlet.name}'"
                )
            new_map[topic] = outlet.name

        self._topic_map = MappingProxyType(new_map)
        logger.debug(f"Topic map rebuilt with {len(new_map)} outlet command topics")
        return self._topic_map

    def resolve(self, topic: str) -> str | None:
        """Return the outlet name behind a command topic, if any."""
        return self._topic_map.get(topic)

    def initial_publish_set(self, snapshot: StatusSnapshot) -> list[tuple[str, str]]:
        """Full (topic, value) list describing the snapshot: outlets first, then probes."""
        updates = [(outlet_topic(self.root, outlet.name), outlet_wire_value(outlet.state)) for outlet in snapshot.outlets]
        updates.extend((probe_topic(self.root, probe.name), probe.value) for probe in snapshot.probes)
        return updates
