"""
Command Translator

Maps inbound MQTT (topic, payload) pairs to controller commands and applies them.
"""

from collections.abc import Mapping
from dataclasses import dataclass
import logging
from typing import TypeAlias

from constants import FEED_TOPIC_SUFFIX, FeedCycle, OutletCommandState
from exceptions import TransportError
import state as state_module
from topics import TopicMapper

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SetOutlet:
    """Switch an outlet to on, off or auto."""

    name: str
    state: OutletCommandState


@dataclass(frozen=True)
class SetFeedCycle:
    """Start or cancel a feed cycle."""

    cycle: FeedCycle


Command: TypeAlias = SetOutlet | SetFeedCycle


def outlet_command_state(payload: str) -> OutletCommandState:
    """Classify an outlet payload; anything other than on/off puts the outlet back on its program."""
    match payload.lower():
        case "on":
            return OutletCommandState.ON
        case "off":
            return OutletCommandState.OFF
        case _:
            return OutletCommandState.AUTO


def feed_cycle(payload: str) -> FeedCycle | None:
    try:
        return FeedCycle(payload.upper())
    except ValueError:
        return None


def translate(
    topic: str,
    payload: str,
    topic_map: Mapping[str, str],
    root: str,
    feed_topic_suffix: str = FEED_TOPIC_SUFFIX,
) -> Command | None:
    """
    Translate an inbound message into a command.

    The fixed feed-cycle topic is checked before the dynamic outlet topics, so an
    outlet whose name slugs to 'feedcycle' can never shadow it.

    Returns:
        Command | None: The command, or None if the message is not for us.
    """
    if topic == root + feed_topic_suffix:
        cycle = feed_cycle(payload)
        if cycle is not None:
            return SetFeedCycle(cycle)
        logger.debug(f"Ignoring unknown feed cycle '{payload}'")
        return None

    name = topic_map.get(topic)
    if name is not None:
        return SetOutlet(name, outlet_command_state(payload))

    return None


class CommandHandler:
    """Inbound path: translate broker messages and send them to the controller."""

    def __init__(self, client, topic_mapper: TopicMapper, context: state_module.AppContext | None = None) -> None:
        self.client = client
        self.topic_mapper = topic_mapper
        self.app_context = context or state_module.get_context()

    def __call__(self, topic: str, payload: str) -> Command | None:
        command = translate(topic, payload, self.topic_mapper.topic_map, self.topic_mapper.root)
        if command is None:
            logger.debug(f"Ignoring MQTT message on '{topic}'")
            return None

        try:
            match command:
                case SetFeedCycle(cycle=cycle):
                    logger.info(f"Received MQTT feed cycle command: {cycle}")
                    self.client.set_feed_cycle(cycle)
                case SetOutlet(name=name, state=outlet_state):
                    logger.info(f"Received MQTT command for outlet '{name}': {outlet_state}")
                    self.client.set_outlet(name, outlet_state)
        except TransportError as e:
            self.app_context.set_error(f"Failed to send command to Apex: {e}", category="apex")
        return command
