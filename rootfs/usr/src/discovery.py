"""
Discovery Module

Handles MQTT discovery payload generation for Home Assistant.
"""

import json
import logging

import paho.mqtt.client as mqtt

from constants import FeedCycle, OutletCommandState, TopicSegment
import state as state_module
from state import StatusSnapshot
from topics import outlet_command_topic, outlet_topic, probe_topic
from utils import slugify

logger = logging.getLogger(__name__)


def _node_id() -> str:
    context = state_module.get_context()
    return f"apex_{slugify(context.config.apex.name)}"


def _outlet_config_topic(outlet_name: str) -> str:
    context = state_module.get_context()
    node_id = _node_id()
    unique_id = f"{node_id}_outlet_{slugify(outlet_name)}"
    return f"{context.config.mqtt.discovery_prefix}/select/{node_id}/{unique_id}/config"


def _probe_config_topic(probe_name: str) -> str:
    context = state_module.get_context()
    node_id = _node_id()
    unique_id = f"{node_id}_probe_{slugify(probe_name)}"
    return f"{context.config.mqtt.discovery_prefix}/sensor/{node_id}/{unique_id}/config"


def send_discovery(mqttc: mqtt.Client, snapshot: StatusSnapshot) -> None:
    """
    Send discovery for the bridge, the feed cycle and every outlet and probe.

    Args:
        mqttc: The connected MQTT client.
        snapshot: The status whose entities should be announced.
    """
    context = state_module.get_context()
    if not context.config.mqtt.discovery:
        return

    root = context.config.topic_root
    apex_name = context.config.apex.name
    discovery_prefix = context.config.mqtt.discovery_prefix
    node_id = _node_id()
    availability_topic = f"{root}/{TopicSegment.STATUS}"

    device_info = {
        "identifiers": [node_id],
        "name": f"Apex {apex_name}",
        "model": "Apex",
        "manufacturer": "Neptune Systems",
        "sw_version": context.apex_mqtt_version
    }

    # Status Binary Sensor
    status_unique_id = f"{node_id}_status"
    status_payload = {
        "name": "Bridge Status",
        "unique_id": status_unique_id,
        "device": device_info,
        "device_class": "connectivity",
        "entity_category": "diagnostic",
        "state_topic": availability_topic,
        "payload_on": "online",
        "payload_off": "offline"
    }
    mqttc.publish(
        f"{discovery_prefix}/binary_sensor/{node_id}/{status_unique_id}/config",
        json.dumps(status_payload), qos=1, retain=True
    )

    # Error Sensor
    error_unique_id = f"{node_id}_error"
    error_payload = {
        "name": "Bridge Error",
        "unique_id": error_unique_id,
        "device": device_info,
        "entity_category": "diagnostic",
        "state_topic": f"{root}/{TopicSegment.ERROR}",
        "icon": "mdi:alert-circle"
    }
    mqttc.publish(
        f"{discovery_prefix}/sensor/{node_id}/{error_unique_id}/config",
        json.dumps(error_payload), qos=1, retain=True
    )

    # Feed Cycle Select (command only)
    feed_unique_id = f"{node_id}_feed_cycle"
    feed_payload = {
        "name": "Feed Cycle",
        "unique_id": feed_unique_id,
        "device": device_info,
        "command_topic": f"{root}/{TopicSegment.FEED_CYCLE}/{TopicSegment.SET}",
        "availability_topic": availability_topic,
        "options": [cycle.value for cycle in FeedCycle],
        "optimistic": True,
        "icon": "mdi:fish"
    }
    mqttc.publish(
        f"{discovery_prefix}/select/{node_id}/{feed_unique_id}/config",
        json.dumps(feed_payload), qos=1, retain=True
    )

    for outlet in snapshot.outlets:
        payload = {
            "name": outlet.name,
            "unique_id": f"{node_id}_outlet_{slugify(outlet.name)}",
            "device": device_info,
            "state_topic": outlet_topic(root, outlet.name),
            "command_topic": outlet_command_topic(root, outlet.name),
            "availability_topic": availability_topic,
            "options": [state.value for state in OutletCommandState],
            "icon": "mdi:power-socket"
        }
        mqttc.publish(_outlet_config_topic(outlet.name), json.dumps(payload), qos=1, retain=True)

    for probe in snapshot.probes:
        payload = {
            "name": probe.name,
            "unique_id": f"{node_id}_probe_{slugify(probe.name)}",
            "device": device_info,
            "state_topic": probe_topic(root, probe.name),
            "availability_topic": availability_topic,
            "icon": "mdi:thermometer-water"
        }
        mqttc.publish(_probe_config_topic(probe.name), json.dumps(payload), qos=1, retain=True)

    logger.info(f"Sent discovery for {len(snapshot.outlets)} outlets and {len(snapshot.probes)} probes")


def cleanup_removed(mqttc: mqtt.Client, previous: StatusSnapshot, current: StatusSnapshot) -> None:
    """
    Clear discovery for outlets and probes that are no longer reported.

    Args:
        mqttc: The connected MQTT client.
        previous: The snapshot the existing discovery was built from.
        current: The new snapshot.
    """
    context = state_module.get_context()
    if not context.config.mqtt.discovery:
        return

    current_outlets = {slugify(name) for name in current.outlet_names()}
    for name in previous.outlet_names():
        if slugify(name) not in current_outlets:
            mqttc.publish(_outlet_config_topic(name), "", qos=1, retain=True)
            logger.debug(f"Cleared MQTT discovery for outlet '{name}'")

    current_probes = {slugify(name) for name in current.probe_names()}
    for name in previous.probe_names():
        if slugify(name) not in current_probes:
            mqttc.publish(_probe_config_topic(name), "", qos=1, retain=True)
            logger.debug(f"Cleared MQTT discovery for probe '{name}'")
