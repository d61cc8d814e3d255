"""
Description
-----------
This small Python application bridges a Neptune Apex aquarium controller to MQTT. It polls the
Apex status, publishes outlet states and probe readings as retained topics and turns messages on
the command topics into outlet and feed cycle commands, so the Apex can be used from your
favorite home automation like Home Assistant.

MQTT
----
root = <mqtt_base_topic>/<apex_name>, e.g. apex/tank

root/status                 - online/offline
root/error                  - last error, or 'No Error'
root/outlets/<outlet>       - on/off/auto
root/outlets/<outlet>/set   - on/off, anything else puts the outlet back on auto
root/probes/<probe>         - probe reading, e.g. 78.2
root/feedCycle/set          - A/B/C/D/CANCEL

Outlet and probe names are slugged: 'Return Pump' becomes 'return-pump'.
"""

import logging
import signal
import sys
import threading

from apex_client import ApexClient
from commands import CommandHandler
import config as config_module
from exceptions import BridgeError
from mqtt_handler import MqttHandler
import state as state_module
from sync_loop import SyncLoop
from topics import TopicMapper
from utils import get_version

logger = logging.getLogger(__name__)

stopper = threading.Event()


def init_args():
    """Initialize arguments and global configuration paths."""
    config_module.init_args()


def main():
    context = state_module.get_context()
    context.apex_mqtt_version = get_version()

    # Signal handling for graceful shutdown
    def signal_handler(signum, frame):
        logger.info(f"Signal {signum} received, stopping...")
        stopper.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        context.config = config_module.read_config(version=context.apex_mqtt_version)
    except BridgeError:
        logger.error('Fatal exception during startup', exc_info=True)
        sys.exit(1)

    cfg = context.config
    client = ApexClient(cfg.apex.host, cfg.apex.username, cfg.apex.password, timeout=cfg.fetch_timeout)
    topic_mapper = TopicMapper(cfg.topic_root)

    mqtt = MqttHandler(
        context,
        topic_mapper.subscriptions,
        stopper,
        on_command=CommandHandler(client, topic_mapper, context),
    )
    sync_loop = SyncLoop(
        client,
        mqtt.publish,
        topic_mapper,
        cfg.bridge.refresh_interval,
        stopper=stopper,
        only_changed_outlets=cfg.bridge.publish_only_changed_values,
        publish_unchanged_probes=cfg.bridge.publish_unchanged_probes,
        failure_threshold=cfg.bridge.failure_threshold,
        context=context,
        on_refresh=mqtt.send_discovery,
    )
    mqtt.on_reconnect = sync_loop.republish
    context.register_error_listener(mqtt.publish_error)

    logger.info('Starting apex-mqtt...')

    if not mqtt.connect():
        logger.info('Stop: apex-mqtt')
        return

    try:
        sync_loop.start()
    except BridgeError:
        logger.error('Fatal exception during startup', exc_info=True)
        mqtt.disconnect()
        sys.exit(1)

    # We use a loop with timeout to allow signal handling to interrupt main thread in Python
    while sync_loop.is_alive():
        sync_loop.join(1)

    sync_loop.stop()
    context.register_error_listener(None)
    mqtt.disconnect()
    logger.info('Stop: apex-mqtt')


def cli():
    init_args()
    main()


if __name__ == "__main__":
    cli()
