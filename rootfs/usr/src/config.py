"""
Apex MQTT Bridge Configuration

Handles command-line argument parsing and configuration loading from
Home Assistant options.json and Supervisor API.
"""

import argparse
import json
import logging
import os
from pathlib import Path
from typing import Optional, Dict, Any

import paho.mqtt.client as mqtt
from pydantic import BaseModel, Field, ValidationError, field_validator

from exceptions import ConfigurationError
from utils import get_supervisor_config

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------------
# Configuration Models
# ------------------------------------------------------------------------------------

class LogConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"


class ApexConfig(BaseModel):
    """Controller connection configuration."""
    host: str
    username: Optional[str] = None
    password: Optional[str] = None
    name: str = "apex"
    timeout: Optional[float] = None

    @field_validator("host", "name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value:
            raise ValueError("must not be empty")
        return value


class BridgeConfig(BaseModel):
    """Polling and publishing policy."""
    refresh_interval: float = Field(default=30, gt=0)
    publish_only_changed_values: bool = True
    publish_unchanged_probes: bool = True
    failure_threshold: int = Field(default=3, ge=1)


class MqttConfig(BaseModel):
    """MQTT connection and publishing configuration."""
    host: str = "127.0.0.1"
    port: int = 1883
    tls_port: int = 8883
    username: Optional[str] = None
    password: Optional[str] = None
    base_topic: str = "apex"
    client_id: Optional[str] = None
    version: Any = mqtt.MQTTv5
    connect_retry: int = 5
    discovery: bool = True
    discovery_prefix: str = "homeassistant"
    tls: bool = False
    tls_ca: str = ""
    tls_check_peer: bool = False


class ConfigModel(BaseModel):
    """Root configuration model."""
    log: LogConfig = Field(default_factory=LogConfig)
    apex: ApexConfig
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    mqtt: MqttConfig = Field(default_factory=MqttConfig)

    @property
    def topic_root(self) -> str:
        """Root of every topic published or subscribed by this bridge."""
        return f"{self.mqtt.base_topic.strip('/')}/{self.apex.name}"

    @property
    def fetch_timeout(self) -> float:
        """A fetch must finish before the next poll is due."""
        return self.apex.timeout or self.bridge.refresh_interval


# ------------------------------------------------------------------------------------
# Configuration Paths
# ------------------------------------------------------------------------------------
configdirectory = './'


def init_args():
    """Initialize arguments and global configuration paths."""
    global configdirectory

    parser = argparse.ArgumentParser(
        prog='apex-mqtt',
        description='Neptune Apex to MQTT bridge'
    )
    # Determine default config directory: /data for HA, ./ for local dev
    default_config = '/data' if os.path.exists('/data') else './'
    parser.add_argument(
        '-c', '--config',
        help='Directory where the configuration resides',
        type=str,
        default=default_config
    )
    args = parser.parse_args()

    configdirectory = args.config
    if not configdirectory.endswith('/'):
        configdirectory += '/'


def _setup_logging(level: str) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    formatter = logging.Formatter('%(asctime)s %(levelname)s: %(message)s')

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream = logging.StreamHandler()
    stream.setLevel(level)
    stream.setFormatter(formatter)
    root_logger.addHandler(stream)


def read_config(options: Optional[Dict[str, Any]] = None, version: str = "Unknown") -> ConfigModel:
    """
    Read and validate the configuration.

    Args:
        options: Add-on options to use instead of reading options.json
        version: The app version string for logging

    Returns:
        ConfigModel: The populated configuration object

    Raises:
        ConfigurationError: If a required setting is missing or a value is invalid.
    """
    # 1. Load Home Assistant Options
    if options is None:
        options_path = Path(configdirectory) / 'options.json'
        options = {}
        if options_path.exists():
            try:
                options = json.loads(options_path.read_text())
            except (OSError, ValueError) as e:
                raise ConfigurationError(f"Failed to load {options_path}: {e}") from e

    if not options.get('apex_host'):
        raise ConfigurationError("Missing required option 'apex_host'")

    # 2. MQTT Service Discovery
    mqtt_service = {}
    if not options.get('mqtt_host'):
        mqtt_service = get_supervisor_config('mqtt')
        if mqtt_service:
            logger.info("Using MQTT service discovery for connection settings.")

    # 3. Build Config Model
    mqtt_version_str = str(options.get('mqtt_protocol', '5.0'))
    version_map = {'3.1': mqtt.MQTTv31, '3.1.1': mqtt.MQTTv311, '5.0': mqtt.MQTTv5}
    mqtt_version = version_map.get(mqtt_version_str, mqtt.MQTTv5)

    tls_ca = options.get('mqtt_tls_ca', '')
    if tls_ca and not tls_ca.startswith('/'):
        tls_ca = str(Path(configdirectory) / tls_ca)

    try:
        model = ConfigModel(
            log=LogConfig(
                level=(options.get('log_level') or 'INFO').upper()
            ),
            apex=ApexConfig(
                host=options['apex_host'],
                username=options.get('apex_username') or None,
                password=options.get('apex_password') or None,
                name=options.get('apex_name') or 'apex',
                timeout=options.get('apex_timeout'),
            ),
            bridge=BridgeConfig(
                refresh_interval=options.get('refresh_interval', 30),
                publish_only_changed_values=options.get('publish_only_changed_values', True),
                publish_unchanged_probes=options.get('publish_unchanged_probes', True),
                failure_threshold=options.get('failure_threshold', 3),
            ),
            mqtt=MqttConfig(
                host=options.get('mqtt_host') or mqtt_service.get('host', '127.0.0.1'),
                port=options.get('mqtt_port') or mqtt_service.get('port', 1883),
                tls_port=options.get('mqtt_tls_port', 8883),
                username=options.get('mqtt_username') or mqtt_service.get('username'),
                password=options.get('mqtt_password') or mqtt_service.get('password'),
                base_topic=options.get('mqtt_base_topic', 'apex'),
                client_id=options.get('mqtt_client_id') if options.get('mqtt_client_id') not in [None, "", "None"] else None,
                version=mqtt_version,
                discovery=options.get('mqtt_discovery', True),
                discovery_prefix=options.get('mqtt_discovery_prefix', 'homeassistant'),
                tls=options.get('mqtt_tls', False),
                tls_ca=tls_ca,
                tls_check_peer=options.get('mqtt_tls_check_peer', False)
            )
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    # 4. Global Logging Setup
    _setup_logging(model.log.level)

    logger.info(f'Start: apex-mqtt - version: {version}')

    # Debug logging with redacted passwords
    config_log = model.model_dump()
    for section in ('apex', 'mqtt'):
        if config_log[section].get('password'):
            config_log[section]['password'] = '********'
    logger.debug(f'Config: {str(config_log)}')

    return model
