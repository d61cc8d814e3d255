"""
Apex MQTT Bridge Utilities

Helper functions for version detection, Home Assistant Supervisor API access
and topic-safe name encoding.
"""

import json
import logging
import os
from pathlib import Path
import re
from typing import Any, TypeAlias
import unicodedata
import urllib.error
import urllib.request

import yaml

logger = logging.getLogger(__name__)

# Type Aliases
JsonDict: TypeAlias = dict[str, Any]

_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")


def get_version() -> str:
    """
    Get the bridge version.

    Priority:
    1. APEX_MQTT_VERSION environment variable (set by HA app)
    2. config.yaml in common locations (for local development)
    3. 'dev' as fallback

    Returns:
        str: The version string.
    """
    # 1. Try environment variable (provided by HA app startup)
    version = os.getenv("APEX_MQTT_VERSION")
    if version:
        return version

    # 2. Try to read from config.yaml (for local development)
    script_path = Path(__file__).resolve()
    script_dir = script_path.parent
    search_paths = [
        script_dir / "../../../config.yaml",  # Local repo structure
        script_dir / "../../config.yaml",
        script_dir / "config.yaml",
        Path("./config.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            try:
                with path.open() as f:
                    if (config_yaml := yaml.safe_load(f)) and isinstance(config_yaml, dict) and "version" in config_yaml:
                        return f"{config_yaml['version']} (local)"
            except (OSError, yaml.YAMLError):
                pass

    return "dev"


def get_supervisor_config(service: str) -> JsonDict:
    """
    Fetch service configuration from the Home Assistant Supervisor API.

    Args:
        service: The service name (e.g., 'mqtt')

    Returns:
        JsonDict: Service configuration data, or empty dict on failure.
    """
    token = os.getenv("SUPERVISOR_TOKEN")
    if not token:
        return {}

    url = f"http://supervisor/services/{service}"
    headers = {"Authorization": f"Bearer {token}"}
    try:
        req = urllib.request.Request(url, headers=headers)
        with urllib.request.urlopen(req, timeout=5) as response:
            if response.status == 200:
                data = json.loads(response.read().decode())
                return data.get("data", {})
    except (urllib.error.URLError, json.JSONDecodeError, OSError) as e:
        logger.debug(f"Supervisor API discovery for {service} failed: {e}")
    return {}


def slugify(name: str) -> str:
    """
    Turn a human readable name into a single MQTT topic segment.

    Accents are folded to ASCII, everything is lowercased and each run of
    characters outside [a-z0-9] becomes a single '-'. The MQTT wildcards and
    the level separator can therefore never end up in a topic.

    Examples:
        'Return Pump'   -> 'return-pump'
        'Heater #2'     -> 'heater-2'
        'Température'   -> 'temperature'
        '  ---  '       -> ''

    Args:
        name: The name to encode.

    Returns:
        str: The slug, possibly empty.
    """
    if not name:
        return ""

    folded = unicodedata.normalize("NFKD", str(name)).encode("ascii", "ignore").decode("ascii")
    return _SLUG_SEPARATORS.sub("-", folded.lower()).strip("-")
