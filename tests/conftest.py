"""
Shared pytest fixtures for Apex MQTT bridge tests.
"""

import os
import sys
import threading
from unittest.mock import MagicMock

import pytest

# Add the source directory to the path so we can import the bridge modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "rootfs", "usr", "src")))

import config as config_module
from constants import OutletState
import state as state_module
from state import Outlet, Probe, StatusSnapshot


@pytest.fixture
def sample_options():
    """Sample Home Assistant options.json content."""
    return {
        "apex_host": "192.168.1.50",
        "apex_username": "admin",
        "apex_password": "1234",
        "apex_name": "tank",
        "refresh_interval": 10,
        "log_level": "INFO",
        "mqtt_host": "core-mosquitto",
        "mqtt_port": 1883,
        "mqtt_username": "test_user",
        "mqtt_password": "test_pass",
        "mqtt_base_topic": "apex",
        "mqtt_discovery": True,
    }


@pytest.fixture
def app_config(sample_options, mocker):
    """A validated configuration installed on the shared context."""
    mocker.patch("config._setup_logging")
    context = state_module.get_context()
    context.config = config_module.read_config(sample_options, "test")
    return context.config


@pytest.fixture
def make_snapshot():
    """Build a StatusSnapshot from (name, state) and (name, value) pairs."""

    def _make(outlets=(), probes=()):
        return StatusSnapshot(
            outlets=tuple(Outlet(name=name, state=OutletState(s)) for name, s in outlets),
            probes=tuple(Probe(name=name, value=value) for name, value in probes),
        )

    return _make


@pytest.fixture
def apex_status_xml():
    """Sample Apex status.xml document."""
    return b"""<?xml version="1.0"?>
<status software="4.31_1Q14" hardware="1.0 Apex">
  <hostname>apex</hostname>
  <probes>
    <probe><name>Temp</name><value>78.2 </value><type>Temp</type></probe>
    <probe><name>pH</name><value> 8.15</value></probe>
  </probes>
  <outlets>
    <outlet><name>Return Pump</name><outputID>1</outputID><state>ON</state></outlet>
    <outlet><name>Heater</name><outputID>2</outputID><state>AOF</state></outlet>
    <outlet><name>VarSpd1_I1</name><outputID>0</outputID><state>PF1</state></outlet>
    <outlet><name>Lights</name><outputID>3</outputID><state>aon</state></outlet>
  </outlets>
</status>
"""


@pytest.fixture
def mock_apex_client():
    """Controller client double."""
    return MagicMock()


@pytest.fixture
def threading_helpers():
    """Helper utilities for testing threaded code."""

    class ThreadingHelpers:
        @staticmethod
        def wait_for_thread(thread, timeout=5):
            """Wait for a thread to finish with timeout."""
            thread.join(timeout=timeout)
            return not thread.is_alive()

    return ThreadingHelpers()


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset global state before each test."""
    context = state_module.get_context()
    context.reset()
    context.config = None
    context.apex_mqtt_version = "Unknown"
    config_module.configdirectory = "./"
    yield
    context.reset()
