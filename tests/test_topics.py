"""
Tests for the topic mapper.
"""

from unittest.mock import patch

import pytest

from topics import TopicMapper, outlet_command_topic, outlet_topic, probe_topic


ROOT = "apex/tank"


def test_topic_helpers():
    assert outlet_topic(ROOT, "Return Pump") == "apex/tank/outlets/return-pump"
    assert outlet_command_topic(ROOT, "Return Pump") == "apex/tank/outlets/return-pump/set"
    assert probe_topic(ROOT, "Temp") == "apex/tank/probes/temp"


def test_subscriptions():
    assert TopicMapper(ROOT).subscriptions == ["apex/tank/outlets/+/set", "apex/tank/feedCycle/set"]


def test_refresh_builds_command_map(make_snapshot):
    mapper = TopicMapper(ROOT)
    mapper.refresh(make_snapshot([("Return Pump", "ON"), ("Heater", "AOF")]))

    assert dict(mapper.topic_map) == {
        "apex/tank/outlets/return-pump/set": "Return Pump",
        "apex/tank/outlets/heater/set": "Heater",
    }
    assert mapper.resolve("apex/tank/outlets/heater/set") == "Heater"
    assert mapper.resolve("apex/tank/outlets/unknown/set") is None


def test_refresh_clears_stale_entries(make_snapshot):
    mapper = TopicMapper(ROOT)
    mapper.refresh(make_snapshot([("Return Pump", "ON"), ("Heater", "AOF")]))
    mapper.refresh(make_snapshot([("Return Pump", "ON")]))

    assert "apex/tank/outlets/heater/set" not in mapper.topic_map
    assert mapper.resolve("apex/tank/outlets/heater/set") is None


def test_refresh_swaps_whole_map(make_snapshot):
    mapper = TopicMapper(ROOT)
    mapper.refresh(make_snapshot([("Heater", "ON")]))
    old_map = mapper.topic_map

    mapper.refresh(make_snapshot([("Lights", "ON")]))

    # Readers holding the old map keep a consistent view
    assert dict(old_map) == {"apex/tank/outlets/heater/set": "Heater"}
    assert dict(mapper.topic_map) == {"apex/tank/outlets/lights/set": "Lights"}


def test_refresh_failure_keeps_previous_map(make_snapshot):
    mapper = TopicMapper(ROOT)
    mapper.refresh(make_snapshot([("Heater", "ON")]))

    with patch("topics.slugify", side_effect=RuntimeError("boom")):
        with pytest.raises(RuntimeError):
            mapper.refresh(make_snapshot([("Lights", "ON")]))

    assert mapper.resolve("apex/tank/outlets/heater/set") == "Heater"


def test_topic_map_is_read_only(make_snapshot):
    mapper = TopicMapper(ROOT)
    mapper.refresh(make_snapshot([("Heater", "ON")]))

    with pytest.raises(TypeError):
        mapper.topic_map["apex/tank/outlets/x/set"] = "X"


def test_initial_publish_set(make_snapshot):
    mapper = TopicMapper(ROOT + "/")
    snapshot = make_snapshot(
        [("Return Pump", "ON"), ("Heater", "AOF"), ("Lights", "OFF")],
        [("Temp", " 78.2 "), ("pH", "8.15")],
    )

    assert mapper.initial_publish_set(snapshot) == [
        ("apex/tank/outlets/return-pump", "on"),
        ("apex/tank/outlets/heater", "auto"),
        ("apex/tank/outlets/lights", "off"),
        ("apex/tank/probes/temp", "78.2"),
        ("apex/tank/probes/ph", "8.15"),
    ]
