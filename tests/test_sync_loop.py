"""
Tests for the sync loop: startup, polling, error handling and lifecycle.
"""

import logging
import threading
from unittest.mock import MagicMock

import pytest

from constants import SyncState
from exceptions import TransportError
import state as state_module
from sync_loop import SyncLoop
from topics import TopicMapper

ROOT = "apex/tank"


@pytest.fixture
def publish():
    return MagicMock()


@pytest.fixture
def initial(make_snapshot):
    return make_snapshot([("Return Pump", "ON"), ("Heater", "AOF")], [("Temp", "78.2")])


@pytest.fixture
def loop(mock_apex_client, publish, initial):
    mock_apex_client.get_status.return_value = initial
    return SyncLoop(mock_apex_client, publish, TopicMapper(ROOT), interval=60, failure_threshold=2)


def published(publish):
    return [c.args for c in publish.call_args_list]


class TestStartup:
    def test_start_publishes_full_state_and_maps_topics(self, loop, publish, initial, mocker):
        mocker.patch.object(threading.Thread, "start")

        loop.start()

        assert loop.state == SyncState.RUNNING
        assert loop.snapshot is initial
        assert published(publish) == [
            ("apex/tank/outlets/return-pump", "on"),
            ("apex/tank/outlets/heater", "auto"),
            ("apex/tank/probes/temp", "78.2"),
        ]
        assert loop.topic_mapper.resolve("apex/tank/outlets/heater/set") == "Heater"
        threading.Thread.start.assert_called_once()

    def test_start_failure_is_fatal(self, loop, mock_apex_client, mocker):
        mocker.patch.object(threading.Thread, "start")
        mock_apex_client.get_status.side_effect = TransportError("unreachable")

        with pytest.raises(TransportError):
            loop.start()

        assert loop.state == SyncState.STOPPED
        threading.Thread.start.assert_not_called()

    def test_start_publish_failure_is_fatal(self, loop, publish, mocker):
        mocker.patch.object(threading.Thread, "start")
        publish.side_effect = TransportError("broker down")

        with pytest.raises(TransportError):
            loop.start()

        assert loop.state == SyncState.STOPPED

    def test_start_calls_refresh_hook(self, mock_apex_client, publish, initial, mocker):
        mocker.patch.object(threading.Thread, "start")
        mock_apex_client.get_status.return_value = initial
        hook = MagicMock()
        loop = SyncLoop(mock_apex_client, publish, TopicMapper(ROOT), interval=60, on_refresh=hook)

        loop.start()

        hook.assert_called_once_with(initial, None)


class TestTick:
    @pytest.fixture(autouse=True)
    def started(self, loop, publish, mocker):
        mocker.patch.object(threading.Thread, "start")
        loop.start()
        publish.reset_mock()

    def test_changed_outlet_published(self, loop, publish, mock_apex_client, make_snapshot):
        current = make_snapshot([("Return Pump", "AOF"), ("Heater", "AOF")], [("Temp", "78.2")])
        mock_apex_client.get_status.return_value = current

        assert loop.tick() is True

        assert published(publish) == [("apex/tank/outlets/return-pump", "auto"), ("apex/tank/probes/temp", "78.2")]
        assert loop.snapshot is current

    def test_nothing_to_publish_still_replaces_cache(self, loop, publish, mock_apex_client, make_snapshot):
        loop.publish_unchanged_probes = False
        current = make_snapshot([("Return Pump", "ON"), ("Heater", "AOF")], [("Temp", "78.2")])
        mock_apex_client.get_status.return_value = current

        loop.tick()

        publish.assert_not_called()
        assert loop.snapshot is current

    def test_fetch_failure_keeps_cache(self, loop, publish, mock_apex_client, initial):
        mock_apex_client.get_status.side_effect = TransportError("timeout")

        loop.tick()

        publish.assert_not_called()
        assert loop.snapshot is initial
        assert loop.consecutive_failures == 1
        assert state_module.get_context().lasterror_share is None

    def test_sustained_failure_surfaces_error_and_recovers(self, loop, mock_apex_client, initial):
        context = state_module.get_context()
        mock_apex_client.get_status.side_effect = TransportError("timeout")

        loop.tick()
        loop.tick()

        assert "2 consecutive polls" in context.lasterror_share

        mock_apex_client.get_status.side_effect = None
        mock_apex_client.get_status.return_value = initial
        loop.tick()

        assert loop.consecutive_failures == 0
        assert context.lasterror_share is None

    def test_publish_failure_does_not_abort_batch(self, loop, publish, mock_apex_client, make_snapshot):
        current = make_snapshot([("Return Pump", "OFF"), ("Heater", "ON")], [("Temp", "78.3")])
        mock_apex_client.get_status.return_value = current
        publish.side_effect = [TransportError("boom"), None, None]

        loop.tick()

        assert publish.call_count == 3
        assert loop.snapshot is current

    def test_shape_change_rebuilds_topics(self, loop, publish, mock_apex_client, make_snapshot):
        current = make_snapshot([("Return Pump", "ON")], [("Temp", "78.2")])
        mock_apex_client.get_status.return_value = current

        loop.tick()

        assert loop.topic_mapper.resolve("apex/tank/outlets/heater/set") is None
        assert published(publish) == [
            ("apex/tank/outlets/return-pump", "on"),
            ("apex/tank/probes/temp", "78.2"),
            ("apex/tank/outlets/heater", ""),
        ]
        assert loop.snapshot is current

    def test_shape_change_clears_removed_probe(self, loop, publish, mock_apex_client, make_snapshot):
        current = make_snapshot([("Return Pump", "ON"), ("Heater", "AOF")], [("pH", "8.15")])
        mock_apex_client.get_status.return_value = current

        loop.tick()

        assert ("apex/tank/probes/temp", "") in published(publish)
        assert ("apex/tank/probes/ph", "8.15") in published(publish)
        assert ("apex/tank/outlets/heater", "") not in published(publish)

    def test_overlapping_tick_is_skipped(self, loop, mock_apex_client):
        loop._tick_lock.acquire()
        try:
            assert loop.tick() is False
        finally:
            loop._tick_lock.release()
        mock_apex_client.get_status.assert_called_once()  # only the startup fetch

    def test_republish_sends_full_state(self, loop, publish):
        loop.republish()
        assert len(publish.call_args_list) == 3


class TestLifecycle:
    def test_run_and_stop(self, mock_apex_client, publish, initial, threading_helpers):
        mock_apex_client.get_status.return_value = initial
        polled = threading.Event()

        def get_status():
            if mock_apex_client.get_status.call_count > 1:
                polled.set()
            return initial

        mock_apex_client.get_status.side_effect = get_status
        loop = SyncLoop(mock_apex_client, publish, TopicMapper(ROOT), interval=0.01)

        loop.start()
        assert polled.wait(5)
        loop.stop(timeout=5)

        assert threading_helpers.wait_for_thread(loop)
        assert loop.state == SyncState.STOPPED

    def test_republish_waits_for_poll_in_progress(self, loop, publish, mock_apex_client, make_snapshot):
        loop.refresh()
        publish.reset_mock()
        current = make_snapshot([("Return Pump", "OFF"), ("Heater", "OFF")], [("Temp", "78.2")])
        fetching = threading.Event()
        release = threading.Event()

        def get_status():
            fetching.set()
            release.wait(5)
            return current

        mock_apex_client.get_status.side_effect = get_status
        poller = threading.Thread(target=loop.tick)
        poller.start()
        assert fetching.wait(5)

        reconnect = threading.Thread(target=loop.republish)
        reconnect.start()
        reconnect.join(0.1)
        assert reconnect.is_alive()
        publish.assert_not_called()

        release.set()
        poller.join(5)
        reconnect.join(5)

        retained = dict(published(publish))
        assert retained["apex/tank/outlets/return-pump"] == "off"
        assert retained["apex/tank/outlets/heater"] == "off"

    def test_overrun_skips_missed_polls(self, mock_apex_client, publish, initial, mocker, caplog):
        now = [1000.0]

        class ClockedStopper(threading.Event):
            def wait(self, timeout=None):
                now[0] += timeout
                return self.is_set()

        fake_time = mocker.patch("sync_loop.time")
        fake_time.monotonic.side_effect = lambda: now[0]
        stopper = ClockedStopper()
        polls = []

        def get_status():
            polls.append(now[0])
            if len(polls) == 1:
                now[0] += 25  # runs past the next two deadlines
            if len(polls) == 3:
                stopper.set()
            return initial

        mock_apex_client.get_status.side_effect = get_status
        loop = SyncLoop(mock_apex_client, publish, TopicMapper(ROOT), interval=10, stopper=stopper)
        loop.refresh(initial)

        with caplog.at_level(logging.WARNING, logger="sync_loop"):
            loop.run()

        assert polls == [1010.0, 1040.0, 1050.0]
        assert "skipping 2 poll(s)" in caplog.text
        assert loop.state == SyncState.STOPPED

    def test_stopper_prevents_new_ticks(self, mock_apex_client, publish, initial, threading_helpers):
        mock_apex_client.get_status.return_value = initial
        stopper = threading.Event()
        loop = SyncLoop(mock_apex_client, publish, TopicMapper(ROOT), interval=60, stopper=stopper)

        loop.start()
        stopper.set()

        assert threading_helpers.wait_for_thread(loop)
        assert mock_apex_client.get_status.call_count == 1

    def test_stop_when_never_started(self, loop):
        loop.stop()
        assert loop.state == SyncState.STOPPED
