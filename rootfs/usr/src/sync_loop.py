"""
Sync Loop

Polls the controller on a fixed interval, diffs each status against the cached
one and publishes the differences as retained MQTT messages.
"""

from collections.abc import Callable
import logging
import threading
import time
from typing import TypeAlias

from constants import SyncState
from diff import Update, diff_snapshots
from exceptions import ProtocolMismatchError, TransportError
import state as state_module
from state import StatusSnapshot
from topics import TopicMapper

logger = logging.getLogger(__name__)

Publisher: TypeAlias = Callable[[str, str], None]
RefreshHook: TypeAlias = Callable[[StatusSnapshot, StatusSnapshot | None], None]


class SyncLoop(threading.Thread):
    """
    Task that keeps the broker in step with the controller.

    start() performs the initial fetch, topic map build and full publish on the
    calling thread, so a controller that cannot be reached fails startup. The
    thread then runs one poll per interval. Polls never overlap and polls that
    fall due while another one is still running are skipped, not queued.
    """

    def __init__(
        self,
        client,
        publish: Publisher,
        topic_mapper: TopicMapper,
        interval: float,
        stopper: threading.Event | None = None,
        only_changed_outlets: bool = True,
        publish_unchanged_probes: bool = True,
        failure_threshold: int = 3,
        context: state_module.AppContext | None = None,
        on_refresh: RefreshHook | None = None,
    ) -> None:
        """
        Initialize the sync loop.

        Args:
            client: Controller client exposing get_status().
            publish: Callable publishing one retained, QoS 1 message.
            topic_mapper: The topic mapper this loop owns.
            interval: Seconds between polls.
            stopper: Event to signal when the task should stop.
            only_changed_outlets: Only publish outlets whose state changed.
            publish_unchanged_probes: Publish every probe on every poll.
            failure_threshold: Consecutive failed polls before an error is raised to the operator.
            context: Application context.
            on_refresh: Called after each topic map rebuild with (new, previous) snapshots.
        """
        super().__init__(name="SyncLoop", daemon=True)
        self.client = client
        self.topic_mapper = topic_mapper
        self.interval = interval
        self.only_changed_outlets = only_changed_outlets
        self.publish_unchanged_probes = publish_unchanged_probes
        self.failure_threshold = failure_threshold
        self.app_context = context or state_module.get_context()
        self._publish = publish
        self._on_refresh = on_refresh
        self._stopper = stopper or threading.Event()
        self._tick_lock = threading.Lock()
        self._sync_state = SyncState.STOPPED
        self._snapshot: StatusSnapshot | None = None
        self._consecutive_failures = 0

    @property
    def state(self) -> SyncState:
        return self._sync_state

    @property
    def snapshot(self) -> StatusSnapshot | None:
        """The last status fetched from the controller."""
        return self._snapshot

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def _set_state(self, new_state: SyncState) -> None:
        logger.debug(f"Sync loop: {self._sync_state} -> {new_state}")
        self._sync_state = new_state

    # --------------------------------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------------------------------

    def start(self) -> None:
        """
        Run the initial synchronization, then start polling.

        Raises:
            TransportError: If the controller or broker cannot be reached.
        """
        self._set_state(SyncState.STARTING)
        try:
            self.refresh(strict=True)
        except Exception:
            self._set_state(SyncState.STOPPED)
            raise
        self._set_state(SyncState.RUNNING)
        super().start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop polling; a poll in progress is allowed to finish."""
        if self._sync_state == SyncState.STOPPED:
            return
        self._set_state(SyncState.STOPPING)
        self._stopper.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout)
        self._set_state(SyncState.STOPPED)

    def run(self) -> None:
        """Main thread execution."""
        try:
            next_tick = time.monotonic() + self.interval
            while not self._stopper.is_set():
                delay = next_tick - time.monotonic()
                if delay > 0 and self._stopper.wait(delay):
                    break

                try:
                    self.tick()
                except Exception:
                    logger.error("Unexpected exception during Apex poll", exc_info=True)

                now = time.monotonic()
                next_tick += self.interval
                if next_tick <= now:
                    skipped = int((now - next_tick) // self.interval) + 1
                    logger.warning(f"Apex poll took longer than {self.interval}s, skipping {skipped} poll(s)")
                    next_tick += skipped * self.interval
        finally:
            self._stopper.set()
            self._set_state(SyncState.STOPPED)

    # --------------------------------------------------------------------------------
    # Synchronization
    # --------------------------------------------------------------------------------

    def refresh(self, snapshot: StatusSnapshot | None = None, strict: bool = False) -> None:
        """
        Rebuild the topic map and publish the full state.

        Args:
            snapshot: Status to use; fetched from the controller when omitted.
            strict: Raise on the first publish failure instead of logging it.
        """
        if snapshot is None:
            snapshot = self.client.get_status()

        previous = self._snapshot
        self.topic_mapper.refresh(snapshot)
        logger.info(
            f"Mapped {len(snapshot.outlets)} outlets and {len(snapshot.probes)} probes "
            f"under '{self.topic_mapper.root}'"
        )
        updates = self.topic_mapper.initial_publish_set(snapshot)
        self._publish_updates(updates, strict=strict)
        if previous is not None:
            # Clear retained values of outlets and probes that are gone
            current_topics = {topic for topic, _ in updates}
            removed = [
                (topic, "")
                for topic, _ in self.topic_mapper.initial_publish_set(previous)
                if topic not in current_topics
            ]
            if removed:
                logger.info(f"Clearing {len(removed)} retained topic(s) no longer reported by the Apex")
                self._publish_updates(removed, strict=strict)
        self._snapshot = snapshot

        if self._on_refresh:
            self._on_refresh(snapshot, previous)

    def republish(self) -> None:
        """
        Publish the full cached state again, e.g. after the broker connection was re-established.

        Waits for a poll in progress, so the cache cannot be replaced halfway
        through and older values never land after newer ones.
        """
        with self._tick_lock:
            snapshot = self._snapshot
            if snapshot is None:
                return
            logger.info("Re-publishing full Apex state")
            self._publish_updates(self.topic_mapper.initial_publish_set(snapshot))

    def tick(self) -> bool:
        """
        Run one poll.

        Returns:
            bool: False if another poll was still in progress and this one was skipped.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous Apex poll still in progress, skipping")
            return False
        try:
            self._poll()
        finally:
            self._tick_lock.release()
        return True

    def _poll(self) -> None:
        try:
            current = self.client.get_status()
        except TransportError as e:
            self._record_failure(e)
            return

        previous = self._snapshot
        if previous is None:
            self.refresh(current)
            self._record_success()
            return

        try:
            updates = diff_snapshots(
                previous,
                current,
                only_changed_outlets=self.only_changed_outlets,
                publish_unchanged_probes=self.publish_unchanged_probes,
            )
        except ProtocolMismatchError as e:
            logger.warning(f"Apex configuration changed: {e}. Rebuilding topics.")
            self.refresh(current)
            self._record_success()
            return

        if updates:
            root = self.topic_mapper.root
            self._publish_updates([(root + suffix, value) for suffix, value in updates])
        else:
            logger.debug("No Apex changes to publish")

        self._snapshot = current
        self._record_success()

    def _publish_updates(self, updates: list[Update], strict: bool = False) -> int:
        published = 0
        for topic, value in updates:
            try:
                self._publish(topic, value)
                published += 1
                logger.debug(f"MQTT Publish: topic='{topic}', value='{value}'")
            except TransportError as e:
                if strict:
                    raise
                logger.error(f"MQTT Publish Failed for '{topic}': {e}")
        return published

    def _record_failure(self, error: TransportError) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.failure_threshold:
            self.app_context.set_error(
                f"Apex unreachable for {self._consecutive_failures} consecutive polls: {error}", category="apex"
            )
        else:
            logger.warning(f"Apex poll failed ({self._consecutive_failures}/{self.failure_threshold}): {error}")

    def _record_success(self) -> None:
        if self._consecutive_failures:
            logger.info(f"Apex poll recovered after {self._consecutive_failures} failed attempt(s)")
        self._consecutive_failures = 0
        self.app_context.set_error(None, category="apex")
