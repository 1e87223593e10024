"""
Tests for change notifications, waiting, background tasks and read retries
"""
import logging
import threading
import time
from datetime import datetime

import pytest

from ritual import crud
from ritual.background import BackgroundRunner
from ritual.coordinator import submit_input
from ritual.errors import PersistenceError
from ritual.notifications import CycleChannel, wait_for_cycle
from ritual.retry import retry_read
from ritual.schemas import CycleStatus
from tests.conftest import wait_until


class TestCycleChannel:
    def test_publish_reaches_subscribers_of_that_cycle(self):
        channel = CycleChannel()
        seen = []
        channel.subscribe("c1", lambda cycle_id, event: seen.append((cycle_id, event)))
        channel.subscribe("c2", lambda cycle_id, event: seen.append((cycle_id, event)))

        assert channel.publish("c1", "input_submitted") == 1
        assert seen == [("c1", "input_submitted")]

    def test_unsubscribe_is_idempotent(self):
        channel = CycleChannel()
        subscription = channel.subscribe("c1", lambda *_: None)
        subscription.unsubscribe()
        subscription.unsubscribe()
        assert not subscription.active
        assert channel.subscriber_count("c1") == 0
        assert channel.publish("c1", "anything") == 0

    def test_broken_subscriber_does_not_block_others(self):
        channel = CycleChannel()
        seen = []

        def broken(cycle_id, event):
            raise RuntimeError("boom")

        channel.subscribe("c1", broken)
        channel.subscribe("c1", lambda cycle_id, event: seen.append(event))
        assert channel.publish("c1", "proposals_ready") == 1
        assert seen == ["proposals_ready"]


class TestWaitForCycle:
    def test_woken_by_notification(self, make_context, test_settings, cycle_id, adventurous):
        slow_poll = test_settings.model_copy(update={"poll_interval_seconds": 30})
        alice = make_context("alice", settings=slow_poll)
        bob = make_context("bob", settings=slow_poll)

        timer = threading.Timer(0.2, submit_input, args=(bob, cycle_id, adventurous))
        timer.start()
        started = time.monotonic()
        snap = wait_for_cycle(alice, cycle_id, lambda s: s.partner_input_done, timeout=10)
        timer.join()

        assert snap.partner_input_done
        assert time.monotonic() - started < 5

    def test_poll_catches_missed_notification(self, alice, session_factory, cycle_id):
        def write_silently():
            db = session_factory()
            try:
                crud.record_partner_input(db, cycle_id, "partner_two", "bob", {"mood_tags": ["cozy"]}, datetime.utcnow())
            finally:
                db.close()

        timer = threading.Timer(0.1, write_silently)
        timer.start()
        snap = wait_for_cycle(alice, cycle_id, lambda s: s.partner_input_done, timeout=5, poll_interval=0.05)
        timer.join()
        assert snap.partner_input_done

    def test_gives_up_after_timeout(self, alice, cycle_id):
        snap = wait_for_cycle(alice, cycle_id, lambda s: s.partner_input_done, timeout=0.2)
        assert not snap.partner_input_done
        assert snap.status == CycleStatus.EMPTY

    def test_stops_on_terminal_state(self, alice, session_factory, cycle_id):
        db = session_factory()
        try:
            now = datetime.utcnow()
            crud.record_partner_input(db, cycle_id, "partner_one", "alice", {"mood_tags": ["cozy"]}, now)
            crud.record_partner_input(db, cycle_id, "partner_two", "bob", {"mood_tags": ["cozy"]}, now)
            crud.claim_generation(db, cycle_id, "claim-1", now, now)
            crud.release_generation(db, cycle_id, "claim-1", "quota_exceeded", "Out of credits")
        finally:
            db.close()

        snap = wait_for_cycle(alice, cycle_id, lambda s: bool(s.rituals), timeout=5)
        assert snap.status == CycleStatus.FAILED
        assert snap.generation_error_code == "quota_exceeded"

    def test_unsubscribes_when_done(self, alice, channel, cycle_id):
        wait_for_cycle(alice, cycle_id, lambda s: True, timeout=1)
        assert channel.subscriber_count(cycle_id) == 0


class TestBackgroundRunner:
    def test_drain_waits_for_tasks(self):
        runner = BackgroundRunner(max_workers=2)
        done = []
        runner.spawn(lambda: (time.sleep(0.1), done.append(1)))
        assert runner.drain(5)
        assert done == [1]
        assert wait_until(lambda: runner.pending() == 0)
        runner.shutdown()

    def test_failures_are_logged(self, caplog):
        runner = BackgroundRunner(max_workers=1)

        def explode():
            raise RuntimeError("generation exploded")

        caplog.set_level(logging.ERROR, logger="ritual.background")
        future = runner.spawn(explode, description="generation for c1")
        assert runner.drain(5)
        runner.shutdown()

        assert isinstance(future.exception(), RuntimeError)
        # Done-callbacks can trail the future by a moment
        assert wait_until(lambda: "Background generation for c1 failed" in caplog.text)

    def test_drain_reports_unfinished_work(self):
        runner = BackgroundRunner(max_workers=1)
        gate = threading.Event()
        runner.spawn(gate.wait, 5)
        assert not runner.drain(0.05)
        gate.set()
        assert runner.drain(5)
        runner.shutdown()


class TestRetryRead:
    def test_recovers_from_transient_failure(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise PersistenceError("connection dropped")
            return "row"

        assert retry_read(flaky, retries=3, backoff_seconds=0.001) == "row"
        assert len(attempts) == 3

    def test_gives_up_after_bounded_attempts(self):
        attempts = []

        def down():
            attempts.append(1)
            raise PersistenceError("database unavailable")

        with pytest.raises(PersistenceError):
            retry_read(down, retries=2, backoff_seconds=0.001)
        assert len(attempts) == 2

    def test_other_errors_are_not_retried(self):
        attempts = []

        def wrong():
            attempts.append(1)
            raise KeyError("bug")

        with pytest.raises(KeyError):
            retry_read(wrong, retries=3, backoff_seconds=0.001)
        assert len(attempts) == 1
