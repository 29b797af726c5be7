"""
Tests for the per-run workflow subscription manager: sequencing, fan-out,
unsubscribe semantics and callback isolation.
"""

from __future__ import annotations

import threading

import pytest

from modelgate.events import WorkflowSubscriptionManager, step_started
from modelgate.events.types import WorkflowEvent


@pytest.fixture
def manager():
    return WorkflowSubscriptionManager()


def _event(run_id: str = "run-1", step: str = "intake") -> WorkflowEvent:
    return step_started(run_id, step)


class TestSequencing:

    def test_sequences_start_at_one_and_increase(self, manager):
        received = []
        manager.subscribe("run-1", received.append)

        for _ in range(5):
            manager.broadcast("run-1", _event())

        assert [e.sequence_number for e in received] == [1, 2, 3, 4, 5]
        assert manager.get_sequence("run-1") == 5

    def test_broadcast_does_not_mutate_source_event(self, manager):
        manager.subscribe("run-1", lambda e: None)
        event = _event()
        manager.broadcast("run-1", event)
        assert event.sequence_number == 0

    def test_no_subscribers_is_a_noop(self, manager):
        manager.broadcast("run-1", _event())
        assert manager.get_sequence("run-1") == 0

    def test_runs_have_independent_counters(self, manager):
        a, b = [], []
        manager.subscribe("run-a", a.append)
        manager.subscribe("run-b", b.append)

        manager.broadcast("run-a", _event("run-a"))
        manager.broadcast("run-a", _event("run-a"))
        manager.broadcast("run-b", _event("run-b"))

        assert [e.sequence_number for e in a] == [1, 2]
        assert [e.sequence_number for e in b] == [1]

    def test_counter_survives_last_unsubscribe(self, manager):
        unsubscribe = manager.subscribe("run-1", lambda e: None)
        manager.broadcast("run-1", _event())
        unsubscribe()

        received = []
        manager.subscribe("run-1", received.append)
        manager.broadcast("run-1", _event())

        assert received[0].sequence_number == 2

    def test_clear_resets_counter(self, manager):
        manager.subscribe("run-1", lambda e: None)
        manager.broadcast("run-1", _event())
        manager.clear("run-1")

        assert manager.get_sequence("run-1") == 0
        assert manager.get_subscriber_count("run-1") == 0

    def test_concurrent_broadcasts_assign_unique_sequences(self, manager):
        received = []
        lock = threading.Lock()

        def collect(event):
            with lock:
                received.append(event.sequence_number)

        manager.subscribe("run-1", collect)

        def worker():
            for _ in range(100):
                manager.broadcast("run-1", _event())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(received) == list(range(1, 401))


class TestFanOut:

    def test_every_subscriber_sees_the_same_sequence(self, manager):
        first, second = [], []
        manager.subscribe("run-1", first.append)
        manager.subscribe("run-1", second.append)

        manager.broadcast("run-1", _event())

        assert first[0].sequence_number == second[0].sequence_number == 1
        assert manager.get_subscriber_count("run-1") == 2

    def test_same_callback_registered_twice_is_called_twice(self, manager):
        received = []
        manager.subscribe("run-1", received.append)
        manager.subscribe("run-1", received.append)
        manager.broadcast("run-1", _event())
        assert len(received) == 2

    def test_failing_callback_does_not_block_others(self, manager):
        received = []

        def broken(event):
            raise RuntimeError("observer went away")

        manager.subscribe("run-1", broken)
        manager.subscribe("run-1", received.append)

        manager.broadcast("run-1", _event())

        assert len(received) == 1

    def test_callback_may_unsubscribe_during_delivery(self, manager):
        received = []
        handles = {}

        def once(event):
            received.append(event)
            handles["once"]()

        handles["once"] = manager.subscribe("run-1", once)
        manager.subscribe("run-1", lambda e: None)

        manager.broadcast("run-1", _event())
        manager.broadcast("run-1", _event())

        assert len(received) == 1


class TestUnsubscribe:

    def test_unsubscribe_stops_delivery(self, manager):
        received = []
        unsubscribe = manager.subscribe("run-1", received.append)
        unsubscribe()
        manager.broadcast("run-1", _event())
        assert received == []

    def test_unsubscribe_is_idempotent(self, manager):
        received = []
        unsubscribe = manager.subscribe("run-1", received.append)
        manager.subscribe("run-1", received.append)

        unsubscribe()
        unsubscribe()

        assert manager.get_subscriber_count("run-1") == 1

    def test_unsubscribe_after_clear(self, manager):
        unsubscribe = manager.subscribe("run-1", lambda e: None)
        manager.clear("run-1")
        unsubscribe()
        assert manager.get_subscriber_count("run-1") == 0
