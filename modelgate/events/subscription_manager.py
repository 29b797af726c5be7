"""
Workflow Subscription Manager: per-run pub/sub with sequence numbers.

Observers subscribe to a run id and receive every event broadcast for
that run. Each broadcast stamps the event with the run's next sequence
number (1, 2, 3, ...) so a reconnecting observer can detect gaps and
duplicates.

Lifetime is explicit: when a run reaches a terminal state the caller
must clear() it, otherwise its counter lives as long as the manager.

Usage:
    manager = WorkflowSubscriptionManager()
    unsubscribe = manager.subscribe(run_id, lambda event: queue.put_nowait(event))
    manager.broadcast(run_id, step_started(run_id, "intake", payload))
    ...
    unsubscribe()
    manager.clear(run_id)
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from modelgate.events.types import WorkflowEvent

logger = logging.getLogger(__name__)

EventCallback = Callable[[WorkflowEvent], None]


class _Subscription:
    """One registration; identity distinguishes repeat registrations."""

    __slots__ = ("callback",)

    def __init__(self, callback: EventCallback):
        self.callback = callback


class WorkflowSubscriptionManager:
    """
    Fan-out of workflow events to per-run subscribers.

    A lock guards the subscriber lists and sequence counters. Callbacks
    run synchronously, outside the lock, on a snapshot of the subscribers
    taken when the sequence number was assigned; each callback's failure
    is isolated from the rest.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[_Subscription]] = {}
        self._sequences: dict[str, int] = {}
        self._lock = threading.Lock()

    def subscribe(self, run_id: str, callback: EventCallback) -> Callable[[], None]:
        """
        Register a callback for a run.

        Returns an idempotent unsubscribe function. The run's sequence
        counter is created on first subscription and survives the last
        unsubscribe.
        """
        subscription = _Subscription(callback)
        with self._lock:
            self._subscriptions.setdefault(run_id, []).append(subscription)
            self._sequences.setdefault(run_id, 0)

        def unsubscribe() -> None:
            with self._lock:
                subscribers = self._subscriptions.get(run_id)
                if not subscribers or subscription not in subscribers:
                    return
                subscribers.remove(subscription)
                if not subscribers:
                    del self._subscriptions[run_id]

        return unsubscribe

    def broadcast(self, run_id: str, event: WorkflowEvent) -> None:
        """
        Stamp the next sequence number and deliver to every subscriber.

        A no-op without subscribers: the counter does not advance.
        """
        with self._lock:
            subscribers = self._subscriptions.get(run_id)
            if not subscribers:
                return
            sequence = self._sequences.get(run_id, 0) + 1
            self._sequences[run_id] = sequence
            snapshot = list(subscribers)

        stamped = event.with_sequence(sequence)
        for subscription in snapshot:
            try:
                subscription.callback(stamped)
            except Exception as e:
                logger.debug(
                    "event_callback_failed",
                    extra={
                        "run_id": run_id,
                        "step_name": stamped.step_name,
                        "error": str(e)[:200],
                    },
                )

    def clear(self, run_id: str) -> None:
        """Drop all subscribers and the sequence counter for a run."""
        with self._lock:
            self._subscriptions.pop(run_id, None)
            self._sequences.pop(run_id, None)

    def get_sequence(self, run_id: str) -> int:
        """Last sequence number assigned for the run (0 if none)."""
        with self._lock:
            return self._sequences.get(run_id, 0)

    def get_subscriber_count(self, run_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(run_id, ()))
