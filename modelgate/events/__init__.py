from modelgate.events.step_events import (
    run_error,
    step_completed,
    step_failed,
    step_started,
    track_step,
)
from modelgate.events.subscription_manager import WorkflowSubscriptionManager
from modelgate.events.types import EventPayload, EventType, WorkflowEvent

__all__ = [
    "EventPayload",
    "EventType",
    "WorkflowEvent",
    "WorkflowSubscriptionManager",
    "run_error",
    "step_completed",
    "step_failed",
    "step_started",
    "track_step",
]
