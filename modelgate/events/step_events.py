"""
Step lifecycle event builders for workflow engines.

The engine that runs steps is the only producer of step events. These
helpers build unsequenced WorkflowEvents in the wire shape, and
track_step() wraps a step body so that started, then completed or
failed, are broadcast with the measured duration.

Usage:
    async with track_step(manager, run_id, "intake", input=payload) as step:
        result = await executor.execute("intake_agent", text, ctx)
        step.record(
            result.output,
            tokens_used=result.tokens_used,
            cost_usd=result.cost_usd,
            cost_breakdown=result.cost_breakdown,
        )
"""

from __future__ import annotations

import json
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional

from modelgate.billing.cost_calculator import CostBreakdown
from modelgate.config.settings import EventSettings
from modelgate.events.subscription_manager import WorkflowSubscriptionManager
from modelgate.events.types import EventPayload, EventType, WorkflowEvent
from modelgate.observability.logging_config import reset_run_id, set_run_id

RUN_STEP_NAME = "workflow"


def output_preview(output: Any, limit: int) -> Optional[str]:
    """Render step output as text, cut to `limit` characters."""
    if output is None:
        return None
    text = output if isinstance(output, str) else json.dumps(output, default=str)
    return text[:limit]


def breakdown_to_wire(breakdown: CostBreakdown | dict[str, float] | None) -> Optional[dict[str, float]]:
    if breakdown is None:
        return None
    if isinstance(breakdown, dict):
        return dict(breakdown)
    return {
        "inputCost": breakdown.input_cost,
        "outputCost": breakdown.output_cost,
        "cacheCreationCost": breakdown.cache_creation_cost,
        "cacheReadCost": breakdown.cache_read_cost,
        "reasoningCost": breakdown.reasoning_cost,
        "totalCost": breakdown.total_cost,
    }


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def step_started(run_id: str, step_name: str, input: Any = None) -> WorkflowEvent:
    return WorkflowEvent(
        run_id=run_id,
        step_name=step_name,
        event_type=EventType.STEP_STARTED,
        payload=EventPayload(input=input),
    )


def step_completed(
    run_id: str,
    step_name: str,
    duration_ms: float,
    output: Any = None,
    tokens_used: Optional[int] = None,
    cost_usd: Optional[float] = None,
    cost_breakdown: CostBreakdown | dict[str, float] | None = None,
    *,
    settings: Optional[EventSettings] = None,
) -> WorkflowEvent:
    settings = settings or EventSettings()
    return WorkflowEvent(
        run_id=run_id,
        step_name=step_name,
        event_type=EventType.STEP_COMPLETED,
        duration_ms=duration_ms,
        payload=EventPayload(
            output=output_preview(output, settings.output_preview_chars),
            tokens_used=tokens_used,
            cost_usd=cost_usd,
            cost_breakdown=breakdown_to_wire(cost_breakdown),
        ),
    )


def step_failed(
    run_id: str, step_name: str, duration_ms: float, error: str,
) -> WorkflowEvent:
    return WorkflowEvent(
        run_id=run_id,
        step_name=step_name,
        event_type=EventType.STEP_FAILED,
        duration_ms=duration_ms,
        payload=EventPayload(error=error),
    )


def run_error(run_id: str, error: str, step_name: str = RUN_STEP_NAME) -> WorkflowEvent:
    return WorkflowEvent(
        run_id=run_id,
        step_name=step_name,
        event_type=EventType.RUN_ERROR,
        payload=EventPayload(error=error),
    )


# ---------------------------------------------------------------------------
# Step Tracking
# ---------------------------------------------------------------------------

@dataclass
class StepTracker:
    """Collects what the step body produced for the completion event."""

    output: Any = None
    tokens_used: Optional[int] = None
    cost_usd: Optional[float] = None
    cost_breakdown: CostBreakdown | dict[str, float] | None = None

    def record(
        self,
        output: Any,
        *,
        tokens_used: Optional[int] = None,
        cost_usd: Optional[float] = None,
        cost_breakdown: CostBreakdown | dict[str, float] | None = None,
    ) -> None:
        self.output = output
        self.tokens_used = tokens_used
        self.cost_usd = cost_usd
        self.cost_breakdown = cost_breakdown


@asynccontextmanager
async def track_step(
    manager: WorkflowSubscriptionManager,
    run_id: str,
    step_name: str,
    input: Any = None,
    *,
    settings: Optional[EventSettings] = None,
    clock: Callable[[], float] = time.monotonic,
) -> AsyncIterator[StepTracker]:
    """
    Broadcast step:started, run the body, then step:completed or step:failed.

    The body's exception is re-raised after the failure event. Log records
    emitted inside the body carry the run_id; the enclosing run_id is
    restored on exit.
    """
    tracker = StepTracker()
    token = set_run_id(run_id)
    manager.broadcast(run_id, step_started(run_id, step_name, input))
    start = clock()

    try:
        yield tracker
    except Exception as e:
        duration = (clock() - start) * 1000
        manager.broadcast(run_id, step_failed(run_id, step_name, duration, str(e)))
        raise
    else:
        duration = (clock() - start) * 1000
        manager.broadcast(run_id, step_completed(
            run_id,
            step_name,
            duration,
            output=tracker.output,
            tokens_used=tracker.tokens_used,
            cost_usd=tracker.cost_usd,
            cost_breakdown=tracker.cost_breakdown,
            settings=settings,
        ))
    finally:
        reset_run_id(token)
