"""
Workflow event types.

A WorkflowEvent reports one step lifecycle transition of a run. Producers
build events without a sequence number; the subscription manager stamps
one at broadcast time. to_dict() emits the camelCase wire shape consumed
by the transport layer, omitting unset fields.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class EventType(str, Enum):
    STEP_STARTED = "step:started"
    STEP_COMPLETED = "step:completed"
    STEP_FAILED = "step:failed"
    RUN_ERROR = "workflow:error"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class EventPayload:
    input: Any = None
    output: Optional[str] = None        # truncated preview
    tokens_used: Optional[int] = None
    cost_usd: Optional[float] = None
    cost_breakdown: Optional[dict[str, float]] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        fields = {
            "input": self.input,
            "output": self.output,
            "tokensUsed": self.tokens_used,
            "costUsd": self.cost_usd,
            "costBreakdown": self.cost_breakdown,
            "error": self.error,
        }
        return {k: v for k, v in fields.items() if v is not None}


@dataclass
class WorkflowEvent:
    run_id: str
    step_name: str
    event_type: EventType
    timestamp: str = field(default_factory=utc_timestamp)
    payload: EventPayload = field(default_factory=EventPayload)
    duration_ms: Optional[float] = None
    sequence_number: int = 0            # 0 until broadcast

    def with_sequence(self, sequence_number: int) -> "WorkflowEvent":
        return replace(self, sequence_number=sequence_number)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "sequenceNumber": self.sequence_number,
            "workflowId": self.run_id,
            "stepName": self.step_name,
            "eventType": EventType(self.event_type).value,
            "timestamp": self.timestamp,
            "payload": self.payload.to_dict(),
        }
        if self.duration_ms is not None:
            data["durationMs"] = self.duration_ms
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)
