from modelgate.agents.executor import (
    AgentExecutionContext,
    AgentExecutionResult,
    AgentExecutor,
    parse_output,
)
from modelgate.agents.health import AgentHealthRecord, HealthStatus, derive_status
from modelgate.agents.store import ExecutionStore, InMemoryExecutionStore

__all__ = [
    "AgentExecutionContext",
    "AgentExecutionResult",
    "AgentExecutor",
    "AgentHealthRecord",
    "ExecutionStore",
    "HealthStatus",
    "InMemoryExecutionStore",
    "derive_status",
    "parse_output",
]
