"""
Persistence boundary for agent execution.

The executor reads agent and model configuration and writes exchanges,
session costs and health counters through the ExecutionStore protocol.
Production deployments back it with their own database; the in-memory
implementation here serves tests and local runs.

Every write is treated by the executor as fallible, best-effort I/O.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from modelgate.agents.health import AgentHealthRecord, HealthStatus
from modelgate.billing.cost_calculator import PricingDescriptor
from modelgate.exceptions import PersistenceError
from modelgate.llm.types import Message, Role, TokenUsage, ToolSpec


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class ProviderRecord:
    id: str
    provider_name: str              # vendor identifier, e.g. "anthropic"
    display_name: str = ""
    api_key: Optional[str] = field(default=None, repr=False)
    base_url: Optional[str] = None  # Azure endpoint or custom base URL


@dataclass
class ModelWithProvider:
    id: str
    model_name: str                 # doubles as the Azure deployment name
    provider: ProviderRecord
    pricing: Optional[PricingDescriptor] = None


@dataclass
class AgentDefinition:
    id: str
    agent_name: str
    system_prompt: str
    model_id: Optional[str]
    max_tokens: int = 4096
    temperature: float = 0.7
    tools: list[ToolSpec] = field(default_factory=list)
    is_enabled: bool = True


@dataclass
class ExchangeRecord:
    """One user input and the assistant's reply, with cost attribution."""

    session_id: str
    agent_id: str
    user_input: str
    assistant_output: str
    usage: TokenUsage
    prompt_cost_usd: float
    completion_cost_usd: float
    model: str
    pricing_snapshot: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def total_cost_usd(self) -> float:
        return self.prompt_cost_usd + self.completion_cost_usd


@dataclass
class SessionCostDelta:
    """Increment applied to a session's running totals."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    cost_usd: float = 0.0


@dataclass
class SessionRecord:
    id: str
    user_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    totals: SessionCostDelta = field(default_factory=SessionCostDelta)


# ---------------------------------------------------------------------------
# Store Protocol
# ---------------------------------------------------------------------------

class ExecutionStore(Protocol):
    async def find_agent_by_name(self, agent_name: str) -> Optional[AgentDefinition]: ...

    async def find_model_with_pricing(self, model_id: str) -> Optional[ModelWithProvider]: ...

    async def get_recent_messages(self, session_id: str, limit: int) -> list[Message]: ...

    async def save_exchange(self, exchange: ExchangeRecord) -> None: ...

    async def get_or_create_health_record(self, agent_id: str) -> AgentHealthRecord: ...

    async def increment_health_counters(
        self, agent_id: str, tokens: int, failed: bool, error: Optional[str] = None,
    ) -> None: ...

    async def update_health_status(self, agent_id: str, status: HealthStatus) -> None: ...

    async def append_session_cost_delta(self, session_id: str, delta: SessionCostDelta) -> None: ...

    async def create_session(
        self, user_id: Optional[str] = None, metadata: Optional[dict[str, Any]] = None,
    ) -> str: ...

    async def delete_session(self, session_id: str) -> None: ...


# ---------------------------------------------------------------------------
# In-Memory Store
# ---------------------------------------------------------------------------

class InMemoryExecutionStore:
    """Dict-backed ExecutionStore."""

    def __init__(self) -> None:
        self.agents: dict[str, AgentDefinition] = {}
        self.models: dict[str, ModelWithProvider] = {}
        self.sessions: dict[str, SessionRecord] = {}
        self.messages: dict[str, list[Message]] = {}
        self.exchanges: list[ExchangeRecord] = []
        self.health: dict[str, AgentHealthRecord] = {}

    # --- Seeding ---

    def add_agent(self, agent: AgentDefinition) -> AgentDefinition:
        self.agents[agent.agent_name] = agent
        return agent

    def add_model(self, model: ModelWithProvider) -> ModelWithProvider:
        self.models[model.id] = model
        return model

    # --- Reads ---

    async def find_agent_by_name(self, agent_name: str) -> Optional[AgentDefinition]:
        return self.agents.get(agent_name)

    async def find_model_with_pricing(self, model_id: str) -> Optional[ModelWithProvider]:
        return self.models.get(model_id)

    async def get_recent_messages(self, session_id: str, limit: int) -> list[Message]:
        if limit <= 0:
            return []
        return list(self.messages.get(session_id, [])[-limit:])

    # --- Writes ---

    async def save_exchange(self, exchange: ExchangeRecord) -> None:
        history = self.messages.setdefault(exchange.session_id, [])
        history.append(Message(role=Role.USER, content=exchange.user_input))
        history.append(Message(role=Role.ASSISTANT, content=exchange.assistant_output))
        self.exchanges.append(exchange)

    async def get_or_create_health_record(self, agent_id: str) -> AgentHealthRecord:
        record = self.health.get(agent_id)
        if record is None:
            record = AgentHealthRecord(agent_id=agent_id)
            self.health[agent_id] = record
        return record

    async def increment_health_counters(
        self, agent_id: str, tokens: int, failed: bool, error: Optional[str] = None,
    ) -> None:
        record = await self.get_or_create_health_record(agent_id)
        record.increment(tokens, failed, error)

    async def update_health_status(self, agent_id: str, status: HealthStatus) -> None:
        record = await self.get_or_create_health_record(agent_id)
        record.status = status

    async def append_session_cost_delta(self, session_id: str, delta: SessionCostDelta) -> None:
        session = self.sessions.get(session_id)
        if session is None:
            raise PersistenceError(
                f"Session not found: {session_id}", operation="append_session_cost_delta"
            )
        totals = session.totals
        totals.input_tokens += delta.input_tokens
        totals.output_tokens += delta.output_tokens
        totals.cache_creation_tokens += delta.cache_creation_tokens
        totals.cache_read_tokens += delta.cache_read_tokens
        totals.cost_usd += delta.cost_usd

    async def create_session(
        self, user_id: Optional[str] = None, metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        session_id = str(uuid.uuid4())
        self.sessions[session_id] = SessionRecord(
            id=session_id, user_id=user_id, metadata=dict(metadata or {})
        )
        return session_id

    async def delete_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)
        self.messages.pop(session_id, None)
