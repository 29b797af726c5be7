"""
Agent Executor: Runs one unit of agent work end to end.

Per call:
    1. Resolve the agent definition and its model (with provider + pricing)
    2. Build the message list, optionally prefixed with session history
    3. Resolve an adapter from the registry with the provider's credential
    4. Complete
    5. Price the usage
    6. Persist the exchange and the session cost delta (best-effort)
    7. Update agent health (best-effort)
    8. Parse the output as JSON, falling back to raw text

Ordinary failures never raise past execute(): the caller gets a failed
AgentExecutionResult carrying the error message, after a best-effort
health failure increment.

Usage:
    executor = AgentExecutor(registry, store)
    result = await executor.execute(
        "story_writer",
        "Summarize this PR",
        AgentExecutionContext(session_id=session_id),
    )
    if result.success:
        print(result.output, result.cost_usd)
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

from modelgate.agents.health import derive_status
from modelgate.agents.store import (
    AgentDefinition,
    ExchangeRecord,
    ExecutionStore,
    ModelWithProvider,
    SessionCostDelta,
)
from modelgate.billing.cost_calculator import (
    CostBreakdown,
    calculate_cost,
    split_exchange_cost,
)
from modelgate.config.loader import resolve_api_key
from modelgate.config.settings import GatewaySettings
from modelgate.exceptions import (
    AgentDisabledError,
    AgentNotFoundError,
    ModelNotConfiguredError,
)
from modelgate.llm.adapters.base import ProviderAdapter
from modelgate.llm.registry import ProviderRegistry
from modelgate.llm.types import CompletionRequest, Message, Role, TokenUsage, Vendor

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\n(.*?)\n```", re.DOTALL)

PING_INPUT = "Test ping"
PING_USER = "system_test"


# ---------------------------------------------------------------------------
# Context & Result
# ---------------------------------------------------------------------------

@dataclass
class AgentExecutionContext:
    session_id: str
    user_id: Optional[str] = None
    include_history: bool = False
    max_history_messages: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentExecutionResult:
    success: bool
    output: Any
    tokens_used: int
    cost_usd: float
    model: str
    agent_name: str
    execution_time_ms: float
    error: Optional[str] = None
    cost_breakdown: Optional[CostBreakdown] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "output": self.output,
            "tokens_used": self.tokens_used,
            "cost_usd": self.cost_usd,
            "model": self.model,
            "agent_name": self.agent_name,
            "execution_time_ms": round(self.execution_time_ms, 1),
        }
        if self.error is not None:
            data["error"] = self.error
        if self.cost_breakdown is not None:
            data["cost_breakdown"] = self.cost_breakdown.to_dict()
        return data


def _reject_constant(name: str) -> Any:
    # NaN / Infinity are Python extensions, not JSON
    raise ValueError(f"Invalid JSON constant: {name}")


def parse_output(content: str) -> Any:
    """
    Parse agent output.

    Whole-body JSON first, then the first fenced ```json block, otherwise
    the raw string. Never raises.
    """
    try:
        return json.loads(content, parse_constant=_reject_constant)
    except (ValueError, TypeError):
        pass

    match = _FENCED_JSON.search(content or "")
    if match:
        try:
            return json.loads(match.group(1), parse_constant=_reject_constant)
        except ValueError:
            pass

    return content


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

class AgentExecutor:
    """Ties registry, cost calculation, persistence and health together."""

    def __init__(
        self,
        registry: ProviderRegistry,
        store: ExecutionStore,
        settings: Optional[GatewaySettings] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._store = store
        self._settings = settings or GatewaySettings()
        self._clock = clock

    async def execute(
        self,
        agent_name: str,
        input_text: str,
        context: AgentExecutionContext,
    ) -> AgentExecutionResult:
        """Run an agent. Returns a failed result instead of raising."""
        start = self._clock()

        try:
            agent, model = await self._load_agent(agent_name)
            messages = await self._build_messages(input_text, context)
            adapter = self._resolve_adapter(model)

            response = await adapter.complete(CompletionRequest(
                model=model.model_name,
                messages=messages,
                system_prompt=agent.system_prompt,
                max_tokens=agent.max_tokens,
                temperature=float(agent.temperature),
                tools=agent.tools or None,
            ))

            usage = response.usage
            breakdown = calculate_cost(usage, model.pricing) if model.pricing else None
            cost = breakdown.total_cost if breakdown else 0.0

            await self._save_exchange(context, agent, model, input_text, response.content, usage)
            await self._append_session_cost(context.session_id, usage, cost)
            await self._update_health(agent.id, usage.total_tokens, failed=False)

            elapsed = (self._clock() - start) * 1000
            logger.info(
                "agent_executed",
                extra={
                    "agent_name": agent.agent_name,
                    "vendor": adapter.vendor.value,
                    "model": response.model,
                    "tokens": usage.total_tokens,
                    "cost_usd": cost,
                    "latency_ms": round(elapsed, 1),
                },
            )

            return AgentExecutionResult(
                success=True,
                output=parse_output(response.content),
                tokens_used=usage.total_tokens,
                cost_usd=cost,
                model=response.model,
                agent_name=agent.agent_name,
                execution_time_ms=elapsed,
                cost_breakdown=breakdown,
            )

        except Exception as e:
            elapsed = (self._clock() - start) * 1000
            error_message = str(e)
            logger.error(
                "agent_execution_failed",
                extra={
                    "agent_name": agent_name,
                    "error": error_message[:200],
                    "latency_ms": round(elapsed, 1),
                },
            )

            await self._record_failure(agent_name, error_message)

            return AgentExecutionResult(
                success=False,
                output=None,
                tokens_used=0,
                cost_usd=0.0,
                model="",
                agent_name=agent_name,
                execution_time_ms=elapsed,
                error=error_message,
            )

    async def ping_agent(self, agent_name: str) -> bool:
        """Execute a throwaway "Test ping" in a temporary session."""
        try:
            session_id = await self._store.create_session(
                user_id=PING_USER, metadata={"test": True}
            )
            try:
                result = await self.execute(
                    agent_name,
                    PING_INPUT,
                    AgentExecutionContext(session_id=session_id, user_id=PING_USER),
                )
            finally:
                await self._store.delete_session(session_id)
            return result.success
        except Exception as e:
            logger.error(
                "agent_ping_failed",
                extra={"agent_name": agent_name, "error": str(e)[:200]},
            )
            return False

    # --- Resolution ---

    async def _load_agent(self, agent_name: str) -> tuple[AgentDefinition, ModelWithProvider]:
        agent = await self._store.find_agent_by_name(agent_name)
        if agent is None:
            raise AgentNotFoundError(agent_name)
        if not agent.is_enabled:
            raise AgentDisabledError(agent_name)
        if not agent.model_id:
            raise ModelNotConfiguredError(
                f'Agent "{agent_name}" has no model configured', agent_name=agent_name
            )

        model = await self._store.find_model_with_pricing(agent.model_id)
        if model is None:
            raise ModelNotConfiguredError(
                f'Model {agent.model_id} not found for agent "{agent_name}"',
                agent_name=agent_name,
            )
        return agent, model

    async def _build_messages(
        self, input_text: str, context: AgentExecutionContext,
    ) -> list[Message]:
        messages: list[Message] = []
        if context.include_history:
            limit = context.max_history_messages or self._settings.executor.default_history_messages
            messages.extend(await self._store.get_recent_messages(context.session_id, limit))
        messages.append(Message(role=Role.USER, content=input_text))
        return messages

    def _resolve_adapter(self, model: ModelWithProvider) -> ProviderAdapter:
        provider = model.provider
        vendor = Vendor.parse(provider.provider_name)
        api_key = resolve_api_key(vendor.value, provider.api_key)

        if vendor.requires_endpoint:
            return self._registry.get_adapter(
                vendor,
                api_key,
                endpoint=provider.base_url or os.environ.get("AZURE_OPENAI_ENDPOINT"),
                deployment=model.model_name,
                api_version=os.environ.get("AZURE_OPENAI_API_VERSION"),
            )
        return self._registry.get_adapter(vendor, api_key, endpoint=provider.base_url)

    # --- Best-Effort Side Effects ---

    async def _save_exchange(
        self,
        context: AgentExecutionContext,
        agent: AgentDefinition,
        model: ModelWithProvider,
        input_text: str,
        output_text: str,
        usage: TokenUsage,
    ) -> None:
        try:
            if model.pricing:
                prompt_cost, completion_cost = split_exchange_cost(usage, model.pricing)
                snapshot = asdict(model.pricing)
            else:
                prompt_cost, completion_cost, snapshot = 0.0, 0.0, {}

            await self._store.save_exchange(ExchangeRecord(
                session_id=context.session_id,
                agent_id=agent.id,
                user_input=input_text,
                assistant_output=output_text,
                usage=usage,
                prompt_cost_usd=prompt_cost,
                completion_cost_usd=completion_cost,
                model=model.model_name,
                pricing_snapshot=snapshot,
                metadata=dict(context.metadata),
            ))
        except Exception as e:
            logger.warning(
                "exchange_save_failed",
                extra={"agent_name": agent.agent_name, "error": str(e)[:200]},
            )

    async def _append_session_cost(self, session_id: str, usage: TokenUsage, cost: float) -> None:
        try:
            await self._store.append_session_cost_delta(session_id, SessionCostDelta(
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cache_creation_tokens=usage.cache_creation_tokens,
                cache_read_tokens=usage.cache_read_tokens,
                cost_usd=cost,
            ))
        except Exception as e:
            logger.warning(
                "session_cost_update_failed",
                extra={"error": str(e)[:200]},
            )

    async def _update_health(
        self, agent_id: str, tokens: int, *, failed: bool, error: Optional[str] = None,
    ) -> None:
        health_settings = self._settings.health
        try:
            await self._store.increment_health_counters(agent_id, tokens, failed, error)
            if failed or health_settings.recompute_on_success:
                record = await self._store.get_or_create_health_record(agent_id)
                status = derive_status(
                    record.failed_requests, record.total_requests, health_settings
                )
                await self._store.update_health_status(agent_id, status)
        except Exception as e:
            logger.warning(
                "agent_health_update_failed",
                extra={"error": str(e)[:200]},
            )

    async def _record_failure(self, agent_name: str, error_message: str) -> None:
        try:
            agent = await self._store.find_agent_by_name(agent_name)
        except Exception as e:
            logger.warning(
                "agent_health_update_failed",
                extra={"agent_name": agent_name, "error": str(e)[:200]},
            )
            return
        if agent is not None:
            await self._update_health(agent.id, 0, failed=True, error=error_message)
