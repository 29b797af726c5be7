"""
Tests for the AgentExecutor orchestration loop.

The registry is mocked to hand out a fake adapter; persistence uses the
in-memory store so exchanges, session totals and health are inspectable.
"""

from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from modelgate.agents import AgentExecutionContext, AgentExecutor, InMemoryExecutionStore, parse_output
from modelgate.agents.health import HealthStatus
from modelgate.agents.store import AgentDefinition, ModelWithProvider, ProviderRecord
from modelgate.billing import PricingDescriptor
from modelgate.exceptions import PersistenceError, ProviderError
from modelgate.llm.types import CompletionResponse, Message, Role, TokenUsage, Vendor

PRICING = PricingDescriptor(input_per_mtok=3.0, output_per_mtok=15.0)


# ===========================================================================
# Mock Factories
# ===========================================================================

def _mock_adapter(content='{"summary": "ok"}', usage=None, vendor=Vendor.ANTHROPIC):
    adapter = MagicMock()
    adapter.vendor = vendor
    adapter.complete = AsyncMock(return_value=CompletionResponse(
        content=content,
        model="claude-sonnet-4-20250514",
        usage=usage or TokenUsage(input_tokens=1_000, output_tokens=200),
    ))
    return adapter


def _mock_registry(adapter):
    registry = MagicMock()
    registry.get_adapter.return_value = adapter
    return registry


def _seed(store, *, provider="anthropic", api_key="sk-test", base_url=None,
          pricing=PRICING, enabled=True, model_id="m1"):
    store.add_model(ModelWithProvider(
        id="m1",
        model_name="claude-sonnet-4-20250514",
        provider=ProviderRecord(
            id="p1", provider_name=provider, api_key=api_key, base_url=base_url
        ),
        pricing=pricing,
    ))
    return store.add_agent(AgentDefinition(
        id="agent-1",
        agent_name="writer",
        system_prompt="You write summaries.",
        model_id=model_id,
        max_tokens=512,
        temperature=0.2,
        is_enabled=enabled,
    ))


@pytest.fixture
def store():
    return InMemoryExecutionStore()


@pytest.fixture
def adapter():
    return _mock_adapter()


@pytest.fixture
def executor(store, adapter):
    return AgentExecutor(_mock_registry(adapter), store)


async def _session(store):
    return await store.create_session(user_id="u1")


# ===========================================================================
# Output parsing
# ===========================================================================

class TestParseOutput:

    def test_whole_body_json(self):
        assert parse_output('{"a": 1}') == {"a": 1}

    def test_fenced_json_block(self):
        assert parse_output('here is json ```json\n{"a":1}\n```') == {"a": 1}

    def test_plain_text(self):
        assert parse_output("plain text") == "plain text"

    def test_invalid_json(self):
        assert parse_output("{invalid") == "{invalid"

    @pytest.mark.parametrize("text", ["NaN", "Infinity", "-Infinity", '{"score": NaN}'])
    def test_non_json_constants_stay_text(self, text):
        assert parse_output(text) == text

    def test_fenced_block_with_nan_stays_text(self):
        text = '```json\n{"score": Infinity}\n```'
        assert parse_output(text) == text

    def test_invalid_fenced_block(self):
        text = "```json\nnot json\n```"
        assert parse_output(text) == text


# ===========================================================================
# Success path
# ===========================================================================

class TestExecuteSuccess:

    @pytest.mark.asyncio
    async def test_returns_parsed_output_and_cost(self, executor, store):
        _seed(store)
        session_id = await _session(store)

        result = await executor.execute(
            "writer", "Summarize", AgentExecutionContext(session_id=session_id)
        )

        assert result.success is True
        assert result.output == {"summary": "ok"}
        assert result.tokens_used == 1_200
        assert result.cost_usd == 0.006        # 1000*3/1M + 200*15/1M
        assert result.model == "claude-sonnet-4-20250514"
        assert result.error is None
        assert result.cost_breakdown.output_cost == 0.003

    @pytest.mark.asyncio
    async def test_request_built_from_agent(self, executor, store, adapter):
        _seed(store)
        session_id = await _session(store)

        await executor.execute("writer", "Summarize", AgentExecutionContext(session_id=session_id))

        request = adapter.complete.call_args.args[0]
        assert request.model == "claude-sonnet-4-20250514"
        assert request.system_prompt == "You write summaries."
        assert request.max_tokens == 512
        assert request.temperature == 0.2
        assert request.tools is None
        assert request.messages == [Message(Role.USER, "Summarize")]

    @pytest.mark.asyncio
    async def test_resolves_adapter_with_provider_credentials(self, store, adapter):
        registry = _mock_registry(adapter)
        _seed(store, base_url="https://proxy.local")
        session_id = await _session(store)

        await AgentExecutor(registry, store).execute(
            "writer", "x", AgentExecutionContext(session_id=session_id)
        )

        registry.get_adapter.assert_called_once_with(
            Vendor.ANTHROPIC, "sk-test", endpoint="https://proxy.local"
        )

    @pytest.mark.asyncio
    async def test_persists_exchange_and_session_cost(self, executor, store):
        _seed(store)
        session_id = await _session(store)

        await executor.execute(
            "writer", "Summarize",
            AgentExecutionContext(session_id=session_id, metadata={"step": "draft"}),
        )

        exchange = store.exchanges[0]
        assert exchange.agent_id == "agent-1"
        assert exchange.user_input == "Summarize"
        assert exchange.prompt_cost_usd == 0.003
        assert exchange.completion_cost_usd == 0.003
        assert exchange.total_cost_usd == 0.006
        assert exchange.pricing_snapshot["input_per_mtok"] == 3.0
        assert exchange.metadata == {"step": "draft"}

        totals = store.sessions[session_id].totals
        assert totals.input_tokens == 1_000
        assert totals.output_tokens == 200
        assert totals.cost_usd == 0.006

    @pytest.mark.asyncio
    async def test_success_counts_without_recompute(self, executor, store):
        _seed(store)
        session_id = await _session(store)
        record = await store.get_or_create_health_record("agent-1")
        record.status = HealthStatus.DEGRADED

        await executor.execute("writer", "x", AgentExecutionContext(session_id=session_id))

        assert record.total_requests == 1
        assert record.total_tokens_used == 1_200
        assert record.status is HealthStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_history_prefixes_messages(self, executor, store, adapter):
        _seed(store)
        session_id = await _session(store)
        store.messages[session_id] = [
            Message(Role.USER, "first"),
            Message(Role.ASSISTANT, "reply"),
            Message(Role.USER, "second"),
        ]

        await executor.execute(
            "writer", "third",
            AgentExecutionContext(session_id=session_id, include_history=True, max_history_messages=2),
        )

        request = adapter.complete.call_args.args[0]
        assert [m.content for m in request.messages] == ["reply", "second", "third"]

    @pytest.mark.asyncio
    async def test_no_pricing_means_zero_cost(self, executor, store):
        _seed(store, pricing=None)
        session_id = await _session(store)

        result = await executor.execute("writer", "x", AgentExecutionContext(session_id=session_id))

        assert result.success is True
        assert result.cost_usd == 0.0
        assert result.cost_breakdown is None

    @pytest.mark.asyncio
    async def test_raw_text_output(self, store):
        executor = AgentExecutor(_mock_registry(_mock_adapter(content="just words")), store)
        _seed(store)
        session_id = await _session(store)

        result = await executor.execute("writer", "x", AgentExecutionContext(session_id=session_id))
        assert result.output == "just words"


# ===========================================================================
# Failure paths
# ===========================================================================

class TestExecuteFailure:

    @pytest.mark.asyncio
    async def test_unknown_agent(self, executor, store):
        result = await executor.execute("ghost", "x", AgentExecutionContext(session_id="s"))
        assert result.success is False
        assert result.error == 'Agent "ghost" not found'
        assert result.tokens_used == 0
        assert result.cost_usd == 0.0
        assert store.health == {}

    @pytest.mark.asyncio
    async def test_disabled_agent_counts_failure(self, executor, store, adapter):
        _seed(store, enabled=False)

        result = await executor.execute("writer", "x", AgentExecutionContext(session_id="s"))

        assert result.success is False
        assert "disabled" in result.error
        adapter.complete.assert_not_called()
        assert store.health["agent-1"].status is HealthStatus.DOWN

    @pytest.mark.asyncio
    async def test_agent_without_model(self, executor, store):
        _seed(store, model_id=None)
        result = await executor.execute("writer", "x", AgentExecutionContext(session_id="s"))
        assert result.success is False
        assert "no model configured" in result.error

    @pytest.mark.asyncio
    async def test_vendor_error_returns_failed_result(self, store, adapter):
        adapter.complete = AsyncMock(side_effect=ProviderError(
            "anthropic API error 529: overloaded", vendor="anthropic", status_code=529
        ))
        executor = AgentExecutor(_mock_registry(adapter), store)
        _seed(store)
        session_id = await _session(store)

        result = await executor.execute("writer", "x", AgentExecutionContext(session_id=session_id))

        assert result.success is False
        assert result.error == "anthropic API error 529: overloaded"
        assert result.model == ""
        record = store.health["agent-1"]
        assert record.failed_requests == 1
        assert record.error_message == "anthropic API error 529: overloaded"
        assert store.exchanges == []

    @pytest.mark.asyncio
    async def test_missing_api_key(self, store):
        _seed(store, api_key=None)
        executor = AgentExecutor(_mock_registry(_mock_adapter()), store)

        with patch.dict(os.environ, {}, clear=True):
            result = await executor.execute("writer", "x", AgentExecutionContext(session_id="s"))

        assert result.success is False
        assert "ANTHROPIC_API_KEY" in result.error

    @pytest.mark.asyncio
    async def test_persistence_failures_do_not_fail_execution(self, executor, store):
        _seed(store)
        # Session never created: the cost delta write raises PersistenceError
        result = await executor.execute("writer", "x", AgentExecutionContext(session_id="missing"))
        assert result.success is True
        assert store.health["agent-1"].total_requests == 1

    @pytest.mark.asyncio
    async def test_health_update_failure_does_not_mask_error(self, store, adapter):
        adapter.complete = AsyncMock(side_effect=ProviderError(
            "bad request", vendor="anthropic", status_code=400
        ))
        _seed(store)
        store.increment_health_counters = AsyncMock(
            side_effect=PersistenceError("db down", operation="increment_health_counters")
        )
        executor = AgentExecutor(_mock_registry(adapter), store)

        result = await executor.execute("writer", "x", AgentExecutionContext(session_id="s"))

        assert result.success is False
        assert result.error == "bad request"


# ===========================================================================
# Azure resolution & ping
# ===========================================================================

class TestAzureResolution:

    @pytest.mark.asyncio
    async def test_endpoint_from_env_and_model_as_deployment(self, store, adapter):
        registry = _mock_registry(adapter)
        _seed(store, provider="azure-openai")
        session_id = await _session(store)
        env = {
            "AZURE_OPENAI_ENDPOINT": "https://acme.openai.azure.com",
            "AZURE_OPENAI_API_VERSION": "2024-10-21",
        }

        with patch.dict(os.environ, env):
            await AgentExecutor(registry, store).execute(
                "writer", "x", AgentExecutionContext(session_id=session_id)
            )

        registry.get_adapter.assert_called_once_with(
            Vendor.AZURE_OPENAI,
            "sk-test",
            endpoint="https://acme.openai.azure.com",
            deployment="claude-sonnet-4-20250514",
            api_version="2024-10-21",
        )


class TestPingAgent:

    @pytest.mark.asyncio
    async def test_ping_uses_temporary_session(self, executor, store, adapter):
        _seed(store)

        assert await executor.ping_agent("writer") is True

        request = adapter.complete.call_args.args[0]
        assert request.messages[-1].content == "Test ping"
        assert store.sessions == {}

    @pytest.mark.asyncio
    async def test_ping_unknown_agent(self, executor, store):
        assert await executor.ping_agent("ghost") is False
        assert store.sessions == {}
