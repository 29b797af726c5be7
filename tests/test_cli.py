"""
Tests for the modelgate CLI commands.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from modelgate.cli import app
from modelgate.llm.types import HealthState, ProviderHealthStatus

runner = CliRunner()

PRICING_YAML = """
input_per_mtok: 3.0
output_per_mtok: 15.0
cache_read_per_mtok: 0.3
context_pricing_tiers:
  - {min_tokens: 0, max_tokens: 200000, input_per_mtok: 3.0}
  - {min_tokens: 200000, max_tokens: null, input_per_mtok: 6.0}
"""


@pytest.fixture
def pricing_file(tmp_path):
    path = tmp_path / "pricing.yaml"
    path.write_text(PRICING_YAML)
    return path


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("modelgate.cli.configure_logging"):
        yield


def _mock_registry(status: ProviderHealthStatus):
    adapter = MagicMock()
    adapter.health_check = AsyncMock(return_value=status)
    registry = MagicMock()
    registry.get_adapter.return_value = adapter
    registry.client_pool.aclose = AsyncMock()
    return registry


class TestCostCommand:

    def test_prints_breakdown(self, pricing_file):
        result = runner.invoke(app, [
            "cost", "--pricing", str(pricing_file), "--input", "250000", "--output", "1000",
        ])
        assert result.exit_code == 0
        assert "Cost Breakdown" in result.output
        assert "$0.900000" in result.output
        assert "$0.915000" in result.output

    def test_reports_cache_savings(self, pricing_file):
        result = runner.invoke(app, [
            "cost", "--pricing", str(pricing_file), "--cache-read", "1000000",
        ])
        assert result.exit_code == 0
        assert "saved $2.700000" in result.output

    def test_missing_pricing_file(self, tmp_path):
        result = runner.invoke(app, ["cost", "--pricing", str(tmp_path / "none.yaml")])
        assert result.exit_code == 1
        assert "Pricing file not found" in result.output


class TestValidateCommand:

    def test_valid_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("client_pool:\n  max_size: 10\n")
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 0
        assert "Configuration valid" in result.output

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("health:\n  degraded_threshold: 0.9\n  down_threshold: 0.5\n")
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 1
        assert "Validation failed" in result.output


class TestHealthCommand:

    def test_unknown_vendor(self):
        result = runner.invoke(app, ["health", "mistral", "--api-key", "k"])
        assert result.exit_code == 1
        assert "Unknown provider" in result.output

    def test_healthy_vendor(self):
        registry = _mock_registry(
            ProviderHealthStatus(status=HealthState.HEALTHY, latency_ms=42.0)
        )
        with patch("modelgate.cli.ProviderRegistry", return_value=registry):
            result = runner.invoke(app, ["health", "openai", "--api-key", "sk-test"])

        assert result.exit_code == 0
        assert "healthy" in result.output
        registry.client_pool.aclose.assert_awaited_once()

    def test_down_vendor_exits_nonzero(self):
        registry = _mock_registry(ProviderHealthStatus(
            status=HealthState.DOWN, latency_ms=5.0, error="401 Unauthorized"
        ))
        with patch("modelgate.cli.ProviderRegistry", return_value=registry):
            result = runner.invoke(app, ["health", "anthropic", "--api-key", "bad"])

        assert result.exit_code == 1
        assert "401 Unauthorized" in result.output
