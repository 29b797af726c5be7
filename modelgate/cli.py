"""
modelgate CLI.

Price a token usage against a pricing file, check a vendor's health, or
validate a settings file.

    modelgate cost --input 250000 --output 1200 --pricing pricing.yaml
    modelgate health anthropic
    modelgate health azure-openai --endpoint https://x.openai.azure.com --deployment gpt-4o
    modelgate validate config.yaml
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import NoReturn, Optional

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from modelgate.billing import PricingDescriptor, calculate_cache_savings, calculate_cost
from modelgate.config import load_settings, resolve_api_key
from modelgate.exceptions import ConfigurationError
from modelgate.llm.registry import ProviderRegistry
from modelgate.llm.types import HealthState, TokenUsage, Vendor
from modelgate.observability.logging_config import configure_logging

app = typer.Typer(
    name="modelgate",
    help="modelgate - multi-vendor LLM gateway tools",
)
console = Console()


def _config_error(message: str) -> NoReturn:
    console.print(Panel(
        f"[red]{message}[/]",
        title="⚠ Configuration Error",
        border_style="red",
    ))
    raise typer.Exit(code=1)


def _load_pricing(path: Path) -> PricingDescriptor:
    if not path.exists():
        _config_error(f"Pricing file not found: {path}")
    with open(path, "r") as f:
        raw = yaml.safe_load(f)
    if not isinstance(raw, dict):
        _config_error(f"Pricing file must contain a mapping: {path}")
    try:
        return PricingDescriptor.from_dict(raw)
    except (ConfigurationError, KeyError, TypeError, ValueError) as e:
        _config_error(f"Invalid pricing in {path}: {e}")


# =========================================================================
# Commands
# =========================================================================


@app.command()
def cost(
    pricing: Path = typer.Option(..., help="YAML pricing file ($ per million tokens)"),
    input_tokens: int = typer.Option(0, "--input", help="Input tokens"),
    output_tokens: int = typer.Option(0, "--output", help="Output tokens"),
    cache_creation: int = typer.Option(0, help="Cache-creation tokens"),
    cache_read: int = typer.Option(0, help="Cache-read tokens"),
    reasoning: int = typer.Option(0, help="Reasoning/thinking tokens"),
):
    """Price a token usage and print the per-category breakdown."""
    descriptor = _load_pricing(pricing)
    usage = TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_creation_tokens=cache_creation,
        cache_read_tokens=cache_read,
        reasoning_tokens=reasoning,
    )
    breakdown = calculate_cost(usage, descriptor)

    table = Table(title="Cost Breakdown")
    table.add_column("Category", style="cyan")
    table.add_column("Tokens", style="white", justify="right")
    table.add_column("Cost (USD)", style="green", justify="right")

    rows = [
        ("Input", usage.input_tokens, breakdown.input_cost),
        ("Output", usage.output_tokens, breakdown.output_cost),
        ("Cache creation", usage.cache_creation_tokens, breakdown.cache_creation_cost),
        ("Cache read", usage.cache_read_tokens, breakdown.cache_read_cost),
        ("Reasoning", usage.reasoning_tokens, breakdown.reasoning_cost),
    ]
    for label, tokens, amount in rows:
        table.add_row(label, f"{tokens:,}", f"${amount:.6f}")
    table.add_row(
        "[bold]Total[/]", f"[bold]{usage.total_tokens:,}[/]", f"[bold]${breakdown.total_cost:.6f}[/]"
    )
    console.print(table)

    savings = calculate_cache_savings(usage.cache_read_tokens, descriptor)
    if savings > 0:
        console.print(f"[dim]Prompt caching saved ${savings:.6f}[/]")


@app.command()
def health(
    vendor: str = typer.Argument(..., help="Vendor, e.g. 'anthropic' or 'azure-openai'"),
    api_key: Optional[str] = typer.Option(None, help="API key (default: {VENDOR}_API_KEY)"),
    endpoint: Optional[str] = typer.Option(None, help="Endpoint / base URL (Azure)"),
    deployment: Optional[str] = typer.Option(None, help="Deployment name (Azure)"),
    config: Optional[Path] = typer.Option(None, help="Settings YAML file"),
):
    """Run a vendor health check. Exits 1 when the vendor is down."""
    configure_logging(level=logging.WARNING)

    try:
        settings = load_settings(config)
        parsed = Vendor.parse(vendor)
        key = resolve_api_key(parsed.value, api_key)
        registry = ProviderRegistry(settings=settings)
        adapter = registry.get_adapter(
            parsed, key, endpoint=endpoint, deployment=deployment
        )
    except ConfigurationError as e:
        _config_error(str(e))

    async def _run():
        try:
            return await adapter.health_check()
        finally:
            await registry.client_pool.aclose()

    status = asyncio.run(_run())

    style = "green" if status.status is HealthState.HEALTHY else "red"
    body = (
        f"Status:  [{style}]{status.status.value}[/{style}]\n"
        f"Latency: {status.latency_ms:.0f} ms\n"
        f"Checked: {status.checked_at.isoformat()}"
    )
    if status.error:
        body += f"\nError:   [red]{status.error}[/]"
    console.print(Panel(body, title=f"Health: {parsed.value}", border_style=style))

    if status.status is HealthState.DOWN:
        raise typer.Exit(code=1)


@app.command()
def validate(
    config: Path = typer.Argument(..., help="Settings YAML file"),
):
    """Validate a settings file."""
    try:
        settings = load_settings(config, load_env_file=False)
    except ConfigurationError as e:
        console.print(f"[red]Validation failed:[/] {e}")
        raise typer.Exit(1)

    console.print(Panel(
        f"[green]Configuration valid![/]\n\n"
        f"Pool: max {settings.client_pool.max_size} clients/vendor, "
        f"TTL {settings.client_pool.ttl_seconds:.0f}s\n"
        f"Defaults: max_tokens={settings.adapters.default_max_tokens}, "
        f"temperature={settings.adapters.default_temperature}\n"
        f"Health: degraded > {settings.health.degraded_threshold}, "
        f"down > {settings.health.down_threshold}, "
        f"recompute_on_success={settings.health.recompute_on_success}",
        title=f"Config: {config}",
    ))


if __name__ == "__main__":
    app()
