"""
Cost Calculator: Token usage x pricing -> per-category USD cost.

Prices are quoted in USD per million tokens. Arithmetic runs in Decimal
at full precision; each category is then rounded half-up to six decimal
places (micro-dollars) and the total is the sum of the rounded categories.

Input tokens may be priced by context-length tiers: a tier covers the
token positions [min_tokens, max_tokens) and bills them at its own rate.
Positions no tier covers are billed at the flat input rate, so every
token is billed exactly once.

Usage:
    from modelgate.billing import PricingDescriptor, calculate_cost

    pricing = PricingDescriptor.from_dict({
        "input_per_mtok": 3.0,
        "output_per_mtok": 15.0,
        "context_pricing_tiers": [
            {"min_tokens": 0, "max_tokens": 200000, "input_per_mtok": 3.0},
            {"min_tokens": 200000, "max_tokens": None, "input_per_mtok": 6.0},
        ],
    })
    breakdown = calculate_cost(usage, pricing)
    print(breakdown.total_cost)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from modelgate.exceptions import ConfigurationError
from modelgate.llm.types import TokenUsage

MILLION = Decimal(1_000_000)
MICRO = Decimal("0.000001")
ZERO = Decimal(0)


# ---------------------------------------------------------------------------
# Pricing Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PricingTier:
    """Input rate for token positions in [min_tokens, max_tokens)."""

    min_tokens: int
    max_tokens: Optional[int]       # None = unbounded
    input_per_mtok: float

    def __post_init__(self) -> None:
        if self.min_tokens < 0:
            raise ConfigurationError(
                f"Pricing tier min_tokens must be >= 0 (got {self.min_tokens})",
                field="context_pricing_tiers",
            )
        if self.max_tokens is not None and self.max_tokens <= self.min_tokens:
            raise ConfigurationError(
                f"Pricing tier max_tokens ({self.max_tokens}) must exceed "
                f"min_tokens ({self.min_tokens})",
                field="context_pricing_tiers",
            )


@dataclass(frozen=True)
class PricingDescriptor:
    """
    USD per million tokens for each category.

    A rate left as None makes that category free. Reasoning tokens are
    billed at the output rate.
    """

    input_per_mtok: Optional[float] = None
    output_per_mtok: Optional[float] = None
    cache_creation_per_mtok: Optional[float] = None
    cache_read_per_mtok: Optional[float] = None
    context_pricing_tiers: tuple[PricingTier, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PricingDescriptor":
        """Build from the persisted snake_case pricing shape."""
        tiers = tuple(
            PricingTier(
                min_tokens=int(t.get("min_tokens", 0)),
                max_tokens=None if t.get("max_tokens") is None else int(t["max_tokens"]),
                input_per_mtok=float(t["input_per_mtok"]),
            )
            for t in data.get("context_pricing_tiers") or []
        )

        def rate(name: str) -> Optional[float]:
            value = data.get(name)
            return None if value is None else float(value)

        return cls(
            input_per_mtok=rate("input_per_mtok"),
            output_per_mtok=rate("output_per_mtok"),
            cache_creation_per_mtok=rate("cache_creation_per_mtok"),
            cache_read_per_mtok=rate("cache_read_per_mtok"),
            context_pricing_tiers=tiers,
        )

    @property
    def sorted_tiers(self) -> list[PricingTier]:
        return sorted(self.context_pricing_tiers, key=lambda t: t.min_tokens)


@dataclass(frozen=True)
class CostBreakdown:
    """Per-category cost in USD, each rounded to six decimal places."""

    input_cost: float = 0.0
    output_cost: float = 0.0
    cache_creation_cost: float = 0.0
    cache_read_cost: float = 0.0
    reasoning_cost: float = 0.0
    total_cost: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "input_cost": self.input_cost,
            "output_cost": self.output_cost,
            "cache_creation_cost": self.cache_creation_cost,
            "cache_read_cost": self.cache_read_cost,
            "reasoning_cost": self.reasoning_cost,
            "total_cost": self.total_cost,
        }


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------

def _dec(value: Optional[float]) -> Decimal:
    return ZERO if value is None else Decimal(str(value))


def _category(tokens: int, rate: Optional[float]) -> Decimal:
    if tokens <= 0 or rate is None:
        return ZERO
    return Decimal(tokens) * _dec(rate) / MILLION


def _round6(value: Decimal) -> Decimal:
    return value.quantize(MICRO, rounding=ROUND_HALF_UP)


def _input_cost(tokens: int, pricing: PricingDescriptor) -> Decimal:
    if tokens <= 0:
        return ZERO
    tiers = pricing.sorted_tiers
    if not tiers:
        return _category(tokens, pricing.input_per_mtok)

    # Positions no tier covers, below the first tier or in a gap, use the flat rate
    cost = ZERO
    cursor = 0
    for tier in tiers:
        start = max(tier.min_tokens, cursor)
        end = tokens if tier.max_tokens is None else min(tokens, tier.max_tokens)
        if end <= start:
            continue
        cost += _category(start - cursor, pricing.input_per_mtok)
        cost += _category(end - start, tier.input_per_mtok)
        cursor = end
    cost += _category(tokens - cursor, pricing.input_per_mtok)
    return cost


def calculate_cost(usage: TokenUsage, pricing: PricingDescriptor) -> CostBreakdown:
    """Cost of one call's token usage."""
    categories = {
        "input_cost": _input_cost(usage.input_tokens, pricing),
        "output_cost": _category(usage.output_tokens, pricing.output_per_mtok),
        "cache_creation_cost": _category(
            usage.cache_creation_tokens, pricing.cache_creation_per_mtok
        ),
        "cache_read_cost": _category(usage.cache_read_tokens, pricing.cache_read_per_mtok),
        "reasoning_cost": _category(usage.reasoning_tokens, pricing.output_per_mtok),
    }
    rounded = {name: _round6(cost) for name, cost in categories.items()}
    total = sum(rounded.values(), ZERO)

    return CostBreakdown(
        **{name: float(cost) for name, cost in rounded.items()},
        total_cost=float(total),
    )


def estimate_cost(
    input_tokens: int, output_tokens: int, pricing: PricingDescriptor,
) -> float:
    """Total cost of a plain input/output call, for previews."""
    usage = TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)
    return calculate_cost(usage, pricing).total_cost


def calculate_cache_savings(cache_read_tokens: int, pricing: PricingDescriptor) -> float:
    """What reading these tokens from cache saved versus the flat input rate."""
    if cache_read_tokens <= 0 or pricing.cache_read_per_mtok is None:
        return 0.0
    without_cache = _category(cache_read_tokens, pricing.input_per_mtok)
    with_cache = _category(cache_read_tokens, pricing.cache_read_per_mtok)
    return float(_round6(without_cache - with_cache))


def split_exchange_cost(
    usage: TokenUsage, pricing: PricingDescriptor,
) -> tuple[float, float]:
    """
    (prompt_cost, completion_cost) for attributing one exchange's cost.

    The prompt side is input plus both cache categories; the completion
    side is output plus reasoning.
    """
    breakdown = calculate_cost(usage, pricing)
    prompt = (
        Decimal(str(breakdown.input_cost))
        + Decimal(str(breakdown.cache_creation_cost))
        + Decimal(str(breakdown.cache_read_cost))
    )
    completion = Decimal(str(breakdown.output_cost)) + Decimal(str(breakdown.reasoning_cost))
    return float(prompt), float(completion)
