from modelgate.billing.cost_calculator import (
    CostBreakdown,
    PricingDescriptor,
    PricingTier,
    calculate_cache_savings,
    calculate_cost,
    estimate_cost,
    split_exchange_cost,
)

__all__ = [
    "CostBreakdown",
    "PricingDescriptor",
    "PricingTier",
    "calculate_cache_savings",
    "calculate_cost",
    "estimate_cost",
    "split_exchange_cost",
]
