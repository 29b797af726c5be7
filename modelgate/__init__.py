"""
modelgate: one contract for many LLM vendors.

Pooled vendor clients, normalized adapters with rate-limit parsing, tiered
cost calculation, agent execution with health tracking, and sequenced
workflow event fan-out.
"""

__version__ = "0.1.0"
