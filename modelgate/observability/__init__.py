"""
Observability module for modelgate.

Structured logging with per-run context so log lines emitted during a
workflow step can be joined with that run's broadcast events.
"""
