"""Structured process logging with correlation fields and redaction."""

from gauntlet_orchestrator.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    configure_structlog,
    correlation_scope,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "LoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "setup_structured_logging",
    "shutdown_logging",
]
