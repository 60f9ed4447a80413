"""Utility functions and helpers.

This module provides various utilities for the AI Review Agent:
- security: Secret redaction, path confinement, input validation
- git: Safe git subprocess execution
- async_helpers: Error taxonomy, retry, cancellation, batching
- logging: Structured logging with secret sanitization
"""

from ai_review_agent.utils.async_helpers import (
    CancellationToken,
    ReviewAgentError,
    process_in_batches,
)
from ai_review_agent.utils.logging import (
    LogFormat,
    LogLevel,
    bind_context,
    clear_context,
    configure_logging,
    log_context,
)
from ai_review_agent.utils.security import (
    PathOutsideRootError,
    RedactionError,
    SecretRedactor,
    SecurityError,
)

__all__ = [
    # Async
    "CancellationToken",
    "ReviewAgentError",
    "process_in_batches",
    # Logging
    "LogFormat",
    "LogLevel",
    "bind_context",
    "clear_context",
    "configure_logging",
    "log_context",
    # Security
    "PathOutsideRootError",
    "RedactionError",
    "SecretRedactor",
    "SecurityError",
]
