"""
Resilience Patterns for Deployer.

- Retry (bounded, exponential backoff) for transport failures
"""

from .retry import RetryConfig, RetryExhausted, with_retry_async

__all__ = [
    "RetryConfig",
    "RetryExhausted",
    "with_retry_async",
]
