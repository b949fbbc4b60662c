"""Backend client for the usage endpoints."""

from .client import UsageApiClient, UsageApiError, is_retryable_error

__all__ = ["UsageApiClient", "UsageApiError", "is_retryable_error"]
