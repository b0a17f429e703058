"""
Error taxonomy for the ingestion and validation pipeline.

Propagation rules:
- TransientProviderError: retried with backoff, surfaced per item when exhausted
- PermanentProviderError: logged and skipped, never retried
- ResolutionFailure: entity or game could not be matched, never fatal
- IntegrityViolation: record rejected, surfaced to the caller for manual review
- BudgetExceeded: caller falls back to cached data with an explicit marker
"""
from datetime import datetime
from typing import Optional


class SlateSyncError(Exception):
    """Base class for all pipeline errors."""


class ProviderError(SlateSyncError):
    """An upstream provider call failed."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Network failure, timeout, 429 or 5xx. Safe to retry."""


class CircuitOpenError(TransientProviderError):
    """The provider's circuit breaker is open; the call was not attempted."""


class PermanentProviderError(ProviderError):
    """4xx response or malformed payload. Retrying will not help."""


class ResolutionFailure(SlateSyncError):
    """A team or game reference could not be resolved to a canonical entity."""


class IntegrityViolation(SlateSyncError):
    """An incoming record conflicts with an existing canonical identity."""

    def __init__(self, message: str, entity: str = "", canonical_id: Optional[str] = None):
        super().__init__(message)
        self.entity = entity
        self.canonical_id = canonical_id

    def to_dict(self) -> dict:
        return {"entity": self.entity, "canonical_id": self.canonical_id, "message": str(self)}


class BudgetExceeded(SlateSyncError):
    """A rate budget ceiling blocks the outbound call."""

    def __init__(self, reason: str, retry_after: Optional[datetime] = None):
        message = f"Rate budget exceeded: {reason}"
        if retry_after is not None:
            message += f" (retry after {retry_after.isoformat()})"
        super().__init__(message)
        self.reason = reason
        self.retry_after = retry_after


class InvalidStatusTransition(SlateSyncError):
    """A prediction lifecycle transition that is not allowed."""
