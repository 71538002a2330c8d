"""
Error taxonomy for the indexing and chat pipeline.
"""

from enum import Enum
from typing import Optional


class RentalRAGError(Exception):
    """Base class for all pipeline errors."""
    pass


class ProviderError(RentalRAGError):
    """An embedding or chat-completion call failed or timed out."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        provider: str = "unknown",
        timed_out: bool = False
    ):
        self.message = message
        self.status = status
        self.provider = provider
        self.timed_out = timed_out
        prefix = f"{provider} error"
        if status is not None:
            prefix = f"{prefix}: {status}"
        super().__init__(f"{prefix} - {message}")


class NotFoundError(RentalRAGError):
    """A source record or tenant does not exist (any more)."""
    pass


class ValidationError(RentalRAGError):
    """A record or request is missing a mandatory field."""
    pass


class UnknownSourceKindError(ValidationError):
    """No normalizer is registered for the source kind."""

    def __init__(self, source_kind: str):
        self.source_kind = source_kind
        super().__init__(f"No document loader for source kind: {source_kind}")


class MalformedChartError(RentalRAGError):
    """A chart block was present in a model reply but could not be parsed."""
    pass


class StoreError(RentalRAGError):
    """Database or vector index I/O failed or timed out."""
    pass


class ConfigurationError(RentalRAGError):
    """Settings do not support the requested operation."""
    pass


class ErrorKind(str, Enum):
    """Classification recorded for per-item failures."""
    PROVIDER = "provider"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    STORE = "store"
    UNEXPECTED = "unexpected"


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception onto the error taxonomy."""
    if isinstance(exc, ProviderError):
        return ErrorKind.PROVIDER
    if isinstance(exc, NotFoundError):
        return ErrorKind.NOT_FOUND
    if isinstance(exc, ValidationError):
        return ErrorKind.VALIDATION
    if isinstance(exc, StoreError):
        return ErrorKind.STORE
    return ErrorKind.UNEXPECTED
