"""
Error taxonomy shared by services and the HTTP layer.

Every domain error carries the HTTP status it maps to, so endpoints can let
them propagate and the application-level handler renders a uniform body.
"""

from typing import Any, Dict, Optional


class KnowledgeBaseError(Exception):
    """Base class for all knowledge base service errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error_type, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(KnowledgeBaseError):
    """Bad input shape, size or type. Fixable by the client."""

    status_code = 400


class UnsupportedFileType(ValidationError):
    pass


class InvalidChunkConfig(ValidationError):
    pass


class NotFoundError(KnowledgeBaseError):
    """Missing resource, or a resource the caller does not own."""

    status_code = 404


class TierLimitExceeded(KnowledgeBaseError):
    """A subscription tier limit blocks the request."""

    status_code = 403

    def __init__(self, message: str, usage: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"usage": usage or {}, "upgrade_required": True})
        self.usage = usage or {}


class PayloadTooLarge(TierLimitExceeded):
    """Upload bigger than the tenant's document size limit."""


class ConflictError(KnowledgeBaseError):
    status_code = 409


class ExtractionFailed(KnowledgeBaseError):
    """Text could not be extracted from the stored file."""


class EmbeddingProviderError(KnowledgeBaseError):
    """The embedding provider failed or answered with something unusable."""

    status_code = 502

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        transient: bool = False,
    ):
        super().__init__(message, {"provider_status": status} if status else None)
        self.status = status
        self.transient = transient


class EmbeddingModelMismatch(KnowledgeBaseError):
    """Query and stored chunk vectors come from incompatible models."""
