"""
Exception hierarchy for specoracle.

Parsing and chunking never raise; these cover the external-service edges
(embedding, similarity search) and invalid query requests.
"""

from typing import Any, Dict, Optional


class SpecOracleError(Exception):
    """Base exception for all specoracle errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class EmbeddingError(SpecOracleError):
    """Raised when the embedding service fails after all retries."""

    def __init__(
        self,
        message: str,
        batch_number: Optional[int] = None,
        attempts: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if batch_number is not None:
            details["batch_number"] = batch_number
        if attempts is not None:
            details["attempts"] = attempts
        super().__init__(message, details)


class SearchError(SpecOracleError):
    """Raised when the similarity search primitive fails."""


class QueryValidationError(SpecOracleError):
    """Raised when a query request is malformed."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        details = {"field": field} if field else {}
        super().__init__(message, details)
