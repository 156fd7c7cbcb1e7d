"""
Shared error handling for the Skill Matrix services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from .logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ClassificationServiceError(Exception):
    """Base exception for Skill Matrix services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(ClassificationServiceError):
    """Missing or unknown acting user."""

    status_code = 401

    def __init__(self, message: str = "User not authenticated", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class ValidationError(ClassificationServiceError):
    """Validation-related errors."""

    status_code = 422

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class RuleNotFoundError(ClassificationServiceError):
    """Requested classification rule does not exist."""

    status_code = 404

    def __init__(self, rule_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("RULE_NOT_FOUND", f"Rule {rule_id} not found", details)
        self.rule_id = rule_id


class PersistenceError(ClassificationServiceError):
    """Rule store errors."""

    status_code = 503

    def __init__(self, message: str = "Rule store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERSISTENCE_ERROR", message, details)


class CacheError(ClassificationServiceError):
    """Result cache errors."""

    status_code = 503

    def __init__(self, message: str = "Cache error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_ERROR", message, details)
