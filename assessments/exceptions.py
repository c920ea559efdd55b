"""
Exam Engine Exceptions

This module provides the exception hierarchy raised by the assessment
services. Every exception carries an error kind (``error_code``), the HTTP
status the API layer should answer with and optional structured details,
so callers can branch on the kind instead of parsing messages.

Hierarchy:
- ExamEngineError
  - ValidationError (all violations collected in ``details['violations']``)
  - NotFoundError
  - InvalidStateError
  - OutOfWindowError
  - AttemptLimitExceededError
  - AlreadySubmittedError
  - InvalidScoreError

Author: DSP Development Team
Version: 1.0.0
"""

from typing import Optional, Dict, Any, List

from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler


class ExamEngineError(Exception):
    """
    Base exception class for all exam engine errors.

    Attributes:
        message (str): Human-readable error message
        status_code (int): HTTP status code for the API layer
        error_code (str): Stable error kind identifier
        details (Dict[str, Any]): Additional error details

    Example:
        >>> try:
        ...     grading_service.manual_grade(response_id, question_id, 99)
        ... except ExamEngineError as e:
        ...     logger.warning(f"Grading rejected: {e.error_code} {e.message}")
    """

    status_code = 400
    error_code = "ExamEngineError"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for serialization.

        Returns:
            Dictionary representation of the exception
        """
        return {
            "message": self.message,
            "status_code": self.status_code,
            "error_code": self.error_code,
            "details": self.details,
        }


class ValidationError(ExamEngineError):
    """
    Raised when creation, update or publish constraints are violated.

    All violations found are reported at once, never just the first one.

    Attributes:
        violations (List[str]): Every violated constraint
    """

    status_code = 400
    error_code = "ValidationError"

    def __init__(self, violations: List[str], message: str = "Validation failed") -> None:
        self.violations = list(violations)
        super().__init__(message, details={"violations": self.violations})


class NotFoundError(ExamEngineError):
    """Raised when an exam, response or question does not exist."""

    status_code = 404
    error_code = "NotFound"

    def __init__(self, resource: str, resource_id: Any) -> None:
        self.resource = resource
        self.resource_id = str(resource_id)
        super().__init__(
            f"{resource} '{resource_id}' not found",
            details={"resource": resource, "id": self.resource_id},
        )


class InvalidStateError(ExamEngineError):
    """Raised when an operation is attempted outside its allowed status."""

    status_code = 409
    error_code = "InvalidState"

    def __init__(self, message: str, current_status: Optional[str] = None) -> None:
        details = {}
        if current_status:
            details["current_status"] = str(current_status)
        super().__init__(message, details=details)


class OutOfWindowError(ExamEngineError):
    """Raised when an attempt is started or answered outside the exam window."""

    status_code = 409
    error_code = "OutOfWindow"


class AttemptLimitExceededError(ExamEngineError):
    """Raised when a student has used up all attempts of an exam."""

    status_code = 409
    error_code = "AttemptLimitExceeded"

    def __init__(self, max_attempts: int, attempts_used: int) -> None:
        super().__init__(
            f"Attempt limit reached ({attempts_used}/{max_attempts})",
            details={"max_attempts": max_attempts, "attempts_used": attempts_used},
        )


class AlreadySubmittedError(ExamEngineError):
    """Raised for the loser of a submit race, or any repeated submit."""

    status_code = 409
    error_code = "AlreadySubmitted"

    def __init__(self, response_id: Any, current_status: str) -> None:
        super().__init__(
            f"Response '{response_id}' has already been submitted",
            details={"response_id": str(response_id), "current_status": str(current_status)},
        )


class InvalidScoreError(ExamEngineError):
    """Raised when a manual score lies outside [0, question points]."""

    status_code = 400
    error_code = "InvalidScore"

    def __init__(self, score: Any, max_points: int) -> None:
        super().__init__(
            f"Score must be an integer between 0 and {max_points}, got {score!r}",
            details={"score": score, "max_points": max_points},
        )


def exam_exception_handler(exc, context):
    """
    DRF exception handler rendering engine errors as tagged error payloads.

    Everything that is not an ExamEngineError is left to DRF's default
    handler (authentication, permission and parse errors).
    """
    if isinstance(exc, ExamEngineError):
        return Response({"error": exc.to_dict()}, status=exc.status_code)
    return drf_exception_handler(exc, context)
