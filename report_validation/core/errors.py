from __future__ import annotations


class ValidationEngineError(Exception):
    status_code = 500


class NotFoundError(ValidationEngineError):
    status_code = 404


class InvalidStateError(ValidationEngineError):
    status_code = 409


class AuthenticationError(ValidationEngineError):
    status_code = 401


class PermissionDeniedError(ValidationEngineError):
    status_code = 403


class UnsupportedMethodError(ValidationEngineError):
    status_code = 400


class RuleEvaluationError(ValidationEngineError):
    """Raised by a rule evaluator; converted into a failed result, never propagated."""

    status_code = 500


class CollaboratorError(ValidationEngineError):
    status_code = 502
