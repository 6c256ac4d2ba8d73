"""Error taxonomy shared by every service.

Domain code raises one of the ``ServiceError`` subclasses below. Each kind maps
to exactly one HTTP status; the gateway renders them as
``{"code": ..., "message": ..., "details": ...}``.
"""

from collections import Counter
from typing import Any, Optional

from fastapi import status

from libs.common.logging import get_logger

logger = get_logger(__name__)

# In-process count of fatal invariant breaches, surfaced by /health.
invariant_violations: Counter = Counter()


class ServiceError(Exception):
    """Base class for errors that cross the API boundary."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Any] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body

    def __repr__(self) -> str:
        return f"<{type(self).__name__} code={self.code} message={self.message!r}>"


class ValidationFailed(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class Conflict(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class NotEligible(ServiceError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = "not_eligible"


class DependencyUnavailable(ServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "dependency_unavailable"


class DeadlineExceeded(ServiceError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    default_code = "timeout"


class InvariantViolation(ServiceError):
    default_code = "invariant_violation"


def report_invariant_violation(code: str, message: str, **fields: Any) -> None:
    """Log a fatal invariant breach with a distinctive code and count it.

    These never auto-recover; an operator has to look at them.
    """
    invariant_violations[code] += 1
    logger.error(
        message,
        extra={"extra_fields": {"code": code, **fields}},
    )
