"""
Error taxonomy for the exam engine.

Every error raised by the services is an ``ExamEngineError``; the HTTP layer maps
``status_code`` straight onto the response. Anything else is an internal failure.
"""


class ExamEngineError(Exception):
    """Base class for errors the caller is allowed to see."""

    status_code = 400
    error_type = "exam_engine_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ExamEngineError):
    """Malformed or out-of-range input."""

    status_code = 400
    error_type = "validation_error"


class NotFoundError(ExamEngineError):
    """Resource absent, or outside the caller's tenant."""

    status_code = 404
    error_type = "not_found"


class ForbiddenError(ExamEngineError):
    """Resource exists in the tenant but belongs to someone else."""

    status_code = 403
    error_type = "forbidden"


class BusinessRuleError(ExamEngineError):
    status_code = 400
    error_type = "business_rule_violation"


class InsufficientPoolError(BusinessRuleError):
    """A topic has fewer active questions than requested."""

    error_type = "insufficient_question_pool"

    def __init__(self, topic_id: int, requested: int, available: int):
        super().__init__(
            f"Not enough active questions in topic {topic_id}: requested {requested}, available {available}"
        )
        self.topic_id = topic_id
        self.requested = requested
        self.available = available


class AuthError(ExamEngineError):
    status_code = 401
    error_type = "auth_error"


class UpstreamError(ExamEngineError):
    """A collaborating service failed or answered with something unusable."""

    status_code = 502
    error_type = "upstream_error"
