"""
Interview engine error taxonomy.

Every failure is scoped to one session and reported to the caller, which
decides whether to retry or abandon. ``status_code`` and ``code`` are what the
HTTP layer renders; the core itself never looks at them.
"""


class InterviewError(Exception):
    status_code = 400
    code = "interview_error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class QuestionUnavailable(InterviewError):
    """No question exists for the requested category."""
    status_code = 404
    code = "question_unavailable"


class NotReady(InterviewError):
    """Operation called in a state that does not allow it."""
    status_code = 409
    code = "not_ready"


class EmptyInput(InterviewError):
    status_code = 422
    code = "empty_input"


class InsufficientInput(InterviewError):
    """Session ended without a single candidate turn; nothing was evaluated."""
    status_code = 422
    code = "insufficient_input"


class GenerationFailure(InterviewError):
    """The text-generation service failed or returned nothing usable."""
    status_code = 502
    code = "generation_failure"


class EvaluationContractViolation(InterviewError):
    """The grading response did not satisfy the declared schema."""
    status_code = 502
    code = "evaluation_contract_violation"


class StoreUnavailable(InterviewError):
    status_code = 503
    code = "store_unavailable"


class SessionAlreadyActive(InterviewError):
    status_code = 409
    code = "session_already_active"


class SessionNotFound(InterviewError):
    status_code = 404
    code = "session_not_found"
