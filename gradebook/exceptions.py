"""
Exceptions raised by the grading and result pipeline.

Callers of mutating operations receive these synchronously. Batch result
generation only ever collects InsufficientDataError per student; anything
else aborts the batch.
"""


class GradebookError(Exception):
    """Base class for all gradebook errors."""


class ValidationError(GradebookError):
    """Bad input from the caller (score bounds, missing or malformed fields)."""

    OUT_OF_RANGE = 'OUT_OF_RANGE'
    INVALID_FIELD = 'INVALID_FIELD'
    REQUIRED = 'REQUIRED'
    NO_GRADABLE_ROWS = 'NO_GRADABLE_ROWS'

    def __init__(self, message, kind=INVALID_FIELD, field=None, errors=None):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.field = field
        self.errors = errors or {}


class ConflictError(GradebookError):
    """An active grade submission already exists for the same sheet."""


class InvalidStateError(GradebookError):
    """A submission transition was attempted from a state that does not allow it."""

    def __init__(self, current_state, attempted_transition):
        super().__init__(
            f"Cannot {attempted_transition} a submission in state {current_state}"
        )
        self.current_state = current_state
        self.attempted_transition = attempted_transition


class InsufficientDataError(GradebookError):
    """A student has no gradable approved subjects for the cohort."""

    def __init__(self, student_id, message=None):
        super().__init__(message or f"No approved, gradable subjects for student {student_id}")
        self.student_id = student_id


class NotFoundError(GradebookError):
    """An entity referenced by id does not exist."""

    def __init__(self, entity, identifier):
        super().__init__(f"{entity} {identifier} not found")
        self.entity = entity
        self.identifier = identifier


class CohortLockTimeout(GradebookError):
    """Another generation run held the cohort lock for too long."""

    def __init__(self, cohort_key, timeout):
        super().__init__(f"Timed out after {timeout}s waiting for cohort {cohort_key}")
        self.cohort_key = cohort_key
        self.timeout = timeout


class ResultGenerationError(GradebookError):
    """A class-wide generation run was aborted; no ranking was performed."""

    def __init__(self, message, student_id=None):
        super().__init__(message)
        self.student_id = student_id


class ResultGenerationTimeout(ResultGenerationError):
    """A class-wide generation run did not settle within its time budget."""
