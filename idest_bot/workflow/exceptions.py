"""Exceptions of the assignment workflow."""


class WorkflowError(Exception):
    """Base exception for attempt workflow errors."""
    pass


class SubmissionValidationError(WorkflowError):
    """Required content is missing; nothing was sent."""
    pass


class SubmissionFailedError(WorkflowError):
    """The submit request failed; the attempt can submit again."""
    pass


class ResultNotFoundError(WorkflowError):
    """Assignment or result could not be loaded for review."""
    pass


class RecordingError(WorkflowError):
    """Microphone unavailable, permission denied or capture failed."""
    pass
