from __future__ import annotations


class ExamEngineError(Exception):
    """Base class for errors raised by the exam session and scoring engines."""


class ConflictError(ExamEngineError):
    """An in-progress attempt already exists where a new one was requested."""


class InvalidStateError(ExamEngineError):
    """The operation is not legal in the attempt's current lifecycle state."""


class OutOfRangeError(ExamEngineError, IndexError):
    """A navigation index fell outside the question set."""


class InvalidSelectionError(ExamEngineError, ValueError):
    """A submitted selection does not fit the question it was recorded for."""


class StorageError(ExamEngineError):
    """The persistence collaborator failed.

    Always retryable: the engine guarantees no partial state transition
    happened when this is raised.
    """
