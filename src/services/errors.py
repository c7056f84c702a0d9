"""Exceptions raised by the admission queue."""


class AdmissionError(Exception):
    """Base class for admission queue failures."""

    pass


class AdmissionUnavailableError(AdmissionError):
    """The shared queue store is not configured or cannot be reached.

    Callers must treat this as a failed precondition; the queue never retries
    internally.
    """

    pass


class AdmissionTimeoutError(AdmissionError):
    """Gave up waiting for a turn at the head of the queue."""

    pass
