from __future__ import annotations

from typing import Optional


class ReplayError(Exception):
    """
    Base class for errors raised by experience replay buffers.

    Parameters
    ----------
    op : str
        Name of the buffer operation that failed (e.g. ``"add"``, ``"sample"``).
    reason : str
        Human-readable description of the failure.

    Notes
    -----
    ``str(err)`` renders as ``"<op>: <reason>"`` so that nested failures
    (e.g. an eviction failing inside ``add``) read as a call chain.
    """

    def __init__(self, op: str, reason: str) -> None:
        self.op = str(op)
        self.reason = str(reason)
        super().__init__(f"{self.op}: {self.reason}")


class InvalidConfigurationError(ReplayError, ValueError):
    """Construction-time validation failure."""


class SizeMismatchError(ReplayError, ValueError):
    """Transition vector length differs from the buffer's configured size."""


class EmptyBufferError(ReplayError, RuntimeError):
    """Sampling from a buffer that holds no transitions."""


class InsufficientSamplesError(ReplayError, RuntimeError):
    """Sampling before the buffer reached its minimum capacity."""


class EvictionAtFloorError(ReplayError, RuntimeError):
    """Eviction requested while the buffer is at its minimum capacity."""


def is_empty_buffer(err: Optional[BaseException]) -> bool:
    """Return True if ``err`` reports sampling from an empty buffer."""
    return isinstance(err, EmptyBufferError)


def is_insufficient_samples(err: Optional[BaseException]) -> bool:
    """
    Return True if ``err`` reports that the buffer has too few samples.

    A buffer has too few samples when its current capacity is positive but
    below its minimum capacity. Learners typically skip the update step
    when either this or :func:`is_empty_buffer` holds.
    """
    return isinstance(err, InsufficientSamplesError)
