from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional, Union

import numpy as np

from .errors import InvalidConfigurationError
from ..utils.buffer_utils import uniform_indices
from ..utils.common_utils import _normalize_kind


class SelectorKind(str, Enum):
    """Tag identifying a selector strategy; buffer dispatch reads this, not the class."""

    UNIFORM = "uniform"
    FIFO = "fifo"

    @classmethod
    def parse(cls, kind: Union["SelectorKind", str, None]) -> "SelectorKind":
        """
        Resolve a kind given as enum member or config string.

        Strings are matched after :func:`_normalize_kind`, so ``"Fifo"``,
        ``"FIFO"`` and ``" fifo "`` all resolve to :attr:`FIFO`.
        """
        if isinstance(kind, SelectorKind):
            return kind

        nk = _normalize_kind(kind)
        for member in cls:
            if member.value == nk:
                return member

        supported = ", ".join(m.value for m in cls)
        raise InvalidConfigurationError("selector", f"unknown selector kind {kind!r} (supported: {supported})")


# =============================================================================
# Base
# =============================================================================
class Selector(ABC):
    """
    Policy choosing which buffer slots to sample or evict.

    A selector is handed a *view* of the buffer. The view is duck-typed and
    must provide:

    - ``capacity``: number of in-use slots
    - ``sample_from()``: array of the in-use slot indices (any order)
    - ``insert_order(n)``: at most ``n`` in-use slots, oldest first
    - ``pop_oldest()``: drop the oldest entry of the insertion order
      (no-op for buffers whose order is implicit in their layout)

    Parameters
    ----------
    batch_size : int
        Number of slots returned by :meth:`choose` (FIFO returns fewer when
        the buffer holds fewer).

    Notes
    -----
    Some selectors behave differently when used for eviction, so buffers
    call :meth:`register_as_remover` on the selector they evict with.
    """

    kind: SelectorKind

    def __init__(self, batch_size: int) -> None:
        if int(batch_size) <= 0:
            raise InvalidConfigurationError("selector", f"batch_size must be positive, got {batch_size}")
        self._batch_size = int(batch_size)
        self._is_remover = False

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def is_remover(self) -> bool:
        return self._is_remover

    def register_as_remover(self) -> None:
        """Mark this selector as the eviction policy of a buffer."""
        self._is_remover = True

    @abstractmethod
    def choose(self, view: Any) -> np.ndarray:
        """Return the selected slot indices as an int64 array."""
        raise NotImplementedError

    def __repr__(self) -> str:
        role = "remover" if self._is_remover else "sampler"
        return f"{type(self).__name__}(batch_size={self._batch_size}, role={role})"


# =============================================================================
# Uniform
# =============================================================================
class UniformSelector(Selector):
    """
    Select slots uniformly at random, with replacement.

    Parameters
    ----------
    batch_size : int
        Number of draws per call.
    seed : Optional[int]
        Seed for the selector's private ``np.random.Generator``.
    """

    kind = SelectorKind.UNIFORM

    def __init__(self, batch_size: int, seed: Optional[int] = None) -> None:
        super().__init__(batch_size)
        self.rng = np.random.default_rng(seed)

    def choose(self, view: Any) -> np.ndarray:
        keys = np.asarray(view.sample_from(), dtype=np.int64)
        pos = uniform_indices(self.rng, int(view.capacity), self._batch_size)
        return keys[pos]


# =============================================================================
# FIFO
# =============================================================================
class FifoSelector(Selector):
    """
    Select the oldest slots first.

    Returns ``min(batch_size, view.capacity)`` slots in insertion order; a
    partly filled buffer yields a short selection rather than padding.

    When registered as a remover, every returned slot is also popped from
    the front of the buffer's insertion order, so the order only ever lists
    slots that still hold data.
    """

    kind = SelectorKind.FIFO

    def choose(self, view: Any) -> np.ndarray:
        n = min(self._batch_size, int(view.capacity))
        selected = np.array(view.insert_order(n)[:n], dtype=np.int64)

        if self._is_remover:
            for _ in range(selected.shape[0]):
                view.pop_oldest()

        return selected


# =============================================================================
# Factory
# =============================================================================
def create_selector(
    kind: Union[SelectorKind, str],
    batch_size: int,
    seed: Optional[int] = None,
) -> Selector:
    """
    Build a selector from its kind.

    Parameters
    ----------
    kind : SelectorKind or str
        ``"uniform"`` or ``"fifo"`` (case/separator-insensitive).
    batch_size : int
        Number of slots selected per call.
    seed : Optional[int]
        RNG seed (used by uniform selection only).
    """
    sk = SelectorKind.parse(kind)
    if sk is SelectorKind.UNIFORM:
        return UniformSelector(batch_size, seed=seed)
    return FifoSelector(batch_size)
