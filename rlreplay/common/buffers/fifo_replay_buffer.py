from __future__ import annotations

from typing import Any

import numpy as np

from .base_buffer import BaseExperienceReplay, Transition, check_capacities
from .selectors import Selector


class FifoRemove1Replay(BaseExperienceReplay):
    """
    Ring-buffer replay for the common FIFO-evict-one configuration.

    When the remover is FIFO with batch size 1, the oldest transition is
    always the next write position, so no free list or insertion ledger is
    needed: ``add`` overwrites slot ``pos`` and advances the cursor.

    Parameters
    ----------
    sampler : Selector
        Sampling policy used by :meth:`sample`.
    min_capacity : int
        Transitions required before sampling.
    max_capacity : int
        Ring size.
    feature_size : int
        Length of state / next-state vectors.
    action_size : int
        Length of action / next-action vectors.
    include_next_action : bool, default=False
        Whether next actions are stored and returned.
    dtype : Any, default=np.float64
        Storage dtype.
    copy_workers : int, default=1
        Thread-pool size for field copies (1 = synchronous).

    Notes
    -----
    - ``pos`` is the next insertion index; ``full`` becomes True once slot
      ``max_capacity - 1`` has been written.
    - Once full, the logical order (oldest -> newest) starts at ``pos``.
    """

    def __init__(
        self,
        sampler: Selector,
        min_capacity: int,
        max_capacity: int,
        feature_size: int,
        action_size: int,
        *,
        include_next_action: bool = False,
        dtype: Any = np.float64,
        copy_workers: int = 1,
    ) -> None:
        check_capacities(min_capacity, max_capacity, sampler.batch_size)

        super().__init__(
            n_slots=max_capacity,
            feature_size=feature_size,
            action_size=action_size,
            sampler=sampler,
            include_next_action=include_next_action,
            dtype=dtype,
            copy_workers=copy_workers,
        )

        self._min_capacity = int(min_capacity)
        self._max_capacity = int(max_capacity)

        self._indices = np.arange(self._max_capacity, dtype=np.int64)
        self.pos = 0
        self.full = False

    # -----------------------------
    # Sizes
    # -----------------------------
    @property
    def capacity(self) -> int:
        return self._max_capacity if self.full else self.pos

    @property
    def max_capacity(self) -> int:
        return self._max_capacity

    @property
    def min_capacity(self) -> int:
        return self._min_capacity

    # -----------------------------
    # Selector view
    # -----------------------------
    def sample_from(self) -> np.ndarray:
        if not self.full:
            return self._indices[: self.pos]
        return self._indices

    def insert_order(self, n: int) -> np.ndarray:
        n = max(int(n), 0)
        if not self.full:
            return self._indices[: self.pos][:n]
        return np.concatenate((self._indices[self.pos :], self._indices[: self.pos]))[:n]

    def empty_slots(self) -> np.ndarray:
        if self.full:
            return self._indices[:0]
        return self._indices[self.pos :]

    # -----------------------------
    # Public API
    # -----------------------------
    def add(self, transition: Transition) -> None:
        """
        Overwrite the oldest slot with ``transition``.

        Raises
        ------
        SizeMismatchError
            If vector lengths do not match; the buffer is left untouched.
        """
        fields = self._validate(transition)

        slot = self.pos
        self._write(slot, fields)

        if not self.full and slot + 1 == self._max_capacity:
            self.full = True
        self.pos = (self.pos + 1) % self._max_capacity
