from __future__ import annotations

from typing import Any

import numpy as np

from .base_buffer import BaseExperienceReplay, ReplayBatch, Transition
from .errors import EmptyBufferError


class OnlineReplay(BaseExperienceReplay):
    """
    Single-slot buffer for purely online learning (no replay).

    Holds only the most recent transition: every :meth:`add` overwrites it
    and :meth:`sample` returns it as a batch of one. All size accessors are
    constant ``1``.

    Parameters
    ----------
    feature_size : int
        Length of state / next-state vectors.
    action_size : int
        Length of action / next-action vectors.
    include_next_action : bool, default=False
        Whether next actions are stored and returned.
    dtype : Any, default=np.float64
        Storage dtype.
    """

    def __init__(
        self,
        feature_size: int,
        action_size: int,
        *,
        include_next_action: bool = False,
        dtype: Any = np.float64,
    ) -> None:
        super().__init__(
            n_slots=1,
            feature_size=feature_size,
            action_size=action_size,
            sampler=None,
            include_next_action=include_next_action,
            dtype=dtype,
        )
        self._has_data = False

    @property
    def capacity(self) -> int:
        return 1

    @property
    def max_capacity(self) -> int:
        return 1

    @property
    def min_capacity(self) -> int:
        return 1

    @property
    def batch_size(self) -> int:
        return 1

    def sample_from(self) -> np.ndarray:
        return np.arange(1 if self._has_data else 0, dtype=np.int64)

    def insert_order(self, n: int) -> np.ndarray:
        return self.sample_from()[: max(int(n), 0)]

    def empty_slots(self) -> np.ndarray:
        return np.arange(0 if self._has_data else 1, dtype=np.int64)

    def add(self, transition: Transition) -> None:
        """Replace the stored transition with a copy of ``transition``."""
        fields = self._validate(transition)
        self._write(0, fields)
        self._has_data = True

    def sample(self) -> ReplayBatch:
        """
        Return the stored transition.

        Raises
        ------
        EmptyBufferError
            If nothing has been added yet.
        """
        if not self._has_data:
            raise EmptyBufferError("sample", "cache empty")
        return self._gather(np.zeros((1,), dtype=np.int64))
