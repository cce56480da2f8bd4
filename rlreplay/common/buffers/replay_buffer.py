from __future__ import annotations

from typing import Any, List

import numpy as np

from .base_buffer import BaseExperienceReplay, Transition, check_capacities
from .errors import EvictionAtFloorError, InvalidConfigurationError
from .selectors import Selector
from ..utils.buffer_utils import InsertionOrderLedger, unique_in_order


class ExperienceReplay(BaseExperienceReplay):
    """
    General experience replay buffer supporting any remover/sampler pair.

    Slots are handed out from a free list and tracked in three structures:

    - ``_empty``: stack of free slot indices
    - ``_in_use`` / ``_pos``: dense array of occupied slots plus the position
      of each slot inside it, giving O(1) swap-removal (the order of the
      remaining entries is not preserved)
    - ``_order``: :class:`InsertionOrderLedger` of occupied slots, oldest
      first, used by FIFO selection

    Parameters
    ----------
    remover : Selector
        Eviction policy, consulted when :meth:`add` finds the buffer full.
        It is registered as a remover on construction.
    sampler : Selector
        Sampling policy used by :meth:`sample`. Must be a different object
        from ``remover``.
    min_capacity : int
        Transitions required before sampling; also the floor below which
        eviction is refused.
    max_capacity : int
        Number of slots.
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
    Eviction semantics
    ------------------
    ``add`` on a full buffer first asks the remover for slots to free. If
    the buffer is at (or below) ``min_capacity`` the eviction fails with
    :class:`EvictionAtFloorError` and the add is aborted with the buffer
    unchanged. A uniform remover draws with replacement; repeated picks are
    freed once.
    """

    def __init__(
        self,
        remover: Selector,
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
        if remover is sampler:
            raise InvalidConfigurationError("new", "remover and sampler must be distinct selector instances")
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

        self.remover = remover
        self.remover.register_as_remover()

        self._min_capacity = int(min_capacity)
        self._max_capacity = int(max_capacity)

        # Reversed so that slot 0 is handed out first.
        self._empty: List[int] = list(range(self._max_capacity - 1, -1, -1))
        self._in_use = np.empty((self._max_capacity,), dtype=np.int64)
        self._n_in_use = 0
        self._pos = [-1] * self._max_capacity
        self._order = InsertionOrderLedger(self._max_capacity)

    # -----------------------------
    # Sizes
    # -----------------------------
    @property
    def capacity(self) -> int:
        return self._n_in_use

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
        return self._in_use[: self._n_in_use]

    def insert_order(self, n: int) -> np.ndarray:
        assert len(self._order) == self._n_in_use, (
            f"insertion order tracks {len(self._order)} slots but {self._n_in_use} are in use"
        )
        return self._order.first(n)

    def empty_slots(self) -> np.ndarray:
        return np.asarray(self._empty[::-1], dtype=np.int64)

    def pop_oldest(self) -> None:
        assert len(self._order) > 0, "insertion order empty while slots are in use"
        self._order.pop_front()

    # -----------------------------
    # Public API
    # -----------------------------
    def add(self, transition: Transition) -> None:
        """
        Copy ``transition`` into a free slot, evicting first if the buffer is full.

        Raises
        ------
        SizeMismatchError
            If vector lengths do not match; the buffer is left untouched.
        EvictionAtFloorError
            If the buffer is full and cannot shrink below ``min_capacity``.
        """
        fields = self._validate(transition)

        if self._n_in_use >= self._max_capacity:
            try:
                self._remove()
            except EvictionAtFloorError as e:
                raise EvictionAtFloorError("add", f"cannot add to buffer: {e}") from e

        assert self._empty, "no free slot after eviction"
        slot = self._empty.pop()
        self._pos[slot] = self._n_in_use
        self._in_use[self._n_in_use] = slot
        self._n_in_use += 1
        self._order.push_back(slot)

        self._write(slot, fields)

    # -----------------------------
    # Internal helpers
    # -----------------------------
    def _remove(self) -> None:
        """Free the slots chosen by the remover."""
        if self._n_in_use <= self._min_capacity:
            raise EvictionAtFloorError("remove", "cannot remove, cache at min capacity")

        for slot in unique_in_order(self.remover.choose(self)):
            self._release(slot)

    def _release(self, slot: int) -> None:
        pos = self._pos[slot]
        assert pos >= 0, f"slot {slot} released while not in use"

        last = int(self._in_use[self._n_in_use - 1])
        self._in_use[pos] = last
        self._pos[last] = pos
        self._n_in_use -= 1
        self._pos[slot] = -1

        # FIFO removers already popped the slot from the order.
        self._order.discard(slot)
        self._empty.append(slot)

    def _assert_consistent(self) -> None:
        """Check slot bookkeeping invariants (debug aid)."""
        used = set(int(s) for s in self.sample_from())
        empty = set(self._empty)
        assert len(used) == self._n_in_use, "duplicate in-use slots"
        assert len(empty) == len(self._empty), "duplicate free slots"
        assert not (used & empty), f"slots both used and free: {sorted(used & empty)}"
        assert used | empty == set(range(self._max_capacity)), "slots lost from bookkeeping"
        assert set(self._order) == used, "insertion order does not match in-use slots"
        for s in used:
            assert int(self._in_use[self._pos[s]]) == s, f"position map stale for slot {s}"
