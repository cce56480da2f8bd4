from __future__ import annotations

from concurrent.futures import Executor
from typing import Callable, Iterator, List, Optional, Sequence

import numpy as np


# =============================================================================
# Sampling utilities
# =============================================================================
def uniform_indices(rng: np.random.Generator, size: int, batch_size: int) -> np.ndarray:
    """
    Uniform random positions in [0, size), drawn with replacement.

    Parameters
    ----------
    rng : np.random.Generator
        Random source owned by the caller (keeps selectors reproducible).
    size : int
        Number of candidates.
    batch_size : int
        Number of draws.

    Returns
    -------
    idx : np.ndarray, shape (batch_size,), dtype int64
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    if size <= 0:
        raise RuntimeError("Cannot sample from an empty buffer.")
    return rng.integers(0, int(size), size=int(batch_size), dtype=np.int64)


def unique_in_order(indices: Sequence[int]) -> List[int]:
    """
    Drop repeated indices, keeping the first occurrence of each.

    Selectors sample with replacement; a remover that picks the same slot
    twice must still free it only once.
    """
    seen = set()
    out: List[int] = []
    for i in indices:
        i = int(i)
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


# =============================================================================
# Insertion-order ledger
# =============================================================================
class InsertionOrderLedger:
    """
    Chronological record of occupied slots, oldest first.

    Implemented as an intrusive doubly-linked list over the fixed slot range
    ``[0, n_slots)``: every slot owns one ``prev``/``next`` pair, so push-back,
    pop-front and unlinking an arbitrary slot are all O(1) and no node objects
    are allocated after construction.

    Parameters
    ----------
    n_slots : int
        Size of the slot range (the buffer's maximum capacity).

    Notes
    -----
    A slot can be linked at most once. Re-inserting a slot that was freed
    moves it to the back, which is what "most recently (re)written" means.
    """

    _NIL = -1

    def __init__(self, n_slots: int) -> None:
        if n_slots <= 0:
            raise ValueError(f"n_slots must be positive, got {n_slots}")

        self.n_slots = int(n_slots)
        self._prev = [self._NIL] * self.n_slots
        self._next = [self._NIL] * self.n_slots
        self._linked = [False] * self.n_slots
        self._head = self._NIL
        self._tail = self._NIL
        self._len = 0

    def __len__(self) -> int:
        return self._len

    def __contains__(self, slot: object) -> bool:
        if not isinstance(slot, (int, np.integer)):
            return False
        return 0 <= int(slot) < self.n_slots and self._linked[int(slot)]

    def __iter__(self) -> Iterator[int]:
        node = self._head
        while node != self._NIL:
            yield node
            node = self._next[node]

    def __repr__(self) -> str:
        return f"InsertionOrderLedger({list(self)})"

    def _check_slot(self, slot: int) -> int:
        slot = int(slot)
        if not (0 <= slot < self.n_slots):
            raise IndexError(f"slot out of range: {slot}")
        return slot

    def push_back(self, slot: int) -> None:
        """Append ``slot`` as the newest entry."""
        slot = self._check_slot(slot)
        if self._linked[slot]:
            raise ValueError(f"slot {slot} is already in the ledger")

        self._prev[slot] = self._tail
        self._next[slot] = self._NIL
        if self._tail == self._NIL:
            self._head = slot
        else:
            self._next[self._tail] = slot
        self._tail = slot
        self._linked[slot] = True
        self._len += 1

    def front(self) -> int:
        """Return the oldest slot without removing it."""
        if self._len == 0:
            raise IndexError("front of an empty ledger")
        return self._head

    def pop_front(self) -> int:
        """Remove and return the oldest slot."""
        slot = self.front()
        self._unlink(slot)
        return slot

    def discard(self, slot: int) -> bool:
        """
        Unlink ``slot`` wherever it sits in the order.

        Returns
        -------
        removed : bool
            False if the slot was not in the ledger.
        """
        slot = self._check_slot(slot)
        if not self._linked[slot]:
            return False
        self._unlink(slot)
        return True

    def _unlink(self, slot: int) -> None:
        p, n = self._prev[slot], self._next[slot]
        if p == self._NIL:
            self._head = n
        else:
            self._next[p] = n
        if n == self._NIL:
            self._tail = p
        else:
            self._prev[n] = p

        self._prev[slot] = self._NIL
        self._next[slot] = self._NIL
        self._linked[slot] = False
        self._len -= 1

    def first(self, n: int) -> np.ndarray:
        """
        Return at most ``n`` slots, oldest first.

        The result has length ``min(n, len(self))``.
        """
        size = min(max(int(n), 0), self._len)
        out = np.empty((size,), dtype=np.int64)
        node = self._head
        for i in range(size):
            out[i] = node
            node = self._next[node]
        return out


# =============================================================================
# Field copies
# =============================================================================
def run_copy_jobs(jobs: Sequence[Callable[[], None]], executor: Optional[Executor] = None) -> None:
    """
    Run independent copy jobs and return once all of them finished.

    Parameters
    ----------
    jobs : Sequence[Callable[[], None]]
        Zero-arg callables, each writing a disjoint memory region.
    executor : Optional[Executor]
        If given, jobs are submitted to it and joined before returning
        (exceptions are re-raised here). If None, jobs run inline.
    """
    if executor is None or len(jobs) <= 1:
        for job in jobs:
            job()
        return

    futures = [executor.submit(job) for job in jobs]
    for fut in futures:
        fut.result()
