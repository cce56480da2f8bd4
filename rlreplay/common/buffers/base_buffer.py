from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Any, Iterator, Optional, Tuple, Union

import numpy as np
import torch as th

from .errors import EmptyBufferError, InsufficientSamplesError, InvalidConfigurationError, SizeMismatchError
from .selectors import Selector
from ..utils.buffer_utils import run_copy_jobs
from ..utils.common_utils import _to_flat_np, _to_scalar, _to_tensor


# =============================================================================
# Records
# =============================================================================
@dataclass
class Transition:
    """
    One (S, A, R, gamma, S', A') step of agent-environment interaction.

    Vector fields accept anything array-like (lists, ``np.ndarray``,
    ``torch.Tensor``); they are flattened when added to a buffer.
    ``next_action`` is only required by buffers that track it.
    """

    state: Any
    action: Any
    reward: float
    discount: float
    next_state: Any
    next_action: Any = None


@dataclass
class ReplayBatch:
    """
    Flat batch returned by ``sample()``.

    Row ``i`` of the batch occupies ``states[i*F:(i+1)*F]`` (``F`` the
    feature size), and likewise for actions with the action size. Rows appear
    in selection order and may repeat.

    Iterating yields the six fields in order, so a batch unpacks as
    ``s, a, r, gamma, s_next, a_next = buffer.sample()``.
    """

    states: Any
    actions: Any
    rewards: Any
    discounts: Any
    next_states: Any
    next_actions: Any = None

    def __iter__(self) -> Iterator[Any]:
        yield self.states
        yield self.actions
        yield self.rewards
        yield self.discounts
        yield self.next_states
        yield self.next_actions

    @property
    def size(self) -> int:
        """Number of transitions (rows) in the batch."""
        return int(self.rewards.shape[0])

    def to_tensors(self, device: Union[str, th.device] = "cpu", dtype: th.dtype = th.float32) -> "ReplayBatch":
        """Return a copy of this batch with every field as a torch tensor on ``device``."""
        return ReplayBatch(
            states=_to_tensor(self.states, device=device, dtype=dtype),
            actions=_to_tensor(self.actions, device=device, dtype=dtype),
            rewards=_to_tensor(self.rewards, device=device, dtype=dtype),
            discounts=_to_tensor(self.discounts, device=device, dtype=dtype),
            next_states=_to_tensor(self.next_states, device=device, dtype=dtype),
            next_actions=(
                None if self.next_actions is None else _to_tensor(self.next_actions, device=device, dtype=dtype)
            ),
        )


def check_capacities(min_capacity: int, max_capacity: int, sample_size: int) -> None:
    """
    Validate capacity bounds against the sample batch size.

    Checks run in order: ``min_capacity > 0``, ``max_capacity >= 1``,
    ``max_capacity >= sample_size``, ``min_capacity <= max_capacity``.

    Raises
    ------
    InvalidConfigurationError
        On the first failing check.
    """
    if min_capacity <= 0:
        raise InvalidConfigurationError("new", f"min_capacity must be > 0, got {min_capacity}")
    if max_capacity < 1:
        raise InvalidConfigurationError("new", f"max_capacity must be >= 1, got {max_capacity}")
    if max_capacity < sample_size:
        raise InvalidConfigurationError(
            "new", f"cannot have batch size ({sample_size}) > max buffer capacity ({max_capacity})"
        )
    if min_capacity > max_capacity:
        raise InvalidConfigurationError(
            "new", f"min_capacity ({min_capacity}) must not exceed max_capacity ({max_capacity})"
        )


def _copy_into(dest: np.ndarray, slot: int, src: np.ndarray) -> None:
    dest[slot] = src


def _take_into(src: np.ndarray, idx: np.ndarray, out: np.ndarray) -> None:
    np.take(src, idx, axis=0, out=out)


# =============================================================================
# Base: experience replay
# =============================================================================
class BaseExperienceReplay(ABC):
    """
    Abstract base class for fixed-capacity experience replay buffers.

    Owns the slot storage: one row per slot in each of the parallel arrays
    ``states``, ``actions``, ``rewards``, ``discounts``, ``next_states`` and
    (optionally) ``next_actions``. Transitions are copied in on :meth:`add`;
    no caller memory is retained.

    Notes
    -----
    Contract (expected behavior of subclasses):

    - :meth:`add` validates the transition before mutating any state.
    - ``capacity`` is the number of in-use slots, O(1).
    - :meth:`sample_from` / :meth:`insert_order` expose the in-use slots to
      selectors; :meth:`pop_oldest` is the FIFO-remover hook.

    Parameters
    ----------
    n_slots : int
        Number of storage rows to allocate.
    feature_size : int
        Length of state / next-state vectors.
    action_size : int
        Length of action / next-action vectors.
    sampler : Optional[Selector]
        Sampling policy (None for buffers that do not select).
    include_next_action : bool
        If True, next actions are stored and returned.
    dtype : Any, default=np.float64
        NumPy dtype of the storage arrays. float64 keeps round trips exact.
    copy_workers : int, default=1
        If > 1, field copies inside ``add``/``sample`` fan out to a thread
        pool of this size; each call joins its own copies before returning.
    """

    def __init__(
        self,
        n_slots: int,
        feature_size: int,
        action_size: int,
        *,
        sampler: Optional[Selector] = None,
        include_next_action: bool = False,
        dtype: Any = np.float64,
        copy_workers: int = 1,
    ) -> None:
        if n_slots <= 0:
            raise InvalidConfigurationError("new", f"n_slots must be positive, got {n_slots}")
        if feature_size <= 0:
            raise InvalidConfigurationError("new", f"feature_size must be positive, got {feature_size}")
        if action_size <= 0:
            raise InvalidConfigurationError("new", f"action_size must be positive, got {action_size}")
        if copy_workers <= 0:
            raise InvalidConfigurationError("new", f"copy_workers must be >= 1, got {copy_workers}")

        self.n_slots = int(n_slots)
        self.feature_size = int(feature_size)
        self.action_size = int(action_size)
        self.sampler = sampler
        self.include_next_action = bool(include_next_action)
        self.dtype = dtype

        self._executor: Optional[ThreadPoolExecutor] = None
        if copy_workers > 1:
            self._executor = ThreadPoolExecutor(max_workers=int(copy_workers), thread_name_prefix="replay-copy")

        self._init_storage()

    def _init_storage(self) -> None:
        """Allocate the per-slot arrays."""
        self.states = np.zeros((self.n_slots, self.feature_size), dtype=self.dtype)
        self.next_states = np.zeros((self.n_slots, self.feature_size), dtype=self.dtype)
        self.actions = np.zeros((self.n_slots, self.action_size), dtype=self.dtype)
        self.next_actions: Optional[np.ndarray] = (
            np.zeros((self.n_slots, self.action_size), dtype=self.dtype) if self.include_next_action else None
        )

        self.rewards = np.zeros((self.n_slots,), dtype=self.dtype)
        self.discounts = np.zeros((self.n_slots,), dtype=self.dtype)

    # -----------------------------
    # Sizes
    # -----------------------------
    @property
    @abstractmethod
    def capacity(self) -> int:
        """Number of transitions currently available for sampling."""
        raise NotImplementedError

    @property
    @abstractmethod
    def max_capacity(self) -> int:
        """Maximum number of transitions held at any time."""
        raise NotImplementedError

    @property
    @abstractmethod
    def min_capacity(self) -> int:
        """Number of transitions required before sampling is allowed."""
        raise NotImplementedError

    @property
    def batch_size(self) -> int:
        """Number of transitions requested from the sampler per ``sample()``."""
        assert self.sampler is not None
        return self.sampler.batch_size

    def __len__(self) -> int:
        return self.capacity

    # -----------------------------
    # Selector view
    # -----------------------------
    @abstractmethod
    def sample_from(self) -> np.ndarray:
        """In-use slot indices, in no particular order."""
        raise NotImplementedError

    @abstractmethod
    def insert_order(self, n: int) -> np.ndarray:
        """At most ``n`` in-use slot indices, oldest first."""
        raise NotImplementedError

    @abstractmethod
    def empty_slots(self) -> np.ndarray:
        """Slot indices holding no data."""
        raise NotImplementedError

    def pop_oldest(self) -> None:
        """Forget the oldest insertion; buffers with an implicit order ignore it."""
        return

    # -----------------------------
    # Public API
    # -----------------------------
    @abstractmethod
    def add(self, transition: Transition) -> None:
        """Copy one transition into the buffer, evicting if it is full."""
        raise NotImplementedError

    def sample(self) -> ReplayBatch:
        """
        Sample a batch of transitions with the buffer's sampler.

        Returns
        -------
        batch : ReplayBatch
            Flat arrays in selection order. A FIFO sampler on a buffer holding
            fewer than ``batch_size`` transitions returns only ``capacity`` rows.

        Raises
        ------
        EmptyBufferError
            If the buffer holds nothing.
        InsufficientSamplesError
            If ``0 < capacity < min_capacity``.
        """
        self._check_sampleable()
        assert self.sampler is not None
        indices = self.sampler.choose(self)
        return self._gather(indices)

    def close(self) -> None:
        """Shut down the copy thread pool, if any."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # -----------------------------
    # Internal helpers
    # -----------------------------
    def _check_sampleable(self) -> None:
        cap = self.capacity
        if cap == 0:
            raise EmptyBufferError("sample", "cache empty")
        if cap < self.min_capacity:
            raise InsufficientSamplesError(
                "sample", f"minimum capacity not yet reached ({cap} < {self.min_capacity})"
            )

    def _validate(self, t: Transition) -> Tuple[np.ndarray, np.ndarray, float, float, np.ndarray, Optional[np.ndarray]]:
        """
        Convert and check a transition without touching buffer state.

        Raises
        ------
        SizeMismatchError
            If any vector length differs from the configured sizes, or a
            required next action is missing.
        """
        state = _to_flat_np(t.state, dtype=self.dtype)
        next_state = _to_flat_np(t.next_state, dtype=self.dtype)
        action = _to_flat_np(t.action, dtype=self.dtype)

        if state.shape[0] != self.feature_size or next_state.shape[0] != self.feature_size:
            raise SizeMismatchError(
                "add",
                f"invalid feature size: want {self.feature_size}, "
                f"have state={state.shape[0]} next_state={next_state.shape[0]}",
            )
        if action.shape[0] != self.action_size:
            raise SizeMismatchError("add", f"invalid action size: want {self.action_size}, have {action.shape[0]}")

        next_action: Optional[np.ndarray] = None
        if t.next_action is not None:
            next_action = _to_flat_np(t.next_action, dtype=self.dtype)
            if next_action.shape[0] != self.action_size:
                raise SizeMismatchError(
                    "add", f"invalid next action size: want {self.action_size}, have {next_action.shape[0]}"
                )
        elif self.include_next_action:
            raise SizeMismatchError("add", "next_action is required when include_next_action=True")

        try:
            reward = _to_scalar(t.reward)
            discount = _to_scalar(t.discount)
        except ValueError as e:
            raise SizeMismatchError("add", f"reward and discount must be scalars: {e}") from e

        return state, action, reward, discount, next_state, next_action

    def _write(
        self,
        slot: int,
        fields: Tuple[np.ndarray, np.ndarray, float, float, np.ndarray, Optional[np.ndarray]],
    ) -> None:
        """Copy validated fields into ``slot``."""
        state, action, reward, discount, next_state, next_action = fields

        jobs = [
            partial(_copy_into, self.states, slot, state),
            partial(_copy_into, self.next_states, slot, next_state),
            partial(_copy_into, self.actions, slot, action),
        ]
        if self.include_next_action:
            assert self.next_actions is not None and next_action is not None
            jobs.append(partial(_copy_into, self.next_actions, slot, next_action))
        run_copy_jobs(jobs, self._executor)

        self.rewards[slot] = reward
        self.discounts[slot] = discount

    def _gather(self, indices: np.ndarray) -> ReplayBatch:
        """Copy the rows at ``indices`` into fresh contiguous batch arrays."""
        idx = np.asarray(indices, dtype=np.int64)
        b = int(idx.shape[0])

        states = np.empty((b, self.feature_size), dtype=self.dtype)
        next_states = np.empty((b, self.feature_size), dtype=self.dtype)
        actions = np.empty((b, self.action_size), dtype=self.dtype)
        next_actions = np.empty((b, self.action_size), dtype=self.dtype) if self.include_next_action else None

        jobs = [
            partial(_take_into, self.states, idx, states),
            partial(_take_into, self.next_states, idx, next_states),
            partial(_take_into, self.actions, idx, actions),
        ]
        if next_actions is not None:
            assert self.next_actions is not None
            jobs.append(partial(_take_into, self.next_actions, idx, next_actions))
        run_copy_jobs(jobs, self._executor)

        return ReplayBatch(
            states=states.reshape(-1),
            actions=actions.reshape(-1),
            rewards=self.rewards[idx],
            discounts=self.discounts[idx],
            next_states=next_states.reshape(-1),
            next_actions=None if next_actions is None else next_actions.reshape(-1),
        )

    # -----------------------------
    # Introspection
    # -----------------------------
    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(capacity={self.capacity}, min_capacity={self.min_capacity}, "
            f"max_capacity={self.max_capacity}, batch_size={self.batch_size}, "
            f"feature_size={self.feature_size}, action_size={self.action_size})"
        )

    def describe(self) -> str:
        """Multi-line dump of slot bookkeeping and storage contents."""
        lines = [
            f"Indices Available: {self.empty_slots().tolist()}",
            f"Indices Used: {np.asarray(self.sample_from()).tolist()}",
            f"States: {self.states.tolist()}",
            f"Actions: {self.actions.tolist()}",
            f"Rewards: {self.rewards.tolist()}",
            f"Discounts: {self.discounts.tolist()}",
            f"Next States: {self.next_states.tolist()}",
            f"Next Actions: {None if self.next_actions is None else self.next_actions.tolist()}",
        ]
        return "\n".join(lines)
