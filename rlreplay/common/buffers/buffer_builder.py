from __future__ import annotations

import sys
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional, Union

import numpy as np

from .base_buffer import BaseExperienceReplay, check_capacities
from .errors import InvalidConfigurationError
from .fifo_replay_buffer import FifoRemove1Replay
from .online_replay_buffer import OnlineReplay
from .replay_buffer import ExperienceReplay
from .selectors import Selector, SelectorKind, create_selector


def _warn(message: str) -> None:
    """Best-effort warning emitter (stderr)."""
    print(f"[ExperienceReplay][WARN] {message}", file=sys.stderr)


# =============================================================================
# Factory
# =============================================================================
def new_replay(
    remover: Selector,
    sampler: Selector,
    min_capacity: int,
    max_capacity: int,
    feature_size: int,
    action_size: int,
    include_next_action: bool = False,
    *,
    dtype: Any = np.float64,
    copy_workers: int = 1,
) -> BaseExperienceReplay:
    """
    Construct the replay buffer best suited to the given selectors.

    Parameters
    ----------
    remover : Selector
        Eviction policy.
    sampler : Selector
        Sampling policy. Must not be the same object as ``remover``.
    min_capacity : int
        Transitions required before sampling (> 0).
    max_capacity : int
        Maximum transitions held (>= 1, >= ``sampler.batch_size``,
        >= ``min_capacity``).
    feature_size : int
        Length of state vectors. Pixel observations should be flattened.
    action_size : int
        Length of action vectors.
    include_next_action : bool, default=False
        Whether the next action of the SARSA tuple is stored and returned.
    dtype : Any, default=np.float64
        Storage dtype.
    copy_workers : int, default=1
        Thread-pool size for field copies (1 = synchronous).

    Returns
    -------
    BaseExperienceReplay
        Dispatch, in priority order:

        1. ``min_capacity == max_capacity == 1`` -> :class:`OnlineReplay`
           (selector batch sizes > 1 are ignored with a warning)
        2. FIFO remover with batch size 1 -> :class:`FifoRemove1Replay`
        3. otherwise -> :class:`ExperienceReplay`

    Raises
    ------
    InvalidConfigurationError
        If the capacity bounds are invalid or one selector fills both roles.
    """
    check_capacities(min_capacity, max_capacity, sampler.batch_size)
    if remover is sampler:
        raise InvalidConfigurationError("new", "remover and sampler must be distinct selector instances")

    if min_capacity == 1 and max_capacity == 1:
        if sampler.batch_size > 1 or remover.batch_size > 1:
            _warn("new: using online sampler, ignoring batch size > 1")
        return OnlineReplay(
            feature_size,
            action_size,
            include_next_action=include_next_action,
            dtype=dtype,
        )

    if remover.kind is SelectorKind.FIFO and remover.batch_size == 1:
        return FifoRemove1Replay(
            sampler,
            min_capacity,
            max_capacity,
            feature_size,
            action_size,
            include_next_action=include_next_action,
            dtype=dtype,
            copy_workers=copy_workers,
        )

    return ExperienceReplay(
        remover,
        sampler,
        min_capacity,
        max_capacity,
        feature_size,
        action_size,
        include_next_action=include_next_action,
        dtype=dtype,
        copy_workers=copy_workers,
    )


def build_replay(
    *,
    remove_method: Union[SelectorKind, str],
    sample_method: Union[SelectorKind, str],
    min_capacity: int,
    max_capacity: int,
    feature_size: int,
    action_size: int,
    remove_size: int = 1,
    sample_size: int = 1,
    seed: Optional[int] = None,
    include_next_action: bool = False,
    dtype: Any = np.float64,
    copy_workers: int = 1,
) -> BaseExperienceReplay:
    """
    Construct a replay buffer from selector kinds and sizes.

    Capacity bounds are validated before any selector is built; both
    selectors share ``seed``. See :func:`new_replay` for the dispatch rules.

    Examples
    --------
    >>> buf = build_replay(remove_method="fifo", sample_method="uniform",
    ...                    min_capacity=32, max_capacity=10_000,
    ...                    feature_size=4, action_size=1, sample_size=32, seed=0)
    >>> type(buf).__name__
    'FifoRemove1Replay'
    """
    check_capacities(min_capacity, max_capacity, sample_size)

    remover = create_selector(remove_method, remove_size, seed=seed)
    sampler = create_selector(sample_method, sample_size, seed=seed)

    return new_replay(
        remover,
        sampler,
        min_capacity,
        max_capacity,
        feature_size,
        action_size,
        include_next_action,
        dtype=dtype,
        copy_workers=copy_workers,
    )


# =============================================================================
# Config
# =============================================================================
_CONFIG_KEY_ALIASES = {
    "RemoveMethod": "remove_method",
    "SampleMethod": "sample_method",
    "RemoveSize": "remove_size",
    "SampleSize": "sample_size",
    "MaxReplayCapacity": "max_replay_capacity",
    "MinReplayCapacity": "min_replay_capacity",
}


@dataclass
class ReplayConfig:
    """
    Declarative replay configuration, as loaded from an agent config.

    ``from_dict`` accepts snake_case keys or the CamelCase keys used by
    JSON agent configs (``RemoveMethod``, ``MaxReplayCapacity``, ...).
    """

    remove_method: Union[SelectorKind, str] = SelectorKind.FIFO
    sample_method: Union[SelectorKind, str] = SelectorKind.UNIFORM
    remove_size: int = 1
    sample_size: int = 1
    max_replay_capacity: int = 1
    min_replay_capacity: int = 1

    def __post_init__(self) -> None:
        self.remove_method = SelectorKind.parse(self.remove_method)
        self.sample_method = SelectorKind.parse(self.sample_method)

    @property
    def batch_size(self) -> int:
        """Size of batches sampled from the configured buffer."""
        return int(self.sample_size)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ReplayConfig":
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for k, v in d.items():
            name = _CONFIG_KEY_ALIASES.get(k, k)
            if name not in known:
                raise InvalidConfigurationError("config", f"unknown replay config key {k!r}")
            kwargs[name] = v
        return cls(**kwargs)

    def create(
        self,
        feature_size: int,
        action_size: int,
        seed: Optional[int] = None,
        include_next_action: bool = False,
        **kwargs: Any,
    ) -> BaseExperienceReplay:
        """Build the buffer described by this config (extra kwargs go to :func:`build_replay`)."""
        return build_replay(
            remove_method=self.remove_method,
            sample_method=self.sample_method,
            min_capacity=int(self.min_replay_capacity),
            max_capacity=int(self.max_replay_capacity),
            feature_size=feature_size,
            action_size=action_size,
            remove_size=int(self.remove_size),
            sample_size=int(self.sample_size),
            seed=seed,
            include_next_action=include_next_action,
            **kwargs,
        )
