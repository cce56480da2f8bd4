"""
buffers
=======

Public exports for the ``buffers`` subpackage.

This subpackage provides the experience replay buffers used by off-policy
learners, together with the selectors that decide which transitions are
sampled and which are evicted:

>>> from rlreplay.common.buffers import build_replay, Transition

Notes
-----
- :class:`~buffers.ExperienceReplay` supports any remover/sampler pair.
- :class:`~buffers.FifoRemove1Replay` is the ring-buffer fast path for
  FIFO eviction of one transition at a time.
- :class:`~buffers.OnlineReplay` holds only the latest transition
  (``min_capacity == max_capacity == 1``).
- :func:`~buffers.build_replay` picks the right variant from a config.
"""

from __future__ import annotations

from .base_buffer import BaseExperienceReplay, ReplayBatch, Transition
from .buffer_builder import ReplayConfig, build_replay, new_replay
from .errors import (
    EmptyBufferError,
    EvictionAtFloorError,
    InsufficientSamplesError,
    InvalidConfigurationError,
    ReplayError,
    SizeMismatchError,
    is_empty_buffer,
    is_insufficient_samples,
)
from .fifo_replay_buffer import FifoRemove1Replay
from .online_replay_buffer import OnlineReplay
from .replay_buffer import ExperienceReplay
from .selectors import FifoSelector, Selector, SelectorKind, UniformSelector, create_selector

__all__ = (
    # records
    "Transition",
    "ReplayBatch",
    # buffers
    "BaseExperienceReplay",
    "ExperienceReplay",
    "FifoRemove1Replay",
    "OnlineReplay",
    # construction
    "ReplayConfig",
    "build_replay",
    "new_replay",
    # selectors
    "Selector",
    "SelectorKind",
    "UniformSelector",
    "FifoSelector",
    "create_selector",
    # errors
    "ReplayError",
    "InvalidConfigurationError",
    "SizeMismatchError",
    "EmptyBufferError",
    "InsufficientSamplesError",
    "EvictionAtFloorError",
    "is_empty_buffer",
    "is_insufficient_samples",
)
