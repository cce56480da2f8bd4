from __future__ import annotations

import io
from contextlib import redirect_stderr
from typing import Any, Callable, List, Tuple

import numpy as np

from rlreplay.common.testers.test_utils import (
    run_tests,
    assert_eq,
    assert_true,
    assert_in,
    assert_raises,
)

from rlreplay.common.buffers.base_buffer import Transition
from rlreplay.common.buffers.buffer_builder import ReplayConfig, build_replay, new_replay
from rlreplay.common.buffers.errors import (
    EmptyBufferError,
    InsufficientSamplesError,
    InvalidConfigurationError,
    ReplayError,
    is_empty_buffer,
    is_insufficient_samples,
)
from rlreplay.common.buffers.fifo_replay_buffer import FifoRemove1Replay
from rlreplay.common.buffers.online_replay_buffer import OnlineReplay
from rlreplay.common.buffers.replay_buffer import ExperienceReplay
from rlreplay.common.buffers.selectors import FifoSelector, SelectorKind, UniformSelector


def _build(**overrides: Any):
    kwargs = dict(
        remove_method="fifo",
        sample_method="uniform",
        min_capacity=1,
        max_capacity=8,
        feature_size=4,
        action_size=1,
        remove_size=1,
        sample_size=2,
        seed=0,
    )
    kwargs.update(overrides)
    return build_replay(**kwargs)


# =============================================================================
# Tests: validation
# =============================================================================
def test_min_capacity_must_be_positive():
    err = assert_raises(InvalidConfigurationError, lambda: _build(min_capacity=0))
    assert_eq(err.op, "new")
    assert_in("min_capacity", err.reason)


def test_max_capacity_must_be_at_least_one():
    err = assert_raises(InvalidConfigurationError, lambda: _build(min_capacity=1, max_capacity=0, sample_size=1))
    assert_in("max_capacity", err.reason)


def test_batch_size_above_max_capacity():
    err = assert_raises(InvalidConfigurationError, lambda: _build(max_capacity=4, sample_size=5))
    assert_in("cannot have batch size (5) > max buffer capacity (4)", str(err))


def test_min_capacity_above_max_capacity():
    err = assert_raises(InvalidConfigurationError, lambda: _build(min_capacity=9, max_capacity=8))
    assert_in("must not exceed", err.reason)


def test_validation_order_reports_first_failure():
    # All four checks fail; the min_capacity check wins.
    err = assert_raises(InvalidConfigurationError, lambda: _build(min_capacity=0, max_capacity=0, sample_size=3))
    assert_in("min_capacity must be > 0", err.reason)

    # max >= 1 is checked before the batch-size bound.
    err = assert_raises(InvalidConfigurationError, lambda: _build(min_capacity=2, max_capacity=0, sample_size=3))
    assert_in("max_capacity must be >= 1", err.reason)


def test_configuration_errors_are_value_errors():
    assert_raises(ValueError, lambda: _build(min_capacity=-1))
    assert_raises(ReplayError, lambda: _build(max_capacity=1, sample_size=2))


def test_unknown_kind_and_bad_sizes():
    assert_raises(InvalidConfigurationError, lambda: _build(remove_method="lifo"))
    assert_raises(InvalidConfigurationError, lambda: _build(sample_method="prioritized"))
    assert_raises(InvalidConfigurationError, lambda: _build(remove_size=0))
    assert_raises(InvalidConfigurationError, lambda: _build(feature_size=0))


def test_same_selector_for_both_roles_rejected():
    sel = FifoSelector(1)
    assert_raises(InvalidConfigurationError, lambda: new_replay(sel, sel, 1, 4, 2, 1))
    assert_raises(InvalidConfigurationError, lambda: ExperienceReplay(sel, sel, 1, 4, 2, 1))
    assert_true(sel.is_remover is False)


# =============================================================================
# Tests: dispatch
# =============================================================================
def test_dispatch_online_for_unit_capacity():
    buf = _build(min_capacity=1, max_capacity=1, sample_size=1)
    assert_true(isinstance(buf, OnlineReplay))


def test_dispatch_online_warns_on_large_batch():
    err = io.StringIO()
    with redirect_stderr(err):
        buf = new_replay(UniformSelector(3, seed=0), FifoSelector(1), 1, 1, 4, 1)
    assert_true(isinstance(buf, OnlineReplay))
    assert_in("[ExperienceReplay][WARN]", err.getvalue())
    assert_in("using online sampler, ignoring batch size > 1", err.getvalue())

    quiet = io.StringIO()
    with redirect_stderr(quiet):
        new_replay(FifoSelector(1), FifoSelector(1), 1, 1, 4, 1)
    assert_eq(quiet.getvalue(), "")


def test_dispatch_ring_for_fifo_remove_one():
    for sample_method in ("uniform", "fifo", SelectorKind.UNIFORM):
        buf = _build(remove_method="Fifo", sample_method=sample_method, min_capacity=2, max_capacity=8)
        assert_true(isinstance(buf, FifoRemove1Replay), f"{sample_method}: got {type(buf).__name__}")


def test_dispatch_general_otherwise():
    buf = _build(remove_method="uniform", remove_size=1)
    assert_true(isinstance(buf, ExperienceReplay))
    assert_true(buf.remover.is_remover)

    buf = _build(remove_method="fifo", remove_size=2)
    assert_true(isinstance(buf, ExperienceReplay))
    assert_true(buf.remover.kind is SelectorKind.FIFO)


def test_online_precedes_ring_dispatch():
    # FIFO-remove-1 at unit capacity is still online.
    buf = _build(remove_method="fifo", remove_size=1, min_capacity=1, max_capacity=1, sample_size=1)
    assert_true(isinstance(buf, OnlineReplay))


def test_built_buffer_carries_sizes():
    buf = _build(min_capacity=3, max_capacity=16, sample_size=4, feature_size=5, action_size=2)
    assert_eq((buf.min_capacity, buf.max_capacity, buf.batch_size), (3, 16, 4))
    assert_eq((buf.feature_size, buf.action_size), (5, 2))
    assert_eq(buf.capacity, 0)
    assert_eq(buf.states.shape, (16, 5))
    assert_eq(buf.states.dtype, np.float64)


def test_build_with_float32_and_workers():
    buf = _build(dtype=np.float32, copy_workers=2)
    try:
        assert_eq(buf.actions.dtype, np.float32)
        assert_true(buf._executor is not None)
    finally:
        buf.close()
    assert_true(buf._executor is None)


# =============================================================================
# Tests: config
# =============================================================================
def test_config_from_dict_camel_case():
    cfg = ReplayConfig.from_dict(
        {
            "RemoveMethod": "Fifo",
            "SampleMethod": "Uniform",
            "RemoveSize": 1,
            "SampleSize": 32,
            "MaxReplayCapacity": 1000,
            "MinReplayCapacity": 64,
        }
    )
    assert_true(cfg.remove_method is SelectorKind.FIFO)
    assert_true(cfg.sample_method is SelectorKind.UNIFORM)
    assert_eq(cfg.batch_size, 32)

    buf = cfg.create(feature_size=4, action_size=2, seed=1)
    assert_true(isinstance(buf, FifoRemove1Replay))
    assert_eq((buf.min_capacity, buf.max_capacity, buf.batch_size), (64, 1000, 32))


def test_config_snake_case_and_defaults():
    cfg = ReplayConfig.from_dict({"max_replay_capacity": 10, "sample_method": "fifo", "sample_size": 2})
    assert_true(cfg.remove_method is SelectorKind.FIFO)
    assert_eq(cfg.min_replay_capacity, 1)

    buf = cfg.create(3, 1, include_next_action=True)
    assert_true(buf.include_next_action)
    assert_true(buf.sampler.kind is SelectorKind.FIFO)


def test_config_rejects_unknown_key_and_kind():
    err = assert_raises(InvalidConfigurationError, lambda: ReplayConfig.from_dict({"Capacity": 10}))
    assert_eq(err.op, "config")
    assert_raises(InvalidConfigurationError, lambda: ReplayConfig(remove_method="random"))


def test_config_invalid_capacities_fail_on_create():
    cfg = ReplayConfig(max_replay_capacity=4, min_replay_capacity=5)
    assert_raises(InvalidConfigurationError, lambda: cfg.create(2, 1))


# =============================================================================
# Tests: error predicates
# =============================================================================
def test_error_predicates_classify_sample_failures():
    buf = _build(min_capacity=3, max_capacity=8, sample_size=2)

    e = assert_raises(ReplayError, buf.sample)
    assert_true(is_empty_buffer(e))
    assert_true(not is_insufficient_samples(e))
    assert_true(isinstance(e, EmptyBufferError))

    buf.add(Transition(np.zeros(4), [0.0], 0.0, 1.0, np.zeros(4)))
    e = assert_raises(ReplayError, buf.sample)
    assert_true(is_insufficient_samples(e))
    assert_true(not is_empty_buffer(e))
    assert_true(isinstance(e, InsufficientSamplesError))
    assert_in("sample: ", str(e))

    assert_true(not is_empty_buffer(None))
    assert_true(not is_insufficient_samples(ValueError("x")))


# =============================================================================
# Simple runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    # validation
    ("min_capacity_positive", test_min_capacity_must_be_positive),
    ("max_capacity_at_least_one", test_max_capacity_must_be_at_least_one),
    ("batch_size_above_max", test_batch_size_above_max_capacity),
    ("min_above_max", test_min_capacity_above_max_capacity),
    ("validation_order", test_validation_order_reports_first_failure),
    ("config_errors_are_value_errors", test_configuration_errors_are_value_errors),
    ("unknown_kind_and_bad_sizes", test_unknown_kind_and_bad_sizes),
    ("same_selector_rejected", test_same_selector_for_both_roles_rejected),

    # dispatch
    ("dispatch_online", test_dispatch_online_for_unit_capacity),
    ("dispatch_online_warns", test_dispatch_online_warns_on_large_batch),
    ("dispatch_ring", test_dispatch_ring_for_fifo_remove_one),
    ("dispatch_general", test_dispatch_general_otherwise),
    ("online_precedes_ring", test_online_precedes_ring_dispatch),
    ("built_buffer_sizes", test_built_buffer_carries_sizes),
    ("float32_and_workers", test_build_with_float32_and_workers),

    # config
    ("config_camel_case", test_config_from_dict_camel_case),
    ("config_snake_case_defaults", test_config_snake_case_and_defaults),
    ("config_unknown_key_kind", test_config_rejects_unknown_key_and_kind),
    ("config_invalid_capacities", test_config_invalid_capacities_fail_on_create),

    # errors
    ("error_predicates", test_error_predicates_classify_sample_failures),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="builder")


if __name__ == "__main__":
    raise SystemExit(main())
