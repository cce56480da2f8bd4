from __future__ import annotations

from typing import Any, Callable, List, Tuple

import numpy as np
import torch as th

from rlreplay.common.testers.test_utils import (
    run_tests,
    assert_eq,
    assert_true,
    assert_in,
    assert_raises,
    assert_shape,
    assert_allclose,
    assert_array_eq,
)

from rlreplay.common.buffers.base_buffer import ReplayBatch, Transition
from rlreplay.common.buffers.buffer_builder import build_replay
from rlreplay.common.buffers.errors import (
    EmptyBufferError,
    EvictionAtFloorError,
    InsufficientSamplesError,
    SizeMismatchError,
)
from rlreplay.common.buffers.fifo_replay_buffer import FifoRemove1Replay
from rlreplay.common.buffers.online_replay_buffer import OnlineReplay
from rlreplay.common.buffers.replay_buffer import ExperienceReplay
from rlreplay.common.buffers.selectors import FifoSelector, UniformSelector
from rlreplay.common.utils.buffer_utils import InsertionOrderLedger


F = 3  # feature size
A = 2  # action size


def _tr(i: int, *, next_action: bool = True) -> Transition:
    """Transition whose every field encodes ``i``."""
    state = np.arange(F, dtype=np.float64) + 10.0 * i
    action = np.arange(A, dtype=np.float64) + 100.0 * i
    return Transition(
        state=state,
        action=action,
        reward=float(i),
        discount=0.99,
        next_state=state + 1.0,
        next_action=(action + 1.0) if next_action else None,
    )


def _rows(flat: np.ndarray, width: int) -> np.ndarray:
    return np.asarray(flat).reshape(-1, width)


def _general(remover, sampler, min_capacity: int, max_capacity: int, **kwargs: Any) -> ExperienceReplay:
    return ExperienceReplay(remover, sampler, min_capacity, max_capacity, F, A, include_next_action=True, **kwargs)


def _ring(sampler, min_capacity: int, max_capacity: int, **kwargs: Any) -> FifoRemove1Replay:
    return FifoRemove1Replay(sampler, min_capacity, max_capacity, F, A, include_next_action=True, **kwargs)


def _rewards_in_order(buf) -> List[float]:
    return [float(buf.rewards[s]) for s in buf.insert_order(buf.max_capacity)]


# =============================================================================
# Tests: InsertionOrderLedger
# =============================================================================
def test_ledger_push_pop_discard_first():
    led = InsertionOrderLedger(5)
    for s in (3, 0, 4):
        led.push_back(s)
    assert_eq(len(led), 3)
    assert_eq(list(led), [3, 0, 4])
    assert_array_eq(led.first(2), np.array([3, 0], dtype=np.int64))
    assert_array_eq(led.first(10), np.array([3, 0, 4], dtype=np.int64))

    assert_true(led.discard(0))
    assert_true(led.discard(0) is False)
    assert_eq(list(led), [3, 4])

    assert_eq(led.pop_front(), 3)
    led.push_back(3)
    assert_eq(list(led), [4, 3])
    assert_true(3 in led and 0 not in led)


def test_ledger_errors():
    led = InsertionOrderLedger(2)
    assert_raises(IndexError, led.pop_front)
    led.push_back(1)
    assert_raises(ValueError, lambda: led.push_back(1))
    assert_raises(IndexError, lambda: led.push_back(2))


# =============================================================================
# Tests: concrete scenario (max=2, min=1, FIFO remover 1, FIFO sampler 2)
# =============================================================================
def _check_abc_scenario(buf) -> None:
    a, b, c = _tr(1), _tr(2), _tr(3)

    buf.add(a)
    batch = buf.sample()
    # Degraded batch: batch_size is 2 but only A exists; one row, no padding.
    assert_eq(buf.batch_size, 2)
    assert_eq(batch.size, 1)
    assert_array_eq(batch.states, a.state)
    assert_array_eq(batch.next_actions, a.next_action)

    buf.add(b)
    batch = buf.sample()
    assert_array_eq(_rows(batch.states, F), np.stack([a.state, b.state]))
    assert_array_eq(batch.rewards, np.array([1.0, 2.0]))

    buf.add(c)
    batch = buf.sample()
    assert_array_eq(_rows(batch.states, F), np.stack([b.state, c.state]))
    assert_array_eq(_rows(batch.actions, A), np.stack([b.action, c.action]))
    assert_array_eq(batch.rewards, np.array([2.0, 3.0]))


def test_abc_scenario_via_factory_ring_buffer():
    buf = build_replay(
        remove_method="fifo",
        sample_method="fifo",
        min_capacity=1,
        max_capacity=2,
        feature_size=F,
        action_size=A,
        remove_size=1,
        sample_size=2,
        seed=0,
        include_next_action=True,
    )
    assert_true(isinstance(buf, FifoRemove1Replay))
    _check_abc_scenario(buf)


def test_abc_scenario_general_cache():
    buf = _general(FifoSelector(1), FifoSelector(2), 1, 2)
    _check_abc_scenario(buf)
    buf._assert_consistent()


# =============================================================================
# Tests: capacity / ordering properties
# =============================================================================
def test_no_data_loss_before_full():
    for buf in (_general(FifoSelector(1), FifoSelector(5), 1, 5), _ring(FifoSelector(5), 1, 5)):
        for i in range(5):
            buf.add(_tr(i))
            assert_eq(buf.capacity, i + 1)
            assert_eq(len(buf), i + 1)

        batch = buf.sample()
        assert_eq(batch.size, 5)
        assert_array_eq(batch.rewards, np.arange(5, dtype=np.float64))
        assert_array_eq(_rows(batch.states, F), np.stack([_tr(i).state for i in range(5)]))


def test_ring_fifo_eviction_keeps_last_n():
    n, m = 4, 3
    buf = _ring(UniformSelector(2, seed=0), 1, n)
    for i in range(n + m):
        buf.add(_tr(i))
        assert_true(0 <= buf.capacity <= buf.max_capacity)

    assert_eq(buf.capacity, n)
    held = sorted(float(buf.rewards[s]) for s in buf.sample_from())
    assert_eq(held, [3.0, 4.0, 5.0, 6.0])
    assert_eq(_rewards_in_order(buf), [3.0, 4.0, 5.0, 6.0])
    assert_eq(buf.empty_slots().tolist(), [])


def test_ring_insert_order_while_filling():
    buf = _ring(FifoSelector(1), 1, 5)
    for i in range(3):
        buf.add(_tr(i))
    assert_array_eq(buf.insert_order(10), np.array([0, 1, 2], dtype=np.int64))
    assert_array_eq(buf.insert_order(2), np.array([0, 1], dtype=np.int64))
    assert_array_eq(buf.empty_slots(), np.array([3, 4], dtype=np.int64))
    assert_true(buf.full is False)


def test_ring_full_flag_set_on_last_slot():
    buf = _ring(FifoSelector(1), 1, 3)
    buf.add(_tr(0))
    buf.add(_tr(1))
    assert_true(buf.full is False)
    buf.add(_tr(2))
    assert_true(buf.full is True)
    assert_eq(buf.pos, 0)
    assert_eq(buf.capacity, 3)


def test_general_fifo_remover_batch_two_evicts_oldest_pair():
    buf = _general(FifoSelector(2), FifoSelector(4), 1, 4)
    for i in range(7):
        buf.add(_tr(i))
        buf._assert_consistent()
        assert_true(0 <= buf.capacity <= buf.max_capacity)

    # Evictions at adds 4 and 6 each drop the two oldest.
    assert_eq(buf.capacity, 3)
    assert_eq(_rewards_in_order(buf), [4.0, 5.0, 6.0])
    assert_array_eq(buf.sample().rewards, np.array([4.0, 5.0, 6.0]))


def test_general_uniform_remover_keeps_bookkeeping_consistent():
    buf = _general(UniformSelector(3, seed=7), FifoSelector(5), 1, 5)
    for i in range(60):
        buf.add(_tr(i))
        buf._assert_consistent()
        assert_true(1 <= buf.capacity <= 5)

    # The insertion order is still chronological among survivors.
    order = _rewards_in_order(buf)
    assert_eq(order, sorted(order))
    assert_eq(order[-1], 59.0)


def test_general_registers_remover_only():
    r, s = FifoSelector(2), FifoSelector(2)
    buf = _general(r, s, 1, 4)
    assert_true(buf.remover.is_remover)
    assert_true(buf.sampler.is_remover is False)


def test_general_eviction_at_floor_aborts_add():
    buf = _general(UniformSelector(1, seed=0), UniformSelector(1, seed=1), 3, 3)
    for i in range(3):
        buf.add(_tr(i))

    before = buf.rewards.copy()
    err = assert_raises(EvictionAtFloorError, lambda: buf.add(_tr(99)))
    assert_eq(err.op, "add")
    assert_in("min capacity", str(err))
    assert_eq(buf.capacity, 3)
    assert_array_eq(buf.rewards, before)
    buf._assert_consistent()


def test_ring_at_floor_still_overwrites():
    # min == max with FIFO-evict-one: the ring never evicts explicitly.
    buf = _ring(FifoSelector(3), 3, 3)
    for i in range(5):
        buf.add(_tr(i))
    assert_eq(_rewards_in_order(buf), [2.0, 3.0, 4.0])


# =============================================================================
# Tests: sampling errors
# =============================================================================
def test_sample_empty_raises():
    for buf in (
        _general(FifoSelector(1), UniformSelector(1, seed=0), 1, 4),
        _ring(UniformSelector(1, seed=0), 1, 4),
        OnlineReplay(F, A),
    ):
        err = assert_raises(EmptyBufferError, buf.sample)
        assert_eq(err.op, "sample")
        # Learners may catch the plain RuntimeError.
        assert_raises(RuntimeError, buf.sample)


def test_insufficient_samples_boundary():
    for buf in (
        _general(UniformSelector(1, seed=0), UniformSelector(5, seed=0), 5, 10),
        _ring(UniformSelector(5, seed=0), 5, 10),
    ):
        for i in range(4):
            buf.add(_tr(i))
        assert_raises(InsufficientSamplesError, buf.sample)

        buf.add(_tr(4))
        batch = buf.sample()
        assert_eq(batch.size, 5)


# =============================================================================
# Tests: size validation
# =============================================================================
def test_size_mismatch_rejected_without_state_change():
    buffers = (
        _general(FifoSelector(1), FifoSelector(1), 1, 3),
        _ring(FifoSelector(1), 1, 3),
        OnlineReplay(F, A, include_next_action=True),
    )
    for buf in buffers:
        buf.add(_tr(0))
        cap = buf.capacity
        bad = _tr(1)
        bad.state = np.zeros((F + 1,))
        assert_raises(SizeMismatchError, lambda: buf.add(bad))
        assert_eq(buf.capacity, cap)
        assert_array_eq(buf.sample().states, _tr(0).state)

        bad_act = _tr(1)
        bad_act.next_action = np.zeros((A + 1,))
        assert_raises(SizeMismatchError, lambda: buf.add(bad_act))
        assert_raises(ValueError, lambda: buf.add(bad_act))


def test_size_mismatch_on_full_general_does_not_evict():
    buf = _general(FifoSelector(1), FifoSelector(3), 1, 3)
    for i in range(3):
        buf.add(_tr(i))

    bad = _tr(9)
    bad.next_state = np.zeros((F - 1,))
    assert_raises(SizeMismatchError, lambda: buf.add(bad))
    assert_eq(buf.capacity, 3)
    assert_eq(_rewards_in_order(buf), [0.0, 1.0, 2.0])
    buf._assert_consistent()


def test_missing_next_action_when_tracked_raises():
    buf = _ring(FifoSelector(1), 1, 3)
    assert_raises(SizeMismatchError, lambda: buf.add(_tr(0, next_action=False)))
    assert_eq(buf.capacity, 0)


def test_next_action_not_tracked():
    buf = FifoRemove1Replay(FifoSelector(2), 1, 4, F, A, include_next_action=False)
    assert_true(buf.next_actions is None)
    buf.add(_tr(0, next_action=False))
    buf.add(_tr(1))
    s, a, r, d, ns, na = buf.sample()
    assert_true(na is None)
    assert_shape(s, (2 * F,))
    assert_shape(a, (2 * A,))
    assert_array_eq(d, np.array([0.99, 0.99]))
    assert_array_eq(_rows(ns, F), np.stack([_tr(0).next_state, _tr(1).next_state]))


# =============================================================================
# Tests: online buffer
# =============================================================================
def test_online_round_trip_is_exact():
    buf = OnlineReplay(F, A, include_next_action=True)
    t = Transition(
        state=np.array([0.1, 1.0 / 3.0, -2.5e-300]),
        action=np.array([np.pi, -0.0]),
        reward=1.0 / 7.0,
        discount=0.9,
        next_state=np.array([np.e, 1e308, 5e-324]),
        next_action=np.array([0.3, 0.7]),
    )
    buf.add(t)
    batch = buf.sample()

    assert_array_eq(batch.states, t.state)
    assert_array_eq(batch.actions, t.action)
    assert_array_eq(batch.rewards, np.array([t.reward]))
    assert_array_eq(batch.discounts, np.array([t.discount]))
    assert_array_eq(batch.next_states, t.next_state)
    assert_array_eq(batch.next_actions, t.next_action)
    assert_eq(batch.states.dtype, np.float64)


def test_online_overwrites_and_constants():
    buf = OnlineReplay(F, A)
    for i in range(3):
        buf.add(_tr(i, next_action=False))
    assert_eq((buf.capacity, buf.min_capacity, buf.max_capacity, buf.batch_size), (1, 1, 1, 1))
    assert_array_eq(buf.sample().rewards, np.array([2.0]))


def test_add_copies_caller_data():
    buf = OnlineReplay(F, A)
    state = np.array([1.0, 2.0, 3.0])
    buf.add(Transition(state, [0.0, 0.0], 0.0, 1.0, state.copy()))
    state[:] = -1.0
    out = buf.sample()
    assert_array_eq(out.states, np.array([1.0, 2.0, 3.0]))

    out.states[:] = 42.0
    assert_array_eq(buf.sample().states, np.array([1.0, 2.0, 3.0]))


# =============================================================================
# Tests: inputs / outputs
# =============================================================================
def test_accepts_lists_and_tensors():
    buf = _ring(FifoSelector(2), 1, 2)
    buf.add(Transition([1, 2, 3], [4, 5], 1, 0.5, [6, 7, 8], [9, 10]))
    buf.add(
        Transition(
            th.tensor([1.0, 2.0, 3.0]),
            th.tensor([[4.0, 5.0]]),
            th.tensor(2.0),
            np.float32(0.5),
            th.ones(3),
            th.zeros(2),
        )
    )
    batch = buf.sample()
    assert_array_eq(batch.rewards, np.array([1.0, 2.0]))
    assert_array_eq(_rows(batch.actions, A), np.array([[4.0, 5.0], [4.0, 5.0]]))


def test_batch_to_tensors():
    buf = _ring(FifoSelector(2), 1, 4)
    buf.add(_tr(0))
    buf.add(_tr(1))
    tb = buf.sample().to_tensors("cpu")
    assert_true(isinstance(tb, ReplayBatch))
    assert_true(th.is_tensor(tb.states) and th.is_tensor(tb.next_actions))
    assert_eq(tb.states.dtype, th.float32)
    assert_eq(tb.states.device.type, "cpu")
    assert_shape(tb.states, (2 * F,))
    assert_allclose(tb.rewards, th.tensor([0.0, 1.0]))


def test_uniform_sampler_covers_buffer_evenly():
    c = 5
    # Ring far larger than its contents: draws must stay on the c written slots.
    buf = _ring(UniformSelector(1000, seed=3), 1, 1000)
    for i in range(c):
        buf.add(_tr(i))

    counts = np.zeros((c,), dtype=np.int64)
    for _ in range(100):
        r = buf.sample().rewards.astype(np.int64)
        counts += np.bincount(r, minlength=c)

    freqs = counts / counts.sum()
    assert_true(np.all(np.abs(freqs - 1.0 / c) < 0.01), f"frequencies off: {freqs}")


def test_parallel_copy_matches_synchronous():
    seq = _general(FifoSelector(1), UniformSelector(6, seed=11), 2, 6)
    par = _general(FifoSelector(1), UniformSelector(6, seed=11), 2, 6, copy_workers=4)
    par_ring = _ring(UniformSelector(6, seed=11), 2, 6, copy_workers=3)
    try:
        for i in range(9):
            seq.add(_tr(i))
            par.add(_tr(i))
        for i in range(4):
            par_ring.add(_tr(i))

        for _ in range(3):
            a, b = seq.sample(), par.sample()
            for x, y in zip(a, b):
                assert_array_eq(x, y)

        assert_eq(par_ring.sample().size, 6)
    finally:
        par.close()
        par_ring.close()


def test_repr_and_describe():
    buf = _ring(FifoSelector(2), 1, 3)
    buf.add(_tr(0))
    r = repr(buf)
    assert_true(r.startswith("FifoRemove1Replay("), r)
    assert_in("capacity=1", r)
    text = buf.describe()
    assert_in("Indices Available: [1, 2]", text)
    assert_in("Indices Used: [0]", text)
    assert_in("Next Actions:", text)


# =============================================================================
# Simple runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    # ledger
    ("ledger_push_pop_discard_first", test_ledger_push_pop_discard_first),
    ("ledger_errors", test_ledger_errors),

    # scenario
    ("abc_scenario_ring", test_abc_scenario_via_factory_ring_buffer),
    ("abc_scenario_general", test_abc_scenario_general_cache),

    # capacity / order
    ("no_data_loss_before_full", test_no_data_loss_before_full),
    ("ring_eviction_keeps_last_n", test_ring_fifo_eviction_keeps_last_n),
    ("ring_insert_order_filling", test_ring_insert_order_while_filling),
    ("ring_full_flag", test_ring_full_flag_set_on_last_slot),
    ("general_fifo_remover_batch_two", test_general_fifo_remover_batch_two_evicts_oldest_pair),
    ("general_uniform_remover_consistent", test_general_uniform_remover_keeps_bookkeeping_consistent),
    ("general_registers_remover_only", test_general_registers_remover_only),
    ("general_eviction_at_floor", test_general_eviction_at_floor_aborts_add),
    ("ring_at_floor_overwrites", test_ring_at_floor_still_overwrites),

    # sampling errors
    ("sample_empty_raises", test_sample_empty_raises),
    ("insufficient_samples_boundary", test_insufficient_samples_boundary),

    # validation
    ("size_mismatch_no_state_change", test_size_mismatch_rejected_without_state_change),
    ("size_mismatch_full_no_evict", test_size_mismatch_on_full_general_does_not_evict),
    ("missing_next_action_raises", test_missing_next_action_when_tracked_raises),
    ("next_action_not_tracked", test_next_action_not_tracked),

    # online
    ("online_round_trip_exact", test_online_round_trip_is_exact),
    ("online_overwrites_constants", test_online_overwrites_and_constants),
    ("add_copies_caller_data", test_add_copies_caller_data),

    # io
    ("accepts_lists_and_tensors", test_accepts_lists_and_tensors),
    ("batch_to_tensors", test_batch_to_tensors),
    ("uniform_sampler_even", test_uniform_sampler_covers_buffer_evenly),
    ("parallel_copy_matches_sync", test_parallel_copy_matches_synchronous),
    ("repr_and_describe", test_repr_and_describe),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="buffers")


if __name__ == "__main__":
    raise SystemExit(main())
