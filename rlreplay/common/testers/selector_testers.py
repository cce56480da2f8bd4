from __future__ import annotations

from typing import Any, Callable, List, Tuple

import numpy as np

from rlreplay.common.testers.test_utils import (
    run_tests,
    assert_eq,
    assert_true,
    assert_raises,
    assert_array_eq,
)

from rlreplay.common.buffers.errors import InvalidConfigurationError
from rlreplay.common.buffers.selectors import (
    FifoSelector,
    SelectorKind,
    UniformSelector,
    create_selector,
)


class _View:
    """Buffer stand-in exposing the selector view over a fixed slot list (oldest first)."""

    def __init__(self, slots) -> None:
        self.slots = np.asarray(slots, dtype=np.int64)
        self.popped = 0

    @property
    def capacity(self) -> int:
        return int(self.slots.shape[0])

    def sample_from(self) -> np.ndarray:
        return self.slots

    def insert_order(self, n: int) -> np.ndarray:
        return self.slots[:n]

    def pop_oldest(self) -> None:
        self.popped += 1


# =============================================================================
# Tests: SelectorKind / factory
# =============================================================================
def test_selector_kind_parse_aliases():
    assert_true(SelectorKind.parse("Fifo") is SelectorKind.FIFO)
    assert_true(SelectorKind.parse(" FIFO ") is SelectorKind.FIFO)
    assert_true(SelectorKind.parse("Uniform") is SelectorKind.UNIFORM)
    assert_true(SelectorKind.parse(SelectorKind.UNIFORM) is SelectorKind.UNIFORM)


def test_selector_kind_parse_unknown_raises():
    assert_raises(InvalidConfigurationError, lambda: SelectorKind.parse("lifo"))
    assert_raises(InvalidConfigurationError, lambda: SelectorKind.parse(None))


def test_create_selector_builds_tagged_selectors():
    u = create_selector("uniform", 4, seed=1)
    f = create_selector(SelectorKind.FIFO, 2)
    assert_true(isinstance(u, UniformSelector))
    assert_true(isinstance(f, FifoSelector))
    assert_true(u.kind is SelectorKind.UNIFORM)
    assert_true(f.kind is SelectorKind.FIFO)
    assert_eq(u.batch_size, 4)
    assert_eq(f.batch_size, 2)


def test_non_positive_batch_size_raises():
    assert_raises(InvalidConfigurationError, lambda: FifoSelector(0))
    # Also a ValueError, like the rest of the config checks.
    assert_raises(ValueError, lambda: UniformSelector(-1, seed=0))


def test_register_as_remover_flag():
    f = FifoSelector(1)
    assert_true(f.is_remover is False)
    f.register_as_remover()
    assert_true(f.is_remover is True)
    assert_true("remover" in repr(f))


# =============================================================================
# Tests: FifoSelector
# =============================================================================
def test_fifo_sampler_returns_oldest_first_without_popping():
    view = _View([7, 3, 5, 1])
    f = FifoSelector(3)
    out = f.choose(view)
    assert_array_eq(out, np.array([7, 3, 5], dtype=np.int64))
    assert_eq(view.popped, 0)


def test_fifo_selection_larger_than_capacity_is_truncated():
    view = _View([4, 2])
    out = FifoSelector(5).choose(view)
    # No padding: only as many indices as the buffer holds.
    assert_array_eq(out, np.array([4, 2], dtype=np.int64))


def test_fifo_remover_pops_one_per_chosen_slot():
    view = _View([9, 8, 6])
    f = FifoSelector(2)
    f.register_as_remover()
    out = f.choose(view)
    assert_array_eq(out, np.array([9, 8], dtype=np.int64))
    assert_eq(view.popped, 2)


# =============================================================================
# Tests: UniformSelector
# =============================================================================
def test_uniform_draws_only_in_use_slots():
    view = _View([11, 22, 33])
    u = UniformSelector(500, seed=0)
    out = u.choose(view)
    assert_eq(out.shape, (500,))
    assert_eq(set(out.tolist()), {11, 22, 33})


def test_uniform_same_seed_is_reproducible():
    view = _View(list(range(10)))
    a = UniformSelector(8, seed=123)
    b = UniformSelector(8, seed=123)
    for _ in range(5):
        assert_array_eq(a.choose(view), b.choose(view))


def test_uniform_remover_behaves_like_sampler():
    view = _View(list(range(6)))
    s = UniformSelector(4, seed=5)
    r = UniformSelector(4, seed=5)
    r.register_as_remover()
    assert_array_eq(s.choose(view), r.choose(view))
    assert_eq(view.popped, 0)


def test_uniform_frequencies_close_to_one_over_c():
    c = 4
    n = 100_000
    view = _View(list(range(c)))
    u = UniformSelector(1, seed=0)

    counts = np.zeros((c,), dtype=np.int64)
    for _ in range(n):
        counts[int(u.choose(view)[0])] += 1

    freqs = counts / float(n)
    # std of each frequency is ~sqrt(p(1-p)/n) ~= 0.0014; allow ~7 sigma.
    assert_true(np.all(np.abs(freqs - 1.0 / c) < 0.01), f"frequencies off: {freqs}")


# =============================================================================
# Simple runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("kind_parse_aliases", test_selector_kind_parse_aliases),
    ("kind_parse_unknown_raises", test_selector_kind_parse_unknown_raises),
    ("create_selector_tagged", test_create_selector_builds_tagged_selectors),
    ("non_positive_batch_size_raises", test_non_positive_batch_size_raises),
    ("register_as_remover_flag", test_register_as_remover_flag),

    ("fifo_sampler_oldest_first", test_fifo_sampler_returns_oldest_first_without_popping),
    ("fifo_truncated_selection", test_fifo_selection_larger_than_capacity_is_truncated),
    ("fifo_remover_pops", test_fifo_remover_pops_one_per_chosen_slot),

    ("uniform_in_use_only", test_uniform_draws_only_in_use_slots),
    ("uniform_reproducible", test_uniform_same_seed_is_reproducible),
    ("uniform_remover_like_sampler", test_uniform_remover_behaves_like_sampler),
    ("uniform_frequencies", test_uniform_frequencies_close_to_one_over_c),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="selectors")


if __name__ == "__main__":
    raise SystemExit(main())
