"""
Utils
====================

Small, reusable helpers used by the replay buffers.

Modules included
----------------
- buffer_utils
    Uniform index sampling, the insertion-order ledger, and the per-call
    copy-job runner.
- common_utils
    NumPy/Torch conversion helpers, scalar coercion, and config-kind
    normalization.

Design policy
-------------
- Functions prefixed with '_' are semi-private: importable for internal use,
  but not guaranteed as a stable public API.
"""

from __future__ import annotations

# =============================================================================
# Replay buffer utilities
# =============================================================================
from .buffer_utils import (
    InsertionOrderLedger,
    run_copy_jobs,
    uniform_indices,
    unique_in_order,
)

# =============================================================================
# Common NumPy/Torch utilities
# =============================================================================
from .common_utils import _normalize_kind, _to_flat_np, _to_scalar, _to_tensor

__all__ = [
    # buffer_utils
    "InsertionOrderLedger",
    "run_copy_jobs",
    "uniform_indices",
    "unique_in_order",
    # common_utils
    "_normalize_kind",
    "_to_flat_np",
    "_to_scalar",
    "_to_tensor",
]
