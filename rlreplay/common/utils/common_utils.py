from __future__ import annotations

from typing import Any, Optional, Union

import numpy as np
import torch as th


# =============================================================================
# NumPy / Torch conversion utilities
# =============================================================================
def _to_flat_np(x: Any, *, dtype: Optional[np.dtype] = np.float64) -> np.ndarray:
    """
    Convert input to a flattened (1D) NumPy array.

    Parameters
    ----------
    x : Any
        Input object (``np.ndarray``, ``torch.Tensor``, list, scalar, ...).
    dtype : Optional[np.dtype], default=np.float64
        If not None, cast output to this dtype (without copy when possible).

    Returns
    -------
    arr : np.ndarray, shape (D,)
        Flattened NumPy array. May share memory with ``x``; callers that keep
        the data must copy it.

    Notes
    -----
    - Torch tensors are detached and moved to CPU.
    - Scalars become arrays of shape (1,).
    """
    if th.is_tensor(x):
        arr = x.detach().cpu().numpy()
    else:
        arr = np.asarray(x)

    arr = arr.reshape(-1)
    if dtype is not None:
        arr = arr.astype(dtype, copy=False)
    return arr


def _to_scalar(x: Any) -> float:
    """
    Convert a scalar-like input (Python/NumPy scalar, 1-element array or tensor)
    to a Python float.

    Raises
    ------
    ValueError
        If ``x`` holds more than one element.
    """
    if th.is_tensor(x):
        if x.numel() != 1:
            raise ValueError(f"expected a scalar tensor, got shape={tuple(x.shape)}")
        return float(x.detach().cpu().item())

    if isinstance(x, (bool, int, float, np.number)):
        return float(x)

    arr = np.asarray(x)
    if arr.size != 1:
        raise ValueError(f"expected a scalar, got shape={arr.shape}")
    return float(arr.reshape(-1)[0])


def _to_tensor(
    x: Any,
    device: Union[str, th.device],
    dtype: th.dtype = th.float32,
) -> th.Tensor:
    """
    Convert input to a torch.Tensor on the given device and dtype.

    Parameters
    ----------
    x : Any
        Input object (``np.ndarray``, ``torch.Tensor``, Python scalars / lists).
    device : Union[str, torch.device]
        Target device (e.g., "cpu", "cuda:0").
    dtype : torch.dtype, default=torch.float32
        Target dtype. Applied even if ``x`` is already a tensor.

    Returns
    -------
    t : torch.Tensor
        Tensor placed on ``device`` with dtype ``dtype``.
    """
    dev = th.device(device)

    if th.is_tensor(x):
        return x.to(device=dev, dtype=dtype)

    if isinstance(x, np.ndarray):
        return th.from_numpy(x).to(device=dev, dtype=dtype)

    return th.as_tensor(x, dtype=dtype, device=dev)


# =============================================================================
# Config parsing
# =============================================================================
def _normalize_kind(kind: Optional[str]) -> Optional[str]:
    """
    Normalize a "kind" string into a canonical snake_case identifier.

    Normalization steps:
      1) strip and lowercase
      2) map {"", "none", "null"} -> None
      3) unify separators: "-" and whitespace -> "_"
      4) collapse repeated underscores

    Examples
    --------
    >>> _normalize_kind(" Fifo ")
    'fifo'
    >>> _normalize_kind("Uniform")
    'uniform'
    >>> _normalize_kind("null") is None
    True
    """
    if kind is None:
        return None

    s = str(kind).strip().lower()
    if s in ("", "none", "null"):
        return None

    s = s.replace("-", "_").replace(" ", "_")
    while "__" in s:
        s = s.replace("__", "_")

    return s
