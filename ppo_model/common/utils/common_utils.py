from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence, Union

import numpy as np
import torch as th


# =============================================================================
# NumPy / Torch conversion utilities
# =============================================================================
def _to_numpy(x: Any, *, dtype: Optional[np.dtype] = None) -> np.ndarray:
    """
    Convert an input to a NumPy array on CPU.

    Parameters
    ----------
    x : Any
        Input object. Common cases include:
        - ``np.ndarray``
        - ``torch.Tensor`` (detached and moved to CPU)
        - Python scalars, lists, tuples
    dtype : Optional[np.dtype], default=None
        If given, cast the result (without copy when possible).

    Returns
    -------
    arr : np.ndarray
        NumPy array on CPU.
    """
    if isinstance(x, np.ndarray):
        arr = x
    elif th.is_tensor(x):
        arr = x.detach().cpu().numpy()
    else:
        arr = np.asarray(x)

    if dtype is not None:
        arr = arr.astype(dtype, copy=False)
    return arr


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
        Input object (numpy array, tensor, scalar or nested list).
    device : Union[str, torch.device]
        Target device (e.g., "cpu", "cuda:0").
    dtype : torch.dtype, default=torch.float32
        Target dtype. Applied even if ``x`` is already a tensor.

    Returns
    -------
    t : torch.Tensor
        Tensor placed on ``device`` with dtype ``dtype``.

    Notes
    -----
    NumPy arrays go through ``torch.from_numpy`` first (CPU sharing) and are
    then moved to the target device.
    """
    dev = th.device(device)

    if th.is_tensor(x):
        return x.to(device=dev, dtype=dtype)

    if isinstance(x, np.ndarray):
        return th.from_numpy(np.ascontiguousarray(x)).to(device=dev, dtype=dtype)

    return th.as_tensor(x, dtype=dtype, device=dev)


def _to_scalar(x: Any) -> Optional[float]:
    """
    Convert a scalar-like input to a Python float.

    Parameters
    ----------
    x : Any
        Input value.

    Returns
    -------
    s : float or None
        Python float if convertible, else None.

    Notes
    -----
    Tensors/arrays with more than one element return None to avoid silently
    discarding data.
    """
    if th.is_tensor(x):
        if x.numel() == 1:
            return float(x.detach().cpu().item())
        return None

    if isinstance(x, (bool, int, float, np.number)):
        return float(x)

    try:
        arr = np.asarray(x)
        if arr.shape == () or arr.size == 1:
            return float(arr.reshape(-1)[0])
    except (TypeError, ValueError):
        return None

    return None


def _to_column(x: th.Tensor) -> th.Tensor:
    """
    Ensure a 1D batch tensor becomes a column tensor.

    - (B,)   -> (B, 1)
    - (B, 1) -> (B, 1)
    - (B, K) -> (B, K)
    """
    return x.unsqueeze(1) if x.dim() == 1 else x


def _as_tensor_list(
    xs: Optional[Union[Any, Sequence[Any]]],
    device: Union[str, th.device],
    dtype: th.dtype = th.float32,
) -> Optional[list]:
    """
    Convert a single array or a sequence of arrays into a list of tensors.

    Parameters
    ----------
    xs : Any or Sequence[Any] or None
        ``None`` is passed through, and so are ``None`` entries of a sequence.
        A single ndarray/tensor is wrapped into a one-element list.
    device : Union[str, torch.device]
        Target device.
    dtype : torch.dtype, default=torch.float32
        Target dtype.

    Returns
    -------
    out : list[Optional[torch.Tensor]] or None
    """
    if xs is None:
        return None
    if isinstance(xs, np.ndarray) or th.is_tensor(xs):
        return [_to_tensor(xs, device=device, dtype=dtype)]
    return [None if x is None else _to_tensor(x, device=device, dtype=dtype) for x in xs]


# =============================================================================
# CPU-safe serialization helpers
# =============================================================================
def _to_cpu(obj: Any) -> Any:
    """
    Recursively move tensors to CPU and detach (serialization-friendly).

    Supported containers are mappings, lists and tuples; other objects are
    returned unchanged.
    """
    if th.is_tensor(obj):
        return obj.detach().cpu()

    if isinstance(obj, Mapping):
        return {k: _to_cpu(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple)):
        vals = [_to_cpu(v) for v in obj]
        return type(obj)(vals)

    return obj


def _to_cpu_state_dict(state_dict: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Convert a module state_dict to a pure-CPU, detached form.

    Parameters
    ----------
    state_dict : Mapping[str, Any]
        State dict mapping parameter/buffer names to tensors.

    Returns
    -------
    cpu_state : Dict[str, Any]
        A dict with the same keys where tensors are CPU+detached.
    """
    return _to_cpu(dict(state_dict))
