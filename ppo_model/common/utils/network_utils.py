from __future__ import annotations

from typing import Any, Callable, Dict, Sequence, Tuple, Type, Union
import math

import torch as th
import torch.nn as nn


# =============================================================================
# Network utilities
# =============================================================================
def _validate_hidden_sizes(hidden_sizes: Sequence[int], *, allow_empty: bool = False) -> Tuple[int, ...]:
    """
    Validate the hidden layer sizes of an MLP.

    Parameters
    ----------
    hidden_sizes : Sequence[int]
        Hidden layer sizes (e.g., (128,) or [256, 256]).
    allow_empty : bool, default=False
        If True, an empty tuple is accepted (identity encoder).

    Returns
    -------
    hs : Tuple[int, ...]
        Validated sizes as a tuple of positive integers.

    Raises
    ------
    ValueError
        If empty (when not allowed) or contains non-positive entries.
    """
    hs = tuple(int(h) for h in hidden_sizes)
    if len(hs) == 0 and not allow_empty:
        raise ValueError("hidden_sizes must have at least one layer (e.g., (128,)).")
    if any(h <= 0 for h in hs):
        raise ValueError(f"hidden_sizes must be positive integers, got: {hs}")
    return hs


def _make_weights_init(
    init_type: str = "xavier_uniform",
    gain: float = 1.0,
    bias: float = 0.0,
    kaiming_a: float = math.sqrt(5.0),
) -> Callable[[nn.Module], None]:
    """
    Create an initializer function compatible with `nn.Module.apply()`.

    Parameters
    ----------
    init_type : str, default="xavier_uniform"
        Initialization scheme identifier (case-insensitive). Supported:
        "xavier_uniform", "xavier_normal", "kaiming_uniform", "kaiming_normal",
        "orthogonal", "normal" (std = gain), "uniform" (range = [-gain, +gain]).
    gain : float, default=1.0
        Gain used by Xavier/Orthogonal initializers.
    bias : float, default=0.0
        Constant value for initializing biases (if present).
    kaiming_a : float, default=sqrt(5.0)
        Negative slope parameter `a` for Kaiming initialization.

    Returns
    -------
    init_fn : Callable[[nn.Module], None]
        Function intended to be used as ``model.apply(init_fn)``.

    Raises
    ------
    ValueError
        If `init_type` is unknown.

    Notes
    -----
    Only ``nn.Linear`` and ``nn.Conv2d`` modules are initialized; other modules
    are ignored.
    """
    name = str(init_type).lower().strip()
    gain = float(gain)
    bias = float(bias)
    kaiming_a = float(kaiming_a)

    if name not in (
        "xavier_uniform",
        "xavier_normal",
        "kaiming_uniform",
        "kaiming_normal",
        "orthogonal",
        "normal",
        "uniform",
    ):
        raise ValueError(f"Unknown init_type: {init_type!r}")

    def init_fn(module: nn.Module) -> None:
        if not isinstance(module, (nn.Linear, nn.Conv2d)):
            return

        if name == "xavier_uniform":
            nn.init.xavier_uniform_(module.weight, gain=gain)
        elif name == "xavier_normal":
            nn.init.xavier_normal_(module.weight, gain=gain)
        elif name == "kaiming_uniform":
            nn.init.kaiming_uniform_(module.weight, a=kaiming_a)
        elif name == "kaiming_normal":
            nn.init.kaiming_normal_(module.weight, a=kaiming_a)
        elif name == "orthogonal":
            nn.init.orthogonal_(module.weight, gain=gain)
        elif name == "normal":
            nn.init.normal_(module.weight, mean=0.0, std=gain)
        else:
            nn.init.uniform_(module.weight, -gain, gain)

        if module.bias is not None:
            nn.init.constant_(module.bias, bias)

    return init_fn


def _scaled_xavier_init(scale: float) -> Callable[[nn.Module], None]:
    """
    Xavier-uniform initializer with ``gain = sqrt(scale)`` and zero bias.

    Hidden layers use ``scale=1.0``; policy/value output layers use a small
    scale (0.01) so that the initial policy is close to uniform / unit-variance.
    """
    return _make_weights_init("xavier_uniform", gain=math.sqrt(float(scale)), bias=0.0)


# =============================================================================
# Activation function resolver
# =============================================================================
_ACTIVATIONS: Dict[str, Type[nn.Module]] = {
    "relu": nn.ReLU,
    "elu": nn.ELU,
    "tanh": nn.Tanh,
    "silu": nn.SiLU,
    "swish": nn.SiLU,
    "gelu": nn.GELU,
    "leakyrelu": nn.LeakyReLU,
    "leaky_relu": nn.LeakyReLU,
    "sigmoid": nn.Sigmoid,
    "identity": nn.Identity,
    "linear": nn.Identity,
}


def _resolve_activation_fn(act: Any, *, default: Type[nn.Module] = nn.ReLU) -> Type[nn.Module]:
    """
    Resolve an activation argument to an `nn.Module` **class**.

    Parameters
    ----------
    act : Any
        None (returns `default`), an ``nn.Module`` subclass or instance, or a
        name such as "relu", "nn.ELU", "leaky_relu".
    default : Type[nn.Module], default=nn.ReLU

    Returns
    -------
    cls : Type[nn.Module]

    Raises
    ------
    ValueError
        If a string name is unknown.
    TypeError
        If `act` is of an unsupported type.
    """
    if act is None:
        return default

    if isinstance(act, type) and issubclass(act, nn.Module):
        return act

    if isinstance(act, nn.Module):
        return act.__class__

    if isinstance(act, str):
        key = act.strip()
        for prefix in ("torch.nn.", "nn."):
            if key.startswith(prefix):
                key = key[len(prefix):]
        key = key.lower().replace("-", "_").replace(" ", "")
        if key not in _ACTIVATIONS:
            raise ValueError(f"Unknown activation: {act!r}")
        return _ACTIVATIONS[key]

    raise TypeError(f"Unsupported activation spec: {type(act).__name__}")


def _activation_to_name(act: Any) -> Union[str, None]:
    """Utility for config dumps."""
    if act is None:
        return None
    return getattr(act, "__name__", None) or str(act)


# =============================================================================
# Input shape/device normalization
# =============================================================================
def _ensure_batch(x: Any, device: Union[th.device, str], *, event_dim: int = 1) -> th.Tensor:
    """
    Convert input to a float32 tensor on `device` and ensure a batch dimension.

    Parameters
    ----------
    x : Any
        Input data (tensor, numpy array, list).
    device : torch.device or str
        Target device.
    event_dim : int, default=1
        Number of non-batch dimensions of a single sample. Vector observations
        use 1 (``(F,) -> (1, F)``); NHWC images use 3
        (``(H, W, C) -> (1, H, W, C)``).

    Returns
    -------
    x_t : torch.Tensor
        Floating-point tensor with a leading batch dimension.
    """
    x_t = x if isinstance(x, th.Tensor) else th.as_tensor(x)

    if x_t.dtype != th.float32:
        x_t = x_t.float()

    x_t = x_t.to(device)

    if x_t.dim() == 0:
        x_t = x_t.view(1, 1)
    elif x_t.dim() == event_dim:
        x_t = x_t.unsqueeze(0)

    return x_t
