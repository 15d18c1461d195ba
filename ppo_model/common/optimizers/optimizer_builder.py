from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Tuple, Union

import torch as th
import torch.nn as nn
import torch.optim as optim
from torch.optim import Optimizer


OPTIMIZER_NAMES = ("adam", "adamw", "sgd", "rmsprop", "radam")


def _normalize_optimizer_name(name: str) -> str:
    opt = str(name).lower().strip().replace("-", "").replace("_", "")
    if opt == "adamweightdecay":
        opt = "adamw"
    return opt


# =============================================================================
# Optimizer factory
# =============================================================================
def build_optimizer(
    params: Union[Iterable[nn.Parameter], Iterable[Dict[str, Any]]],
    *,
    name: str = "adam",
    lr: float = 3e-4,
    weight_decay: float = 0.0,
    betas: Tuple[float, float] = (0.9, 0.999),
    eps: float = 1e-8,
    momentum: float = 0.0,
    nesterov: bool = False,
    alpha: float = 0.99,
    centered: bool = False,
) -> Optimizer:
    """
    Build a PyTorch optimizer.

    Parameters
    ----------
    params : Iterable[nn.Parameter] or Iterable[Dict[str, Any]]
        Flat parameters, or torch param-group dicts.
    name : str, default="adam"
        Optimizer identifier (case-insensitive; "-" and "_" ignored).
        Supported: "adam", "adamw", "sgd", "rmsprop", "radam".
    lr : float, default=3e-4
        Base learning rate.
    weight_decay : float, default=0.0
        Weight decay coefficient.
    betas : Tuple[float, float], default=(0.9, 0.999)
        Adam-family betas.
    eps : float, default=1e-8
        Numerical stability epsilon for Adam-family / RMSprop.
    momentum : float, default=0.0
        Momentum for SGD / RMSprop.
    nesterov : bool, default=False
        Nesterov momentum for SGD.
    alpha : float, default=0.99
        RMSprop smoothing constant.
    centered : bool, default=False
        Centered RMSprop.

    Returns
    -------
    optimizer : torch.optim.Optimizer

    Raises
    ------
    ValueError
        If `name` is unknown or hyperparameters are invalid.
    """
    lr = float(lr)
    weight_decay = float(weight_decay)
    eps = float(eps)
    momentum = float(momentum)

    if lr <= 0:
        raise ValueError(f"lr must be > 0, got: {lr}")
    if weight_decay < 0:
        raise ValueError(f"weight_decay must be >= 0, got: {weight_decay}")
    if eps <= 0:
        raise ValueError(f"eps must be > 0, got: {eps}")
    if momentum < 0:
        raise ValueError(f"momentum must be >= 0, got: {momentum}")

    b1, b2 = float(betas[0]), float(betas[1])
    if not (0.0 <= b1 < 1.0 and 0.0 <= b2 < 1.0):
        raise ValueError(f"betas must be in [0, 1), got: {betas}")

    opt = _normalize_optimizer_name(name)

    if opt == "adam":
        return optim.Adam(params, lr=lr, betas=(b1, b2), eps=eps, weight_decay=weight_decay)

    if opt == "adamw":
        return optim.AdamW(params, lr=lr, betas=(b1, b2), eps=eps, weight_decay=weight_decay)

    if opt == "sgd":
        return optim.SGD(params, lr=lr, momentum=momentum, weight_decay=weight_decay, nesterov=bool(nesterov))

    if opt == "rmsprop":
        return optim.RMSprop(
            params,
            lr=lr,
            alpha=float(alpha),
            eps=eps,
            weight_decay=weight_decay,
            momentum=momentum,
            centered=bool(centered),
        )

    if opt == "radam":
        return optim.RAdam(params, lr=lr, betas=(b1, b2), eps=eps, weight_decay=weight_decay)

    raise ValueError(f"Unknown optimizer name: {name!r} (expected one of {OPTIMIZER_NAMES})")


# =============================================================================
# Gradient utilities
# =============================================================================
def clip_grad_norm(
    parameters: Iterable[nn.Parameter],
    max_norm: float,
    norm_type: float = 2.0,
) -> float:
    """
    Clip the global gradient norm in place.

    Parameters
    ----------
    parameters : Iterable[nn.Parameter]
        Parameters whose gradients are clipped. Materialized into a list so a
        generator is safe to pass.
    max_norm : float
        Maximum allowed norm. ``<= 0`` disables clipping (returns 0.0).
    norm_type : float, default=2.0
        p-norm type.

    Returns
    -------
    total_norm : float
        Pre-clip total norm.
    """
    if max_norm <= 0:
        return 0.0

    params_list = [p for p in parameters if p.grad is not None]
    if not params_list:
        return 0.0

    total_norm = nn.utils.clip_grad_norm_(params_list, float(max_norm), norm_type=float(norm_type))
    if th.is_tensor(total_norm):
        return float(total_norm.detach().cpu().item())
    return float(total_norm)


# =============================================================================
# Checkpoint helpers
# =============================================================================
def optimizer_state_dict(optimizer: Optimizer) -> Dict[str, Any]:
    return optimizer.state_dict()


def load_optimizer_state_dict(optimizer: Optimizer, state: Mapping[str, Any]) -> None:
    """
    Load an optimizer state dict and move its tensors to the parameters' device.
    """
    optimizer.load_state_dict(dict(state))

    device = None
    for group in optimizer.param_groups:
        for p in group["params"]:
            device = p.device
            break
        if device is not None:
            break
    if device is None:
        return

    for st in optimizer.state.values():
        for k, v in st.items():
            if th.is_tensor(v) and k != "step":
                st[k] = v.to(device)
