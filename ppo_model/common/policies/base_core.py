from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import torch as th
import torch.nn as nn
from torch.optim import Optimizer

from ..optimizers.optimizer_builder import (
    build_optimizer,
    clip_grad_norm,
    load_optimizer_state_dict,
    optimizer_state_dict,
)
from ..optimizers.scheduler_builder import (
    build_scheduler,
    load_scheduler_state_dict,
    scheduler_state_dict,
)


class BaseCore(ABC):
    """
    Base class for update engines ("cores").

    A core turns one :class:`~ppo_model.common.policies.base_head.TensorBatch`
    into one synchronous optimizer step. This base class provides the shared
    optimizer wiring:

    - A reference to ``head`` (network + normalizer + generator).
    - One optimizer over :meth:`_trainable_parameters`, built by
      ``build_optimizer``.
    - An optional LR scheduler, stepped once per optimizer step.
    - Optional global gradient-norm clipping.
    - A monotonically increasing update-call counter.
    - Optimizer/scheduler checkpoint serialization.

    Parameters
    ----------
    head : ActorCriticHead
        Head owning the network. ``head.device`` selects the training device.
    optim_name : str, default="adam"
        One of "adam", "adamw", "sgd", "rmsprop", "radam".
    lr : float, default=3e-4
    weight_decay : float, default=0.0
    betas : Tuple[float, float], default=(0.9, 0.999)
    eps : float, default=1e-8
    sched_name : str, default="none"
        One of "none", "linear", "log", "cosine", "step", "exponential".
    total_steps, warmup_steps, min_lr_ratio, step_size, sched_gamma
        Scheduler knobs, see ``build_scheduler``.
    max_grad_norm : float, default=0.0
        Global gradient-norm clip; 0 disables clipping.

    Notes
    -----
    Concrete subclasses implement :meth:`_trainable_parameters` and
    :meth:`update_from_batch`.
    """

    def __init__(
        self,
        *,
        head: Any,
        optim_name: str = "adam",
        lr: float = 3e-4,
        weight_decay: float = 0.0,
        betas: Tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
        sched_name: str = "none",
        total_steps: int = 0,
        warmup_steps: int = 0,
        min_lr_ratio: float = 0.0,
        step_size: int = 1000,
        sched_gamma: float = 0.99,
        max_grad_norm: float = 0.0,
    ) -> None:
        self.head = head

        dev = getattr(head, "device", th.device("cpu"))
        self.device = dev if isinstance(dev, th.device) else th.device(str(dev))

        self.max_grad_norm = float(max_grad_norm)
        if self.max_grad_norm < 0.0:
            raise ValueError(f"max_grad_norm must be >= 0, got {self.max_grad_norm}")

        self.opt: Optimizer = build_optimizer(
            list(self._trainable_parameters()),
            name=str(optim_name),
            lr=float(lr),
            weight_decay=float(weight_decay),
            betas=(float(betas[0]), float(betas[1])),
            eps=float(eps),
        )
        self.sched = build_scheduler(
            self.opt,
            name=str(sched_name),
            total_steps=int(total_steps),
            warmup_steps=int(warmup_steps),
            min_lr_ratio=float(min_lr_ratio),
            step_size=int(step_size),
            gamma=float(sched_gamma),
        )

        self._update_calls: int = 0

    # ---------------------------------------------------------------------
    # Bookkeeping
    # ---------------------------------------------------------------------
    @property
    def update_calls(self) -> int:
        """Number of completed optimizer steps."""
        return int(self._update_calls)

    def _bump(self) -> None:
        self._update_calls += 1

    @property
    def lr(self) -> float:
        """Current learning rate of the first param group."""
        return float(self.opt.param_groups[0]["lr"])

    # ---------------------------------------------------------------------
    # Optimization
    # ---------------------------------------------------------------------
    @abstractmethod
    def _trainable_parameters(self) -> Iterable[nn.Parameter]:
        """Parameters handed to the optimizer (and to gradient clipping)."""
        raise NotImplementedError

    def _clip_params(self, params: Iterable[nn.Parameter]) -> float:
        """Clip gradients in place; returns the pre-clip norm (0 when disabled)."""
        if self.max_grad_norm <= 0.0:
            return 0.0
        return clip_grad_norm(params, self.max_grad_norm)

    def _optimizer_step(self, loss: th.Tensor) -> float:
        """
        One synchronous update: zero-grad, backward, clip, step, schedule.

        Returns
        -------
        grad_norm : float
            Pre-clip global norm (0 when clipping is disabled).
        """
        self.opt.zero_grad(set_to_none=True)
        loss.backward()
        grad_norm = self._clip_params(self._trainable_parameters())
        self.opt.step()
        if self.sched is not None:
            self.sched.step()
        self._bump()
        return grad_norm

    # ---------------------------------------------------------------------
    # Persistence
    # ---------------------------------------------------------------------
    def _save_opt_sched(self, opt: Optimizer, sched: Optional[Any]) -> Dict[str, Any]:
        return {
            "opt": optimizer_state_dict(opt),
            "sched": scheduler_state_dict(sched) if sched is not None else {},
        }

    def _load_opt_sched(self, opt: Optimizer, sched: Optional[Any], state: Mapping[str, Any]) -> None:
        opt_state = state.get("opt", None)
        if opt_state is not None:
            load_optimizer_state_dict(opt, opt_state)

        if sched is not None:
            load_scheduler_state_dict(sched, state.get("sched", {}))

    def state_dict(self) -> Dict[str, Any]:
        """
        Serializable core state.

        Returns
        -------
        state : Dict[str, Any]
            - "update_calls": int
            - "opt": optimizer state
            - "sched": scheduler state ({} when no scheduler)
        """
        s: Dict[str, Any] = {"update_calls": int(self._update_calls)}
        s.update(self._save_opt_sched(self.opt, self.sched))
        return s

    def load_state_dict(self, state: Mapping[str, Any]) -> None:
        self._update_calls = int(state.get("update_calls", 0))
        self._load_opt_sched(self.opt, self.sched, state)

    # ---------------------------------------------------------------------
    # Main contract
    # ---------------------------------------------------------------------
    @abstractmethod
    def update_from_batch(self, batch: Any) -> Dict[str, float]:
        """
        Run one update step from a batch and return scalar metrics.
        """
        raise NotImplementedError
