from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import torch as th

from ppo_model.common.policies.base_core import BaseCore
from ppo_model.common.policies.base_head import TensorBatch
from ppo_model.common.utils.common_utils import _to_column, _to_scalar


@dataclass
class PPOHyperParams:
    """
    Mutable PPO coefficients.

    One instance is owned by the model and shared by reference with its core;
    the core reads it at every update, so values may be annealed between
    calls (see :class:`~ppo_model.common.utils.schedule_utils.AnnealingSchedule`).
    """

    clip_epsilon: float = 0.2
    clip_value_loss: float = 0.2
    value_loss_weight: float = 1.0
    entropy_loss_weight: float = 5e-3


# =============================================================================
# Loss terms
# =============================================================================
def clipped_value_loss(
    values: th.Tensor,
    old_values: th.Tensor,
    target_values: th.Tensor,
    clip_value_loss: float,
) -> th.Tensor:
    """
    PPO value loss with clipping around the collection-time estimate::

        clipped = old + clip(new - old, -c, +c)
        loss    = mean(max((new - target)^2, (clipped - target)^2))

    All inputs are (B,) or (B, 1).
    """
    v = _to_column(values)
    v_old = _to_column(old_values)
    ret = _to_column(target_values)

    c = float(clip_value_loss)
    v_clipped = v_old + th.clamp(v - v_old, -c, c)
    return th.max((v - ret).pow(2), (v_clipped - ret).pow(2)).mean()


def clipped_surrogate_loss(
    log_probs: th.Tensor,
    old_log_probs: th.Tensor,
    advantages: th.Tensor,
    clip_epsilon: float,
) -> th.Tensor:
    """
    PPO-Clip policy loss::

        ratio = exp(new - old)
        loss  = -mean(min(ratio * adv, clip(ratio, 1 - eps, 1 + eps) * adv))

    The ratio is element-wise over (B, K) components (branches or action
    dimensions); the (B, 1) advantage is broadcast across components.
    """
    eps = float(clip_epsilon)
    adv = _to_column(advantages)
    ratio = th.exp(log_probs - old_log_probs)
    surr1 = ratio * adv
    surr2 = th.clamp(ratio, 1.0 - eps, 1.0 + eps) * adv
    return -th.min(surr1, surr2).mean()


def ppo_loss(
    policy_loss: th.Tensor,
    value_loss: th.Tensor,
    entropy: th.Tensor,
    hyperparams: PPOHyperParams,
) -> th.Tensor:
    """``policy + value_loss_weight * value - entropy_loss_weight * entropy``."""
    return (
        policy_loss
        + float(hyperparams.value_loss_weight) * value_loss
        - float(hyperparams.entropy_loss_weight) * entropy
    )


# =============================================================================
# Core
# =============================================================================
class PPOCore(BaseCore):
    """
    PPO update engine (one synchronous optimizer step per call).

    A single optimizer covers every network parameter (actor and critic);
    the joint loss is::

        total = policy + value_loss_weight * value - entropy_loss_weight * entropy

    Batch contract
    --------------
    :class:`TensorBatch` with:
      - vector_obs / visual_obs : raw observations (normalized here with the
        current statistics; the normalizer is not updated)
      - actions       : (B, K)
      - action_masks  : discrete only, one (B, K_b) tensor per branch
      - old_log_probs : (B, K)
      - target_values, old_values, advantages : (B, 1)

    Parameters
    ----------
    head : ActorCriticHead
    hyperparams : Optional[PPOHyperParams], default=None
        Shared coefficient object; a default instance is created if None.
    **opt_kwargs
        Optimizer / scheduler / clipping knobs, see :class:`BaseCore`.
    """

    def __init__(
        self,
        *,
        head: Any,
        hyperparams: Optional[PPOHyperParams] = None,
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
        super().__init__(
            head=head,
            optim_name=optim_name,
            lr=lr,
            weight_decay=weight_decay,
            betas=betas,
            eps=eps,
            sched_name=sched_name,
            total_steps=total_steps,
            warmup_steps=warmup_steps,
            min_lr_ratio=min_lr_ratio,
            step_size=step_size,
            sched_gamma=sched_gamma,
            max_grad_norm=max_grad_norm,
        )
        self.hyperparams = hyperparams if hyperparams is not None else PPOHyperParams()

    def _trainable_parameters(self):
        return self.head.network.parameters()

    # =============================================================================
    # Update
    # =============================================================================
    def update_from_batch(self, batch: TensorBatch) -> Dict[str, float]:
        """
        Perform ONE PPO minibatch update.

        Returns
        -------
        metrics : Dict[str, float]
            loss/total, loss/value, loss/policy, stats/entropy,
            stats/approx_kl, stats/clip_frac, stats/value_mean, stats/grad_norm
            (pre-clip norm, 0 when clipping is disabled), lr
        """
        if batch.old_log_probs is None or batch.target_values is None or batch.old_values is None:
            raise ValueError("PPO batch requires old_log_probs, target_values and old_values.")
        if batch.advantages is None:
            raise ValueError("PPO batch requires advantages.")

        hp = self.hyperparams
        clip_eps = float(hp.clip_epsilon)

        out = self.head.forward_network(batch.vector_obs, batch.visual_obs)
        dist = self.head.distribution(out, batch.action_masks)

        log_probs = dist.log_prob(batch.actions)
        entropy = dist.entropy()
        values = _to_column(out.value)

        policy_loss = clipped_surrogate_loss(log_probs, batch.old_log_probs, batch.advantages, clip_eps)
        value_loss = clipped_value_loss(values, batch.old_values, batch.target_values, hp.clip_value_loss)
        total_loss = ppo_loss(policy_loss, value_loss, entropy, hp)

        with th.no_grad():
            log_ratio = log_probs - batch.old_log_probs
            ratio = th.exp(log_ratio)
            approx_kl = (ratio - 1.0 - log_ratio).mean()
            clip_frac = (th.abs(ratio - 1.0) > clip_eps).float().mean()

        grad_norm = self._optimizer_step(total_loss)

        return {
            "loss/total": float(_to_scalar(total_loss)),
            "loss/value": float(_to_scalar(value_loss)),
            "loss/policy": float(_to_scalar(policy_loss)),
            "stats/entropy": float(_to_scalar(entropy)),
            "stats/approx_kl": float(_to_scalar(approx_kl)),
            "stats/clip_frac": float(_to_scalar(clip_frac)),
            "stats/value_mean": float(_to_scalar(values.mean())),
            "stats/grad_norm": float(grad_norm),
            "lr": self.lr,
        }
