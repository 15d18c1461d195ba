from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Tuple

import torch as th
import torch.nn.functional as F

from ppo_model.common.networks.distributions import MaskedMultiCategoricalDistribution
from ppo_model.common.policies.base_core import BaseCore
from ppo_model.common.policies.base_head import TensorBatch
from ppo_model.common.utils.common_utils import _to_scalar


# =============================================================================
# Loss terms
# =============================================================================
def gaussian_imitation_loss(mean: th.Tensor, log_var: th.Tensor, labels: th.Tensor) -> th.Tensor:
    """
    Gaussian negative log-likelihood without the constant term::

        mean(0.5 * (label - mean)^2 / exp(log_var) + 0.5 * log_var)
    """
    labels = labels.to(dtype=mean.dtype)
    return (0.5 * (labels - mean).pow(2) / th.exp(log_var) + 0.5 * log_var).mean()


def categorical_imitation_loss(
    logits: Sequence[th.Tensor],
    labels: th.Tensor,
    masks: Optional[Sequence[th.Tensor]] = None,
) -> th.Tensor:
    """
    Sum over branches of the batch-mean cross-entropy ``-log p(label)``
    against the masked, normalized distribution.
    """
    dist = MaskedMultiCategoricalDistribution(logits, masks)
    return -dist.log_prob(labels).mean(dim=0).sum()


# =============================================================================
# Core
# =============================================================================
class SupervisedCore(BaseCore):
    """
    Behaviour-cloning update engine for the actor.

    Losses
    ------
    - discrete   : :func:`categorical_imitation_loss`
    - continuous : :func:`gaussian_imitation_loss` when the network has a
      log-variance, otherwise MSE against the mean

    Only ``network.actor_parameters()`` are handed to the optimizer; the
    critic is left untouched.
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

    def _trainable_parameters(self):
        return self.head.network.actor_parameters()

    def compute_loss(self, batch: TensorBatch) -> th.Tensor:
        out = self.head.forward_network(batch.vector_obs, batch.visual_obs)
        if self.head.is_discrete:
            return categorical_imitation_loss(out.logits, batch.actions, batch.action_masks)
        if out.log_var is not None:
            return gaussian_imitation_loss(out.mean, out.log_var, batch.actions)
        return F.mse_loss(out.mean, batch.actions.to(dtype=out.mean.dtype))

    def update_from_batch(self, batch: TensorBatch) -> Dict[str, float]:
        loss = self.compute_loss(batch)
        self._optimizer_step(loss)
        return {
            "loss/total": float(_to_scalar(loss)),
            "lr": self.lr,
        }
