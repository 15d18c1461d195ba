from __future__ import annotations

from typing import Any, Dict

import torch as th
import torch.nn as nn


class RunningObservationNormalizer(nn.Module):
    """
    Online observation normalizer driven by per-batch mean updates.

    State
    -----
    Three buffers are registered so that they travel with ``state_dict()``
    and ``.to(device)``:

    - ``running_mean``     : (F,), seeded to 0
    - ``running_variance`` : (F,), seeded to 1
    - ``step_count``       : scalar, seeded to 0

    Update rule (one call per observed batch)
    -----------------------------------------
    With ``m = mean(batch, axis=0)``::

        new_mean = mean + (m - mean) / (step + 1)
        new_var  = var + (m - new_mean) * (m - mean)
        step    += 1

    Normalization
    -------------
    ::

        out = clip((x - mean) / sqrt(var / (step + 1)), -clip, +clip)

    ``step + 1 >= 1`` so the denominator never divides by a zero step count.
    The effective variance ``var / (step + 1)`` shrinks toward 0 for
    constant inputs, so the normalized output of a constant stream goes to 0.

    Parameters
    ----------
    feature_dim : int
        Width F of the vector observation.
    clip : float, default=5.0
        Symmetric output clip range.

    Notes
    -----
    Buffers are updated in place; they are never re-bound, so references held
    elsewhere (e.g., optimizers, exported state) stay valid.
    """

    def __init__(self, feature_dim: int, *, clip: float = 5.0) -> None:
        super().__init__()
        self.feature_dim = int(feature_dim)
        if self.feature_dim <= 0:
            raise ValueError(f"feature_dim must be > 0, got {feature_dim}")
        self.clip = float(clip)
        if self.clip <= 0.0:
            raise ValueError(f"clip must be > 0, got {clip}")

        self.register_buffer("running_mean", th.zeros(self.feature_dim, dtype=th.float32))
        self.register_buffer("running_variance", th.ones(self.feature_dim, dtype=th.float32))
        self.register_buffer("step_count", th.zeros((), dtype=th.float32))

    # ------------------------------------------------------------------
    # Read-only API
    # ------------------------------------------------------------------
    @property
    def mean(self) -> th.Tensor:
        return self.running_mean

    @property
    def variance(self) -> th.Tensor:
        """Effective variance used for scaling: ``running_variance / (step + 1)``."""
        return self.running_variance / (self.step_count + 1.0)

    @property
    def steps(self) -> int:
        return int(self.step_count.item())

    def normalize(self, x: th.Tensor) -> th.Tensor:
        """
        Normalize a (B, F) batch with the current statistics (no update).
        """
        if x.shape[-1] != self.feature_dim:
            raise ValueError(f"Expected last dim {self.feature_dim}, got shape={tuple(x.shape)}")
        out = (x - self.running_mean) / th.sqrt(self.variance)
        return th.clamp(out, -self.clip, self.clip)

    def forward(self, x: th.Tensor) -> th.Tensor:
        return self.normalize(x)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    @th.no_grad()
    def update(self, x: th.Tensor) -> None:
        """
        Apply one incremental moment update with the batch mean of ``x``.

        Parameters
        ----------
        x : torch.Tensor
            Vector observations, shape (B, F).
        """
        if x.dim() != 2 or x.shape[-1] != self.feature_dim:
            raise ValueError(f"Expected (B, {self.feature_dim}), got shape={tuple(x.shape)}")

        batch_mean = x.detach().to(self.running_mean.dtype).mean(dim=0)
        old_mean = self.running_mean.clone()
        new_mean = old_mean + (batch_mean - old_mean) / (self.step_count + 1.0)
        new_var = self.running_variance + (batch_mean - new_mean) * (batch_mean - old_mean)

        self.running_mean.copy_(new_mean)
        self.running_variance.copy_(new_var)
        self.step_count.add_(1.0)

    @th.no_grad()
    def reset(self) -> None:
        """Restore the seed statistics (mean 0, variance 1, step 0)."""
        self.running_mean.zero_()
        self.running_variance.fill_(1.0)
        self.step_count.zero_()

    def statistics(self) -> Dict[str, Any]:
        """CPU copies of the raw statistics (for inspection / logging)."""
        return {
            "running_mean": self.running_mean.detach().cpu().clone(),
            "running_variance": self.running_variance.detach().cpu().clone(),
            "step_count": int(self.step_count.item()),
        }

    def extra_repr(self) -> str:
        return f"feature_dim={self.feature_dim}, clip={self.clip}"
