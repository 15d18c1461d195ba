from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import math

import torch as th
import torch.nn.functional as F


# Floor added inside log() and to mask normalizers.
LOG_EPS = 1e-8
LOG_2PI = math.log(2.0 * math.pi)
LOG_2PIE = math.log(2.0 * math.pi * math.e)


# =============================================================================
# Base interface
# =============================================================================
class BaseDistribution(ABC):
    """
    Base interface for policy action distributions.

    Contract
    --------
    - `sample()`   : draw actions without gradient, shape (B, K).
    - `log_prob()` : per-component log-probabilities, shape (B, K). Components
      are action dimensions (continuous) or branches (discrete); they are
      *not* summed, the PPO ratio is taken element-wise.
    - `entropy()`  : batch-averaged scalar (0-d tensor).
    - `mode()`     : deterministic action (mean / argmax), shape (B, K).

    Randomness is drawn from the ``generator`` passed at construction
    (``None`` means torch's global RNG).
    """

    def __init__(self, generator: Optional[th.Generator] = None) -> None:
        self.generator = generator

    @abstractmethod
    def sample(self) -> th.Tensor:
        raise NotImplementedError

    @abstractmethod
    def log_prob(self, actions: th.Tensor) -> th.Tensor:
        raise NotImplementedError

    @abstractmethod
    def entropy(self) -> th.Tensor:
        raise NotImplementedError

    @abstractmethod
    def mode(self) -> th.Tensor:
        raise NotImplementedError


# =============================================================================
# Continuous: diagonal Gaussian parameterized by log-variance
# =============================================================================
class DiagGaussianLogVarDistribution(BaseDistribution):
    """
    Diagonal Gaussian over continuous actions, parameterized by log-variance.

    Parameters
    ----------
    mean : torch.Tensor
        Mean, shape (B, A).
    log_var : torch.Tensor
        Log-variance, shape (B, A) or (A,) (broadcast over the batch).
        It is not clamped.
    generator : Optional[torch.Generator], default=None
        Random source for the standard-normal draws.

    Notes
    -----
    Per-dimension log density::

        log p(a) = -0.5*ln(2*pi) - 0.5*log_var - (a - mean)^2 / (2*exp(log_var))

    which is -0.9189385 at ``a = mean`` with ``log_var = 0``.
    """

    def __init__(self, mean: th.Tensor, log_var: th.Tensor, generator: Optional[th.Generator] = None) -> None:
        super().__init__(generator)
        self.mean = mean
        self.log_var = log_var.expand_as(mean) if log_var.dim() < mean.dim() else log_var

    @property
    def variance(self) -> th.Tensor:
        return th.exp(self.log_var)

    @property
    def stddev(self) -> th.Tensor:
        return th.exp(0.5 * self.log_var)

    @th.no_grad()
    def sample(self) -> th.Tensor:
        """``mean + sqrt(exp(log_var)) * eps`` with ``eps ~ N(0, 1)``, shape (B, A)."""
        eps = th.randn(
            self.mean.shape,
            generator=self.generator,
            device=self.mean.device,
            dtype=self.mean.dtype,
        )
        return self.mean + self.stddev * eps

    def log_prob(self, actions: th.Tensor) -> th.Tensor:
        if actions.dim() == 1:
            actions = actions.unsqueeze(0)
        actions = actions.to(dtype=self.mean.dtype)
        sq = (actions - self.mean).pow(2)
        return -0.5 * LOG_2PI - 0.5 * self.log_var - sq / (2.0 * th.exp(self.log_var))

    def entropy(self) -> th.Tensor:
        """Mean over dimensions and batch of ``0.5 * (ln(2*pi*e) + log_var)``."""
        return (0.5 * (LOG_2PIE + self.log_var)).mean()

    def mode(self) -> th.Tensor:
        return self.mean


# =============================================================================
# Discrete: independent masked categorical branches
# =============================================================================
class MaskedMultiCategoricalDistribution(BaseDistribution):
    """
    Product of independent categorical branches with optional action masks.

    Parameters
    ----------
    logits : Sequence[torch.Tensor]
        One raw logit tensor per branch, each (B, K_b).
    masks : Optional[Sequence[torch.Tensor]], default=None
        One {0,1} tensor per branch, each (B, K_b). ``None`` (or a ``None``
        entry) permits every action of that branch.
    generator : Optional[torch.Generator], default=None
        Random source for categorical draws.

    Masking
    -------
    For each branch::

        p = softmax(logits) * mask
        p = p / (sum(p) + 1e-8)

    so a masked index has exactly zero probability. A branch with every index
    masked yields an all-zero ``p`` (log-probs ``log(1e-8)``); sampling in that
    row falls back to a uniform draw instead of failing.
    """

    def __init__(
        self,
        logits: Sequence[th.Tensor],
        masks: Optional[Sequence[Optional[th.Tensor]]] = None,
        generator: Optional[th.Generator] = None,
    ) -> None:
        super().__init__(generator)
        self.logits = list(logits)
        if len(self.logits) == 0:
            raise ValueError("At least one action branch is required.")

        if masks is None:
            masks = [None] * len(self.logits)
        if len(masks) != len(self.logits):
            raise ValueError(f"Expected {len(self.logits)} masks (one per branch), got {len(masks)}")

        self.probs: List[th.Tensor] = []
        for lg, mk in zip(self.logits, masks):
            p = F.softmax(lg, dim=-1)
            if mk is not None:
                if mk.shape != lg.shape:
                    raise ValueError(f"Mask shape {tuple(mk.shape)} does not match logits shape {tuple(lg.shape)}")
                p = p * mk.to(dtype=p.dtype)
            p = p / (p.sum(dim=-1, keepdim=True) + LOG_EPS)
            self.probs.append(p)

    @property
    def n_branches(self) -> int:
        return len(self.probs)

    @property
    def normalized_log_probs(self) -> List[th.Tensor]:
        """Per-branch ``log(p + 1e-8)``, each (B, K_b)."""
        return [th.log(p + LOG_EPS) for p in self.probs]

    @th.no_grad()
    def sample(self) -> th.Tensor:
        """One draw per branch, shape (B, n_branches), dtype long."""
        cols = []
        for p in self.probs:
            live = p.sum(dim=-1, keepdim=True) > 0.0
            draw_p = th.where(live, p, th.ones_like(p))
            idx = th.multinomial(draw_p, num_samples=1, generator=self.generator)
            cols.append(idx)
        return th.cat(cols, dim=-1)

    def log_prob(self, actions: th.Tensor) -> th.Tensor:
        """
        Gather the normalized log-probability of each taken index.

        Parameters
        ----------
        actions : torch.Tensor
            Branch indices, shape (B, n_branches). Float inputs are rounded.

        Returns
        -------
        log_prob : torch.Tensor
            Shape (B, n_branches).
        """
        if actions.dim() == 1:
            actions = actions.unsqueeze(-1)
        if actions.shape[-1] != self.n_branches:
            raise ValueError(f"Expected actions with {self.n_branches} branch columns, got shape={tuple(actions.shape)}")
        idx = th.round(actions).long() if actions.is_floating_point() else actions.long()

        out = []
        for b, logp in enumerate(self.normalized_log_probs):
            out.append(logp.gather(-1, idx[:, b : b + 1]))
        return th.cat(out, dim=-1)

    def entropy(self) -> th.Tensor:
        """Sum over branches of the batch mean of ``-sum(p * log(p + 1e-8))``."""
        total = self.probs[0].new_zeros(())
        for p in self.probs:
            total = total + (-(p * th.log(p + LOG_EPS)).sum(dim=-1)).mean()
        return total

    def mode(self) -> th.Tensor:
        return th.cat([th.argmax(p, dim=-1, keepdim=True) for p in self.probs], dim=-1)
