"""
PPO
=======

Public API for Proximal Policy Optimization over continuous or multi-branch
discrete action spaces.

Public API
----------
ppo : callable
    Config-free builder: ``ActorCriticHead`` + ``PPOCore`` + ``PPOModel``.

PPOModel : BaseRLModel
    Facade with value / action / probability / train-batch entry points.

PPOCore : BaseCore
    Update engine: clipped surrogate, clipped value loss, entropy bonus, one
    optimizer over all network parameters.

PPOHyperParams : dataclass
    Mutable coefficients shared by model and core.

clipped_surrogate_loss, clipped_value_loss, ppo_loss : callable
    Pure loss terms.

Examples
--------
Build a model::

    from ppo_model.baselines.ppo import ppo
    model = ppo(action_type="discrete", action_sizes=(3,), vector_obs_dim=8)
"""

from __future__ import annotations

from .core import PPOCore, PPOHyperParams, clipped_surrogate_loss, clipped_value_loss, ppo_loss
from .model import PPOModel
from .ppo import ppo

__all__ = [
    "ppo",
    "PPOModel",
    "PPOCore",
    "PPOHyperParams",
    "clipped_surrogate_loss",
    "clipped_value_loss",
    "ppo_loss",
]
