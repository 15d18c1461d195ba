"""
Baselines
====================

- ppo   : PPO actor-critic model (PPOModel, PPOCore, ppo builder)
- mimic : supervised imitation model (SupervisedModel, SupervisedCore, mimic builder)
"""

from __future__ import annotations

from .mimic import SupervisedCore, SupervisedModel, mimic
from .ppo import PPOCore, PPOHyperParams, PPOModel, ppo

__all__ = [
    "PPOCore",
    "PPOHyperParams",
    "PPOModel",
    "SupervisedCore",
    "SupervisedModel",
    "mimic",
    "ppo",
]
