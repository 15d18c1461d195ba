"""
Networks
====================

Network-builder contract, encoders and action distributions.

- base_networks
    ``ActorCriticNetwork`` capability contract, ``NetworkOutput``, MLP and
    convolutional encoders.
- actor_critic_networks
    ``SimpleActorCriticNetwork``: separate actor / critic towers over vector
    and visual inputs.
- distributions
    Log-variance diagonal Gaussian and masked multi-branch categorical.
"""

from __future__ import annotations

from .actor_critic_networks import LOG_VAR_MODES, SimpleActorCriticNetwork
from .base_networks import ActorCriticNetwork, MLPFeaturesExtractor, NetworkOutput, VisualEncoder
from .distributions import (
    LOG_EPS,
    BaseDistribution,
    DiagGaussianLogVarDistribution,
    MaskedMultiCategoricalDistribution,
)

__all__ = [
    "ActorCriticNetwork",
    "BaseDistribution",
    "DiagGaussianLogVarDistribution",
    "LOG_EPS",
    "LOG_VAR_MODES",
    "MLPFeaturesExtractor",
    "MaskedMultiCategoricalDistribution",
    "NetworkOutput",
    "SimpleActorCriticNetwork",
    "VisualEncoder",
]
