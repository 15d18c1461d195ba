"""
Policies
====================

Building blocks shared by the model facades.

- base_head  : ActorCriticHead (network + normalizer + generator), TensorBatch
- base_core  : BaseCore (optimizer / scheduler / clipping / update counter)
- base_model : ModelMode, BaseRLModel (gating, epochs, logging, persistence)
"""

from __future__ import annotations

from .base_core import BaseCore
from .base_head import ActorCriticHead, TensorBatch
from .base_model import CHECKPOINT_FORMAT_VERSION, BaseRLModel, ModelMode

__all__ = [
    "ActorCriticHead",
    "BaseCore",
    "BaseRLModel",
    "CHECKPOINT_FORMAT_VERSION",
    "ModelMode",
    "TensorBatch",
]
