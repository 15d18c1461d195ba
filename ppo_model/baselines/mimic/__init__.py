"""
Mimic
=======

Supervised ("mimic") training of the actor from labelled actions.

Public API
----------
mimic : callable
    Config-free builder: ``ActorCriticHead`` + ``SupervisedCore`` + ``SupervisedModel``.

SupervisedModel : BaseRLModel
    Facade with action / train-batch entry points.

SupervisedCore : BaseCore
    Actor-only optimizer step on the imitation loss.
"""

from __future__ import annotations

from .core import SupervisedCore, categorical_imitation_loss, gaussian_imitation_loss
from .mimic import mimic
from .model import SupervisedModel

__all__ = [
    "mimic",
    "SupervisedModel",
    "SupervisedCore",
    "categorical_imitation_loss",
    "gaussian_imitation_loss",
]
