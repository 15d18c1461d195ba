"""
ppo_model

PPO actor-critic model core with a supervised ("mimic") variant.

Usage
-----
from ppo_model import build_model

model = build_model("ppo", action_type="continuous", action_sizes=(2,), vector_obs_dim=8)
actions, log_probs = model.evaluate_action(obs)
"""

from __future__ import annotations

from importlib import metadata as _metadata
from typing import Any, Union

from .baselines.mimic import SupervisedCore, SupervisedModel, mimic
from .baselines.ppo import (
    PPOCore,
    PPOHyperParams,
    PPOModel,
    clipped_surrogate_loss,
    clipped_value_loss,
    ppo,
    ppo_loss,
)
from .common.buffers import TrajectoryBatch, TrajectoryBuffer, iterate_minibatches, make_trajectory_batch
from .common.loggers import Logger, build_logger
from .common.networks import ActorCriticNetwork, NetworkOutput, SimpleActorCriticNetwork
from .common.normalizers import RunningObservationNormalizer
from .common.policies import ActorCriticHead, BaseRLModel, ModelMode
from .common.utils import ActionSpaceKind, AnnealingSchedule, spec_kwargs

try:
    __version__ = _metadata.version("ppo-model")
except _metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"


def build_model(mode: Union[str, ModelMode] = "ppo", **kwargs: Any) -> BaseRLModel:
    """
    Build a model facade for the requested mode.

    Parameters
    ----------
    mode : {"ppo", "supervised", "mimic"} or ModelMode, default="ppo"
    **kwargs : Any
        Forwarded to :func:`ppo` or :func:`mimic`.

    Returns
    -------
    model : PPOModel or SupervisedModel

    Raises
    ------
    ValueError
        On an unknown mode.
    """
    m = ModelMode.coerce(mode)
    if m is ModelMode.PPO:
        return ppo(**kwargs)
    return mimic(**kwargs)


__all__ = [
    "ActionSpaceKind",
    "ActorCriticHead",
    "ActorCriticNetwork",
    "AnnealingSchedule",
    "BaseRLModel",
    "Logger",
    "ModelMode",
    "NetworkOutput",
    "PPOCore",
    "PPOHyperParams",
    "PPOModel",
    "RunningObservationNormalizer",
    "SimpleActorCriticNetwork",
    "SupervisedCore",
    "SupervisedModel",
    "TrajectoryBatch",
    "TrajectoryBuffer",
    "build_logger",
    "build_model",
    "clipped_surrogate_loss",
    "clipped_value_loss",
    "iterate_minibatches",
    "make_trajectory_batch",
    "mimic",
    "ppo",
    "ppo_loss",
    "spec_kwargs",
]
