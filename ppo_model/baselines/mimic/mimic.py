from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple, Union

import torch as th
import torch.nn as nn

from ppo_model.common.networks.actor_critic_networks import SimpleActorCriticNetwork
from ppo_model.common.networks.base_networks import ActorCriticNetwork
from ppo_model.common.policies.base_head import ActorCriticHead
from ppo_model.common.utils.network_utils import _resolve_activation_fn

from .core import SupervisedCore
from .model import SupervisedModel


def mimic(
    *,
    # -------------------------------------------------------------------------
    # Environment I/O
    # -------------------------------------------------------------------------
    action_type: str,
    action_sizes: Sequence[int],
    vector_obs_dim: int = 0,
    visual_obs_shapes: Sequence[Sequence[int]] = (),
    device: Union[str, th.device] = "cpu",
    # -------------------------------------------------------------------------
    # Network
    # -------------------------------------------------------------------------
    network: Optional[ActorCriticNetwork] = None,
    actor_hidden_sizes: Tuple[int, ...] = (128,),
    critic_hidden_sizes: Tuple[int, ...] = (128,),
    activation_fn: Any = nn.ReLU,
    log_var_mode: str = "param",
    log_var_init: float = 0.0,
    hidden_init_scale: float = 1.0,
    output_init_scale: float = 0.01,
    # -------------------------------------------------------------------------
    # Head
    # -------------------------------------------------------------------------
    use_input_normalization: bool = True,
    normalizer_clip: float = 5.0,
    seed: Optional[int] = None,
    generator: Optional[th.Generator] = None,
    # -------------------------------------------------------------------------
    # Optimizer / scheduler
    # -------------------------------------------------------------------------
    training_enabled: bool = True,
    optim_name: str = "adam",
    lr: float = 3e-4,
    weight_decay: float = 0.0,
    max_grad_norm: float = 0.0,
    sched_name: str = "none",
    total_steps: int = 0,
    warmup_steps: int = 0,
    min_lr_ratio: float = 0.0,
    step_size: int = 1000,
    sched_gamma: float = 0.99,
    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    logger: Optional[Any] = None,
) -> SupervisedModel:
    """
    Build a :class:`SupervisedModel` (behaviour cloning of the actor).

    Arguments mirror :func:`ppo_model.baselines.ppo.ppo` minus the PPO
    coefficients. Unlike PPO, ``log_var_mode="none"`` is accepted for
    continuous spaces; the loss is then the MSE against the mean.

    Returns
    -------
    SupervisedModel
    """
    if network is None:
        network = SimpleActorCriticNetwork(
            action_type=action_type,
            action_sizes=tuple(int(s) for s in action_sizes),
            vector_obs_dim=int(vector_obs_dim),
            visual_obs_shapes=tuple(tuple(int(s) for s in shp) for shp in visual_obs_shapes),
            actor_hidden_sizes=tuple(int(h) for h in actor_hidden_sizes),
            critic_hidden_sizes=tuple(int(h) for h in critic_hidden_sizes),
            activation_fn=_resolve_activation_fn(activation_fn),
            log_var_mode=str(log_var_mode),
            log_var_init=float(log_var_init),
            hidden_init_scale=float(hidden_init_scale),
            output_init_scale=float(output_init_scale),
        )
    elif not isinstance(network, ActorCriticNetwork):
        raise TypeError(f"network must be an ActorCriticNetwork, got {type(network).__name__}")
    network.check_io(
        action_type=action_type,
        action_sizes=action_sizes,
        vector_obs_dim=vector_obs_dim,
        visual_obs_shapes=visual_obs_shapes,
    )

    head = ActorCriticHead(
        network=network,
        use_input_normalization=bool(use_input_normalization),
        normalizer_clip=float(normalizer_clip),
        device=device,
        generator=generator,
        seed=seed,
        owner="SupervisedModel",
    )

    core = None
    if training_enabled:
        core = SupervisedCore(
            head=head,
            optim_name=str(optim_name),
            lr=float(lr),
            weight_decay=float(weight_decay),
            max_grad_norm=float(max_grad_norm),
            sched_name=str(sched_name),
            total_steps=int(total_steps),
            warmup_steps=int(warmup_steps),
            min_lr_ratio=float(min_lr_ratio),
            step_size=int(step_size),
            sched_gamma=float(sched_gamma),
        )

    config = {
        "mode": "supervised",
        "head": head.export_kwargs(),
        "training_enabled": bool(training_enabled),
        "optim": {
            "name": str(optim_name),
            "lr": float(lr),
            "weight_decay": float(weight_decay),
            "max_grad_norm": float(max_grad_norm),
            "sched_name": str(sched_name),
            "total_steps": int(total_steps),
        },
    }
    if logger is not None:
        logger.dump_config(config)

    return SupervisedModel(
        head=head,
        core=core,
        logger=logger,
        training_enabled=bool(training_enabled),
        config=config,
    )
