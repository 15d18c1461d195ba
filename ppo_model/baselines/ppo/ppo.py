from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional, Sequence, Tuple, Union

import torch as th
import torch.nn as nn

from ppo_model.common.networks.actor_critic_networks import SimpleActorCriticNetwork
from ppo_model.common.networks.base_networks import ActorCriticNetwork
from ppo_model.common.policies.base_head import ActorCriticHead
from ppo_model.common.utils.network_utils import _resolve_activation_fn

from .core import PPOCore, PPOHyperParams
from .model import PPOModel


def ppo(
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
    # PPO hyperparameters
    # -------------------------------------------------------------------------
    clip_epsilon: float = 0.2,
    clip_value_loss: float = 0.2,
    value_loss_weight: float = 1.0,
    entropy_loss_weight: float = 5e-3,
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
) -> PPOModel:
    """
    Build a :class:`PPOModel`.

    This is a config-free builder. It wires together the three layers of the
    model:

    1) **Head** (:class:`ActorCriticHead`)
       - actor-critic network (``SimpleActorCriticNetwork`` unless ``network``
         is given)
       - running observation normalizer (vector input only)
       - sampling ``torch.Generator``

    2) **Core** (:class:`PPOCore`), only when ``training_enabled=True``
       - clipped surrogate + clipped value loss + entropy bonus
       - one optimizer over all network parameters, optional LR scheduler

    3) **Facade** (:class:`PPOModel`)
       - value / action / probability / train-batch entry points

    Parameters
    ----------
    action_type : {"continuous", "discrete"}
    action_sizes : Sequence[int]
        Branch cardinalities (discrete) or ``(action_dim,)`` (continuous).
    vector_obs_dim : int, default=0
        Width of the vector observation; 0 means no vector input.
    visual_obs_shapes : Sequence[(H, W, C)], default=()
        Shapes of the visual inputs.
    device : str | torch.device, default="cpu"

    network : Optional[ActorCriticNetwork], default=None
        Pre-built network honoring the actor-critic contract. When given, the
        architecture arguments below are ignored, and the I/O arguments above
        must match the network (``ValueError`` otherwise).
    actor_hidden_sizes, critic_hidden_sizes : tuple[int, ...], default=(128,)
    activation_fn : Any, default=torch.nn.ReLU
        Activation class or name ("relu", "tanh", ...).
    log_var_mode : {"param", "layer"}, default="param"
        Continuous variance parameterization. "none" is rejected.
    log_var_init : float, default=0.0
    hidden_init_scale : float, default=1.0
    output_init_scale : float, default=0.01

    use_input_normalization : bool, default=True
    normalizer_clip : float, default=5.0
    seed : Optional[int], default=None
        Seed of the model's own sampling generator.
    generator : Optional[torch.Generator], default=None
        Injected sampling generator (takes precedence over ``seed``).

    clip_epsilon, clip_value_loss, value_loss_weight, entropy_loss_weight : float
        Initial :class:`PPOHyperParams`.

    training_enabled : bool, default=True
        If False no core is built and the train entry points raise.
    optim_name : str, default="adam"
    lr : float, default=3e-4
    weight_decay : float, default=0.0
    max_grad_norm : float, default=0.0
        0 disables gradient clipping.
    sched_name : str, default="none"
    total_steps, warmup_steps, min_lr_ratio, step_size, sched_gamma
        Scheduler knobs.

    logger : Optional[Logger], default=None
        Receives training metrics; the builder configuration is written to
        its run directory as ``config.json``.

    Returns
    -------
    PPOModel

    Raises
    ------
    RuntimeError
        If the (continuous) network has no log-variance output.
    ValueError
        On invalid sizes, modes or optimizer / scheduler names, or when a
        pre-built network disagrees with the I/O arguments.
    TypeError
        If ``network`` does not implement the actor-critic contract.
    """
    # -------------------------------------------------------------------------
    # 1) Head
    # -------------------------------------------------------------------------
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

    if not isinstance(network, ActorCriticNetwork):
        raise TypeError(f"network must be an ActorCriticNetwork, got {type(network).__name__}")
    network.check_io(
        action_type=action_type,
        action_sizes=action_sizes,
        vector_obs_dim=vector_obs_dim,
        visual_obs_shapes=visual_obs_shapes,
    )
    if not network.is_discrete and not network.has_log_var:
        raise RuntimeError("PPO requires a continuous network with a log-variance output (log_var_mode != 'none').")

    head = ActorCriticHead(
        network=network,
        use_input_normalization=bool(use_input_normalization),
        normalizer_clip=float(normalizer_clip),
        device=device,
        generator=generator,
        seed=seed,
        owner="PPOModel",
    )

    hyperparams = PPOHyperParams(
        clip_epsilon=float(clip_epsilon),
        clip_value_loss=float(clip_value_loss),
        value_loss_weight=float(value_loss_weight),
        entropy_loss_weight=float(entropy_loss_weight),
    )

    # -------------------------------------------------------------------------
    # 2) Core
    # -------------------------------------------------------------------------
    core = None
    if training_enabled:
        core = PPOCore(
            head=head,
            hyperparams=hyperparams,
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

    # -------------------------------------------------------------------------
    # 3) Facade
    # -------------------------------------------------------------------------
    config = {
        "mode": "ppo",
        "head": head.export_kwargs(),
        "hyperparams": asdict(hyperparams),
        "training_enabled": bool(training_enabled),
        "optim": {
            "name": str(optim_name),
            "lr": float(lr),
            "weight_decay": float(weight_decay),
            "max_grad_norm": float(max_grad_norm),
            "sched_name": str(sched_name),
            "total_steps": int(total_steps),
            "warmup_steps": int(warmup_steps),
            "min_lr_ratio": float(min_lr_ratio),
        },
    }
    if logger is not None:
        logger.dump_config(config)

    return PPOModel(
        head=head,
        core=core,
        hyperparams=hyperparams,
        logger=logger,
        training_enabled=bool(training_enabled),
        config=config,
    )
