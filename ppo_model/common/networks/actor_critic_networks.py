from __future__ import annotations

from itertools import chain
from typing import Iterator, List, Optional, Sequence, Type

import torch as th
import torch.nn as nn

from .base_networks import ActorCriticNetwork, MLPFeaturesExtractor, NetworkOutput, VisualEncoder
from ..utils.network_utils import _scaled_xavier_init, _validate_hidden_sizes
from ..utils.space_utils import ActionSpaceKind


LOG_VAR_MODES = ("param", "layer", "none")


class _ObservationTower(nn.Module):
    """
    Encoder for one tower (actor or critic).

    The vector observation goes through an MLP; each visual input goes
    through its own :class:`VisualEncoder`. Features are concatenated in the
    order [vector, visual_0, visual_1, ...].
    """

    def __init__(
        self,
        *,
        vector_obs_dim: int,
        visual_obs_shapes: Sequence[Sequence[int]],
        hidden_sizes: Sequence[int],
        activation_fn: Type[nn.Module],
    ) -> None:
        super().__init__()
        self.vector_encoder: Optional[MLPFeaturesExtractor] = None
        out_dim = 0
        if int(vector_obs_dim) > 0:
            self.vector_encoder = MLPFeaturesExtractor(int(vector_obs_dim), hidden_sizes, activation_fn)
            out_dim += self.vector_encoder.out_dim

        self.visual_encoders = nn.ModuleList(
            [VisualEncoder(tuple(shp), hidden_sizes, activation_fn) for shp in visual_obs_shapes]
        )
        out_dim += sum(enc.out_dim for enc in self.visual_encoders)
        self.out_dim = int(out_dim)

    def forward(self, vector_obs: Optional[th.Tensor], visual_obs: Sequence[th.Tensor]) -> th.Tensor:
        feats: List[th.Tensor] = []
        if self.vector_encoder is not None:
            feats.append(self.vector_encoder(vector_obs))
        for enc, img in zip(self.visual_encoders, visual_obs):
            feats.append(enc(img))
        return feats[0] if len(feats) == 1 else th.cat(feats, dim=-1)


class SimpleActorCriticNetwork(ActorCriticNetwork):
    """
    Actor-critic network with separate actor and critic encoders.

    Architecture
    ------------
    Actor tower  : vector MLP + per-visual conv encoders -> concat
        - discrete   : Linear(sum(action_sizes)) split into per-branch logits
        - continuous : mean = Linear(A); log-variance per ``log_var_mode``
    Critic tower : same encoder layout (independent weights) -> Linear(1)

    Parameters
    ----------
    action_type : {"continuous", "discrete"} or ActionSpaceKind
        Action-space family.
    action_sizes : Sequence[int]
        Per-branch cardinalities (discrete) or ``(action_dim,)`` (continuous).
    vector_obs_dim : int, default=0
        Vector observation width; 0 disables the vector input.
    visual_obs_shapes : Sequence[(H, W, C)], default=()
        Shapes of visual inputs (NHWC per batch).
    actor_hidden_sizes : Sequence[int], default=(128,)
        Dense layer widths of the actor encoders.
    critic_hidden_sizes : Sequence[int], default=(128,)
        Dense layer widths of the critic encoders.
    activation_fn : type[nn.Module], default=nn.ReLU
        Dense-layer activation (conv layers use ELU).
    log_var_mode : {"param", "layer", "none"}, default="param"
        Continuous only.
        - "param": state-independent trainable vector initialized to ``log_var_init``
        - "layer": Linear head on the actor features
        - "none" : no variance output (supervised regression only)
    log_var_init : float, default=0.0
        Initial log-variance for ``log_var_mode="param"``.
    hidden_init_scale : float, default=1.0
        Xavier-uniform gain is ``sqrt(scale)`` for hidden / encoder layers.
    output_init_scale : float, default=0.01
        Xavier-uniform gain is ``sqrt(scale)`` for policy and value outputs.

    Raises
    ------
    ValueError
        On missing modalities, invalid sizes or an unknown ``log_var_mode``.
    """

    def __init__(
        self,
        *,
        action_type: ActionSpaceKind,
        action_sizes: Sequence[int],
        vector_obs_dim: int = 0,
        visual_obs_shapes: Sequence[Sequence[int]] = (),
        actor_hidden_sizes: Sequence[int] = (128,),
        critic_hidden_sizes: Sequence[int] = (128,),
        activation_fn: Type[nn.Module] = nn.ReLU,
        log_var_mode: str = "param",
        log_var_init: float = 0.0,
        hidden_init_scale: float = 1.0,
        output_init_scale: float = 0.01,
    ) -> None:
        super().__init__(
            action_type=action_type,
            action_sizes=action_sizes,
            vector_obs_dim=vector_obs_dim,
            visual_obs_shapes=visual_obs_shapes,
        )
        self.actor_hidden_sizes = _validate_hidden_sizes(actor_hidden_sizes)
        self.critic_hidden_sizes = _validate_hidden_sizes(critic_hidden_sizes)
        self.activation_fn = activation_fn

        mode = str(log_var_mode).lower().strip()
        if mode not in LOG_VAR_MODES:
            raise ValueError(f"Unknown log_var_mode: {log_var_mode!r} (expected one of {LOG_VAR_MODES})")
        self.log_var_mode = mode

        # -------------------------------------------------------------
        # Encoders
        # -------------------------------------------------------------
        self.actor_encoder = _ObservationTower(
            vector_obs_dim=self.vector_obs_dim,
            visual_obs_shapes=self.visual_obs_shapes,
            hidden_sizes=self.actor_hidden_sizes,
            activation_fn=activation_fn,
        )
        self.critic_encoder = _ObservationTower(
            vector_obs_dim=self.vector_obs_dim,
            visual_obs_shapes=self.visual_obs_shapes,
            hidden_sizes=self.critic_hidden_sizes,
            activation_fn=activation_fn,
        )

        # -------------------------------------------------------------
        # Heads
        # -------------------------------------------------------------
        a_dim = self.actor_encoder.out_dim
        self.log_var_layer: Optional[nn.Linear] = None
        self.log_var_param: Optional[nn.Parameter] = None

        if self.is_discrete:
            self.policy_head = nn.Linear(a_dim, int(sum(self.action_sizes)))
        else:
            action_dim = self.action_sizes[0]
            self.policy_head = nn.Linear(a_dim, action_dim)
            if mode == "param":
                self.log_var_param = nn.Parameter(th.full((action_dim,), float(log_var_init)))
            elif mode == "layer":
                self.log_var_layer = nn.Linear(a_dim, action_dim)
            self.has_log_var = mode != "none"

        self.value_head = nn.Linear(self.critic_encoder.out_dim, 1)

        # -------------------------------------------------------------
        # Initialization
        # -------------------------------------------------------------
        hidden_init = _scaled_xavier_init(hidden_init_scale)
        output_init = _scaled_xavier_init(output_init_scale)
        self.actor_encoder.apply(hidden_init)
        self.critic_encoder.apply(hidden_init)
        self.policy_head.apply(output_init)
        self.value_head.apply(output_init)
        if self.log_var_layer is not None:
            self.log_var_layer.apply(output_init)

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------
    def _check_inputs(self, vector_obs: Optional[th.Tensor], visual_obs: Sequence[th.Tensor]) -> None:
        if self.vector_obs_dim > 0 and vector_obs is None:
            raise ValueError("This network requires a vector observation.")
        if len(visual_obs) != len(self.visual_obs_shapes):
            raise ValueError(f"Expected {len(self.visual_obs_shapes)} visual inputs, got {len(visual_obs)}")

    def forward_actor(self, vector_obs: Optional[th.Tensor], visual_obs: Sequence[th.Tensor]) -> NetworkOutput:
        """Actor-only pass; ``value`` is left as an empty tensor."""
        self._check_inputs(vector_obs, visual_obs)
        feats = self.actor_encoder(vector_obs, visual_obs)
        out = NetworkOutput(value=feats.new_empty((feats.shape[0], 0)))
        head = self.policy_head(feats)
        if self.is_discrete:
            out.logits = list(th.split(head, list(self.action_sizes), dim=-1))
        else:
            out.mean = head
            if self.log_var_layer is not None:
                out.log_var = self.log_var_layer(feats)
            elif self.log_var_param is not None:
                out.log_var = self.log_var_param.unsqueeze(0).expand_as(head)
        return out

    def forward_critic(self, vector_obs: Optional[th.Tensor], visual_obs: Sequence[th.Tensor]) -> th.Tensor:
        """State value, shape (B, 1)."""
        self._check_inputs(vector_obs, visual_obs)
        return self.value_head(self.critic_encoder(vector_obs, visual_obs))

    def forward(self, vector_obs: Optional[th.Tensor], visual_obs: Sequence[th.Tensor]) -> NetworkOutput:
        out = self.forward_actor(vector_obs, visual_obs)
        out.value = self.forward_critic(vector_obs, visual_obs)
        return out

    # ------------------------------------------------------------------
    # Parameter partitions
    # ------------------------------------------------------------------
    def actor_parameters(self) -> Iterator[nn.Parameter]:
        mods = [self.actor_encoder, self.policy_head]
        if self.log_var_layer is not None:
            mods.append(self.log_var_layer)
        params = chain.from_iterable(m.parameters() for m in mods)
        if self.log_var_param is not None:
            params = chain(params, [self.log_var_param])
        return params

    def critic_parameters(self) -> Iterator[nn.Parameter]:
        return chain(self.critic_encoder.parameters(), self.value_head.parameters())
