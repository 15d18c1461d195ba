from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import torch as th
import torch.nn as nn

from ..networks.base_networks import ActorCriticNetwork, NetworkOutput
from ..networks.distributions import (
    BaseDistribution,
    DiagGaussianLogVarDistribution,
    MaskedMultiCategoricalDistribution,
)
from ..normalizers.running_normalizer import RunningObservationNormalizer
from ..utils.common_utils import _as_tensor_list, _to_column, _to_tensor
from ..utils.log_utils import _warn
from ..utils.network_utils import _activation_to_name, _ensure_batch
from ..utils.train_utils import _make_generator


# =============================================================================
# Device-side batch
# =============================================================================
@dataclass
class TensorBatch:
    """
    One training batch after conversion to device tensors.

    Attributes
    ----------
    vector_obs : Optional[torch.Tensor]
        Raw (un-normalized) vector observations, (B, F).
    visual_obs : List[torch.Tensor]
        One (B, H, W, C) tensor per visual input.
    actions : torch.Tensor
        (B, K). Discrete indices are already rounded.
    action_masks : Optional[List[torch.Tensor]]
        One (B, K_b) tensor per discrete branch; None for continuous spaces.
    old_log_probs, target_values, old_values, advantages : Optional[torch.Tensor]
        PPO-only fields. Log-probs are (B, K); the rest are (B, 1).
    """

    vector_obs: Optional[th.Tensor]
    actions: th.Tensor
    visual_obs: List[th.Tensor] = field(default_factory=list)
    action_masks: Optional[List[th.Tensor]] = None
    old_log_probs: Optional[th.Tensor] = None
    target_values: Optional[th.Tensor] = None
    old_values: Optional[th.Tensor] = None
    advantages: Optional[th.Tensor] = None

    @property
    def batch_size(self) -> int:
        return int(self.actions.shape[0])


# =============================================================================
# Head: network + normalizer + random source
# =============================================================================
class ActorCriticHead(nn.Module):
    """
    Inference-facing container shared by the PPO and supervised models.

    Responsibilities
    ----------------
    - Owns the actor-critic network, the optional observation normalizer and
      the sampling ``torch.Generator``.
    - Converts caller inputs (numpy / lists / tensors) into batched device
      tensors and validates modalities, mask counts and action widths.
    - Builds the action distribution from raw network outputs.

    Non-responsibilities
    --------------------
    - No optimization logic (see ``BaseCore``)
    - No decision on *when* the normalizer is updated (see the model facades)

    Parameters
    ----------
    network : ActorCriticNetwork
        Any network satisfying the actor-critic capability contract.
    use_input_normalization : bool, default=True
        Normalize vector observations with running statistics. Disabled (with
        a warning) when the network has no vector input.
    normalizer_clip : float, default=5.0
        Symmetric clip range of normalized observations.
    device : str | torch.device, default="cpu"
    generator : Optional[torch.Generator], default=None
        Injected random source for action sampling.
    seed : Optional[int], default=None
        If no generator is injected, create one seeded with this value.
    owner : str, default="PPOModel"
        Name used to tag warnings.
    """

    def __init__(
        self,
        *,
        network: ActorCriticNetwork,
        use_input_normalization: bool = True,
        normalizer_clip: float = 5.0,
        device: Union[str, th.device] = "cpu",
        generator: Optional[th.Generator] = None,
        seed: Optional[int] = None,
        owner: str = "PPOModel",
    ) -> None:
        super().__init__()
        if not isinstance(network, ActorCriticNetwork):
            raise TypeError(f"network must be an ActorCriticNetwork, got {type(network).__name__}")

        self.device = device if isinstance(device, th.device) else th.device(str(device))
        self.owner = str(owner)
        self.normalizer_clip = float(normalizer_clip)
        self.seed = None if seed is None else int(seed)

        self.network = network.to(self.device)

        normalizer: Optional[RunningObservationNormalizer] = None
        if use_input_normalization:
            if network.vector_obs_dim > 0:
                normalizer = RunningObservationNormalizer(network.vector_obs_dim, clip=self.normalizer_clip)
                normalizer = normalizer.to(self.device)
            else:
                _warn(
                    self.owner,
                    "use_input_normalization=True but the model has no vector observation; normalization disabled.",
                )
        self.normalizer = normalizer

        self.generator = _make_generator(self.seed, device=self.device, generator=generator)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def use_input_normalization(self) -> bool:
        return self.normalizer is not None

    @property
    def is_discrete(self) -> bool:
        return self.network.is_discrete

    @property
    def action_width(self) -> int:
        return self.network.action_width

    def set_training(self, training: bool) -> None:
        self.train(bool(training))

    # ------------------------------------------------------------------
    # Input conversion
    # ------------------------------------------------------------------
    def prepare_observations(
        self,
        vector_obs: Any,
        visual_obs: Any,
    ) -> Tuple[Optional[th.Tensor], List[th.Tensor]]:
        """
        Convert observations to batched float32 tensors on ``self.device``.

        Parameters
        ----------
        vector_obs : array-like or None
            (B, F) or a single (F,) sample.
        visual_obs : array-like, sequence of array-likes, or None
            One (B, H, W, C) batch (or (H, W, C) sample) per visual input. A
            single array is accepted when the network has one visual input.

        Returns
        -------
        vector_t : Optional[torch.Tensor]
            (B, F) or None when the network takes no vector input.
        visual_t : List[torch.Tensor]

        Raises
        ------
        ValueError
            If a modality required by the network is missing, the vector
            width is wrong, the number of visual inputs is wrong, or batch
            sizes disagree.
        """
        net = self.network

        vector_t: Optional[th.Tensor] = None
        if net.vector_obs_dim > 0:
            if vector_obs is None:
                raise ValueError(f"{self.owner} requires vector observations (vector_obs_dim={net.vector_obs_dim}).")
            vector_t = _ensure_batch(vector_obs, self.device, event_dim=1)
            if vector_t.dim() != 2 or vector_t.shape[-1] != net.vector_obs_dim:
                raise ValueError(
                    f"Expected vector observations of shape (B, {net.vector_obs_dim}), got {tuple(vector_t.shape)}"
                )

        visual_t: List[th.Tensor] = []
        n_visual = len(net.visual_obs_shapes)
        if n_visual > 0:
            if visual_obs is None:
                raise ValueError(f"{self.owner} requires {n_visual} visual observation(s).")
            if isinstance(visual_obs, np.ndarray) or th.is_tensor(visual_obs):
                visual_obs = [visual_obs]
            visual_t = [_ensure_batch(v, self.device, event_dim=3) for v in visual_obs]
            if len(visual_t) != n_visual:
                raise ValueError(f"Expected {n_visual} visual observation(s), got {len(visual_t)}")

        sizes = {int(t.shape[0]) for t in ([vector_t] if vector_t is not None else []) + visual_t}
        if len(sizes) > 1:
            raise ValueError(f"Observation batch sizes disagree: {sorted(sizes)}")
        return vector_t, visual_t

    @staticmethod
    def batch_size_of(vector_t: Optional[th.Tensor], visual_t: Sequence[th.Tensor]) -> int:
        if vector_t is not None:
            return int(vector_t.shape[0])
        return int(visual_t[0].shape[0])

    def prepare_masks(self, action_masks: Any, batch_size: int) -> Optional[List[th.Tensor]]:
        """
        Per-branch mask tensors for discrete spaces.

        ``None``, or a ``None`` entry for one branch, becomes all-ones.
        Continuous spaces always return ``None`` (masks carry no meaning there).

        Raises
        ------
        ValueError
            If the number of masks differs from the number of branches.
        """
        if not self.is_discrete:
            return None

        sizes = self.network.action_sizes
        if action_masks is None:
            return [th.ones((int(batch_size), k), dtype=th.float32, device=self.device) for k in sizes]

        masks = _as_tensor_list(action_masks, device=self.device, dtype=th.float32)
        if len(masks) != len(sizes):
            raise ValueError(f"Expected {len(sizes)} action masks (one per branch), got {len(masks)}")
        out: List[th.Tensor] = []
        for m, k in zip(masks, sizes):
            if m is None:
                m = th.ones((int(batch_size), k), dtype=th.float32, device=self.device)
            out.append(m.unsqueeze(0) if m.dim() == 1 else m)
        return out

    def prepare_actions(self, actions: Any, *, round_discrete: bool = True) -> th.Tensor:
        """
        Convert per-action data to a (B, K) float tensor.

        Used for both actions and old log-probabilities. A 1D input is read as
        one column when K == 1 and as a single sample otherwise.

        Raises
        ------
        ValueError
            If the trailing width differs from the action width K.
        """
        t = _to_tensor(actions, device=self.device, dtype=th.float32)
        k = self.action_width
        if t.dim() == 0:
            t = t.view(1, 1)
        elif t.dim() == 1:
            t = t.unsqueeze(1) if k == 1 else t.unsqueeze(0)
        if t.dim() != 2 or t.shape[-1] != k:
            raise ValueError(f"Expected shape (B, {k}), got {tuple(t.shape)}")
        if round_discrete and self.is_discrete:
            t = th.round(t)
        return t

    def prepare_values(self, values: Any) -> th.Tensor:
        """(B,) or (B, 1) -> (B, 1) float tensor."""
        return _to_column(_to_tensor(values, device=self.device, dtype=th.float32).reshape(-1))

    # ------------------------------------------------------------------
    # Forward / distribution
    # ------------------------------------------------------------------
    def normalize(self, vector_t: Optional[th.Tensor]) -> Optional[th.Tensor]:
        if vector_t is None or self.normalizer is None:
            return vector_t
        return self.normalizer.normalize(vector_t)

    def forward_network(self, vector_t: Optional[th.Tensor], visual_t: Sequence[th.Tensor]) -> NetworkOutput:
        """Network pass on normalized inputs (current statistics, no update)."""
        return self.network(self.normalize(vector_t), list(visual_t))

    def distribution(self, out: NetworkOutput, masks: Optional[Sequence[th.Tensor]] = None) -> BaseDistribution:
        """
        Build the action distribution for raw network outputs.

        Raises
        ------
        RuntimeError
            If a continuous network produced no log-variance.
        """
        if self.is_discrete:
            return MaskedMultiCategoricalDistribution(out.logits, masks, generator=self.generator)
        if out.log_var is None:
            raise RuntimeError("Sampling a continuous action requires a network with a log-variance output.")
        return DiagGaussianLogVarDistribution(out.mean, out.log_var, generator=self.generator)

    def update_normalizer(self, vector_t: Optional[th.Tensor]) -> None:
        """Apply one running-statistics update (no-op if normalization is off)."""
        if vector_t is None or self.normalizer is None:
            return
        self.normalizer.update(vector_t)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    def export_kwargs(self) -> Dict[str, Any]:
        """
        Constructor-relevant configuration in a JSON-safe form.

        Stored in checkpoints under ``"kwargs"`` and dumped by the builders
        into the logger's ``config.json``.
        """
        net = self.network
        out: Dict[str, Any] = {
            "network_class": net.__class__.__name__,
            "action_type": net.action_type.value,
            "action_sizes": [int(s) for s in net.action_sizes],
            "vector_obs_dim": int(net.vector_obs_dim),
            "visual_obs_shapes": [[int(s) for s in shp] for shp in net.visual_obs_shapes],
            "use_input_normalization": bool(self.use_input_normalization),
            "normalizer_clip": float(self.normalizer_clip),
            "device": str(self.device),
            "seed": self.seed,
        }
        for name in ("actor_hidden_sizes", "critic_hidden_sizes"):
            if hasattr(net, name):
                out[name] = [int(h) for h in getattr(net, name)]
        if hasattr(net, "activation_fn"):
            out["activation_fn"] = _activation_to_name(net.activation_fn)
        if hasattr(net, "log_var_mode"):
            out["log_var_mode"] = str(net.log_var_mode)
        return out
