from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Sequence, Tuple, Type

import torch as th
import torch.nn as nn

from ..utils.network_utils import _validate_hidden_sizes
from ..utils.space_utils import ActionSpaceKind, _validate_action_sizes


# =============================================================================
# Feature Extractors
# =============================================================================
class MLPFeaturesExtractor(nn.Module):
    """
    Standard MLP feature extractor.

    Parameters
    ----------
    input_dim : int
        Input dimensionality.
    hidden_sizes : Sequence[int]
        Hidden layer widths. The output feature dimension is ``hidden_sizes[-1]``.
        Must contain at least one element.
    activation_fn : type[nn.Module], optional
        Activation module class inserted after each ``nn.Linear`` layer
        (default: ``nn.ReLU``).

    Attributes
    ----------
    net : nn.Sequential
        (Linear -> Activation) x N.
    out_dim : int
        Output feature dimensionality (= ``hidden_sizes[-1]``).
    """

    def __init__(
        self,
        input_dim: int,
        hidden_sizes: Sequence[int],
        activation_fn: Type[nn.Module] = nn.ReLU,
    ) -> None:
        super().__init__()
        hs = _validate_hidden_sizes(hidden_sizes)

        layers: List[nn.Module] = []
        prev_dim = int(input_dim)
        for h in hs:
            layers.append(nn.Linear(prev_dim, h))
            layers.append(activation_fn())
            prev_dim = h

        self.net = nn.Sequential(*layers)
        self.out_dim = int(hs[-1])

    def forward(self, x: th.Tensor) -> th.Tensor:
        return self.net(x)


class VisualEncoder(nn.Module):
    """
    Convolutional encoder for one NHWC image input.

    Architecture
    ------------
    ::

        permute NHWC -> NCHW
        Conv2d(C, 16, 8x8, stride 4) -> ELU
        Conv2d(16, 32, 4x4, stride 2) -> ELU
        flatten -> MLPFeaturesExtractor(hidden_sizes)

    Parameters
    ----------
    input_shape : Tuple[int, int, int]
        Per-sample image shape (H, W, C).
    hidden_sizes : Sequence[int]
        Dense layers after the flattened conv features.
    activation_fn : type[nn.Module], optional
        Activation for the dense layers (conv layers always use ELU).

    Raises
    ------
    ValueError
        If the image is too small for the conv stack (H and W must be >= 20).
    """

    def __init__(
        self,
        input_shape: Tuple[int, int, int],
        hidden_sizes: Sequence[int],
        activation_fn: Type[nn.Module] = nn.ReLU,
    ) -> None:
        super().__init__()
        h, w, c = (int(s) for s in input_shape)
        self.input_shape = (h, w, c)

        self.conv = nn.Sequential(
            nn.Conv2d(c, 16, kernel_size=8, stride=4),
            nn.ELU(),
            nn.Conv2d(16, 32, kernel_size=4, stride=2),
            nn.ELU(),
            nn.Flatten(),
        )

        oh = (h - 8) // 4 + 1
        ow = (w - 8) // 4 + 1
        oh = (oh - 4) // 2 + 1
        ow = (ow - 4) // 2 + 1
        if oh <= 0 or ow <= 0:
            raise ValueError(f"Visual input {self.input_shape} is too small for the conv encoder (need H, W >= 20).")
        self.conv_out_dim = int(32 * oh * ow)

        self.mlp = MLPFeaturesExtractor(self.conv_out_dim, hidden_sizes, activation_fn)
        self.out_dim = self.mlp.out_dim

    def forward(self, x: th.Tensor) -> th.Tensor:
        """
        Parameters
        ----------
        x : torch.Tensor
            Images, shape (B, H, W, C).

        Returns
        -------
        torch.Tensor
            Features, shape (B, out_dim).
        """
        return self.mlp(self.conv(x.permute(0, 3, 1, 2)))


# =============================================================================
# Network-builder contract
# =============================================================================
@dataclass
class NetworkOutput:
    """
    Raw outputs of one actor-critic forward pass.

    Attributes
    ----------
    value : torch.Tensor
        State-value estimate, shape (B, 1).
    logits : Optional[List[torch.Tensor]]
        Discrete spaces: raw per-branch logits, each (B, K_b).
    mean : Optional[torch.Tensor]
        Continuous spaces: action mean, shape (B, A).
    log_var : Optional[torch.Tensor]
        Continuous spaces: log-variance, shape (B, A); None when the network
        has no variance output.
    """

    value: th.Tensor
    logits: Optional[List[th.Tensor]] = None
    mean: Optional[th.Tensor] = None
    log_var: Optional[th.Tensor] = None


class ActorCriticNetwork(nn.Module, ABC):
    """
    Capability contract for networks consumed by the model facades.

    A conforming network maps observation tensors to raw distribution
    parameters plus a state value, and partitions its parameters into an
    actor subset and a critic subset.

    Required attributes
    -------------------
    action_type : ActionSpaceKind
    action_sizes : Tuple[int, ...]
    vector_obs_dim : int
        0 when the network takes no vector input.
    visual_obs_shapes : Tuple[Tuple[int, int, int], ...]
    has_log_var : bool
        Whether continuous outputs include a log-variance.

    Required methods
    ----------------
    forward(vector_obs, visual_obs) -> NetworkOutput
    actor_parameters() -> Iterator[nn.Parameter]
    critic_parameters() -> Iterator[nn.Parameter]
    """

    def __init__(
        self,
        *,
        action_type: ActionSpaceKind,
        action_sizes: Sequence[int],
        vector_obs_dim: int = 0,
        visual_obs_shapes: Sequence[Sequence[int]] = (),
    ) -> None:
        super().__init__()
        self.action_type = ActionSpaceKind.coerce(action_type)
        self.action_sizes = _validate_action_sizes(self.action_type, action_sizes)
        self.vector_obs_dim = int(vector_obs_dim)
        self.visual_obs_shapes = tuple(tuple(int(s) for s in shp) for shp in visual_obs_shapes)

        if self.vector_obs_dim < 0:
            raise ValueError(f"vector_obs_dim must be >= 0, got {vector_obs_dim}")
        if self.vector_obs_dim == 0 and len(self.visual_obs_shapes) == 0:
            raise ValueError("At least one observation modality (vector or visual) is required.")
        for shp in self.visual_obs_shapes:
            if len(shp) != 3:
                raise ValueError(f"visual_obs_shapes entries must be (H, W, C), got {shp}")

        self.has_log_var = False

    @property
    def is_discrete(self) -> bool:
        return self.action_type is ActionSpaceKind.DISCRETE

    @property
    def action_width(self) -> int:
        """Columns of an action batch: branches (discrete) or dims (continuous)."""
        return len(self.action_sizes) if self.is_discrete else self.action_sizes[0]

    def check_io(
        self,
        *,
        action_type: Any,
        action_sizes: Sequence[int],
        vector_obs_dim: int = 0,
        visual_obs_shapes: Sequence[Sequence[int]] = (),
    ) -> None:
        """
        Check that requested environment I/O matches this network.

        Raises
        ------
        ValueError
            If any of the action kind, action sizes, vector width or visual
            shapes differs from the network's own attributes.
        """
        requested = {
            "action_type": ActionSpaceKind.coerce(action_type),
            "action_sizes": tuple(int(s) for s in action_sizes),
            "vector_obs_dim": int(vector_obs_dim),
            "visual_obs_shapes": tuple(tuple(int(s) for s in shp) for shp in visual_obs_shapes),
        }
        mismatched = [
            f"{name}: requested {value!r}, network has {getattr(self, name)!r}"
            for name, value in requested.items()
            if value != getattr(self, name)
        ]
        if mismatched:
            raise ValueError("network does not match the requested I/O (" + "; ".join(mismatched) + ")")

    @abstractmethod
    def forward(self, vector_obs: Optional[th.Tensor], visual_obs: Sequence[th.Tensor]) -> NetworkOutput:
        raise NotImplementedError

    @abstractmethod
    def actor_parameters(self) -> Iterator[nn.Parameter]:
        raise NotImplementedError

    @abstractmethod
    def critic_parameters(self) -> Iterator[nn.Parameter]:
        raise NotImplementedError
