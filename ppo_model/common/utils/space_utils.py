from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from gymnasium import spaces


# =============================================================================
# Action space description
# =============================================================================
class ActionSpaceKind(str, Enum):
    """Closed set of supported action-space families."""

    CONTINUOUS = "continuous"
    DISCRETE = "discrete"

    @classmethod
    def coerce(cls, value: Any) -> "ActionSpaceKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower().strip())
        except ValueError:
            raise ValueError(f"Unknown action space kind: {value!r} (expected 'continuous' or 'discrete')") from None


def _validate_action_sizes(kind: ActionSpaceKind, action_sizes: Sequence[int]) -> Tuple[int, ...]:
    """
    Validate per-branch sizes.

    - discrete: one or more branches, each with cardinality >= 1
    - continuous: exactly one entry, the action dimensionality (>= 1)
    """
    sizes = tuple(int(s) for s in action_sizes)
    if len(sizes) == 0:
        raise ValueError("action_sizes must be non-empty.")
    if any(s <= 0 for s in sizes):
        raise ValueError(f"action_sizes must be positive integers, got: {sizes}")
    if kind is ActionSpaceKind.CONTINUOUS and len(sizes) != 1:
        raise ValueError(f"continuous action spaces have a single branch (action_dim,), got: {sizes}")
    return sizes


@dataclass(frozen=True)
class ActionSpec:
    """
    Action space description consumed by model builders.

    Attributes
    ----------
    kind : ActionSpaceKind
    action_sizes : Tuple[int, ...]
        Discrete: per-branch cardinalities. Continuous: ``(action_dim,)``.
    low, high : Optional[np.ndarray]
        Box bounds for continuous spaces (informational; actions are not
        squashed or clipped by the model).
    """

    kind: ActionSpaceKind
    action_sizes: Tuple[int, ...]
    low: Optional[np.ndarray] = None
    high: Optional[np.ndarray] = None

    @property
    def n_branches(self) -> int:
        return len(self.action_sizes)

    @property
    def action_width(self) -> int:
        """Columns of an action batch: branches (discrete) or dims (continuous)."""
        if self.kind is ActionSpaceKind.CONTINUOUS:
            return self.action_sizes[0]
        return len(self.action_sizes)


def action_spec_from_space(space: spaces.Space) -> ActionSpec:
    """
    Derive an :class:`ActionSpec` from a gymnasium action space.

    Supported spaces
    ----------------
    - ``Box`` with 1D shape -> continuous ``(A,)``
    - ``Discrete(n)`` -> one branch ``(n,)``
    - ``MultiDiscrete([n1, n2, ...])`` -> one branch per entry

    Raises
    ------
    TypeError
        For any other space type.
    ValueError
        For non-1D Box shapes or MultiDiscrete with non-zero ``start``.
    """
    if isinstance(space, spaces.Box):
        if len(space.shape) != 1:
            raise ValueError(f"Box action spaces must be 1D, got shape={space.shape}")
        return ActionSpec(
            kind=ActionSpaceKind.CONTINUOUS,
            action_sizes=(int(space.shape[0]),),
            low=np.asarray(space.low, dtype=np.float32),
            high=np.asarray(space.high, dtype=np.float32),
        )

    if isinstance(space, spaces.Discrete):
        if int(space.start) != 0:
            raise ValueError(f"Discrete action spaces must start at 0, got start={space.start}")
        return ActionSpec(kind=ActionSpaceKind.DISCRETE, action_sizes=(int(space.n),))

    if isinstance(space, spaces.MultiDiscrete):
        nvec = np.asarray(space.nvec).reshape(-1)
        start = np.asarray(getattr(space, "start", np.zeros_like(nvec))).reshape(-1)
        if np.any(start != 0):
            raise ValueError("MultiDiscrete action spaces must start at 0.")
        return ActionSpec(kind=ActionSpaceKind.DISCRETE, action_sizes=tuple(int(n) for n in nvec))

    raise TypeError(f"Unsupported action space: {type(space).__name__}")


# =============================================================================
# Observation space description
# =============================================================================
@dataclass(frozen=True)
class ObservationSpec:
    """
    Observation modalities of a model.

    Attributes
    ----------
    vector_dim : int
        Feature width F of the vector modality; 0 means "no vector input".
    visual_shapes : Tuple[Tuple[int, int, int], ...]
        One ``(H, W, C)`` entry per visual input.
    """

    vector_dim: int = 0
    visual_shapes: Tuple[Tuple[int, int, int], ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if int(self.vector_dim) < 0:
            raise ValueError(f"vector_dim must be >= 0, got {self.vector_dim}")
        for shp in self.visual_shapes:
            if len(shp) != 3 or any(int(s) <= 0 for s in shp):
                raise ValueError(f"visual shapes must be positive (H, W, C), got {shp}")
        if int(self.vector_dim) == 0 and len(self.visual_shapes) == 0:
            raise ValueError("At least one observation modality (vector or visual) is required.")

    @property
    def has_vector(self) -> bool:
        return int(self.vector_dim) > 0

    @property
    def n_visual(self) -> int:
        return len(self.visual_shapes)


def _collect_boxes(space: spaces.Space, vector_dims: List[int], visual: List[Tuple[int, int, int]]) -> None:
    if isinstance(space, spaces.Box):
        shp = tuple(int(s) for s in space.shape)
        if len(shp) == 1:
            vector_dims.append(shp[0])
        elif len(shp) == 3:
            visual.append((shp[0], shp[1], shp[2]))
        else:
            raise ValueError(f"Box observations must be 1D (F,) or 3D (H, W, C), got shape={shp}")
        return

    if isinstance(space, spaces.Tuple):
        for sub in space.spaces:
            _collect_boxes(sub, vector_dims, visual)
        return

    if isinstance(space, spaces.Dict):
        for key in sorted(space.spaces.keys()):
            _collect_boxes(space.spaces[key], vector_dims, visual)
        return

    raise TypeError(f"Unsupported observation space: {type(space).__name__}")


def observation_spec_from_space(space: spaces.Space) -> ObservationSpec:
    """
    Derive an :class:`ObservationSpec` from a gymnasium observation space.

    All 1D Box leaves are concatenated into one vector modality (summed
    widths); every 3D Box leaf becomes one HWC visual input. ``Dict`` leaves
    are visited in sorted key order, matching :func:`split_observation`.
    """
    vector_dims: List[int] = []
    visual: List[Tuple[int, int, int]] = []
    _collect_boxes(space, vector_dims, visual)
    return ObservationSpec(vector_dim=int(sum(vector_dims)), visual_shapes=tuple(visual))


def split_observation(obs: Any) -> Tuple[Optional[np.ndarray], List[np.ndarray]]:
    """
    Split a (possibly nested) observation into ``(vector, visuals)``.

    Leaves with ``ndim <= 1`` (per sample) are treated as vector features and
    concatenated; ``ndim == 3`` leaves are visual inputs. Works on single
    (unbatched) observations as produced by ``env.step``.
    """
    vec_parts: List[np.ndarray] = []
    visuals: List[np.ndarray] = []

    def _visit(o: Any) -> None:
        if isinstance(o, dict):
            for key in sorted(o.keys()):
                _visit(o[key])
            return
        if isinstance(o, (tuple, list)) and not np.isscalar(o) and len(o) > 0 and not np.isscalar(o[0]):
            for sub in o:
                _visit(sub)
            return
        arr = np.asarray(o, dtype=np.float32)
        if arr.ndim == 3:
            visuals.append(arr)
        else:
            vec_parts.append(arr.reshape(-1))

    _visit(obs)
    vector = np.concatenate(vec_parts, axis=0) if vec_parts else None
    return vector, visuals


def spec_kwargs(observation_space: spaces.Space, action_space: spaces.Space) -> Dict[str, Any]:
    """
    Builder keyword arguments (``vector_obs_dim``, ``visual_obs_shapes``,
    ``action_type``, ``action_sizes``) derived from a pair of gymnasium spaces.
    """
    obs_spec = observation_spec_from_space(observation_space)
    act_spec = action_spec_from_space(action_space)
    return {
        "vector_obs_dim": obs_spec.vector_dim,
        "visual_obs_shapes": obs_spec.visual_shapes,
        "action_type": act_spec.kind.value,
        "action_sizes": act_spec.action_sizes,
    }
