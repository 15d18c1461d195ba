from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence

import numpy as np

from ..utils.buffer_utils import compute_returns_and_advantages


# =============================================================================
# Batch: TrajectoryBatch
# =============================================================================
@dataclass
class TrajectoryBatch:
    """
    Parallel arrays for one PPO / supervised training batch.

    Attributes
    ----------
    vector_observations : Optional[np.ndarray]
        (B, F), or None when the model has no vector modality.
    visual_observations : List[np.ndarray]
        One (B, H, W, C) array per visual input.
    actions : np.ndarray
        (B, K): branch indices (discrete) or action values (continuous).
    old_log_probs : Optional[np.ndarray]
        (B, K) log-probabilities at collection time.
    target_values : Optional[np.ndarray]
        (B,) value targets (returns).
    old_values : Optional[np.ndarray]
        (B,) value estimates at collection time.
    advantages : Optional[np.ndarray]
        (B,) advantage estimates.
    action_masks : Optional[List[np.ndarray]]
        One (B, K_b) {0,1} array per discrete branch.

    Supervised batches only need observations, actions and (optionally) masks.
    """

    vector_observations: Optional[np.ndarray]
    actions: np.ndarray
    visual_observations: List[np.ndarray] = field(default_factory=list)
    old_log_probs: Optional[np.ndarray] = None
    target_values: Optional[np.ndarray] = None
    old_values: Optional[np.ndarray] = None
    advantages: Optional[np.ndarray] = None
    action_masks: Optional[List[np.ndarray]] = None

    def __post_init__(self) -> None:
        n = self.batch_size
        for name, arr in self._arrays():
            if arr.shape[0] != n:
                raise ValueError(f"{name} has batch length {arr.shape[0]}, expected {n}")

    def _arrays(self) -> Iterator[tuple]:
        if self.vector_observations is not None:
            yield "vector_observations", self.vector_observations
        for i, v in enumerate(self.visual_observations):
            yield f"visual_observations[{i}]", v
        yield "actions", self.actions
        for name in ("old_log_probs", "target_values", "old_values", "advantages"):
            arr = getattr(self, name)
            if arr is not None:
                yield name, arr
        for i, m in enumerate(self.action_masks or []):
            yield f"action_masks[{i}]", m

    @property
    def batch_size(self) -> int:
        return int(np.asarray(self.actions).shape[0])

    def __len__(self) -> int:
        return self.batch_size

    def subset(self, idx: np.ndarray) -> "TrajectoryBatch":
        """Rows ``idx`` of every array, as a new batch."""

        def _take(a: Optional[np.ndarray]) -> Optional[np.ndarray]:
            return None if a is None else a[idx]

        return TrajectoryBatch(
            vector_observations=_take(self.vector_observations),
            visual_observations=[v[idx] for v in self.visual_observations],
            actions=self.actions[idx],
            old_log_probs=_take(self.old_log_probs),
            target_values=_take(self.target_values),
            old_values=_take(self.old_values),
            advantages=_take(self.advantages),
            action_masks=None if self.action_masks is None else [m[idx] for m in self.action_masks],
        )


def make_trajectory_batch(
    *,
    vector_observations: Optional[np.ndarray] = None,
    visual_observations: Optional[Sequence[np.ndarray]] = None,
    actions: np.ndarray,
    old_log_probs: Optional[np.ndarray] = None,
    target_values: Optional[np.ndarray] = None,
    old_values: Optional[np.ndarray] = None,
    advantages: Optional[np.ndarray] = None,
    action_masks: Optional[Sequence[np.ndarray]] = None,
) -> TrajectoryBatch:
    """
    Build a :class:`TrajectoryBatch` from array-likes, casting to float32.

    1D ``actions`` / ``old_log_probs`` are promoted to (B, 1); value-like
    arrays are flattened to (B,).
    """

    def _f32(a, *, column: bool = False, flat: bool = False):
        if a is None:
            return None
        arr = np.asarray(a, dtype=np.float32)
        if column and arr.ndim == 1:
            arr = arr[:, None]
        if flat:
            arr = arr.reshape(-1)
        return arr

    return TrajectoryBatch(
        vector_observations=_f32(vector_observations),
        visual_observations=[_f32(v) for v in (visual_observations or [])],
        actions=_f32(actions, column=True),
        old_log_probs=_f32(old_log_probs, column=True),
        target_values=_f32(target_values, flat=True),
        old_values=_f32(old_values, flat=True),
        advantages=_f32(advantages, flat=True),
        action_masks=None if action_masks is None else [_f32(m) for m in action_masks],
    )


def iterate_minibatches(
    batch: TrajectoryBatch,
    minibatch_size: int,
    *,
    shuffle: bool = True,
    rng: Optional[np.random.Generator] = None,
) -> Iterator[TrajectoryBatch]:
    """
    Yield sub-batches of ``minibatch_size`` rows (the last one may be smaller).

    Parameters
    ----------
    batch : TrajectoryBatch
    minibatch_size : int
        Rows per minibatch; must be > 0.
    shuffle : bool, default=True
        Permute rows before slicing.
    rng : Optional[np.random.Generator], default=None
        Random source for the permutation.

    Raises
    ------
    ValueError
        If ``minibatch_size <= 0``.
    """
    if minibatch_size <= 0:
        raise ValueError(f"minibatch_size must be positive, got {minibatch_size}")

    n = batch.batch_size
    indices = np.arange(n, dtype=np.int64)
    if shuffle:
        (rng if rng is not None else np.random.default_rng()).shuffle(indices)

    for start in range(0, n, int(minibatch_size)):
        yield batch.subset(indices[start : start + int(minibatch_size)])


# =============================================================================
# Buffer: single-environment trajectory collection
# =============================================================================
class TrajectoryBuffer:
    """
    Append-only storage for one on-policy rollout of a single environment.

    Collect with :meth:`add` after each ``env.step``, then call
    :meth:`finalize` to compute GAE advantages / returns and obtain a
    :class:`TrajectoryBatch`. The buffer is cleared by :meth:`reset`.

    Parameters
    ----------
    gamma : float, default=0.99
        Discount factor.
    gae_lambda : float, default=0.95
        GAE smoothing parameter.
    normalize_advantages : bool, default=True
        Standardize advantages over the rollout.
    """

    def __init__(self, *, gamma: float = 0.99, gae_lambda: float = 0.95, normalize_advantages: bool = True) -> None:
        self.gamma = float(gamma)
        self.gae_lambda = float(gae_lambda)
        self.normalize_advantages = bool(normalize_advantages)
        self.reset()

    def reset(self) -> None:
        self._vector: List[np.ndarray] = []
        self._visual: List[List[np.ndarray]] = []
        self._actions: List[np.ndarray] = []
        self._log_probs: List[np.ndarray] = []
        self._values: List[float] = []
        self._rewards: List[float] = []
        self._dones: List[float] = []
        self._masks: List[List[np.ndarray]] = []

    def __len__(self) -> int:
        return len(self._actions)

    def add(
        self,
        *,
        action: np.ndarray,
        log_prob: np.ndarray,
        value: float,
        reward: float,
        done: bool,
        vector_obs: Optional[np.ndarray] = None,
        visual_obs: Optional[Sequence[np.ndarray]] = None,
        action_masks: Optional[Sequence[np.ndarray]] = None,
    ) -> None:
        """Store one transition (single-sample arrays, no batch dimension)."""
        if vector_obs is not None:
            self._vector.append(np.asarray(vector_obs, dtype=np.float32).reshape(-1))
        self._visual.append([np.asarray(v, dtype=np.float32) for v in (visual_obs or [])])
        self._actions.append(np.asarray(action, dtype=np.float32).reshape(-1))
        self._log_probs.append(np.asarray(log_prob, dtype=np.float32).reshape(-1))
        self._values.append(float(value))
        self._rewards.append(float(reward))
        self._dones.append(float(bool(done)))
        if action_masks is not None:
            self._masks.append([np.asarray(m, dtype=np.float32).reshape(-1) for m in action_masks])

    def finalize(self, *, last_value: float, last_done: bool) -> TrajectoryBatch:
        """
        Compute returns / advantages and pack the rollout.

        Raises
        ------
        RuntimeError
            If the buffer is empty.
        """
        if len(self) == 0:
            raise RuntimeError("finalize() called on an empty TrajectoryBuffer.")

        values = np.asarray(self._values, dtype=np.float32)
        returns, advantages = compute_returns_and_advantages(
            np.asarray(self._rewards, dtype=np.float32),
            values,
            np.asarray(self._dones, dtype=np.float32),
            last_value=float(last_value),
            last_done=bool(last_done),
            gamma=self.gamma,
            gae_lambda=self.gae_lambda,
            normalize_advantages=self.normalize_advantages,
        )

        n_visual = len(self._visual[0])
        visual = [np.stack([step[i] for step in self._visual], axis=0) for i in range(n_visual)]
        masks = None
        if self._masks:
            masks = [np.stack([step[b] for step in self._masks], axis=0) for b in range(len(self._masks[0]))]

        return TrajectoryBatch(
            vector_observations=np.stack(self._vector, axis=0) if self._vector else None,
            visual_observations=visual,
            actions=np.stack(self._actions, axis=0),
            old_log_probs=np.stack(self._log_probs, axis=0),
            target_values=returns,
            old_values=values,
            advantages=advantages,
            action_masks=masks,
        )

    @property
    def rewards(self) -> np.ndarray:
        return np.asarray(self._rewards, dtype=np.float32)
