from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Union

import math

import numpy as np
import torch as th

from ..buffers.trajectory_buffer import TrajectoryBatch, iterate_minibatches
from ..utils.common_utils import _to_cpu_state_dict, _to_numpy
from ..utils.log_utils import _warn
from ..utils.train_utils import _make_pbar
from .base_core import BaseCore
from .base_head import ActorCriticHead


CHECKPOINT_FORMAT_VERSION = 1


class ModelMode(str, Enum):
    """Operating mode of a model facade, fixed at construction."""

    PPO = "ppo"
    SUPERVISED = "supervised"

    @classmethod
    def coerce(cls, mode: Union[str, "ModelMode"]) -> "ModelMode":
        if isinstance(mode, cls):
            return mode
        key = str(mode).lower().strip()
        if key == "mimic":
            return cls.SUPERVISED
        for m in cls:
            if m.value == key:
                return m
        raise ValueError(f"Unknown model mode: {mode!r} (expected 'ppo' or 'supervised')")


class BaseRLModel(ABC):
    """
    Shared base class for the model facades.

    This class glues together two components and exposes the caller-facing
    numpy API:

    - **head**: :class:`ActorCriticHead` owning the network, the observation
      normalizer and the sampling generator.
    - **core**: :class:`BaseCore` subclass responsible for optimization.
      Present only when ``training_enabled=True``.

    Responsibilities
    ----------------
    - Mode tag (``mode`` class attribute) and training gating.
    - Minibatch epochs over a :class:`TrajectoryBatch` (``train_epochs``).
    - Metric forwarding to an optional :class:`~ppo_model.common.loggers.Logger`.
    - ``state_dict`` / ``load_state_dict`` / ``save`` / ``load``.

    Parameters
    ----------
    head : ActorCriticHead
    core : Optional[BaseCore], default=None
        Required when ``training_enabled=True``.
    logger : Optional[Logger], default=None
        Receives training metrics under the "train" prefix, stepped by the
        core's update counter.
    training_enabled : bool, default=True
    config : Optional[Mapping[str, Any]], default=None
        JSON-safe builder configuration, kept for inspection and checkpoints.

    Raises
    ------
    ValueError
        If ``training_enabled=True`` but no core is given.
    """

    mode: ModelMode

    def __init__(
        self,
        *,
        head: ActorCriticHead,
        core: Optional[BaseCore] = None,
        logger: Optional[Any] = None,
        training_enabled: bool = True,
        config: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.head = head
        self.training_enabled = bool(training_enabled)
        if self.training_enabled and core is None:
            raise ValueError("training_enabled=True requires a core.")
        self.core = core if self.training_enabled else None
        self.logger = logger
        self.config: Dict[str, Any] = dict(config or {})

        if self.logger is not None and self.core is not None:
            self.logger.set_step_fn(lambda: self.core.update_calls)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def device(self) -> th.device:
        return self.head.device

    @property
    def network(self):
        return self.head.network

    @property
    def normalizer(self):
        return self.head.normalizer

    @property
    def update_calls(self) -> int:
        return 0 if self.core is None else self.core.update_calls

    def set_training(self, training: bool) -> None:
        """Toggle train/eval mode of the head modules."""
        self.head.set_training(training)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require_training(self, op: str) -> None:
        if not self.training_enabled:
            raise RuntimeError(f"{self.__class__.__name__}.{op}() requires training_enabled=True at construction.")

    def _warn(self, message: str) -> None:
        _warn(self.__class__.__name__, message)

    @staticmethod
    def _out(x: th.Tensor) -> np.ndarray:
        return _to_numpy(x, dtype=np.float32)

    def _log_metrics(self, metrics: Mapping[str, float]) -> None:
        if self.logger is None:
            return
        self.logger.log(metrics, step=self.update_calls, prefix="train")

    # ------------------------------------------------------------------
    # Training over a collected batch
    # ------------------------------------------------------------------
    @abstractmethod
    def _train_minibatch(self, batch: TrajectoryBatch) -> Dict[str, float]:
        """One update from a sub-batch; returns the core's metrics."""
        raise NotImplementedError

    def train_epochs(
        self,
        batch: TrajectoryBatch,
        *,
        epochs: int,
        minibatch_size: int,
        shuffle: bool = True,
        progress: bool = False,
        rng: Optional[np.random.Generator] = None,
    ) -> Dict[str, float]:
        """
        Run ``epochs`` passes of minibatch updates over ``batch``.

        Parameters
        ----------
        batch : TrajectoryBatch
        epochs : int
            Number of passes; must be > 0.
        minibatch_size : int
            Rows per update; must be > 0.
        shuffle : bool, default=True
            Permute rows at every pass.
        progress : bool, default=False
            Show a tqdm bar over updates.
        rng : Optional[np.random.Generator], default=None
            Random source for the permutation.

        Returns
        -------
        metrics : Dict[str, float]
            Mean of every metric over all updates of the call.
        """
        self._require_training("train_epochs")
        epochs = int(epochs)
        if epochs <= 0:
            raise ValueError(f"epochs must be > 0, got {epochs}")
        if int(minibatch_size) <= 0:
            raise ValueError(f"minibatch_size must be > 0, got {minibatch_size}")

        n_updates = epochs * int(math.ceil(batch.batch_size / float(minibatch_size)))
        sums: Dict[str, float] = defaultdict(float)
        count = 0

        pbar = _make_pbar(enabled=progress, total=n_updates, desc=f"{self.mode.value} update", leave=False)
        try:
            for _ in range(epochs):
                for mb in iterate_minibatches(batch, int(minibatch_size), shuffle=shuffle, rng=rng):
                    metrics = self._train_minibatch(mb)
                    for k, v in metrics.items():
                        sums[k] += float(v)
                    count += 1
                    pbar.update(1)
                    if "loss/total" in metrics:
                        pbar.set_postfix(loss=f"{metrics['loss/total']:.4g}")
        finally:
            pbar.close()

        return {k: v / count for k, v in sums.items()} if count > 0 else {}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _excluded_state_keys(self) -> FrozenSet[str]:
        """Head state keys left out of checkpoints (and tolerated as missing on load)."""
        return frozenset()

    def _hyperparams_state(self) -> Dict[str, Any]:
        return {}

    def _load_hyperparams_state(self, state: Mapping[str, Any]) -> None:
        return None

    def state_dict(self) -> Dict[str, Any]:
        """
        Checkpoint payload.

        Returns
        -------
        state : Dict[str, Any]
            - "meta": format version, model class, mode
            - "kwargs": JSON-safe head configuration
            - "head": network weights and normalizer statistics (CPU tensors)
            - "core": optimizer / scheduler / update counter, or None
            - "hyperparams": mode-specific hyperparameters
        """
        excluded = self._excluded_state_keys()
        head_state = {k: v for k, v in self.head.state_dict().items() if k not in excluded}
        return {
            "meta": {
                "format_version": CHECKPOINT_FORMAT_VERSION,
                "model_class": self.__class__.__name__,
                "mode": self.mode.value,
            },
            "kwargs": self.head.export_kwargs(),
            "head": _to_cpu_state_dict(head_state),
            "core": None if self.core is None else self.core.state_dict(),
            "hyperparams": self._hyperparams_state(),
        }

    def load_state_dict(self, state: Mapping[str, Any]) -> None:
        """
        Restore a payload produced by :meth:`state_dict`.

        Raises
        ------
        ValueError
            If the payload is malformed, was written in another mode, or
            does not match this model's head layout.
        """
        if not isinstance(state, Mapping) or "head" not in state:
            raise ValueError("Unrecognized model state format (missing 'head').")

        meta = state.get("meta", {}) or {}
        saved_mode = meta.get("mode", self.mode.value)
        if saved_mode != self.mode.value:
            raise ValueError(f"Checkpoint mode {saved_mode!r} does not match model mode {self.mode.value!r}")

        result = self.head.load_state_dict(dict(state["head"]), strict=False)
        missing = set(result.missing_keys) - set(self._excluded_state_keys())
        if missing or result.unexpected_keys:
            raise ValueError(
                f"Checkpoint does not match the model: missing={sorted(missing)}, "
                f"unexpected={sorted(result.unexpected_keys)}"
            )

        core_state = state.get("core", None)
        if core_state is not None and self.core is not None:
            self.core.load_state_dict(core_state)

        self._load_hyperparams_state(state.get("hyperparams", {}) or {})

    def save(self, path: str) -> str:
        """
        Save :meth:`state_dict` with ``torch.save``.

        A ".pt" suffix is appended when missing. Returns the written path.
        """
        if not path.endswith(".pt"):
            path += ".pt"
        th.save(self.state_dict(), path)
        return path

    def load(self, path: str) -> None:
        """
        Load a checkpoint written by :meth:`save` into this instance.

        Notes
        -----
        Loads state only; the instance must have been built with a compatible
        configuration. Tensors are mapped onto ``self.device``.
        """
        if not path.endswith(".pt"):
            path += ".pt"
        ckpt = th.load(path, map_location=self.device)
        if not isinstance(ckpt, dict):
            raise ValueError(f"Unrecognized checkpoint format at: {path}")
        self.load_state_dict(ckpt)
