from __future__ import annotations

from dataclasses import asdict, fields
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
import torch as th
import torch.nn as nn

from ppo_model.common.buffers.trajectory_buffer import TrajectoryBatch
from ppo_model.common.policies.base_head import ActorCriticHead, TensorBatch
from ppo_model.common.policies.base_model import BaseRLModel, ModelMode

from .core import PPOCore, PPOHyperParams


class PPOModel(BaseRLModel):
    """
    PPO model facade.

    Entry points
    ------------
    - :meth:`evaluate_value`       : V(s), (B,)
    - :meth:`evaluate_action`      : sampled actions and their log-probs, (B, K) each
    - :meth:`evaluate_probability` : log-probs of given actions, (B, K)
    - :meth:`train_batch`          : one PPO update
    - :meth:`train_epochs`         : minibatch epochs over a TrajectoryBatch

    All entry points take numpy arrays, tensors or lists and return float32
    numpy arrays (losses are Python floats).

    Normalizer timing
    -----------------
    Only :meth:`evaluate_action` updates the observation normalizer, once per
    call and after the action is sampled, so the returned action uses the
    pre-update statistics.

    Parameters
    ----------
    head : ActorCriticHead
    core : Optional[PPOCore], default=None
        Required when ``training_enabled=True``.
    hyperparams : Optional[PPOHyperParams], default=None
        Shared with ``core`` by reference. Defaults to the core's instance,
        or a fresh one when there is no core.
    logger, training_enabled, config
        See :class:`BaseRLModel`.

    Raises
    ------
    RuntimeError
        If the network is continuous without a log-variance output.
    """

    mode = ModelMode.PPO

    def __init__(
        self,
        *,
        head: ActorCriticHead,
        core: Optional[PPOCore] = None,
        hyperparams: Optional[PPOHyperParams] = None,
        logger: Optional[Any] = None,
        training_enabled: bool = True,
        config: Optional[Mapping[str, Any]] = None,
    ) -> None:
        if not head.is_discrete and not head.network.has_log_var:
            raise RuntimeError("PPO requires a continuous network with a log-variance output (log_var_mode != 'none').")

        super().__init__(
            head=head,
            core=core,
            logger=logger,
            training_enabled=training_enabled,
            config=config,
        )

        if hyperparams is None:
            hyperparams = self.core.hyperparams if self.core is not None else PPOHyperParams()
        self.hyperparams = hyperparams
        if self.core is not None:
            self.core.hyperparams = self.hyperparams

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------
    @th.no_grad()
    def evaluate_value(self, vector_obs: Any = None, visual_obs: Any = None) -> np.ndarray:
        """State values V(s), shape (B,). Read-only."""
        vec, vis = self.head.prepare_observations(vector_obs, visual_obs)
        out = self.head.forward_network(vec, vis)
        return self._out(out.value.reshape(-1))

    @th.no_grad()
    def evaluate_action(
        self,
        vector_obs: Any = None,
        visual_obs: Any = None,
        action_masks: Any = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Sample actions from the current policy.

        Parameters
        ----------
        vector_obs : array-like, optional
            (B, F) vector observations.
        visual_obs : array-like or sequence, optional
            (B, H, W, C) per visual input.
        action_masks : sequence of array-likes, optional
            Discrete only: one (B, K_b) {0,1} mask per branch; None permits
            every action.

        Returns
        -------
        actions : np.ndarray
            (B, K) float32. Discrete branch indices are cast to float.
        log_probs : np.ndarray
            (B, K) float32 per-component log-probabilities.
        """
        vec, vis = self.head.prepare_observations(vector_obs, visual_obs)
        masks = self.head.prepare_masks(action_masks, self.head.batch_size_of(vec, vis))

        out = self.head.forward_network(vec, vis)
        dist = self.head.distribution(out, masks)
        actions = dist.sample()
        log_probs = dist.log_prob(actions)

        self.head.update_normalizer(vec)
        return self._out(actions.float()), self._out(log_probs)

    @th.no_grad()
    def evaluate_probability(
        self,
        vector_obs: Any,
        actions: Any,
        visual_obs: Any = None,
        action_masks: Any = None,
    ) -> np.ndarray:
        """
        Log-probabilities of ``actions`` under the current policy, (B, K).

        Discrete actions are rounded to the nearest index. Read-only: the
        normalizer is not updated.
        """
        vec, vis = self.head.prepare_observations(vector_obs, visual_obs)
        act = self.head.prepare_actions(actions)
        masks = self.head.prepare_masks(action_masks, act.shape[0])

        out = self.head.forward_network(vec, vis)
        dist = self.head.distribution(out, masks)
        return self._out(dist.log_prob(act))

    # ------------------------------------------------------------------
    # Neural-evolution support
    # ------------------------------------------------------------------
    def evaluate_action_ne(
        self,
        vector_obs: Any = None,
        visual_obs: Any = None,
        action_masks: Any = None,
    ) -> np.ndarray:
        """Actions of :meth:`evaluate_action` (log-probs dropped)."""
        actions, _ = self.evaluate_action(vector_obs, visual_obs, action_masks)
        return actions

    def get_weights_for_neural_evolution(self) -> List[nn.Parameter]:
        """Actor parameters, in a stable order."""
        return list(self.head.network.actor_parameters())

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------
    def _make_tensor_batch(
        self,
        vector_obs: Any,
        visual_obs: Any,
        actions: Any,
        old_log_probs: Any,
        target_values: Any,
        old_values: Any,
        advantages: Any,
        action_masks: Any,
    ) -> TensorBatch:
        head = self.head
        vec, vis = head.prepare_observations(vector_obs, visual_obs)
        act = head.prepare_actions(actions)
        n = act.shape[0]

        batch = TensorBatch(
            vector_obs=vec,
            visual_obs=vis,
            actions=act,
            action_masks=head.prepare_masks(action_masks, n),
            old_log_probs=head.prepare_actions(old_log_probs, round_discrete=False),
            target_values=head.prepare_values(target_values),
            old_values=head.prepare_values(old_values),
            advantages=head.prepare_values(advantages),
        )
        for name in ("old_log_probs", "target_values", "old_values", "advantages"):
            if getattr(batch, name).shape[0] != n:
                raise ValueError(f"{name} has batch length {getattr(batch, name).shape[0]}, expected {n}")
        if head.batch_size_of(vec, vis) != n:
            raise ValueError(f"actions have batch length {n}, observations {head.batch_size_of(vec, vis)}")
        return batch

    def _update(self, batch: TensorBatch) -> Dict[str, float]:
        metrics = self.core.update_from_batch(batch)
        self._log_metrics(metrics)
        return metrics

    def train_batch(
        self,
        vector_obs: Any,
        visual_obs: Any,
        actions: Any,
        old_log_probs: Any,
        target_values: Any,
        old_values: Any,
        advantages: Any,
        action_masks: Any = None,
    ) -> Tuple[float, float, float, float]:
        """
        One PPO optimizer step on the given batch.

        Returns
        -------
        (total_loss, value_loss, policy_loss, entropy) : Tuple[float, float, float, float]

        Raises
        ------
        RuntimeError
            If the model was built with ``training_enabled=False``.
        """
        self._require_training("train_batch")
        batch = self._make_tensor_batch(
            vector_obs,
            visual_obs,
            actions,
            old_log_probs,
            target_values,
            old_values,
            advantages,
            action_masks,
        )
        m = self._update(batch)
        return m["loss/total"], m["loss/value"], m["loss/policy"], m["stats/entropy"]

    def _train_minibatch(self, batch: TrajectoryBatch) -> Dict[str, float]:
        if batch.old_log_probs is None or batch.target_values is None or batch.old_values is None:
            raise ValueError("PPO training needs old_log_probs, target_values and old_values in the batch.")
        if batch.advantages is None:
            raise ValueError("PPO training needs advantages in the batch.")
        tb = self._make_tensor_batch(
            batch.vector_observations,
            batch.visual_observations,
            batch.actions,
            batch.old_log_probs,
            batch.target_values,
            batch.old_values,
            batch.advantages,
            batch.action_masks,
        )
        return self._update(tb)

    # ------------------------------------------------------------------
    # Persistence hooks
    # ------------------------------------------------------------------
    def _hyperparams_state(self) -> Dict[str, Any]:
        return asdict(self.hyperparams)

    def _load_hyperparams_state(self, state: Mapping[str, Any]) -> None:
        # In place, so the core keeps sharing the same object.
        for f in fields(self.hyperparams):
            if f.name in state:
                setattr(self.hyperparams, f.name, float(state[f.name]))
