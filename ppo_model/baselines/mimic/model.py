from __future__ import annotations

from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

import numpy as np
import torch as th

from ppo_model.common.buffers.trajectory_buffer import TrajectoryBatch
from ppo_model.common.policies.base_head import ActorCriticHead, TensorBatch
from ppo_model.common.policies.base_model import BaseRLModel, ModelMode

from .core import SupervisedCore


class SupervisedModel(BaseRLModel):
    """
    Supervised ("mimic") model facade: the actor imitates labelled actions.

    Entry points
    ------------
    - :meth:`evaluate_action` : actions (and variance for continuous spaces)
    - :meth:`train_batch`     : one behaviour-cloning update
    - :meth:`train_epochs`    : minibatch epochs over a TrajectoryBatch

    The PPO entry points (``evaluate_value``, ``evaluate_probability``) are
    not part of this facade.

    Checkpoints store the actor weights and the normalizer statistics only;
    critic weights are neither saved nor required on load.
    """

    mode = ModelMode.SUPERVISED

    def __init__(
        self,
        *,
        head: ActorCriticHead,
        core: Optional[SupervisedCore] = None,
        logger: Optional[Any] = None,
        training_enabled: bool = True,
        config: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(
            head=head,
            core=core,
            logger=logger,
            training_enabled=training_enabled,
            config=config,
        )

    @th.no_grad()
    def evaluate_action(
        self,
        vector_obs: Any = None,
        visual_obs: Any = None,
        action_masks: Any = None,
    ) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """
        Act with the imitation policy.

        Returns
        -------
        actions : np.ndarray
            (B, K) float32. Continuous: the mean. Discrete: masked samples.
        variance : Optional[np.ndarray]
            Continuous with a log-variance output: ``exp(log_var)``, (B, A).
            Otherwise None.

        Notes
        -----
        Triggers one normalizer update after the action is computed.
        """
        vec, vis = self.head.prepare_observations(vector_obs, visual_obs)
        out = self.head.forward_network(vec, vis)

        variance: Optional[np.ndarray] = None
        if self.head.is_discrete:
            masks = self.head.prepare_masks(action_masks, self.head.batch_size_of(vec, vis))
            actions = self.head.distribution(out, masks).sample().float()
        else:
            actions = out.mean
            if out.log_var is not None:
                variance = self._out(th.exp(out.log_var))

        self.head.update_normalizer(vec)
        return self._out(actions), variance

    def _make_tensor_batch(self, vector_obs: Any, visual_obs: Any, actions: Any, action_masks: Any) -> TensorBatch:
        vec, vis = self.head.prepare_observations(vector_obs, visual_obs)
        act = self.head.prepare_actions(actions)
        if self.head.batch_size_of(vec, vis) != act.shape[0]:
            raise ValueError(
                f"actions have batch length {act.shape[0]}, observations {self.head.batch_size_of(vec, vis)}"
            )
        return TensorBatch(
            vector_obs=vec,
            visual_obs=vis,
            actions=act,
            action_masks=self.head.prepare_masks(action_masks, act.shape[0]),
        )

    def _update(self, batch: TensorBatch) -> Dict[str, float]:
        metrics = self.core.update_from_batch(batch)
        self._log_metrics(metrics)
        return metrics

    def train_batch(
        self,
        vector_obs: Any,
        visual_obs: Any,
        actions: Any,
        action_masks: Any = None,
    ) -> float:
        """
        One imitation step on labelled actions; returns the loss.

        Raises
        ------
        RuntimeError
            If the model was built with ``training_enabled=False``.
        """
        self._require_training("train_batch")
        return self._update(self._make_tensor_batch(vector_obs, visual_obs, actions, action_masks))["loss/total"]

    def _train_minibatch(self, batch: TrajectoryBatch) -> Dict[str, float]:
        tb = self._make_tensor_batch(
            batch.vector_observations,
            batch.visual_observations,
            batch.actions,
            batch.action_masks,
        )
        return self._update(tb)

    def _excluded_state_keys(self) -> FrozenSet[str]:
        critic_ids = {id(p) for p in self.head.network.critic_parameters()}
        return frozenset(name for name, p in self.head.named_parameters() if id(p) in critic_ids)
