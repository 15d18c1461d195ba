from __future__ import annotations

import math
import os
import sys
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import torch as th
import torch.nn as nn


# =============================================================================
# Path bootstrap
# =============================================================================
def _bootstrap_sys_path() -> None:
    here = os.path.abspath(os.path.dirname(__file__))
    cur = here
    for _ in range(8):
        parent = os.path.dirname(cur)
        if not parent or parent == cur:
            break
        if os.path.isdir(os.path.join(parent, "ppo_model")):
            if parent not in sys.path:
                sys.path.insert(0, parent)
            return
        cur = parent


_bootstrap_sys_path()

from ppo_model.common.testers.test_utils import (  # noqa: E402
    assert_allclose,
    assert_close,
    assert_eq,
    assert_file_exists,
    assert_finite,
    assert_raises,
    assert_shape,
    assert_true,
    run_tests,
    seed_all,
)
from ppo_model.common.testers.test_harness import MemoryWriter, TempDir, ppo_batch_arrays  # noqa: E402
from ppo_model import SupervisedModel, build_model, mimic  # noqa: E402
from ppo_model.baselines.ppo import (  # noqa: E402
    PPOHyperParams,
    PPOModel,
    clipped_surrogate_loss,
    clipped_value_loss,
    ppo,
    ppo_loss,
)
from ppo_model.common.buffers import make_trajectory_batch  # noqa: E402
from ppo_model.common.loggers import Logger  # noqa: E402
from ppo_model.common.networks import ActorCriticNetwork, NetworkOutput  # noqa: E402


LOG_N01_AT_MEAN = -0.5 * math.log(2.0 * math.pi)


def _continuous_model(**kw) -> PPOModel:
    kw.setdefault("seed", 0)
    return ppo(action_type="continuous", action_sizes=(2,), vector_obs_dim=3, actor_hidden_sizes=(16,), critic_hidden_sizes=(16,), **kw)


def _discrete_model(**kw) -> PPOModel:
    kw.setdefault("seed", 0)
    return ppo(action_type="discrete", action_sizes=(3, 2), vector_obs_dim=4, actor_hidden_sizes=(16,), critic_hidden_sizes=(16,), **kw)


class _TinyDiscreteNetwork(ActorCriticNetwork):
    """Smallest network honoring the actor-critic contract."""

    def __init__(self, vector_obs_dim: int, action_sizes: Sequence[int]) -> None:
        super().__init__(action_type="discrete", action_sizes=action_sizes, vector_obs_dim=vector_obs_dim)
        self.pi = nn.Linear(vector_obs_dim, int(sum(action_sizes)))
        self.v = nn.Linear(vector_obs_dim, 1)

    def forward(self, vector_obs: Optional[th.Tensor], visual_obs: Sequence[th.Tensor]) -> NetworkOutput:
        logits = list(th.split(self.pi(vector_obs), list(self.action_sizes), dim=-1))
        return NetworkOutput(value=self.v(vector_obs), logits=logits)

    def actor_parameters(self) -> Iterator[nn.Parameter]:
        return self.pi.parameters()

    def critic_parameters(self) -> Iterator[nn.Parameter]:
        return self.v.parameters()


# =============================================================================
# Tests: loss terms
# =============================================================================
def test_value_loss_is_zero_at_target_and_clipped():
    v = th.tensor([[0.5], [1.0]])
    assert_close(float(clipped_value_loss(v, v, v, 0.2)), 0.0)
    # new=1, old=0, target=0: unclipped (1)^2 dominates clipped (0.2)^2
    loss = clipped_value_loss(th.tensor([1.0]), th.tensor([0.0]), th.tensor([0.0]), 0.2)
    assert_close(float(loss), 1.0)
    # new=0, old=1, target=1: clipped value 0.8 gives 0.04 < 1, max keeps 1
    loss2 = clipped_value_loss(th.tensor([0.0]), th.tensor([1.0]), th.tensor([1.0]), 0.2)
    assert_close(float(loss2), 1.0)


def test_surrogate_loss_ratio_one_and_zero_advantage():
    lp = th.randn(6, 2)
    adv = th.tensor([1.0, -2.0, 0.5, 0.0, 3.0, -1.0])
    assert_close(float(clipped_surrogate_loss(lp, lp, adv, 0.2)), -float(adv.mean()), atol=1e-6)
    assert_close(float(clipped_surrogate_loss(lp + 0.3, lp, th.zeros(6), 0.2)), 0.0)


def test_surrogate_loss_clipping_zeroes_gradient():
    new = th.full((1, 1), math.log(1.5), requires_grad=True)
    old = th.zeros(1, 1)
    loss = clipped_surrogate_loss(new, old, th.ones(1, 1), 0.2)
    assert_close(float(loss), -1.2, rtol=1e-5)
    loss.backward()
    assert_close(float(new.grad), 0.0)

    new2 = th.full((1, 1), math.log(1.5), requires_grad=True)
    loss2 = clipped_surrogate_loss(new2, old, -th.ones(1, 1), 0.2)
    assert_close(float(loss2), 1.5, rtol=1e-5)
    loss2.backward()
    assert_true(abs(float(new2.grad)) > 0.0, "negative advantage below the clip range must keep its gradient")


def test_ppo_loss_weights():
    hp = PPOHyperParams(value_loss_weight=0.5, entropy_loss_weight=0.01)
    total = ppo_loss(th.tensor(1.0), th.tensor(2.0), th.tensor(3.0), hp)
    assert_close(float(total), 1.97, rtol=1e-6)


# =============================================================================
# Tests: inference
# =============================================================================
def test_continuous_log_prob_at_zero_mean():
    model = _continuous_model(log_var_init=0.0)
    obs = np.zeros((4, 3), dtype=np.float32)
    lp = model.evaluate_probability(obs, np.zeros((4, 2)))
    assert_shape(lp, (4, 2))
    assert_true(lp.dtype == np.float32)
    assert_allclose(lp, np.full((4, 2), LOG_N01_AT_MEAN), atol=1e-5)


def test_evaluate_action_shapes_and_consistency():
    model = _continuous_model()
    obs = np.zeros((5, 3), dtype=np.float32)
    actions, log_probs = model.evaluate_action(obs)
    assert_shape(actions, (5, 2))
    assert_shape(log_probs, (5, 2))
    assert_true(actions.dtype == np.float32 and log_probs.dtype == np.float32)
    # zero observations keep normalized inputs at zero before and after the update
    assert_allclose(model.evaluate_probability(obs, actions), log_probs, atol=1e-5)


def test_evaluate_value_shape():
    model = _discrete_model()
    v = model.evaluate_value(np.random.randn(7, 4))
    assert_shape(v, (7,))
    assert_shape(model.evaluate_value(np.zeros(4)), (1,))


def test_discrete_masked_action_never_sampled():
    model = _discrete_model()
    n = 200
    m0 = np.ones((n, 3), dtype=np.float32)
    m0[:, 2] = 0.0
    masks = [m0, np.ones((n, 2), dtype=np.float32)]
    actions, log_probs = model.evaluate_action(np.random.randn(n, 4), action_masks=masks)
    assert_shape(actions, (n, 2))
    assert_true(np.all(actions[:, 0] != 2.0), "masked action was sampled")
    assert_true(np.all(actions == np.round(actions)), "discrete actions must be integral")
    assert_true(np.all(log_probs <= 0.0))

    lp = model.evaluate_probability(np.zeros((1, 4)), np.array([[2.0, 0.0]]), action_masks=[m0[:1], masks[1][:1]])
    assert_close(float(lp[0, 0]), math.log(1e-8), rtol=1e-4)


def test_single_branch_mask_over_many_draws():
    model = ppo(action_type="discrete", action_sizes=(3,), vector_obs_dim=2, seed=0)
    n = 1000
    mask = np.tile(np.array([[1.0, 1.0, 0.0]], dtype=np.float32), (n, 1))
    actions, log_probs = model.evaluate_action(np.zeros((n, 2)), action_masks=[mask])
    assert_shape(actions, (n, 1))
    assert_true(np.all(actions[:, 0] != 2.0), "masked action was sampled")
    assert_eq(sorted(set(actions[:, 0].tolist())), [0.0, 1.0])
    assert_allclose(log_probs, np.full((n, 1), math.log(0.5)), atol=1e-3)


def test_none_mask_entry_permits_whole_branch():
    model = _discrete_model()
    n = 100
    m0 = np.ones((n, 3), dtype=np.float32)
    m0[:, 2] = 0.0
    obs = np.random.randn(n, 4)

    actions, log_probs = model.evaluate_action(obs, action_masks=[m0, None])
    assert_shape(actions, (n, 2))
    assert_true(np.all(actions[:, 0] != 2.0), "masked action was sampled")

    lp_none = model.evaluate_probability(obs, actions, action_masks=[m0, None])
    lp_ones = model.evaluate_probability(obs, actions, action_masks=[m0, np.ones((n, 2))])
    assert_allclose(lp_none, lp_ones, atol=1e-6)

    out = model.train_batch(obs, None, actions, log_probs, np.random.randn(n), np.zeros(n), np.random.randn(n), [m0, None])
    assert_finite(np.asarray(out))


def test_discrete_mask_count_mismatch_raises():
    model = _discrete_model()
    assert_raises(ValueError, lambda: model.evaluate_action(np.zeros((2, 4)), action_masks=[np.ones((2, 3))]))


def test_observation_validation():
    model = _discrete_model()
    assert_raises(ValueError, lambda: model.evaluate_action(None))
    assert_raises(ValueError, lambda: model.evaluate_action(np.zeros((2, 5))))


def test_visual_inputs_end_to_end():
    model = ppo(
        action_type="discrete",
        action_sizes=(2,),
        vector_obs_dim=2,
        visual_obs_shapes=[(20, 20, 3)],
        actor_hidden_sizes=(8,),
        critic_hidden_sizes=(8,),
        seed=0,
    )
    actions, _ = model.evaluate_action(np.zeros((3, 2)), np.random.rand(3, 20, 20, 3))
    assert_shape(actions, (3, 1))
    assert_shape(model.evaluate_value(np.zeros(2), np.random.rand(20, 20, 3)), (1,))
    assert_raises(ValueError, lambda: model.evaluate_action(np.zeros((3, 2))))
    assert_raises(ValueError, lambda: model.evaluate_action(np.zeros((3, 2)), np.random.rand(2, 20, 20, 3)))


def test_seeded_sampling_is_reproducible():
    seed_all(1)
    a = _continuous_model(seed=7)
    seed_all(1)
    b = _continuous_model(seed=7)
    obs = np.random.randn(4, 3)
    assert_allclose(a.evaluate_action(obs)[0], b.evaluate_action(obs)[0])


# =============================================================================
# Tests: normalizer timing
# =============================================================================
def test_only_evaluate_action_updates_normalizer():
    model = _continuous_model()
    obs = np.random.randn(6, 3).astype(np.float32)
    norm = model.normalizer

    model.evaluate_action(obs)
    assert_eq(norm.steps, 1)
    model.evaluate_value(obs)
    model.evaluate_probability(obs, np.zeros((6, 2)))
    assert_eq(norm.steps, 1)

    model.train_batch(**{**ppo_batch_arrays(6, 3, 2), "visual_obs": None})
    assert_eq(norm.steps, 1)

    model.evaluate_action_ne(obs)
    assert_eq(norm.steps, 2)


def test_action_uses_pre_update_statistics():
    seed_all(0)
    a = _continuous_model(seed=3)
    seed_all(0)
    b = _continuous_model(seed=3)
    obs = np.full((2, 3), 4.0, dtype=np.float32)
    b.normalizer.update(th.as_tensor(obs))

    act_a, _ = a.evaluate_action(obs)
    assert_allclose(a.normalizer.mean, th.full((3,), 4.0))
    act_b, _ = b.evaluate_action(obs)
    assert_true(not np.allclose(act_a, act_b), "first action must be computed before the statistics change")


def test_normalization_can_be_disabled():
    model = _continuous_model(use_input_normalization=False)
    assert_true(model.normalizer is None)
    model.evaluate_action(np.zeros((2, 3)))


# =============================================================================
# Tests: training
# =============================================================================
def test_train_batch_returns_losses_and_steps_optimizer():
    model = _continuous_model(lr=1e-2)
    p0 = [p.detach().clone() for p in model.network.parameters()]
    out = model.train_batch(**{**ppo_batch_arrays(8, 3, 2), "visual_obs": None})
    assert_eq(len(out), 4)
    assert_true(all(isinstance(x, float) and math.isfinite(x) for x in out))
    assert_eq(model.update_calls, 1)
    changed = any(not th.allclose(p.detach(), q) for p, q in zip(model.network.parameters(), p0))
    assert_true(changed, "train_batch did not update the network")


def test_grad_norm_is_reported_when_clipping():
    arrays = ppo_batch_arrays(8, 3, 2)
    batch = make_trajectory_batch(
        vector_observations=arrays["vector_obs"],
        actions=arrays["actions"],
        old_log_probs=arrays["old_log_probs"],
        target_values=arrays["target_values"],
        old_values=arrays["old_values"],
        advantages=arrays["advantages"],
    )
    clipped = _continuous_model(max_grad_norm=0.5).train_epochs(batch, epochs=1, minibatch_size=8, shuffle=False)
    assert_true(clipped["stats/grad_norm"] > 0.0)
    unclipped = _continuous_model().train_epochs(batch, epochs=1, minibatch_size=8, shuffle=False)
    assert_eq(unclipped["stats/grad_norm"], 0.0)


def test_total_loss_follows_live_hyperparams():
    model = _continuous_model()
    assert_true(model.core.hyperparams is model.hyperparams)
    arrays = {**ppo_batch_arrays(8, 3, 2), "visual_obs": None}

    for vw, ew in ((1.0, 0.0), (0.25, 0.5)):
        model.hyperparams.value_loss_weight = vw
        model.hyperparams.entropy_loss_weight = ew
        total, value, policy, entropy = model.train_batch(**arrays)
        assert_close(total, policy + vw * value - ew * entropy, rtol=1e-5, atol=1e-6)


def test_train_batch_discrete_with_masks():
    model = _discrete_model()
    n = 6
    masks = [np.ones((n, 3)), np.ones((n, 2))]
    actions, log_probs = model.evaluate_action(np.random.randn(n, 4), action_masks=masks)
    out = model.train_batch(
        np.random.randn(n, 4),
        None,
        actions,
        log_probs,
        np.random.randn(n),
        np.zeros(n),
        np.random.randn(n),
        masks,
    )
    assert_true(all(math.isfinite(x) for x in out))


def test_train_batch_length_mismatch_raises():
    model = _continuous_model()
    arrays = {**ppo_batch_arrays(8, 3, 2), "visual_obs": None}
    arrays["advantages"] = np.zeros(5)
    assert_raises(ValueError, lambda: model.train_batch(**arrays))


def test_train_epochs_over_collected_batch():
    model = _continuous_model()
    arrays = ppo_batch_arrays(10, 3, 2)
    batch = make_trajectory_batch(
        vector_observations=arrays["vector_obs"],
        actions=arrays["actions"],
        old_log_probs=arrays["old_log_probs"],
        target_values=arrays["target_values"],
        old_values=arrays["old_values"],
        advantages=arrays["advantages"],
    )
    metrics = model.train_epochs(batch, epochs=2, minibatch_size=4, rng=np.random.default_rng(0))
    assert_eq(model.update_calls, 6)
    for key in ("loss/total", "loss/value", "loss/policy", "stats/entropy", "stats/approx_kl", "stats/clip_frac", "stats/grad_norm", "lr"):
        assert_true(key in metrics, f"missing metric {key}")
    assert_raises(ValueError, lambda: model.train_epochs(batch, epochs=0, minibatch_size=4))

    no_adv = make_trajectory_batch(vector_observations=arrays["vector_obs"], actions=arrays["actions"])
    assert_raises(ValueError, lambda: model.train_epochs(no_adv, epochs=1, minibatch_size=4))


# =============================================================================
# Tests: mode gating / builders
# =============================================================================
def test_inference_only_model_rejects_training():
    model = _continuous_model(training_enabled=False)
    assert_true(model.core is None)
    model.evaluate_action(np.zeros((1, 3)))
    assert_raises(RuntimeError, lambda: model.train_batch(**{**ppo_batch_arrays(4, 3, 2), "visual_obs": None}))
    batch = make_trajectory_batch(vector_observations=np.zeros((2, 3)), actions=np.zeros((2, 2)))
    assert_raises(RuntimeError, lambda: model.train_epochs(batch, epochs=1, minibatch_size=2))


def test_entry_points_are_mode_specific():
    model = _continuous_model()
    assert_raises(TypeError, lambda: model.train_batch(np.zeros((2, 3)), None, np.zeros((2, 2))))
    sl = mimic(action_type="continuous", action_sizes=(2,), vector_obs_dim=3, actor_hidden_sizes=(8,))
    assert_true(isinstance(sl, SupervisedModel))
    assert_true(not hasattr(sl, "evaluate_value"))
    assert_true(not hasattr(sl, "evaluate_probability"))


def test_continuous_without_log_var_is_rejected():
    assert_raises(RuntimeError, lambda: _continuous_model(log_var_mode="none"))


def test_build_model_dispatch():
    kw = dict(action_type="discrete", action_sizes=(2,), vector_obs_dim=2, actor_hidden_sizes=(8,), critic_hidden_sizes=(8,))
    assert_true(isinstance(build_model("ppo", **kw), PPOModel))
    assert_true(isinstance(build_model("mimic", **kw), SupervisedModel))
    assert_true(isinstance(build_model("Supervised", **kw), SupervisedModel))
    assert_raises(ValueError, lambda: build_model("a2c", **kw))


def test_custom_network_contract():
    net = _TinyDiscreteNetwork(vector_obs_dim=3, action_sizes=(4, 2))
    model = ppo(action_type="discrete", action_sizes=(4, 2), vector_obs_dim=3, network=net, seed=0)
    assert_true(model.network is net)
    actions, _ = model.evaluate_action(np.random.randn(5, 3))
    assert_shape(actions, (5, 2))
    assert_eq(len(model.get_weights_for_neural_evolution()), 2)
    assert_raises(TypeError, lambda: ppo(action_type="discrete", action_sizes=(2,), network=nn.Linear(2, 2)))


def test_network_must_match_requested_io():
    net = _TinyDiscreteNetwork(vector_obs_dim=3, action_sizes=(4, 2))
    assert_raises(ValueError, lambda: ppo(action_type="continuous", action_sizes=(2,), vector_obs_dim=3, network=net))
    assert_raises(ValueError, lambda: ppo(action_type="discrete", action_sizes=(4, 3), vector_obs_dim=3, network=net))
    assert_raises(ValueError, lambda: ppo(action_type="discrete", action_sizes=(4, 2), vector_obs_dim=5, network=net))
    assert_raises(
        ValueError,
        lambda: ppo(action_type="discrete", action_sizes=(4, 2), vector_obs_dim=3, visual_obs_shapes=[(84, 84, 3)], network=net),
    )
    assert_raises(ValueError, lambda: mimic(action_type="continuous", action_sizes=(2,), vector_obs_dim=3, network=net))
    sl = mimic(action_type="DISCRETE", action_sizes=[4, 2], vector_obs_dim=3, network=net)
    assert_true(sl.network is net)


# =============================================================================
# Tests: persistence / logging
# =============================================================================
def test_save_load_round_trip():
    src = _continuous_model()
    for _ in range(3):
        src.evaluate_action(np.random.randn(4, 3) + 2.0)
    src.train_batch(**{**ppo_batch_arrays(8, 3, 2), "visual_obs": None})
    src.hyperparams.clip_epsilon = 0.1

    with TempDir() as d:
        path = src.save(os.path.join(d, "ckpt"))
        assert_true(path.endswith(".pt"))
        assert_file_exists(path)

        dst = _continuous_model(seed=123)
        dst.load(path)

    assert_eq(dst.normalizer.steps, 3)
    assert_allclose(dst.normalizer.mean, src.normalizer.mean)
    assert_allclose(dst.normalizer.running_variance, src.normalizer.running_variance)
    assert_eq(dst.update_calls, 1)
    assert_close(dst.hyperparams.clip_epsilon, 0.1)
    assert_true(dst.core.hyperparams is dst.hyperparams)
    obs = np.random.randn(3, 3)
    assert_allclose(dst.evaluate_value(obs), src.evaluate_value(obs), atol=1e-6)

    state = src.state_dict()
    assert_eq(state["meta"]["mode"], "ppo")
    assert_eq(state["kwargs"]["action_sizes"], [2])


def test_load_rejects_foreign_state():
    model = _continuous_model()
    assert_raises(ValueError, lambda: model.load_state_dict({"meta": {}}))
    sl = mimic(action_type="continuous", action_sizes=(2,), vector_obs_dim=3, actor_hidden_sizes=(16,), critic_hidden_sizes=(16,))
    assert_raises(ValueError, lambda: model.load_state_dict(sl.state_dict()))
    other = ppo(action_type="continuous", action_sizes=(2,), vector_obs_dim=5, actor_hidden_sizes=(16,), critic_hidden_sizes=(16,))
    assert_raises(Exception, lambda: model.load_state_dict(other.state_dict()))


def test_logger_receives_train_metrics():
    with TempDir() as d:
        mem = MemoryWriter()
        logger = Logger(log_dir=d, writers=[mem], console_every=0)
        model = _continuous_model(logger=logger)
        assert_file_exists(os.path.join(logger.run_dir, "config.json"))
        model.train_batch(**{**ppo_batch_arrays(4, 3, 2), "visual_obs": None})
        row = mem.rows[-1]
        assert_true("train/loss/total" in row and "train/stats/approx_kl" in row)
        assert_eq(row["step"], 1.0)
        logger.close()


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("value_loss_is_zero_at_target_and_clipped", test_value_loss_is_zero_at_target_and_clipped),
    ("surrogate_loss_ratio_one_and_zero_advantage", test_surrogate_loss_ratio_one_and_zero_advantage),
    ("surrogate_loss_clipping_zeroes_gradient", test_surrogate_loss_clipping_zeroes_gradient),
    ("ppo_loss_weights", test_ppo_loss_weights),
    ("continuous_log_prob_at_zero_mean", test_continuous_log_prob_at_zero_mean),
    ("evaluate_action_shapes_and_consistency", test_evaluate_action_shapes_and_consistency),
    ("evaluate_value_shape", test_evaluate_value_shape),
    ("discrete_masked_action_never_sampled", test_discrete_masked_action_never_sampled),
    ("single_branch_mask_over_many_draws", test_single_branch_mask_over_many_draws),
    ("none_mask_entry_permits_whole_branch", test_none_mask_entry_permits_whole_branch),
    ("discrete_mask_count_mismatch_raises", test_discrete_mask_count_mismatch_raises),
    ("observation_validation", test_observation_validation),
    ("visual_inputs_end_to_end", test_visual_inputs_end_to_end),
    ("seeded_sampling_is_reproducible", test_seeded_sampling_is_reproducible),
    ("only_evaluate_action_updates_normalizer", test_only_evaluate_action_updates_normalizer),
    ("action_uses_pre_update_statistics", test_action_uses_pre_update_statistics),
    ("normalization_can_be_disabled", test_normalization_can_be_disabled),
    ("train_batch_returns_losses_and_steps_optimizer", test_train_batch_returns_losses_and_steps_optimizer),
    ("grad_norm_is_reported_when_clipping", test_grad_norm_is_reported_when_clipping),
    ("total_loss_follows_live_hyperparams", test_total_loss_follows_live_hyperparams),
    ("train_batch_discrete_with_masks", test_train_batch_discrete_with_masks),
    ("train_batch_length_mismatch_raises", test_train_batch_length_mismatch_raises),
    ("train_epochs_over_collected_batch", test_train_epochs_over_collected_batch),
    ("inference_only_model_rejects_training", test_inference_only_model_rejects_training),
    ("entry_points_are_mode_specific", test_entry_points_are_mode_specific),
    ("continuous_without_log_var_is_rejected", test_continuous_without_log_var_is_rejected),
    ("build_model_dispatch", test_build_model_dispatch),
    ("custom_network_contract", test_custom_network_contract),
    ("network_must_match_requested_io", test_network_must_match_requested_io),
    ("save_load_round_trip", test_save_load_round_trip),
    ("load_rejects_foreign_state", test_load_rejects_foreign_state),
    ("logger_receives_train_metrics", test_logger_receives_train_metrics),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="ppo")


if __name__ == "__main__":
    raise SystemExit(main())
