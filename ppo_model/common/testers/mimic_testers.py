from __future__ import annotations

import math
import os
import sys
from typing import Any, Callable, List, Tuple

import numpy as np
import torch as th


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
    assert_raises,
    assert_shape,
    assert_true,
    run_tests,
)
from ppo_model.common.testers.test_harness import TempDir, random_discrete_actions, random_vector_obs  # noqa: E402
from ppo_model.baselines.mimic import (  # noqa: E402
    SupervisedModel,
    categorical_imitation_loss,
    gaussian_imitation_loss,
    mimic,
)
from ppo_model.baselines.ppo import ppo  # noqa: E402
from ppo_model.common.buffers import make_trajectory_batch  # noqa: E402


def _continuous_model(**kw) -> SupervisedModel:
    kw.setdefault("seed", 0)
    return mimic(action_type="continuous", action_sizes=(2,), vector_obs_dim=3, actor_hidden_sizes=(16,), critic_hidden_sizes=(16,), **kw)


def _discrete_model(**kw) -> SupervisedModel:
    kw.setdefault("seed", 0)
    return mimic(action_type="discrete", action_sizes=(3, 2), vector_obs_dim=4, actor_hidden_sizes=(16,), critic_hidden_sizes=(16,), **kw)


# =============================================================================
# Tests: loss terms
# =============================================================================
def test_gaussian_imitation_loss_closed_form():
    mean = th.tensor([[0.0, 1.0]])
    log_var = th.tensor([[0.0, math.log(4.0)]])
    labels = th.tensor([[1.0, 1.0]])
    expected = (0.5 + 0.5 * math.log(4.0)) / 2.0
    assert_close(float(gaussian_imitation_loss(mean, log_var, labels)), expected, rtol=1e-5)


def test_categorical_imitation_loss_sums_branches():
    logits = [th.log(th.tensor([[0.25, 0.75]])), th.log(th.tensor([[0.5, 0.5]]))]
    labels = th.tensor([[1.0, 0.0]])
    expected = -math.log(0.75) - math.log(0.5)
    assert_close(float(categorical_imitation_loss(logits, labels)), expected, atol=1e-5)

    masks = [th.tensor([[0.0, 1.0]]), th.tensor([[1.0, 1.0]])]
    assert_close(float(categorical_imitation_loss(logits, labels, masks)), -math.log(0.5), atol=1e-5)


# =============================================================================
# Tests: inference
# =============================================================================
def test_continuous_evaluate_action_returns_mean_and_variance():
    model = _continuous_model(log_var_init=-1.0)
    actions, variance = model.evaluate_action(np.zeros((4, 3)))
    assert_shape(actions, (4, 2))
    assert_allclose(actions, np.zeros((4, 2)))
    assert_allclose(variance, np.full((4, 2), math.exp(-1.0)), rtol=1e-5)
    assert_eq(model.normalizer.steps, 1)


def test_continuous_without_log_var_returns_no_variance():
    model = _continuous_model(log_var_mode="none")
    actions, variance = model.evaluate_action(np.random.randn(3, 3))
    assert_shape(actions, (3, 2))
    assert_true(variance is None)


def test_discrete_evaluate_action_respects_masks():
    model = _discrete_model()
    n = 100
    m1 = np.ones((n, 2), dtype=np.float32)
    m1[:, 0] = 0.0
    actions, variance = model.evaluate_action(random_vector_obs(n, 4), action_masks=[np.ones((n, 3)), m1])
    assert_true(variance is None)
    assert_shape(actions, (n, 2))
    assert_true(np.all(actions[:, 1] == 1.0), "masked index of the second branch was sampled")


# =============================================================================
# Tests: training
# =============================================================================
def test_train_batch_loss_values_at_initialization():
    labels = np.array([[1.0, 2.0], [3.0, 4.0]], dtype=np.float32)
    obs = np.zeros((2, 3), dtype=np.float32)

    gauss = _continuous_model(log_var_init=0.0)
    assert_close(gauss.train_batch(obs, None, labels), 0.5 * 7.5, rtol=1e-5)

    mse = _continuous_model(log_var_mode="none")
    assert_close(mse.train_batch(obs, None, labels), 7.5, rtol=1e-5)

    disc = _discrete_model()
    loss = disc.train_batch(np.zeros((4, 4)), None, random_discrete_actions(4, [3, 2]))
    assert_close(loss, math.log(3.0) + math.log(2.0), rtol=1e-4)


def test_only_actor_parameters_are_trained():
    model = _continuous_model(lr=1e-2)
    net = model.network
    actor0 = [p.detach().clone() for p in net.actor_parameters()]
    critic0 = [p.detach().clone() for p in net.critic_parameters()]

    model.train_batch(random_vector_obs(8, 3), None, random_vector_obs(8, 2, seed=1))

    assert_true(
        any(not th.allclose(p.detach(), q) for p, q in zip(net.actor_parameters(), actor0)),
        "actor parameters did not change",
    )
    for p, q in zip(net.critic_parameters(), critic0):
        assert_true(th.equal(p.detach(), q), "critic parameters must stay untouched")
    assert_eq(model.normalizer.steps, 0)


def test_training_reduces_discrete_imitation_loss():
    model = _discrete_model(lr=1e-2)
    obs = random_vector_obs(16, 4)
    labels = random_discrete_actions(16, [3, 2], seed=1)
    first = model.train_batch(obs, None, labels)
    for _ in range(50):
        last = model.train_batch(obs, None, labels)
    assert_true(last < first, f"loss did not decrease: {first} -> {last}")
    assert_eq(model.update_calls, 51)


def test_train_epochs_with_supervised_batch():
    model = _continuous_model()
    batch = make_trajectory_batch(vector_observations=random_vector_obs(9, 3), actions=random_vector_obs(9, 2, seed=2))
    metrics = model.train_epochs(batch, epochs=1, minibatch_size=4, shuffle=False)
    assert_eq(sorted(metrics.keys()), ["loss/total", "lr"])
    assert_eq(model.update_calls, 3)


def test_inference_only_model_rejects_training():
    model = _continuous_model(training_enabled=False)
    model.evaluate_action(np.zeros((1, 3)))
    assert_raises(RuntimeError, lambda: model.train_batch(np.zeros((1, 3)), None, np.zeros((1, 2))))


def test_action_width_mismatch_raises():
    model = _continuous_model()
    assert_raises(ValueError, lambda: model.train_batch(np.zeros((2, 3)), None, np.zeros((2, 3))))
    assert_raises(ValueError, lambda: model.train_batch(np.zeros((2, 3)), None, np.zeros((3, 2))))


# =============================================================================
# Tests: persistence
# =============================================================================
def test_checkpoint_excludes_critic_weights():
    src = _continuous_model()
    src.evaluate_action(random_vector_obs(4, 3) + 1.0)
    src.train_batch(random_vector_obs(4, 3), None, random_vector_obs(4, 2, seed=3))

    state = src.state_dict()
    assert_eq(state["meta"]["mode"], "supervised")
    head_keys = list(state["head"].keys())
    assert_true(not any("critic_encoder" in k or "value_head" in k for k in head_keys), "critic weights were saved")
    assert_true(any("normalizer" in k for k in head_keys))

    with TempDir() as d:
        path = src.save(os.path.join(d, "mimic.pt"))
        dst = _continuous_model(seed=5)
        critic0 = [p.detach().clone() for p in dst.network.critic_parameters()]
        dst.load(path)

    obs = random_vector_obs(3, 3, seed=9)
    assert_allclose(dst.evaluate_action(obs)[0], src.evaluate_action(obs)[0], atol=1e-6)
    assert_eq(dst.normalizer.steps, src.normalizer.steps)
    for p, q in zip(dst.network.critic_parameters(), critic0):
        assert_true(th.equal(p.detach(), q))


def test_supervised_checkpoint_is_not_a_ppo_checkpoint():
    sl = _continuous_model()
    rl = ppo(action_type="continuous", action_sizes=(2,), vector_obs_dim=3, actor_hidden_sizes=(16,), critic_hidden_sizes=(16,))
    assert_raises(ValueError, lambda: rl.load_state_dict(sl.state_dict()))
    assert_raises(ValueError, lambda: sl.load_state_dict(rl.state_dict()))


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("gaussian_imitation_loss_closed_form", test_gaussian_imitation_loss_closed_form),
    ("categorical_imitation_loss_sums_branches", test_categorical_imitation_loss_sums_branches),
    ("continuous_evaluate_action_returns_mean_and_variance", test_continuous_evaluate_action_returns_mean_and_variance),
    ("continuous_without_log_var_returns_no_variance", test_continuous_without_log_var_returns_no_variance),
    ("discrete_evaluate_action_respects_masks", test_discrete_evaluate_action_respects_masks),
    ("train_batch_loss_values_at_initialization", test_train_batch_loss_values_at_initialization),
    ("only_actor_parameters_are_trained", test_only_actor_parameters_are_trained),
    ("training_reduces_discrete_imitation_loss", test_training_reduces_discrete_imitation_loss),
    ("train_epochs_with_supervised_batch", test_train_epochs_with_supervised_batch),
    ("inference_only_model_rejects_training", test_inference_only_model_rejects_training),
    ("action_width_mismatch_raises", test_action_width_mismatch_raises),
    ("checkpoint_excludes_critic_weights", test_checkpoint_excludes_critic_weights),
    ("supervised_checkpoint_is_not_a_ppo_checkpoint", test_supervised_checkpoint_is_not_a_ppo_checkpoint),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="mimic")


if __name__ == "__main__":
    raise SystemExit(main())
