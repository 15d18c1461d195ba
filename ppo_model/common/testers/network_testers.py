from __future__ import annotations

import math
import os
import sys
from typing import Any, Callable, List, Tuple

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
    assert_eq,
    assert_raises,
    assert_shape,
    assert_true,
    run_tests,
    seed_all,
)
from ppo_model.common.networks.base_networks import (  # noqa: E402
    MLPFeaturesExtractor,
    VisualEncoder,
)
from ppo_model.common.networks.actor_critic_networks import SimpleActorCriticNetwork  # noqa: E402
from ppo_model.common.networks.distributions import (  # noqa: E402
    LOG_EPS,
    DiagGaussianLogVarDistribution,
    MaskedMultiCategoricalDistribution,
)


# =============================================================================
# Tests: encoders
# =============================================================================
def test_mlp_features_extractor_shape_and_out_dim():
    net = MLPFeaturesExtractor(input_dim=5, hidden_sizes=[16, 8])
    y = net(th.randn(4, 5))
    assert_eq(tuple(y.shape), (4, 8))
    assert_eq(net.out_dim, 8)


def test_mlp_features_extractor_requires_hidden_sizes():
    assert_raises(ValueError, lambda: MLPFeaturesExtractor(input_dim=5, hidden_sizes=[]))


def test_visual_encoder_nhwc_shape():
    """24x24 input -> 5x5 -> 1x1 feature maps, 32 channels."""
    enc = VisualEncoder((24, 24, 3), hidden_sizes=(16,))
    assert_eq(enc.conv_out_dim, 32)
    y = enc(th.rand(2, 24, 24, 3))
    assert_eq(tuple(y.shape), (2, 16))


def test_visual_encoder_rejects_tiny_images():
    assert_raises(ValueError, lambda: VisualEncoder((10, 10, 3), hidden_sizes=(16,)))


# =============================================================================
# Tests: SimpleActorCriticNetwork
# =============================================================================
def test_discrete_network_forward_shapes():
    net = SimpleActorCriticNetwork(action_type="discrete", action_sizes=(3, 2), vector_obs_dim=6)
    out = net(th.randn(4, 6), [])
    assert_eq(len(out.logits), 2)
    assert_shape(out.logits[0], (4, 3))
    assert_shape(out.logits[1], (4, 2))
    assert_shape(out.value, (4, 1))
    assert_true(out.mean is None and out.log_var is None)
    assert_eq(net.action_width, 2)


def test_continuous_network_log_var_modes():
    net_p = SimpleActorCriticNetwork(action_type="continuous", action_sizes=(2,), vector_obs_dim=3, log_var_init=-1.0)
    out = net_p(th.randn(5, 3), [])
    assert_shape(out.mean, (5, 2))
    assert_shape(out.log_var, (5, 2))
    assert_allclose(out.log_var, th.full((5, 2), -1.0))
    assert_true(net_p.has_log_var)

    net_l = SimpleActorCriticNetwork(action_type="continuous", action_sizes=(2,), vector_obs_dim=3, log_var_mode="layer")
    assert_shape(net_l(th.randn(5, 3), []).log_var, (5, 2))
    assert_true(net_l.has_log_var)

    net_n = SimpleActorCriticNetwork(action_type="continuous", action_sizes=(2,), vector_obs_dim=3, log_var_mode="none")
    assert_true(net_n(th.randn(5, 3), []).log_var is None)
    assert_true(not net_n.has_log_var)


def test_visual_and_vector_inputs_are_concatenated():
    net = SimpleActorCriticNetwork(
        action_type="discrete",
        action_sizes=(4,),
        vector_obs_dim=3,
        visual_obs_shapes=[(24, 24, 3), (20, 20, 1)],
        actor_hidden_sizes=(16,),
        critic_hidden_sizes=(8,),
    )
    assert_eq(net.actor_encoder.out_dim, 16 * 3)
    assert_eq(net.critic_encoder.out_dim, 8 * 3)
    out = net(th.randn(2, 3), [th.rand(2, 24, 24, 3), th.rand(2, 20, 20, 1)])
    assert_shape(out.logits[0], (2, 4))
    assert_shape(out.value, (2, 1))


def test_visual_only_network():
    net = SimpleActorCriticNetwork(action_type="continuous", action_sizes=(1,), visual_obs_shapes=[(20, 20, 3)])
    out = net(None, [th.rand(3, 20, 20, 3)])
    assert_shape(out.mean, (3, 1))
    assert_raises(ValueError, lambda: net(None, []))


def test_actor_and_critic_parameters_partition_all_parameters():
    net = SimpleActorCriticNetwork(action_type="continuous", action_sizes=(2,), vector_obs_dim=4)
    actor = {id(p) for p in net.actor_parameters()}
    critic = {id(p) for p in net.critic_parameters()}
    every = {id(p) for p in net.parameters()}
    assert_true(actor.isdisjoint(critic), "actor and critic parameters overlap")
    assert_eq(actor | critic, every)
    assert_true(id(net.log_var_param) in actor, "log-variance vector must belong to the actor")


def test_output_layers_use_small_xavier_gain_and_zero_bias():
    net = SimpleActorCriticNetwork(action_type="discrete", action_sizes=(5,), vector_obs_dim=7)
    fan_in, fan_out = net.policy_head.in_features, net.policy_head.out_features
    bound = math.sqrt(0.01) * math.sqrt(6.0 / (fan_in + fan_out))
    assert_true(float(net.policy_head.weight.abs().max()) <= bound + 1e-7)
    assert_allclose(net.policy_head.bias, th.zeros(5))
    assert_allclose(net.value_head.bias, th.zeros(1))


def test_network_construction_errors():
    assert_raises(ValueError, lambda: SimpleActorCriticNetwork(action_type="discrete", action_sizes=(3,)))
    assert_raises(
        ValueError,
        lambda: SimpleActorCriticNetwork(action_type="discrete", action_sizes=(0,), vector_obs_dim=2),
    )
    assert_raises(
        ValueError,
        lambda: SimpleActorCriticNetwork(action_type="continuous", action_sizes=(2, 2), vector_obs_dim=2),
    )
    assert_raises(
        ValueError,
        lambda: SimpleActorCriticNetwork(
            action_type="continuous", action_sizes=(2,), vector_obs_dim=2, log_var_mode="softplus"
        ),
    )
    assert_raises(ValueError, lambda: SimpleActorCriticNetwork(action_type="box", action_sizes=(2,), vector_obs_dim=2))


# =============================================================================
# Tests: DiagGaussianLogVarDistribution
# =============================================================================
def test_gaussian_log_prob_at_mean_unit_variance():
    dist = DiagGaussianLogVarDistribution(th.zeros(4, 2), th.zeros(4, 2))
    lp = dist.log_prob(th.zeros(4, 2))
    assert_shape(lp, (4, 2))
    assert_allclose(lp, th.full((4, 2), -0.9189385), atol=1e-6)


def test_gaussian_log_prob_closed_form():
    mean = th.tensor([[0.5, -1.0]])
    log_var = th.tensor([[math.log(4.0), 0.0]])
    a = th.tensor([[2.5, 0.0]])
    dist = DiagGaussianLogVarDistribution(mean, log_var)
    expected = -0.5 * math.log(2.0 * math.pi) - 0.5 * log_var - (a - mean).pow(2) / (2.0 * th.exp(log_var))
    assert_allclose(dist.log_prob(a), expected, atol=1e-6)


def test_gaussian_sampling_moments():
    g = th.Generator().manual_seed(0)
    n = 20000
    mean = th.tensor([1.0, -2.0]).expand(n, 2)
    log_var = th.tensor([0.0, math.log(4.0)])
    dist = DiagGaussianLogVarDistribution(mean, log_var, generator=g)
    a = dist.sample()
    assert_shape(a, (n, 2))
    assert_true(not a.requires_grad)
    assert_allclose(a.mean(dim=0), th.tensor([1.0, -2.0]), atol=0.1)
    assert_allclose(a.var(dim=0), th.tensor([1.0, 4.0]), atol=0.25)


def test_gaussian_entropy_and_mode():
    log_var = th.tensor([[0.0, 2.0]])
    dist = DiagGaussianLogVarDistribution(th.zeros(1, 2), log_var)
    expected = float((0.5 * (math.log(2.0 * math.pi * math.e) + log_var)).mean())
    assert_eq(tuple(dist.entropy().shape), ())
    assert_allclose(dist.entropy(), expected, atol=1e-6)
    assert_allclose(dist.mode(), th.zeros(1, 2))
    assert_allclose(dist.variance, th.exp(log_var))


def test_gaussian_sampling_is_reproducible_with_generator():
    mean, log_var = th.zeros(8, 3), th.zeros(8, 3)
    a1 = DiagGaussianLogVarDistribution(mean, log_var, generator=th.Generator().manual_seed(7)).sample()
    a2 = DiagGaussianLogVarDistribution(mean, log_var, generator=th.Generator().manual_seed(7)).sample()
    assert_allclose(a1, a2)


# =============================================================================
# Tests: MaskedMultiCategoricalDistribution
# =============================================================================
def test_masked_probabilities_have_zero_mass_and_sum_to_one():
    seed_all(0)
    logits = [th.randn(4, 5), th.randn(4, 3)]
    masks = [
        th.tensor([[1, 1, 0, 1, 0]] * 4, dtype=th.float32),
        th.tensor([[0, 1, 1]] * 4, dtype=th.float32),
    ]
    dist = MaskedMultiCategoricalDistribution(logits, masks)
    for p, m in zip(dist.probs, masks):
        assert_allclose(p[m == 0], th.zeros(int((m == 0).sum())))
        assert_allclose(p.sum(dim=-1), th.ones(4), atol=1e-6)


def test_masked_index_is_never_sampled():
    g = th.Generator().manual_seed(0)
    n = 1000
    mask = th.tensor([[1.0, 1.0, 0.0]]).expand(n, 3)
    dist = MaskedMultiCategoricalDistribution([th.zeros(n, 3)], [mask], generator=g)
    a = dist.sample()
    assert_shape(a, (n, 1))
    assert_true(a.dtype == th.long)
    assert_true(bool((a != 2).all()), "masked action 2 was sampled")
    assert_true(bool((a == 0).any()) and bool((a == 1).any()))


def test_all_masked_branch_is_absorbed():
    mask = th.zeros(3, 4)
    dist = MaskedMultiCategoricalDistribution([th.randn(3, 4)], [mask], generator=th.Generator().manual_seed(1))
    assert_allclose(dist.probs[0], th.zeros(3, 4))
    a = dist.sample()
    assert_true(bool(((a >= 0) & (a < 4)).all()))
    assert_allclose(dist.log_prob(a), th.full((3, 1), math.log(LOG_EPS)), atol=1e-4)


def test_categorical_entropy_matches_hand_computation():
    p = th.tensor([0.2, 0.3, 0.5])
    dist = MaskedMultiCategoricalDistribution([th.log(p).unsqueeze(0)])
    expected = float(-(p * th.log(p)).sum())
    assert_allclose(dist.entropy(), expected, atol=1e-5)


def test_multi_branch_entropy_is_sum_of_branch_means():
    p1 = th.tensor([[0.5, 0.5], [0.9, 0.1]])
    p2 = th.tensor([[0.25, 0.25, 0.25, 0.25], [1.0 / 3, 1.0 / 3, 1.0 / 3 - 1e-7, 1e-7]])
    dist = MaskedMultiCategoricalDistribution([th.log(p1), th.log(p2)])
    h1 = -(p1 * th.log(p1 + LOG_EPS)).sum(-1).mean()
    h2 = -(dist.probs[1] * th.log(dist.probs[1] + LOG_EPS)).sum(-1).mean()
    assert_allclose(dist.entropy(), h1 + h2, atol=1e-5)


def test_categorical_log_prob_per_branch_and_rounding():
    logits = [th.log(th.tensor([[0.1, 0.9]])), th.log(th.tensor([[0.6, 0.3, 0.1]]))]
    dist = MaskedMultiCategoricalDistribution(logits)
    lp = dist.log_prob(th.tensor([[0.9, 2.2]]))
    assert_shape(lp, (1, 2))
    assert_allclose(lp, th.log(th.tensor([[0.9, 0.1]])), atol=1e-5)
    assert_allclose(dist.mode(), th.tensor([[1, 0]]))


def test_categorical_mask_validation():
    logits = [th.randn(2, 3), th.randn(2, 2)]
    assert_raises(ValueError, lambda: MaskedMultiCategoricalDistribution(logits, [th.ones(2, 3)]))
    assert_raises(ValueError, lambda: MaskedMultiCategoricalDistribution(logits, [th.ones(2, 3), th.ones(2, 3)]))


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("mlp_features_extractor_shape_and_out_dim", test_mlp_features_extractor_shape_and_out_dim),
    ("mlp_features_extractor_requires_hidden_sizes", test_mlp_features_extractor_requires_hidden_sizes),
    ("visual_encoder_nhwc_shape", test_visual_encoder_nhwc_shape),
    ("visual_encoder_rejects_tiny_images", test_visual_encoder_rejects_tiny_images),
    ("discrete_network_forward_shapes", test_discrete_network_forward_shapes),
    ("continuous_network_log_var_modes", test_continuous_network_log_var_modes),
    ("visual_and_vector_inputs_are_concatenated", test_visual_and_vector_inputs_are_concatenated),
    ("visual_only_network", test_visual_only_network),
    ("actor_and_critic_parameters_partition_all_parameters", test_actor_and_critic_parameters_partition_all_parameters),
    ("output_layers_use_small_xavier_gain_and_zero_bias", test_output_layers_use_small_xavier_gain_and_zero_bias),
    ("network_construction_errors", test_network_construction_errors),
    ("gaussian_log_prob_at_mean_unit_variance", test_gaussian_log_prob_at_mean_unit_variance),
    ("gaussian_log_prob_closed_form", test_gaussian_log_prob_closed_form),
    ("gaussian_sampling_moments", test_gaussian_sampling_moments),
    ("gaussian_entropy_and_mode", test_gaussian_entropy_and_mode),
    ("gaussian_sampling_is_reproducible_with_generator", test_gaussian_sampling_is_reproducible_with_generator),
    ("masked_probabilities_have_zero_mass_and_sum_to_one", test_masked_probabilities_have_zero_mass_and_sum_to_one),
    ("masked_index_is_never_sampled", test_masked_index_is_never_sampled),
    ("all_masked_branch_is_absorbed", test_all_masked_branch_is_absorbed),
    ("categorical_entropy_matches_hand_computation", test_categorical_entropy_matches_hand_computation),
    ("multi_branch_entropy_is_sum_of_branch_means", test_multi_branch_entropy_is_sum_of_branch_means),
    ("categorical_log_prob_per_branch_and_rounding", test_categorical_log_prob_per_branch_and_rounding),
    ("categorical_mask_validation", test_categorical_mask_validation),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="networks")


if __name__ == "__main__":
    raise SystemExit(main())
