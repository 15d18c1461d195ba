from __future__ import annotations

import math
import os
import sys
from typing import Any, Callable, List, Tuple

import numpy as np
import torch as th
import torch.nn as nn
from gymnasium import spaces


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
from ppo_model.common.utils import (  # noqa: E402
    ActionSpaceKind,
    AnnealingSchedule,
    interpolate,
    spec_kwargs,
    split_observation,
)
from ppo_model.common.utils.common_utils import _as_tensor_list, _to_column, _to_scalar  # noqa: E402
from ppo_model.common.utils.network_utils import _ensure_batch, _resolve_activation_fn  # noqa: E402
from ppo_model.common.utils.space_utils import (  # noqa: E402
    action_spec_from_space,
    observation_spec_from_space,
    ObservationSpec,
)
from ppo_model.common.utils.train_utils import _make_generator  # noqa: E402


# =============================================================================
# Tests: action spaces
# =============================================================================
def test_action_spec_from_box():
    spec = action_spec_from_space(spaces.Box(low=-1.0, high=1.0, shape=(3,), dtype=np.float32))
    assert_true(spec.kind is ActionSpaceKind.CONTINUOUS)
    assert_eq(spec.action_sizes, (3,))
    assert_eq(spec.action_width, 3)
    assert_allclose(spec.low, -np.ones(3))


def test_action_spec_from_discrete_and_multidiscrete():
    d = action_spec_from_space(spaces.Discrete(4))
    assert_true(d.kind is ActionSpaceKind.DISCRETE)
    assert_eq(d.action_sizes, (4,))
    assert_eq(d.action_width, 1)

    md = action_spec_from_space(spaces.MultiDiscrete([3, 2, 5]))
    assert_eq(md.action_sizes, (3, 2, 5))
    assert_eq(md.n_branches, 3)
    assert_eq(md.action_width, 3)


def test_action_spec_rejects_unsupported_spaces():
    assert_raises(ValueError, lambda: action_spec_from_space(spaces.Box(-1.0, 1.0, shape=(2, 2))))
    assert_raises(ValueError, lambda: action_spec_from_space(spaces.Discrete(3, start=1)))
    assert_raises(TypeError, lambda: action_spec_from_space(spaces.MultiBinary(4)))
    assert_raises(TypeError, lambda: action_spec_from_space(spaces.Tuple((spaces.Discrete(2), spaces.Discrete(3)))))


def test_action_space_kind_coerce():
    assert_true(ActionSpaceKind.coerce("Discrete") is ActionSpaceKind.DISCRETE)
    assert_true(ActionSpaceKind.coerce(ActionSpaceKind.CONTINUOUS) is ActionSpaceKind.CONTINUOUS)
    assert_raises(ValueError, lambda: ActionSpaceKind.coerce("hybrid"))


# =============================================================================
# Tests: observation spaces
# =============================================================================
def test_observation_spec_from_dict_space():
    space = spaces.Dict(
        {
            "camera": spaces.Box(0.0, 1.0, shape=(20, 20, 3), dtype=np.float32),
            "pose": spaces.Box(-1.0, 1.0, shape=(3,), dtype=np.float32),
            "velocity": spaces.Box(-1.0, 1.0, shape=(2,), dtype=np.float32),
        }
    )
    spec = observation_spec_from_space(space)
    assert_eq(spec.vector_dim, 5)
    assert_eq(spec.visual_shapes, ((20, 20, 3),))
    assert_true(spec.has_vector)
    assert_eq(spec.n_visual, 1)


def test_observation_spec_errors():
    assert_raises(ValueError, lambda: observation_spec_from_space(spaces.Box(-1.0, 1.0, shape=(4, 4))))
    assert_raises(TypeError, lambda: observation_spec_from_space(spaces.Discrete(5)))
    assert_raises(ValueError, lambda: ObservationSpec(vector_dim=0, visual_shapes=()))
    assert_raises(ValueError, lambda: ObservationSpec(vector_dim=2, visual_shapes=((20, 20),)))


def test_split_observation_sorted_dict_order():
    obs = {
        "velocity": np.ones(2),
        "camera": np.zeros((20, 20, 3)),
        "pose": np.array([1.0, 2.0, 3.0]),
    }
    vec, vis = split_observation(obs)
    assert_allclose(vec, np.array([1.0, 2.0, 3.0, 1.0, 1.0]))
    assert_eq(len(vis), 1)
    assert_shape(vis[0], (20, 20, 3))

    vec2, vis2 = split_observation(np.array([0.5, -0.5]))
    assert_allclose(vec2, np.array([0.5, -0.5]))
    assert_eq(vis2, [])

    vec3, vis3 = split_observation(np.zeros((24, 24, 1)))
    assert_true(vec3 is None)
    assert_eq(len(vis3), 1)


def test_spec_kwargs():
    kw = spec_kwargs(spaces.Box(-1.0, 1.0, shape=(4,)), spaces.MultiDiscrete([3, 2]))
    assert_eq(
        kw,
        {"vector_obs_dim": 4, "visual_obs_shapes": (), "action_type": "discrete", "action_sizes": (3, 2)},
    )


# =============================================================================
# Tests: schedules
# =============================================================================
def test_interpolate_linear_and_log():
    assert_close(interpolate(1.0, 0.0, 0.25), 0.75)
    assert_close(interpolate(1.0, 0.0, 2.0), 0.0)
    assert_close(interpolate(1.0, 0.0, -1.0), 1.0)
    assert_close(interpolate(1.0, 0.01, 0.5, method="log"), 0.1, rtol=1e-9)
    assert_raises(ValueError, lambda: interpolate(0.0, 1.0, 0.5, method="log"))
    assert_raises(ValueError, lambda: interpolate(1.0, 0.0, 0.5, method="cubic"))


def test_annealing_schedule():
    sched = AnnealingSchedule(start=0.2, end=0.1, total_steps=10)
    assert_close(sched(0), 0.2)
    assert_close(sched(5), 0.15)
    assert_close(sched(20), 0.1)
    geo = AnnealingSchedule(start=1e-2, end=1e-4, total_steps=2, method="log")
    assert_close(geo.value(1), 1e-3, rtol=1e-9)
    assert_raises(ValueError, lambda: AnnealingSchedule(start=1.0, end=0.0, total_steps=0))
    assert_raises(ValueError, lambda: AnnealingSchedule(start=1.0, end=0.0, total_steps=5, method="cubic"))


# =============================================================================
# Tests: conversion helpers
# =============================================================================
def test_ensure_batch_adds_leading_dim():
    assert_shape(_ensure_batch(np.zeros(3), "cpu"), (1, 3))
    assert_shape(_ensure_batch(np.zeros((5, 3)), "cpu"), (5, 3))
    assert_shape(_ensure_batch(np.zeros((20, 20, 3)), "cpu", event_dim=3), (1, 20, 20, 3))
    assert_shape(_ensure_batch(2.0, "cpu"), (1, 1))
    assert_true(_ensure_batch(np.zeros(3, dtype=np.int64), "cpu").dtype == th.float32)


def test_tensor_helpers():
    assert_shape(_to_column(th.zeros(4)), (4, 1))
    assert_shape(_to_column(th.zeros(4, 2)), (4, 2))
    assert_eq(len(_as_tensor_list(np.zeros((2, 20, 20, 3)), "cpu")), 1)
    assert_eq(len(_as_tensor_list([np.zeros(2), np.zeros(3)], "cpu")), 2)
    assert_true(_as_tensor_list(None, "cpu") is None)
    assert_true(_as_tensor_list([np.ones(2), None], "cpu")[1] is None)
    assert_close(_to_scalar(th.tensor([2.5])), 2.5)
    assert_true(_to_scalar(np.zeros(2)) is None)
    assert_true(_to_scalar("abc") is None)


def test_resolve_activation_fn():
    assert_true(_resolve_activation_fn("relu") is nn.ReLU)
    assert_true(_resolve_activation_fn("nn.ELU") is nn.ELU)
    assert_true(_resolve_activation_fn(nn.Tanh()) is nn.Tanh)
    assert_true(_resolve_activation_fn(None) is nn.ReLU)
    assert_raises(ValueError, lambda: _resolve_activation_fn("swishy"))
    assert_raises(TypeError, lambda: _resolve_activation_fn(3))


def test_make_generator():
    assert_true(_make_generator(None) is None)
    g = th.Generator().manual_seed(1)
    assert_true(_make_generator(5, generator=g) is g)
    a = th.rand(3, generator=_make_generator(11))
    b = th.rand(3, generator=_make_generator(11))
    assert_allclose(a, b)
    assert_true(not math.isnan(float(a.sum())))


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("action_spec_from_box", test_action_spec_from_box),
    ("action_spec_from_discrete_and_multidiscrete", test_action_spec_from_discrete_and_multidiscrete),
    ("action_spec_rejects_unsupported_spaces", test_action_spec_rejects_unsupported_spaces),
    ("action_space_kind_coerce", test_action_space_kind_coerce),
    ("observation_spec_from_dict_space", test_observation_spec_from_dict_space),
    ("observation_spec_errors", test_observation_spec_errors),
    ("split_observation_sorted_dict_order", test_split_observation_sorted_dict_order),
    ("spec_kwargs", test_spec_kwargs),
    ("interpolate_linear_and_log", test_interpolate_linear_and_log),
    ("annealing_schedule", test_annealing_schedule),
    ("ensure_batch_adds_leading_dim", test_ensure_batch_adds_leading_dim),
    ("tensor_helpers", test_tensor_helpers),
    ("resolve_activation_fn", test_resolve_activation_fn),
    ("make_generator", test_make_generator),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="utils")


if __name__ == "__main__":
    raise SystemExit(main())
