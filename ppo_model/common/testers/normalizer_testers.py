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
    assert_close,
    assert_eq,
    assert_raises,
    assert_true,
    run_tests,
)
from ppo_model.common.normalizers import RunningObservationNormalizer  # noqa: E402


# =============================================================================
# Tests
# =============================================================================
def test_initial_statistics():
    norm = RunningObservationNormalizer(3)
    assert_allclose(norm.mean, th.zeros(3))
    assert_allclose(norm.running_variance, th.ones(3))
    assert_eq(norm.steps, 0)
    x = th.tensor([[1.0, -2.0, 0.5]])
    assert_allclose(norm.normalize(x), x)


def test_single_update_hand_values():
    norm = RunningObservationNormalizer(1)
    norm.update(th.tensor([[2.0], [4.0]]))
    assert_allclose(norm.mean, th.tensor([3.0]))
    assert_allclose(norm.running_variance, th.tensor([1.0]))
    assert_eq(norm.steps, 1)
    assert_allclose(norm.variance, th.tensor([0.5]))
    assert_close(float(norm.normalize(th.tensor([[5.0]]))), 2.0 / math.sqrt(0.5), rtol=1e-5)


def test_second_update_hand_values():
    norm = RunningObservationNormalizer(1)
    norm.update(th.tensor([[2.0], [4.0]]))
    norm.update(th.tensor([[5.0]]))
    assert_allclose(norm.mean, th.tensor([4.0]))
    assert_allclose(norm.running_variance, th.tensor([3.0]))
    assert_eq(norm.steps, 2)
    assert_allclose(norm.variance, th.tensor([1.0]))


def test_constant_stream_normalizes_to_zero_and_clips():
    norm = RunningObservationNormalizer(1, clip=5.0)
    for _ in range(200):
        norm.update(th.full((4, 1), 7.0))
    assert_allclose(norm.mean, th.tensor([7.0]), atol=1e-5)
    assert_true(float(norm.variance) < 0.01)
    assert_allclose(norm.normalize(th.tensor([[7.0]])), th.zeros(1, 1), atol=1e-4)
    assert_allclose(norm.normalize(th.tensor([[8.0]])), th.tensor([[5.0]]))
    assert_allclose(norm.normalize(th.tensor([[6.0]])), th.tensor([[-5.0]]))


def test_normalize_does_not_update():
    norm = RunningObservationNormalizer(2)
    norm.update(th.tensor([[1.0, 2.0]]))
    before = norm.statistics()
    norm.normalize(th.randn(8, 2))
    after = norm.statistics()
    assert_allclose(before["running_mean"], after["running_mean"])
    assert_eq(before["step_count"], after["step_count"])


def test_shape_validation():
    norm = RunningObservationNormalizer(3)
    assert_raises(ValueError, lambda: norm.normalize(th.zeros(2, 4)))
    assert_raises(ValueError, lambda: norm.update(th.zeros(3)))
    assert_raises(ValueError, lambda: norm.update(th.zeros(2, 2)))
    assert_raises(ValueError, lambda: RunningObservationNormalizer(0))
    assert_raises(ValueError, lambda: RunningObservationNormalizer(2, clip=0.0))


def test_state_dict_round_trip_and_reset():
    src = RunningObservationNormalizer(2)
    src.update(th.tensor([[1.0, 3.0], [3.0, 5.0]]))
    src.update(th.tensor([[0.0, 0.0]]))
    sd = src.state_dict()
    for key in ("running_mean", "running_variance", "step_count"):
        assert_true(key in sd, f"missing buffer {key}")

    dst = RunningObservationNormalizer(2)
    dst.load_state_dict(sd)
    x = th.tensor([[2.0, 2.0]])
    assert_allclose(dst.normalize(x), src.normalize(x))
    assert_eq(dst.steps, 2)

    dst.reset()
    assert_allclose(dst.mean, th.zeros(2))
    assert_allclose(dst.running_variance, th.ones(2))
    assert_eq(dst.steps, 0)


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("initial_statistics", test_initial_statistics),
    ("single_update_hand_values", test_single_update_hand_values),
    ("second_update_hand_values", test_second_update_hand_values),
    ("constant_stream_normalizes_to_zero_and_clips", test_constant_stream_normalizes_to_zero_and_clips),
    ("normalize_does_not_update", test_normalize_does_not_update),
    ("shape_validation", test_shape_validation),
    ("state_dict_round_trip_and_reset", test_state_dict_round_trip_and_reset),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="normalizers")


if __name__ == "__main__":
    raise SystemExit(main())
