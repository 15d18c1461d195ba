from __future__ import annotations

import os
import sys
from typing import Any, Callable, List, Tuple

import numpy as np


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
from ppo_model.common.buffers import (  # noqa: E402
    TrajectoryBatch,
    TrajectoryBuffer,
    iterate_minibatches,
    make_trajectory_batch,
)
from ppo_model.common.utils.buffer_utils import compute_gae, compute_returns_and_advantages  # noqa: E402


# =============================================================================
# Tests: GAE
# =============================================================================
def test_gae_terminal_cuts_bootstrap():
    adv = compute_gae(
        np.array([1.0, 1.0, 1.0]),
        np.zeros(3),
        np.array([0.0, 0.0, 1.0]),
        last_value=10.0,
        last_done=False,
        gamma=0.5,
        gae_lambda=1.0,
    )
    assert_allclose(adv, np.array([1.75, 1.5, 1.0]))


def test_gae_bootstraps_from_last_value():
    kw = dict(gamma=0.9, gae_lambda=0.95)
    adv = compute_gae(np.array([0.0]), np.array([1.0]), np.array([0.0]), last_value=2.0, last_done=False, **kw)
    assert_allclose(adv, np.array([0.8]), atol=1e-6)
    adv_done = compute_gae(np.array([0.0]), np.array([1.0]), np.array([0.0]), last_value=2.0, last_done=True, **kw)
    assert_allclose(adv_done, np.array([-1.0]))


def test_returns_are_advantages_plus_values():
    returns, adv = compute_returns_and_advantages(
        np.array([1.0, 2.0]),
        np.array([0.5, 1.0]),
        np.array([0.0, 0.0]),
        last_value=3.0,
        last_done=False,
        gamma=1.0,
        gae_lambda=0.0,
    )
    assert_allclose(adv, np.array([1.5, 4.0]))
    assert_allclose(returns, np.array([2.0, 5.0]))

    returns_n, adv_n = compute_returns_and_advantages(
        np.array([1.0, 2.0]),
        np.array([0.5, 1.0]),
        np.array([0.0, 0.0]),
        last_value=3.0,
        last_done=False,
        gamma=1.0,
        gae_lambda=0.0,
        normalize_advantages=True,
    )
    assert_allclose(returns_n, returns)
    assert_allclose(adv_n, np.array([-1.0, 1.0]), atol=1e-5)


def test_gae_input_validation():
    z = np.zeros(3)
    assert_raises(ValueError, lambda: compute_gae(np.zeros((3, 1)), z, z, last_value=0.0, last_done=True, gamma=0.9, gae_lambda=0.9))
    assert_raises(ValueError, lambda: compute_gae(z, np.zeros(2), z, last_value=0.0, last_done=True, gamma=0.9, gae_lambda=0.9))
    assert_raises(ValueError, lambda: compute_gae(z, z, z, last_value=0.0, last_done=True, gamma=1.5, gae_lambda=0.9))
    assert_raises(ValueError, lambda: compute_gae(z, z, z, last_value=0.0, last_done=True, gamma=0.9, gae_lambda=-0.1))


# =============================================================================
# Tests: TrajectoryBatch
# =============================================================================
def test_make_trajectory_batch_shapes():
    batch = make_trajectory_batch(
        vector_observations=np.zeros((4, 3)),
        actions=np.array([0, 1, 2, 1]),
        old_log_probs=np.zeros(4),
        target_values=np.ones((4, 1)),
        advantages=np.ones(4),
    )
    assert_eq(batch.batch_size, 4)
    assert_eq(len(batch), 4)
    assert_shape(batch.actions, (4, 1))
    assert_shape(batch.old_log_probs, (4, 1))
    assert_shape(batch.target_values, (4,))
    assert_true(batch.actions.dtype == np.float32)
    assert_true(batch.old_values is None)


def test_trajectory_batch_rejects_length_mismatch():
    assert_raises(
        ValueError,
        lambda: TrajectoryBatch(vector_observations=np.zeros((3, 2)), actions=np.zeros((4, 1))),
    )
    assert_raises(
        ValueError,
        lambda: make_trajectory_batch(actions=np.zeros(4), visual_observations=[np.zeros((2, 20, 20, 3))]),
    )


def test_iterate_minibatches_covers_every_row_once():
    n = 10
    batch = make_trajectory_batch(
        vector_observations=np.arange(n, dtype=np.float32)[:, None],
        actions=np.arange(n, dtype=np.float32),
        action_masks=[np.ones((n, 3))],
    )
    rng = np.random.default_rng(0)
    mbs = list(iterate_minibatches(batch, 4, shuffle=True, rng=rng))
    assert_eq([mb.batch_size for mb in mbs], [4, 4, 2])
    seen = np.concatenate([mb.actions[:, 0] for mb in mbs])
    assert_eq(sorted(seen.tolist()), list(range(n)))
    for mb in mbs:
        assert_allclose(mb.vector_observations[:, 0], mb.actions[:, 0])
        assert_shape(mb.action_masks[0], (mb.batch_size, 3))

    ordered = list(iterate_minibatches(batch, 5, shuffle=False))
    assert_allclose(ordered[0].actions[:, 0], np.arange(5))
    assert_raises(ValueError, lambda: list(iterate_minibatches(batch, 0)))


# =============================================================================
# Tests: TrajectoryBuffer
# =============================================================================
def test_trajectory_buffer_finalize():
    buf = TrajectoryBuffer(gamma=0.5, gae_lambda=1.0, normalize_advantages=False)
    for t in range(3):
        buf.add(
            vector_obs=np.full(2, float(t)),
            visual_obs=[np.zeros((20, 20, 1))],
            action=np.array([t % 2]),
            log_prob=np.array([-0.5]),
            value=0.0,
            reward=1.0,
            done=(t == 2),
            action_masks=[np.array([1.0, 1.0])],
        )
    assert_eq(len(buf), 3)
    assert_allclose(buf.rewards, np.ones(3))

    batch = buf.finalize(last_value=10.0, last_done=False)
    assert_shape(batch.vector_observations, (3, 2))
    assert_shape(batch.visual_observations[0], (3, 20, 20, 1))
    assert_shape(batch.actions, (3, 1))
    assert_shape(batch.old_log_probs, (3, 1))
    assert_shape(batch.action_masks[0], (3, 2))
    assert_allclose(batch.advantages, np.array([1.75, 1.5, 1.0]))
    assert_allclose(batch.target_values, np.array([1.75, 1.5, 1.0]))
    assert_allclose(batch.old_values, np.zeros(3))

    buf.reset()
    assert_eq(len(buf), 0)
    assert_raises(RuntimeError, lambda: buf.finalize(last_value=0.0, last_done=True))


def test_trajectory_buffer_normalizes_advantages():
    buf = TrajectoryBuffer(gamma=0.99, gae_lambda=0.95)
    rewards = [0.0, 1.0, 0.0, 2.0, -1.0]
    for r in rewards:
        buf.add(vector_obs=np.zeros(1), action=np.zeros(2), log_prob=np.zeros(2), value=0.1, reward=r, done=False)
    batch = buf.finalize(last_value=0.0, last_done=True)
    assert_close(float(batch.advantages.mean()), 0.0, atol=1e-5)
    assert_close(float(batch.advantages.std()), 1.0, rtol=1e-3)
    assert_true(batch.visual_observations == [])
    assert_true(batch.action_masks is None)
    assert_shape(batch.actions, (5, 2))


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("gae_terminal_cuts_bootstrap", test_gae_terminal_cuts_bootstrap),
    ("gae_bootstraps_from_last_value", test_gae_bootstraps_from_last_value),
    ("returns_are_advantages_plus_values", test_returns_are_advantages_plus_values),
    ("gae_input_validation", test_gae_input_validation),
    ("make_trajectory_batch_shapes", test_make_trajectory_batch_shapes),
    ("trajectory_batch_rejects_length_mismatch", test_trajectory_batch_rejects_length_mismatch),
    ("iterate_minibatches_covers_every_row_once", test_iterate_minibatches_covers_every_row_once),
    ("trajectory_buffer_finalize", test_trajectory_buffer_finalize),
    ("trajectory_buffer_normalizes_advantages", test_trajectory_buffer_normalizes_advantages),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="buffers")


if __name__ == "__main__":
    raise SystemExit(main())
