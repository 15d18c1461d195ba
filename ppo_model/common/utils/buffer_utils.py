from __future__ import annotations

from typing import Tuple

import numpy as np


# =============================================================================
# GAE utility
# =============================================================================
def compute_gae(
    rewards: np.ndarray,
    values: np.ndarray,
    dones: np.ndarray,
    *,
    last_value: float,
    last_done: bool,
    gamma: float,
    gae_lambda: float,
) -> np.ndarray:
    """
    Compute Generalized Advantage Estimation (GAE-lambda).

    Parameters
    ----------
    rewards : np.ndarray
        Reward sequence, shape (T,).
    values : np.ndarray
        Value estimates V(s_t), shape (T,).
    dones : np.ndarray
        Done flags after each transition, shape (T,).
        Convention: dones[t] == 1 means the episode ended after step t.
    last_value : float
        Bootstrap value V(s_T), ignored if ``last_done`` is True.
    last_done : bool
        Whether the rollout ended with a terminal transition.
    gamma : float
        Discount factor in [0, 1].
    gae_lambda : float
        GAE smoothing parameter in [0, 1].

    Returns
    -------
    advantages : np.ndarray
        Advantage estimates, shape (T,).

    Formula
    -------
    delta_t = r_t + gamma (1 - done_t) V_{t+1} - V_t
    A_t     = delta_t + gamma lambda (1 - done_t) A_{t+1}
    """
    rewards = np.asarray(rewards, dtype=np.float32)
    values = np.asarray(values, dtype=np.float32)
    dones = np.asarray(dones, dtype=np.float32)

    if rewards.ndim != 1 or values.ndim != 1 or dones.ndim != 1:
        raise ValueError(
            f"rewards/values/dones must be 1D (T,), got {rewards.shape}, {values.shape}, {dones.shape}"
        )
    if not (rewards.shape[0] == values.shape[0] == dones.shape[0]):
        raise ValueError(
            f"Shape mismatch: rewards={rewards.shape}, values={values.shape}, dones={dones.shape}"
        )
    if not (0.0 <= gamma <= 1.0):
        raise ValueError(f"gamma must be in [0, 1], got {gamma}")
    if not (0.0 <= gae_lambda <= 1.0):
        raise ValueError(f"gae_lambda must be in [0, 1], got {gae_lambda}")

    T = rewards.shape[0]
    advantages = np.zeros((T,), dtype=np.float32)
    bootstrap_v = 0.0 if bool(last_done) else float(last_value)

    gae = 0.0
    for t in reversed(range(T)):
        nonterminal = 1.0 - float(dones[t])
        v_next = bootstrap_v if (t == T - 1) else float(values[t + 1])

        delta = rewards[t] + gamma * nonterminal * v_next - float(values[t])
        gae = delta + gamma * gae_lambda * nonterminal * gae
        advantages[t] = gae

    return advantages


def compute_returns_and_advantages(
    rewards: np.ndarray,
    values: np.ndarray,
    dones: np.ndarray,
    *,
    last_value: float,
    last_done: bool,
    gamma: float = 0.99,
    gae_lambda: float = 0.95,
    normalize_advantages: bool = False,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    GAE advantages plus value targets (``returns = advantages + values``).

    Parameters
    ----------
    normalize_advantages : bool, default=False
        If True, standardize advantages to zero mean / unit std (std floored
        at 1e-8). Returns are computed before standardization.

    Returns
    -------
    returns : np.ndarray, shape (T,)
    advantages : np.ndarray, shape (T,)
    """
    adv = compute_gae(
        rewards,
        values,
        dones,
        last_value=last_value,
        last_done=last_done,
        gamma=gamma,
        gae_lambda=gae_lambda,
    )
    returns = adv + np.asarray(values, dtype=np.float32)
    if normalize_advantages and adv.shape[0] > 1:
        adv = (adv - adv.mean()) / (adv.std() + 1e-8)
    return returns.astype(np.float32), adv.astype(np.float32)
