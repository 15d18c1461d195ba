from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence, Union

import os
import random

import numpy as np
import torch as th
from tqdm.auto import tqdm


# =============================================================================
# Progress bar
# =============================================================================
def _make_pbar(*, enabled: bool = True, **kwargs: Any) -> tqdm:
    """
    Create a tqdm progress bar.

    Parameters
    ----------
    enabled : bool, default=True
        If False, the bar is created with ``disable=True`` so that callers can
        keep calling ``update``/``set_postfix``/``close`` unconditionally.
    **kwargs : Any
        Passed through to ``tqdm(...)`` (``total``, ``desc``, ``leave``...).

    Returns
    -------
    pbar : tqdm
    """
    kwargs.setdefault("dynamic_ncols", True)
    return tqdm(disable=not enabled, **kwargs)


# =============================================================================
# Seeding
# =============================================================================
def _set_random_seed(
    seed: int,
    *,
    deterministic: bool = True,
    verbose: bool = False,
    set_torch_threads_to_one: bool = False,
) -> None:
    """
    Seed Python/NumPy/PyTorch RNGs for reproducibility (best-effort).

    Parameters
    ----------
    seed : int
        Base seed.
    deterministic : bool, default=True
        If True, configures cuDNN for deterministic behavior.
    verbose : bool, default=False
        If True, prints a short summary.
    set_torch_threads_to_one : bool, default=False
        If True, limits PyTorch intra-/interop threads.

    Notes
    -----
    Full determinism is not guaranteed across devices and driver versions.
    Model-level sampling draws from its own ``torch.Generator`` (see
    :func:`_make_generator`) and is therefore unaffected by global seeding
    whenever a generator is injected.
    """
    seed = int(seed)

    random.seed(seed)
    os.environ["PYTHONHASHSEED"] = str(seed)
    np.random.seed(seed)
    th.manual_seed(seed)

    if th.cuda.is_available():
        th.cuda.manual_seed_all(seed)

    if deterministic:
        th.backends.cudnn.benchmark = False
        th.backends.cudnn.deterministic = True

    if set_torch_threads_to_one:
        th.set_num_threads(1)

    if verbose:
        print(f"[set_random_seed] seed={seed}, deterministic={deterministic}, cuda={th.cuda.is_available()}")


def _make_generator(
    seed: Optional[int] = None,
    *,
    device: Union[str, th.device] = "cpu",
    generator: Optional[th.Generator] = None,
) -> Optional[th.Generator]:
    """
    Resolve the random source used for action sampling.

    Parameters
    ----------
    seed : Optional[int], default=None
        If given (and no generator is injected), a fresh generator seeded with
        this value is created on ``device``.
    device : Union[str, torch.device], default="cpu"
        Device of the created generator. Must match the device of the tensors
        it samples.
    generator : Optional[torch.Generator], default=None
        An externally owned generator; returned unchanged.

    Returns
    -------
    generator : Optional[torch.Generator]
        None means "use torch's global RNG".
    """
    if generator is not None:
        return generator
    if seed is None:
        return None
    g = th.Generator(device=th.device(device))
    g.manual_seed(int(seed))
    return g


# =============================================================================
# Iteration summaries
# =============================================================================
def _log_iteration(
    logger: Any,
    step: int,
    train_metrics: Mapping[str, float],
    episode_returns: Sequence[float],
) -> Dict[str, float]:
    """
    Emit one logger row per training iteration.

    The row merges the ``train_epochs`` means (``train/...``) with the rollout
    summary (``rollout/episode_return``, ``rollout/episodes``). The rollout keys
    are present in every row, NaN when no episode finished, so a wide CSV whose
    header freezes on the first row still carries them.

    Returns
    -------
    row : Dict[str, float]
        The aggregated row as returned by ``Logger.dump``.
    """
    logger.record(train_metrics, prefix="train")
    ep_return = float(np.mean(episode_returns)) if len(episode_returns) > 0 else float("nan")
    logger.record({"episode_return": ep_return, "episodes": float(len(episode_returns))}, prefix="rollout")
    return logger.dump(step=int(step))
