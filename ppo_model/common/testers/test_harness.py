from __future__ import annotations

import shutil
import tempfile
from typing import Dict, List

import numpy as np


# =============================================================================
# Temporary directories
# =============================================================================
class TempDir:
    def __init__(self, prefix: str = "ppo_model_test_") -> None:
        self.path = tempfile.mkdtemp(prefix=prefix)

    def __enter__(self) -> str:
        return self.path

    def __exit__(self, exc_type, exc, tb) -> None:
        shutil.rmtree(self.path, ignore_errors=True)


# =============================================================================
# Writer stubs for Logger testing
# =============================================================================
class MemoryWriter:
    def __init__(self) -> None:
        self.rows: List[Dict[str, float]] = []
        self.flush_calls = 0
        self.close_calls = 0

    def write(self, row: Dict[str, float]) -> None:
        self.rows.append(dict(row))

    def flush(self) -> None:
        self.flush_calls += 1

    def close(self) -> None:
        self.close_calls += 1


class FailingWriter(MemoryWriter):
    """Raises on every write (a backend with a full disk, a closed file, ...)."""

    def write(self, row: Dict[str, float]) -> None:
        raise OSError("disk full")


# =============================================================================
# Toy trajectories
# =============================================================================
def random_vector_obs(batch: int, dim: int, *, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.normal(size=(batch, dim)).astype(np.float32)


def random_discrete_actions(batch: int, action_sizes: List[int], *, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    cols = [rng.integers(0, n, size=(batch, 1)) for n in action_sizes]
    return np.concatenate(cols, axis=1).astype(np.float32)


def ppo_batch_arrays(batch: int, dim: int, action_width: int, *, seed: int = 0) -> Dict[str, np.ndarray]:
    """Arrays for one PPO ``train_batch`` call with continuous actions."""
    rng = np.random.default_rng(seed)
    return {
        "vector_obs": rng.normal(size=(batch, dim)).astype(np.float32),
        "actions": rng.normal(size=(batch, action_width)).astype(np.float32),
        "old_log_probs": np.full((batch, action_width), -0.9189385, dtype=np.float32),
        "target_values": rng.normal(size=(batch, 1)).astype(np.float32),
        "old_values": np.zeros((batch, 1), dtype=np.float32),
        "advantages": rng.normal(size=(batch, 1)).astype(np.float32),
    }
