"""
Utils
====================

Small, reusable helpers used across the codebase.

Modules included
----------------
- buffer_utils
    GAE advantage estimation and return targets.
- common_utils
    NumPy/Torch conversion helpers, scalar coercion, CPU-safe state dicts.
- log_utils
    Best-effort stderr warnings (`[Owner][WARN] ...`).
- logger_utils
    Run-directory management and lightweight CSV/JSON helpers for writers.
- network_utils
    Weight initialization, activation resolution and batch-shape helpers.
- schedule_utils
    Linear / log-geometric interpolation and annealing schedules.
- space_utils
    Action/observation descriptions derived from gymnasium spaces.
- train_utils
    Seeding, torch.Generator construction, tqdm progress bars and
    per-iteration logger rows.

Design policy
-------------
Functions prefixed with '_' are semi-private: importable for internal use,
but not guaranteed as a stable public API.
"""

from __future__ import annotations

from .buffer_utils import compute_gae, compute_returns_and_advantages
from .common_utils import (
    _as_tensor_list,
    _to_column,
    _to_cpu,
    _to_cpu_state_dict,
    _to_numpy,
    _to_scalar,
    _to_tensor,
)
from .log_utils import _warn
from .logger_utils import (
    META_KEYS,
    _ensure_dir,
    _generate_run_id,
    _json_dumps,
    _make_run_dir,
    _open_append,
    _read_csv_header,
    _safe_call,
)
from .network_utils import (
    _activation_to_name,
    _ensure_batch,
    _make_weights_init,
    _resolve_activation_fn,
    _scaled_xavier_init,
    _validate_hidden_sizes,
)
from .schedule_utils import AnnealingSchedule, interpolate
from .space_utils import (
    ActionSpaceKind,
    ActionSpec,
    ObservationSpec,
    action_spec_from_space,
    observation_spec_from_space,
    spec_kwargs,
    split_observation,
)
from .train_utils import _log_iteration, _make_generator, _make_pbar, _set_random_seed

__all__ = [
    # buffer_utils
    "compute_gae",
    "compute_returns_and_advantages",
    # common_utils
    "_as_tensor_list",
    "_to_column",
    "_to_cpu",
    "_to_cpu_state_dict",
    "_to_numpy",
    "_to_scalar",
    "_to_tensor",
    # log_utils
    "_warn",
    # logger_utils
    "META_KEYS",
    "_ensure_dir",
    "_generate_run_id",
    "_json_dumps",
    "_make_run_dir",
    "_open_append",
    "_read_csv_header",
    "_safe_call",
    # network_utils
    "_activation_to_name",
    "_ensure_batch",
    "_make_weights_init",
    "_resolve_activation_fn",
    "_scaled_xavier_init",
    "_validate_hidden_sizes",
    # schedule_utils
    "AnnealingSchedule",
    "interpolate",
    # space_utils
    "ActionSpaceKind",
    "ActionSpec",
    "ObservationSpec",
    "action_spec_from_space",
    "observation_spec_from_space",
    "spec_kwargs",
    "split_observation",
    # train_utils
    "_log_iteration",
    "_make_generator",
    "_make_pbar",
    "_set_random_seed",
]
