from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, TextIO, Tuple
import csv
import json
import os
import uuid


# =============================================================================
# Metadata convention
# =============================================================================
# Keys injected by the Logger into every row. Writers use them as an index
# rather than as plottable series.
META_KEYS: Tuple[str, str, str] = ("step", "wall_time", "timestamp")


# =============================================================================
# Run directory utilities
# =============================================================================
def _generate_run_id() -> str:
    """
    Generate a filesystem-safe run identifier.

    Returns
    -------
    run_id : str
        ``"{YYYY-mm-dd_HH-MM-SS}_{8-hex}"``, e.g. ``"2026-01-22_14-03-12_a1b2c3d4"``.
    """
    ts = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    return f"{ts}_{uuid.uuid4().hex[:8]}"


def _make_run_dir(
    log_dir: str,
    exp_name: str,
    *,
    run_id: Optional[str] = None,
    overwrite: bool = False,
    resume: bool = False,
) -> str:
    """
    Resolve ``{log_dir}/{exp_name}/{run_id}`` for a training run.

    Parameters
    ----------
    log_dir : str
        Root logging directory (e.g., ``"./runs"``).
    exp_name : str
        Experiment name (subdirectory under ``log_dir``).
    run_id : Optional[str], default=None
        Explicit run identifier. Auto-generated when None.
    overwrite : bool, default=False
        Reuse an existing directory instead of suffixing ``_{k}``.
    resume : bool, default=False
        Return the computed path as-is; it must already exist.

    Returns
    -------
    run_dir : str

    Raises
    ------
    FileNotFoundError
        If ``resume=True`` and the directory does not exist.
    """
    path = os.path.join(str(log_dir), str(exp_name), str(run_id or _generate_run_id()))

    if resume:
        if not os.path.exists(path):
            raise FileNotFoundError(f"resume=True but run_dir does not exist: {path}")
        return path

    if overwrite or not os.path.exists(path):
        return path

    k = 1
    while os.path.exists(f"{path}_{k}"):
        k += 1
    return f"{path}_{k}"


# =============================================================================
# Serialization / filesystem helpers
# =============================================================================
def _json_dumps(obj: Any) -> str:
    """JSON with readable unicode and ``str`` fallback for unknown objects."""
    return json.dumps(obj, ensure_ascii=False, default=str)


def _ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _open_append(path: str, *, newline: Optional[str] = None, encoding: str = "utf-8") -> TextIO:
    """
    Open ``path`` in append mode, creating the parent directory first.

    The caller owns the returned handle. CSV writers should pass ``newline=""``.
    """
    dirpath = os.path.dirname(path)
    if dirpath:
        _ensure_dir(dirpath)
    return open(path, "a", newline=newline, encoding=encoding)


def _safe_call(obj: Optional[Any], method: str) -> None:
    """
    Call ``obj.method()`` if it exists; never raises.

    Used for shutdown paths (``flush``/``close``) where a failing backend must
    not mask the original error.
    """
    if obj is None:
        return
    fn = getattr(obj, method, None)
    if not callable(fn):
        return
    try:
        fn()
    except Exception:
        pass


def _read_csv_header(path: str, *, encoding: str = "utf-8") -> Optional[List[str]]:
    """
    Read the first row of an existing CSV file.

    Returns
    -------
    header : list[str] or None
        None when the file is missing, empty or unreadable.
    """
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", newline="", encoding=encoding) as rf:
            header = next(csv.reader(rf), None)
    except (OSError, csv.Error):
        return None
    return [str(h) for h in header] if header else None
