from __future__ import annotations

import json
import os
import socket
import sys
import time
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import numpy as np
import torch as th

from ..utils.common_utils import _to_scalar
from ..utils.logger_utils import META_KEYS, _make_run_dir


class Logger:
    """
    Scalar-first training logger (frontend).

    The logger owns a per-run directory and turns metric mappings into rows
    of floats that are fanned out to writer backends (CSV / JSONL /
    TensorBoard). Backends own I/O; the logger owns key naming, step
    bookkeeping, aggregation and console output.

    Parameters
    ----------
    log_dir : str, default="./runs"
        Root directory for runs.
    exp_name : str, default="ppo"
        Experiment name (subdirectory under `log_dir`).
    run_id : str, optional
        Explicit run identifier; auto-generated when omitted.
    overwrite : bool, default=False
        Reuse an existing run directory instead of suffixing it.
    resume : bool, default=False
        Append to an existing run directory.
    writers : Iterable, optional
        Writer backends attached at construction.
    console_every : int, default=1
        Print a console line every N calls to `log()`; <= 0 disables.
    flush_every : int, default=200
        Flush writers every N calls to `log()`; <= 0 disables.
    drop_non_finite : bool, default=False
        Discard NaN/Inf values instead of writing them.
    strict : bool, default=False
        Re-raise writer errors. When False, errors are collected in
        ``errors`` and logging continues.

    Notes
    -----
    Step resolution: explicit ``step`` argument, then the callable installed
    via :meth:`set_step_fn`, then 0.
    """

    _CONSOLE_KEYS = (
        "train/loss/total",
        "train/loss/policy",
        "train/loss/value",
        "train/stats/entropy",
        "train/stats/approx_kl",
        "train/lr",
        "rollout/episode_return",
    )

    def __init__(
        self,
        *,
        log_dir: str = "./runs",
        exp_name: str = "ppo",
        run_id: Optional[str] = None,
        overwrite: bool = False,
        resume: bool = False,
        writers: Optional[Iterable[Any]] = None,
        console_every: int = 1,
        flush_every: int = 200,
        drop_non_finite: bool = False,
        strict: bool = False,
    ) -> None:
        self.strict = bool(strict)
        self.errors: List[str] = []

        self.run_dir = _make_run_dir(
            log_dir,
            exp_name,
            run_id=run_id,
            overwrite=bool(overwrite),
            resume=bool(resume),
        )
        os.makedirs(self.run_dir, exist_ok=True)

        self.console_every = int(console_every)
        self.flush_every = int(flush_every)
        self.drop_non_finite = bool(drop_non_finite)

        self._start_time = time.time()
        self._log_calls = 0
        self._step_fn: Optional[Callable[[], int]] = None
        self._buffer: Dict[str, List[float]] = defaultdict(list)
        self._writers: List[Any] = list(writers) if writers is not None else []

        try:
            self.dump_metadata()
        except OSError as e:
            self._handle_exception(e, "dump_metadata")

    def __enter__(self) -> "Logger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Step / key helpers
    # ------------------------------------------------------------------
    def set_step_fn(self, fn: Optional[Callable[[], int]]) -> None:
        """Install a callable that supplies the step when `log()` gets none."""
        self._step_fn = fn

    def _infer_step(self, step: Optional[int]) -> int:
        if step is not None:
            return int(step)
        if self._step_fn is not None:
            return int(self._step_fn())
        return 0

    def _handle_exception(self, err: BaseException, context: str) -> None:
        self.errors.append(f"[{self.__class__.__name__}] {context}: {type(err).__name__}: {err}")
        if self.strict:
            raise err

    @staticmethod
    def _join_name(prefix: str, key: Any) -> str:
        """``("train", "loss/total") -> "train/loss/total"`` with slashes normalized."""
        k = str(key).strip().replace("\\", "/").lstrip("/")
        p = str(prefix).strip().replace("\\", "/").strip("/")
        return f"{p}/{k}" if p else k

    def _coerce(self, value: Any) -> Optional[float]:
        val = _to_scalar(value)
        if val is None:
            return None
        if self.drop_non_finite and not np.isfinite(val):
            return None
        return float(val)

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    def log(
        self,
        metrics: Mapping[str, Any],
        step: Optional[int] = None,
        *,
        pbar: Optional[Any] = None,
        prefix: str = "",
    ) -> None:
        """
        Write one row of scalars to every writer.

        Parameters
        ----------
        metrics : Mapping[str, Any]
            Metric mapping; values that are not scalar-like are skipped.
        step : int, optional
            Explicit step; inferred otherwise.
        pbar : Any, optional
            tqdm bar; when given, the console line goes to its description.
        prefix : str, default=""
            Key prefix (e.g., "train").

        Notes
        -----
        Meta keys ``step``, ``wall_time`` and ``timestamp`` are injected into
        every row.
        """
        s = self._infer_step(step)
        self._log_calls += 1

        row: Dict[str, float] = {}
        for k, v in metrics.items():
            fval = self._coerce(v)
            if fval is not None:
                row[self._join_name(prefix, k)] = fval

        now = time.time()
        row["step"] = float(s)
        row["wall_time"] = float(now - self._start_time)
        row["timestamp"] = float(now)

        for w in self._writers:
            try:
                w.write(row)
            except Exception as e:
                self._handle_exception(e, f"writer.write({w.__class__.__name__})")

        if self.console_every > 0 and (self._log_calls % self.console_every == 0):
            self._print_console(row, pbar=pbar)

        if self.flush_every > 0 and (self._log_calls % self.flush_every == 0):
            self.flush()

    def record(self, metrics: Mapping[str, Any], *, prefix: str = "") -> None:
        """Buffer scalars for a later :meth:`dump` (no writer I/O)."""
        for k, v in metrics.items():
            fval = self._coerce(v)
            if fval is not None:
                self._buffer[self._join_name(prefix, k)].append(fval)

    def dump(self, step: Optional[int] = None, *, agg: str = "mean", clear: bool = True) -> Dict[str, float]:
        """
        Aggregate buffered scalars and emit them via :meth:`log`.

        Parameters
        ----------
        agg : {"mean", "min", "max", "std"}, default="mean"
        clear : bool, default=True

        Returns
        -------
        out : Dict[str, float]
            The aggregated row (without meta keys); empty if nothing was buffered.
        """
        op = str(agg).lower().strip()
        reducers = {"mean": np.mean, "min": np.min, "max": np.max, "std": np.std}
        if op not in reducers:
            raise ValueError(f"Unknown agg={agg!r}. Use mean|min|max|std.")

        out = {k: float(reducers[op](np.asarray(v, dtype=np.float64))) for k, v in self._buffer.items() if v}
        if clear:
            self._buffer.clear()
        if out:
            self.log(out, step=step)
        return out

    # ------------------------------------------------------------------
    # Run artifacts
    # ------------------------------------------------------------------
    def dump_config(self, config: Mapping[str, Any], filename: str = "config.json") -> None:
        """Write a configuration mapping as JSON into ``run_dir``."""
        path = os.path.join(self.run_dir, filename)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(dict(config), f, indent=2, ensure_ascii=False, default=str)

    def dump_metadata(self, filename: str = "metadata.json") -> None:
        """Write host / interpreter / torch information as JSON into ``run_dir``."""
        meta: Dict[str, Any] = {
            "run_dir": self.run_dir,
            "start_time_unix": float(self._start_time),
            "start_time_iso": datetime.fromtimestamp(self._start_time).isoformat(),
            "host": socket.gethostname(),
            "pid": os.getpid(),
            "python": sys.version.replace("\n", " "),
            "platform": sys.platform,
            "torch": str(th.__version__),
            "cuda_available": bool(th.cuda.is_available()),
        }
        path = os.path.join(self.run_dir, filename)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(meta, f, indent=2, ensure_ascii=False, default=str)

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------
    def add_writer(self, writer: Any) -> None:
        self._writers.append(writer)

    def flush(self) -> None:
        for w in self._writers:
            try:
                w.flush()
            except Exception as e:
                self._handle_exception(e, f"writer.flush({w.__class__.__name__})")

    def close(self) -> None:
        """Flush, then close every writer even if flushing fails."""
        try:
            self.flush()
        finally:
            for w in self._writers:
                try:
                    w.close()
                except Exception as e:
                    self._handle_exception(e, f"writer.close({w.__class__.__name__})")

    @classmethod
    def _print_console(cls, row: Mapping[str, float], *, pbar: Optional[Any] = None) -> None:
        step = int(row.get("step", 0.0))
        wall = float(row.get("wall_time", 0.0))

        shown = [f"{k}={row[k]:.4g}" for k in cls._CONSOLE_KEYS if k in row]
        if not shown:
            shown = [f"{k}={v:.4g}" for k, v in row.items() if k not in META_KEYS][:6]

        msg = f"[step={step} | t={wall:.1f}s] " + " ".join(shown)
        if pbar is not None:
            pbar.set_description_str(msg, refresh=True)
            return
        print(msg)
