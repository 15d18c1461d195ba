from __future__ import annotations

import contextlib
import csv
import io
import json
import os
import sys
from typing import Any, Callable, List, Tuple

import numpy as np
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
    assert_close,
    assert_eq,
    assert_file_exists,
    assert_in,
    assert_raises,
    assert_true,
    read_text,
    run_tests,
)
from ppo_model.common.testers.test_harness import FailingWriter, MemoryWriter, TempDir  # noqa: E402
from ppo_model.common.loggers import (  # noqa: E402
    CSVWriter,
    JSONLWriter,
    Logger,
    SafeWriter,
    build_logger,
)
from ppo_model.common.utils.train_utils import _log_iteration  # noqa: E402


def _read_csv_rows(path: str) -> List[dict]:
    with open(path, "r", encoding="utf-8", newline="") as f:
        return list(csv.DictReader(f))


# =============================================================================
# Tests: writers
# =============================================================================
def test_jsonl_writer_writes_one_object_per_row():
    with TempDir() as d:
        w = JSONLWriter(d, filename="m.jsonl")
        w.write({"a": 1.0, "step": 3.0})
        w.write({"b": 2.5, "step": 4.0})
        w.close()

        p = os.path.join(d, "m.jsonl")
        assert_file_exists(p)
        lines = [ln for ln in read_text(p).splitlines() if ln.strip()]
        assert_eq(len(lines), 2)
        assert_eq(json.loads(lines[0]), {"a": 1.0, "step": 3.0})
        assert_eq(json.loads(lines[1])["b"], 2.5)
        assert_raises(RuntimeError, lambda: w.write({"c": 1.0}))


def test_csv_writer_wide_schema_is_frozen():
    with TempDir() as d:
        w = CSVWriter(d, wide_filename="wide.csv")
        w.write({"step": 1.0, "wall_time": 0.0, "timestamp": 0.0, "k1": 10.0, "k2": 20.0})
        w.write({"step": 2.0, "wall_time": 0.0, "timestamp": 0.0, "k1": 11.0, "NEW": 999.0})
        w.close()

        rows = _read_csv_rows(os.path.join(d, "wide.csv"))
        assert_eq(len(rows), 2)
        assert_true("NEW" not in rows[0], "wide schema must be fixed on the first row")
        assert_eq(rows[1]["k1"], "11.0")
        assert_eq(rows[1]["k2"], "")


def test_csv_writer_resume_keeps_existing_header():
    with TempDir() as d:
        w = CSVWriter(d)
        w.write({"step": 1.0, "a": 1.0})
        w.close()

        w2 = CSVWriter(d)
        assert_eq(w2.fieldnames, ["step", "a"])
        w2.write({"step": 2.0, "a": 2.0, "b": 3.0})
        w2.close()

        rows = _read_csv_rows(os.path.join(d, "metrics.csv"))
        assert_eq([r["step"] for r in rows], ["1.0", "2.0"])


def test_csv_writer_long_layout():
    with TempDir() as d:
        w = CSVWriter(d, wide=False, long=True)
        w.write({"step": 5.0, "wall_time": 1.0, "timestamp": 2.0, "x": 0.5, "y": 1.5})
        w.close()

        assert_true(not os.path.exists(os.path.join(d, "metrics.csv")))
        rows = _read_csv_rows(os.path.join(d, "metrics_long.csv"))
        assert_eq(len(rows), 2)
        assert_eq({r["key"] for r in rows}, {"x", "y"})
        assert_eq(rows[0]["step"], "5.0")


def test_safe_writer_counts_failures():
    sw = SafeWriter(FailingWriter())
    sw.write({"a": 1.0})
    sw.write({"a": 2.0})
    sw.flush()
    sw.close()
    assert_eq(sw.failures, 2)
    assert_true(isinstance(sw.last_error, OSError))
    assert_eq(sw.name, "FailingWriter")


# =============================================================================
# Tests: Logger
# =============================================================================
def test_logger_prefix_meta_keys_and_scalar_filtering():
    with TempDir() as d:
        mem = MemoryWriter()
        logger = Logger(log_dir=d, exp_name="t", run_id="r", writers=[mem], console_every=0)
        logger.log(
            {"loss/total": th.tensor(1.5), "lr": np.float32(0.25), "vec": np.zeros(3), "name": "abc"},
            step=7,
            prefix="train",
        )
        row = mem.rows[0]
        assert_close(row["train/loss/total"], 1.5)
        assert_close(row["train/lr"], 0.25)
        assert_true("train/vec" not in row and "train/name" not in row)
        for k in ("step", "wall_time", "timestamp"):
            assert_in(k, row)
        assert_eq(row["step"], 7.0)
        assert_file_exists(os.path.join(logger.run_dir, "metadata.json"))
        logger.close()
        assert_eq(mem.close_calls, 1)


def test_logger_step_fn_and_default_step():
    with TempDir() as d:
        mem = MemoryWriter()
        logger = Logger(log_dir=d, writers=[mem], console_every=0)
        logger.log({"a": 1.0})
        counter = {"n": 41}
        logger.set_step_fn(lambda: counter["n"])
        logger.log({"a": 2.0})
        logger.log({"a": 3.0}, step=3)
        assert_eq([r["step"] for r in mem.rows], [0.0, 41.0, 3.0])
        logger.close()


def test_logger_drop_non_finite():
    with TempDir() as d:
        mem = MemoryWriter()
        logger = Logger(log_dir=d, writers=[mem], console_every=0, drop_non_finite=True)
        logger.log({"ok": 1.0, "bad": float("nan"), "inf": float("inf")})
        assert_in("ok", mem.rows[0])
        assert_true("bad" not in mem.rows[0] and "inf" not in mem.rows[0])
        logger.close()


def test_logger_writer_errors_respect_strict():
    with TempDir() as d:
        lenient = Logger(log_dir=d, exp_name="lenient", writers=[FailingWriter()], console_every=0)
        lenient.log({"a": 1.0})
        assert_eq(len(lenient.errors), 1)
        assert_in("OSError", lenient.errors[0])

        strict = Logger(log_dir=d, exp_name="strict", writers=[FailingWriter()], console_every=0, strict=True)
        assert_raises(OSError, lambda: strict.log({"a": 1.0}))


def test_logger_record_and_dump_aggregate():
    with TempDir() as d:
        mem = MemoryWriter()
        logger = Logger(log_dir=d, writers=[mem], console_every=0)
        for v in (1.0, 2.0, 3.0):
            logger.record({"x": v}, prefix="rollout")
        out = logger.dump(step=10)
        assert_close(out["rollout/x"], 2.0)
        assert_eq(mem.rows[-1]["step"], 10.0)
        assert_eq(logger.dump(), {})
        logger.record({"x": 1.0})
        logger.record({"x": 5.0})
        assert_close(logger.dump(agg="max")["x"], 5.0)
        assert_raises(ValueError, lambda: logger.dump(agg="median"))
        logger.close()


def test_logger_run_dir_suffix_and_resume():
    with TempDir() as d:
        a = Logger(log_dir=d, exp_name="e", run_id="r", console_every=0)
        b = Logger(log_dir=d, exp_name="e", run_id="r", console_every=0)
        assert_eq(b.run_dir, a.run_dir + "_1")
        c = Logger(log_dir=d, exp_name="e", run_id="r", resume=True, console_every=0)
        assert_eq(c.run_dir, a.run_dir)
        assert_raises(FileNotFoundError, lambda: Logger(log_dir=d, exp_name="e", run_id="missing", resume=True))


def test_logger_dump_config():
    with TempDir() as d:
        logger = Logger(log_dir=d, console_every=0)
        logger.dump_config({"lr": 3e-4, "activation_fn": th.nn.ReLU})
        cfg = json.loads(read_text(os.path.join(logger.run_dir, "config.json")))
        assert_close(cfg["lr"], 3e-4)
        assert_true(isinstance(cfg["activation_fn"], str))


# =============================================================================
# Tests: build_logger
# =============================================================================
def test_build_logger_creates_backend_files():
    with TempDir() as d:
        logger = build_logger(log_dir=d, exp_name="ppo", run_id="run", use_tensorboard=True, console_every=0)
        logger.log({"loss/total": 0.5}, step=1, prefix="train")
        logger.log({"loss/total": 0.25}, step=2, prefix="train")
        logger.close()

        run_dir = logger.run_dir
        rows = _read_csv_rows(os.path.join(run_dir, "metrics.csv"))
        assert_eq([r["train/loss/total"] for r in rows], ["0.5", "0.25"])
        lines = [ln for ln in read_text(os.path.join(run_dir, "metrics.jsonl")).splitlines() if ln.strip()]
        assert_eq(len(lines), 2)
        events = [f for f in os.listdir(run_dir) if f.startswith("events.out.tfevents")]
        assert_true(len(events) >= 1, "tensorboard event file missing")
        assert_eq(logger.errors, [])


def test_build_logger_without_backends():
    with TempDir() as d:
        logger = build_logger(log_dir=d, use_tensorboard=False, use_csv=False, use_jsonl=False, console_every=0)
        logger.log({"a": 1.0})
        logger.close()
        assert_eq(sorted(os.listdir(logger.run_dir)), ["metadata.json"])


def test_console_line_shows_rollout_return():
    with TempDir() as d:
        logger = Logger(log_dir=d, writers=[MemoryWriter()], console_every=1)
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            logger.log({"train/loss/total": 0.5, "rollout/episode_return": 42.0, "other": 1.0}, step=3)
        logger.close()
    line = out.getvalue()
    assert_in("rollout/episode_return=42", line)
    assert_in("train/loss/total=0.5", line)
    assert_true("other=" not in line)


def test_iteration_rows_carry_rollout_return_into_csv():
    with TempDir() as d:
        logger = build_logger(log_dir=d, run_id="run", use_tensorboard=False, use_jsonl=False, console_every=0)
        # the first row has no finished episode and still defines the frozen header
        _log_iteration(logger, 1, {"loss/total": 0.5, "lr": 3e-4}, [])
        row = _log_iteration(logger, 2, {"loss/total": 0.25, "lr": 3e-4}, [40.0, 44.0])
        logger.close()

        assert_close(row["rollout/episode_return"], 42.0)
        rows = _read_csv_rows(os.path.join(logger.run_dir, "metrics.csv"))
        assert_eq(len(rows), 2)
        assert_eq(rows[0]["rollout/episode_return"], "nan")
        assert_eq(rows[1]["rollout/episode_return"], "42.0")
        assert_eq(rows[1]["rollout/episodes"], "2.0")
        assert_eq(rows[1]["train/loss/total"], "0.25")
        assert_eq(rows[1]["step"], "2.0")


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("jsonl_writer_writes_one_object_per_row", test_jsonl_writer_writes_one_object_per_row),
    ("csv_writer_wide_schema_is_frozen", test_csv_writer_wide_schema_is_frozen),
    ("csv_writer_resume_keeps_existing_header", test_csv_writer_resume_keeps_existing_header),
    ("csv_writer_long_layout", test_csv_writer_long_layout),
    ("safe_writer_counts_failures", test_safe_writer_counts_failures),
    ("logger_prefix_meta_keys_and_scalar_filtering", test_logger_prefix_meta_keys_and_scalar_filtering),
    ("logger_step_fn_and_default_step", test_logger_step_fn_and_default_step),
    ("logger_drop_non_finite", test_logger_drop_non_finite),
    ("logger_writer_errors_respect_strict", test_logger_writer_errors_respect_strict),
    ("logger_record_and_dump_aggregate", test_logger_record_and_dump_aggregate),
    ("logger_run_dir_suffix_and_resume", test_logger_run_dir_suffix_and_resume),
    ("logger_dump_config", test_logger_dump_config),
    ("build_logger_creates_backend_files", test_build_logger_creates_backend_files),
    ("build_logger_without_backends", test_build_logger_without_backends),
    ("console_line_shows_rollout_return", test_console_line_shows_rollout_return),
    ("iteration_rows_carry_rollout_return_into_csv", test_iteration_rows_carry_rollout_return_into_csv),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="loggers")


if __name__ == "__main__":
    raise SystemExit(main())
