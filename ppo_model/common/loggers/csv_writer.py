from __future__ import annotations

import csv
import os
from typing import Any, List, Mapping, Optional, TextIO

from .base_writer import Writer
from ..utils.logger_utils import META_KEYS, _open_append, _read_csv_header, _safe_call


class CSVWriter(Writer):
    """
    Append-only CSV backend with two complementary layouts.

    1) Wide CSV (``metrics.csv``): one row per `write()` with a *frozen*
       column schema. The schema is the key set of the first row for a new
       file, or the existing header when resuming. Keys outside the schema
       are ignored and missing keys are written as empty cells.
    2) Long CSV (``metrics_long.csv``, optional): one row per metric with the
       fixed schema ``[step, wall_time, timestamp, key, value]``; lossless
       when metric names change over time.

    Parameters
    ----------
    run_dir : str
        Directory where the CSV files are created/appended.
    wide : bool, default=True
        Enable the wide file.
    long : bool, default=False
        Enable the long file.
    wide_filename : str, default="metrics.csv"
    long_filename : str, default="metrics_long.csv"
    """

    def __init__(
        self,
        run_dir: str,
        *,
        wide: bool = True,
        long: bool = False,
        wide_filename: str = "metrics.csv",
        long_filename: str = "metrics_long.csv",
    ) -> None:
        self._wide_path = os.path.join(run_dir, wide_filename)
        self._long_path = os.path.join(run_dir, long_filename)

        # Read before opening: an append handle sits at EOF.
        existing_header = _read_csv_header(self._wide_path) if wide else None

        self._wide_file: Optional[TextIO] = _open_append(self._wide_path, newline="") if wide else None
        self._wide_writer: Optional[csv.DictWriter] = None
        self._wide_fieldnames: List[str] = list(existing_header) if existing_header else []
        if self._wide_file is not None and self._wide_fieldnames:
            self._wide_writer = csv.DictWriter(self._wide_file, fieldnames=self._wide_fieldnames)

        self._long_file: Optional[TextIO] = _open_append(self._long_path, newline="") if long else None
        self._long_writer: Optional[Any] = None
        if self._long_file is not None:
            new_file = os.path.getsize(self._long_path) == 0
            self._long_writer = csv.writer(self._long_file)
            if new_file:
                self._long_writer.writerow(["step", "wall_time", "timestamp", "key", "value"])

    @property
    def fieldnames(self) -> List[str]:
        """Frozen wide schema (empty until the first row for a new file)."""
        return list(self._wide_fieldnames)

    def write(self, row: Mapping[str, float]) -> None:
        if self._wide_file is not None:
            self._write_wide(row)
        if self._long_writer is not None:
            self._write_long(row)

    def _write_wide(self, row: Mapping[str, float]) -> None:
        if self._wide_writer is None:
            self._wide_fieldnames = list(row.keys())
            self._wide_writer = csv.DictWriter(self._wide_file, fieldnames=self._wide_fieldnames)
            self._wide_writer.writeheader()
        self._wide_writer.writerow({k: row.get(k, "") for k in self._wide_fieldnames})

    def _write_long(self, row: Mapping[str, float]) -> None:
        step, wall_time, timestamp = (row.get(k, "") for k in META_KEYS)
        for k, v in row.items():
            if k in META_KEYS:
                continue
            self._long_writer.writerow([step, wall_time, timestamp, str(k), str(v)])

    def flush(self) -> None:
        _safe_call(self._wide_file, "flush")
        _safe_call(self._long_file, "flush")

    def close(self) -> None:
        try:
            self.flush()
        finally:
            _safe_call(self._wide_file, "close")
            _safe_call(self._long_file, "close")
            self._wide_file = None
            self._long_file = None
            self._wide_writer = None
            self._long_writer = None
