from __future__ import annotations

import os
from typing import Mapping, Optional, TextIO

from .base_writer import Writer
from ..utils.logger_utils import _json_dumps, _open_append, _safe_call


class JSONLWriter(Writer):
    """
    JSON Lines backend: exactly one JSON object per `write()`.

    Append-friendly and tolerant to new keys appearing at any step, which
    makes it the lossless companion of the wide CSV.

    Parameters
    ----------
    run_dir : str
        Directory for the file.
    filename : str, default="metrics.jsonl"
    """

    def __init__(self, run_dir: str, filename: str = "metrics.jsonl") -> None:
        self.path = os.path.join(run_dir, filename)
        self._f: Optional[TextIO] = _open_append(self.path)

    def write(self, row: Mapping[str, float]) -> None:
        if self._f is None:
            raise RuntimeError(f"JSONLWriter is closed: {self.path}")
        self._f.write(_json_dumps(dict(row)) + "\n")

    def flush(self) -> None:
        _safe_call(self._f, "flush")

    def close(self) -> None:
        _safe_call(self._f, "close")
        self._f = None
