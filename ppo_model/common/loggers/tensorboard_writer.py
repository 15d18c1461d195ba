from __future__ import annotations

from typing import Mapping

from torch.utils.tensorboard import SummaryWriter

from .base_writer import Writer
from ..utils.logger_utils import META_KEYS


class TensorBoardWriter(Writer):
    """
    TensorBoard backend: every non-meta key becomes a scalar series.

    The row's ``step`` is used as ``global_step`` so TensorBoard curves line
    up with the CSV / JSONL outputs.

    Parameters
    ----------
    run_dir : str
        Directory for event files.
    flush_secs : int, default=30
        Forwarded to ``SummaryWriter``.
    """

    def __init__(self, run_dir: str, *, flush_secs: int = 30) -> None:
        self._tb = SummaryWriter(log_dir=run_dir, flush_secs=int(flush_secs))

    def write(self, row: Mapping[str, float]) -> None:
        step = int(row.get("step", 0))
        for k, v in row.items():
            if k in META_KEYS:
                continue
            self._tb.add_scalar(str(k), float(v), global_step=step)

    def flush(self) -> None:
        self._tb.flush()

    def close(self) -> None:
        self._tb.close()
