from __future__ import annotations

from typing import Any, Dict, List, Optional

from .base_writer import SafeWriter, Writer
from .csv_writer import CSVWriter
from .jsonl_writer import JSONLWriter
from .logger import Logger
from .tensorboard_writer import TensorBoardWriter


def build_logger(
    *,
    log_dir: str = "./runs",
    exp_name: str = "ppo",
    run_id: Optional[str] = None,
    overwrite: bool = False,
    resume: bool = False,
    # backend enable flags
    use_tensorboard: bool = True,
    use_csv: bool = True,
    use_jsonl: bool = True,
    safe_writers: bool = True,
    # backend kwargs
    csv_kwargs: Optional[Dict[str, Any]] = None,
    jsonl_kwargs: Optional[Dict[str, Any]] = None,
    tensorboard_kwargs: Optional[Dict[str, Any]] = None,
    # logger behavior
    console_every: int = 1,
    flush_every: int = 200,
    drop_non_finite: bool = False,
    strict: bool = False,
) -> Logger:
    """
    Construct a :class:`Logger` and attach the selected writer backends.

    Parameters
    ----------
    log_dir, exp_name, run_id, overwrite, resume
        Run-directory resolution, forwarded to :class:`Logger`.
    use_tensorboard : bool, default=True
        Attach :class:`TensorBoardWriter`.
    use_csv : bool, default=True
        Attach :class:`CSVWriter` (wide layout unless overridden in
        ``csv_kwargs``).
    use_jsonl : bool, default=True
        Attach :class:`JSONLWriter`.
    safe_writers : bool, default=True
        Wrap each backend in :class:`SafeWriter` so backend failures never
        reach the training loop.
    csv_kwargs, jsonl_kwargs, tensorboard_kwargs : dict, optional
        Extra keyword arguments for the respective backends.
    console_every, flush_every, drop_non_finite, strict
        Logger behavior, see :class:`Logger`.

    Returns
    -------
    logger : Logger

    Raises
    ------
    FileNotFoundError
        If ``resume=True`` and the run directory does not exist.
    """
    logger = Logger(
        log_dir=str(log_dir),
        exp_name=str(exp_name),
        run_id=run_id,
        overwrite=bool(overwrite),
        resume=bool(resume),
        writers=None,
        console_every=int(console_every),
        flush_every=int(flush_every),
        drop_non_finite=bool(drop_non_finite),
        strict=bool(strict),
    )

    writers: List[Writer] = []
    if use_tensorboard:
        writers.append(TensorBoardWriter(logger.run_dir, **dict(tensorboard_kwargs or {})))
    if use_csv:
        writers.append(CSVWriter(logger.run_dir, **dict(csv_kwargs or {})))
    if use_jsonl:
        writers.append(JSONLWriter(logger.run_dir, **dict(jsonl_kwargs or {})))

    for w in writers:
        logger.add_writer(SafeWriter(w) if safe_writers else w)
    return logger
