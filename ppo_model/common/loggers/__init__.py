"""
Loggers
====================

Scalar-first training logger and its writer backends.

- logger          : Logger frontend (run dir, key naming, aggregation, console)
- base_writer     : Writer interface and SafeWriter failure isolation
- csv_writer      : wide (frozen schema) / long CSV backend
- jsonl_writer    : JSON Lines backend
- tensorboard_writer : torch.utils.tensorboard backend
- logger_builder  : build_logger(...) factory
"""

from __future__ import annotations

from .base_writer import SafeWriter, Writer
from .csv_writer import CSVWriter
from .jsonl_writer import JSONLWriter
from .logger import Logger
from .logger_builder import build_logger
from .tensorboard_writer import TensorBoardWriter

__all__ = [
    "CSVWriter",
    "JSONLWriter",
    "Logger",
    "SafeWriter",
    "TensorBoardWriter",
    "Writer",
    "build_logger",
]
