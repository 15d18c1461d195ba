from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Mapping, Optional


class Writer(ABC):
    """
    Abstract sink for rows of scalar metrics.

    Contract
    --------
    - `write(row)` consumes one mapping of metric name -> float. Rows produced
      by :class:`Logger` always carry the meta keys ``step``, ``wall_time``
      and ``timestamp``.
    - `flush()` and `close()` should be idempotent.
    - Implementations raise on failure; suppression is the job of
      :class:`SafeWriter` or of the Logger's ``strict`` policy.
    """

    @abstractmethod
    def write(self, row: Mapping[str, float]) -> None:
        raise NotImplementedError

    @abstractmethod
    def flush(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


class SafeWriter(Writer):
    """
    Wrapper that isolates failures of an inner writer.

    Any exception raised by the wrapped writer is counted and suppressed so
    that a broken backend (full disk, closed event file) never interrupts a
    training loop.

    Parameters
    ----------
    inner : Writer
        The concrete writer to wrap.
    name : str, optional
        Identifier for diagnostics. Defaults to the inner class name.

    Attributes
    ----------
    failures : int
        Number of suppressed exceptions.
    last_error : Optional[BaseException]
        Most recent suppressed exception.
    """

    def __init__(self, inner: Writer, *, name: Optional[str] = None) -> None:
        self._inner = inner
        self.name = name or inner.__class__.__name__
        self.failures = 0
        self.last_error: Optional[BaseException] = None

    def _record(self, err: BaseException) -> None:
        self.failures += 1
        self.last_error = err

    def write(self, row: Mapping[str, float]) -> None:
        try:
            self._inner.write(row)
        except Exception as e:
            self._record(e)

    def flush(self) -> None:
        try:
            self._inner.flush()
        except Exception as e:
            self._record(e)

    def close(self) -> None:
        try:
            self._inner.close()
        except Exception as e:
            self._record(e)
