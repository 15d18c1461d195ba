from __future__ import annotations

import sys


def _warn(owner: str, message: str) -> None:
    """
    Best-effort warning emitter (stderr).

    Parameters
    ----------
    owner : str
        Tag printed in brackets, typically the emitting class name.
    message : str
        Warning text.

    Notes
    -----
    Output format is ``[{owner}][WARN] {message}``. A closed or broken stderr
    never propagates into the caller.
    """
    try:
        print(f"[{owner}][WARN] {message}", file=sys.stderr)
    except (OSError, ValueError):
        pass
