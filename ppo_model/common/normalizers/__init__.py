"""
Normalizers
====================

Online observation statistics applied to the vector modality before it enters
the network.
"""

from __future__ import annotations

from .running_normalizer import RunningObservationNormalizer

__all__ = ["RunningObservationNormalizer"]
