"""
common package
==============

Shared infrastructure for the model facades.

Subpackages
-----------
- networks    : actor-critic capability contract, encoders, distributions
- normalizers : running observation normalizer
- optimizers  : optimizer / LR scheduler builders, gradient clipping
- buffers     : TrajectoryBatch, minibatch iteration, rollout buffer
- loggers     : Logger frontend and CSV / JSONL / TensorBoard writers
- policies    : ActorCriticHead, BaseCore, BaseRLModel
- utils       : conversion, init, seeding, spaces, schedules, GAE
- testers     : test modules (``*_testers.py``)
"""

from __future__ import annotations
