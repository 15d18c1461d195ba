from __future__ import annotations

import os
import sys
from typing import Any, Callable, List, Tuple

import torch as th
import torch.nn as nn


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
    assert_raises,
    assert_true,
    run_tests,
    seed_all,
)
from ppo_model.common.optimizers import (  # noqa: E402
    build_optimizer,
    build_scheduler,
    clip_grad_norm,
    load_optimizer_state_dict,
    load_scheduler_state_dict,
    optimizer_state_dict,
    scheduler_state_dict,
)


def _tiny_mlp() -> nn.Module:
    return nn.Sequential(nn.Linear(8, 16), nn.ReLU(), nn.Linear(16, 4))


def _backward(model: nn.Module, *, scale: float = 1.0) -> None:
    model.zero_grad(set_to_none=True)
    x = th.randn(16, 8)
    y = th.randn(16, 4)
    loss = scale * (model(x) - y).pow(2).mean()
    loss.backward()


def _lr(opt) -> float:
    return float(opt.param_groups[0]["lr"])


# =============================================================================
# Tests: build_optimizer
# =============================================================================
def test_build_optimizer_names():
    model = _tiny_mlp()
    expected = {
        "adam": th.optim.Adam,
        "AdamW": th.optim.AdamW,
        "adam_weight_decay": th.optim.AdamW,
        "sgd": th.optim.SGD,
        "rms-prop": th.optim.RMSprop,
        "radam": th.optim.RAdam,
    }
    for name, cls in expected.items():
        opt = build_optimizer(model.parameters(), name=name, lr=1e-3)
        assert_true(isinstance(opt, cls), f"{name} -> {type(opt).__name__}")
        assert_close(_lr(opt), 1e-3)


def test_build_optimizer_invalid_args():
    model = _tiny_mlp()
    assert_raises(ValueError, lambda: build_optimizer(model.parameters(), name="lion"))
    assert_raises(ValueError, lambda: build_optimizer(model.parameters(), lr=0.0))
    assert_raises(ValueError, lambda: build_optimizer(model.parameters(), weight_decay=-0.1))
    assert_raises(ValueError, lambda: build_optimizer(model.parameters(), betas=(1.0, 0.999)))


def test_optimizer_step_updates_params():
    seed_all(0)
    model = _tiny_mlp()
    opt = build_optimizer(model.parameters(), name="adam", lr=1e-2)
    p0 = [p.detach().clone() for p in model.parameters()]
    _backward(model)
    opt.step()
    changed = any(not th.allclose(p.detach(), q) for p, q in zip(model.parameters(), p0))
    assert_true(changed, "optimizer step did not update parameters")


# =============================================================================
# Tests: clip_grad_norm
# =============================================================================
def test_clip_grad_norm_disabled_returns_zero():
    seed_all(0)
    model = _tiny_mlp()
    _backward(model)
    g0 = [p.grad.detach().clone() for p in model.parameters()]
    assert_eq(clip_grad_norm(model.parameters(), 0.0), 0.0)
    for p, g in zip(model.parameters(), g0):
        assert_true(th.equal(p.grad, g), "gradients changed with clipping disabled")


def test_clip_grad_norm_bounds_global_norm():
    seed_all(0)
    model = _tiny_mlp()
    _backward(model, scale=1000.0)
    pre = clip_grad_norm(model.parameters(), 0.5)
    assert_true(pre > 0.5, f"expected a large pre-clip norm, got {pre}")
    post = th.sqrt(sum(p.grad.pow(2).sum() for p in model.parameters()))
    assert_close(float(post), 0.5, rtol=1e-3)


def test_clip_grad_norm_without_grads():
    model = _tiny_mlp()
    assert_eq(clip_grad_norm(model.parameters(), 1.0), 0.0)


# =============================================================================
# Tests: build_scheduler
# =============================================================================
def _stepped(opt, sched, n: int) -> None:
    for _ in range(n):
        opt.step()
        sched.step()


def test_scheduler_none_and_constant():
    opt = build_optimizer(_tiny_mlp().parameters(), lr=1e-3)
    assert_true(build_scheduler(opt, name="none") is None)
    assert_true(build_scheduler(opt, name="constant") is None)


def test_linear_scheduler_decays_to_min_ratio():
    opt = build_optimizer(_tiny_mlp().parameters(), lr=1e-3)
    sched = build_scheduler(opt, name="linear", total_steps=10, min_lr_ratio=0.1)
    assert_close(_lr(opt), 1e-3)
    _stepped(opt, sched, 5)
    assert_close(_lr(opt), 1e-3 * 0.55, rtol=1e-6)
    _stepped(opt, sched, 10)
    assert_close(_lr(opt), 1e-4, rtol=1e-6)


def test_linear_scheduler_warmup():
    opt = build_optimizer(_tiny_mlp().parameters(), lr=1.0, name="sgd")
    sched = build_scheduler(opt, name="linear", total_steps=10, warmup_steps=4)
    assert_close(_lr(opt), 0.25)
    _stepped(opt, sched, 3)
    assert_close(_lr(opt), 1.0)


def test_step_and_exponential_schedulers():
    opt = build_optimizer(_tiny_mlp().parameters(), lr=1.0, name="sgd")
    sched = build_scheduler(opt, name="step", step_size=2, gamma=0.5)
    _stepped(opt, sched, 2)
    assert_close(_lr(opt), 0.5)

    opt2 = build_optimizer(_tiny_mlp().parameters(), lr=1.0, name="sgd")
    sched2 = build_scheduler(opt2, name="exponential", gamma=0.9)
    _stepped(opt2, sched2, 2)
    assert_close(_lr(opt2), 0.81, rtol=1e-6)


def test_scheduler_invalid_args():
    opt = build_optimizer(_tiny_mlp().parameters(), lr=1e-3)
    assert_raises(ValueError, lambda: build_scheduler(opt, name="linear", total_steps=0))
    assert_raises(ValueError, lambda: build_scheduler(opt, name="log", total_steps=10, min_lr_ratio=0.0))
    assert_raises(ValueError, lambda: build_scheduler(opt, name="cosine", total_steps=10, min_lr_ratio=2.0))
    assert_raises(ValueError, lambda: build_scheduler(opt, name="poly", total_steps=10))


# =============================================================================
# Tests: checkpoint helpers
# =============================================================================
def test_optimizer_and_scheduler_state_round_trip():
    seed_all(0)
    model = _tiny_mlp()
    opt = build_optimizer(model.parameters(), lr=1e-3)
    sched = build_scheduler(opt, name="linear", total_steps=20)
    for _ in range(3):
        _backward(model)
        opt.step()
        sched.step()
    opt_sd, sched_sd = optimizer_state_dict(opt), scheduler_state_dict(sched)

    opt2 = build_optimizer(model.parameters(), lr=1e-3)
    sched2 = build_scheduler(opt2, name="linear", total_steps=20)
    load_optimizer_state_dict(opt2, opt_sd)
    load_scheduler_state_dict(sched2, sched_sd)
    assert_close(_lr(opt2), _lr(opt))
    assert_eq(sched2.last_epoch, 3)

    assert_eq(scheduler_state_dict(None), {})
    load_scheduler_state_dict(None, sched_sd)


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("build_optimizer_names", test_build_optimizer_names),
    ("build_optimizer_invalid_args", test_build_optimizer_invalid_args),
    ("optimizer_step_updates_params", test_optimizer_step_updates_params),
    ("clip_grad_norm_disabled_returns_zero", test_clip_grad_norm_disabled_returns_zero),
    ("clip_grad_norm_bounds_global_norm", test_clip_grad_norm_bounds_global_norm),
    ("clip_grad_norm_without_grads", test_clip_grad_norm_without_grads),
    ("scheduler_none_and_constant", test_scheduler_none_and_constant),
    ("linear_scheduler_decays_to_min_ratio", test_linear_scheduler_decays_to_min_ratio),
    ("linear_scheduler_warmup", test_linear_scheduler_warmup),
    ("step_and_exponential_schedulers", test_step_and_exponential_schedulers),
    ("scheduler_invalid_args", test_scheduler_invalid_args),
    ("optimizer_and_scheduler_state_round_trip", test_optimizer_and_scheduler_state_round_trip),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="optimizers")


if __name__ == "__main__":
    raise SystemExit(main())
