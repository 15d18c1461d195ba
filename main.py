import numpy as np
import gymnasium as gym

from ppo_model.baselines.ppo.ppo import ppo
from ppo_model.common.buffers import TrajectoryBuffer
from ppo_model.common.loggers import build_logger
from ppo_model.common.utils.schedule_utils import AnnealingSchedule
from ppo_model.common.utils.space_utils import spec_kwargs, split_observation
from ppo_model.common.utils.train_utils import _log_iteration


# -----------------------------
# Env factory
# -----------------------------
def make_env(env_id: str, seed: int):
    """
    Create a fresh gymnasium env seeded for reproducibility.
    """
    env = gym.make(env_id)
    env.reset(seed=seed)
    env.action_space.seed(seed)
    return env


def to_env_action(action_space, action: np.ndarray):
    """Map one model action row (K,) onto what ``env.step`` expects."""
    if isinstance(action_space, gym.spaces.Discrete):
        return int(action[0])
    if isinstance(action_space, gym.spaces.MultiDiscrete):
        return action.astype(np.int64)
    return np.clip(action, action_space.low, action_space.high).reshape(action_space.shape)


# -----------------------------
# Rollout + update loop
# -----------------------------
def train(
    env_id: str = "CartPole-v1",
    *,
    iterations: int = 50,
    rollout_steps: int = 1024,
    epochs: int = 4,
    minibatch_size: int = 256,
    seed: int = 0,
    device: str = "cpu",
) -> None:
    env = make_env(env_id, seed)

    logger = build_logger(log_dir="./runs", exp_name=f"ppo_{env_id}", console_every=1)
    model = ppo(
        **spec_kwargs(env.observation_space, env.action_space),
        actor_hidden_sizes=(64, 64),
        critic_hidden_sizes=(64, 64),
        lr=3e-4,
        max_grad_norm=0.5,
        sched_name="linear",
        total_steps=iterations * epochs * int(np.ceil(rollout_steps / minibatch_size)),
        seed=seed,
        device=device,
    )
    # The model gets no logger: one row per iteration keeps the CSV schema stable.
    logger.dump_config(model.config)

    clip_sched = AnnealingSchedule(start=0.2, end=0.05, total_steps=iterations)
    buffer = TrajectoryBuffer(gamma=0.99, gae_lambda=0.95)

    obs, _ = env.reset(seed=seed)
    episode_return, finished = 0.0, []

    try:
        for it in range(iterations):
            buffer.reset()
            done = False
            for _ in range(rollout_steps):
                vec, vis = split_observation(obs)
                vis_batch = [v[None] for v in vis]
                vec_batch = None if vec is None else vec[None]

                value = float(model.evaluate_value(vec_batch, vis_batch)[0])
                actions, log_probs = model.evaluate_action(vec_batch, vis_batch)

                obs, reward, terminated, truncated, _ = env.step(to_env_action(env.action_space, actions[0]))
                done = bool(terminated or truncated)
                buffer.add(
                    action=actions[0],
                    log_prob=log_probs[0],
                    value=value,
                    reward=float(reward),
                    done=done,
                    vector_obs=vec,
                    visual_obs=vis,
                )

                episode_return += float(reward)
                if done:
                    finished.append(episode_return)
                    episode_return = 0.0
                    obs, _ = env.reset()

            vec, vis = split_observation(obs)
            last_value = float(model.evaluate_value(None if vec is None else vec[None], [v[None] for v in vis])[0])
            batch = buffer.finalize(last_value=last_value, last_done=done)

            model.hyperparams.clip_epsilon = clip_sched(it)
            metrics = model.train_epochs(batch, epochs=epochs, minibatch_size=minibatch_size)

            _log_iteration(logger, it + 1, metrics, finished)
            finished = []
    finally:
        env.close()
        logger.close()

    model.save(f"./runs/ppo_{env_id}.pt")


if __name__ == "__main__":
    train()
