import numpy as np
import torch as th

from rlreplay import (
    ReplayConfig,
    Transition,
    is_empty_buffer,
    is_insufficient_samples,
)


# -----------------------------
# Toy environment
# -----------------------------
class RandomWalk:
    """
    Minimal continuous random walk: the agent pushes a point towards the origin.
    """

    def __init__(self, obs_dim: int, seed: int):
        self.obs_dim = obs_dim
        self.rng = np.random.default_rng(seed)
        self.state = np.zeros(obs_dim)

    def reset(self):
        self.state = self.rng.normal(size=self.obs_dim)
        return self.state.copy()

    def step(self, action):
        self.state = self.state + 0.1 * float(action[0]) + 0.05 * self.rng.normal(size=self.obs_dim)
        reward = -float(np.linalg.norm(self.state))
        return self.state.copy(), reward


obs_dim = 4
action_dim = 1
gamma = 0.99
device = "cpu"  # or "cuda"


# -----------------------------
# Build buffer from an agent config
# -----------------------------
config = ReplayConfig.from_dict(
    {
        "RemoveMethod": "fifo",
        "SampleMethod": "uniform",
        "RemoveSize": 1,
        "SampleSize": 32,
        "MinReplayCapacity": 64,
        "MaxReplayCapacity": 10_000,
    }
)
buffer = config.create(feature_size=obs_dim, action_size=action_dim, seed=0, include_next_action=True)
print(buffer)

env = RandomWalk(obs_dim, seed=0)
rng = np.random.default_rng(1)

state = env.reset()
action = rng.uniform(-1.0, 1.0, size=action_dim)
updates = 0

for t in range(500):
    next_state, reward = env.step(action)
    next_action = rng.uniform(-1.0, 1.0, size=action_dim)
    buffer.add(Transition(state, action, reward, gamma, next_state, next_action))
    state, action = next_state, next_action

    try:
        batch = buffer.sample().to_tensors(device)
    except Exception as e:
        if is_empty_buffer(e) or is_insufficient_samples(e):
            continue
        raise

    # SARSA-style target on a linear value estimate
    s = batch.states.view(-1, obs_dim)
    s_next = batch.next_states.view(-1, obs_dim)
    w = th.ones(obs_dim, device=device) * -0.1
    target = batch.rewards + batch.discounts * (s_next @ w)
    td_error = target - s @ w
    updates += 1

    if updates % 100 == 0:
        print(f"step={t} capacity={buffer.capacity} td_mse={float(td_error.pow(2).mean()):.4f}")

print(f"updates={updates} final capacity={buffer.capacity}")
