"""Episode/rollout loop that turns environment ticks into replay transitions."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from autopilot.encoding import StateEncoder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickResult:
    action: int
    reward: float
    done: bool


class RolloutWorker:
    """Drives one environment with the agent's policy and records transitions."""

    def __init__(self, env, agent, encoder: StateEncoder):
        self.env = env
        self.agent = agent
        self.encoder = encoder
        self.episode_counter = 0
        self.step_counter = 0
        self.current_episode_reward = 0.0
        self.current_episode_steps = 0
        self.episode_rewards: List[float] = []
        self.env.reset()

    def tick(self) -> TickResult:
        """Observe, act, collect the reward and store the transition."""
        state = self.encoder.encode(self.env.get_observation())
        action = self.agent.select_action(state)
        self.env.apply_action(action)
        reward = self.env.compute_reward()
        next_state = self.encoder.encode(self.env.get_observation())
        done = self.env.is_done()

        self.agent.add_experience(state, action, reward, next_state, done)

        self.step_counter += 1
        self.current_episode_steps += 1
        self.current_episode_reward += reward

        if done:
            self._finish_episode()

        return TickResult(action=action, reward=reward, done=done)

    def _finish_episode(self):
        self.episode_counter += 1
        self.episode_rewards.append(self.current_episode_reward)
        self.agent.reporter.log(
            f"Rollout episode {self.episode_counter}: Reward={self.current_episode_reward:.2f}, "
            f"Steps={self.current_episode_steps}, Collisions={getattr(self.env, 'collisions', 0)}"
        )
        self.current_episode_reward = 0.0
        self.current_episode_steps = 0
        self.env.reset()

    def run_episode(self, max_steps: Optional[int] = None) -> Dict[str, Any]:
        """Run ticks until the episode ends or ``max_steps`` is reached."""
        start_episode = self.episode_counter
        steps = 0
        reward = 0.0
        done = False
        while not done and (max_steps is None or steps < max_steps):
            result = self.tick()
            steps += 1
            reward += result.reward
            done = result.done

        if not done:
            # Truncated: close the episode without marking a terminal transition
            self._finish_episode()

        return {
            'episode': start_episode + 1,
            'reward': reward,
            'steps': steps,
            'done': done,
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            'episode': self.episode_counter,
            'step': self.step_counter,
            'episode_rewards': self.episode_rewards[-100:],
            'buffer_size': len(self.agent.replay_buffer),
            'exploration_rate': float(self.agent.exploration_rate),
        }
