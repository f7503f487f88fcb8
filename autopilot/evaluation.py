"""Greedy-policy evaluation of a trained agent."""

from typing import Dict

import numpy as np

from autopilot.encoding import StateEncoder


class Evaluator:
    """Evaluate agent performance."""

    def __init__(self, env, encoder: StateEncoder):
        """Initialize evaluator.

        Args:
            env: Driving environment (not the one used for training rollouts)
            encoder: Observation encoder matching the agent's input width
        """
        self.env = env
        self.encoder = encoder

    def evaluate(self, agent, num_episodes: int = 10, max_steps: int = 1000) -> Dict[str, float]:
        """Run greedy episodes; nothing is added to the replay buffer.

        Args:
            agent: Agent exposing ``q_network.predict``
            num_episodes: Number of evaluation episodes
            max_steps: Tick limit per episode

        Returns:
            Evaluation metrics
        """
        episode_rewards = []
        episode_lengths = []

        for _ in range(num_episodes):
            self.env.reset()
            done = False
            episode_reward = 0.0
            episode_length = 0

            while not done and episode_length < max_steps:
                state = self.encoder.encode(self.env.get_observation())
                action = int(np.argmax(agent.q_network.predict(state)))
                self.env.apply_action(action)
                episode_reward += self.env.compute_reward()
                episode_length += 1
                done = self.env.is_done()

            episode_rewards.append(episode_reward)
            episode_lengths.append(episode_length)

        return {
            'mean_reward': float(np.mean(episode_rewards)),
            'std_reward': float(np.std(episode_rewards)),
            'mean_length': float(np.mean(episode_lengths)),
            'max_reward': float(np.max(episode_rewards)),
            'min_reward': float(np.min(episode_rewards))
        }
