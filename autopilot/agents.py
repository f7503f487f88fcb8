"""Epsilon-greedy Q-learning agent with experience replay."""

import asyncio
import logging
import time
from typing import Optional, Sequence

import numpy as np

from autopilot.config import LearningConfig
from autopilot.errors import ConfigurationMismatch, PersistenceFailure, TrainingStepFailure
from autopilot.monitoring import MetricsReporter, TrainingMetrics
from autopilot.persistence import PersistenceManager
from autopilot.qnetwork import QNetwork
from autopilot.replay import Experience, ReplayBuffer

logger = logging.getLogger(__name__)

ACTIONS = ('accelerate', 'brake', 'steer_left', 'steer_right')


class PolicyAgent:
    """Online Q-learning agent.

    Owns its replay buffer and Q-network. Targets for both the current and
    the next state come from the same network (there is no target network),
    so the regression targets move as the network trains.
    """

    def __init__(self,
                 state_dim: int,
                 action_dim: int = len(ACTIONS),
                 learning_config: Optional[LearningConfig] = None,
                 batch_size: int = 64,
                 buffer_size: int = 10000,
                 hidden_layers: Sequence[int] = (64, 32),
                 reporter: Optional[MetricsReporter] = None,
                 store: Optional[PersistenceManager] = None,
                 seed: int = 42):
        """Initialize agent.

        Args:
            state_dim: State vector width
            action_dim: Number of discrete actions
            learning_config: Learning rate, discount and exploration schedule
            batch_size: Transitions per training step
            buffer_size: Replay buffer capacity
            hidden_layers: Q-network hidden layer widths
            reporter: Metrics/log sink; a private one is created if omitted
            store: Model slot storage used by save_model/load_model
            seed: Random seed
        """
        self.state_dim = state_dim
        self.action_dim = action_dim
        self.batch_size = batch_size
        self.hidden_layers = tuple(hidden_layers)
        self.seed = seed

        self.initial_config = learning_config or LearningConfig()
        self.config = self.initial_config
        self.reporter = reporter or MetricsReporter()
        self.store = store

        self.np_random = np.random.RandomState(seed)
        self.replay_buffer = ReplayBuffer(buffer_size, seed=seed)
        self.q_network = self._build_network(seed)

        # At most one train_step (or config/reset command) in flight
        self.train_lock = asyncio.Lock()

    def _build_network(self, seed: int) -> QNetwork:
        return QNetwork(
            self.state_dim,
            self.action_dim,
            hidden_layers=self.hidden_layers,
            learning_rate=self.config.learning_rate,
            seed=seed,
        )

    @property
    def exploration_rate(self) -> float:
        return self.config.exploration_rate

    @property
    def training_history(self):
        return self.reporter.history

    def get_config(self) -> LearningConfig:
        return self.config

    def select_action(self, state: np.ndarray) -> int:
        """Select action using epsilon-greedy policy."""
        if self.np_random.random_sample() < self.config.exploration_rate:
            action = int(self.np_random.randint(self.action_dim))
        else:
            # np.argmax returns the first index on ties
            action = int(np.argmax(self.q_network.predict(state)))
        self.reporter.record_action(action)
        return action

    def add_experience(self, state: np.ndarray, action: int, reward: float,
                       next_state: np.ndarray, done: bool = False):
        """Store a transition; the buffer evicts the oldest when full."""
        self.replay_buffer.add(Experience(
            state=np.asarray(state, dtype=np.float32),
            action=int(action),
            reward=float(reward),
            next_state=np.asarray(next_state, dtype=np.float32),
            done=bool(done),
        ))

    def compute_targets(self, batch: Sequence[Experience]) -> np.ndarray:
        """One-step Bellman targets, written only into the taken action's column."""
        states = np.stack([exp.state for exp in batch])
        next_states = np.stack([exp.next_state for exp in batch])
        actions = np.array([exp.action for exp in batch])
        rewards = np.array([exp.reward for exp in batch], dtype=np.float32)
        dones = np.array([exp.done for exp in batch], dtype=np.float32)

        targets = np.array(self.q_network.predict(states), dtype=np.float32, copy=True)
        max_next_q = self.q_network.predict(next_states).max(axis=1)

        targets[np.arange(len(batch)), actions] = (
            rewards + (1.0 - dones) * self.config.discount_factor * max_next_q
        )
        return targets

    def action_distribution(self, batch: Sequence[Experience]):
        counts = np.bincount([exp.action for exp in batch], minlength=self.action_dim)
        return tuple(float(c) for c in counts / len(batch))

    async def _fit_batch(self, batch: Sequence[Experience]) -> float:
        try:
            targets = self.compute_targets(batch)
            states = np.stack([exp.state for exp in batch])
            return await asyncio.to_thread(self.q_network.fit, states, targets, 1)
        except (ValueError, TypeError, IndexError, FloatingPointError, ConfigurationMismatch) as e:
            raise TrainingStepFailure(str(e)) from e

    async def train_step(self) -> Optional[TrainingMetrics]:
        """Train on one replay batch.

        Returns:
            The step's metrics, or None if the buffer holds fewer than
            ``batch_size`` transitions or the step failed
        """
        async with self.train_lock:
            if len(self.replay_buffer) < self.batch_size:
                return None

            batch = self.replay_buffer.sample_batch(self.batch_size)
            try:
                loss = await self._fit_batch(batch)
            except TrainingStepFailure as e:
                logger.debug("Training step traceback", exc_info=e)
                self.reporter.log(f"Training failed: {e}", logging.ERROR)
                return None

            total_reward = float(sum(exp.reward for exp in batch))
            metrics = TrainingMetrics(
                episode_number=len(self.reporter) + 1,
                total_reward=total_reward,
                average_reward=total_reward / len(batch),
                exploration_rate=self.config.exploration_rate,
                loss=loss,
                action_distribution=self.action_distribution(batch),
                timestamp=int(time.time() * 1000),
            )

            self.reporter.record(metrics)
            self.reporter.log(f"Training Episode {metrics.episode_number} Complete")
            return metrics

    def decay_exploration(self):
        """Multiply the exploration rate by the decay factor, never going below the floor."""
        rate = max(self.config.exploration_min,
                   self.config.exploration_rate * self.config.exploration_decay)
        self.config = self.config.merged(exploration_rate=rate)
        self.reporter.log(f"Exploration Rate: {rate:.4f}")

    def reset(self):
        """Discard buffer, metrics and weights; restore the initial exploration rate."""
        self.replay_buffer.clear()
        self.reporter.clear()
        self.config = self.config.merged(exploration_rate=self.initial_config.exploration_rate)
        self.q_network.reinitialize()
        self.q_network.compile(self.config.learning_rate)
        self.reporter.log('Learning Process Reset')

    def update_config(self, **partial):
        """Merge ``partial`` into the learning config.

        A changed learning rate rebuilds the optimizer; weights are kept.
        """
        previous = self.config
        self.config = previous.merged(**partial)
        if self.config.learning_rate != previous.learning_rate:
            self.q_network.compile(self.config.learning_rate)
        self.reporter.log('Learning Configuration Updated')

    def _model_metadata(self):
        latest = self.reporter.latest
        return {
            'learning_config': self.config.to_dict(),
            'training_steps': len(self.reporter),
            'last_metrics': latest.to_dict() if latest else None,
        }

    async def save_model(self, slot: str = 'default') -> bool:
        """Persist the Q-network to ``slot``. Failures are logged, not raised."""
        if self.store is None:
            self.reporter.log('Model save failed: no model store configured', logging.ERROR)
            return False
        try:
            path = await asyncio.to_thread(self.q_network.save, self.store, slot, self._model_metadata())
        except PersistenceFailure as e:
            self.reporter.log(f"Model save failed: {e}", logging.ERROR)
            return False
        self.reporter.log(f"Model saved to {path}")
        return True

    async def load_model(self, slot: str = 'default') -> bool:
        """Restore the Q-network from ``slot``.

        On any persistence failure the network is replaced by a freshly
        initialized one and False is returned.
        """
        if self.store is None:
            self.reporter.log('Model load failed: no model store configured', logging.ERROR)
            return False
        candidate = self._build_network(self.seed)
        try:
            await asyncio.to_thread(candidate.load, self.store, slot)
        except PersistenceFailure as e:
            self.reporter.log(f"Error loading model: {e}", logging.ERROR)
            self.q_network.reinitialize()
            self.q_network.compile(self.config.learning_rate)
            return False
        self.q_network = candidate
        self.reporter.log(f"Model loaded from slot '{slot}'")
        return True
