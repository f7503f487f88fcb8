"""Training orchestration: early-stopping loop, rollout loop and lifecycle commands."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from autopilot.agents import PolicyAgent
from autopilot.config import Config, LearningConfig
from autopilot.encoding import StateEncoder
from autopilot.environments import TrackEnvironment
from autopilot.errors import ConfigurationMismatch
from autopilot.monitoring import TrainingMetrics, MetricsReporter
from autopilot.persistence import PersistenceManager
from autopilot.rollout import RolloutWorker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingOutcome:
    reached_target: bool
    steps: int
    cancelled: bool
    last_metrics: Optional[TrainingMetrics] = None


class TrainingOrchestrator:
    """Runs training and rollouts on one event loop and serves lifecycle commands.

    The stop signal is only checked between iterations; a training step that
    has started always runs to completion.
    """

    def __init__(self,
                 agent: PolicyAgent,
                 encoder: StateEncoder,
                 env=None,
                 max_steps: int = 1000,
                 target_average_reward: float = 100.0,
                 backoff: float = 0.1,
                 tick_interval: float = 0.1,
                 slot: str = 'default'):
        """Initialize orchestrator.

        Raises:
            ConfigurationMismatch: if the encoder, environment and agent
                disagree on state or action width
        """
        if encoder.state_dim != agent.state_dim:
            raise ConfigurationMismatch(
                f"Encoder produces {encoder.state_dim} features, Q-network expects {agent.state_dim}"
            )
        if env is not None:
            if env.state_dim != encoder.state_dim:
                raise ConfigurationMismatch(
                    f"Environment observations encode to {env.state_dim} features, "
                    f"Q-network expects {agent.state_dim}"
                )
            if env.action_dim != agent.action_dim:
                raise ConfigurationMismatch(
                    f"Environment has {env.action_dim} actions, Q-network outputs {agent.action_dim}"
                )

        self.agent = agent
        self.encoder = encoder
        self.env = env
        self.worker = RolloutWorker(env, agent, encoder) if env is not None else None
        self.reporter = agent.reporter

        self.max_steps = max_steps
        self.target_average_reward = target_average_reward
        self.backoff = backoff
        self.tick_interval = tick_interval
        self.slot = slot

        self.running = False
        self._stop_requested = False
        self._stop_event = None
        self._stop_loop = None
        self._training_task = None

    # Cancellation

    def _stop_signal(self) -> asyncio.Event:
        loop = asyncio.get_running_loop()
        if self._stop_event is None or self._stop_loop is not loop:
            self._stop_event = asyncio.Event()
            self._stop_loop = loop
        if self._stop_requested:
            self._stop_event.set()
        return self._stop_event

    def _clear_stop(self):
        self._stop_requested = False
        if self._stop_event is not None:
            self._stop_event.clear()

    def stop_training(self):
        """Ask running loops to exit after their current iteration."""
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()
        self.reporter.log('Stop requested')

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    async def _wait_or_stop(self, seconds: float):
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._stop_signal().wait(), seconds)
        except asyncio.TimeoutError:
            pass

    # Loops

    async def run_with_early_stopping(self,
                                      max_steps: Optional[int] = None,
                                      target_average_reward: Optional[float] = None,
                                      backoff: Optional[float] = None) -> TrainingOutcome:
        """Train until the target average reward is beaten or ``max_steps`` steps complete.

        Steps that return no metrics (buffer still filling, failed step) are
        retried after ``backoff`` seconds and do not count towards ``max_steps``.
        """
        self._clear_stop()
        return await self._early_stopping_loop(max_steps, target_average_reward, backoff)

    async def _early_stopping_loop(self, max_steps, target_average_reward, backoff) -> TrainingOutcome:
        max_steps = self.max_steps if max_steps is None else max_steps
        target = self.target_average_reward if target_average_reward is None else target_average_reward
        backoff = self.backoff if backoff is None else backoff

        completed = 0
        last_metrics = None
        while completed < max_steps:
            if self._stop_requested:
                self.reporter.log(f"Training stopped after {completed} steps")
                return TrainingOutcome(False, completed, True, last_metrics)

            metrics = await self.agent.train_step()
            if metrics is None:
                await self._wait_or_stop(backoff)
                continue

            last_metrics = metrics
            if metrics.average_reward > target:
                self.reporter.log(f"Target reward reached in episode {completed}")
                return TrainingOutcome(True, completed + 1, False, metrics)

            self.agent.decay_exploration()
            completed += 1

        self.reporter.log(f"Training finished: {completed} steps without reaching target {target}")
        return TrainingOutcome(False, completed, False, last_metrics)

    async def run_rollouts(self, max_ticks: Optional[int] = None,
                           tick_interval: Optional[float] = None) -> int:
        """Feed the replay buffer from the environment until stopped.

        Returns:
            Number of ticks simulated
        """
        if self.worker is None:
            raise RuntimeError('No environment attached to the orchestrator')
        interval = self.tick_interval if tick_interval is None else tick_interval

        ticks = 0
        while not self._stop_requested and (max_ticks is None or ticks < max_ticks):
            self.worker.tick()
            ticks += 1
            await self._wait_or_stop(interval)
        return ticks

    def _on_rollouts_done(self, task: asyncio.Future):
        # A crashed rollout loop would leave training polling an idle buffer forever
        if not task.cancelled() and task.exception() is not None:
            logger.error("Rollout loop failed: %s", task.exception())
            self.stop_training()

    def _on_training_done(self, task: asyncio.Future):
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Training session traceback", exc_info=task.exception())
            self.reporter.log(f"Training failed: {task.exception()}", logging.ERROR)

    async def _training_session(self, max_steps, target_average_reward) -> TrainingOutcome:
        self.running = True
        rollouts = None
        if self.worker is not None:
            rollouts = asyncio.ensure_future(self.run_rollouts())
            rollouts.add_done_callback(self._on_rollouts_done)
        try:
            return await self._early_stopping_loop(max_steps, target_average_reward, None)
        finally:
            self.running = False
            try:
                if rollouts is not None:
                    self._stop_requested = True
                    if self._stop_event is not None:
                        self._stop_event.set()
                    await rollouts
            finally:
                self._clear_stop()

    # Commands

    def start_training(self, max_steps: Optional[int] = None,
                       target_average_reward: Optional[float] = None) -> asyncio.Task:
        """Start training (and rollouts, if an environment is attached) as a task.

        Must be called from within the event loop. While a session is
        running, the existing task is returned.
        """
        if self._training_task is not None and not self._training_task.done():
            self.reporter.log('Training already running')
            return self._training_task

        self._clear_stop()
        self.reporter.log('Training started')
        self._training_task = asyncio.get_running_loop().create_task(
            self._training_session(max_steps, target_average_reward)
        )
        self._training_task.add_done_callback(self._on_training_done)
        return self._training_task

    async def save_model(self, slot: Optional[str] = None) -> bool:
        async with self.agent.train_lock:
            return await self.agent.save_model(slot or self.slot)

    async def load_model(self, slot: Optional[str] = None) -> bool:
        async with self.agent.train_lock:
            return await self.agent.load_model(slot or self.slot)

    async def reset_learning(self):
        async with self.agent.train_lock:
            self.agent.reset()

    async def update_learning_config(self, **partial):
        async with self.agent.train_lock:
            self.agent.update_config(**partial)

    def get_status(self) -> Dict[str, Any]:
        status = {
            'running': self.running,
            'stop_requested': self._stop_requested,
            'training_steps': len(self.reporter),
            'buffer_size': len(self.agent.replay_buffer),
            'learning_config': self.agent.get_config().to_dict(),
        }
        if self.worker is not None:
            status['rollout'] = self.worker.get_stats()
        return status


def build_orchestrator(config: Config, model_dir: Optional[str] = None) -> TrainingOrchestrator:
    """Wire environment, encoder, agent and orchestrator from ``config``.

    ``agent.state_dim`` may be set in the config; it must then agree with the
    environment's obstacle count or construction fails.
    """
    env = TrackEnvironment.from_config(config)
    encoder = StateEncoder(env.state_dim)
    store = PersistenceManager(model_dir or config.get('model.save_path', 'models/'))

    agent = PolicyAgent(
        state_dim=config.get('agent.state_dim', env.state_dim),
        action_dim=config.get('agent.action_dim', env.action_dim),
        learning_config=LearningConfig.from_config(config),
        batch_size=config.get('agent.batch_size', 64),
        buffer_size=config.get('agent.buffer_size', 10000),
        hidden_layers=config.get('agent.hidden_layers', [64, 32]),
        reporter=MetricsReporter(),
        store=store,
        seed=config.get('agent.seed', 42),
    )

    return TrainingOrchestrator(
        agent,
        encoder,
        env=env,
        max_steps=config.get('training.max_steps', 1000),
        target_average_reward=config.get('training.target_average_reward', 100.0),
        backoff=config.get('training.backoff', 0.1),
        tick_interval=config.get('training.tick_interval', 0.1),
        slot=config.get('model.slot', 'default'),
    )
