import logging
from collections import deque
from dataclasses import dataclass, asdict
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np


logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_BACKLOG = 50
REPORT_WINDOW = 10


def setup_logging(level: str = 'INFO', log_dir: Optional[str] = None) -> logging.Logger:
    """Configure the ``autopilot`` logger.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        log_dir: If given, also write a rotating ``training.log`` there

    Returns:
        The configured package logger
    """
    root = logging.getLogger('autopilot')
    root.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers to avoid duplicates
    root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        # File handler with rotation (10 MB max, keep 5 backups)
        file_handler = RotatingFileHandler(
            path / 'training.log',
            maxBytes=10 * 1024 * 1024,
            backupCount=5
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root


@dataclass(frozen=True)
class TrainingMetrics:
    """Statistics of one completed training step."""

    episode_number: int
    total_reward: float
    average_reward: float
    exploration_rate: float
    loss: float
    action_distribution: Tuple[float, ...]
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['action_distribution'] = list(self.action_distribution)
        return data


class Channel:
    """Push-style broadcast to registered callbacks.

    With ``backlog`` set, the last ``backlog`` items are kept and replayed to
    each new subscriber; otherwise subscribers only see future items.
    """

    def __init__(self, name: str, backlog: Optional[int] = None):
        self.name = name
        self._subscribers: List[Callable[[Any], None]] = []
        self._backlog = deque(maxlen=backlog) if backlog else None

    def subscribe(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        if self._backlog is not None:
            for item in list(self._backlog):
                callback(item)
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, item: Any) -> None:
        if self._backlog is not None:
            self._backlog.append(item)
        for callback in list(self._subscribers):
            try:
                callback(item)
            except Exception:
                logger.exception("Subscriber of %s feed failed", self.name)

    def backlog(self) -> List[Any]:
        return list(self._backlog) if self._backlog is not None else []

    def clear(self) -> None:
        if self._backlog is not None:
            self._backlog.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class MetricsReporter:
    """Append-only training history plus metrics, log and action feeds."""

    def __init__(self, log_backlog: int = LOG_BACKLOG):
        self._history: List[TrainingMetrics] = []
        self.metrics_feed = Channel('metrics', backlog=1)
        self.log_feed = Channel('log', backlog=log_backlog)
        self.action_feed = Channel('action')
        self.logger = logging.getLogger('autopilot.training')

    def record(self, metrics: TrainingMetrics) -> None:
        """Append ``metrics`` to the history and broadcast it."""
        self._history.append(metrics)
        self.metrics_feed.publish(metrics)

    def log(self, message: str, level: int = logging.INFO) -> None:
        """Write a diagnostic line to the logger and the log feed."""
        self.logger.log(level, message)
        self.log_feed.publish(message)

    def record_action(self, action: int) -> None:
        self.action_feed.publish(action)

    @property
    def history(self) -> List[TrainingMetrics]:
        return list(self._history)

    @property
    def latest(self) -> Optional[TrainingMetrics]:
        return self._history[-1] if self._history else None

    def __len__(self) -> int:
        return len(self._history)

    def clear(self) -> None:
        self._history.clear()
        self.metrics_feed.clear()

    def running_average(self, window_size: int = REPORT_WINDOW) -> List[float]:
        """Average rewards of the last ``window_size`` steps.

        Returns an empty list until the history holds a full window.
        """
        if len(self._history) < window_size:
            return []
        return [m.average_reward for m in self._history[-window_size:]]

    def get_aggregated_stats(self) -> Dict[str, Any]:
        if not self._history:
            return {}
        rewards = np.array([m.average_reward for m in self._history])
        losses = np.array([m.loss for m in self._history])
        return {
            'total_episodes': len(self._history),
            'avg_reward': float(rewards.mean()),
            'max_reward': float(rewards.max()),
            'min_reward': float(rewards.min()),
            'avg_loss': float(losses.mean()),
            'exploration_rate': self._history[-1].exploration_rate,
        }

    def generate_report(self, window_size: int = REPORT_WINDOW) -> str:
        """Human-readable summary of the latest step and the trailing window."""
        if not self._history:
            return 'No training data available'

        last = self._history[-1]
        window = self.running_average(window_size)

        lines = [
            'Training Report',
            '---------------',
            f'Total Episodes: {len(self._history)}',
            'Last Episode Metrics:',
            f'  - Total Reward: {last.total_reward:.2f}',
            f'  - Average Reward: {last.average_reward:.2f}',
            f'  - Exploration Rate: {last.exploration_rate:.4f}',
            f'  - Training Loss: {last.loss:.4f}',
            '  - Action Distribution: ' + ', '.join(f'{p:.2f}' for p in last.action_distribution),
            '',
            f'Running Average (Last {window_size} Episodes):',
        ]
        lines.extend(f'  Episode {i + 1}: {r:.2f}' for i, r in enumerate(window))
        if window:
            lines.append(f'  Mean: {float(np.mean(window)):.2f}')
        return '\n'.join(lines)
