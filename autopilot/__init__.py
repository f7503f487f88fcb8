"""Online Q-learning autopilot for a simulated obstacle track."""

from .agents import PolicyAgent, ACTIONS
from .config import Config, LearningConfig
from .encoding import Observation, StateEncoder
from .monitoring import MetricsReporter, TrainingMetrics
from .qnetwork import QNetwork
from .replay import Experience, ReplayBuffer
from .training import TrainingOrchestrator, TrainingOutcome, build_orchestrator

__all__ = [
    'PolicyAgent', 'ACTIONS', 'Config', 'LearningConfig', 'Observation',
    'StateEncoder', 'MetricsReporter', 'TrainingMetrics', 'QNetwork',
    'Experience', 'ReplayBuffer', 'TrainingOrchestrator', 'TrainingOutcome',
    'build_orchestrator',
]
