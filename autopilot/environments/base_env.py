"""Base class for driving environments that feed the agent."""

from abc import ABC, abstractmethod
import numpy as np

from autopilot.encoding import Observation


class BaseDrivingEnvironment(ABC):
    """Abstract simulation the rollout loop observes and acts on."""

    def __init__(self, seed: int = 42):
        """Initialize environment.

        Args:
            seed: Random seed for reproducibility
        """
        self.seed_value = seed
        self.np_random = np.random.RandomState(seed)

    @abstractmethod
    def reset(self) -> Observation:
        """Reset environment and return initial observation."""
        pass

    @abstractmethod
    def get_observation(self) -> Observation:
        """Observation of the current tick."""
        pass

    @abstractmethod
    def apply_action(self, action: int):
        """Advance the simulation one tick under ``action``."""
        pass

    @abstractmethod
    def compute_reward(self) -> float:
        """Reward for the most recent tick."""
        pass

    @abstractmethod
    def is_done(self) -> bool:
        """Whether the current episode has ended."""
        pass

    @property
    @abstractmethod
    def state_dim(self) -> int:
        """Width of the encoded observation."""
        pass

    @property
    @abstractmethod
    def action_dim(self) -> int:
        """Number of discrete actions."""
        pass

    def set_seed(self, seed: int):
        """Set random seed."""
        self.seed_value = seed
        self.np_random = np.random.RandomState(seed)
