"""Experience replay buffer for the Q-learning agent."""

from collections import deque
from dataclasses import dataclass
from typing import Iterator, List, Optional

import numpy as np

from autopilot.errors import InsufficientData


@dataclass(frozen=True)
class Experience:
    """A single (s, a, r, s', done) transition."""

    state: np.ndarray
    action: int
    reward: float
    next_state: np.ndarray
    done: bool = False


class ReplayBuffer:
    """Bounded FIFO of transitions with uniform random sampling.

    Sampling picks indices and never reorders the stored transitions, so
    eviction always drops the oldest insert.
    """

    def __init__(self, capacity: int = 10000, seed: Optional[int] = None):
        """Initialize replay buffer.

        Args:
            capacity: Maximum number of transitions to store
            seed: Seed for the sampling RNG
        """
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._buffer = deque(maxlen=capacity)
        self.np_random = np.random.RandomState(seed)

    def add(self, experience: Experience) -> None:
        self._buffer.append(experience)

    def sample_batch(self, batch_size: int) -> List[Experience]:
        """Sample ``batch_size`` distinct transitions uniformly at random.

        Raises:
            InsufficientData: if fewer than ``batch_size`` transitions are stored
        """
        if len(self._buffer) < batch_size:
            raise InsufficientData(
                f"Requested batch of {batch_size} from buffer of {len(self._buffer)}"
            )
        indices = self.np_random.choice(len(self._buffer), batch_size, replace=False)
        return [self._buffer[int(i)] for i in indices]

    def size(self) -> int:
        return len(self._buffer)

    def clear(self) -> None:
        self._buffer.clear()

    def export(self) -> List[Experience]:
        """Copy of the stored transitions, oldest first."""
        return list(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def __iter__(self) -> Iterator[Experience]:
        return iter(list(self._buffer))
