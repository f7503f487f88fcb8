"""Observation records and their fixed-order state-vector encoding."""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from autopilot.errors import ConfigurationMismatch


# Fields besides the obstacle distances: x, z, velocity, track position.
BASE_FEATURES = 4


@dataclass(frozen=True)
class Observation:
    """Snapshot of the car produced once per simulation tick."""

    position: Tuple[float, float]
    velocity: float
    obstacle_distances: Tuple[float, ...]
    track_position: float


def state_dim_for(num_obstacles: int) -> int:
    """State vector width for a track with ``num_obstacles`` obstacles."""
    return BASE_FEATURES + num_obstacles


class StateEncoder:
    """Maps an Observation to a fixed-length float32 vector."""

    def __init__(self, state_dim: int):
        self.state_dim = state_dim

    def encode(self, observation: Observation) -> np.ndarray:
        """Concatenate x, z, velocity, obstacle distances and track position.

        Raises:
            ConfigurationMismatch: if the result is not ``state_dim`` wide
        """
        x, z = observation.position
        vector = np.array(
            [x, z, observation.velocity, *observation.obstacle_distances, observation.track_position],
            dtype=np.float32,
        )
        if vector.shape[0] != self.state_dim:
            raise ConfigurationMismatch(
                f"Encoded state has {vector.shape[0]} features, network expects {self.state_dim}"
            )
        return vector
