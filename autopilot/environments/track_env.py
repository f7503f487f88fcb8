"""Straight obstacle track with simple kinematic car physics."""

import math
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from autopilot.config import Config
from autopilot.encoding import Observation, state_dim_for
from .base_env import BaseDrivingEnvironment


ACCELERATE, BRAKE, STEER_LEFT, STEER_RIGHT = range(4)


@dataclass
class CarPhysics:
    speed: float = 0.0
    max_speed: float = 5.0
    acceleration: float = 0.1
    deceleration: float = 0.05
    turn_speed: float = 0.05


class TrackEnvironment(BaseDrivingEnvironment):
    """Car on a ``track_width`` x ``track_length`` strip scattered with obstacles.

    The track spans x in [-width/2, width/2] and z in [-length/2, length/2];
    the car starts near the low-z end heading towards +z.
    """

    def __init__(self,
                 seed: int = 42,
                 track_width: float = 20.0,
                 track_length: float = 100.0,
                 num_obstacles: int = 10,
                 max_obstacle_distance: float = 20.0,
                 collision_radius: float = 1.0,
                 collision_penalty: float = 10.0,
                 max_steps: int = 1000,
                 car: CarPhysics = None):
        """Initialize track environment.

        Args:
            seed: Random seed for obstacle placement
            track_width: Track extent along x
            track_length: Track extent along z
            num_obstacles: Obstacles per episode
            max_obstacle_distance: Cap applied to reported obstacle distances
            collision_radius: Distance below which the car hits an obstacle
            collision_penalty: Score and reward deducted per collision
            max_steps: Ticks per episode
            car: Car physics template
        """
        super().__init__(seed)
        self.track_width = track_width
        self.track_length = track_length
        self.num_obstacles = num_obstacles
        self.max_obstacle_distance = max_obstacle_distance
        self.collision_radius = collision_radius
        self.collision_penalty = collision_penalty
        self.max_steps = max_steps
        self.car_template = car or CarPhysics()
        self.reset()

    @classmethod
    def from_config(cls, config: Config, seed: int = None) -> 'TrackEnvironment':
        defaults = CarPhysics()
        car = CarPhysics(
            max_speed=config.get('environment.car.max_speed', defaults.max_speed),
            acceleration=config.get('environment.car.acceleration', defaults.acceleration),
            deceleration=config.get('environment.car.deceleration', defaults.deceleration),
            turn_speed=config.get('environment.car.turn_speed', defaults.turn_speed),
        )
        return cls(
            seed=config.get('agent.seed', 42) if seed is None else seed,
            track_width=config.get('environment.track_width', 20.0),
            track_length=config.get('environment.track_length', 100.0),
            num_obstacles=config.get('environment.num_obstacles', 10),
            max_obstacle_distance=config.get('environment.max_obstacle_distance', 20.0),
            collision_radius=config.get('environment.collision_radius', 1.0),
            collision_penalty=config.get('environment.collision_penalty', 10.0),
            max_steps=config.get('environment.max_steps', 1000),
            car=car,
        )

    def _generate_obstacles(self) -> List[Tuple[float, float]]:
        half_width = self.track_width / 2
        half_length = self.track_length / 2
        xs = self.np_random.uniform(-half_width, half_width, self.num_obstacles)
        # Keep the first few metres clear for the start position
        zs = self.np_random.uniform(-half_length + 5.0, half_length, self.num_obstacles)
        return [(float(x), float(z)) for x, z in zip(xs, zs)]

    def reset(self) -> Observation:
        self.obstacles = self._generate_obstacles()
        self.car = CarPhysics(**vars(self.car_template))
        self.car.speed = 0.0
        self.x = 0.0
        self.z = -self.track_length / 2 + 1.0
        self.heading = 0.0
        self.current_step = 0
        self.score = 0.0
        self.collisions = 0
        self._last_collisions = 0
        return self.get_observation()

    def obstacle_distances(self) -> Tuple[float, ...]:
        return tuple(
            min(math.hypot(self.x - ox, self.z - oz), self.max_obstacle_distance)
            for ox, oz in self.obstacles
        )

    def get_observation(self) -> Observation:
        return Observation(
            position=(self.x, self.z),
            velocity=self.car.speed,
            obstacle_distances=self.obstacle_distances(),
            track_position=self.z,
        )

    def apply_action(self, action: int):
        car = self.car
        if action == ACCELERATE:
            car.speed = min(car.speed + car.acceleration, car.max_speed)
        elif action == BRAKE:
            car.speed = max(car.speed - car.deceleration, 0.0)
        elif action == STEER_LEFT:
            self.heading += car.turn_speed
        elif action == STEER_RIGHT:
            self.heading -= car.turn_speed
        else:
            raise ValueError(f"Unknown action {action}")

        self.x += math.sin(self.heading) * car.speed
        self.z += math.cos(self.heading) * car.speed
        self.current_step += 1

        hits = sum(
            1 for ox, oz in self.obstacles
            if math.hypot(self.x - ox, self.z - oz) < self.collision_radius
        )
        if hits:
            car.speed *= 0.5
            self.score -= self.collision_penalty * hits
        self.collisions += hits
        self._last_collisions = hits

    def compute_reward(self) -> float:
        return self.car.speed - self.collision_penalty * self._last_collisions

    def off_track(self) -> bool:
        return (abs(self.x) > self.track_width / 2
                or not -self.track_length / 2 <= self.z <= self.track_length / 2)

    def is_done(self) -> bool:
        return self.off_track() or self.current_step >= self.max_steps

    @property
    def state_dim(self) -> int:
        return state_dim_for(self.num_obstacles)

    @property
    def action_dim(self) -> int:
        return 4
