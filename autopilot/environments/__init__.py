"""Simulated driving environments for the autopilot."""

from .base_env import BaseDrivingEnvironment
from .track_env import TrackEnvironment, CarPhysics

__all__ = ['BaseDrivingEnvironment', 'TrackEnvironment', 'CarPhysics']
