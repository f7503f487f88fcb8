"""Shared fixtures for the autopilot tests."""
import os
os.environ["XLA_PYTHON_CLIENT_PREALLOCATE"] = "false"
os.environ['JAX_DISABLE_JIT'] = '1'

import numpy as np
import pytest

from autopilot.agents import PolicyAgent
from autopilot.config import LearningConfig
from autopilot.persistence import PersistenceManager


STATE_DIM = 6


def fill_buffer(agent, count, reward=1.0, action=0, done=False):
    """Add ``count`` transitions with the given reward and action."""
    for i in range(count):
        state = np.full(agent.state_dim, i / max(count, 1), dtype=np.float32)
        next_state = np.full(agent.state_dim, (i + 1) / max(count, 1), dtype=np.float32)
        agent.add_experience(state, action, reward, next_state, done)


@pytest.fixture
def store(tmp_path):
    return PersistenceManager(str(tmp_path / 'models'))


@pytest.fixture
def make_agent(store):
    """Factory for small agents backed by a temporary model store."""
    def _make(**kwargs):
        params = {
            'state_dim': STATE_DIM,
            'action_dim': 4,
            'learning_config': LearningConfig(),
            'batch_size': 8,
            'buffer_size': 100,
            'hidden_layers': (16, 8),
            'store': store,
            'seed': 0,
        }
        params.update(kwargs)
        return PolicyAgent(**params)
    return _make


@pytest.fixture
def fill():
    return fill_buffer
