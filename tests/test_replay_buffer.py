"""
Tests for replay buffer eviction order and sampling.
"""
import numpy as np
import pytest

from autopilot.errors import InsufficientData
from autopilot.replay import Experience, ReplayBuffer


def make_experience(tag):
    state = np.array([tag], dtype=np.float32)
    return Experience(state=state, action=0, reward=float(tag), next_state=state)


def rewards(buffer):
    return [exp.reward for exp in buffer]


class TestEviction:
    """Test FIFO eviction once capacity is reached."""

    def test_buffer_fills_incrementally(self):
        """Test that size grows by one per add until capacity."""
        buffer = ReplayBuffer(capacity=5)
        for i in range(5):
            buffer.add(make_experience(i))
            assert len(buffer) == i + 1

    def test_capacity_three_scenario(self):
        """A, B, C, D leaves [B, C, D]; adding E leaves [C, D, E]."""
        buffer = ReplayBuffer(capacity=3)
        for tag in range(4):
            buffer.add(make_experience(tag))
        assert rewards(buffer) == [1.0, 2.0, 3.0]

        buffer.add(make_experience(4))
        assert rewards(buffer) == [2.0, 3.0, 4.0]

    def test_overflow_keeps_most_recent(self):
        """Test that only the last C items survive many inserts."""
        capacity = 50
        buffer = ReplayBuffer(capacity=capacity)
        for i in range(capacity + 137):
            buffer.add(make_experience(i))
            assert buffer.size() <= capacity

        assert buffer.size() == capacity
        assert rewards(buffer) == [float(i) for i in range(137, capacity + 137)]

    def test_sampling_does_not_reorder(self):
        """Test that sampling leaves insertion order intact for eviction."""
        buffer = ReplayBuffer(capacity=4, seed=1)
        for i in range(4):
            buffer.add(make_experience(i))
        for _ in range(10):
            buffer.sample_batch(3)
        buffer.add(make_experience(4))
        assert rewards(buffer) == [1.0, 2.0, 3.0, 4.0]

    def test_clear(self):
        buffer = ReplayBuffer(capacity=4)
        buffer.add(make_experience(0))
        buffer.clear()
        assert len(buffer) == 0

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            ReplayBuffer(capacity=0)


class TestSampling:
    """Test uniform batch sampling."""

    def test_sample_returns_exact_batch_from_contents(self):
        """Test that a batch has n distinct items, all currently stored."""
        buffer = ReplayBuffer(capacity=20, seed=3)
        for i in range(30):
            buffer.add(make_experience(i))

        stored = set(rewards(buffer))
        for n in (1, 5, 20):
            batch = buffer.sample_batch(n)
            assert len(batch) == n
            assert len({exp.reward for exp in batch}) == n
            assert {exp.reward for exp in batch} <= stored

    def test_sample_too_large_raises(self):
        """Test that sampling more than stored is rejected."""
        buffer = ReplayBuffer(capacity=10)
        buffer.add(make_experience(0))
        with pytest.raises(InsufficientData):
            buffer.sample_batch(2)

    def test_sampling_covers_whole_buffer(self):
        """Test that old and recent entries are both drawn."""
        buffer = ReplayBuffer(capacity=10, seed=7)
        for i in range(10):
            buffer.add(make_experience(i))

        counts = np.zeros(10)
        for _ in range(2000):
            for exp in buffer.sample_batch(2):
                counts[int(exp.reward)] += 1

        # Expected 400 draws per slot
        assert counts.min() > 300
        assert counts.max() < 500

    def test_export_is_a_copy(self):
        buffer = ReplayBuffer(capacity=3)
        buffer.add(make_experience(0))
        exported = buffer.export()
        exported.clear()
        assert len(buffer) == 1
