"""
Tests for the policy agent: action selection, training steps, exploration decay.
"""
import asyncio

import numpy as np
import pytest

from autopilot.config import LearningConfig
from autopilot.errors import PersistenceFailure


class TestActionSelection:
    """Test epsilon-greedy action selection."""

    def test_greedy_matches_argmax(self, make_agent):
        """Test that epsilon 0 always picks argmax of the Q-values."""
        agent = make_agent(learning_config=LearningConfig(exploration_rate=0.0))
        rng = np.random.RandomState(2)
        for _ in range(50):
            state = rng.randn(agent.state_dim).astype(np.float32)
            expected = int(np.argmax(agent.q_network.predict(state)))
            assert agent.select_action(state) == expected
            assert agent.select_action(state) == expected

    def test_ties_resolve_to_first_index(self, make_agent, monkeypatch):
        agent = make_agent(learning_config=LearningConfig(exploration_rate=0.0))
        monkeypatch.setattr(agent.q_network, 'predict', lambda state: np.array([0.0, 3.0, 3.0, 1.0]))
        assert agent.select_action(np.zeros(agent.state_dim)) == 1

    def test_full_exploration_is_uniform(self, make_agent):
        """Chi-square test of 10,000 exploratory actions against uniform."""
        agent = make_agent(learning_config=LearningConfig(exploration_rate=1.0))
        state = np.zeros(agent.state_dim, dtype=np.float32)
        trials = 10000

        counts = np.bincount([agent.select_action(state) for _ in range(trials)],
                             minlength=agent.action_dim)
        expected = trials / agent.action_dim
        chi_square = float(((counts - expected) ** 2 / expected).sum())

        # Critical value for 3 degrees of freedom at p = 0.001
        assert chi_square < 16.27

    def test_every_action_is_published(self, make_agent):
        """Test that exploratory and greedy picks both reach the action feed."""
        agent = make_agent(learning_config=LearningConfig(exploration_rate=0.5))
        seen = []
        agent.reporter.action_feed.subscribe(seen.append)

        state = np.zeros(agent.state_dim, dtype=np.float32)
        chosen = [agent.select_action(state) for _ in range(20)]
        assert seen == chosen


class TestTrainStep:
    """Test batched Q-learning updates."""

    def test_no_result_below_batch_size(self, make_agent, fill):
        """Test that training is skipped while the buffer fills."""
        agent = make_agent(batch_size=8)
        fill(agent, 7)
        assert asyncio.run(agent.train_step()) is None
        assert len(agent.reporter) == 0

    def test_returns_metrics_at_batch_size(self, make_agent, fill):
        agent = make_agent(batch_size=8)
        fill(agent, 8)
        metrics = asyncio.run(agent.train_step())

        assert metrics is not None
        assert metrics.episode_number == 1
        assert abs(sum(metrics.action_distribution) - 1.0) < 1e-6
        assert np.isfinite(metrics.loss)
        assert agent.reporter.history == [metrics]

    def test_two_transition_scenario(self, make_agent):
        """Rewards [1, -1] with actions [0, 1] give an even split and zero reward."""
        agent = make_agent(action_dim=2, batch_size=2)
        state = np.zeros(agent.state_dim, dtype=np.float32)
        agent.add_experience(state, 0, 1.0, state)
        agent.add_experience(state, 1, -1.0, state)

        metrics = asyncio.run(agent.train_step())
        assert metrics.action_distribution == pytest.approx((0.5, 0.5))
        assert metrics.total_reward == 0.0
        assert metrics.average_reward == 0.0

    def test_metrics_record_current_exploration_rate(self, make_agent, fill):
        agent = make_agent(learning_config=LearningConfig(exploration_rate=0.3))
        fill(agent, 8)
        metrics = asyncio.run(agent.train_step())
        assert metrics.exploration_rate == 0.3

    def test_targets_only_touch_taken_action(self, make_agent):
        """Test that non-acted components keep their predicted values."""
        agent = make_agent(batch_size=2)
        state = np.ones(agent.state_dim, dtype=np.float32)
        agent.add_experience(state, 2, 5.0, state)
        agent.add_experience(state, 0, -1.0, state, done=True)
        batch = agent.replay_buffer.export()

        predicted = agent.q_network.predict(np.stack([exp.state for exp in batch]))
        max_next = agent.q_network.predict(state).max()
        targets = agent.compute_targets(batch)

        gamma = agent.config.discount_factor
        assert targets[0, 2] == pytest.approx(5.0 + gamma * max_next, rel=1e-5)
        assert targets[1, 0] == pytest.approx(-1.0)
        np.testing.assert_allclose(targets[0, [0, 1, 3]], predicted[0, [0, 1, 3]], rtol=1e-6)
        np.testing.assert_allclose(targets[1, 1:], predicted[1, 1:], rtol=1e-6)

    def test_episode_numbers_follow_completion_order(self, make_agent, fill):
        """Test that concurrent calls are serialized and numbered in order."""
        agent = make_agent(batch_size=4)
        fill(agent, 16)

        async def run_concurrently():
            return await asyncio.gather(*(agent.train_step() for _ in range(4)))

        results = asyncio.run(run_concurrently())
        assert [m.episode_number for m in results] == [1, 2, 3, 4]
        assert [m.episode_number for m in agent.reporter.history] == [1, 2, 3, 4]

    def test_fit_failure_reports_no_result(self, make_agent, fill, monkeypatch):
        """Test that a failing fit is logged and reported as None."""
        agent = make_agent()
        fill(agent, 8)

        def broken_fit(states, targets, epochs=1):
            raise ValueError('shape mismatch')

        monkeypatch.setattr(agent.q_network, 'fit', broken_fit)
        assert asyncio.run(agent.train_step()) is None
        assert len(agent.reporter) == 0
        assert any('Training failed' in line for line in agent.reporter.log_feed.backlog())


class TestExplorationDecay:
    """Test exploration rate decay scheduling."""

    def test_single_decay(self, make_agent):
        agent = make_agent(learning_config=LearningConfig(
            exploration_rate=0.5, exploration_decay=0.99, exploration_min=0.01))
        agent.decay_exploration()
        assert agent.exploration_rate == pytest.approx(0.495)

    def test_decay_never_below_floor(self, make_agent):
        """Test that the rate decreases monotonically and stops at the floor."""
        agent = make_agent(learning_config=LearningConfig(
            exploration_rate=0.5, exploration_decay=0.99, exploration_min=0.01))
        rates = [agent.exploration_rate]
        for _ in range(1000):
            agent.decay_exploration()
            rates.append(agent.exploration_rate)

        assert all(a >= b for a, b in zip(rates, rates[1:]))
        assert min(rates) >= 0.01
        assert rates[-1] == 0.01

    def test_train_step_does_not_decay(self, make_agent, fill):
        agent = make_agent()
        fill(agent, 8)
        asyncio.run(agent.train_step())
        assert agent.exploration_rate == LearningConfig().exploration_rate


class TestResetAndConfig:
    """Test reset and config updates."""

    def test_reset_discards_everything(self, make_agent, fill):
        agent = make_agent(learning_config=LearningConfig(exploration_rate=0.4))
        probe = np.ones(agent.state_dim, dtype=np.float32)
        fill(agent, 8)
        asyncio.run(agent.train_step())
        agent.decay_exploration()
        before = agent.q_network.predict(probe)

        agent.reset()

        assert len(agent.replay_buffer) == 0
        assert len(agent.reporter) == 0
        assert agent.exploration_rate == 0.4
        assert not np.allclose(before, agent.q_network.predict(probe))

    def test_learning_rate_change_rebuilds_optimizer(self, make_agent):
        agent = make_agent()
        probe = np.ones(agent.state_dim, dtype=np.float32)
        before = agent.q_network.predict(probe)
        optimizer = agent.q_network.optimizer

        agent.update_config(learning_rate=0.05)

        assert agent.get_config().learning_rate == 0.05
        assert agent.q_network.learning_rate == 0.05
        assert agent.q_network.optimizer is not optimizer
        np.testing.assert_array_equal(before, agent.q_network.predict(probe))

    def test_other_fields_keep_optimizer(self, make_agent):
        agent = make_agent()
        optimizer = agent.q_network.optimizer
        agent.update_config(discount_factor=0.5)
        assert agent.get_config().discount_factor == 0.5
        assert agent.q_network.optimizer is optimizer

    def test_unknown_field_rejected(self, make_agent):
        agent = make_agent()
        with pytest.raises(ValueError):
            agent.update_config(momentum=0.9)


class TestModelPersistence:
    """Test save/load commands on the agent."""

    def test_save_then_load_preserves_predictions(self, make_agent, fill):
        agent = make_agent()
        fill(agent, 8)
        asyncio.run(agent.train_step())
        probe = np.linspace(0, 1, agent.state_dim).astype(np.float32)
        expected = agent.q_network.predict(probe)

        assert asyncio.run(agent.save_model('slot-a'))
        agent.q_network.reinitialize()
        assert asyncio.run(agent.load_model('slot-a'))
        np.testing.assert_allclose(agent.q_network.predict(probe), expected, rtol=1e-6, atol=1e-6)

    def test_failed_load_falls_back_to_fresh_weights(self, make_agent):
        """Test that a missing slot leaves a freshly initialized network."""
        agent = make_agent()
        probe = np.ones(agent.state_dim, dtype=np.float32)
        before = agent.q_network.predict(probe)

        assert asyncio.run(agent.load_model('missing')) is False
        assert not np.allclose(before, agent.q_network.predict(probe))
        assert any('Error loading model' in line for line in agent.reporter.log_feed.backlog())

    def test_save_failure_is_logged(self, make_agent, monkeypatch):
        agent = make_agent()

        def failing_save(slot, payload, metadata):
            raise PersistenceFailure('disk full')

        monkeypatch.setattr(agent.store, 'save_model', failing_save)
        assert asyncio.run(agent.save_model()) is False
        assert any('Model save failed' in line for line in agent.reporter.log_feed.backlog())

    def test_malformed_slot_falls_back(self, make_agent):
        """Test that a slot holding a non-model payload does not escape load_model."""
        agent = make_agent()
        agent.store.save_model('bad', {'architecture': 'garbage', 'params': {}}, {})

        assert asyncio.run(agent.load_model('bad')) is False
        assert any('Error loading model' in line for line in agent.reporter.log_feed.backlog())

    def test_non_numeric_weights_fall_back(self, make_agent):
        agent = make_agent()
        network = agent.q_network
        params = {
            module: {name: np.full(np.shape(value), 'x') for name, value in leaves.items()}
            for module, leaves in network.get_weights().items()
        }
        agent.store.save_model('strings', {'architecture': network.architecture(), 'params': params}, {})

        assert asyncio.run(agent.load_model('strings')) is False
        assert np.all(np.isfinite(agent.q_network.predict(np.ones(agent.state_dim))))
