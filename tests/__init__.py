"""
Test suite for the autopilot Q-learning core.

This package contains tests for:
- Replay buffer eviction and sampling
- Q-network prediction, fitting and persistence
- Agent action selection, training steps and exploration decay
- Orchestrator early stopping, cancellation and rollouts
- Metrics feeds, report generation and the JSON dashboard
"""
