"""Feed-forward Q-function approximator built with haiku and optax."""

from typing import Any, Dict, Optional, Sequence

import numpy as np
import jax
import jax.numpy as jnp
from jax import random
import haiku as hk
import optax

from autopilot.errors import ConfigurationMismatch, PersistenceFailure


class QNetwork:
    """MLP mapping a state vector to one Q-value per action.

    ``fit`` is the only method that mutates the weights; the new parameters
    replace the old ones in a single assignment once all epochs finish.
    """

    loss_name = 'mse'

    def __init__(self,
                 state_dim: int,
                 action_dim: int,
                 hidden_layers: Sequence[int] = (64, 32),
                 learning_rate: float = 1e-3,
                 seed: int = 42):
        """Initialize Q-network.

        Args:
            state_dim: Input width (state vector length)
            action_dim: Number of discrete actions
            hidden_layers: Units per ReLU hidden layer
            learning_rate: Adam learning rate
            seed: PRNG seed for weight initialization
        """
        self.state_dim = state_dim
        self.action_dim = action_dim
        self.hidden_layers = tuple(int(h) for h in hidden_layers)
        self.key = random.PRNGKey(seed)

        def q_network(state):
            layers = []
            for hidden_size in self.hidden_layers:
                layers.extend([hk.Linear(hidden_size), jax.nn.relu])
            layers.append(hk.Linear(action_dim))
            return hk.Sequential(layers)(state)

        self.q_net = hk.transform(q_network)
        self.reinitialize()
        self.compile(learning_rate)

    def reinitialize(self):
        """Draw fresh weights, discarding everything learned."""
        dummy_state = jnp.zeros((1, self.state_dim))
        self.key, subkey = random.split(self.key)
        self.q_params = self.q_net.init(subkey, dummy_state)
        if hasattr(self, 'optimizer'):
            self.opt_state = self.optimizer.init(self.q_params)

    def compile(self, learning_rate: float):
        """(Re)build the Adam optimizer. Weights are kept, optimizer state is reset."""
        self.learning_rate = float(learning_rate)
        self.optimizer = optax.adam(learning_rate=self.learning_rate)
        self.opt_state = self.optimizer.init(self.q_params)

    def _as_batch(self, states) -> np.ndarray:
        batch = np.asarray(states, dtype=np.float32)
        if batch.ndim == 1:
            batch = batch[None, :]
        if batch.ndim != 2 or batch.shape[1] != self.state_dim:
            raise ConfigurationMismatch(
                f"Expected states of width {self.state_dim}, got shape {np.shape(states)}"
            )
        return batch

    def predict(self, states) -> np.ndarray:
        """Q-values for one state ``(state_dim,)`` or a batch ``(n, state_dim)``."""
        single = np.ndim(states) == 1
        batch = self._as_batch(states)
        q_values = np.asarray(self.q_net.apply(self.q_params, None, jnp.asarray(batch)))
        return q_values[0] if single else q_values

    def fit(self, states, targets, epochs: int = 1) -> float:
        """Minimize MSE between predicted and target Q-values.

        Returns:
            Loss of the last epoch, measured before its update
        """
        if epochs < 1:
            raise ValueError(f"epochs must be at least 1, got {epochs}")
        states = jnp.asarray(self._as_batch(states))
        targets = jnp.asarray(np.asarray(targets, dtype=np.float32))
        if targets.shape != (states.shape[0], self.action_dim):
            raise ValueError(
                f"Targets shape {targets.shape} does not match {(states.shape[0], self.action_dim)}"
            )

        optimizer = self.optimizer
        params, opt_state = self.q_params, self.opt_state

        def loss_fn(p):
            q_values = self.q_net.apply(p, None, states)
            return jnp.mean((q_values - targets) ** 2)

        loss = None
        for _ in range(epochs):
            loss, grads = jax.value_and_grad(loss_fn)(params)
            if not np.isfinite(float(loss)):
                raise FloatingPointError(f"Non-finite training loss: {float(loss)}")
            updates, opt_state = optimizer.update(grads, opt_state, params)
            params = optax.apply_updates(params, updates)

        self.q_params, self.opt_state = params, opt_state
        return float(loss)

    def architecture(self) -> Dict[str, Any]:
        return {
            'state_dim': self.state_dim,
            'action_dim': self.action_dim,
            'hidden_layers': list(self.hidden_layers),
            'loss': self.loss_name,
            'learning_rate': self.learning_rate,
        }

    def get_weights(self) -> Dict[str, Dict[str, np.ndarray]]:
        """Weights as a nested dict of numpy arrays (picklable)."""
        return jax.tree_util.tree_map(np.asarray, hk.data_structures.to_mutable_dict(self.q_params))

    def set_weights(self, weights: Dict[str, Dict[str, np.ndarray]]):
        """Replace weights; structure and shapes must match the current network."""
        current = self.get_weights()
        if jax.tree_util.tree_structure(current) != jax.tree_util.tree_structure(weights):
            raise ValueError("Weight structure does not match the network layout")
        for old, new in zip(jax.tree_util.tree_leaves(current), jax.tree_util.tree_leaves(weights)):
            if np.shape(old) != np.shape(new):
                raise ValueError(f"Weight shape {np.shape(new)} does not match {np.shape(old)}")
            if np.asarray(new).dtype.kind not in 'fiu':
                raise ValueError(f"Weight dtype {np.asarray(new).dtype} is not numeric")
        self.q_params = jax.tree_util.tree_map(jnp.asarray, weights)

    def save(self, store, slot: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        """Write weights and architecture to a named slot of ``store``."""
        payload = {'params': self.get_weights(), 'architecture': self.architecture()}
        return store.save_model(slot, payload, metadata or {})

    def load(self, store, slot: str):
        """Restore weights from ``slot`` and re-attach the optimizer.

        Raises:
            PersistenceFailure: if the slot is missing, unreadable or was saved
                from a different architecture
        """
        payload = store.load_model(slot)
        architecture = payload.get('architecture', {})
        if not isinstance(architecture, dict) or not isinstance(payload.get('params'), dict):
            raise PersistenceFailure(f"Slot '{slot}' does not hold network weights and architecture")
        expected = self.architecture()
        for key in ('state_dim', 'action_dim', 'hidden_layers'):
            if architecture.get(key) != expected[key]:
                raise PersistenceFailure(
                    f"Slot '{slot}' has {key}={architecture.get(key)}, network has {expected[key]}"
                )
        try:
            self.set_weights(payload['params'])
        except (KeyError, ValueError, TypeError) as e:
            raise PersistenceFailure(f"Slot '{slot}' holds unusable weights: {e}") from e
        self.compile(self.learning_rate)
