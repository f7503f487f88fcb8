"""Configuration module for the autopilot RL system."""

import copy
import os
from dataclasses import dataclass, asdict, fields, replace
from typing import Dict, Any, Iterable, Optional

import yaml


DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), '..', 'config', 'default.yaml')


def deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` with ``updates`` merged in; nested sections merge key by key."""
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class Config:
    """Layered settings: ``config/default.yaml``, then a user YAML file, then overrides.

    A user file only needs the keys it changes. Overrides are ``section.key=value``
    strings whose values are parsed as YAML, so ``agent.hidden_layers=[32, 16]``
    and ``learning.learning_rate=0.01`` both work.
    """

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Iterable[str]] = None):
        self._config = {}
        if os.path.exists(DEFAULT_CONFIG_PATH):
            self.load_config(DEFAULT_CONFIG_PATH)
        if config_path:
            self.load_config(config_path)
        if overrides:
            self.apply_overrides(overrides)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Build a configuration from a nested dictionary, without the defaults file."""
        cfg = cls.__new__(cls)
        cfg._config = copy.deepcopy(data)
        return cfg

    @staticmethod
    def _read_yaml(config_path: str) -> Dict[str, Any]:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping, got {type(data).__name__}")
        return data

    def load_config(self, config_path: str):
        """Merge a YAML file over the current settings."""
        self._config = deep_merge(self._config, self._read_yaml(config_path))

    def apply_overrides(self, overrides: Iterable[str]):
        """Apply ``section.key=value`` strings.

        Raises:
            ValueError: on a string without ``=`` or with an empty key
        """
        for override in overrides:
            key_path, sep, raw = override.partition('=')
            if not sep or not key_path.strip():
                raise ValueError(f"Invalid override format: {override}. Expected key=value")
            self.set(key_path.strip(), yaml.safe_load(raw))

    def get(self, key_path: str, default=None):
        """Get a value by dot path (e.g. ``learning.learning_rate``)."""
        node = self._config
        for key in key_path.split('.'):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    def set(self, key_path: str, value: Any):
        """Set a value by dot path, creating missing sections."""
        *parents, leaf = key_path.split('.')
        node = self._config
        for key in parents:
            node = node.setdefault(key, {})
            if not isinstance(node, dict):
                raise ValueError(f"Cannot set {key_path}: '{key}' is not a section")
        node[leaf] = value

    def section(self, name: str) -> Dict[str, Any]:
        """Copy of one top-level section; empty if it is missing."""
        value = self._config.get(name, {})
        return copy.deepcopy(value) if isinstance(value, dict) else {}

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._config)


@dataclass(frozen=True)
class LearningConfig:
    """Hyperparameters owned by a single PolicyAgent."""

    learning_rate: float = 0.001
    discount_factor: float = 0.99
    exploration_rate: float = 0.1
    exploration_decay: float = 0.99
    exploration_min: float = 0.01

    @classmethod
    def from_config(cls, config: Config) -> 'LearningConfig':
        defaults = cls()
        return cls(**{
            f.name: float(config.get(f'learning.{f.name}', getattr(defaults, f.name)))
            for f in fields(cls)
        })

    def merged(self, **partial) -> 'LearningConfig':
        """Return a copy with the given fields replaced.

        Raises:
            ValueError: if a key is not a LearningConfig field
        """
        known = {f.name for f in fields(self)}
        unknown = set(partial) - known
        if unknown:
            raise ValueError(f"Unknown learning config keys: {sorted(unknown)}")
        return replace(self, **{k: float(v) for k, v in partial.items()})

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)
