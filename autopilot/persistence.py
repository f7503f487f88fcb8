import os
import json
import pickle
import logging
import time
from typing import Dict, Any, List

from autopilot.errors import PersistenceFailure

logger = logging.getLogger(__name__)


class PersistenceManager:
    def __init__(self, model_dir="models"):
        self.model_dir = model_dir
        self.registry_path = os.path.join(model_dir, "registry.json")
        os.makedirs(model_dir, exist_ok=True)
        self._ensure_registry()

    def _ensure_registry(self):
        if not os.path.exists(self.registry_path):
            with open(self.registry_path, 'w') as f:
                json.dump({}, f)

    def _load_registry(self) -> Dict[str, Any]:
        if not os.path.exists(self.registry_path):
            return {}
        with open(self.registry_path, 'r') as f:
            try:
                return json.load(f)
            except json.JSONDecodeError:
                logger.warning("Registry %s is corrupt, treating it as empty", self.registry_path)
                return {}

    def _save_registry(self, registry: Dict[str, Any]):
        with open(self.registry_path, 'w') as f:
            json.dump(registry, f, indent=4)

    def slot_path(self, slot: str) -> str:
        if not slot or os.sep in slot or slot.startswith('.'):
            raise PersistenceFailure(f"Invalid model slot name: {slot!r}")
        return os.path.join(self.model_dir, f"{slot}.pkl")

    def save_model(self, slot: str, payload: Dict[str, Any], metadata: Dict[str, Any]) -> str:
        """Write ``payload`` to the slot file and record ``metadata`` in the registry."""
        filepath = self.slot_path(slot)
        timestamp = int(time.time())
        try:
            # Write then rename so a failed dump never clobbers the previous slot
            tmp_path = filepath + '.tmp'
            with open(tmp_path, 'wb') as f:
                pickle.dump(payload, f)
            os.replace(tmp_path, filepath)

            registry = self._load_registry()
            registry[slot] = {
                'slot': slot,
                'filename': os.path.basename(filepath),
                'timestamp': timestamp,
                'created_at': time.ctime(timestamp),
                'architecture': payload.get('architecture', {}),
                **metadata,
            }
            self._save_registry(registry)
        except (OSError, pickle.PicklingError, TypeError) as e:
            raise PersistenceFailure(f"Could not save slot '{slot}': {e}") from e

        return filepath

    def load_model(self, slot: str) -> Dict[str, Any]:
        filepath = self.slot_path(slot)
        if not os.path.exists(filepath):
            raise PersistenceFailure(f"No saved model in slot '{slot}'")
        try:
            with open(filepath, 'rb') as f:
                payload = pickle.load(f)
        except (OSError, pickle.UnpicklingError, EOFError, AttributeError, ImportError) as e:
            raise PersistenceFailure(f"Could not read slot '{slot}': {e}") from e
        if not isinstance(payload, dict):
            raise PersistenceFailure(f"Slot '{slot}' does not hold a model payload")
        return payload

    def has_model(self, slot: str) -> bool:
        return os.path.exists(self.slot_path(slot))

    def get_metadata(self, slot: str) -> Dict[str, Any]:
        return self._load_registry().get(slot, {})

    def list_models(self) -> List[Dict[str, Any]]:
        registry = self._load_registry()
        # Files saved without a registry entry still show up with basic info
        files = [f for f in os.listdir(self.model_dir) if f.endswith('.pkl')]
        models = []
        for f in files:
            slot = f[:-len('.pkl')]
            if slot in registry:
                models.append(registry[slot])
            else:
                filepath = os.path.join(self.model_dir, f)
                timestamp = os.path.getmtime(filepath)
                models.append({
                    'slot': slot,
                    'filename': f,
                    'timestamp': timestamp,
                    'created_at': time.ctime(timestamp),
                })

        models.sort(key=lambda x: x['timestamp'], reverse=True)
        return models
