"""Exception types raised by the autopilot RL core."""


class AutopilotError(Exception):
    """Base class for all autopilot errors."""


class ConfigurationMismatch(AutopilotError):
    """State vector width does not match the Q-network input width.

    Unrecoverable; raised at initialization or on the first bad encode.
    """


class InsufficientData(AutopilotError):
    """Replay buffer holds fewer transitions than the requested batch."""


class PersistenceFailure(AutopilotError):
    """Saving or restoring a model slot failed."""


class TrainingStepFailure(AutopilotError):
    """Numerical or shape error raised inside a training step."""
