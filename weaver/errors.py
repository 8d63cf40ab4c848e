"""Error taxonomy for the story weaving pipeline."""


class ValidationError(ValueError):
    """Story input rejected before any pipeline stage runs."""


class ConfigError(ValueError):
    """Configuration or lookup table is invalid."""


class DegenerateInputWarning(UserWarning):
    """Input too thin for a full result; the pipeline continues best-effort."""

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage
        self.message = message

    def to_dict(self):
        return {"stage": self.stage, "message": self.message}


class ExternalCallFailure(RuntimeError):
    """Text generation service failed or timed out after its retry."""


class GraphInvariantError(RuntimeError):
    """Assembled story graph breaks a structural invariant."""
