"""Story weaving package: data model, lookup tables and the pipeline runner."""

from .errors import (
    ConfigError,
    DegenerateInputWarning,
    ExternalCallFailure,
    GraphInvariantError,
    ValidationError,
)
from .models import Choice, Chunk, Consequence, DecisionPoint, Scene, StoryGraph

__all__ = [
    "Choice",
    "Chunk",
    "ConfigError",
    "Consequence",
    "DecisionPoint",
    "DegenerateInputWarning",
    "ExternalCallFailure",
    "GraphInvariantError",
    "Scene",
    "StoryGraph",
    "ValidationError",
]
