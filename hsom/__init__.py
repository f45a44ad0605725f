"""
Hierarchical Self-Organizing Map (HSOM) Package

Organizes operational feature vectors into a pyramid of increasingly
abstract, spatially ordered maps with parent/child linkage and bottom-up
refinement between layers.
"""

from .core import HSOM
from .config import (
    HSOMConfig,
    FeatureProjection,
    AbstractionLevel,
    RunStatus,
)
from .exceptions import (
    HSOMError,
    ConfigurationError,
    EmptyTrainingSetError,
    MissingParentLink,
)
from .structures import TrainingSample, Node, Layer, LayerStats, TrainingStats
from .training import TrainingProgress, TrainingTask
from .callbacks import Callback, CheckpointCallback, ProgressCallback
from .observability import (
    setup_logging,
    trace_operation,
    get_metrics,
    write_metrics,
)

__version__ = "0.1.0"

__all__ = [
    "HSOM",
    "HSOMConfig",
    "FeatureProjection",
    "AbstractionLevel",
    "RunStatus",
    "HSOMError",
    "ConfigurationError",
    "EmptyTrainingSetError",
    "MissingParentLink",
    "TrainingSample",
    "Node",
    "Layer",
    "LayerStats",
    "TrainingStats",
    "TrainingProgress",
    "TrainingTask",
    "Callback",
    "CheckpointCallback",
    "ProgressCallback",
    "setup_logging",
    "trace_operation",
    "get_metrics",
    "write_metrics",
]
