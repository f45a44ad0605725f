"""
Configuration classes and enums for the hierarchical SOM
"""

import math
from enum import Enum
from dataclasses import dataclass, asdict
from typing import Optional, Tuple, Dict, Sequence

import numpy as np

from .exceptions import ConfigurationError


OPERATIONAL_FEATURES = (
    "passenger_frequency",
    "punctuality",
    "weather_conditions",
    "system_load",
    "maintenance_status",
    "interactions",
    "time_dependencies",
    "network_effects",
    "cascade_risk",
)

DEFAULT_LEVEL_FEATURES = (
    OPERATIONAL_FEATURES[:5],
    OPERATIONAL_FEATURES[:7],
    OPERATIONAL_FEATURES[:9],
)

DEFAULT_CLUSTER_NAMES = (
    "Normal",
    "Anomaly",
    "Maintenance",
    "RushHour",
    "Emergency",
    "Complex",
)


class AbstractionLevel(Enum):
    """Human-readable name of a layer's position in the hierarchy"""

    DETAILED = "Detailed"
    ABSTRACTED = "Abstracted"
    CONCEPTUAL = "Conceptual"
    META = "Meta"
    STRATEGIC = "Strategic"
    ULTRA_META = "Ultra-Meta"

    @classmethod
    def for_level(cls, level: int) -> "AbstractionLevel":
        members = list(cls)
        return members[min(level, len(members) - 1)]


class RunStatus(Enum):
    """Overall status of the most recent training run"""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class FeatureProjection:
    """
    Per-level projection of a sample vector onto the features a layer sees.

    Each level declares the feature names it uses; a sample vector is laid
    out as ``input_features``. Levels beyond the declared ones reuse the
    last declaration. Positions missing from a short sample read as 0.
    """

    def __init__(
        self,
        input_features: Sequence[str],
        level_features: Sequence[Sequence[str]],
    ):
        self.input_features = tuple(input_features)
        self.level_features = tuple(tuple(names) for names in level_features)
        position = {name: i for i, name in enumerate(self.input_features)}
        self._indices = [
            np.array([position[name] for name in names], dtype=np.intp)
            for names in self.level_features
        ]

    def _declaration(self, level: int) -> int:
        return min(level, len(self.level_features) - 1)

    def feature_names(self, level: int) -> Tuple[str, ...]:
        return self.level_features[self._declaration(level)]

    def feature_count(self, level: int) -> int:
        return len(self.level_features[self._declaration(level)])

    def project(self, features: np.ndarray, level: int) -> np.ndarray:
        indices = self._indices[self._declaration(level)]
        projected = np.zeros(len(indices), dtype=np.float64)
        available = indices < len(features)
        projected[available] = features[indices[available]]
        return projected


@dataclass
class HSOMConfig:
    """Centralized configuration management for hierarchical SOM parameters"""

    # Hierarchy shape
    layers: int = 5
    width: int = 16
    height: int = 16
    hierarchy_factor: float = 0.65
    min_dimension: int = 4

    # Training schedule
    learning_rate: float = 0.4
    neighborhood_radius: float = 8.0
    max_iterations: int = 2000
    decay_rate: float = 0.98
    layer_decay_base: float = 0.8  # attenuates updates at coarser levels

    # Hierarchical refinement
    refinement_threshold: float = 0.25
    refinement_interval: int = 50
    refinement_step: float = 0.1
    refinement_blend: float = 0.1

    # Progress reporting / cooperative yielding
    progress_interval: int = 20

    # Feature projection: input_features defaults to the union of level_features
    level_features: Tuple[Tuple[str, ...], ...] = DEFAULT_LEVEL_FEATURES
    input_features: Optional[Tuple[str, ...]] = None

    # Clustering
    cluster_names: Tuple[str, ...] = DEFAULT_CLUSTER_NAMES

    # Persistence
    checkpoint_interval: Optional[int] = None
    checkpoint_dir: str = "checkpoints"

    # Reproducibility
    seed: Optional[int] = None

    def __post_init__(self):
        """Normalize sequences and reject invalid settings"""
        self.level_features = tuple(tuple(names) for names in self.level_features)
        self.cluster_names = tuple(self.cluster_names)
        if self.input_features is None:
            ordered = []
            for names in self.level_features:
                for name in names:
                    if name not in ordered:
                        ordered.append(name)
            self.input_features = tuple(ordered)
        else:
            self.input_features = tuple(self.input_features)

        self._validate()
        self._projection = FeatureProjection(self.input_features, self.level_features)

    def _validate(self):
        if self.layers < 2:
            raise ConfigurationError(f"layers must be >= 2, got {self.layers}")
        if self.width <= 0 or self.height <= 0:
            raise ConfigurationError(
                f"Base dimensions must be positive, got {self.width}x{self.height}"
            )
        if self.min_dimension < 1:
            raise ConfigurationError(
                f"min_dimension must be >= 1, got {self.min_dimension}"
            )
        if not self.learning_rate > 0:
            raise ConfigurationError(
                f"learning_rate must be > 0, got {self.learning_rate}"
            )
        if not self.neighborhood_radius > 0:
            raise ConfigurationError(
                f"neighborhood_radius must be > 0, got {self.neighborhood_radius}"
            )
        if self.max_iterations <= 0:
            raise ConfigurationError(
                f"max_iterations must be > 0, got {self.max_iterations}"
            )
        for name in ("decay_rate", "hierarchy_factor"):
            value = getattr(self, name)
            if not 0 < value < 1:
                raise ConfigurationError(f"{name} must be in (0, 1), got {value}")
        if not 0 < self.layer_decay_base <= 1:
            raise ConfigurationError(
                f"layer_decay_base must be in (0, 1], got {self.layer_decay_base}"
            )
        # Thresholds >= 1 are unreachable and simply disable refinement
        if not math.isfinite(self.refinement_threshold) or self.refinement_threshold < 0:
            raise ConfigurationError(
                f"refinement_threshold must be a finite value >= 0, "
                f"got {self.refinement_threshold}"
            )
        for name in ("refinement_step", "refinement_blend"):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise ConfigurationError(f"{name} must be in [0, 1], got {value}")
        for name in ("refinement_interval", "progress_interval"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0")
        if self.checkpoint_interval is not None and self.checkpoint_interval <= 0:
            raise ConfigurationError("checkpoint_interval must be > 0 when set")
        if not self.cluster_names:
            raise ConfigurationError("At least one cluster name is required")
        if not self.level_features or any(not names for names in self.level_features):
            raise ConfigurationError("Every level feature declaration must be non-empty")
        unknown = {
            name
            for names in self.level_features
            for name in names
            if name not in self.input_features
        }
        if unknown:
            raise ConfigurationError(
                f"level_features reference unknown input features: {sorted(unknown)}"
            )

    @property
    def projection(self) -> FeatureProjection:
        return self._projection

    @property
    def refinement_enabled(self) -> bool:
        return self.refinement_threshold < 1

    def to_dict(self) -> Dict:
        """Convert config to dictionary for serialization"""
        config_dict = asdict(self)
        for key, value in config_dict.items():
            if isinstance(value, tuple):
                config_dict[key] = [
                    list(item) if isinstance(item, tuple) else item for item in value
                ]
        return config_dict

    @classmethod
    def from_dict(cls, config_dict: Dict) -> "HSOMConfig":
        """Create config from dictionary"""
        config_dict = dict(config_dict)
        # Accept the nested {"width", "height"} form used by the original dashboard
        base = config_dict.pop("base_dimensions", None)
        if base is not None:
            config_dict.setdefault("width", base["width"])
            config_dict.setdefault("height", base["height"])
        return cls(**config_dict)
