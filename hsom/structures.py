"""
Data model: training samples, layers with arena-style node storage, stats
"""

import itertools
import math
import time
from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any, Mapping, Union

import numpy as np

_sample_ids = itertools.count()


@dataclass
class TrainingSample:
    """One labeled feature vector with its complexity tier"""

    features: np.ndarray
    label: str = ""
    complexity: int = 1
    id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        self.features = np.asarray(self.features, dtype=np.float64).ravel()
        self.complexity = int(self.complexity)
        if self.id is None:
            self.id = f"sample-{next(_sample_ids)}"

    def problems(self) -> List[str]:
        """Reasons this sample cannot be used for training (empty if usable)"""
        issues = []
        if self.features.size == 0:
            issues.append("empty feature vector")
        elif not np.all(np.isfinite(self.features)):
            issues.append("non-finite feature values")
        if self.complexity < 1:
            issues.append(f"complexity {self.complexity} < 1")
        return issues

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TrainingSample":
        return cls(
            features=data["features"],
            label=str(data.get("label", "")),
            complexity=data.get("complexity", 1),
            id=data.get("id"),
            timestamp=data.get("timestamp", time.time()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "features": self.features.tolist(),
            "label": self.label,
            "complexity": self.complexity,
            "timestamp": self.timestamp,
        }


SampleLike = Union[TrainingSample, Mapping[str, Any]]


@dataclass
class Node:
    """Read-only view of one node, materialized from its layer's arrays"""

    id: str
    index: int
    x: int
    y: int
    level: int
    weights: List[float]
    activation_count: int
    last_activation: float
    refinement_level: float
    cluster: Optional[str]
    tags: List[str]
    parent: Optional[int]
    children: List[int]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Layer:
    """
    One map of the hierarchy.

    Nodes live in flat arrays indexed by ``y * width + x``; cross-layer
    links are plain integer indices (``parents[i] == -1`` means no parent).
    """

    NO_PARENT = -1

    def __init__(
        self,
        level: int,
        width: int,
        height: int,
        weights: np.ndarray,
        abstraction_level: str,
        feature_names: Optional[List[str]] = None,
    ):
        self.level = level
        self.width = width
        self.height = height
        self.resolution = 1.0 / (level + 1)
        self.abstraction_level = abstraction_level
        self.feature_names = list(feature_names or [])

        n_nodes = width * height
        if weights.shape[0] != n_nodes:
            raise ValueError(
                f"Expected {n_nodes} weight rows for a {width}x{height} layer, "
                f"got {weights.shape[0]}"
            )
        self.weights = np.asarray(weights, dtype=np.float64)
        ys, xs = np.divmod(np.arange(n_nodes), width)
        self.coords = np.stack([xs, ys], axis=1).astype(np.int64)
        self.activation_counts = np.zeros(n_nodes, dtype=np.int64)
        self.last_activation = np.zeros(n_nodes, dtype=np.float64)
        self.refinement_levels = np.zeros(n_nodes, dtype=np.float64)
        self.parents = np.full(n_nodes, self.NO_PARENT, dtype=np.int64)
        self.children: List[List[int]] = [[] for _ in range(n_nodes)]
        self.clusters: List[Optional[str]] = [None] * n_nodes
        self.tags: List[List[str]] = [[] for _ in range(n_nodes)]

    @property
    def n_nodes(self) -> int:
        return self.width * self.height

    @property
    def n_features(self) -> int:
        return self.weights.shape[1]

    def index_of(self, x: int, y: int) -> Optional[int]:
        """Linear index of the node at (x, y), or None if off the grid"""
        if 0 <= x < self.width and 0 <= y < self.height:
            return y * self.width + x
        return None

    def node_id(self, index: int) -> str:
        x, y = self.coords[index]
        return f"L{self.level}-{x}-{y}"

    def node(self, index: int) -> Node:
        parent = int(self.parents[index])
        return Node(
            id=self.node_id(index),
            index=index,
            x=int(self.coords[index, 0]),
            y=int(self.coords[index, 1]),
            level=self.level,
            weights=self.weights[index].tolist(),
            activation_count=int(self.activation_counts[index]),
            last_activation=float(self.last_activation[index]),
            refinement_level=float(self.refinement_levels[index]),
            cluster=self.clusters[index],
            tags=list(self.tags[index]),
            parent=None if parent == self.NO_PARENT else parent,
            children=list(self.children[index]),
        )

    @property
    def nodes(self) -> List[Node]:
        return [self.node(i) for i in range(self.n_nodes)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "width": self.width,
            "height": self.height,
            "resolution": self.resolution,
            "abstraction_level": self.abstraction_level,
            "feature_names": list(self.feature_names),
            "weights": self.weights.tolist(),
            "activation_counts": self.activation_counts.tolist(),
            "last_activation": self.last_activation.tolist(),
            "refinement_levels": self.refinement_levels.tolist(),
            "parents": self.parents.tolist(),
            "children": [list(c) for c in self.children],
            "clusters": list(self.clusters),
            "tags": [list(t) for t in self.tags],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Layer":
        layer = cls(
            level=data["level"],
            width=data["width"],
            height=data["height"],
            weights=np.asarray(data["weights"], dtype=np.float64),
            abstraction_level=data["abstraction_level"],
            feature_names=data.get("feature_names"),
        )
        layer.activation_counts = np.asarray(data["activation_counts"], dtype=np.int64)
        layer.last_activation = np.asarray(data["last_activation"], dtype=np.float64)
        layer.refinement_levels = np.asarray(data["refinement_levels"], dtype=np.float64)
        layer.parents = np.asarray(data["parents"], dtype=np.int64)
        layer.children = [list(c) for c in data["children"]]
        layer.clusters = list(data["clusters"])
        layer.tags = [list(t) for t in data["tags"]]
        return layer


@dataclass
class LayerStats:
    """Per-layer diagnostics computed after training"""

    level: int
    quantization_error: float = 0.0
    topographic_error: float = 0.0
    convergence_rate: float = 0.0
    abstraction_quality: float = 0.0
    gated_samples: int = 0

    def __post_init__(self):
        for name in (
            "quantization_error",
            "topographic_error",
            "convergence_rate",
            "abstraction_quality",
        ):
            if not math.isfinite(getattr(self, name)):
                raise ValueError(f"{name} must be finite")


@dataclass
class TrainingStats:
    """Summary of the most recent completed training run"""

    total_iterations: int = 0
    last_training_time: Optional[str] = None
    layer_stats: List[LayerStats] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TrainingStats":
        return cls(
            total_iterations=data.get("total_iterations", 0),
            last_training_time=data.get("last_training_time"),
            layer_stats=[LayerStats(**s) for s in data.get("layer_stats", [])],
        )
