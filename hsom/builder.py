"""
Layer builder: a pyramid of maps with shrinking grid resolution
"""

from typing import List, Tuple

import numpy as np

from .config import HSOMConfig, AbstractionLevel
from .structures import Layer


def layer_dimensions(config: HSOMConfig) -> List[Tuple[int, int]]:
    """
    Grid size of every level.

    Each side is ``floor(base * hierarchy_factor**level)`` floored at
    ``config.min_dimension``, so sizes never grow with the level.
    """
    dims = []
    for level in range(config.layers):
        scale = config.hierarchy_factor**level
        width = max(config.min_dimension, int(np.floor(config.width * scale)))
        height = max(config.min_dimension, int(np.floor(config.height * scale)))
        dims.append((width, height))
    return dims


def build_layers(config: HSOMConfig, rng: np.random.RandomState) -> List[Layer]:
    """Allocate all layers with weights drawn uniformly from [0, 1)"""
    projection = config.projection
    layers = []
    for level, (width, height) in enumerate(layer_dimensions(config)):
        n_features = projection.feature_count(level)
        weights = rng.random_sample((width * height, n_features))
        layers.append(
            Layer(
                level=level,
                width=width,
                height=height,
                weights=weights,
                abstraction_level=AbstractionLevel.for_level(level).value,
                feature_names=list(projection.feature_names(level)),
            )
        )
    return layers
