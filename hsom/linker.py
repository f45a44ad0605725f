"""
Hierarchical linker: parent/child relations between adjacent layers
"""

from typing import List

import structlog

from .exceptions import MissingParentLink
from .structures import Layer

logger = structlog.get_logger(__name__)


def parent_coordinate(x: int, y: int, fine: Layer, coarse: Layer):
    """Proportional floor mapping of a fine grid cell onto the coarse grid"""
    # Integer arithmetic keeps exact cell boundaries from rounding either way
    return (x * coarse.width) // fine.width, (y * coarse.height) // fine.height


def link_layers(layers: List[Layer]) -> List[MissingParentLink]:
    """
    Link every fine node to the coarse node at its proportional coordinate.

    Existing links are cleared first. Returns the nodes left without a
    parent; they still train normally but take no part in refinement.
    """
    for layer in layers:
        layer.parents[:] = Layer.NO_PARENT
        layer.children = [[] for _ in range(layer.n_nodes)]

    missing: List[MissingParentLink] = []
    for fine, coarse in zip(layers, layers[1:]):
        for index in range(fine.n_nodes):
            x, y = (int(v) for v in fine.coords[index])
            parent_x, parent_y = parent_coordinate(x, y, fine, coarse)
            parent = coarse.index_of(parent_x, parent_y)
            if parent is None:
                link = MissingParentLink(fine.level, index, parent_x, parent_y)
                logger.debug("Missing parent link", detail=str(link))
                missing.append(link)
                continue
            fine.parents[index] = parent
            coarse.children[parent].append(index)
    return missing
