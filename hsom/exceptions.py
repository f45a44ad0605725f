"""
Error types raised by the hierarchical SOM engine
"""


class HSOMError(Exception):
    """Base class for all engine errors"""


class ConfigurationError(HSOMError, ValueError):
    """Invalid configuration, rejected before any layer is built"""


class EmptyTrainingSetError(HSOMError, ValueError):
    """Training invoked without any usable sample"""


class MissingParentLink(HSOMError):
    """
    A fine node whose proportional coordinate matches no coarse node.

    Never raised during linking; instances are collected on the engine as
    diagnostics and the node is simply left out of refinement.
    """

    def __init__(self, level: int, index: int, parent_x: int, parent_y: int):
        self.level = level
        self.index = index
        self.parent_x = parent_x
        self.parent_y = parent_y
        super().__init__(
            f"Node {index} on level {level} has no parent at "
            f"({parent_x}, {parent_y}) on level {level + 1}"
        )
