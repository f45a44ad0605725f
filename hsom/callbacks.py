"""
Callback system for monitoring hierarchical SOM training
"""

import os
from abc import ABC, abstractmethod
from typing import Callable, Dict, Any, TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from .core import HSOM
    from .training import TrainingProgress

logger = structlog.get_logger(__name__)


class Callback(ABC):
    """Abstract base class for callbacks"""

    @abstractmethod
    def on_training_begin(self, hsom: "HSOM") -> None:
        pass

    @abstractmethod
    def on_progress(self, progress: "TrainingProgress", hsom: "HSOM") -> None:
        pass

    @abstractmethod
    def on_training_end(self, hsom: "HSOM") -> None:
        pass


class ProgressCallback(Callback):
    """Forward {iteration, progress_percent} reports to a caller-supplied sink"""

    def __init__(self, sink: Callable[[Dict[str, Any]], None]):
        self.sink = sink

    def on_training_begin(self, hsom: "HSOM") -> None:
        pass

    def on_progress(self, progress: "TrainingProgress", hsom: "HSOM") -> None:
        self.sink(
            {
                "iteration": progress.iteration,
                "progress_percent": progress.progress_percent,
            }
        )

    def on_training_end(self, hsom: "HSOM") -> None:
        pass


class CheckpointCallback(Callback):
    """Save the engine state every ``interval`` iterations and at the end"""

    def __init__(self, checkpoint_dir: str, interval: int = 500):
        self.checkpoint_dir = checkpoint_dir
        self.interval = interval
        self.last_saved = 0
        os.makedirs(checkpoint_dir, exist_ok=True)

    def on_training_begin(self, hsom: "HSOM") -> None:
        self.last_saved = hsom.training_state["iteration"]

    def on_progress(self, progress: "TrainingProgress", hsom: "HSOM") -> None:
        if progress.done or progress.iteration - self.last_saved < self.interval:
            return
        checkpoint_path = os.path.join(
            self.checkpoint_dir, f"checkpoint_iteration_{progress.iteration}.pkl"
        )
        try:
            hsom.save(checkpoint_path)
            self.last_saved = progress.iteration
            logger.info("Checkpoint saved", path=checkpoint_path)
        except (IOError, OSError) as e:
            logger.warning("Failed to save checkpoint", path=checkpoint_path, error=str(e))

    def on_training_end(self, hsom: "HSOM") -> None:
        final_path = os.path.join(self.checkpoint_dir, "final_model.pkl")
        try:
            hsom.save(final_path)
        except (IOError, OSError) as e:
            logger.warning("Failed to save final model", path=final_path, error=str(e))
