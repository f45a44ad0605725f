"""
Core hierarchical SOM engine
"""

import asyncio
import os
import pickle
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterator, Sequence, Tuple

import numpy as np
import structlog
from tqdm import tqdm

from .builder import build_layers
from .callbacks import Callback, CheckpointCallback
from .clustering import assign_clusters, hierarchy_summary
from .config import HSOMConfig, RunStatus
from .distance import DistanceCalculator
from .exceptions import EmptyTrainingSetError, HSOMError, MissingParentLink
from .linker import link_layers
from .metrics import compute_layer_stats, topographic_error
from .observability import (
    log_layer_stats,
    log_model_created,
    log_prediction_metrics,
    log_refinement_pass,
    log_skipped_samples,
    log_training_metrics,
)
from .refinement import refine_hierarchy
from .structures import Layer, TrainingSample, TrainingStats, SampleLike
from .training import TrainingProgress, TrainingTask

logger = structlog.get_logger(__name__)


def ensure_models_dir(filepath: str) -> str:
    """Ensure models directory exists and return full path"""
    if not os.path.isabs(filepath):
        models_dir = Path("models")
        models_dir.mkdir(exist_ok=True)
        return str(models_dir / filepath)
    return filepath


class HSOM:
    """
    Hierarchical Self-Organizing Map.

    Owns the configuration, the layer pyramid and the training stats, with
    an explicit lifecycle: construct -> initialize -> train -> snapshot /
    save -> dispose. All layer state has a single writer (the training
    task); readers should only look at it between ``TrainingTask.resume``
    calls.
    """

    def __init__(self, config: HSOMConfig, verbose: bool = True):
        """
        Initialize the engine and build its layers

        Args:
            config: HSOMConfig object with all parameters
            verbose: Whether to show a progress bar in fit()
        """
        self.config = config
        self.verbose = verbose

        # Seed governs both the grid structure and the initial weights
        if config.seed is not None:
            self.rng = np.random.RandomState(config.seed)
        else:
            self.rng = np.random.RandomState()

        self.layers: List[Layer] = []
        self.missing_links: List[MissingParentLink] = []
        self.samples: List[TrainingSample] = []
        self._complexities = np.zeros(0, dtype=np.int64)
        self._projected: List[np.ndarray] = []

        self.metadata = {
            "creation_time": datetime.now().isoformat(),
            "total_iterations": 0,
            "total_runs": 0,
            "skipped_samples": 0,
            "config": config.to_dict(),
        }
        self.callbacks: List[Callback] = []
        self._run_started: Optional[float] = None
        self._run_start_iteration = 0

        self.initialize()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> "HSOM":
        """(Re)build and link every layer, discarding any trained state"""
        self.layers = build_layers(self.config, self.rng)
        self.missing_links = link_layers(self.layers)
        self.stats = TrainingStats()
        self.run_status = RunStatus.IDLE
        self.training_state = self._fresh_training_state()
        log_model_created()
        logger.info(
            "Hierarchy initialized",
            layers=[(layer.width, layer.height) for layer in self.layers],
            missing_links=len(self.missing_links),
        )
        return self

    def dispose(self) -> None:
        """Release layers and samples; call initialize() to use the engine again"""
        self.layers = []
        self.missing_links = []
        self.samples = []
        self._complexities = np.zeros(0, dtype=np.int64)
        self._projected = []
        self.run_status = RunStatus.IDLE

    def _fresh_training_state(self) -> Dict[str, Any]:
        return {
            "iteration": 0,
            "learning_rate": self.config.learning_rate,
            "radius": self.config.neighborhood_radius,
            "error_sums": [0.0] * self.config.layers,
            "gated_counts": [0] * self.config.layers,
            "refinement_passes": 0,
        }

    # ------------------------------------------------------------------
    # Training data
    # ------------------------------------------------------------------

    def set_training_data(self, samples: Sequence[SampleLike]) -> int:
        """
        Validate and store the training set; returns the number of usable samples.

        Malformed samples are skipped with a warning. Raises
        EmptyTrainingSetError when nothing usable remains.
        """
        usable, skipped = self._prepare_samples(samples)
        if skipped:
            self.metadata["skipped_samples"] += skipped
            log_skipped_samples(skipped)
            logger.warning("Skipped malformed training samples", skipped=skipped)
        if not usable:
            raise EmptyTrainingSetError(
                "Training set is empty: no usable samples were supplied"
            )

        self.samples = usable
        self._complexities = np.array([s.complexity for s in usable], dtype=np.int64)
        projection = self.config.projection
        self._projected = [
            np.array([projection.project(s.features, layer.level) for s in usable])
            for layer in self.layers
        ]
        return len(usable)

    @staticmethod
    def _prepare_samples(
        samples: Sequence[SampleLike],
    ) -> Tuple[List[TrainingSample], int]:
        usable = []
        skipped = 0
        for raw in samples or []:
            try:
                sample = (
                    raw
                    if isinstance(raw, TrainingSample)
                    else TrainingSample.from_mapping(raw)
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.debug("Unreadable training sample", error=str(e))
                skipped += 1
                continue
            problems = sample.problems()
            if problems:
                logger.debug("Rejected training sample", sample_id=sample.id, problems=problems)
                skipped += 1
                continue
            usable.append(sample)
        return usable, skipped

    def _gated_projection(self, level: int) -> np.ndarray:
        """Projected vectors of the stored samples allowed to train ``level``"""
        if not self.samples:
            n_features = self.config.projection.feature_count(level)
            return np.zeros((0, n_features))
        return self._projected[level][self._complexities >= level + 1]

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def start_training(
        self,
        samples: Optional[Sequence[SampleLike]] = None,
        callbacks: Optional[List[Callback]] = None,
    ) -> TrainingTask:
        """
        Begin (or continue) a training run and return its task.

        A run that was interrupted (cancelled, or saved while running) is
        continued from its stored iteration; otherwise a fresh run starts
        with the configured learning rate and radius.
        """
        if not self.layers:
            raise HSOMError("Engine has been disposed; call initialize() first")
        if samples is not None:
            self.set_training_data(samples)
        if not self.samples:
            raise EmptyTrainingSetError("No training samples supplied")

        if self.run_status not in (RunStatus.RUNNING, RunStatus.CANCELLED):
            self.training_state = self._fresh_training_state()
        elif self.training_state["iteration"] > 0:
            logger.info(
                "Resuming interrupted training run",
                iteration=self.training_state["iteration"],
            )

        if not self.config.refinement_enabled:
            logger.info(
                "Refinement disabled",
                refinement_threshold=self.config.refinement_threshold,
            )

        self.callbacks = list(callbacks or [])
        if self.config.checkpoint_interval:
            self.callbacks.append(
                CheckpointCallback(
                    self.config.checkpoint_dir, self.config.checkpoint_interval
                )
            )

        self.run_status = RunStatus.RUNNING
        self._run_started = time.time()
        self._run_start_iteration = self.training_state["iteration"]
        for callback in self.callbacks:
            callback.on_training_begin(self)

        return TrainingTask(self, self.callbacks)

    def fit(
        self,
        samples: Optional[Sequence[SampleLike]] = None,
        callbacks: Optional[List[Callback]] = None,
    ) -> "HSOM":
        """
        Train to completion

        Args:
            samples: Training samples (uses the stored set if None)
            callbacks: List of callback objects

        Returns:
            self for method chaining
        """
        task = self.start_training(samples, callbacks)
        progress_bar = None
        if self.verbose:
            progress_bar = tqdm(
                total=self.config.max_iterations,
                initial=self.training_state["iteration"],
                desc="Training HSOM",
            )

        try:
            while not task.done:
                task.resume()
                if progress_bar is not None:
                    progress_bar.n = self.training_state["iteration"]
                    progress_bar.set_postfix(
                        {
                            "lr": f"{self.training_state['learning_rate']:.4f}",
                            "radius": f"{self.training_state['radius']:.3f}",
                        }
                    )
                    progress_bar.refresh()
        finally:
            if progress_bar is not None:
                progress_bar.close()

        return self

    async def fit_async(
        self,
        samples: Optional[Sequence[SampleLike]] = None,
        callbacks: Optional[List[Callback]] = None,
    ) -> "HSOM":
        """Train to completion, handing control back to the event loop at every boundary"""
        task = self.start_training(samples, callbacks)
        while not task.done:
            task.resume()
            await asyncio.sleep(0)
        return self

    def _run_iterations(self) -> Iterator[TrainingProgress]:
        """Training loop; yields a progress snapshot at every reporting boundary"""
        config = self.config
        state = self.training_state
        n_samples = len(self.samples)

        while state["iteration"] < config.max_iterations:
            t = state["iteration"]
            sample_index = self.rng.randint(n_samples)
            self._train_sample(sample_index, state["learning_rate"], state["radius"])

            if t % config.refinement_interval == 0:
                self.refine()

            state["learning_rate"] *= config.decay_rate
            state["radius"] *= config.decay_rate
            state["iteration"] = t + 1
            self.metadata["total_iterations"] += 1

            if t % config.progress_interval == 0:
                yield TrainingProgress(
                    iteration=t,
                    max_iterations=config.max_iterations,
                    progress_percent=t / config.max_iterations * 100,
                )

    def _train_sample(self, sample_index: int, learning_rate: float, radius: float) -> None:
        """Apply one sample to every layer its complexity tier unlocks"""
        complexity = self._complexities[sample_index]
        now = time.time()
        state = self.training_state
        # Gating: level L only learns from samples with complexity >= L + 1
        for layer in self.layers[:complexity]:
            x = self._projected[layer.level][sample_index]
            error = self._train_layer(layer, x, learning_rate, radius, now)
            state["error_sums"][layer.level] += error
            state["gated_counts"][layer.level] += 1

    def find_bmu(self, layer: Layer, x: np.ndarray) -> Tuple[int, float]:
        """Best-matching unit; ties go to the lowest linear grid index"""
        distances = DistanceCalculator.euclidean(layer.weights, x)
        bmu = int(np.argmin(distances))
        return bmu, float(distances[bmu])

    def _train_layer(
        self,
        layer: Layer,
        x: np.ndarray,
        learning_rate: float,
        radius: float,
        now: float,
    ) -> float:
        bmu, _ = self.find_bmu(layer, x)
        layer.activation_counts[bmu] += 1
        layer.last_activation[bmu] = now

        adjusted_radius = radius * layer.resolution
        if adjusted_radius > 0:
            grid_distances = DistanceCalculator.euclidean(
                layer.coords.astype(np.float64), layer.coords[bmu]
            )
            mask = grid_distances <= adjusted_radius
            # exp(-d^2 / (2 r^2)), written so a vanishing radius cannot give 0/0
            influence = np.exp(-0.5 * (grid_distances[mask] / adjusted_radius) ** 2)
            rate = learning_rate * self.config.layer_decay_base**layer.level
            layer.weights[mask] += (
                rate * influence[:, np.newaxis] * (x - layer.weights[mask])
            )

        return float(DistanceCalculator.euclidean(layer.weights[bmu], x))

    def refine(self) -> int:
        """One bottom-up refinement pass; returns the number of parent updates"""
        updates = refine_hierarchy(self.layers, self.config)
        self.training_state["refinement_passes"] += 1
        log_refinement_pass(updates)
        return updates

    def _complete_run(self) -> TrainingProgress:
        for layer in self.layers:
            assign_clusters(layer, self.config.cluster_names)
        self.stats = self.compute_stats()
        self.run_status = RunStatus.COMPLETED
        self.metadata["total_runs"] += 1
        self.metadata["last_training"] = datetime.now().isoformat()
        self._record_run()
        log_layer_stats(self.stats.layer_stats)
        logger.info(
            "Training completed",
            iterations=self.stats.total_iterations,
            quantization_errors=[s.quantization_error for s in self.stats.layer_stats],
        )
        return TrainingProgress(
            iteration=self.config.max_iterations,
            max_iterations=self.config.max_iterations,
            progress_percent=100.0,
            done=True,
        )

    def _cancel_run(self) -> TrainingProgress:
        self.run_status = RunStatus.CANCELLED
        self._record_run()
        iteration = self.training_state["iteration"]
        logger.info("Training cancelled", iteration=iteration)
        return TrainingProgress(
            iteration=iteration,
            max_iterations=self.config.max_iterations,
            progress_percent=iteration / self.config.max_iterations * 100,
            cancelled=True,
        )

    def _fail_run(self) -> TrainingProgress:
        self.run_status = RunStatus.FAILED
        self._record_run()
        iteration = self.training_state["iteration"]
        logger.error("Training failed", iteration=iteration)
        return TrainingProgress(
            iteration=iteration,
            max_iterations=self.config.max_iterations,
            progress_percent=iteration / self.config.max_iterations * 100,
            failed=True,
        )

    def _record_run(self) -> None:
        duration = time.time() - self._run_started if self._run_started else 0.0
        log_training_metrics(
            layers=len(self.layers),
            duration=duration,
            iterations=self.training_state["iteration"] - self._run_start_iteration,
            status=self.run_status.value,
        )

    # ------------------------------------------------------------------
    # Clustering and metrics
    # ------------------------------------------------------------------

    def assign_clusters(self) -> "HSOM":
        for layer in self.layers:
            assign_clusters(layer, self.config.cluster_names)
        return self

    def compute_stats(self) -> TrainingStats:
        """Per-layer diagnostics for the current run state"""
        state = self.training_state
        layer_stats = [
            compute_layer_stats(
                layer,
                error_sum=state["error_sums"][layer.level],
                iterations=state["iteration"],
                projected=self._gated_projection(layer.level),
            )
            for layer in self.layers
        ]
        return TrainingStats(
            total_iterations=state["iteration"],
            last_training_time=datetime.now().isoformat(),
            layer_stats=layer_stats,
        )

    def _usable_samples(self, samples: Sequence[SampleLike]) -> List[TrainingSample]:
        usable, skipped = self._prepare_samples(samples)
        if skipped:
            logger.warning("Ignored malformed samples", skipped=skipped)
        return usable

    def predict(self, samples: Sequence[SampleLike]) -> List[Dict[str, Any]]:
        """Map each sample onto the BMU of every layer its complexity unlocks"""
        usable = self._usable_samples(samples)
        projection = self.config.projection
        results = []
        for sample in usable:
            levels = []
            for layer in self.layers[: sample.complexity]:
                x = projection.project(sample.features, layer.level)
                bmu, distance = self.find_bmu(layer, x)
                levels.append(
                    {
                        "level": layer.level,
                        "bmu": bmu,
                        "x": int(layer.coords[bmu, 0]),
                        "y": int(layer.coords[bmu, 1]),
                        "cluster": layer.clusters[bmu],
                        "distance": distance,
                    }
                )
            results.append({"sample_id": sample.id, "label": sample.label, "levels": levels})
        log_prediction_metrics(len(results))
        return results

    def quantization_error(self, samples: Sequence[SampleLike]) -> List[float]:
        """Mean BMU distance per layer over the samples gated to it"""
        usable = self._usable_samples(samples)
        projection = self.config.projection
        errors = []
        for layer in self.layers:
            distances = [
                self.find_bmu(layer, projection.project(s.features, layer.level))[1]
                for s in usable
                if s.complexity >= layer.level + 1
            ]
            errors.append(float(np.mean(distances)) if distances else 0.0)
        return errors

    def topographic_error(self, samples: Sequence[SampleLike]) -> List[float]:
        """Topographic error per layer over the samples gated to it"""
        usable = self._usable_samples(samples)
        projection = self.config.projection
        errors = []
        for layer in self.layers:
            gated = [
                projection.project(s.features, layer.level)
                for s in usable
                if s.complexity >= layer.level + 1
            ]
            projected = np.array(gated).reshape(len(gated), layer.n_features)
            errors.append(topographic_error(layer, projected))
        return errors

    def hierarchy_summary(self) -> List[Dict[str, Any]]:
        return hierarchy_summary(self.layers)

    # ------------------------------------------------------------------
    # Read contract and persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Read-only view of the hierarchy for visualization consumers"""
        links = [
            {"level": layer.level, "child": index, "parent": int(parent)}
            for layer in self.layers
            for index, parent in enumerate(layer.parents)
            if parent != Layer.NO_PARENT
        ]
        return {
            "run_status": self.run_status.value,
            "iteration": self.training_state["iteration"],
            "layers": [
                {
                    "level": layer.level,
                    "width": layer.width,
                    "height": layer.height,
                    "resolution": layer.resolution,
                    "abstraction_level": layer.abstraction_level,
                    "feature_names": list(layer.feature_names),
                    "nodes": [node.to_dict() for node in layer.nodes],
                }
                for layer in self.layers
            ],
            "links": links,
            "stats": self.stats.to_dict(),
        }

    def to_state(self) -> Dict[str, Any]:
        """Structured engine state for an external store"""
        return {
            "config": self.config.to_dict(),
            "layers": [layer.to_dict() for layer in self.layers],
            "stats": self.stats.to_dict(),
            "metadata": self.metadata,
            "training_state": self.training_state,
            "run_status": self.run_status.value,
            "rng_state": self.rng.get_state(),
            "missing_links": [
                (m.level, m.index, m.parent_x, m.parent_y) for m in self.missing_links
            ],
        }

    @classmethod
    def from_state(cls, state: Dict[str, Any], verbose: bool = False) -> "HSOM":
        config = HSOMConfig.from_dict(state["config"])
        hsom = cls(config, verbose=verbose)
        hsom.layers = [Layer.from_dict(data) for data in state["layers"]]
        hsom.stats = TrainingStats.from_dict(state["stats"])
        hsom.metadata = state["metadata"]
        hsom.training_state = state["training_state"]
        hsom.run_status = RunStatus(state["run_status"])
        hsom.rng.set_state(state["rng_state"])
        hsom.missing_links = [MissingParentLink(*m) for m in state["missing_links"]]
        return hsom

    def save(self, filepath: str):
        """Save engine state to file"""
        full_path = ensure_models_dir(filepath)

        try:
            with open(full_path, "wb") as f:
                pickle.dump(self.to_state(), f)
            logger.info("Model saved", path=full_path)
        except (IOError, OSError) as e:
            raise IOError(f"Failed to save model to {full_path}: {e}")

    @classmethod
    def load(cls, filepath: str) -> "HSOM":
        """Load engine state from file"""
        full_path = ensure_models_dir(filepath)

        try:
            with open(full_path, "rb") as f:
                state = pickle.load(f)
        except (IOError, OSError) as e:
            raise IOError(f"Failed to load model from {full_path}: {e}")

        return cls.from_state(state)

    def get_info(self) -> Dict:
        """Get comprehensive information about the hierarchy"""
        return {
            "config": self.config.to_dict(),
            "metadata": self.metadata,
            "run_status": self.run_status.value,
            "iteration": self.training_state["iteration"],
            "shapes": [(layer.width, layer.height) for layer in self.layers],
            "n_nodes": [layer.n_nodes for layer in self.layers],
            "n_features": [layer.n_features for layer in self.layers],
            "missing_links": len(self.missing_links),
            "stats": self.stats.to_dict(),
            "hierarchy": self.hierarchy_summary(),
        }
