"""
Cooperative, cancellable training task driven by a host scheduler
"""

from dataclasses import dataclass, asdict
from typing import Dict, Any, Iterator, List, Optional, TYPE_CHECKING

from .callbacks import Callback

if TYPE_CHECKING:
    from .core import HSOM


@dataclass
class TrainingProgress:
    """
    Snapshot returned at every yield boundary.

    ``iteration`` is the index of the iteration just processed (the run's
    ``max_iterations`` once done). It doubles as the continuation token:
    the engine keeps the full run state, so resuming picks up right after it.
    """

    iteration: int
    max_iterations: int
    progress_percent: float
    done: bool = False
    cancelled: bool = False
    failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TrainingTask:
    """
    Runs training in bounded batches between yield boundaries.

    Each ``resume()`` processes iterations up to the next progress report and
    returns it. A ``cancel()`` request is honoured at the next boundary; the
    sample being processed when it arrived has already been fully applied.
    """

    def __init__(self, hsom: "HSOM", callbacks: List[Callback]):
        self.hsom = hsom
        self.callbacks = callbacks
        self._steps: Iterator[TrainingProgress] = hsom._run_iterations()
        self._cancel_requested = False
        self.last_progress: Optional[TrainingProgress] = None

    @property
    def done(self) -> bool:
        return self.last_progress is not None and (
            self.last_progress.done
            or self.last_progress.cancelled
            or self.last_progress.failed
        )

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        self._cancel_requested = True

    def resume(self) -> TrainingProgress:
        if self.done:
            return self.last_progress

        if self._cancel_requested:
            return self._finish(self.hsom._cancel_run())

        try:
            progress = next(self._steps)
        except StopIteration:
            return self._finish(self.hsom._complete_run())
        except Exception:
            # The generator is closed now; later resumes return this report
            self.last_progress = self.hsom._fail_run()
            raise

        self._report(progress)
        return progress

    def run(self) -> TrainingProgress:
        """Resume until the run completes or is cancelled"""
        progress = self.resume()
        while not self.done:
            progress = self.resume()
        return progress

    def _report(self, progress: TrainingProgress) -> None:
        self.last_progress = progress
        for callback in self.callbacks:
            callback.on_progress(progress, self.hsom)

    def _finish(self, progress: TrainingProgress) -> TrainingProgress:
        self._report(progress)
        for callback in self.callbacks:
            callback.on_training_end(self.hsom)
        return progress
