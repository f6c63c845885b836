"""
Stamping session: owns the loaded sources and the latest run's results.

Starting a new render supersedes any earlier run (its progress callbacks
stop immediately and it aborts before its next cell); loading new sources
or resetting releases every resource the session holds exactly once.
"""

import threading
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from loguru import logger

from .batch import BatchProgress, BatchRunner, ProgressCallback, RenderCell
from .config import RunConfig
from .errors import RunSupersededError, ValidationError
from .export import ExportEntry, collect_export_entries
from .sequence import SourceItem, SourceRaster, sequence_sources


class StampSession:
    """Holds sources, results and progress for one user's stamping work"""

    def __init__(self, config: Optional[RunConfig] = None):
        self.config = config or RunConfig()
        self._runner = BatchRunner()
        self._state_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._generation = 0
        self._sources: List[SourceItem] = []
        self._results: List[RenderCell] = []
        self._progress = BatchProgress(0, 0)
        self._results_config: Optional[RunConfig] = None

    # --- state -----------------------------------------------------------

    @property
    def sources(self) -> List[SourceItem]:
        return list(self._sources)

    @property
    def results(self) -> List[RenderCell]:
        return list(self._results)

    @property
    def progress(self) -> BatchProgress:
        return self._progress

    @property
    def is_rendering(self) -> bool:
        return self._runner.in_flight

    @property
    def generation(self) -> int:
        return self._generation

    def _invalidate(self) -> int:
        """Bump the generation so every older run becomes stale"""
        with self._state_lock:
            self._generation += 1
            self._results = []
            self._progress = BatchProgress(0, 0)
            return self._generation

    # --- sources ---------------------------------------------------------

    def load(self, inputs: Iterable[Union[str, Path, Tuple[str, bytes], SourceRaster]]) -> List[SourceItem]:
        """Replace the session's sources with paths, (name, bytes) pairs or rasters"""
        rasters = []
        for entry in inputs:
            if isinstance(entry, SourceRaster):
                rasters.append(entry)
            elif isinstance(entry, tuple):
                if len(entry) != 2 or not isinstance(entry[1], (bytes, bytearray)):
                    raise ValidationError(
                        "Named image input must be a (name, bytes) pair",
                        details={'entry_type': type(entry).__name__, 'length': len(entry)},
                    )
                name, data = entry
                rasters.append(SourceRaster.from_bytes(name, bytes(data)))
            elif isinstance(entry, (str, Path)):
                rasters.append(SourceRaster.from_path(entry))
            else:
                raise ValidationError(
                    f"Unsupported image input: {type(entry).__name__}",
                    details={'entry_type': type(entry).__name__},
                    suggestions=["Pass file paths, (name, bytes) pairs or SourceRaster objects"],
                )

        self._invalidate()
        with self._run_lock:
            old_sources = self._sources
            self._sources = sequence_sources(rasters)
        self._release(old_sources)
        logger.info(f"Loaded {len(self._sources)} sources")
        return self.sources

    def reset(self):
        """Drop sources and results, releasing every held resource"""
        self._invalidate()
        with self._run_lock:
            old_sources = self._sources
            self._sources = []
        released = self._release(old_sources)
        logger.info(f"Session reset ({released} sources released)")

    @staticmethod
    def _release(sources: List[SourceItem]) -> int:
        return sum(1 for item in sources if item.raster.release())

    # --- rendering -------------------------------------------------------

    def render(self, on_progress: Optional[ProgressCallback] = None,
               config: Optional[RunConfig] = None) -> List[RenderCell]:
        """
        Render every source with the (snapshotted) configuration.

        Any earlier run is superseded first; the earlier caller receives
        RunSupersededError.
        """
        if config is not None:
            self.config = config
        snapshot = self.config
        run_id = self._invalidate()

        def is_current() -> bool:
            return self._generation == run_id

        # Delivered under the state lock: a newer run cannot start between
        # the currency check and the callback
        def report(progress: BatchProgress):
            with self._state_lock:
                if not is_current():
                    return
                self._progress = progress
                if on_progress is not None:
                    on_progress(progress)

        # Waits for a superseded run to notice and unwind
        with self._run_lock:
            if not is_current():
                logger.info(f"Run {run_id} superseded before it started")
                raise RunSupersededError(run_id, 0, 0)
            sources = list(self._sources)
            if not sources:
                logger.warning("Render requested with no sources loaded")
                return []

            # Decoded rasters are reused between runs of the same sources
            cells = self._runner.run(sources, snapshot, report, is_current, run_id)

        with self._state_lock:
            if is_current():
                self._results = cells
                self._results_config = snapshot
        return cells

    def export_entries(self) -> Tuple[List[ExportEntry], List[RenderCell]]:
        """Named buffers for the latest results plus their failed cells"""
        return collect_export_entries(self._results, self._results_config or self.config)

    def close(self):
        self.reset()

    def __enter__(self) -> "StampSession":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
