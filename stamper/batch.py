"""
Batch runner for the episode stamper.

Drives every (source item, output spec) pair through the frame composer,
turning per-cell failures into error cells and reporting progress after
each completed cell.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from PIL import Image
from loguru import logger

from .compose import FrameComposer
from .config import OutputSpec, RunConfig
from .errors import ErrorKind, RenderError, RunInProgressError, RunSupersededError
from .labels import format_label, sequence_number
from .sequence import SourceItem


@dataclass(frozen=True)
class CellError:
    """Why a render cell has no image"""
    kind: ErrorKind
    message: str


ERROR_TEXT = {
    ErrorKind.DECODE: "Failed to load image",
    ErrorKind.SURFACE: "Failed to initialize drawing surface",
    ErrorKind.ENCODE: "Failed to encode image",
}


@dataclass(frozen=True)
class RenderCell:
    """Result of composing one (source item, output spec) pair"""
    item_id: str
    identifier: str
    spec_key: str
    sequence_number: int
    label: str
    width: int
    height: int
    encoded: Optional[bytes] = None
    error: Optional[CellError] = None

    def __post_init__(self):
        if (self.encoded is None) == (self.error is None):
            raise ValueError("RenderCell needs exactly one of encoded/error")

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def key(self) -> Tuple[str, str]:
        return self.item_id, self.spec_key

    @property
    def size_label(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def error_text(self) -> str:
        if self.error is None:
            return ""
        return ERROR_TEXT.get(self.error.kind, self.error.message)


@dataclass(frozen=True)
class BatchProgress:
    done: int
    total: int

    @property
    def fraction(self) -> float:
        return self.done / max(self.total, 1)


ProgressCallback = Callable[[BatchProgress], None]


def _error_cell(item: SourceItem, spec: OutputSpec, number: int, label: str,
                error: RenderError) -> RenderCell:
    return RenderCell(
        item_id=item.item_id,
        identifier=item.identifier,
        spec_key=spec.key,
        sequence_number=number,
        label=label,
        width=spec.width,
        height=spec.height,
        error=CellError(kind=error.kind, message=error.message),
    )


class _ProgressTracker:
    """Monotonic done counter; reports synchronously under a lock"""

    def __init__(self, total: int, on_progress: Optional[ProgressCallback],
                 is_current: Callable[[], bool]):
        self.total = total
        self.done = 0
        self._on_progress = on_progress
        self._is_current = is_current
        self._lock = threading.Lock()

    def emit(self):
        if self._on_progress is not None and self._is_current():
            self._on_progress(BatchProgress(self.done, self.total))

    def advance(self):
        with self._lock:
            self.done += 1
            if self.done > self.total:
                raise RuntimeError(f"progress overflow: {self.done}/{self.total}")
            self.emit()


class BatchRunner:
    """
    Runs one batch at a time over sources x output specs.

    A second `run` while one is in flight raises RunInProgressError. When
    `is_current` turns false the run stops before its next cell, stops
    reporting progress and raises RunSupersededError.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def run(self, sources: Sequence[SourceItem], config: RunConfig,
            on_progress: Optional[ProgressCallback] = None,
            is_current: Callable[[], bool] = lambda: True,
            run_id: int = 0) -> List[RenderCell]:
        with self._lock:
            if self._in_flight:
                raise RunInProgressError()
            self._in_flight = True

        try:
            return self._run(list(sources), config, on_progress, is_current, run_id)
        finally:
            with self._lock:
                self._in_flight = False

    def _run(self, sources: List[SourceItem], config: RunConfig,
             on_progress: Optional[ProgressCallback],
             is_current: Callable[[], bool], run_id: int) -> List[RenderCell]:
        specs = list(config.output_specs)
        composer = FrameComposer(config)
        tracker = _ProgressTracker(len(sources) * len(specs), on_progress, is_current)

        logger.info(f"Run {run_id}: {len(sources)} sources x {len(specs)} specs = {tracker.total} cells "
                    f"({config.output_format}, workers={config.workers})")
        tracker.emit()

        cells: Dict[Tuple[str, str], RenderCell] = {}
        executor = ThreadPoolExecutor(max_workers=config.workers) if config.workers > 1 else None
        try:
            for item in sources:
                self._check_current(is_current, run_id, tracker)
                number = sequence_number(config.start_number, item.sequence_position)
                label = format_label(config.prefix, config.start_number,
                                     item.sequence_position, config.digits)

                try:
                    raster = item.raster.decode()
                except RenderError as e:
                    logger.warning(f"Run {run_id}: {item.identifier} failed to decode: {e.message}")
                    for spec in specs:
                        cells[(item.item_id, spec.key)] = _error_cell(item, spec, number, label, e)
                        tracker.advance()
                    continue

                if executor is None:
                    for spec in specs:
                        self._check_current(is_current, run_id, tracker)
                        cell = self._render_cell(composer, item, raster, spec, number, label)
                        cells[cell.key] = cell
                        tracker.advance()
                else:
                    futures = [
                        executor.submit(self._render_cell, composer, item, raster, spec, number, label)
                        for spec in specs
                    ]
                    for future in futures:
                        cell = future.result()
                        cells[cell.key] = cell
                        tracker.advance()
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        self._check_current(is_current, run_id, tracker)
        ordered = [cells[(item.item_id, spec.key)] for item in sources for spec in specs]
        failed = sum(1 for c in ordered if not c.ok)
        logger.info(f"Run {run_id} finished: {len(ordered) - failed} ok, {failed} failed")
        return ordered

    @staticmethod
    def _check_current(is_current: Callable[[], bool], run_id: int, tracker: _ProgressTracker):
        if not is_current():
            logger.info(f"Run {run_id} superseded at {tracker.done}/{tracker.total}")
            raise RunSupersededError(run_id, tracker.done, tracker.total)

    @staticmethod
    def _render_cell(composer: FrameComposer, item: SourceItem, raster: Image.Image,
                     spec: OutputSpec, number: int, label: str) -> RenderCell:
        try:
            encoded = composer.compose(raster, spec, label)
        except RenderError as e:
            logger.warning(f"{item.identifier} [{spec.key}] failed: {e.message}")
            return _error_cell(item, spec, number, label, e)

        logger.debug(f"{item.identifier} [{spec.key}] -> {len(encoded)} bytes")
        return RenderCell(
            item_id=item.item_id,
            identifier=item.identifier,
            spec_key=spec.key,
            sequence_number=number,
            label=label,
            width=spec.width,
            height=spec.height,
            encoded=encoded,
        )


def run_batch(sources: Sequence[SourceItem], config: RunConfig,
              on_progress: Optional[ProgressCallback] = None) -> List[RenderCell]:
    """Run one batch on a fresh runner"""
    return BatchRunner().run(sources, config, on_progress)
