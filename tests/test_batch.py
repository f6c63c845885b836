"""
Unit tests for the batch runner: cell accounting, progress reporting
and per-cell failure isolation.
"""

import pytest

from stamper.batch import BatchProgress, BatchRunner, CellError, RenderCell, run_batch
from stamper.errors import (
    EncodeError, ErrorKind, RunInProgressError, RunSupersededError, SurfaceError
)
from stamper.sequence import SourceRaster, sequence_sources
from tests.conftest import make_image_bytes


def make_sources(*names, corrupt=()):
    rasters = []
    for name in names:
        data = b"garbage" if name in corrupt else make_image_bytes((300, 200))
        rasters.append(SourceRaster.from_bytes(name, data))
    return sequence_sources(rasters)


class TestRenderCell:
    """Test the exactly-one-of invariant."""

    def test_needs_encoded_or_error(self):
        with pytest.raises(ValueError):
            RenderCell("a-0", "a.png", "k", 1, "EP 01", 10, 10)

    def test_rejects_both(self):
        with pytest.raises(ValueError):
            RenderCell("a-0", "a.png", "k", 1, "EP 01", 10, 10, encoded=b"x",
                       error=CellError(ErrorKind.ENCODE, "bad"))

    def test_error_text(self):
        cell = RenderCell("a-0", "a.png", "k", 1, "EP 01", 10, 10,
                          error=CellError(ErrorKind.DECODE, "cannot identify"))
        assert not cell.ok
        assert cell.error_text == "Failed to load image"
        assert cell.size_label == "10x10"


class TestBatchRunner:
    """Test full runs over sources x specs."""

    def test_cell_accounting_and_progress(self, run_config):
        sources = make_sources("img2.png", "img10.png", "img1.png")
        progress = []

        cells = BatchRunner().run(sources, run_config, progress.append)

        assert len(cells) == 6
        assert len({c.key for c in cells}) == 6
        assert [p.done for p in progress] == list(range(7))
        assert all(p.total == 6 for p in progress)
        assert progress[-1] == BatchProgress(6, 6)

    def test_cells_ordered_sources_outer_specs_inner(self, run_config):
        cells = run_batch(make_sources("img2.png", "img10.png", "img1.png"), run_config)
        assert [(c.identifier, c.spec_key) for c in cells] == [
            ("img1.png", "landscape"), ("img1.png", "portrait"),
            ("img2.png", "landscape"), ("img2.png", "portrait"),
            ("img10.png", "landscape"), ("img10.png", "portrait"),
        ]

    def test_sequence_numbers_shared_across_specs(self, run_config):
        config = run_config.model_copy(update={'start_number': 5})
        cells = run_batch(make_sources("a1.png", "a2.png", "a3.png"), config)

        by_source = {}
        for cell in cells:
            by_source.setdefault(cell.identifier, set()).add((cell.sequence_number, cell.label))
        assert by_source == {
            "a1.png": {(5, "EP 05")},
            "a2.png": {(6, "EP 06")},
            "a3.png": {(7, "EP 07")},
        }

    def test_decode_failure_yields_error_cell_per_spec(self, run_config):
        sources = make_sources("valid.png", "corrupt.png", corrupt={"corrupt.png"})
        progress = []

        cells = BatchRunner().run(sources, run_config, progress.append)

        assert len(cells) == 4
        valid = [c for c in cells if c.identifier == "valid.png"]
        corrupt = [c for c in cells if c.identifier == "corrupt.png"]
        assert all(c.ok for c in valid)
        assert {c.spec_key for c in corrupt} == {"landscape", "portrait"}
        assert all(c.error.kind == ErrorKind.DECODE for c in corrupt)
        assert all(c.encoded is None for c in corrupt)
        assert progress[-1] == BatchProgress(4, 4)

    def test_compose_failure_isolated_to_one_cell(self, run_config, monkeypatch):
        from stamper.compose import FrameComposer
        original = FrameComposer.compose

        def flaky(self, raster, spec, label):
            if spec.key == "portrait":
                raise SurfaceError(spec.width, spec.height, "no memory for canvas")
            return original(self, raster, spec, label)

        monkeypatch.setattr(FrameComposer, "compose", flaky)
        cells = run_batch(make_sources("a.png", "b.png"), run_config)

        assert [c.ok for c in cells] == [True, False, True, False]
        assert all(c.error.kind == ErrorKind.SURFACE for c in cells if not c.ok)

    def test_encode_failure_becomes_error_cell(self, run_config, monkeypatch):
        from stamper.surface import RasterSurface

        def broken(self, output_format='jpeg', quality=0.92):
            raise EncodeError(output_format, "disk full")

        monkeypatch.setattr(RasterSurface, "encode", broken)
        cells = run_batch(make_sources("a.png"), run_config)
        assert [c.error.kind for c in cells] == [ErrorKind.ENCODE, ErrorKind.ENCODE]

    def test_memory_error_propagates(self, run_config, monkeypatch):
        from stamper.compose import FrameComposer

        def exhausted(self, raster, spec, label):
            raise MemoryError()

        monkeypatch.setattr(FrameComposer, "compose", exhausted)
        runner = BatchRunner()
        with pytest.raises(MemoryError):
            runner.run(make_sources("a.png"), run_config)
        assert not runner.in_flight

    def test_overlapping_run_rejected(self, run_config):
        runner = BatchRunner()
        sources = make_sources("a.png")
        rejected = []

        def on_progress(progress):
            if progress.done == 0:
                try:
                    runner.run(sources, run_config)
                except RunInProgressError as e:
                    rejected.append(e)

        cells = runner.run(sources, run_config, on_progress)
        assert len(rejected) == 1
        assert len(cells) == 2
        assert not runner.in_flight

    def test_superseded_run_stops_and_goes_quiet(self, run_config):
        state = {'current': True}
        progress = []

        def on_progress(p):
            progress.append(p)
            if p.done == 1:
                state['current'] = False

        with pytest.raises(RunSupersededError) as exc_info:
            BatchRunner().run(make_sources("a.png", "b.png"), run_config, on_progress,
                              is_current=lambda: state['current'], run_id=3)

        assert [p.done for p in progress] == [0, 1]
        assert exc_info.value.details['run_id'] == 3

    def test_threaded_run_matches_sequential(self, run_config):
        names = ("e1.png", "e2.png", "e3.png", "e4.png")
        sequential = run_batch(make_sources(*names), run_config)

        progress = []
        config = run_config.model_copy(update={'workers': 3})
        threaded = BatchRunner().run(make_sources(*names), config, progress.append)

        assert [(c.key, c.label) for c in threaded] == [(c.key, c.label) for c in sequential]
        assert [p.done for p in progress] == list(range(9))

    def test_empty_sources(self, run_config):
        progress = []
        assert BatchRunner().run([], run_config, progress.append) == []
        assert progress == [BatchProgress(0, 0)]

    def test_rerun_is_idempotent_for_labels(self, run_config):
        first = run_batch(make_sources("x2.png", "x1.png"), run_config)
        second = run_batch(make_sources("x2.png", "x1.png"), run_config)
        assert [(c.key, c.label, c.sequence_number) for c in first] == \
               [(c.key, c.label, c.sequence_number) for c in second]
