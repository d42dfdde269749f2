"""Tests for the multi-pass orchestrator."""

import pytest

from clinical_ocr.exceptions import NoCandidatesError
from clinical_ocr.orchestrator import PassOrchestrator
from clinical_ocr.strategies import BUILTIN_RECIPES, PreprocessingRecipe, StrategyCatalog, step


class FakeClock:

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def single_unit_catalog(rotation_angles=()):
    return StrategyCatalog(
        recipes=[BUILTIN_RECIPES['otsu_threshold']],
        scale_factors=[1.0],
        modes=[6],
        rotation_angles=rotation_angles,
    )


class TestEarlyExit:

    def test_stops_after_first_confident_pass(self, scripted_adapter, small_catalog, text_buffer):
        adapter = scripted_adapter([("Patient given fentanyl", 99.5)])
        report = PassOrchestrator(adapter, small_catalog, target_confidence=95).run(text_buffer)

        assert len(adapter.calls) == 1
        assert report.target_reached
        assert report.attempts == 1
        assert report.best.text == "Patient given fentanyl"
        assert report.best.recipe == 'otsu_threshold'

    def test_stops_mid_catalog(self, scripted_adapter, small_catalog, text_buffer):
        adapter = scripted_adapter([("draft", 40), ("draft", 50), ("final", 97)])
        report = PassOrchestrator(adapter, small_catalog, target_confidence=95).run(text_buffer)

        assert len(adapter.calls) == 3
        assert [c.confidence for c in report.candidates] == [40, 50, 97]
        # Third pass: second scale of the first recipe, first mode
        assert (report.best.scale, report.best.mode) == (2.0, 6)

    def test_per_call_target_override(self, scripted_adapter, small_catalog, text_buffer):
        adapter = scripted_adapter([("note", 80)])
        report = PassOrchestrator(adapter, small_catalog, target_confidence=99).run(
            text_buffer, target_confidence=75)
        assert report.attempts == 1


class TestExhaustion:

    def test_runs_every_combination(self, scripted_adapter, small_catalog, text_buffer):
        adapter = scripted_adapter([("note", 50)])
        report = PassOrchestrator(adapter, small_catalog, target_confidence=95,
                                  min_confidence=60).run(text_buffer)

        assert report.attempts == 8
        assert len(report.candidates) == 8
        assert all(c.low_quality for c in report.candidates)
        assert not report.target_reached
        assert [c.mode for c in report.candidates] == [6, 11] * 4
        assert sorted({(c.recipe, c.scale) for c in report.candidates}) == [
            ('morphology_clean', 1.0), ('morphology_clean', 2.0),
            ('otsu_threshold', 1.0), ('otsu_threshold', 2.0),
        ]

    def test_scale_reaches_adapter(self, scripted_adapter, small_catalog, text_buffer):
        adapter = scripted_adapter([("note", 50)])
        PassOrchestrator(adapter, small_catalog).run(text_buffer)
        assert adapter.calls[0][:2] == (30, 20)
        assert adapter.calls[2][:2] == (60, 40)

    def test_source_buffer_untouched(self, scripted_adapter, small_catalog, text_buffer):
        before = text_buffer.copy()
        PassOrchestrator(scripted_adapter([("note", 50)]), small_catalog).run(text_buffer)
        assert text_buffer == before


class TestFailureHandling:

    def test_recognition_failures_are_skipped(self, scripted_adapter, small_catalog, text_buffer, failure):
        adapter = scripted_adapter([failure, ("note", 70)])
        report = PassOrchestrator(adapter, small_catalog, target_confidence=95).run(text_buffer)

        assert report.attempts == 8
        assert len(report.candidates) == 7

    def test_engine_exception_is_skipped(self, scripted_adapter, small_catalog, text_buffer):
        adapter = scripted_adapter([RuntimeError("tesseract crashed"), ("note", 70)])
        report = PassOrchestrator(adapter, small_catalog, target_confidence=95).run(text_buffer)
        assert len(report.candidates) == 7

    def test_blank_text_is_not_a_candidate(self, scripted_adapter, small_catalog, text_buffer):
        adapter = scripted_adapter([("   ", 90), ("note", 70)])
        report = PassOrchestrator(adapter, small_catalog, target_confidence=95).run(text_buffer)
        assert len(report.candidates) == 7

    def test_all_failures_raise(self, scripted_adapter, small_catalog, text_buffer, failure):
        adapter = scripted_adapter([failure])
        with pytest.raises(NoCandidatesError) as excinfo:
            PassOrchestrator(adapter, small_catalog).run(text_buffer)
        assert excinfo.value.attempted == 8
        assert excinfo.value.collected == 0

    def test_min_candidates_enforced(self, scripted_adapter, small_catalog, text_buffer):
        adapter = scripted_adapter([("note", 50)])
        with pytest.raises(NoCandidatesError):
            PassOrchestrator(adapter, small_catalog, min_candidates=10).run(text_buffer)

    def test_memory_error_propagates(self, scripted_adapter, small_catalog, text_buffer):
        adapter = scripted_adapter([MemoryError()])
        with pytest.raises(MemoryError):
            PassOrchestrator(adapter, small_catalog).run(text_buffer)

    def test_broken_recipe_is_skipped(self, scripted_adapter, text_buffer):
        catalog = StrategyCatalog(
            recipes=[PreprocessingRecipe('broken', (step('sepia'),)), BUILTIN_RECIPES['otsu_threshold']],
            scale_factors=[1.0],
            modes=[6],
            rotation_angles=[],
        )
        adapter = scripted_adapter([("note", 70)])
        report = PassOrchestrator(adapter, catalog).run(text_buffer)

        assert report.skipped_recipes == ['broken']
        assert [c.recipe for c in report.candidates] == ['otsu_threshold']


class TestRotationSweep:

    def test_runs_when_best_is_below_trigger(self, scripted_adapter, text_buffer):
        adapter = scripted_adapter([("note", 50)])
        catalog = single_unit_catalog(rotation_angles=[-2, 0, 2])
        report = PassOrchestrator(adapter, catalog, target_confidence=95).run(text_buffer)

        assert len(adapter.calls) == 3
        assert [c.recipe for c in report.candidates] == [
            'otsu_threshold', 'rotation_-2deg', 'rotation_2deg']
        assert all(c.mode == 6 and c.scale == 1.0 for c in report.candidates)

    def test_skipped_when_best_reaches_trigger(self, scripted_adapter, text_buffer):
        adapter = scripted_adapter([("note", 85)])
        catalog = single_unit_catalog(rotation_angles=[-2, 2])
        PassOrchestrator(adapter, catalog, target_confidence=95).run(text_buffer)
        assert len(adapter.calls) == 1

    def test_rotation_can_reach_target(self, scripted_adapter, text_buffer):
        adapter = scripted_adapter([("note", 50), ("note", 99)])
        catalog = single_unit_catalog(rotation_angles=[-5, -2, 2, 5])
        report = PassOrchestrator(adapter, catalog, target_confidence=95).run(text_buffer)

        assert len(adapter.calls) == 2
        assert report.target_reached
        assert report.best.recipe == 'rotation_-5deg'


class TestTimeBudget:

    def test_stops_when_budget_is_spent(self, scripted_adapter, small_catalog, text_buffer):
        clock = FakeClock()

        def slow_engine(buffer, mode):
            clock.now += 1.0
            return ("note", 50)

        adapter = scripted_adapter(slow_engine)
        report = PassOrchestrator(adapter, small_catalog, time_budget=2.5, clock=clock).run(text_buffer)

        assert report.attempts == 3
        assert report.timed_out
        assert not report.target_reached
        assert len(report.candidates) == 3

    def test_unbounded_by_default(self, scripted_adapter, small_catalog, text_buffer):
        report = PassOrchestrator(scripted_adapter([("note", 50)]), small_catalog,
                                  time_budget=None).run(text_buffer)
        assert not report.timed_out
        assert report.attempts == 8


class TestParallelPasses:

    @staticmethod
    def engine(buffer, mode):
        return (f"{buffer.width}-{mode}", 40 + mode + buffer.width / 10)

    def test_same_candidates_as_sequential(self, scripted_adapter, small_catalog, text_buffer):
        sequential = PassOrchestrator(scripted_adapter(self.engine), small_catalog,
                                      target_confidence=99).run(text_buffer)
        parallel = PassOrchestrator(scripted_adapter(self.engine), small_catalog,
                                    target_confidence=99, max_workers=4).run(text_buffer)

        assert parallel.candidates == sequential.candidates
        assert parallel.attempts == 8

    def test_early_exit_cancels_remaining_work(self, scripted_adapter, small_catalog, text_buffer):
        adapter = scripted_adapter([("note", 99.5)])
        report = PassOrchestrator(adapter, small_catalog, target_confidence=95,
                                  max_workers=2).run(text_buffer)

        assert report.target_reached
        assert report.best.confidence == 99.5
        assert len(adapter.calls) < 8

    def test_early_exit_with_queued_units(self, scripted_adapter, text_buffer):
        catalog = StrategyCatalog(
            recipes=[BUILTIN_RECIPES['otsu_threshold']] * 6,
            scale_factors=[1.0, 1.5],
            modes=[6],
            rotation_angles=[],
        )
        adapter = scripted_adapter([("note", 99.5)])
        report = PassOrchestrator(adapter, catalog, target_confidence=95,
                                  max_workers=2).run(text_buffer)

        assert report.target_reached
        assert all(c.confidence == 99.5 for c in report.candidates)
        assert len(adapter.calls) < len(catalog)

    def test_full_pipeline_recipes_in_parallel(self, scripted_adapter, text_buffer):
        catalog = StrategyCatalog(scale_factors=[1.0], modes=[6], rotation_angles=[])
        adapter = scripted_adapter([("note", 50)])
        report = PassOrchestrator(adapter, catalog, target_confidence=95,
                                  max_workers=3).run(text_buffer)

        assert report.skipped_recipes == []
        assert [c.recipe for c in report.candidates] == [r.name for r in catalog.recipes]
