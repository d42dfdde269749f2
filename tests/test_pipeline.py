"""End-to-end pipeline tests with a scripted recognition engine."""

import pytest

from clinical_ocr import ClinicalOCRPipeline
from clinical_ocr.error_correction import CorrectionDictionary, DomainCorrector
from clinical_ocr.fusion import LOW_CONFIDENCE_WARNING
from clinical_ocr.pipeline import NO_TEXT_WARNING, UNREADABLE_WARNING, clean_text
from clinical_ocr.strategies import BUILTIN_RECIPES, StrategyCatalog


@pytest.fixture
def corrector():
    return DomainCorrector(CorrectionDictionary({'fentanil': 'fentanyl'}), glyph_substitutions=False)


@pytest.fixture
def two_mode_catalog():
    return StrategyCatalog(
        recipes=[BUILTIN_RECIPES['otsu_threshold']],
        scale_factors=[1.0],
        modes=[6, 11],
        rotation_angles=[],
    )


class TestClinicalOCRPipeline:

    def test_early_exit_with_correction(self, scripted_adapter, small_catalog, corrector, text_buffer):
        adapter = scripted_adapter([("Patient given fentanil", 99.5)])
        pipeline = ClinicalOCRPipeline(adapter=adapter, catalog=small_catalog, corrector=corrector)

        result = pipeline.recognize(text_buffer, target_confidence=95)

        assert result.text == "Patient given fentanil"
        assert result.corrected_text == "Patient given fentanyl"
        assert result.confidence == 99.5
        assert result.strategy == 'otsu_threshold'
        assert result.scale == 1.0
        assert result.passes == 1
        assert result.warnings == []

    def test_correction_can_be_turned_off(self, scripted_adapter, small_catalog, corrector, text_buffer):
        adapter = scripted_adapter([("Patient given fentanil", 99.5)])
        pipeline = ClinicalOCRPipeline(adapter=adapter, catalog=small_catalog, corrector=corrector)

        result = pipeline.recognize(text_buffer, target_confidence=95, apply_correction=False)

        assert result.text == "Patient given fentanil"
        assert result.corrected_text is None

    def test_fuses_when_no_pass_is_confident(self, scripted_adapter, two_mode_catalog, corrector, text_buffer):
        adapter = scripted_adapter([("BP 120/80 fentanil", 70), ("BP 120/8O fentanil", 50)])
        pipeline = ClinicalOCRPipeline(adapter=adapter, catalog=two_mode_catalog, corrector=corrector)

        result = pipeline.recognize(text_buffer, target_confidence=95, min_confidence=60)

        assert result.text == "BP 120/80 fentanyl"
        assert result.corrected_text == "Bp 120/80 fentanyl"
        assert result.confidence == pytest.approx(70.0)
        assert result.preprocessing_used == 'multi-pass fusion'
        assert result.warnings == [LOW_CONFIDENCE_WARNING]
        assert result.passes == 2

    def test_low_quality_best_pass_is_flagged(self, scripted_adapter, two_mode_catalog, corrector, text_buffer):
        adapter = scripted_adapter([("note", 40)])
        pipeline = ClinicalOCRPipeline(adapter=adapter, catalog=two_mode_catalog, corrector=corrector)

        result = pipeline.recognize(text_buffer, target_confidence=95, min_confidence=60)

        assert result.text == "note"
        assert any("below the 60" in warning for warning in result.warnings)

    def test_no_text_from_any_pass(self, scripted_adapter, small_catalog, corrector, text_buffer, failure):
        adapter = scripted_adapter([failure])
        pipeline = ClinicalOCRPipeline(adapter=adapter, catalog=small_catalog, corrector=corrector)

        result = pipeline.recognize(text_buffer)

        assert result.text == ''
        assert result.corrected_text == ''
        assert result.confidence == 0
        assert result.preprocessing_used == 'none'
        assert result.warnings == [NO_TEXT_WARNING]
        assert result.passes == 8

    def test_undecodable_image(self, scripted_adapter, small_catalog, corrector):
        adapter = scripted_adapter([("note", 99)])
        pipeline = ClinicalOCRPipeline(adapter=adapter, catalog=small_catalog, corrector=corrector)

        result = pipeline.recognize(b'\x00\x01 not a png')

        assert result.warnings == [UNREADABLE_WARNING]
        assert result.confidence == 0
        assert adapter.calls == []

    def test_accepts_encoded_bytes(self, scripted_adapter, small_catalog, corrector, png_bytes):
        adapter = scripted_adapter([("Rest", 99.5)])
        pipeline = ClinicalOCRPipeline(adapter=adapter, catalog=small_catalog, corrector=corrector)

        result = pipeline.recognize(png_bytes, target_confidence=95)

        assert result.text == "Rest"
        assert adapter.calls[0][:2] == (40, 24)

    def test_time_budget_warning(self, scripted_adapter, small_catalog, corrector, text_buffer):
        clock = {'now': 0.0}

        def slow_engine(buffer, mode):
            clock['now'] += 1.0
            return ("note", 50)

        pipeline = ClinicalOCRPipeline(
            adapter=scripted_adapter(slow_engine),
            catalog=small_catalog,
            corrector=corrector,
            time_budget=2.5,
            clock=lambda: clock['now'],
        )

        result = pipeline.recognize(text_buffer, target_confidence=95)

        assert result.passes == 3
        assert any("Time budget exhausted" in warning for warning in result.warnings)

    def test_quick_extract_prefers_corrected_text(self, scripted_adapter, small_catalog, corrector, text_buffer):
        adapter = scripted_adapter([("given fentanil", 99.5)])
        pipeline = ClinicalOCRPipeline(adapter=adapter, catalog=small_catalog, corrector=corrector)
        assert pipeline.quick_extract(text_buffer) == "Given fentanyl"


class TestCleanText:

    def test_collapses_whitespace(self):
        assert clean_text("  BP   120/80\n\n\n\nnext ") == "BP 120/80\n\nnext"

    def test_drops_non_printable(self):
        assert clean_text("pain\x0c noted\x00") == "pain noted"
