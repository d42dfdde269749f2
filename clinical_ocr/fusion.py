"""
Confidence-weighted fusion of multiple recognition passes
"""

import logging
from typing import Sequence

from .config import CONFIDENCE_THRESHOLDS, FUSION_CONFIDENCE_BOOST, FUSION_CONFIDENCE_CAP
from .models import AdvancedOCRResult, CandidateResult

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_WARNING = 'Low confidence - please verify text'
NO_RESULTS_WARNING = 'No OCR results to process'


class ResultFusion:
    """
    Merge candidates by word-position voting

    The best candidate supplies the word backbone; every candidate long
    enough to have a word at a position votes for it with its confidence.
    Agreement between independent strategies earns a confidence boost.
    """

    def __init__(self, corrector=None,
                 shortcut_confidence=CONFIDENCE_THRESHOLDS['fusion_shortcut'],
                 verify_below=CONFIDENCE_THRESHOLDS['verify_warning'],
                 boost=FUSION_CONFIDENCE_BOOST,
                 cap=FUSION_CONFIDENCE_CAP):
        self.corrector = corrector
        self.shortcut_confidence = shortcut_confidence
        self.verify_below = verify_below
        self.boost = boost
        self.cap = cap

    def fuse(self, candidates: Sequence[CandidateResult]) -> AdvancedOCRResult:
        if not candidates:
            return AdvancedOCRResult.empty(NO_RESULTS_WARNING)

        ranked = sorted(candidates, key=lambda c: c.confidence, reverse=True)
        best = ranked[0]
        if best.confidence >= self.shortcut_confidence:
            logger.info(f"Best pass '{best.recipe}' at {best.confidence:.1f}% - no fusion needed")
            return AdvancedOCRResult.from_candidate(best)

        token_lists = [candidate.text.split() for candidate in ranked]
        fused_words = []
        for i in range(len(token_lists[0])):
            word = self._vote(i, token_lists, ranked)
            if self.corrector is not None:
                word = self.corrector.correct_word(word)
            fused_words.append(word)

        avg_confidence = sum(c.confidence for c in ranked) / len(ranked)
        confidence = min(self.cap, avg_confidence + self.boost)
        warnings = [LOW_CONFIDENCE_WARNING] if avg_confidence < self.verify_below else []

        logger.info(f"Fused {len(ranked)} passes: average {avg_confidence:.1f}% -> {confidence:.1f}%")
        return AdvancedOCRResult(
            text=' '.join(fused_words),
            confidence=confidence,
            preprocessing_used='multi-pass fusion',
            warnings=warnings,
        )

    @staticmethod
    def _vote(position, token_lists, ranked):
        """Highest-weighted word at `position`; the first-seen word wins ties"""
        tally = {}
        for tokens, candidate in zip(token_lists, ranked):
            if position < len(tokens):
                word = tokens[position]
                entry = tally.setdefault(word.lower(), [word, 0.0])
                entry[1] += candidate.confidence
        return max(tally.values(), key=lambda entry: entry[1])[0]


def fuse_ocr_results(candidates, corrector=None) -> AdvancedOCRResult:
    """Quick function to fuse recognition passes"""
    return ResultFusion(corrector=corrector).fuse(candidates)
