"""
Result types passed between the recognition stages
"""

from dataclasses import dataclass, field, asdict
from typing import List, Optional


@dataclass(frozen=True)
class RecognitionOutput:
    """Raw engine output for one buffer"""
    text: str
    confidence: float


@dataclass(frozen=True)
class CandidateResult:
    """One recognition pass: a (recipe, scale, mode) combination"""
    text: str
    confidence: float
    recipe: str
    scale: float = 1.0
    mode: Optional[int] = None
    low_quality: bool = False


@dataclass
class AdvancedOCRResult:
    """Final answer of a recognition job"""
    text: str
    confidence: float
    corrected_text: Optional[str] = None
    preprocessing_used: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    strategy: Optional[str] = None
    scale: Optional[float] = None
    passes: int = 0

    @classmethod
    def from_candidate(cls, candidate: CandidateResult) -> 'AdvancedOCRResult':
        return cls(
            text=candidate.text,
            confidence=candidate.confidence,
            preprocessing_used=candidate.recipe,
            strategy=candidate.recipe,
            scale=candidate.scale,
        )

    @classmethod
    def empty(cls, warning: str) -> 'AdvancedOCRResult':
        return cls(
            text='',
            confidence=0.0,
            corrected_text='',
            preprocessing_used='none',
            warnings=[warning],
        )

    def to_dict(self):
        return asdict(self)


# Fusion returns the same shape as the pipeline
FusedResult = AdvancedOCRResult
