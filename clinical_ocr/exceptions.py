"""
Exception classes for the clinical OCR pipeline.

All pipeline exceptions inherit from ClinicalOCRError. Failures are local to a
single (recipe, scale, mode) combination and are recovered by skipping it;
only resource exhaustion (MemoryError) escapes to the caller.
"""


class ClinicalOCRError(Exception):
    """Base exception for all clinical OCR errors."""

    pass


class PreprocessingFailure(ClinicalOCRError):
    """
    Raised when a transform cannot run, e.g. on a zero-size buffer.

    The orchestrator skips the recipe and carries on with the others.
    """

    pass


class RecognitionFailure(ClinicalOCRError):
    """
    Raised by a recognition adapter when the engine call fails or
    returns no text. The candidate for that combination is dropped.
    """

    pass


class NoCandidatesError(ClinicalOCRError):
    """Raised when no combination produced enough usable candidates."""

    def __init__(self, message, attempted=0, collected=0):
        super().__init__(message)
        self.attempted = attempted
        self.collected = collected


class DictionaryError(ClinicalOCRError):
    """Raised when a correction dictionary is malformed."""

    pass
