"""
Multi-pass recognition: runs the strategy catalog against a recognition
adapter and stops as soon as a pass is confident enough
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import List, Optional

from .config import CONFIDENCE_THRESHOLDS, MAX_WORKERS, MIN_CANDIDATES, TIME_BUDGET
from .exceptions import NoCandidatesError, PreprocessingFailure, RecognitionFailure
from .models import CandidateResult
from .preprocessing import ImagePreprocessor
from .strategies import StrategyCatalog

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationReport:
    """What a multi-pass run produced"""
    candidates: List[CandidateResult]
    attempts: int = 0
    target_reached: bool = False
    timed_out: bool = False
    skipped_recipes: List[str] = field(default_factory=list)

    @property
    def best(self) -> Optional[CandidateResult]:
        if not self.candidates:
            return None
        return max(self.candidates, key=lambda c: c.confidence)


class _RunState:
    """Shared bookkeeping for one run; safe to touch from worker threads"""

    def __init__(self, target_confidence, min_confidence, deadline, clock):
        self.target_confidence = target_confidence
        self.min_confidence = min_confidence
        self.deadline = deadline
        self.clock = clock
        self.cancelled = threading.Event()
        self.attempts = 0
        self.target_reached = False
        self.timed_out = False
        self.skipped = []
        self._lock = threading.Lock()

    def should_stop(self):
        if self.cancelled.is_set():
            return True
        if self.deadline is not None and self.clock() >= self.deadline:
            with self._lock:
                self.timed_out = True
            self.cancelled.set()
            return True
        return False

    def count_attempt(self):
        with self._lock:
            self.attempts += 1
            return self.attempts

    def reach_target(self):
        with self._lock:
            self.target_reached = True
        self.cancelled.set()

    def skip(self, recipe_name):
        with self._lock:
            self.skipped.append(recipe_name)


class PassOrchestrator:
    """
    Iterate (recipe, scale, mode) combinations in catalog order

    Every combination is preprocessed from its own copy of the source
    buffer. Failed preprocessing or recognition skips the combination.
    """

    def __init__(self, adapter, catalog=None, preprocessor=None,
                 target_confidence=CONFIDENCE_THRESHOLDS['target'],
                 min_confidence=CONFIDENCE_THRESHOLDS['minimum'],
                 min_candidates=MIN_CANDIDATES,
                 rotation_trigger=CONFIDENCE_THRESHOLDS['rotation_trigger'],
                 max_workers=MAX_WORKERS,
                 time_budget=TIME_BUDGET,
                 clock=time.monotonic):
        self.adapter = adapter
        self.catalog = catalog or StrategyCatalog()
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.target_confidence = target_confidence
        self.min_confidence = min_confidence
        self.min_candidates = max(1, min_candidates)
        self.rotation_trigger = rotation_trigger
        self.max_workers = max(1, max_workers)
        self.time_budget = time_budget
        self.clock = clock

    def run(self, buffer, target_confidence=None, min_confidence=None) -> OrchestrationReport:
        """
        Run the strategy space against `buffer`

        Returns:
            OrchestrationReport with candidates in catalog order

        Raises:
            NoCandidatesError: fewer than `min_candidates` passes produced text
        """
        deadline = None if self.time_budget is None else self.clock() + self.time_budget
        state = _RunState(
            self.target_confidence if target_confidence is None else target_confidence,
            self.min_confidence if min_confidence is None else min_confidence,
            deadline,
            self.clock,
        )

        total = len(self.catalog)
        logger.info(f"🔄 Starting multi-pass OCR with {total} processing combinations...")
        candidates = self._run_units(buffer, list(self.catalog.units()), state)

        best = max((c.confidence for c in candidates), default=0.0)
        if (not state.cancelled.is_set() and best < self.rotation_trigger
                and self.catalog.rotation_angles):
            logger.info("Low confidence detected, trying rotation corrections...")
            candidates += self._run_units(buffer, list(self.catalog.rotation_units()), state)

        report = OrchestrationReport(
            candidates=candidates,
            attempts=state.attempts,
            target_reached=state.target_reached,
            timed_out=state.timed_out,
            skipped_recipes=state.skipped,
        )

        if len(candidates) < self.min_candidates:
            raise NoCandidatesError(
                f"Only {len(candidates)} of {self.min_candidates} required passes produced text "
                f"({state.attempts} attempted)",
                attempted=state.attempts,
                collected=len(candidates),
            )

        logger.info(
            f"✅ OCR passes complete: {len(candidates)} candidates from {state.attempts} attempts"
            f"{' (target reached)' if state.target_reached else ''}"
        )
        return report

    def _run_units(self, buffer, units, state):
        if self.max_workers == 1 or len(units) == 1:
            candidates = []
            for recipe, scale, modes in units:
                if state.should_stop():
                    break
                candidates += self._run_unit(buffer, recipe, scale, modes, state)
            return candidates

        results = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._run_unit, buffer, recipe, scale, modes, state): index
                for index, (recipe, scale, modes) in enumerate(units)
            }
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                results[futures[future]] = future.result()
                if state.cancelled.is_set():
                    for pending in futures:
                        pending.cancel()

        candidates = []
        for index in sorted(results):
            candidates += results[index]
        return candidates

    def _run_unit(self, source, recipe, scale, modes, state):
        """Preprocess once for (recipe, scale), then recognize with each mode"""
        if state.should_stop():
            return []

        try:
            prepared = recipe.apply(source.copy(), scale, self.preprocessor)
            prepared = self.preprocessor.invert_if_needed(prepared)
        except PreprocessingFailure as e:
            logger.warning(f"Preprocessing failed for {recipe.name} at scale {scale}: {e}")
            state.skip(recipe.name)
            return []

        candidates = []
        for mode in modes:
            if state.should_stop():
                break
            attempt = state.count_attempt()
            try:
                output = self.adapter.recognize(prepared, mode)
            except RecognitionFailure as e:
                logger.warning(f"OCR pass failed for {recipe.name} at scale {scale}, mode {mode}: {e}")
                continue

            candidate = CandidateResult(
                text=output.text,
                confidence=output.confidence,
                recipe=recipe.name,
                scale=scale,
                mode=mode,
                low_quality=output.confidence < state.min_confidence,
            )
            candidates.append(candidate)
            logger.info(
                f"Pass {attempt}: Strategy=\"{recipe.name}\", Scale={scale}, Mode={mode}, "
                f"Confidence={candidate.confidence:.1f}%"
            )

            if candidate.confidence >= state.target_confidence:
                logger.info(f"🎯 Target confidence {state.target_confidence}% reached")
                state.reach_target()
                break

        return candidates
