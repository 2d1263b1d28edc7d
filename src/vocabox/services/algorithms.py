"""Spaced repetition algorithms.

Every algorithm is a pure function of the previous progress, the answer
outcome, the learner's settings and the current time. The input progress is
never mutated; a fresh copy is returned inside a ReviewResult.

Box advancement is shared by all algorithms: the streak must have reached
``consecutive_correct_required`` and the word must have been completed in all
three practice modes of the current cycle. Callers add the mode being
practiced to ``completed_modes_in_cycle`` before invoking an algorithm.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List

from vocabox.models.practice_models import (
    ALL_MODES,
    MAX_EASINESS_FACTOR,
    MIN_EASINESS_FACTOR,
    LearningSettings,
    SpacedRepetitionAlgorithm,
    UnknownAlgorithmError,
    WordProgress,
    parse_algorithm,
)
from vocabox.services.box_scheduler import box_interval, clamp_progress

logger = logging.getLogger(__name__)

QUALITY_CORRECT = 5
QUALITY_INCORRECT = 2
SIMPLE_MAX_INTERVAL = 120  # days


@dataclass
class ReviewResult:
    """Outcome of applying an algorithm to one answer."""
    progress: WordProgress
    box_transition: bool
    previous_box: int
    new_box: int
    interval_days: int
    next_review_date: datetime
    message: str = ""


ProcessFn = Callable[[WordProgress, bool, LearningSettings, datetime], ReviewResult]


@dataclass(frozen=True)
class Algorithm:
    """A named scheduling strategy."""
    type: SpacedRepetitionAlgorithm
    name: str
    description: str
    process: ProcessFn

    def process_correct_answer(
        self, progress: WordProgress, settings: LearningSettings, now: datetime
    ) -> ReviewResult:
        return self.process(progress, True, settings, now)

    def process_incorrect_answer(
        self, progress: WordProgress, settings: LearningSettings, now: datetime
    ) -> ReviewResult:
        return self.process(progress, False, settings, now)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_easiness_factor(current: float, quality: int) -> float:
    """EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02)), clamped to [1.3, 2.5]."""
    new_ef = current + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02))
    return max(MIN_EASINESS_FACTOR, min(MAX_EASINESS_FACTOR, new_ef))


def _begin(progress: WordProgress, correct: bool, settings: LearningSettings, now: datetime) -> WordProgress:
    """Copy the progress and apply the counters every algorithm shares."""
    updated = clamp_progress(progress, settings.leitner_box_count)
    updated.total_reviews += 1
    updated.last_practiced = now
    updated.updated_at = now
    if correct:
        updated.correct_count += 1
        updated.consecutive_correct_count += 1
    else:
        updated.incorrect_count += 1
        updated.consecutive_correct_count = 0
    return updated


def _cycle_complete(progress: WordProgress, settings: LearningSettings) -> bool:
    """Whether a correct answer may move the word to the next box."""
    return (
        progress.consecutive_correct_count >= settings.consecutive_correct_required
        and ALL_MODES.issubset(progress.completed_modes_in_cycle)
    )


def _advance(progress: WordProgress, settings: LearningSettings) -> None:
    """Close the cycle: next box (capped), fresh streak, no completed modes."""
    progress.leitner_box = min(progress.leitner_box + 1, settings.leitner_box_count)
    progress.consecutive_correct_count = 0
    progress.completed_modes_in_cycle = set()


def _finish(
    updated: WordProgress,
    previous_box: int,
    box_transition: bool,
    interval: int,
    now: datetime,
    message: str,
) -> ReviewResult:
    updated.last_interval_days = updated.interval_days
    updated.interval_days = interval
    updated.next_review_date = now + timedelta(days=interval)
    return ReviewResult(
        progress=updated,
        box_transition=box_transition,
        previous_box=previous_box,
        new_box=updated.leitner_box,
        interval_days=interval,
        next_review_date=updated.next_review_date,
        message=message,
    )


def _days(interval: int) -> str:
    return f"{interval} day{'s' if interval != 1 else ''}"


def _correct_message(updated: WordProgress, transition: bool, interval: int, settings: LearningSettings) -> str:
    if transition:
        return f"Excellent! Advanced to Box {updated.leitner_box}! Next review in {_days(interval)}"
    missing = len(ALL_MODES - updated.completed_modes_in_cycle)
    if missing:
        return f"Correct! {missing} more mode(s) to complete before advancing. Review in {_days(interval)}"
    return (
        f"Correct! {updated.consecutive_correct_count}/{settings.consecutive_correct_required} "
        f"towards next box. Review in {_days(interval)}"
    )


def process_sm2(progress: WordProgress, correct: bool, settings: LearningSettings, now: datetime) -> ReviewResult:
    """Classic SM-2 with a binary quality (5 for correct, 2 for incorrect)."""
    updated = _begin(progress, correct, settings, now)
    previous_box = updated.leitner_box

    if not correct:
        updated.easiness_factor = calculate_easiness_factor(updated.easiness_factor, QUALITY_INCORRECT)
        logger.debug(f"SM-2: word {updated.vocabulary_id} failed, EF now {updated.easiness_factor:.2f}")
        return _finish(updated, previous_box, False, 1, now, "Incorrect. Review again tomorrow.")

    updated.easiness_factor = calculate_easiness_factor(updated.easiness_factor, QUALITY_CORRECT)
    transition = _cycle_complete(updated, settings)
    if transition:
        _advance(updated, settings)

    interval = max(1, _round_half_up(updated.interval_days * updated.easiness_factor))
    logger.debug(
        f"SM-2: word {updated.vocabulary_id} correct, EF {updated.easiness_factor:.2f}, "
        f"interval {updated.interval_days} -> {interval}, box {previous_box} -> {updated.leitner_box}"
    )
    return _finish(updated, previous_box, transition, interval, now,
                   _correct_message(updated, transition, interval, settings))


def process_modified_sm2(
    progress: WordProgress, correct: bool, settings: LearningSettings, now: datetime
) -> ReviewResult:
    """Leitner boxes with fixed intervals taken from the box presets."""
    box_count = settings.leitner_box_count
    updated = _begin(progress, correct, settings, now)
    previous_box = updated.leitner_box

    if not correct:
        transition = False
        if settings.demote_on_failure and updated.leitner_box > 1:
            updated.leitner_box -= 1
            updated.completed_modes_in_cycle = set()
            transition = True
        interval = box_interval(1, box_count)
        logger.debug(
            f"Modified SM-2: word {updated.vocabulary_id} failed, box {previous_box} -> {updated.leitner_box}"
        )
        message = (
            f"Incorrect. Moved to Box {updated.leitner_box}. Review again in {_days(interval)}."
            if transition
            else f"Incorrect. Review again in {_days(interval)}."
        )
        return _finish(updated, previous_box, transition, interval, now, message)

    transition = _cycle_complete(updated, settings)
    if transition:
        _advance(updated, settings)
    interval = box_interval(updated.leitner_box, box_count)
    logger.debug(
        f"Modified SM-2: word {updated.vocabulary_id} correct, streak {updated.consecutive_correct_count}, "
        f"box {previous_box} -> {updated.leitner_box}"
    )
    return _finish(updated, previous_box, transition, interval, now,
                   _correct_message(updated, transition, interval, settings))


def process_simple(progress: WordProgress, correct: bool, settings: LearningSettings, now: datetime) -> ReviewResult:
    """Interval doubling; the box is cosmetic but still follows the cycle rules."""
    updated = _begin(progress, correct, settings, now)
    previous_box = updated.leitner_box
    current = max(1, updated.interval_days)

    if not correct:
        interval = max(1, current // 2)
        return _finish(updated, previous_box, False, interval, now,
                       f"Incorrect. Interval reduced to {_days(interval)}.")

    transition = _cycle_complete(updated, settings)
    if transition:
        _advance(updated, settings)
    interval = min(current * 2, SIMPLE_MAX_INTERVAL)
    return _finish(updated, previous_box, transition, interval, now,
                   _correct_message(updated, transition, interval, settings))


ALGORITHMS: Dict[SpacedRepetitionAlgorithm, Algorithm] = {
    SpacedRepetitionAlgorithm.SM2: Algorithm(
        type=SpacedRepetitionAlgorithm.SM2,
        name="SM-2 (SuperMemo 2)",
        description="Classic algorithm with dynamic easiness factor. Intervals adapt based on your performance.",
        process=process_sm2,
    ),
    SpacedRepetitionAlgorithm.MODIFIED_SM2: Algorithm(
        type=SpacedRepetitionAlgorithm.MODIFIED_SM2,
        name="Modified SM-2",
        description="Simplified SM-2 with fixed intervals per box. Predictable and easy to understand.",
        process=process_modified_sm2,
    ),
    SpacedRepetitionAlgorithm.SIMPLE: Algorithm(
        type=SpacedRepetitionAlgorithm.SIMPLE,
        name="Simple Doubling",
        description="Each success doubles the interval (1d -> 2d -> 4d). Very simple approach.",
        process=process_simple,
    ),
}


def get_algorithm_by_type(algorithm_type) -> Algorithm:
    """Look up an algorithm by identifier; unknown identifiers are a configuration error."""
    algorithm = ALGORITHMS.get(parse_algorithm(algorithm_type))
    if algorithm is None:
        raise UnknownAlgorithmError(f"No implementation registered for {algorithm_type!r}")
    return algorithm


def get_algorithm(settings: LearningSettings) -> Algorithm:
    """Get the algorithm selected in the learner's settings."""
    return get_algorithm_by_type(settings.sr_algorithm)


def get_all_algorithms() -> List[Algorithm]:
    """Get all available algorithms for display."""
    return list(ALGORITHMS.values())
