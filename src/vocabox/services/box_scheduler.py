"""Leitner box scheduling: box numbers, intervals and box statistics."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List

from vocabox.models.practice_models import (
    MAX_EASINESS_FACTOR,
    MIN_EASINESS_FACTOR,
    WordProgress,
)

logger = logging.getLogger(__name__)

# Days between reviews for each box, per supported box count
BOX_INTERVAL_PRESETS: Dict[int, List[int]] = {
    3: [1, 7, 30],
    5: [1, 3, 7, 14, 30],
    7: [1, 2, 4, 7, 14, 30, 60],
}

# (name, description) per box, per supported box count
_BOX_LABELS: Dict[int, List[tuple]] = {
    3: [
        ("Learning", "New and difficult words"),
        ("Review", "Words in progress"),
        ("Mastered", "Well-known words"),
    ],
    5: [
        ("New", "Brand new words"),
        ("Learning", "Getting familiar"),
        ("Review", "Regular practice"),
        ("Familiar", "Almost mastered"),
        ("Mastered", "Well-known words"),
    ],
    7: [
        ("New", "Brand new words"),
        ("Beginning", "First attempts"),
        ("Learning", "Getting familiar"),
        ("Review", "Regular practice"),
        ("Familiar", "Comfortable"),
        ("Strong", "Almost mastered"),
        ("Mastered", "Fully mastered"),
    ],
}


@dataclass(frozen=True)
class BoxInfo:
    """Display metadata for a single box."""
    box_number: int
    name: str
    description: str
    interval_days: int


@dataclass(frozen=True)
class BoxDistribution:
    """Number of words sitting in a box."""
    box_number: int
    word_count: int
    percentage: int


@dataclass(frozen=True)
class LearningStats:
    """Summary statistics over a learner's progress records."""
    total_words: int
    words_due_today: int
    mastered_words: int
    learning_words: int
    new_words: int
    average_box: float
    mastery_percentage: int


def validate_box_count(box_count: int) -> int:
    """Return the box count if supported, raise ValueError otherwise."""
    if box_count not in BOX_INTERVAL_PRESETS:
        raise ValueError(f"Unsupported Leitner box count: {box_count}")
    return box_count


def clamp_box(box_number: int, box_count: int) -> int:
    """Clamp a stored box number into [1, box_count]."""
    validate_box_count(box_count)
    return max(1, min(box_number, box_count))


def box_interval(box_number: int, box_count: int) -> int:
    """Interval in days for a box."""
    presets = BOX_INTERVAL_PRESETS[validate_box_count(box_count)]
    return presets[clamp_box(box_number, box_count) - 1]


def next_review_date(box_number: int, box_count: int, now: datetime) -> datetime:
    """Review date for a word that has just landed in a box."""
    return now + timedelta(days=box_interval(box_number, box_count))


def clamp_progress(progress: WordProgress, box_count: int) -> WordProgress:
    """Return a copy of the progress with box and easiness clamped into range.

    Used when reading stored records: the box count may have been lowered
    since the record was written.
    """
    clamped = progress.copy()
    clamped.leitner_box = clamp_box(progress.leitner_box, box_count)
    clamped.easiness_factor = max(
        MIN_EASINESS_FACTOR, min(MAX_EASINESS_FACTOR, progress.easiness_factor)
    )
    if clamped.leitner_box != progress.leitner_box:
        logger.debug(
            f"Clamped word {progress.vocabulary_id} from box {progress.leitner_box} "
            f"to {clamped.leitner_box}"
        )
    return clamped


def get_box_info(box_count: int) -> List[BoxInfo]:
    """Get metadata for all boxes of a box count."""
    intervals = BOX_INTERVAL_PRESETS[validate_box_count(box_count)]
    return [
        BoxInfo(box_number=i + 1, name=name, description=description, interval_days=intervals[i])
        for i, (name, description) in enumerate(_BOX_LABELS[box_count])
    ]


def get_box_distribution(words_progress: List[WordProgress], box_count: int) -> List[BoxDistribution]:
    """Get the distribution of words across boxes."""
    total = len(words_progress)
    counts = [0] * validate_box_count(box_count)
    for wp in words_progress:
        counts[clamp_box(wp.leitner_box, box_count) - 1] += 1
    return [
        BoxDistribution(
            box_number=i + 1,
            word_count=count,
            percentage=round(count / total * 100) if total else 0,
        )
        for i, count in enumerate(counts)
    ]


def is_word_mastered(progress: WordProgress, box_count: int) -> bool:
    """A word is mastered once it sits in the last box."""
    return clamp_box(progress.leitner_box, box_count) == box_count


def get_words_in_box(words_progress: List[WordProgress], box_number: int) -> List[WordProgress]:
    return [wp for wp in words_progress if wp.leitner_box == box_number]


def get_words_due(words_progress: List[WordProgress], now: datetime) -> List[WordProgress]:
    """Words whose next review date has passed."""
    return [wp for wp in words_progress if wp.next_review_date <= now]


def get_due_words_by_box(
    words_progress: List[WordProgress], box_count: int, now: datetime
) -> Dict[int, List[WordProgress]]:
    """Get due words grouped by (clamped) box number."""
    by_box: Dict[int, List[WordProgress]] = {box: [] for box in range(1, validate_box_count(box_count) + 1)}
    for wp in get_words_due(words_progress, now):
        by_box[clamp_box(wp.leitner_box, box_count)].append(wp)
    return by_box


def calculate_mastery_percentage(words_progress: List[WordProgress], box_count: int) -> int:
    """Sum of box levels relative to every word sitting in the last box."""
    if not words_progress:
        return 0
    total_levels = sum(clamp_box(wp.leitner_box, box_count) for wp in words_progress)
    return round(total_levels / (len(words_progress) * box_count) * 100)


def get_learning_stats(words_progress: List[WordProgress], box_count: int, now: datetime) -> LearningStats:
    """Get summary statistics for display."""
    total_words = len(words_progress)
    mastered = sum(1 for wp in words_progress if is_word_mastered(wp, box_count))
    new_words = sum(1 for wp in words_progress if clamp_box(wp.leitner_box, box_count) == 1)
    sum_of_boxes = sum(clamp_box(wp.leitner_box, box_count) for wp in words_progress)
    average_box = sum_of_boxes / total_words if total_words else 0.0

    return LearningStats(
        total_words=total_words,
        words_due_today=len(get_words_due(words_progress, now)),
        mastered_words=mastered,
        learning_words=total_words - mastered - new_words,
        new_words=new_words,
        average_box=round(average_box, 1),
        mastery_percentage=calculate_mastery_percentage(words_progress, box_count),
    )
