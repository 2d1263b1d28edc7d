"""Word selection for practice sessions."""
import logging
import random
from datetime import UTC, datetime
from typing import Dict, List, Optional

from vocabox.models.practice_models import (
    LearningSettings,
    SelectionOptions,
    Vocabulary,
    WordProgress,
)
from vocabox.monitoring import words_selected

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORDS = 100
DEFAULT_NEW_WORDS_PER_DAY = 20


def _progress_map(words_progress: List[WordProgress]) -> Dict[str, WordProgress]:
    return {wp.vocabulary_id: wp for wp in words_progress}


def _introduced_today(words_progress: List[WordProgress], now: datetime) -> int:
    """Count words whose first exposure (record creation) happened today."""
    today = now.astimezone(UTC).date()
    return sum(1 for wp in words_progress if wp.created_at.astimezone(UTC).date() == today)


def select_words_for_practice(
    vocabulary: List[Vocabulary],
    words_progress: List[WordProgress],
    settings: LearningSettings,
    options: Optional[SelectionOptions] = None,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> List[Vocabulary]:
    """Build the ordered word list for a practice session.

    Due words come first (most overdue first), then new words in their
    original order, subject to the daily new-word quota. The list is
    truncated to ``max_words`` before an optional shuffle, so the shuffle
    only changes presentation order, never which words were picked.
    When ``options.current_mode`` is set, due words that were already
    completed in that mode during the current cycle are left out.
    """
    options = options or SelectionOptions()
    now = now or datetime.now(UTC)
    if options.max_words is not None and options.max_words < 0:
        raise ValueError(f"max_words must not be negative, got {options.max_words}")
    if not vocabulary:
        return []

    progress_by_id = _progress_map(words_progress)
    max_words = options.max_words
    if max_words is None:
        max_words = settings.daily_review_limit or DEFAULT_MAX_WORDS

    due: List[tuple] = []
    new: List[Vocabulary] = []
    for position, vocab in enumerate(vocabulary):
        progress = progress_by_id.get(vocab.id)
        if progress is None:
            new.append(vocab)
        elif progress.next_review_date <= now:
            if options.current_mode and options.current_mode in progress.completed_modes_in_cycle:
                continue
            due.append((progress.next_review_date, position, vocab))

    selected: List[Vocabulary] = []
    if options.include_due:
        due.sort(key=lambda item: (item[0], item[1]))
        selected.extend(vocab for _, _, vocab in due)

    new_quota = 0
    if options.include_new:
        per_day = options.max_new_words
        if per_day is None:
            per_day = settings.new_words_per_day
        if per_day is None:
            per_day = DEFAULT_NEW_WORDS_PER_DAY
        new_quota = max(0, per_day - _introduced_today(words_progress, now))
        selected.extend(new[:new_quota])

    selected = selected[:max_words]
    logger.info(
        f"Selected {len(selected)} words: {len(due)} due, {len(new)} new "
        f"(quota {new_quota}), limit {max_words}"
    )
    due_count = sum(1 for vocab in selected if vocab.id in progress_by_id)
    words_selected.labels(bucket="due").inc(due_count)
    words_selected.labels(bucket="new").inc(len(selected) - due_count)

    if options.shuffle:
        (rng or random).shuffle(selected)
    return selected


def select_due_words(
    vocabulary: List[Vocabulary], words_progress: List[WordProgress], now: Optional[datetime] = None
) -> List[Vocabulary]:
    """Select only words that are due for review, most overdue first."""
    now = now or datetime.now(UTC)
    progress_by_id = _progress_map(words_progress)
    due = [
        vocab for vocab in vocabulary
        if vocab.id in progress_by_id and progress_by_id[vocab.id].next_review_date <= now
    ]
    return sorted(due, key=lambda vocab: progress_by_id[vocab.id].next_review_date)


def select_new_words(
    vocabulary: List[Vocabulary], words_progress: List[WordProgress], max_words: int = DEFAULT_NEW_WORDS_PER_DAY
) -> List[Vocabulary]:
    """Select only words that have never been practiced."""
    progress_by_id = _progress_map(words_progress)
    return [vocab for vocab in vocabulary if vocab.id not in progress_by_id][:max_words]


def select_words_from_box(
    vocabulary: List[Vocabulary],
    words_progress: List[WordProgress],
    box_number: int,
    max_words: Optional[int] = None,
) -> List[Vocabulary]:
    """Select words currently sitting in a specific Leitner box."""
    in_box = {wp.vocabulary_id for wp in words_progress if wp.leitner_box == box_number}
    selected = [vocab for vocab in vocabulary if vocab.id in in_box]
    return selected[:max_words] if max_words is not None else selected


def get_word_statistics(
    vocabulary: List[Vocabulary], words_progress: List[WordProgress], now: Optional[datetime] = None
) -> Dict[str, int]:
    """Get statistics about the words available for practice."""
    now = now or datetime.now(UTC)
    progress_by_id = _progress_map(words_progress)
    return {
        "total": len(vocabulary),
        "due_for_review": sum(1 for wp in words_progress if wp.next_review_date <= now),
        "new_words": sum(1 for vocab in vocabulary if vocab.id not in progress_by_id),
        "practiced_words": len(words_progress),
    }
