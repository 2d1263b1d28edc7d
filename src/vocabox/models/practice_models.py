"""Models for practice-related data structures."""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Set

from vocabox.config import settings

DEFAULT_EASINESS_FACTOR = 2.5
MIN_EASINESS_FACTOR = 1.3
MAX_EASINESS_FACTOR = 2.5


class PracticeMode(Enum):
    """Practice formats a word can be answered in."""
    FLASHCARD = "flashcard"
    FILL_WORD = "fillword"
    MULTIPLE_CHOICE = "multiplechoice"


ALL_MODES: FrozenSet[PracticeMode] = frozenset(PracticeMode)


class SpacedRepetitionAlgorithm(Enum):
    """Available scheduling algorithms."""
    SM2 = "sm2"
    MODIFIED_SM2 = "modifiedsm2"
    SIMPLE = "simple"


class UnknownAlgorithmError(ValueError):
    """Raised when settings name an algorithm that does not exist."""


def parse_algorithm(value) -> SpacedRepetitionAlgorithm:
    """Parse an algorithm identifier, rejecting unknown values."""
    if isinstance(value, SpacedRepetitionAlgorithm):
        return value
    try:
        return SpacedRepetitionAlgorithm(value)
    except ValueError:
        raise UnknownAlgorithmError(f"Unknown spaced repetition algorithm: {value!r}") from None


class WordStatus(Enum):
    """Coarse learning status shown next to a word during a session."""
    NEW = "NEW"
    STILL_LEARNING = "STILL_LEARNING"
    ALMOST_DONE = "ALMOST_DONE"
    MASTERED = "MASTERED"


@dataclass
class LearningSettings:
    """Learner-owned configuration; read-only to the engine."""
    sr_algorithm: str = settings.learning.sr_algorithm
    leitner_box_count: int = settings.learning.leitner_box_count
    consecutive_correct_required: int = settings.learning.consecutive_correct_required
    show_failed_words_in_session: bool = settings.learning.show_failed_words_in_session
    new_words_per_day: Optional[int] = settings.learning.new_words_per_day
    daily_review_limit: Optional[int] = settings.learning.daily_review_limit
    auto_advance_timeout_seconds: int = settings.learning.auto_advance_timeout_seconds
    show_hint_in_fillword: bool = settings.learning.show_hint_in_fillword
    demote_on_failure: bool = settings.learning.demote_on_failure

    @property
    def algorithm(self) -> SpacedRepetitionAlgorithm:
        return parse_algorithm(self.sr_algorithm)


@dataclass(frozen=True)
class Vocabulary:
    """A vocabulary item as listed by the vocabulary collaborator."""
    id: str
    word: str
    language: str = "en"
    definitions: List[str] = field(default_factory=list)
    collection_id: Optional[str] = None

    def __hash__(self) -> int:
        return hash(self.id)


@dataclass
class WordProgress:
    """Per-word learning state of one learner in one language."""
    vocabulary_id: str
    word: str
    language: str
    next_review_date: datetime
    created_at: datetime
    updated_at: datetime
    last_practiced: datetime
    leitner_box: int = 1
    easiness_factor: float = DEFAULT_EASINESS_FACTOR
    interval_days: int = 1
    last_interval_days: int = 0
    consecutive_correct_count: int = 0
    total_reviews: int = 0
    correct_count: int = 0
    incorrect_count: int = 0
    completed_modes_in_cycle: Set[PracticeMode] = field(default_factory=set)

    @property
    def mastery_level(self) -> int:
        """Legacy 0-5 mastery score derived from the correct ratio."""
        total = self.correct_count + self.incorrect_count
        if total == 0:
            return 0
        return int(self.correct_count / total * 5 + 0.5)

    def copy(self) -> "WordProgress":
        """Return an independent copy, including the cycle set."""
        return replace(self, completed_modes_in_cycle=set(self.completed_modes_in_cycle))


def create_initial_word_progress(
    vocabulary_id: str, word: str, language: str, now: datetime
) -> WordProgress:
    """Create the progress record for a word answered for the first time."""
    return WordProgress(
        vocabulary_id=vocabulary_id,
        word=word,
        language=language,
        next_review_date=now,
        created_at=now,
        updated_at=now,
        last_practiced=now,
    )


@dataclass(frozen=True)
class SessionResult:
    """One answered question, in presentation order."""
    vocabulary_id: str
    word: str
    correct: bool
    mode: PracticeMode
    time_spent_seconds: float
    answered_at: datetime


@dataclass
class PracticeSessionSummary:
    """Aggregate record of a finished session handed to the persistence layer."""
    collection_id: str
    mode: PracticeMode
    language: str
    results: List[SessionResult]
    total_questions: int
    correct_answers: int
    started_at: datetime
    completed_at: datetime
    duration_seconds: int


@dataclass
class RepetitionProgress:
    """In-session repetition bookkeeping for a single word."""
    times_shown: int = 0
    times_correct: int = 0
    failure_count: int = 0
    requeue_count: int = 0
    required_repetitions: int = 1
    completed_repetitions: int = 0
    last_seen_at: Optional[datetime] = None


@dataclass
class SelectionOptions:
    """Options for building a practice word list."""
    include_due: bool = True
    include_new: bool = True
    max_words: Optional[int] = None
    shuffle: bool = False
    current_mode: Optional[PracticeMode] = None
    max_new_words: Optional[int] = None


@dataclass
class UserPracticeProgress:
    """Everything the persistence layer knows about a learner in one language."""
    language: str
    words_progress: List[WordProgress] = field(default_factory=list)
    total_sessions: int = 0
    total_words_practiced: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_practice_date: Optional[datetime] = None

    def progress_by_id(self) -> Dict[str, WordProgress]:
        return {wp.vocabulary_id: wp for wp in self.words_progress}
