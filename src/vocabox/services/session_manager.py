"""Practice session state management."""
import logging
import threading
from datetime import UTC, datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

from vocabox.models.practice_models import (
    LearningSettings,
    PracticeMode,
    PracticeSessionSummary,
    RepetitionProgress,
    SessionResult,
    Vocabulary,
    WordProgress,
    WordStatus,
    create_initial_word_progress,
)
from vocabox.monitoring import (
    answers_total,
    box_transitions,
    requeued_words,
    session_duration,
    sessions_completed,
    sessions_started,
)
from vocabox.services.algorithms import ReviewResult, get_algorithm
from vocabox.services.box_scheduler import clamp_box, clamp_progress, validate_box_count

logger = logging.getLogger(__name__)

# A failed word is shown again at most this many times per session
MAX_REQUEUES_PER_WORD = 3
# Hard cap on presentations of one word, re-queues of any kind included
MAX_PRESENTATIONS_PER_WORD = 8

# Correct answers needed before a word leaves the session queue
REPETITION_REQUIREMENTS = {
    WordStatus.NEW: 3,
    WordStatus.STILL_LEARNING: 2,
    WordStatus.ALMOST_DONE: 1,
    WordStatus.MASTERED: 1,
}


class SessionState(Enum):
    """Lifecycle of a practice session."""
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class UnknownWordError(ValueError):
    """Raised when an answer does not match the word the session is waiting on."""


def determine_word_status(progress: Optional[WordProgress], box_count: int) -> WordStatus:
    """Map stored progress onto a coarse status.

    With five boxes: box 5, or box 3 with a streak of two, is mastered; box 4,
    or box 3 with a streak of one, is almost done. Three and seven boxes use
    the same rule relative to their last box.
    """
    if progress is None or progress.total_reviews == 0:
        return WordStatus.NEW
    box = clamp_box(progress.leitner_box, box_count)
    streak = min(max(progress.consecutive_correct_count, 0), 100)
    middle = box_count - 2 if box_count - 2 > 1 else None
    if box >= box_count or (box == middle and streak >= 2):
        return WordStatus.MASTERED
    if (box > 1 and box >= box_count - 1) or (box == middle and streak >= 1):
        return WordStatus.ALMOST_DONE
    return WordStatus.STILL_LEARNING


class SessionManager:
    """Runs one practice session: the word queue, answers, re-queues and results.

    The manager holds private copies of the progress records it was given and
    never writes anything itself. Callers read ``get_updated_word_progress()``
    and ``build_summary()`` once the session is over and persist them when
    ``track_progress`` is set; study runs (``track_progress=False``) still
    compute progress for feedback, but never add the session mode to a word's
    cycle, so no box can advance.

    A word stays in the queue until it has been answered correctly as many
    times in a row as its status requires (three for new words, down to one
    for words that are almost done). Failures send it back as well, up to
    ``MAX_REQUEUES_PER_WORD`` times, and no word is ever presented more than
    ``MAX_PRESENTATIONS_PER_WORD`` times.
    """

    def __init__(
        self,
        words: List[Vocabulary],
        words_progress: List[WordProgress],
        settings: LearningSettings,
        mode: PracticeMode,
        collection_id: str,
        language: str,
        track_progress: bool = True,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the session; raises for unknown algorithms and invalid words."""
        self.settings = settings
        self.algorithm = get_algorithm(settings)
        self.box_count = validate_box_count(settings.leitner_box_count)
        self.mode = PracticeMode(mode)
        self.collection_id = collection_id
        self.language = language
        self.track_progress = track_progress
        self._now = now_fn or (lambda: datetime.now(UTC))

        for vocab in words:
            if not vocab.id or not vocab.id.strip():
                raise ValueError(
                    f"Invalid vocabulary ID for word {vocab.word!r}. All words must have a valid ID."
                )

        self.words: Dict[str, Vocabulary] = {vocab.id: vocab for vocab in words}
        self.queue: List[Vocabulary] = list(words)
        self.position = 0
        self.current_word: Optional[Vocabulary] = None
        self._awaiting_answer = False
        self.initial_word_count = len(self.words)

        self.progress: Dict[str, WordProgress] = {
            wp.vocabulary_id: clamp_progress(wp, self.box_count) for wp in words_progress
        }
        self._updated_ids: List[str] = []
        self.results: List[SessionResult] = []
        self.word_status: Dict[str, WordStatus] = {
            vocab_id: determine_word_status(self.progress.get(vocab_id), self.box_count)
            for vocab_id in self.words
        }
        self.repetition: Dict[str, RepetitionProgress] = {
            vocab_id: RepetitionProgress(required_repetitions=REPETITION_REQUIREMENTS[status])
            for vocab_id, status in self.word_status.items()
        }

        self.started_at = self._now()
        self.state = SessionState.IDLE
        tracked = "yes" if track_progress else "no"
        sessions_started.labels(mode=self.mode.value, tracked=tracked).inc()
        logger.info(
            f"Session started: {len(self.queue)} words, mode {self.mode.value}, "
            f"algorithm {self.algorithm.type.value}, tracked {track_progress}"
        )
        if not self.queue:
            self._complete()

    def get_next_word(self) -> Optional[Vocabulary]:
        """Return the next word to present, or None once the queue is exhausted."""
        if self.position >= len(self.queue):
            self.current_word = None
            self._awaiting_answer = False
            self._complete()
            return None

        word = self.queue[self.position]
        self.position += 1
        self.current_word = word
        self._awaiting_answer = True
        self.state = SessionState.IN_PROGRESS

        tracker = self.repetition[word.id]
        tracker.times_shown += 1
        tracker.last_seen_at = self._now()
        return word

    def handle_correct_answer(self, word: Union[Vocabulary, str], time_spent_seconds: float = 0) -> ReviewResult:
        """Record a correct answer for a word in this session."""
        return self._handle_answer(word, True, time_spent_seconds)

    def handle_incorrect_answer(self, word: Union[Vocabulary, str], time_spent_seconds: float = 0) -> ReviewResult:
        """Record an incorrect answer; the word may be re-queued."""
        return self._handle_answer(word, False, time_spent_seconds)

    def _handle_answer(self, word: Union[Vocabulary, str], correct: bool, time_spent_seconds: float) -> ReviewResult:
        vocab_id = word.id if isinstance(word, Vocabulary) else word
        if vocab_id not in self.words:
            logger.warning(f"Answer rejected: word {vocab_id!r} is not part of this session")
            raise UnknownWordError(f"Word {vocab_id!r} is not part of this session")
        if self.state == SessionState.COMPLETE:
            logger.warning(f"Answer rejected: session already complete (word {vocab_id!r})")
            raise UnknownWordError(f"Session is complete; cannot answer word {vocab_id!r}")
        if not self._awaiting_answer or self.current_word is None or self.current_word.id != vocab_id:
            logger.warning(f"Answer rejected: word {vocab_id!r} is not the word awaiting an answer")
            raise UnknownWordError(f"Word {vocab_id!r} is not awaiting an answer")

        vocab = self.words[vocab_id]
        now = self._now()
        progress = self.progress.get(vocab_id)
        if progress is None:
            progress = create_initial_word_progress(vocab_id, vocab.word, self.language, now)

        if correct and self.track_progress:
            progress = progress.copy()
            progress.completed_modes_in_cycle.add(self.mode)

        result = self.algorithm.process(progress, correct, self.settings, now)
        self.progress[vocab_id] = result.progress
        if vocab_id not in self._updated_ids:
            self._updated_ids.append(vocab_id)

        self.results.append(
            SessionResult(
                vocabulary_id=vocab_id,
                word=vocab.word,
                correct=correct,
                mode=self.mode,
                time_spent_seconds=time_spent_seconds,
                answered_at=now,
            )
        )
        answers_total.labels(mode=self.mode.value, outcome="correct" if correct else "incorrect").inc()

        tracker = self.repetition[vocab_id]
        tracker.last_seen_at = now
        if correct:
            tracker.times_correct += 1
            tracker.completed_repetitions += 1
        else:
            tracker.failure_count += 1
            tracker.completed_repetitions = 0

        if result.box_transition:
            direction = "up" if result.new_box >= result.previous_box else "down"
            box_transitions.labels(algorithm=self.algorithm.type.value, direction=direction).inc()
            status = determine_word_status(result.progress, self.box_count)
            self.word_status[vocab_id] = status
            # Requirement only ever drops within a session
            tracker.required_repetitions = min(tracker.required_repetitions, REPETITION_REQUIREMENTS[status])
            logger.info(f"Word {vocab_id} moved from box {result.previous_box} to box {result.new_box}")

        if correct:
            if tracker.completed_repetitions < tracker.required_repetitions:
                self._requeue(vocab, tracker, "repetition")
        elif self.settings.show_failed_words_in_session:
            if tracker.requeue_count < MAX_REQUEUES_PER_WORD:
                if self._requeue(vocab, tracker, "failure"):
                    tracker.requeue_count += 1
            else:
                logger.debug(f"Word {vocab_id} reached the re-queue limit, not shown again")

        self._awaiting_answer = False
        if self.is_session_complete():
            self._complete()
        return result

    def _requeue(self, vocab: Vocabulary, tracker: RepetitionProgress, reason: str) -> bool:
        pending = sum(1 for queued in self.queue[self.position:] if queued.id == vocab.id)
        if tracker.times_shown + pending >= MAX_PRESENTATIONS_PER_WORD:
            logger.debug(f"Word {vocab.id} reached {MAX_PRESENTATIONS_PER_WORD} presentations, not shown again")
            return False
        self.queue.append(vocab)
        requeued_words.labels(mode=self.mode.value, reason=reason).inc()
        logger.debug(
            f"Re-queued word {vocab.id} ({reason}): {tracker.completed_repetitions}/"
            f"{tracker.required_repetitions} repetitions, {tracker.requeue_count} failure re-queues"
        )
        return True

    def skip_word(self, word: Union[Vocabulary, str]) -> None:
        """Drop every remaining occurrence of a word without recording an answer."""
        vocab_id = word.id if isinstance(word, Vocabulary) else word
        if vocab_id not in self.words:
            raise UnknownWordError(f"Word {vocab_id!r} is not part of this session")
        self.queue = self.queue[:self.position] + [
            vocab for vocab in self.queue[self.position:] if vocab.id != vocab_id
        ]
        if self.current_word is not None and self.current_word.id == vocab_id:
            self._awaiting_answer = False
        if self.is_session_complete():
            self._complete()

    def is_session_complete(self) -> bool:
        """True once every queued word, re-queues included, has been shown and answered."""
        if self.state == SessionState.COMPLETE:
            return True
        return self.position >= len(self.queue) and not self._awaiting_answer

    def _complete(self) -> None:
        if self.state == SessionState.COMPLETE:
            return
        self.state = SessionState.COMPLETE
        stats = self.get_statistics()
        tracked = "yes" if self.track_progress else "no"
        sessions_completed.labels(mode=self.mode.value, tracked=tracked).inc()
        session_duration.labels(mode=self.mode.value).observe(stats["duration_seconds"])
        logger.info(
            f"Session complete: {stats['total_questions']} questions, "
            f"{stats['accuracy']}% accuracy, {stats['words_completed']} words"
        )

    def _pending_ids(self) -> set:
        pending = {vocab.id for vocab in self.queue[self.position:]}
        if self._awaiting_answer and self.current_word is not None:
            pending.add(self.current_word.id)
        return pending

    def _completed_ids(self) -> set:
        answered = {result.vocabulary_id for result in self.results}
        return answered - self._pending_ids()

    def _first_and_last_answer(self) -> Tuple[Optional[datetime], Optional[datetime]]:
        if not self.results:
            return None, None
        return self.results[0].answered_at, self.results[-1].answered_at

    def get_statistics(self) -> Dict[str, int]:
        """Get session statistics."""
        total = len(self.results)
        correct = sum(1 for result in self.results if result.correct)
        first, last = self._first_and_last_answer()
        duration = int((last - first).total_seconds()) if first is not None else 0
        return {
            "total_questions": total,
            "correct_answers": correct,
            "incorrect_answers": total - correct,
            "accuracy": round(correct / total * 100) if total else 0,
            "words_completed": len(self._completed_ids()),
            "words_remaining": self.get_remaining_words_count(),
            "duration_seconds": duration,
        }

    def get_session_results(self) -> List[SessionResult]:
        """Get the answers of this session in presentation order."""
        return list(self.results)

    def get_updated_word_progress(self) -> List[WordProgress]:
        """Get copies of every progress record changed during this session.

        Safe to call repeatedly, e.g. to retry a failed write.
        """
        return [self.progress[vocab_id].copy() for vocab_id in self._updated_ids]

    def get_remaining_words_count(self) -> int:
        return len(self._pending_ids())

    def get_total_words_count(self) -> int:
        return self.initial_word_count

    def get_progress_percentage(self) -> int:
        """Share of distinct session words that are done."""
        total = self.get_total_words_count()
        if total == 0:
            return 100
        return round(len(self._completed_ids()) / total * 100)

    def get_word_status(self, vocabulary_id: str) -> WordStatus:
        return self.word_status.get(vocabulary_id, WordStatus.NEW)

    def get_word_repetition_progress(self, vocabulary_id: str) -> RepetitionProgress:
        tracker = self.repetition.get(vocabulary_id)
        if tracker is None:
            return RepetitionProgress()
        return RepetitionProgress(**vars(tracker))

    def get_word_progress(self, vocabulary_id: str) -> Optional[WordProgress]:
        """Current in-session progress of a word, for box indicators and similar feedback."""
        progress = self.progress.get(vocabulary_id)
        return progress.copy() if progress is not None else None

    def build_summary(self) -> PracticeSessionSummary:
        """Build the aggregate record handed to ``create_practice_session``."""
        stats = self.get_statistics()
        first, last = self._first_and_last_answer()
        return PracticeSessionSummary(
            collection_id=self.collection_id,
            mode=self.mode,
            language=self.language,
            results=self.get_session_results(),
            total_questions=stats["total_questions"],
            correct_answers=stats["correct_answers"],
            started_at=first or self.started_at,
            completed_at=last or self.started_at,
            duration_seconds=stats["duration_seconds"],
        )


class SessionRegistry:
    """Keeps at most one active session per (learner, language, mode).

    Starting a new session for the same key discards the previous one
    without persisting anything.
    """

    def __init__(self):
        self._sessions: Dict[Tuple[str, str, PracticeMode], SessionManager] = {}
        self._lock = threading.Lock()

    def start(self, user_id: str, session: SessionManager) -> SessionManager:
        key = (user_id, session.language, session.mode)
        with self._lock:
            previous = self._sessions.get(key)
            if previous is not None and not previous.is_session_complete():
                logger.info(
                    f"Discarding unfinished session for user {user_id}, "
                    f"language {session.language}, mode {session.mode.value}"
                )
            self._sessions[key] = session
        return session

    def get(self, user_id: str, language: str, mode: PracticeMode) -> Optional[SessionManager]:
        return self._sessions.get((user_id, language, PracticeMode(mode)))

    def finish(self, user_id: str, language: str, mode: PracticeMode) -> Optional[SessionManager]:
        with self._lock:
            return self._sessions.pop((user_id, language, PracticeMode(mode)), None)
