"""Tests for the practice session manager."""
import random
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, List

import pytest

from vocabox.models.practice_models import (
    LearningSettings,
    PracticeMode,
    UnknownAlgorithmError,
    Vocabulary,
    WordProgress,
    WordStatus,
    create_initial_word_progress,
)
from vocabox.services.session_manager import (
    MAX_PRESENTATIONS_PER_WORD,
    MAX_REQUEUES_PER_WORD,
    SessionManager,
    SessionRegistry,
    SessionState,
    UnknownWordError,
    determine_word_status,
)


class Clock:
    """Manually advanced clock for session timing."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def tick(self, seconds: int = 5) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def clock(now: datetime) -> Clock:
    return Clock(now)


@pytest.fixture
def words(make_vocabulary: Callable[[int], List[Vocabulary]]) -> List[Vocabulary]:
    return make_vocabulary(3)


@pytest.fixture
def reviewed(words: List[Vocabulary], now: datetime) -> List[WordProgress]:
    """Due progress in box 4, so each word needs one correct answer."""
    return [
        replace(
            create_initial_word_progress(vocab.id, vocab.word, "en", now - timedelta(days=20)),
            leitner_box=4,
            total_reviews=6,
            correct_count=6,
        )
        for vocab in words
    ]


def _session(words: List[Vocabulary], settings: LearningSettings, clock: Clock,
             mode: PracticeMode = PracticeMode.FLASHCARD, progress: List[WordProgress] = None,
             track_progress: bool = True) -> SessionManager:
    return SessionManager(
        words=words,
        words_progress=progress or [],
        settings=settings,
        mode=mode,
        collection_id="collection-1",
        language="en",
        track_progress=track_progress,
        now_fn=clock,
    )


def _run(session: SessionManager, clock: Clock, answer: Callable[[Vocabulary], bool]) -> int:
    """Drive a session to completion; returns the number of presented words."""
    shown = 0
    while (word := session.get_next_word()) is not None:
        shown += 1
        clock.tick()
        if answer(word):
            session.handle_correct_answer(word, time_spent_seconds=2.5)
        else:
            session.handle_incorrect_answer(word, time_spent_seconds=4.0)
    return shown


def test_all_correct_session(words: List[Vocabulary], reviewed: List[WordProgress],
                             learning_settings: LearningSettings, clock: Clock) -> None:
    """Test a session where every answer is correct."""
    session = _session(words, learning_settings, clock, progress=reviewed)
    assert session.state == SessionState.IDLE

    shown = _run(session, clock, lambda word: True)

    assert shown == 3
    assert session.is_session_complete()
    assert session.state == SessionState.COMPLETE
    stats = session.get_statistics()
    assert stats["total_questions"] == 3
    assert stats["correct_answers"] == 3
    assert stats["accuracy"] == 100
    assert stats["words_completed"] == 3
    assert stats["words_remaining"] == 0
    assert stats["duration_seconds"] == 10
    assert session.get_progress_percentage() == 100

    updated = session.get_updated_word_progress()
    assert len(updated) == 3
    assert all(wp.completed_modes_in_cycle == {PracticeMode.FLASHCARD} for wp in updated)
    assert all(wp.total_reviews == 7 for wp in updated)


def test_new_words_need_three_correct_answers(words: List[Vocabulary], learning_settings: LearningSettings,
                                              clock: Clock) -> None:
    """Test new words come back until they are answered correctly three times."""
    session = _session(words, learning_settings, clock)
    order = []
    while (word := session.get_next_word()) is not None:
        order.append(word.id)
        session.handle_correct_answer(word)

    assert order == [vocab.id for vocab in words] * 3
    for vocab in words:
        tracker = session.get_word_repetition_progress(vocab.id)
        assert tracker.required_repetitions == 3
        assert tracker.completed_repetitions == 3
        assert tracker.requeue_count == 0
    updated = session.get_updated_word_progress()
    assert all(wp.total_reviews == 3 and wp.leitner_box == 1 for wp in updated)


def test_requirement_follows_word_status(make_vocabulary: Callable[[int], List[Vocabulary]],
                                         learning_settings: LearningSettings, clock: Clock,
                                         now: datetime) -> None:
    """Test each word's repetition requirement comes from its status at session start."""
    words = make_vocabulary(4)
    progress = [
        replace(create_initial_word_progress(vocab.id, vocab.word, "en", now), leitner_box=box, total_reviews=4)
        for vocab, box in zip(words[1:], [2, 4, 5])
    ]
    session = _session(words, learning_settings, clock, progress=progress)

    required = [session.get_word_repetition_progress(vocab.id).required_repetitions for vocab in words]
    assert required == [3, 2, 1, 1]
    assert [session.get_word_status(vocab.id) for vocab in words] == [
        WordStatus.NEW, WordStatus.STILL_LEARNING, WordStatus.ALMOST_DONE, WordStatus.MASTERED,
    ]


def test_failure_resets_repetitions(learning_settings: LearningSettings, clock: Clock) -> None:
    """Test a wrong answer starts the word's repetition count over."""
    word = Vocabulary(id="w1", word="apple")
    answers = iter([True, False, True, True, True])
    session = _session([word], learning_settings, clock)

    assert _run(session, clock, lambda w: next(answers)) == 5
    tracker = session.get_word_repetition_progress("w1")
    assert tracker.completed_repetitions == 3
    assert tracker.failure_count == 1
    assert tracker.requeue_count == 1


def test_box_change_lowers_requirement(learning_settings: LearningSettings, clock: Clock, now: datetime) -> None:
    """Test a word that moves up mid-session may leave the queue early."""
    learning_settings.leitner_box_count = 3
    word = Vocabulary(id="w1", word="apple")
    learning = replace(
        create_initial_word_progress("w1", "apple", "en", now),
        consecutive_correct_count=2,
        total_reviews=4,
        completed_modes_in_cycle={PracticeMode.FLASHCARD, PracticeMode.FILL_WORD},
    )
    session = _session([word], learning_settings, clock, mode=PracticeMode.MULTIPLE_CHOICE, progress=[learning])
    assert session.get_word_repetition_progress("w1").required_repetitions == 2

    session.get_next_word()
    result = session.handle_correct_answer(word)

    assert result.box_transition
    assert session.get_word_status("w1") == WordStatus.ALMOST_DONE
    assert session.get_word_repetition_progress("w1").required_repetitions == 1
    assert session.get_next_word() is None
    assert session.is_session_complete()


def test_presentations_are_capped(learning_settings: LearningSettings, clock: Clock) -> None:
    """Test a word alternating between right and wrong stops after the presentation cap."""
    word = Vocabulary(id="w1", word="apple")
    answers = iter([True, True, False] * 4)
    session = _session([word], learning_settings, clock)

    assert _run(session, clock, lambda w: next(answers)) == MAX_PRESENTATIONS_PER_WORD
    tracker = session.get_word_repetition_progress("w1")
    assert tracker.times_shown == MAX_PRESENTATIONS_PER_WORD
    assert tracker.completed_repetitions < tracker.required_repetitions
    assert session.is_session_complete()


def test_first_answer_creates_progress(words: List[Vocabulary], learning_settings: LearningSettings,
                                       clock: Clock) -> None:
    """Test a word without progress gets an initial record on its first answer."""
    session = _session(words, learning_settings, clock)
    assert session.get_word_progress(words[0].id) is None

    word = session.get_next_word()
    assert session.state == SessionState.IN_PROGRESS
    result = session.handle_correct_answer(word)

    progress = session.get_word_progress(word.id)
    assert progress.created_at == clock.current
    assert progress.leitner_box == 1
    assert result.interval_days == 1


def test_incorrect_answer_requeues_word(words: List[Vocabulary], reviewed: List[WordProgress],
                                        learning_settings: LearningSettings, clock: Clock) -> None:
    """Test a failed word comes back at the end of the queue."""
    session = _session(words, learning_settings, clock, progress=reviewed)
    first = session.get_next_word()
    result = session.handle_incorrect_answer(first)

    assert result.new_box == 3
    assert session.get_word_repetition_progress(first.id).required_repetitions == 1
    assert session.get_remaining_words_count() == 3
    order = [first.id]
    while (word := session.get_next_word()) is not None:
        order.append(word.id)
        session.handle_correct_answer(word)

    assert order == [words[0].id, words[1].id, words[2].id, words[0].id]
    assert session.get_word_repetition_progress(first.id).requeue_count == 1
    assert session.get_word_repetition_progress(first.id).times_shown == 2
    assert session.get_statistics()["accuracy"] == 75


def test_no_requeue_when_disabled(words: List[Vocabulary], learning_settings: LearningSettings,
                                  clock: Clock) -> None:
    learning_settings.show_failed_words_in_session = False
    session = _session(words, learning_settings, clock)
    assert _run(session, clock, lambda word: False) == 3
    assert session.get_statistics()["incorrect_answers"] == 3


def test_all_incorrect_session_terminates(words: List[Vocabulary], learning_settings: LearningSettings,
                                          clock: Clock) -> None:
    """Test re-queueing is bounded when every answer is wrong."""
    session = _session(words, learning_settings, clock)
    shown = _run(session, clock, lambda word: False)

    assert shown == len(words) * (1 + MAX_REQUEUES_PER_WORD)
    assert session.is_session_complete()
    for word in words:
        tracker = session.get_word_repetition_progress(word.id)
        assert tracker.requeue_count == MAX_REQUEUES_PER_WORD
        assert tracker.failure_count == 1 + MAX_REQUEUES_PER_WORD


def test_random_sessions_terminate(make_vocabulary: Callable[[int], List[Vocabulary]],
                                   learning_settings: LearningSettings, clock: Clock) -> None:
    """Test random answer sequences always finish within the presentation bound."""
    rng = random.Random(99)
    for _ in range(25):
        words = make_vocabulary(rng.randint(1, 8))
        session = _session(words, learning_settings, clock, mode=rng.choice(list(PracticeMode)))
        shown = _run(session, clock, lambda word: rng.random() < 0.4)
        assert shown <= len(words) * MAX_PRESENTATIONS_PER_WORD
        assert session.is_session_complete()
        for word in words:
            tracker = session.get_word_repetition_progress(word.id)
            assert tracker.times_shown <= MAX_PRESENTATIONS_PER_WORD
            assert tracker.requeue_count <= MAX_REQUEUES_PER_WORD
        for wp in session.get_updated_word_progress():
            assert 1 <= wp.leitner_box <= learning_settings.leitner_box_count
            assert 1.3 <= wp.easiness_factor <= 2.5


def test_three_flashcard_answers_do_not_advance(learning_settings: LearningSettings,
                                                clock: Clock) -> None:
    """Test the mode gate holds a new word after three correct flashcard answers."""
    word = Vocabulary(id="w1", word="apple")
    session = _session([word], learning_settings, clock)
    assert _run(session, clock, lambda w: True) == 3
    progress = session.get_updated_word_progress()

    assert progress[0].leitner_box == 1
    assert progress[0].consecutive_correct_count == 3
    assert progress[0].completed_modes_in_cycle == {PracticeMode.FLASHCARD}


def test_completing_every_mode_advances_box(learning_settings: LearningSettings, clock: Clock) -> None:
    """Test the word reaches box 2 once every mode has been completed."""
    word = Vocabulary(id="w1", word="apple")
    modes = [PracticeMode.FLASHCARD] * 3 + [PracticeMode.FILL_WORD, PracticeMode.MULTIPLE_CHOICE]
    progress: List[WordProgress] = []
    for mode in modes:
        session = _session([word], learning_settings, clock, mode=mode, progress=progress)
        session.get_next_word()
        result = session.handle_correct_answer(word)
        progress = session.get_updated_word_progress()

    assert result.box_transition
    assert progress[0].leitner_box == 2
    assert progress[0].completed_modes_in_cycle == set()
    assert progress[0].next_review_date == clock.current + timedelta(days=3)
    assert session.get_word_status(word.id) == WordStatus.STILL_LEARNING


def test_study_session_never_advances(learning_settings: LearningSettings, clock: Clock, now: datetime) -> None:
    """Test untracked sessions do not add modes and never move a word up."""
    word = Vocabulary(id="w1", word="apple")
    almost = replace(
        create_initial_word_progress("w1", "apple", "en", now),
        consecutive_correct_count=5,
        completed_modes_in_cycle={PracticeMode.FLASHCARD, PracticeMode.FILL_WORD},
        total_reviews=5,
    )
    session = _session([word], learning_settings, clock, mode=PracticeMode.MULTIPLE_CHOICE,
                       progress=[almost], track_progress=False)
    session.get_next_word()
    result = session.handle_correct_answer(word)

    assert not result.box_transition
    assert result.progress.leitner_box == 1
    assert PracticeMode.MULTIPLE_CHOICE not in result.progress.completed_modes_in_cycle
    assert almost.completed_modes_in_cycle == {PracticeMode.FLASHCARD, PracticeMode.FILL_WORD}


def test_given_progress_is_not_mutated(learning_settings: LearningSettings, clock: Clock, now: datetime) -> None:
    word = Vocabulary(id="w1", word="apple")
    stored = replace(create_initial_word_progress("w1", "apple", "en", now), leitner_box=9)
    session = _session([word], learning_settings, clock, progress=[stored])
    assert session.get_word_progress("w1").leitner_box == 5

    session.get_next_word()
    session.handle_incorrect_answer(word)
    assert stored.leitner_box == 9
    assert stored.total_reviews == 0


def test_unknown_word_is_rejected(words: List[Vocabulary], learning_settings: LearningSettings,
                                  clock: Clock) -> None:
    """Test answers for words outside the session change nothing."""
    session = _session(words, learning_settings, clock)
    session.get_next_word()

    with pytest.raises(UnknownWordError):
        session.handle_correct_answer("missing")
    with pytest.raises(ValueError):
        session.handle_incorrect_answer(Vocabulary(id="other", word="pear"))

    assert session.get_session_results() == []
    assert session.get_updated_word_progress() == []
    assert session.get_remaining_words_count() == 3


def test_answer_after_completion_is_rejected(words: List[Vocabulary], reviewed: List[WordProgress],
                                             learning_settings: LearningSettings, clock: Clock) -> None:
    session = _session(words, learning_settings, clock, progress=reviewed)
    _run(session, clock, lambda word: True)

    with pytest.raises(UnknownWordError):
        session.handle_correct_answer(words[0])
    assert len(session.get_session_results()) == 3


def test_repeated_answer_is_rejected(words: List[Vocabulary], learning_settings: LearningSettings,
                                     clock: Clock) -> None:
    """Test a second answer for the same presentation changes nothing."""
    session = _session(words, learning_settings, clock)
    word = session.get_next_word()
    session.handle_correct_answer(word)

    with pytest.raises(UnknownWordError):
        session.handle_correct_answer(word)
    with pytest.raises(UnknownWordError):
        session.handle_incorrect_answer(word)

    assert len(session.get_session_results()) == 1
    assert session.get_word_progress(word.id).consecutive_correct_count == 1
    assert session.get_word_repetition_progress(word.id).times_correct == 1
    assert session.get_word_repetition_progress(word.id).failure_count == 0


def test_answer_before_presentation_is_rejected(words: List[Vocabulary], learning_settings: LearningSettings,
                                                clock: Clock) -> None:
    """Test only the word currently shown can be answered."""
    session = _session(words, learning_settings, clock)
    with pytest.raises(UnknownWordError):
        session.handle_correct_answer(words[0])

    assert session.get_next_word() == words[0]
    with pytest.raises(UnknownWordError):
        session.handle_correct_answer(words[1])

    assert session.get_session_results() == []
    assert session.get_updated_word_progress() == []
    assert session.get_word_repetition_progress(words[1].id).times_shown == 0
    session.handle_correct_answer(words[0])
    assert [result.vocabulary_id for result in session.get_session_results()] == [words[0].id]


def test_empty_session_is_complete(learning_settings: LearningSettings, clock: Clock) -> None:
    session = _session([], learning_settings, clock)
    assert session.state == SessionState.COMPLETE
    assert session.is_session_complete()
    assert session.get_next_word() is None
    assert session.get_progress_percentage() == 100
    assert session.get_statistics()["accuracy"] == 0


def test_invalid_construction(words: List[Vocabulary], learning_settings: LearningSettings, clock: Clock) -> None:
    """Test configuration and input errors surface at construction."""
    with pytest.raises(ValueError):
        _session([Vocabulary(id=" ", word="blank")], learning_settings, clock)

    learning_settings.sr_algorithm = "unknown"
    with pytest.raises(UnknownAlgorithmError):
        _session(words, learning_settings, clock)


def test_skip_word(words: List[Vocabulary], reviewed: List[WordProgress], learning_settings: LearningSettings,
                   clock: Clock) -> None:
    """Test skipping drops every remaining occurrence of a word."""
    session = _session(words, learning_settings, clock, progress=reviewed)
    first = session.get_next_word()
    session.handle_incorrect_answer(first)
    session.skip_word(first)

    remaining = []
    while (word := session.get_next_word()) is not None:
        remaining.append(word.id)
        session.handle_correct_answer(word)
    assert remaining == [words[1].id, words[2].id]


def test_build_summary(words: List[Vocabulary], reviewed: List[WordProgress], learning_settings: LearningSettings,
                       clock: Clock) -> None:
    """Test the summary handed to the persistence layer."""
    session = _session(words, learning_settings, clock, mode=PracticeMode.FILL_WORD, progress=reviewed)
    _run(session, clock, lambda word: word.id != words[1].id)
    summary = session.build_summary()

    assert summary.mode == PracticeMode.FILL_WORD
    assert summary.collection_id == "collection-1"
    assert summary.total_questions == 3 + MAX_REQUEUES_PER_WORD
    assert summary.correct_answers == 2
    assert summary.results[0].vocabulary_id == words[0].id
    assert summary.completed_at - summary.started_at == timedelta(seconds=summary.duration_seconds)


def test_determine_word_status(now: datetime) -> None:
    progress = create_initial_word_progress("w1", "apple", "en", now)
    assert determine_word_status(None, 5) == WordStatus.NEW
    assert determine_word_status(progress, 5) == WordStatus.NEW
    reviewed = replace(progress, total_reviews=2)
    assert determine_word_status(reviewed, 5) == WordStatus.STILL_LEARNING
    assert determine_word_status(replace(reviewed, leitner_box=4), 5) == WordStatus.ALMOST_DONE
    assert determine_word_status(replace(reviewed, leitner_box=5), 5) == WordStatus.MASTERED

    middle = replace(reviewed, leitner_box=3)
    assert determine_word_status(middle, 5) == WordStatus.STILL_LEARNING
    assert determine_word_status(replace(middle, consecutive_correct_count=1), 5) == WordStatus.ALMOST_DONE
    assert determine_word_status(replace(middle, consecutive_correct_count=2), 5) == WordStatus.MASTERED

    assert determine_word_status(replace(reviewed, consecutive_correct_count=2), 3) == WordStatus.STILL_LEARNING
    assert determine_word_status(replace(reviewed, leitner_box=2), 3) == WordStatus.ALMOST_DONE
    assert determine_word_status(replace(reviewed, leitner_box=5, consecutive_correct_count=2), 7) == \
        WordStatus.MASTERED
    assert determine_word_status(replace(reviewed, leitner_box=6), 7) == WordStatus.ALMOST_DONE


def test_session_registry_replaces_unfinished(words: List[Vocabulary], learning_settings: LearningSettings,
                                             clock: Clock) -> None:
    """Test only one session per learner, language and mode is kept."""
    registry = SessionRegistry()
    first = registry.start("user-1", _session(words, learning_settings, clock))
    second = registry.start("user-1", _session(words, learning_settings, clock))
    other_mode = registry.start("user-1", _session(words, learning_settings, clock, mode=PracticeMode.FILL_WORD))

    assert registry.get("user-1", "en", PracticeMode.FLASHCARD) is second
    assert registry.get("user-1", "en", PracticeMode.FILL_WORD) is other_mode
    assert first is not second
    assert registry.finish("user-1", "en", PracticeMode.FLASHCARD) is second
    assert registry.get("user-1", "en", PracticeMode.FLASHCARD) is None


if __name__ == "__main__":
    pytest.main([__file__])
