"""Progress service for storing learning settings, word progress and sessions."""
import logging
from datetime import UTC, timedelta
from typing import List, Optional

from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vocabox.config import settings as app_settings
from vocabox.models.base import as_utc
from vocabox.models.models import (
    CompletedModeRecord,
    LearningSettingsRecord,
    PracticeProgressRecord,
    PracticeResultRecord,
    PracticeSessionRecord,
    WordProgressRecord,
)
from vocabox.models.practice_models import (
    LearningSettings,
    PracticeMode,
    PracticeSessionSummary,
    UserPracticeProgress,
    WordProgress,
    parse_algorithm,
)
from vocabox.monitoring import progress_writes
from vocabox.services.box_scheduler import validate_box_count
from vocabox.services.session_manager import SessionManager

logger = logging.getLogger(__name__)

_SETTINGS_FIELDS = (
    "sr_algorithm",
    "leitner_box_count",
    "consecutive_correct_required",
    "show_failed_words_in_session",
    "new_words_per_day",
    "daily_review_limit",
    "auto_advance_timeout_seconds",
    "show_hint_in_fillword",
    "demote_on_failure",
)


class ProgressService:
    """Persists what the learning engine computes.

    The engine itself never writes; this service is the collaborator that
    loads progress for Word Selection and the Session Manager and stores
    their results afterwards.
    """

    def __init__(self, db: Session):
        """Initialize the service with a database session."""
        self.db = db

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error committing learning state: {e}")
            self.db.rollback()
            raise

    # Learning settings

    def _get_settings_record(self, user_id: str) -> Optional[LearningSettingsRecord]:
        return (
            self.db.query(LearningSettingsRecord)
            .filter(LearningSettingsRecord.user_id == user_id)
            .first()
        )

    @staticmethod
    def _to_settings(record: LearningSettingsRecord) -> LearningSettings:
        return LearningSettings(**{name: getattr(record, name) for name in _SETTINGS_FIELDS})

    def get_or_create_learning_settings(self, user_id: str) -> LearningSettings:
        """Get the learner's settings, creating them from configured defaults on first use."""
        record = self._get_settings_record(user_id)
        if record is None:
            defaults = app_settings.learning
            record = LearningSettingsRecord(
                user_id=user_id,
                **{name: getattr(defaults, name) for name in _SETTINGS_FIELDS},
            )
            self.db.add(record)
            self._commit()
            self.db.refresh(record)
            logger.info(f"Created learning settings for user {user_id}")
        return self._to_settings(record)

    def update_learning_settings(self, user_id: str, **changes) -> LearningSettings:
        """Update selected settings fields after validating them."""
        unknown = set(changes) - set(_SETTINGS_FIELDS)
        if unknown:
            raise ValueError(f"Unknown learning settings: {', '.join(sorted(unknown))}")
        if "sr_algorithm" in changes:
            changes["sr_algorithm"] = parse_algorithm(changes["sr_algorithm"]).value
        if "leitner_box_count" in changes:
            validate_box_count(changes["leitner_box_count"])
        if changes.get("consecutive_correct_required", 1) < 1:
            raise ValueError("consecutive_correct_required must be positive")

        self.get_or_create_learning_settings(user_id)
        record = self._get_settings_record(user_id)
        for key, value in changes.items():
            setattr(record, key, value)
        self._commit()
        self.db.refresh(record)
        return self._to_settings(record)

    # Word progress

    @staticmethod
    def _to_word_progress(record: WordProgressRecord) -> WordProgress:
        return WordProgress(
            vocabulary_id=record.vocabulary_id,
            word=record.word,
            language=record.language,
            next_review_date=as_utc(record.next_review_date),
            created_at=as_utc(record.created_at),
            updated_at=as_utc(record.updated_at),
            last_practiced=as_utc(record.last_practiced),
            leitner_box=record.leitner_box,
            easiness_factor=record.easiness_factor,
            interval_days=record.interval_days,
            last_interval_days=record.last_interval_days,
            consecutive_correct_count=record.consecutive_correct_count,
            total_reviews=record.total_reviews,
            correct_count=record.correct_count,
            incorrect_count=record.incorrect_count,
            completed_modes_in_cycle={PracticeMode(m.practice_mode) for m in record.completed_modes},
        )

    def _get_progress_record(self, user_id: str, language: str) -> Optional[PracticeProgressRecord]:
        return (
            self.db.query(PracticeProgressRecord)
            .filter(
                and_(
                    PracticeProgressRecord.user_id == user_id,
                    PracticeProgressRecord.language == language,
                )
            )
            .first()
        )

    def get_practice_progress(self, user_id: str, language: str) -> UserPracticeProgress:
        """Get every word progress record and the practice totals for a language."""
        records = (
            self.db.query(WordProgressRecord)
            .filter(
                and_(
                    WordProgressRecord.user_id == user_id,
                    WordProgressRecord.language == language,
                )
            )
            .order_by(WordProgressRecord.id)
            .all()
        )
        progress = UserPracticeProgress(
            language=language,
            words_progress=[self._to_word_progress(record) for record in records],
        )
        totals = self._get_progress_record(user_id, language)
        if totals is not None:
            progress.total_sessions = totals.total_sessions
            progress.total_words_practiced = totals.total_words_practiced
            progress.current_streak = totals.current_streak
            progress.longest_streak = totals.longest_streak
            progress.last_practice_date = as_utc(totals.last_practice_date)
        logger.debug(f"Loaded {len(records)} progress records for user {user_id} ({language})")
        return progress

    def _write_word_progress(self, user_id: str, progress: WordProgress) -> WordProgressRecord:
        record = (
            self.db.query(WordProgressRecord)
            .filter(
                and_(
                    WordProgressRecord.user_id == user_id,
                    WordProgressRecord.language == progress.language,
                    WordProgressRecord.vocabulary_id == progress.vocabulary_id,
                )
            )
            .first()
        )
        if record is None:
            record = WordProgressRecord(
                user_id=user_id,
                language=progress.language,
                vocabulary_id=progress.vocabulary_id,
                created_at=progress.created_at,
            )
            self.db.add(record)

        record.word = progress.word
        record.correct_count = progress.correct_count
        record.incorrect_count = progress.incorrect_count
        record.total_reviews = progress.total_reviews
        record.mastery_level = progress.mastery_level
        record.next_review_date = progress.next_review_date
        record.interval_days = progress.interval_days
        record.easiness_factor = progress.easiness_factor
        record.consecutive_correct_count = progress.consecutive_correct_count
        record.leitner_box = progress.leitner_box
        record.last_interval_days = progress.last_interval_days
        record.last_practiced = progress.last_practiced
        record.updated_at = progress.updated_at

        stored = {m.practice_mode: m for m in record.completed_modes}
        wanted = {mode.value for mode in progress.completed_modes_in_cycle}
        for mode_value, mode_record in stored.items():
            if mode_value not in wanted:
                record.completed_modes.remove(mode_record)
        for mode_value in sorted(wanted - set(stored)):
            record.completed_modes.append(CompletedModeRecord(practice_mode=mode_value))

        progress_writes.inc()
        return record

    def update_practice_progress(self, user_id: str, progress: WordProgress) -> None:
        """Insert or update one word progress record and its completed modes."""
        self._write_word_progress(user_id, progress)
        self._commit()

    def save_session_progress(self, user_id: str, session: SessionManager) -> int:
        """Persist the progress a tracked session produced; study runs are discarded."""
        if not session.track_progress:
            logger.info(f"Study session for user {user_id}: progress discarded")
            return 0
        updated = session.get_updated_word_progress()
        for progress in updated:
            self._write_word_progress(user_id, progress)
        self._commit()
        logger.info(f"Saved {len(updated)} progress records for user {user_id}")
        return len(updated)

    # Practice sessions

    def create_practice_session(self, user_id: str, summary: PracticeSessionSummary) -> PracticeSessionRecord:
        """Store a session summary and update the per-language totals and streak."""
        session_record = PracticeSessionRecord(
            user_id=user_id,
            collection_id=summary.collection_id,
            mode=summary.mode.value,
            language=summary.language,
            total_questions=summary.total_questions,
            correct_answers=summary.correct_answers,
            started_at=summary.started_at,
            completed_at=summary.completed_at,
            duration_seconds=summary.duration_seconds,
        )
        session_record.results = [
            PracticeResultRecord(
                vocabulary_id=result.vocabulary_id,
                word=result.word,
                correct=result.correct,
                practice_mode=result.mode.value,
                time_spent_seconds=result.time_spent_seconds,
                order_index=index,
            )
            for index, result in enumerate(summary.results)
        ]
        self.db.add(session_record)

        totals = self._get_progress_record(user_id, summary.language)
        if totals is None:
            totals = PracticeProgressRecord(
                user_id=user_id,
                language=summary.language,
                total_sessions=0,
                total_words_practiced=0,
                current_streak=0,
                longest_streak=0,
            )
            self.db.add(totals)

        practiced_on = summary.completed_at.astimezone(UTC).date()
        last = as_utc(totals.last_practice_date)
        if last is None:
            totals.current_streak = 1
        else:
            last_day = last.date()
            if last_day == practiced_on:
                totals.current_streak = max(totals.current_streak, 1)
            elif last_day == practiced_on - timedelta(days=1):
                totals.current_streak += 1
            else:
                totals.current_streak = 1
        totals.longest_streak = max(totals.longest_streak, totals.current_streak)
        totals.total_sessions += 1
        totals.total_words_practiced += len({result.vocabulary_id for result in summary.results})
        totals.last_practice_date = summary.completed_at

        self._commit()
        self.db.refresh(session_record)
        logger.info(
            f"Stored {summary.mode.value} session for user {user_id}: "
            f"{summary.correct_answers}/{summary.total_questions} correct"
        )
        return session_record

    def get_practice_sessions(self, user_id: str, language: Optional[str] = None) -> List[PracticeSessionRecord]:
        """Get stored sessions, newest first."""
        query = self.db.query(PracticeSessionRecord).filter(PracticeSessionRecord.user_id == user_id)
        if language is not None:
            query = query.filter(PracticeSessionRecord.language == language)
        return query.order_by(PracticeSessionRecord.completed_at.desc(), PracticeSessionRecord.id.desc()).all()
