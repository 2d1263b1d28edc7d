"""Database models for persisted learning state."""
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from vocabox.models.base import Base, TimestampMixin


class LearningSettingsRecord(Base, TimestampMixin):
    """Spaced repetition configuration of a learner."""

    __tablename__ = "learning_settings"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, unique=True, nullable=False, index=True)
    sr_algorithm = Column(String, nullable=False)
    leitner_box_count = Column(Integer, nullable=False)
    consecutive_correct_required = Column(Integer, nullable=False)
    show_failed_words_in_session = Column(Boolean, nullable=False)
    new_words_per_day = Column(Integer, nullable=True)
    daily_review_limit = Column(Integer, nullable=True)
    auto_advance_timeout_seconds = Column(Integer, default=2)
    show_hint_in_fillword = Column(Boolean, default=True)
    demote_on_failure = Column(Boolean, default=True)


class WordProgressRecord(Base, TimestampMixin):
    """Scheduling state of one word for one learner and language."""

    __tablename__ = "word_progress"
    __table_args__ = (UniqueConstraint("user_id", "language", "vocabulary_id"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    language = Column(String, nullable=False)
    vocabulary_id = Column(String, nullable=False)
    word = Column(String, nullable=False)
    correct_count = Column(Integer, default=0)
    incorrect_count = Column(Integer, default=0)
    total_reviews = Column(Integer, default=0)
    mastery_level = Column(Integer, default=0)
    next_review_date = Column(DateTime(timezone=True), nullable=False)
    interval_days = Column(Integer, default=1)
    easiness_factor = Column(Float, default=2.5)
    consecutive_correct_count = Column(Integer, default=0)
    leitner_box = Column(Integer, default=1)
    last_interval_days = Column(Integer, default=0)
    last_practiced = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    completed_modes = relationship(
        "CompletedModeRecord", back_populates="word_progress", cascade="all, delete-orphan"
    )


class CompletedModeRecord(Base):
    """A practice mode completed by a word in its current cycle."""

    __tablename__ = "word_progress_modes"
    __table_args__ = (UniqueConstraint("word_progress_id", "practice_mode"),)

    id = Column(Integer, primary_key=True)
    word_progress_id = Column(Integer, ForeignKey("word_progress.id"), nullable=False)
    practice_mode = Column(String, nullable=False)

    # Relationships
    word_progress = relationship("WordProgressRecord", back_populates="completed_modes")


class PracticeSessionRecord(Base, TimestampMixin):
    """Summary of a finished practice session."""

    __tablename__ = "practice_sessions"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    collection_id = Column(String, nullable=False)
    mode = Column(String, nullable=False)
    language = Column(String, nullable=False)
    total_questions = Column(Integer, nullable=False)
    correct_answers = Column(Integer, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=False)
    duration_seconds = Column(Integer, nullable=False)

    # Relationships
    results = relationship(
        "PracticeResultRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="PracticeResultRecord.order_index",
    )


class PracticeResultRecord(Base):
    """One answered question of a stored session."""

    __tablename__ = "practice_results"

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("practice_sessions.id"), nullable=False)
    vocabulary_id = Column(String, nullable=False)
    word = Column(String, nullable=False)
    correct = Column(Boolean, nullable=False)
    practice_mode = Column(String, nullable=False)
    time_spent_seconds = Column(Float, default=0.0)
    order_index = Column(Integer, nullable=False)

    # Relationships
    session = relationship("PracticeSessionRecord", back_populates="results")


class PracticeProgressRecord(Base, TimestampMixin):
    """Per-language practice totals and streaks of a learner."""

    __tablename__ = "practice_progress"
    __table_args__ = (UniqueConstraint("user_id", "language"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    language = Column(String, nullable=False)
    total_sessions = Column(Integer, default=0)
    total_words_practiced = Column(Integer, default=0)
    current_streak = Column(Integer, default=0)
    longest_streak = Column(Integer, default=0)
    last_practice_date = Column(DateTime(timezone=True), nullable=True)
