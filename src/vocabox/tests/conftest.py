"""Test configuration."""
import os
import random
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Generator, List

import pytest
from dotenv import load_dotenv
from faker import Faker

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from sqlalchemy.orm import Session

from vocabox.models.base import Base, SessionLocal, engine, init_db
from vocabox.models.practice_models import LearningSettings, Vocabulary

fake = Faker()

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    """A fixed point in time so schedules are deterministic."""
    return NOW


@pytest.fixture
def learning_settings() -> LearningSettings:
    """Default learning settings, independent of the environment."""
    return LearningSettings(
        sr_algorithm="modifiedsm2",
        leitner_box_count=5,
        consecutive_correct_required=3,
        show_failed_words_in_session=True,
        new_words_per_day=20,
        daily_review_limit=100,
        auto_advance_timeout_seconds=2,
        show_hint_in_fillword=True,
        demote_on_failure=True,
    )


@pytest.fixture
def make_vocabulary() -> Callable[[int], List[Vocabulary]]:
    """Factory for vocabulary lists with unique ids."""
    def _make(count: int) -> List[Vocabulary]:
        return [
            Vocabulary(id=f"w{i}", word=fake.word(), language="en")
            for i in range(count)
        ]
    return _make


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    Base.metadata.drop_all(bind=engine)
    init_db()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
