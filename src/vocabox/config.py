"""Configuration settings for the learning engine."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Define base directory
BASE_DIR = Path(__file__).parent.parent.parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(BASE_DIR / env_file)

# Spaced repetition settings
SUPPORTED_ALGORITHMS = ("sm2", "modifiedsm2", "simple")
SUPPORTED_BOX_COUNTS = (3, 5, 7)


def _get_bool(name: str, default: str) -> bool:
    """Read a boolean flag from the environment."""
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _get_optional_int(name: str, default: Optional[str]) -> Optional[int]:
    """Read an optional integer; an empty value means no limit."""
    value = os.getenv(name, default)
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///vocabox.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class LearningDefaults:
    """Defaults used when a learner has no stored learning settings yet."""
    sr_algorithm: str = os.getenv("SR_ALGORITHM", "modifiedsm2")
    leitner_box_count: int = int(os.getenv("LEITNER_BOX_COUNT", "5"))
    consecutive_correct_required: int = int(os.getenv("CONSECUTIVE_CORRECT_REQUIRED", "3"))
    show_failed_words_in_session: bool = field(
        default_factory=lambda: _get_bool("SHOW_FAILED_WORDS_IN_SESSION", "true")
    )
    new_words_per_day: Optional[int] = field(
        default_factory=lambda: _get_optional_int("NEW_WORDS_PER_DAY", "20")
    )
    daily_review_limit: Optional[int] = field(
        default_factory=lambda: _get_optional_int("DAILY_REVIEW_LIMIT", "100")
    )
    auto_advance_timeout_seconds: int = int(os.getenv("AUTO_ADVANCE_TIMEOUT_SECONDS", "2"))
    show_hint_in_fillword: bool = field(
        default_factory=lambda: _get_bool("SHOW_HINT_IN_FILLWORD", "true")
    )
    demote_on_failure: bool = field(
        default_factory=lambda: _get_bool("DEMOTE_ON_FAILURE", "true")
    )


@dataclass
class MonitoringSettings:
    """Prometheus metrics settings."""
    enabled: bool = os.getenv("METRICS_ENABLED", "false").lower() == "true"
    port: int = int(os.getenv("METRICS_PORT", "9090"))


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_learning_defaults() -> LearningDefaults:
    """Get learning defaults."""
    return LearningDefaults()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    learning: LearningDefaults = field(default_factory=get_learning_defaults)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if self.learning.sr_algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"SR_ALGORITHM must be one of {', '.join(SUPPORTED_ALGORITHMS)}"
            )

        if self.learning.leitner_box_count not in SUPPORTED_BOX_COUNTS:
            raise ValueError("LEITNER_BOX_COUNT must be 3, 5 or 7")

        if self.learning.consecutive_correct_required < 1:
            raise ValueError("CONSECUTIVE_CORRECT_REQUIRED must be positive")

        if self.learning.new_words_per_day is not None and self.learning.new_words_per_day < 0:
            raise ValueError("NEW_WORDS_PER_DAY cannot be negative")

        if self.learning.daily_review_limit is not None and self.learning.daily_review_limit < 1:
            raise ValueError("DAILY_REVIEW_LIMIT must be positive")


# Create global settings instance
settings = Settings()
settings.validate()
