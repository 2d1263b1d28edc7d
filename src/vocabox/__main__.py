"""Command-line learning report."""
import argparse
import logging
import sys
from datetime import UTC, datetime
from typing import List, Optional

from vocabox.config import settings
from vocabox.logging_config import setup_logging
from vocabox.models.base import SessionLocal, init_db
from vocabox.monitoring import start_monitoring
from vocabox.services.box_scheduler import get_box_distribution, get_box_info, get_learning_stats
from vocabox.services.progress_service import ProgressService

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="vocabox", description="Show spaced repetition progress.")
    parser.add_argument("--user", required=True, help="Learner identifier")
    parser.add_argument("--language", default="en", help="Language of the stored progress")
    return parser.parse_args(argv)


def render_report(user_id: str, language: str, db) -> str:
    """Build the text report for one learner and language."""
    service = ProgressService(db)
    learning_settings = service.get_or_create_learning_settings(user_id)
    progress = service.get_practice_progress(user_id, language)
    box_count = learning_settings.leitner_box_count
    stats = get_learning_stats(progress.words_progress, box_count, datetime.now(UTC))

    lines = [
        f"Learner {user_id} ({language}), algorithm {learning_settings.sr_algorithm}",
        f"Words: {stats.total_words}, due today: {stats.words_due_today}, "
        f"mastered: {stats.mastered_words}, mastery: {stats.mastery_percentage}%",
        f"Sessions: {progress.total_sessions}, streak: {progress.current_streak} "
        f"(longest {progress.longest_streak})",
        "",
    ]
    distribution = get_box_distribution(progress.words_progress, box_count)
    for info, box in zip(get_box_info(box_count), distribution):
        lines.append(
            f"Box {info.box_number} {info.name:<10} every {info.interval_days:>2}d: "
            f"{box.word_count:>4} words ({box.percentage}%)"
        )
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging("Starting vocabox report ...")

    if settings.monitoring.enabled:
        start_monitoring(settings.monitoring.port)
        logger.info(f"Metrics exposed on port {settings.monitoring.port}")

    init_db()
    db = SessionLocal()
    try:
        print(render_report(args.user, args.language, db))
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
