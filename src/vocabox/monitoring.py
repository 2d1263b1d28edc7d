"""Monitoring configuration for the learning engine."""
from prometheus_client import Counter, Histogram, start_http_server

# Answer metrics
answers_total = Counter(
    "vocabox_answers_total",
    "Total number of answers processed by practice sessions",
    ["mode", "outcome"],
)

box_transitions = Counter(
    "vocabox_box_transitions_total",
    "Total number of Leitner box transitions",
    ["algorithm", "direction"],
)

requeued_words = Counter(
    "vocabox_requeued_words_total",
    "Total number of words re-queued within a session",
    ["mode", "reason"],
)

# Session metrics
sessions_started = Counter(
    "vocabox_sessions_started_total",
    "Total number of practice sessions started",
    ["mode", "tracked"],
)

sessions_completed = Counter(
    "vocabox_sessions_completed_total",
    "Total number of practice sessions completed",
    ["mode", "tracked"],
)

session_duration = Histogram(
    "vocabox_session_duration_seconds",
    "Duration of practice sessions from first to last answer",
    ["mode"],
    buckets=[60, 300, 600, 1800, 3600],  # 1min, 5min, 10min, 30min, 1hour
)

# Selection metrics
words_selected = Counter(
    "vocabox_words_selected_total",
    "Total number of words selected for practice",
    ["bucket"],
)

# Persistence metrics
progress_writes = Counter(
    "vocabox_progress_writes_total",
    "Total number of word progress records written",
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
