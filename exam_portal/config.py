"""Runtime configuration for the exam portal.

Values come from environment variables, optionally loaded from a ``.env``
file in the working directory.
"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


# --- Database ---
DATABASE_URL = os.getenv("EXAM_PORTAL_DATABASE_URL", "sqlite:///./exam_portal.db")
DATABASE_ECHO = _get_bool("EXAM_PORTAL_DATABASE_ECHO", False)

# --- Server ---
HOST = os.getenv("EXAM_PORTAL_HOST", "0.0.0.0")
PORT = int(os.getenv("EXAM_PORTAL_PORT", "8000"))

# --- Sessions ---
SESSION_SECRET = os.getenv("EXAM_PORTAL_SESSION_SECRET", "CHANGE_ME_TO_A_RANDOM_SECRET")

# --- Scoring ---
# Fraction of a question's points deducted for a wrong MCQ/TRUE_FALSE answer
# when the exam has negative marking enabled.
NEGATIVE_MARKING_PENALTY = _get_float("EXAM_PORTAL_NEGATIVE_MARKING_PENALTY", 0.25)

# --- Client timer ---
AUTOSAVE_DEBOUNCE_SECONDS = _get_float("EXAM_PORTAL_AUTOSAVE_DEBOUNCE_SECONDS", 3.0)
TIME_WARNING_SECONDS = _get_float("EXAM_PORTAL_TIME_WARNING_SECONDS", 5 * 60)
TIMER_TICK_SECONDS = _get_float("EXAM_PORTAL_TIMER_TICK_SECONDS", 1.0)

# --- Seeding ---
SEED_ADMIN = _get_bool("EXAM_PORTAL_SEED_ADMIN", True)
SEED_ADMIN_EMAIL = os.getenv("EXAM_PORTAL_SEED_ADMIN_EMAIL", "admin@example.com")
SEED_ADMIN_PASSWORD = os.getenv("EXAM_PORTAL_SEED_ADMIN_PASSWORD", "admin123")

# --- Logging ---
LOG_LEVEL = os.getenv("EXAM_PORTAL_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging() -> None:
    """Configure root logging once for the application process."""
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
