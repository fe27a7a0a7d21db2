"""
Runtime configuration for the dashboard engine.

Values come from the environment, with a .env file beside this module loaded
first. Import the constants; never read os.environ for these keys elsewhere.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

DASHBOARD_API_BASE = os.environ.get("DASHBOARD_API_BASE", "http://localhost:3000").rstrip("/")
DASHBOARD_API_TIMEOUT = float(os.environ.get("DASHBOARD_API_TIMEOUT", "30"))

# Quiet period before a burst of sync completions turns into one refetch
BACKFILL_DEBOUNCE_SECONDS = float(os.environ.get("BACKFILL_DEBOUNCE_SECONDS", "0.3"))

BREAKDOWN_TOP_N = int(os.environ.get("BREAKDOWN_TOP_N", "5"))

DEFAULT_DATE_RANGE_PRESET = os.environ.get("DEFAULT_DATE_RANGE_PRESET", "last_30_days")
DEFAULT_COMPARE_ENABLED = os.environ.get("DEFAULT_COMPARE_ENABLED", "true").strip().lower() in ("1", "true", "yes")


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
