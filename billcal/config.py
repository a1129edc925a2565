"""Runtime configuration, read from the environment with fixed defaults."""
import os
from pathlib import Path


SAVES_DIR = Path(os.environ.get("BILLCAL_SAVES_DIR", "saves"))
LOG_LEVEL = os.environ.get("BILLCAL_LOG_LEVEL", "WARNING").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

DEFAULT_SAVE_NAME = "default"
DEFAULT_SETTINGS = {
    "currency_symbol": "$",
    "week_starts_on": "sunday",
}

# ten years of days; bounds the forward search for a rule's next firing
MAX_LOOKAHEAD_DAYS = 3660


def merged_settings(settings) -> dict:
    merged = dict(DEFAULT_SETTINGS)
    if isinstance(settings, dict):
        merged.update(settings)
    return merged
