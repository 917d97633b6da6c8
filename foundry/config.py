"""Engine limits shared across Foundry modules."""
from __future__ import annotations

import os
from pathlib import Path

DATA_DIR = Path(__file__).parent / "data"

MAX_VENTURES_PER_USER = 3

DAILY_MESSAGE_LIMIT = 30
TRIAL_MESSAGE_LIMIT = 3
ARTIFACT_MESSAGE_COST = 3

MAX_MESSAGE_LENGTH = 2000
MAX_FIELD_LENGTH = 5000

SLUG_LENGTH = 12
MAX_SLUG_LENGTH = 20


def default_db_path() -> Path:
    """Database file from ``FOUNDRY_DB_PATH``, falling back to the package data dir."""
    env = os.environ.get("FOUNDRY_DB_PATH")
    if env:
        return Path(env)
    return DATA_DIR / "foundry.db"
