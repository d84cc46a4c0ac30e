# config/validation.py

"""
Environment variable validation for guestsync.
Validates required environment variables at startup.
"""

import os
from pathlib import Path
from typing import List, Mapping, Optional, Tuple


def validate_environment(env: Optional[Mapping[str, str]] = None) -> Tuple[bool, List[str]]:
    """
    Validate guestsync environment variables.

    Args:
        env: Mapping to validate; defaults to ``os.environ``.

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    env = os.environ if env is None else env
    errors = []

    for name in ("GUESTSYNC_CRM_BATCH_SIZE", "GUESTSYNC_DUPLICATE_THRESHOLD"):
        raw = env.get(name)
        if raw is None or raw.strip() == "":
            continue
        try:
            value = int(raw)
        except ValueError:
            errors.append(f"{name} must be an integer, got {raw!r}.")
            continue
        if name == "GUESTSYNC_DUPLICATE_THRESHOLD" and not 0 <= value <= 100:
            errors.append(f"{name} must be between 0 and 100.")
        elif name != "GUESTSYNC_DUPLICATE_THRESHOLD" and value < 1:
            errors.append(f"{name} must be a positive integer.")

    classification_path = env.get("GUESTSYNC_CLASSIFICATION_PATH")
    if classification_path and not Path(classification_path).exists():
        errors.append(f"GUESTSYNC_CLASSIFICATION_PATH points to a missing file: {classification_path}")

    database_url = env.get("GUESTSYNC_DATABASE_URL")
    checkpoint_path = env.get("GUESTSYNC_CHECKPOINT_PATH")
    if env.get("GUESTSYNC_ENV", "development") == "production" and not (database_url or checkpoint_path):
        errors.append(
            "Production runs require GUESTSYNC_DATABASE_URL or GUESTSYNC_CHECKPOINT_PATH "
            "so the sync checkpoint survives restarts."
        )

    log_format = env.get("LOG_FORMAT")
    if log_format and log_format.lower() not in {"json", "text"}:
        errors.append("LOG_FORMAT must be 'json' or 'text'.")

    is_valid = len(errors) == 0
    return is_valid, errors
