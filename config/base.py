# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "y", "on"}:
        return True
    if value_str in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _coerce_int(value, *, default, minimum=None, maximum=None):
    """
    Parse an integer setting, falling back to ``default`` when unparseable.

    Values outside the optional bounds are clamped rather than rejected.
    """
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        number = minimum
    if maximum is not None and number > maximum:
        number = maximum
    return number


class Config:
    _guestsync_env = os.environ.get("GUESTSYNC_ENV", "development")
    ENV = _guestsync_env

    # CRM read batching mirrors the CRM query-result paging limit
    CRM_BATCH_SIZE = _coerce_int(os.environ.get("GUESTSYNC_CRM_BATCH_SIZE"), default=200, minimum=1, maximum=2000)

    # Checkpoint persistence: SQL store when a database URL is set, JSON file otherwise
    DATABASE_URL = os.environ.get("GUESTSYNC_DATABASE_URL")
    CHECKPOINT_PATH = os.environ.get("GUESTSYNC_CHECKPOINT_PATH", "sync-state.json")
    CHECKPOINT_NAME = os.environ.get("GUESTSYNC_CHECKPOINT_NAME", "pms-guests")

    # Classification reference data override (YAML or JSON)
    CLASSIFICATION_PATH = os.environ.get("GUESTSYNC_CLASSIFICATION_PATH")

    # Reconciliation policies
    RESOLVE_SHARED_EMAILS = _coerce_bool(os.environ.get("GUESTSYNC_RESOLVE_SHARED_EMAILS"), default=False)
    COMPARE_DEFAULT_FLAGS = _coerce_bool(os.environ.get("GUESTSYNC_COMPARE_DEFAULT_FLAGS"), default=False)

    # Duplicate-likelihood scoring
    DUPLICATE_DETECTION = _coerce_bool(os.environ.get("GUESTSYNC_DUPLICATE_DETECTION"), default=True)
    DUPLICATE_THRESHOLD = _coerce_int(
        os.environ.get("GUESTSYNC_DUPLICATE_THRESHOLD"), default=75, minimum=0, maximum=100
    )

    # Timezone used to decide which guests check in "today" for the front-desk list
    PROPERTY_TIMEZONE = os.environ.get("GUESTSYNC_PROPERTY_TIMEZONE", "America/Argentina/Buenos_Aires")


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    DATABASE_URL = "sqlite:///:memory:"
    CHECKPOINT_PATH = "sync-state.test.json"
    CLASSIFICATION_PATH = None
    RESOLVE_SHARED_EMAILS = False
    COMPARE_DEFAULT_FLAGS = False
    DUPLICATE_DETECTION = True
    DUPLICATE_THRESHOLD = 75


class ProductionConfig(Config):
    DEBUG = False


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}


def get_config(env_name=None):
    """Return the config class for ``env_name`` (defaults to ``GUESTSYNC_ENV``)."""
    name = (env_name or os.environ.get("GUESTSYNC_ENV") or "default").strip().lower()
    return config.get(name, DevelopmentConfig)
