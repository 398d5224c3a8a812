# config/base.py
import os
from datetime import timedelta


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_adapter_list(value):
    """
    Parse a comma-separated adapter list while keeping order and removing duplicates.

    Returns:
        tuple[str, ...]: Normalized adapter identifiers.
    """
    if not value:
        return ()

    seen = set()
    adapters = []
    for raw_item in value.split(","):
        item = raw_item.strip().lower()
        if not item or item in seen:
            continue
        seen.add(item)
        adapters.append(item)
    return tuple(adapters)


def _parse_int_list(value, *, minimum=1, maximum=100):
    """
    Parse a comma-separated list of integers with optional bounds.
    """

    if not value:
        return []

    parsed: list[int] = []
    for raw_item in value.split(","):
        item = raw_item.strip()
        if not item:
            continue
        try:
            number = int(item)
        except ValueError:
            continue
        if number < minimum or number > maximum:
            continue
        if number not in parsed:
            parsed.append(number)
    return parsed


def _env_int(name, default, *, minimum=None):
    try:
        value = int(os.environ.get(name, str(default)))
    except ValueError:
        return default
    if minimum is not None and value < minimum:
        return minimum
    return value


def _env_float(name, default, *, minimum=0.0):
    try:
        value = float(os.environ.get(name, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


class Config:
    # SECRET_KEY must be set via environment variable for security
    # Generate with: python -c "import secrets; print(secrets.token_hex(32))"
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Importer configuration
    IMPORTER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_ENABLED"), default=True)
    IMPORTER_ADAPTERS = _parse_adapter_list(os.environ.get("IMPORTER_ADAPTERS", "csv,google_sheets"))

    if IMPORTER_ENABLED and not IMPORTER_ADAPTERS:
        raise ValueError(
            "IMPORTER_ENABLED is true but IMPORTER_ADAPTERS is empty. " "Provide at least one adapter name."
        )

    IMPORTER_UPLOAD_DIR = os.environ.get("IMPORTER_UPLOAD_DIR")
    IMPORTER_MAX_UPLOAD_MB = _env_int("IMPORTER_MAX_UPLOAD_MB", 25, minimum=1)
    IMPORTER_MAX_ROWS = _env_int("IMPORTER_MAX_ROWS", 50000, minimum=1)
    IMPORTER_PREVIEW_ROWS = _env_int("IMPORTER_PREVIEW_ROWS", 25, minimum=1)
    IMPORTER_ERROR_SAMPLE_LIMIT = _env_int("IMPORTER_ERROR_SAMPLE_LIMIT", 50, minimum=1)
    IMPORTER_WRITE_RETRIES = _env_int("IMPORTER_WRITE_RETRIES", 3, minimum=1)

    _raw_runs_page_sizes = os.environ.get("IMPORTER_RUNS_PAGE_SIZES", "25,50,100")
    _parsed_page_sizes = _parse_int_list(_raw_runs_page_sizes, minimum=5, maximum=500)
    if not _parsed_page_sizes:
        _parsed_page_sizes = [25, 50, 100]
    IMPORTER_RUNS_PAGE_SIZE_DEFAULT = _env_int("IMPORTER_RUNS_PAGE_SIZE_DEFAULT", _parsed_page_sizes[0], minimum=1)
    if IMPORTER_RUNS_PAGE_SIZE_DEFAULT not in _parsed_page_sizes:
        _parsed_page_sizes.insert(0, IMPORTER_RUNS_PAGE_SIZE_DEFAULT)
    IMPORTER_RUNS_PAGE_SIZES = tuple(sorted(set(_parsed_page_sizes)))

    # Google Sheets connector
    GOOGLE_SHEETS_API_BASE = os.environ.get("GOOGLE_SHEETS_API_BASE", "https://sheets.googleapis.com/v4")
    GOOGLE_SHEETS_EXPORT_BASE = os.environ.get(
        "GOOGLE_SHEETS_EXPORT_BASE",
        "https://docs.google.com/spreadsheets/d",
    )
    GOOGLE_SHEETS_DEFAULT_TAB = os.environ.get("GOOGLE_SHEETS_DEFAULT_TAB", "Sheet1")
    GOOGLE_SHEETS_TIMEOUT_SECONDS = _env_float("GOOGLE_SHEETS_TIMEOUT_SECONDS", 30.0, minimum=1.0)
    GOOGLE_SHEETS_MAX_RETRIES = _env_int("GOOGLE_SHEETS_MAX_RETRIES", 3, minimum=1)
    GOOGLE_SHEETS_BACKOFF_SECONDS = _env_float("GOOGLE_SHEETS_BACKOFF_SECONDS", 1.0)

    # Session configuration
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"


class DevelopmentConfig(Config):
    DEBUG = True
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI format: sqlite:///absolute/path (3 slashes for absolute path)
    db_path = os.path.join(instance_path, "lead_intake_dev.db")
    db_path_normalized = db_path.replace("\\", "/")
    db_uri = f"sqlite:///{db_path_normalized}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"  # In-memory database for testing
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    GOOGLE_SHEETS_BACKOFF_SECONDS = 0.0


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    SESSION_COOKIE_SECURE = True
