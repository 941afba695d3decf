# config/base.py
import os
from datetime import timedelta

_CONFIG_DIR = os.path.dirname(os.path.abspath(__file__))


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


def _coerce_int(value, default, *, minimum=1):
    """Parse a positive integer setting, falling back to ``default``."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= minimum else default


class Config:
    # SECRET_KEY must be set via environment variable for security
    # Generate with: python -c "import secrets; print(secrets.token_hex(32))"
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Only require SECRET_KEY in production mode
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    # For development, use a default but it's not secure
    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "This is insecure and should not be used in production. "
            "Set SECRET_KEY environment variable or generate with: "
            'python -c "import secrets; print(secrets.token_hex(32))"',
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    # Set a default for testing (will be overridden by TestingConfig)
    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Analytics export
    ANALYTICS_ENABLED = _coerce_bool(os.environ.get("ANALYTICS_ENABLED"), default=False)
    ANALYTICS_LOG_ONLY = _coerce_bool(os.environ.get("ANALYTICS_LOG_ONLY"), default=True)
    ANALYTICS_ASYNC = _coerce_bool(os.environ.get("ANALYTICS_ASYNC"), default=True)
    ANALYTICS_QUEUE = os.environ.get("ANALYTICS_QUEUE", "analytics")
    ANALYTICS_ENVIRONMENT = os.environ.get("ANALYTICS_ENVIRONMENT", _flask_env)
    ANALYTICS_BATCH_SIZE = _coerce_int(os.environ.get("ANALYTICS_BATCH_SIZE"), 200)
    ANALYTICS_ALLOWLIST_PATH = os.environ.get(
        "ANALYTICS_ALLOWLIST_PATH", os.path.join(_CONFIG_DIR, "analytics.yml")
    )
    ANALYTICS_PII_PATH = os.environ.get("ANALYTICS_PII_PATH", os.path.join(_CONFIG_DIR, "analytics_pii.yml"))
    ANALYTICS_BLOCKLIST_PATH = os.environ.get(
        "ANALYTICS_BLOCKLIST_PATH", os.path.join(_CONFIG_DIR, "analytics_blocklist.yml")
    )
    ANALYTICS_SINK_URL = os.environ.get("ANALYTICS_SINK_URL")
    ANALYTICS_SINK_API_KEY = os.environ.get("ANALYTICS_SINK_API_KEY")
    ANALYTICS_SINK_TABLE = os.environ.get("ANALYTICS_SINK_TABLE")
    ANALYTICS_SINK_TIMEOUT = _coerce_int(os.environ.get("ANALYTICS_SINK_TIMEOUT"), 120)
    ANALYTICS_SINK_RETRIES = _coerce_int(os.environ.get("ANALYTICS_SINK_RETRIES"), 3, minimum=0)

    # Celery transport for the analytics worker
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")

    # Session configuration
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"


class DevelopmentConfig(Config):
    DEBUG = True
    # Use instance folder for database to avoid conflicts
    _project_root = os.path.dirname(_CONFIG_DIR)
    instance_path = os.path.join(_project_root, "instance")

    # Ensure instance folder exists
    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI format: sqlite:///absolute/path (3 slashes for absolute path)
    db_path_normalized = os.path.join(instance_path, "analytics_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path_normalized}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = False
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
    # Override SECRET_KEY for testing - tests will set their own
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"  # In-memory database for testing
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    ANALYTICS_ENABLED = False
    ANALYTICS_ENVIRONMENT = "test"


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    SESSION_COOKIE_SECURE = True  # Secure cookies in production
