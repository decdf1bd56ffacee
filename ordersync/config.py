import os
from dotenv import load_dotenv

load_dotenv()


HELPSHIP_ENDPOINTS = {
    "development": {
        "token_url": "https://helpship-auth-develop.azurewebsites.net/connect/token",
        "api_base_url": "https://helpship-api-develop.azurewebsites.net",
    },
    # Production URLs are issued per account, there is no safe default
    "production": {
        "token_url": None,
        "api_base_url": None,
    },
}


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Base configuration class with common settings."""
    # Helpship WMS configuration
    HELPSHIP_ENV = os.environ.get("HELPSHIP_ENV", "development").lower()
    HELPSHIP_CLIENT_ID = os.environ.get("HELPSHIP_CLIENT_ID")
    HELPSHIP_CLIENT_SECRET = os.environ.get("HELPSHIP_CLIENT_SECRET")
    HELPSHIP_SCOPE = os.environ.get("HELPSHIP_SCOPE", "helpship.api")
    HELPSHIP_TIMEOUT_SECONDS = int(os.environ.get("HELPSHIP_TIMEOUT_SECONDS", "30"))
    HELPSHIP_CURRENCY = os.environ.get("HELPSHIP_CURRENCY", "RON")
    HELPSHIP_CUSTOMER_EMAIL = os.environ.get("HELPSHIP_CUSTOMER_EMAIL", "clienti@velaro-shop.ro")

    # Development Helpship
    HELPSHIP_DEVELOPMENT_TOKEN_URL = os.environ.get("HELPSHIP_DEVELOPMENT_TOKEN_URL")
    HELPSHIP_DEVELOPMENT_API_BASE_URL = os.environ.get("HELPSHIP_DEVELOPMENT_API_BASE_URL")

    # Production Helpship
    HELPSHIP_PRODUCTION_TOKEN_URL = os.environ.get("HELPSHIP_PRODUCTION_TOKEN_URL")
    HELPSHIP_PRODUCTION_API_BASE_URL = os.environ.get("HELPSHIP_PRODUCTION_API_BASE_URL")

    # Meta Conversions API
    META_GRAPH_API_VERSION = os.environ.get("META_GRAPH_API_VERSION", "v21.0")
    META_DEFAULT_PIXEL_ID = os.environ.get("META_DEFAULT_PIXEL_ID")
    META_DEFAULT_ACCESS_TOKEN = os.environ.get("META_DEFAULT_ACCESS_TOKEN")
    META_DEFAULT_COUNTRY_CODE = os.environ.get("META_DEFAULT_COUNTRY_CODE", "40")
    META_COUNTRY = os.environ.get("META_COUNTRY", "ro")
    META_EVENT_SOURCE_URL = os.environ.get("META_EVENT_SOURCE_URL", "")
    META_TIMEOUT_SECONDS = int(os.environ.get("META_TIMEOUT_SECONDS", "30"))

    # Conversion outbox retry policy
    OUTBOX_MAX_ATTEMPTS = int(os.environ.get("OUTBOX_MAX_ATTEMPTS", "5"))
    OUTBOX_BASE_DELAY_MINUTES = int(os.environ.get("OUTBOX_BASE_DELAY_MINUTES", "5"))
    OUTBOX_BACKOFF_MULTIPLIER = int(os.environ.get("OUTBOX_BACKOFF_MULTIPLIER", "3"))
    OUTBOX_BATCH_SIZE = int(os.environ.get("OUTBOX_BATCH_SIZE", "10"))

    # Queue expiry reaper
    QUEUE_REAPER_BATCH_SIZE = int(os.environ.get("QUEUE_REAPER_BATCH_SIZE", "10"))
    QUEUE_REAPER_ON_REQUEST = _env_bool("QUEUE_REAPER_ON_REQUEST", True)

    # Stale sync claims can be taken over after this many seconds
    SYNC_CLAIM_TIMEOUT_SECONDS = int(os.environ.get("SYNC_CLAIM_TIMEOUT_SECONDS", "120"))

    # Cron endpoints are open when no secret is configured
    CRON_SECRET = os.environ.get("CRON_SECRET")

    # In-process scheduler (only one worker should run it)
    RUN_SCHEDULER = _env_bool("RUN_SCHEDULER", False)
    SCHEDULER_OUTBOX_INTERVAL_MINUTES = int(os.environ.get("SCHEDULER_OUTBOX_INTERVAL_MINUTES", "5"))
    SCHEDULER_REAPER_INTERVAL_MINUTES = int(os.environ.get("SCHEDULER_REAPER_INTERVAL_MINUTES", "5"))

    # CORS configuration
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FILE = os.environ.get("LOG_FILE")


class LocalConfig(Config):
    """Configuration for local development."""
    ENV = "local"
    DEBUG = True


class SandboxConfig(Config):
    """Configuration for sandbox/staging environment."""
    ENV = "sandbox"
    DEBUG = False


class ProductionConfig(Config):
    """Configuration for production environment."""
    ENV = "production"
    DEBUG = False


def get_config():
    """Get the appropriate configuration class based on environment variable.

    Environment is determined by FLASK_ENV or ENVIRONMENT variable:
    - 'local' or 'development' -> LocalConfig
    - 'sandbox' or 'staging' -> SandboxConfig
    - 'production' or 'prod' -> ProductionConfig

    Defaults to LocalConfig if not set.
    """
    env = (os.environ.get("FLASK_ENV") or os.environ.get("ENVIRONMENT", "local")).lower()

    if env in ["local", "development", "dev"]:
        return LocalConfig
    elif env in ["sandbox", "staging", "stage"]:
        return SandboxConfig
    elif env in ["production", "prod"]:
        return ProductionConfig
    else:
        # Default to local for safety
        return LocalConfig


def get_helpship_endpoints(config):
    """
    Resolve the Helpship token URL and API base URL for the selected environment.

    Args:
        config: Mapping with the HELPSHIP_* keys (Flask app.config or a dict)

    Returns:
        tuple: (token_url, api_base_url)

    Raises:
        ConfigurationError: If the environment is unknown or its URLs are not set
    """
    from ordersync.exceptions import ConfigurationError

    environment = (config.get("HELPSHIP_ENV") or "development").lower()
    if environment in ("dev", "develop"):
        environment = "development"
    elif environment == "prod":
        environment = "production"

    if environment not in HELPSHIP_ENDPOINTS:
        raise ConfigurationError(f"Unknown HELPSHIP_ENV '{environment}'")

    defaults = HELPSHIP_ENDPOINTS[environment]
    prefix = f"HELPSHIP_{environment.upper()}"
    token_url = config.get(f"{prefix}_TOKEN_URL") or defaults["token_url"]
    api_base_url = config.get(f"{prefix}_API_BASE_URL") or defaults["api_base_url"]

    if not token_url or not api_base_url:
        raise ConfigurationError(
            f"{prefix}_TOKEN_URL and {prefix}_API_BASE_URL must be set for the {environment} Helpship environment"
        )
    return token_url, api_base_url.rstrip("/")
