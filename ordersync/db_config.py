"""Database URI and engine options per deployment environment."""
import os

from ordersync.exceptions import ConfigurationError

DEFAULT_SQLITE_URI = "sqlite:///orders.sqlite"

# Environment aliases -> environment variables holding the URI, first match wins
DATABASE_URL_VARIABLES = {
    "local": ("LOCAL_DATABASE_URL",),
    "sandbox": ("SANDBOX_DATABASE_URL",),
    "production": ("PRODUCTION_DATABASE_URL", "DATABASE_URL"),
}

ENVIRONMENT_ALIASES = {
    "development": "local",
    "dev": "local",
    "staging": "sandbox",
    "stage": "sandbox",
    "prod": "production",
}


def current_environment():
    environment = (os.environ.get("FLASK_ENV") or os.environ.get("ENVIRONMENT", "local")).lower()
    environment = ENVIRONMENT_ALIASES.get(environment, environment)
    # Unknown names fall back to local
    return environment if environment in DATABASE_URL_VARIABLES else "local"


def postgres_engine_options():
    """
    Pool settings for the hosted PostgreSQL databases.

    Sweeps hold a connection across WMS calls, so a small pool with a short
    statement timeout keeps one slow request from starving the rest.
    """
    return {
        "pool_pre_ping": True,
        "pool_recycle": 280,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 30,
        "connect_args": {
            "sslmode": "require",
            "connect_timeout": 10,
            "application_name": "ordersync",
            "options": "-c statement_timeout=30000",
        },
    }


def resolve_database_uri(environment):
    """
    Returns:
        tuple: (database_uri, engine_options or None)

    Raises:
        ConfigurationError: sandbox/production without a configured URL
    """
    for variable in DATABASE_URL_VARIABLES[environment]:
        uri = os.environ.get(variable)
        if uri:
            break
    else:
        if environment != "local":
            names = " or ".join(DATABASE_URL_VARIABLES[environment])
            raise ConfigurationError(f"{names} must be set for the {environment} environment")
        uri = DEFAULT_SQLITE_URI

    # Heroku-style URLs still use the scheme SQLAlchemy 1.4 dropped
    if uri.startswith("postgres://"):
        uri = "postgresql://" + uri[len("postgres://"):]

    hosted = environment != "local" and uri.startswith("postgresql")
    engine_options = postgres_engine_options() if hosted else None
    return uri, engine_options


def configure_database(app, database_uri=None):
    """
    Set the SQLAlchemy settings on ``app.config``.

    Args:
        app: Flask application
        database_uri: explicit URI (tests pass sqlite:///:memory:); skips the environment lookup
    """
    if database_uri:
        engine_options = None
    else:
        database_uri, engine_options = resolve_database_uri(current_environment())

    app.config["SQLALCHEMY_DATABASE_URI"] = database_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    if engine_options:
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options
