"""
Application configuration classes.

Each class represents a deployment environment. The factory function
``create_app`` in ``dotation/__init__.py`` selects the appropriate
config based on the FLASK_ENV environment variable.

Database connection strings use the ``mssql+pyodbc`` dialect so that
SQLAlchemy communicates with SQL Server via the ODBC Driver 18.  The
testing config runs against an in-memory SQLite database instead.

The external asset system (a Jira Assets workspace) is configured
through the ``ASSETS_*`` keys.  Sync with it is advisory: missing
credentials only produce a warning, never a startup failure.
"""

import logging
import os

# Module-level logger for startup warnings emitted by config classes.
_logger = logging.getLogger(__name__)

# Sentinel for detecting an unset SECRET_KEY in production.
_DEFAULT_SECRET_KEY = "dev-secret-change-me"


def _env_list(name: str, default: str) -> list[str]:
    """Split a comma-separated environment variable into a clean list."""
    return [
        item.strip()
        for item in os.environ.get(name, default).split(",")
        if item.strip()
    ]


class BaseConfig:
    """
    Shared configuration values inherited by all environments.

    Secrets and connection strings are loaded from environment variables
    so they never appear in source control.
    """

    # -- Flask core --------------------------------------------------------
    SECRET_KEY: str = os.environ.get("SECRET_KEY", _DEFAULT_SECRET_KEY)

    # -- Session cookie hardening ------------------------------------------
    SESSION_COOKIE_HTTPONLY: bool = True
    SESSION_COOKIE_SAMESITE: str = "Lax"
    SESSION_COOKIE_SECURE: bool = False

    # Expire idle sessions after 8 hours (one working day).
    PERMANENT_SESSION_LIFETIME: int = int(
        os.environ.get("PERMANENT_SESSION_LIFETIME", "28800")
    )

    # -- SQLAlchemy --------------------------------------------------------
    SQLALCHEMY_DATABASE_URI: str = os.environ.get(
        "DATABASE_URL",
        (
            "mssql+pyodbc://@localhost\\SQLEXPRESS/DotationDev"
            "?driver=ODBC+Driver+18+for+SQL+Server"
            "&TrustServerCertificate=yes"
            "&Trusted_Connection=yes"
        ),
    )
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    SQLALCHEMY_ECHO: bool = False

    # -- Entra ID / MSAL ---------------------------------------------------
    AZURE_CLIENT_ID: str = os.environ.get("AZURE_CLIENT_ID", "")
    AZURE_CLIENT_SECRET: str = os.environ.get("AZURE_CLIENT_SECRET", "")
    AZURE_TENANT_ID: str = os.environ.get("AZURE_TENANT_ID", "")
    AZURE_AUTHORITY: str = os.environ.get(
        "AZURE_AUTHORITY",
        (
            f"https://login.microsoftonline.com/"
            f"{os.environ.get('AZURE_TENANT_ID', 'common')}"
        ),
    )
    AZURE_REDIRECT_URI: str = os.environ.get(
        "AZURE_REDIRECT_URI", "http://localhost:5000/auth/callback"
    )
    AZURE_SCOPES: list[str] = ["User.Read"]

    # -- External asset system (Jira Assets) -------------------------------
    # Site URL is only used to discover the workspace ID when
    # ASSETS_WORKSPACE_ID is not set explicitly.
    ASSETS_SITE_URL: str = os.environ.get("ASSETS_SITE_URL", "")
    ASSETS_API_BASE_URL: str = os.environ.get(
        "ASSETS_API_BASE_URL", "https://api.atlassian.com/jsm/assets/workspace"
    )
    ASSETS_WORKSPACE_ID: str = os.environ.get("ASSETS_WORKSPACE_ID", "")
    ASSETS_EMAIL: str = os.environ.get("ASSETS_EMAIL", "")
    ASSETS_API_TOKEN: str = os.environ.get("ASSETS_API_TOKEN", "")

    # Per-request read timeout for sync calls, and the longer budget used
    # for full bulk imports.
    ASSETS_TIMEOUT_SECONDS: float = float(
        os.environ.get("ASSETS_TIMEOUT_SECONDS", "30")
    )
    ASSETS_BULK_TIMEOUT_SECONDS: float = float(
        os.environ.get("ASSETS_BULK_TIMEOUT_SECONDS", "300")
    )

    # AQL page size, bulk sync batch size, and the thread pool bound used
    # to fetch object details inside one batch.
    ASSETS_PAGE_SIZE: int = int(os.environ.get("ASSETS_PAGE_SIZE", "100"))
    ASSETS_SYNC_BATCH_SIZE: int = int(
        os.environ.get("ASSETS_SYNC_BATCH_SIZE", "50")
    )
    ASSETS_MAX_CONCURRENT_REQUESTS: int = int(
        os.environ.get("ASSETS_MAX_CONCURRENT_REQUESTS", "5")
    )

    # Attribute IDs used for the status-only push after every
    # allocation, return, assignment or release.  Leave empty to disable
    # the automatic push.
    ASSETS_STATUS_ATTR_ID: str = os.environ.get("ASSETS_STATUS_ATTR_ID", "")
    ASSETS_ASSIGNED_USER_ATTR_ID: str = os.environ.get(
        "ASSETS_ASSIGNED_USER_ATTR_ID", ""
    )

    # Defaults for the bulk pull command.
    ASSETS_DEFAULT_SCHEMA: str = os.environ.get(
        "ASSETS_DEFAULT_SCHEMA", "Parc Informatique"
    )
    ASSETS_DEFAULT_OBJECT_TYPE: str = os.environ.get(
        "ASSETS_DEFAULT_OBJECT_TYPE", "Laptop"
    )

    # -- Allocation defaults -----------------------------------------------
    # Software installed on every delivered machine, recorded on each
    # allocation for the signed paperwork.
    STANDARD_SOFTWARE: list[str] = _env_list(
        "STANDARD_SOFTWARE", "MS Office,Antivirus"
    )

    # -- Dev login guard ---------------------------------------------------
    DEV_LOGIN_ENABLED: bool = (
        os.environ.get("DEV_LOGIN_ENABLED", "false").lower() == "true"
    )

    # -- Logging -----------------------------------------------------------
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    # =====================================================================
    # Production validation helpers
    # =====================================================================

    @classmethod
    def validate_production_secrets(cls, app_config: dict) -> None:
        """
        Verify that all required secrets are set for production.

        Called by ``create_app()`` when ``config_name == 'production'``.
        Raises ``RuntimeError`` for hard requirements and logs warnings
        for soft requirements.

        Args:
            app_config: The ``app.config`` dict after loading the
                        config class.

        Raises:
            RuntimeError: If any critical secret is missing or still
                          set to its insecure default value.
        """
        errors: list[str] = []

        if app_config.get("SECRET_KEY") == _DEFAULT_SECRET_KEY:
            errors.append(
                "SECRET_KEY is still the insecure default. "
                "Generate one with: python -c "
                '"import secrets; print(secrets.token_hex(32))"'
            )

        required_azure_keys = [
            "AZURE_CLIENT_ID",
            "AZURE_CLIENT_SECRET",
            "AZURE_TENANT_ID",
        ]
        missing_azure = [key for key in required_azure_keys if not app_config.get(key)]
        if missing_azure:
            errors.append(
                "Entra ID credentials missing: "
                f"{', '.join(missing_azure)}. "
                "OAuth login will not work without these."
            )

        redirect_uri = app_config.get("AZURE_REDIRECT_URI", "")
        if redirect_uri and not redirect_uri.startswith("https://"):
            errors.append(
                f"AZURE_REDIRECT_URI ({redirect_uri}) must use HTTPS "
                "in production to protect the OAuth authorization code."
            )

        if errors:
            combined = "\n  - ".join(errors)
            raise RuntimeError(f"Production configuration errors:\n  - {combined}")

        # -- Asset system credentials (soft warning) -----------------------
        # Allocation and return keep working without them; only the
        # mirror in the asset system goes stale.
        if not app_config.get("ASSETS_EMAIL") or not app_config.get("ASSETS_API_TOKEN"):
            _logger.warning(
                "ASSETS_EMAIL / ASSETS_API_TOKEN not set. Asset system "
                "sync calls will fail and land in the pending-sync outbox."
            )

        if app_config.get("LOG_LEVEL", "").upper() == "DEBUG":
            _logger.warning(
                "LOG_LEVEL=DEBUG is not recommended in production. "
                "Signature images and API headers may appear in logs."
            )


class DevelopmentConfig(BaseConfig):
    """Development environment: verbose logging, SQL echo enabled."""

    DEBUG: bool = True
    SQLALCHEMY_ECHO: bool = True
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "DEBUG")

    DEV_LOGIN_ENABLED: bool = (
        os.environ.get("DEV_LOGIN_ENABLED", "true").lower() == "true"
    )


class TestingConfig(BaseConfig):
    """
    Testing environment: in-memory SQLite database.

    WTF_CSRF_ENABLED is disabled so JSON posts in tests don't need CSRF
    tokens. Dev login is enabled for test convenience.  Asset system
    credentials are blanked so nothing reaches the network.
    """

    TESTING: bool = True
    WTF_CSRF_ENABLED: bool = False

    SQLALCHEMY_DATABASE_URI: str = os.environ.get(
        "TEST_DATABASE_URL", "sqlite:///:memory:"
    )
    LOG_LEVEL: str = "DEBUG"

    ASSETS_SITE_URL: str = ""
    ASSETS_WORKSPACE_ID: str = "test-workspace"
    ASSETS_EMAIL: str = ""
    ASSETS_API_TOKEN: str = ""
    ASSETS_STATUS_ATTR_ID: str = ""
    ASSETS_ASSIGNED_USER_ATTR_ID: str = ""

    DEV_LOGIN_ENABLED: bool = True


class ProductionConfig(BaseConfig):
    """
    Production environment: strict settings, no debug output.

    All secrets must be set via environment variables. The application
    factory calls ``validate_production_secrets()`` at startup and will
    refuse to launch if critical values are missing.
    """

    DEBUG: bool = False
    SQLALCHEMY_ECHO: bool = False
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "WARNING")

    SESSION_COOKIE_SECURE: bool = True

    SQLALCHEMY_DATABASE_URI: str = os.environ.get(
        "DATABASE_URL",
        (
            "mssql+pyodbc://@localhost\\SQLEXPRESS/Dotation"
            "?driver=ODBC+Driver+18+for+SQL+Server"
            "&Encrypt=yes"
            "&Trusted_Connection=yes"
        ),
    )

    DEV_LOGIN_ENABLED: bool = False


# Lookup dict used by the application factory.
config_by_name: dict[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}
