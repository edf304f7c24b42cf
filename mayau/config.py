"""Application settings, built once at process start and passed explicitly."""

import logging
from enum import StrEnum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    """Deployment environment."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class LogLevel(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class AppConfig(BaseSettings):
    """Connection parameters for the backend and the identity provider.

    Values come from ``MAYAU_*`` environment variables or a ``.env`` file;
    Streamlit secrets override them through :func:`load_config`.
    """

    model_config = SettingsConfigDict(
        env_prefix="MAYAU_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Environment ---
    ENVIRONMENT: Environment = Field(default=Environment.DEV)
    LOG_LEVEL: LogLevel = Field(default=LogLevel.INFO)

    # --- Store connection ---
    STORE_URL: str = Field(
        default="memory://",
        description="'memory://' for the in-process store, 'firestore://<project-id>' for Firestore.",
    )
    FIREBASE_CREDENTIALS: dict | None = Field(
        default=None,
        description="Service-account info for the Firebase Admin SDK.",
    )

    # --- Identity provider ---
    AUTH_PROVIDER: str = Field(
        default="google",
        description="Name of the OIDC provider configured under [auth] in Streamlit secrets.",
    )
    MASTER_IDENTITY_ID: str = Field(default="master")
    MASTER_USERNAME: str = Field(default="")
    MASTER_PASSWORD_SHA256: str = Field(
        default="",
        description="Hex SHA-256 digest of the master password. Empty disables master login.",
    )

    # --- UI ---
    NOTIFICATION_SECONDS: float = Field(default=4.0, gt=0)

    @property
    def store_scheme(self):
        return self.STORE_URL.split("://", 1)[0].lower()

    @property
    def firestore_project(self):
        if self.store_scheme != "firestore":
            return None
        return self.STORE_URL.split("://", 1)[1] or None


def load_config(secrets=None, **overrides):
    """Build the config from the environment, then Streamlit-style secrets.

    ``secrets`` is any mapping shaped like ``st.secrets``: service-account
    info lives under ``firebase_key`` and app values under ``mayau``.
    """
    values = {}
    if secrets:
        if "firebase_key" in secrets:
            values["FIREBASE_CREDENTIALS"] = dict(secrets["firebase_key"])
        for key, value in dict(secrets.get("mayau", {})).items():
            values[key.upper()] = value
    values.update(overrides)
    return AppConfig(**values)


def configure_logging(config):
    logging.basicConfig(
        level=config.LOG_LEVEL.value,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
