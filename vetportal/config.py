"""Configuration objects for the vetportal frontend."""
from __future__ import annotations

import os
from typing import Dict, Type


class Config:
    """Base configuration shared by all environments."""

    SECRET_KEY: str | None = os.getenv("SECRET_KEY", "dev-secret-key")
    API_BASE_URL: str = os.getenv("VETPORTAL_API_URL", "http://localhost:3000/api")
    API_TIMEOUT: int = int(os.getenv("VETPORTAL_API_TIMEOUT", "15"))


class DevelopmentConfig(Config):
    """Configuration suitable for local development."""

    DEBUG = True


class ProductionConfig(Config):
    """Configuration tailored for production deployments.

    The session cookie carries both bearer tokens, so ``SECRET_KEY`` has no
    fallback here.
    """

    SECRET_KEY = os.getenv("SECRET_KEY")
    DEBUG = False
    SESSION_COOKIE_SECURE = True


CONFIG_MAP: Dict[str, Type[Config]] = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
}


def get_config(name: str | None) -> Type[Config]:
    """Retrieve the configuration class matching the supplied name."""

    if not name:
        return DevelopmentConfig
    return CONFIG_MAP.get(name.lower(), DevelopmentConfig)
