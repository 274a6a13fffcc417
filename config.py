"""
Application configuration.
This module defines the configuration settings for the SiteMaster application, including database connection, secret key,
logging and the AI provider used for site summaries and voice notes. It uses environment variables for sensitive
information and defaults for development. In production, set the appropriate environment variables.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'sitemaster.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging: "readable" for development, "json" for log aggregation
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "readable")

    # AI collaborator: "gemini" (needs GEMINI_API_KEY) or "stub"
    AI_PROVIDER = os.environ.get("AI_PROVIDER", "gemini")
    GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
    AI_MODEL = os.environ.get("AI_MODEL", "gemini-2.5-flash")

    # App name (used in CLI output)
    APP_NAME = "SiteMaster"


class TestingConfig(Config):
    """In-memory database and deterministic AI for the test suite."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
    AI_PROVIDER = "stub"


CONFIGS = {
    "default": Config,
    "testing": TestingConfig,
}
