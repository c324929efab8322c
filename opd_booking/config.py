import os
from pathlib import Path

from dotenv import load_dotenv

# .env is looked up where the app is started from
load_dotenv(Path.cwd() / ".env")


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///opd_booking.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # JSON API, no browser forms
    WTF_CSRF_ENABLED = False

    BCRYPT_LOG_ROUNDS = int(os.environ.get("BCRYPT_LOG_ROUNDS", 12))

    # How many times a transaction is replayed after a lock conflict
    BOOKING_MAX_RETRIES = int(os.environ.get("BOOKING_MAX_RETRIES", 3))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    DEFAULT_ADMIN_USERNAME = os.environ.get("DEFAULT_ADMIN_USERNAME", "admin")
    DEFAULT_ADMIN_PASSWORD = os.environ.get("DEFAULT_ADMIN_PASSWORD", "admin123")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = "DEBUG"
