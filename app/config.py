"""
Concept Paper Approval Workflow
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'concept_papers_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


# Ordered approval chain: (stage_name, assigned_role, deadline_option[, skippable])
DEFAULT_WORKFLOW_STAGES = [
    {"stage_name": "SPS Review", "assigned_role": "sps", "deadline_option": "1_day", "skippable": True},
    {"stage_name": "VP Acad Review", "assigned_role": "vp_acad", "deadline_option": "3_days"},
    {"stage_name": "Auditing Review", "assigned_role": "auditor", "deadline_option": "3_days"},
    {"stage_name": "Senior VP Approval", "assigned_role": "senior_vp", "deadline_option": "2_days"},
    {"stage_name": "Acad Copy Distribution", "assigned_role": "vp_acad", "deadline_option": "1_day"},
    {"stage_name": "Auditing Copy Distribution", "assigned_role": "auditor", "deadline_option": "1_day"},
    {"stage_name": "Voucher Preparation", "assigned_role": "accounting", "deadline_option": "1_day"},
    {"stage_name": "Audit & Countersign", "assigned_role": "auditor", "deadline_option": "1_day"},
    {"stage_name": "Cheque Preparation", "assigned_role": "accounting", "deadline_option": "4_days"},
    {"stage_name": "Budget Release", "assigned_role": "accounting", "deadline_option": "1_day"},
]


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # Rate limiter backend (memory:// or redis://…)
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Workflow
    WORKFLOW_STAGES = DEFAULT_WORKFLOW_STAGES
    DEFAULT_PAPER_DEADLINE_OPTION = os.getenv("DEFAULT_PAPER_DEADLINE_OPTION", "2_weeks")
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(basedir, "instance", "uploads"))
    OVERDUE_SWEEP_ENABLED = os.getenv("OVERDUE_SWEEP_ENABLED", "true").lower() == "true"


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Heroku-style URLs use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
