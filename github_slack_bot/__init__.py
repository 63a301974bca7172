"""GitHub pull request to Slack relay package initialisation."""

from .background import run_async, wait_for_result  # noqa: F401
from .config import AppSettings, get_settings  # noqa: F401
from .db import Base, create_schema, get_engine, get_session_factory, session_scope  # noqa: F401
from .logging_config import configure_logging  # noqa: F401
from .models import GithubUserMapping, PrNotification, TeamChannel  # noqa: F401

__all__ = [
    "AppSettings",
    "get_settings",
    "run_async",
    "wait_for_result",
    "Base",
    "create_schema",
    "get_engine",
    "get_session_factory",
    "session_scope",
    "PrNotification",
    "GithubUserMapping",
    "TeamChannel",
    "configure_logging",
]
