"""Pydantic-based configuration helpers for the GitHub Slack bot."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Iterable, List

from pydantic import BaseModel, Field, ValidationError, field_validator


class AppSettings(BaseModel):
    """Settings required to initialise the Slack bot and the webhook relay."""

    bot_token: str = Field(..., alias="SLACK_BOT_TOKEN")
    signing_secret: str = Field(..., alias="SLACK_SIGNING_SECRET")
    github_webhook_secret: str = Field(..., alias="GITHUB_WEBHOOK_SECRET")
    database_url: str = Field(..., alias="DATABASE_URL")
    default_channel: str = Field(..., alias="DEFAULT_SLACK_CHANNEL")
    two_approval_repos: List[str] = Field(default_factory=list, alias="TWO_APPROVAL_REPOS_LIST")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    port: int = Field(3000, alias="PORT")
    slack_timeout_seconds: int = Field(10, alias="SLACK_TIMEOUT_SECONDS")
    handler_timeout_seconds: float = Field(25.0, alias="HANDLER_TIMEOUT_SECONDS")
    lock_timeout_seconds: float = Field(20.0, alias="LOCK_TIMEOUT_SECONDS")

    needs_review_emoji: str = Field("warning", alias="NEEDS_REVIEW")
    partial_approval_emoji: str = Field("one", alias="PARTIAL_APPROVAL")
    ready_to_merge_emoji: str = Field("rocket", alias="READY_TO_MERGE")
    approved_emoji: str = Field("white_check_mark", alias="APPROVED")
    changes_requested_emoji: str = Field("no_entry", alias="CHANGES_REQUESTED")
    merged_emoji: str = Field("git-merged-pr", alias="MERGED")
    closed_emoji: str = Field("x", alias="CLOSED")
    commented_emoji: str = Field("speech_balloon", alias="COMMENTED")

    @field_validator("two_approval_repos", mode="before")
    @classmethod
    def _split_repos(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, list):
            return [item.strip().lower() for item in value if item.strip()]
        return [item.strip().lower() for item in value.split(",") if item.strip()]

    @field_validator("log_level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @field_validator("slack_timeout_seconds", "handler_timeout_seconds", "lock_timeout_seconds")
    @classmethod
    def _ensure_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts must be greater than zero")
        return value

    @field_validator(
        "needs_review_emoji",
        "partial_approval_emoji",
        "ready_to_merge_emoji",
        "approved_emoji",
        "changes_requested_emoji",
        "merged_emoji",
        "closed_emoji",
        "commented_emoji",
    )
    @classmethod
    def _strip_colons(cls, value: str) -> str:
        cleaned = value.strip().strip(":")
        if not cleaned:
            raise ValueError("Emoji names must not be empty")
        return cleaned


def _format_missing(fields: Iterable[str]) -> str:
    """Return a human-friendly comma-separated list of missing env vars."""

    unique: List[str] = []
    for field in fields:
        if field not in unique:
            unique.append(field)
    return ", ".join(unique)


@lru_cache()
def get_settings() -> AppSettings:
    """Fetch and cache settings from environment variables."""

    try:
        return AppSettings.model_validate(os.environ)
    except ValidationError as exc:
        missing = [str(error["loc"][0]) for error in exc.errors() if error["type"] == "missing"]
        if not missing:
            raise RuntimeError(f"Invalid configuration: {exc}") from exc
        message = (
            "Missing required environment variables: "
            f"{_format_missing(missing)}"
        )
        raise RuntimeError(message) from exc
