"""SQLAlchemy models for PR notification records and the identity directory."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import List

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from github_slack_bot.db import Base


class PrNotification(Base):
    """The Slack message representing one pull request and its aggregate status."""

    __tablename__ = "pr_notifications"
    __table_args__ = (
        UniqueConstraint("repository", "number", name="uq_pr_notifications_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repository: Mapped[str] = mapped_column(String(255), nullable=False)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    html_url: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    author_login: Mapped[str | None] = mapped_column(String(255), nullable=True)
    slack_channel_id: Mapped[str] = mapped_column(String(32), nullable=False)
    slack_message_ts: Mapped[str] = mapped_column(String(32), nullable=False)
    aggregate_status: Mapped[str] = mapped_column(String(32), nullable=False, default="needs_review")
    approval_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    required_approvals: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reactions: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    last_event_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    reviewers: Mapped[List["ReviewerState"]] = relationship(
        "ReviewerState",
        back_populates="notification",
        cascade="all, delete-orphan",
    )
    status_history: Mapped[List["StatusHistory"]] = relationship(
        "StatusHistory",
        back_populates="notification",
        cascade="all, delete-orphan",
        order_by="StatusHistory.changed_at",
    )


class ReviewerState(Base):
    """Latest verdict of one reviewer on a pull request."""

    __tablename__ = "pr_reviewers"
    __table_args__ = (
        UniqueConstraint("notification_id", "reviewer", name="uq_pr_reviewers_reviewer"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    notification_id: Mapped[int] = mapped_column(ForeignKey("pr_notifications.id", ondelete="CASCADE"), nullable=False)
    reviewer: Mapped[str] = mapped_column(String(255), nullable=False)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    blocking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    notification: Mapped[PrNotification] = relationship("PrNotification", back_populates="reviewers")


class StatusHistory(Base):
    """Audit log of aggregate status transitions."""

    __tablename__ = "pr_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    notification_id: Mapped[int] = mapped_column(ForeignKey("pr_notifications.id", ondelete="CASCADE"), nullable=False)
    from_status: Mapped[str] = mapped_column(String(32), nullable=False)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    changed_by: Mapped[str] = mapped_column(String(255), nullable=False)

    notification: Mapped[PrNotification] = relationship("PrNotification", back_populates="status_history")


class ProcessedDelivery(Base):
    """GitHub delivery ids that have already been applied."""

    __tablename__ = "processed_deliveries"

    delivery_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    event: Mapped[str] = mapped_column(String(64), nullable=False)
    repository: Mapped[str] = mapped_column(String(255), nullable=False)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    outcome: Mapped[str] = mapped_column(String(32), nullable=False, default="processed")
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))


class GithubUserMapping(Base):
    """Maps a GitHub username to the Slack user who claimed it."""

    __tablename__ = "github_users"

    github_username: Mapped[str] = mapped_column(String(255), primary_key=True)
    slack_user_id: Mapped[str] = mapped_column(String(32), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )


class TeamChannel(Base):
    """Links a GitHub team to a Slack channel that wants its pull requests."""

    __tablename__ = "team_channels"
    __table_args__ = (
        UniqueConstraint("github_team", "channel_id", name="uq_team_channels_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    github_team: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    channel_id: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))


class StateConflictError(Exception):
    """Raised when a terminal pull request would move back to a non-terminal status."""


class OptimisticLockError(Exception):
    """Raised when a concurrent update is detected."""
