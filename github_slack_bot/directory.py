"""GitHub to Slack identity directory backed by the application database."""

from __future__ import annotations

from typing import Set

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from github_slack_bot.db import session_scope
from github_slack_bot.errors import DownstreamUnavailableError
from github_slack_bot.models import GithubUserMapping, TeamChannel


def _normalise(name: str) -> str:
    cleaned = (name or "").strip().lstrip("@").lower()
    if not cleaned:
        raise ValueError("A GitHub name is required.")
    return cleaned


class IdentityDirectory:
    """Map GitHub usernames to Slack users and GitHub teams to Slack channels."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory
        self._log = structlog.get_logger().bind(component="identity_directory")

    def lookup_slack_user(self, github_username: str | None) -> str | None:
        if not github_username:
            return None
        try:
            with session_scope(self._session_factory) as session:
                return session.execute(
                    select(GithubUserMapping.slack_user_id).where(
                        GithubUserMapping.github_username == _normalise(github_username)
                    )
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise DownstreamUnavailableError("Identity directory lookup failed") from exc

    def lookup_channels_for_team(self, github_team: str) -> Set[str]:
        try:
            with session_scope(self._session_factory) as session:
                rows = session.execute(
                    select(TeamChannel.channel_id).where(TeamChannel.github_team == _normalise(github_team))
                ).scalars()
                return set(rows)
        except SQLAlchemyError as exc:
            raise DownstreamUnavailableError("Identity directory lookup failed") from exc

    def set_mapping(self, github_username: str, slack_user_id: str) -> None:
        """Link *github_username* to *slack_user_id*, replacing any earlier link."""

        username = _normalise(github_username)
        with session_scope(self._session_factory) as session:
            existing = session.get(GithubUserMapping, username)
            if existing is None:
                session.add(GithubUserMapping(github_username=username, slack_user_id=slack_user_id))
            else:
                existing.slack_user_id = slack_user_id
        self._log.info("github_user_mapped", github_username=username, slack_user_id=slack_user_id)

    def remove_mapping(self, github_username: str) -> bool:
        username = _normalise(github_username)
        with session_scope(self._session_factory) as session:
            result = session.execute(delete(GithubUserMapping).where(GithubUserMapping.github_username == username))
            removed = result.rowcount > 0
        self._log.info("github_user_unmapped", github_username=username, removed=removed)
        return removed

    def add_channel(self, github_team: str, channel_id: str) -> bool:
        """Route *github_team* pull requests to *channel_id*; False if already linked."""

        team = _normalise(github_team)
        try:
            with session_scope(self._session_factory) as session:
                existing = session.execute(
                    select(TeamChannel.id).where(TeamChannel.github_team == team, TeamChannel.channel_id == channel_id)
                ).scalar_one_or_none()
                if existing is not None:
                    return False
                session.add(TeamChannel(github_team=team, channel_id=channel_id))
        except IntegrityError:
            return False
        self._log.info("team_channel_added", github_team=team, channel_id=channel_id)
        return True

    def remove_channel(self, github_team: str, channel_id: str) -> bool:
        team = _normalise(github_team)
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(TeamChannel).where(TeamChannel.github_team == team, TeamChannel.channel_id == channel_id)
            )
            removed = result.rowcount > 0
        self._log.info("team_channel_removed", github_team=team, channel_id=channel_id, removed=removed)
        return removed
