"""Tests for the GitHub to Slack identity directory."""

import pytest
from sqlalchemy.exc import OperationalError

from github_slack_bot.directory import IdentityDirectory
from github_slack_bot.errors import DownstreamUnavailableError


def test_set_mapping_replaces_existing_link(database):
    directory = IdentityDirectory(database)

    directory.set_mapping("@OctoCat", "U1")
    directory.set_mapping("octocat", "U2")

    assert directory.lookup_slack_user("OCTOCAT") == "U2"
    assert directory.lookup_slack_user("hubot") is None
    assert directory.lookup_slack_user(None) is None


def test_remove_mapping_reports_whether_anything_was_removed(database):
    directory = IdentityDirectory(database)
    directory.set_mapping("octocat", "U1")

    assert directory.remove_mapping("octocat") is True
    assert directory.remove_mapping("octocat") is False
    assert directory.lookup_slack_user("octocat") is None


def test_team_channels_are_deduplicated(database):
    directory = IdentityDirectory(database)

    assert directory.add_channel("Platform", "C1") is True
    assert directory.add_channel("platform", "C1") is False
    assert directory.add_channel("platform", "C2") is True

    assert directory.lookup_channels_for_team("PLATFORM") == {"C1", "C2"}
    assert directory.remove_channel("platform", "C1") is True
    assert directory.remove_channel("platform", "C1") is False
    assert directory.lookup_channels_for_team("platform") == {"C2"}


def test_blank_names_are_rejected(database):
    directory = IdentityDirectory(database)

    with pytest.raises(ValueError):
        directory.set_mapping("  ", "U1")


def test_lookup_failure_is_reported_as_downstream_error(database, monkeypatch):
    directory = IdentityDirectory(database)

    def broken_scope(factory=None):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr("github_slack_bot.directory.session_scope", broken_scope)

    with pytest.raises(DownstreamUnavailableError):
        directory.lookup_slack_user("octocat")
    with pytest.raises(DownstreamUnavailableError):
        directory.lookup_channels_for_team("platform")
