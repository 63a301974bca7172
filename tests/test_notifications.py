"""Tests for Slack message convergence."""

from dataclasses import replace

import pytest
from structlog.testing import capture_logs

from github_slack_bot.directory import IdentityDirectory
from github_slack_bot.errors import DownstreamUnavailableError
from github_slack_bot.reviews.events import PullRequestKey
from github_slack_bot.reviews.notifications import MessageRef, SlackRenderer
from github_slack_bot.reviews.state import APPROVED, MERGED, PrSnapshot
from github_slack_bot.slack_client import SlackClient


@pytest.fixture
def directory(database):
    directory = IdentityDirectory(database)
    directory.set_mapping("octocat", "UOCTO")
    directory.add_channel("platform", "CPLATFORM")
    directory.add_channel("platform", "CAPLATFORM")
    return directory


@pytest.fixture
def renderer(web_client, directory):
    return SlackRenderer(client=SlackClient(client=web_client), directory=directory, default_channel="CDEFAULT")


def _snapshot(**overrides) -> PrSnapshot:
    values = dict(
        key=PullRequestKey("acme/widgets", 12),
        title="Add widget support",
        html_url="https://github.com/acme/widgets/pull/12",
        author="octocat",
        required_approvals=1,
        channel_id="CDEFAULT",
        message_ts="1700000000.000001",
    )
    values.update(overrides)
    return PrSnapshot(**values)


def test_resolve_channel_prefers_team_channel(renderer):
    assert renderer.resolve_channel(["platform"]) == "CAPLATFORM"
    assert renderer.resolve_channel(["unknown-team"]) == "CDEFAULT"
    assert renderer.resolve_channel([]) == "CDEFAULT"


def test_publish_posts_message_with_author_mention(renderer, web_client):
    ref = renderer.publish(_snapshot(channel_id=None, message_ts=None))

    assert ref == MessageRef(channel_id="CDEFAULT", ts="1700000000.000001")
    (call,) = web_client.calls_to("chat_postMessage")
    assert call["channel"] == "CDEFAULT"
    assert call["blocks"][1]["elements"][0]["text"] == "Opened by <@UOCTO>"


def test_converge_updates_text_and_applies_reaction_diff(renderer, web_client):
    previous = _snapshot(reactions=frozenset({"warning"}))
    current = replace(previous, status=APPROVED, approvers=frozenset({"x"}))

    applied = renderer.converge(previous, current)

    assert applied == {"rocket", "white_check_mark"}
    assert [name for name, _ in web_client.calls] == [
        "chat_update",
        "reactions_remove",
        "reactions_add",
        "reactions_add",
    ]
    assert web_client.calls_to("reactions_remove")[0]["name"] == "warning"
    assert {call["name"] for call in web_client.calls_to("reactions_add")} == {"rocket", "white_check_mark"}


def test_converge_without_changes_only_refreshes_text(renderer, web_client):
    previous = _snapshot(reactions=frozenset({"warning"}))

    renderer.converge(previous, previous)

    assert [name for name, _ in web_client.calls] == ["chat_update"]


def test_converge_can_skip_text_refresh(renderer, web_client):
    current = _snapshot()

    renderer.converge(current, current, refresh_text=False)

    assert web_client.calls_to("chat_update") == []
    assert web_client.calls_to("reactions_add")[0]["name"] == "warning"


def test_already_applied_reaction_is_tolerated(renderer, web_client):
    web_client.fail("reactions_add", "already_reacted")

    applied = renderer.converge(_snapshot(), _snapshot(status=MERGED))

    assert applied == {"git-merged-pr"}


def test_slack_failure_raises_downstream_error(renderer, web_client):
    web_client.fail("chat_update", "ratelimited")

    with capture_logs() as logs, pytest.raises(DownstreamUnavailableError) as excinfo:
        renderer.converge(_snapshot(), _snapshot(status=APPROVED, approvers=frozenset({"x"})))

    assert excinfo.value.error_code == "ratelimited"
    failure = next(entry for entry in logs if entry["event"] == "slack_call_failed")
    assert failure["operation"] == "update_message"
    assert failure["log_level"] == "error"


def test_converge_requires_existing_message(renderer):
    with pytest.raises(ValueError):
        renderer.converge(_snapshot(), _snapshot(message_ts=None))
