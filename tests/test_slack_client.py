"""Unit tests for the Slack WebClient wrapper."""

import pytest

from github_slack_bot.slack_client import SlackClient


def test_requires_token_or_client():
    with pytest.raises(ValueError):
        SlackClient()


def test_post_message_uses_underlying_client(web_client):
    client = SlackClient(client=web_client)

    response = client.post_message(channel="C123", text="hello", blocks=[{"type": "section"}])

    assert web_client.calls == [
        (
            "chat_postMessage",
            {"channel": "C123", "text": "hello", "blocks": [{"type": "section"}], "unfurl_links": False},
        ),
    ]
    assert response["ok"] is True
    assert client.client is web_client


def test_update_message_uses_underlying_client(web_client):
    client = SlackClient(client=web_client)

    client.update_message(channel="C123", ts="123.456", text="updated", blocks=[])

    assert web_client.calls[-1] == (
        "chat_update",
        {"channel": "C123", "ts": "123.456", "text": "updated", "blocks": []},
    )


def test_reactions_pass_message_timestamp(web_client):
    client = SlackClient(client=web_client)

    client.add_reaction(channel="C123", ts="123.456", name="rocket")
    client.remove_reaction(channel="C123", ts="123.456", name="warning")

    assert web_client.calls == [
        ("reactions_add", {"channel": "C123", "timestamp": "123.456", "name": "rocket"}),
        ("reactions_remove", {"channel": "C123", "timestamp": "123.456", "name": "warning"}),
    ]
