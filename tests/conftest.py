"""Shared fixtures for the GitHub Slack relay tests."""

from __future__ import annotations

from pathlib import Path
import sys
import threading
import time

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:  # pragma: no cover - import-time guard
    sys.path.insert(0, str(ROOT))

from slack_sdk.errors import SlackApiError  # noqa: E402

from github_slack_bot import config  # noqa: E402
from github_slack_bot.db import Base, get_engine, get_session_factory  # noqa: E402


def seed_env(monkeypatch, database_url: str = "sqlite:///local.db") -> None:
    monkeypatch.setenv("SLACK_BOT_TOKEN", "xoxb-token")
    monkeypatch.setenv("SLACK_SIGNING_SECRET", "slack-secret")
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", "github-secret")
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.setenv("DEFAULT_SLACK_CHANNEL", "CDEFAULT")
    monkeypatch.setenv("TWO_APPROVAL_REPOS_LIST", "acme/core, acme/payments")
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()


@pytest.fixture
def database(monkeypatch, tmp_path):
    seed_env(monkeypatch, f"sqlite:///{tmp_path / 'bot.db'}")

    from github_slack_bot import models  # noqa: F401

    engine = get_engine()
    Base.metadata.create_all(engine)

    yield get_session_factory()

    Base.metadata.drop_all(engine)
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()


class DummyResponse(dict):
    """Minimal Slack response stub for error handling tests."""

    def __init__(self, error: str = "invalid_arguments", status_code: int = 400) -> None:
        super().__init__({"ok": False, "error": error})
        self.status_code = status_code

    @property
    def data(self) -> dict:
        return dict(self)


class FakeWebClient:
    """Records Slack Web API calls; optionally slow or failing."""

    def __init__(self, *, post_delay: float = 0.0) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.post_delay = post_delay
        self.failures: dict[str, str] = {}
        self._lock = threading.Lock()
        self._counter = 0

    def fail(self, method: str, error: str = "internal_error") -> None:
        self.failures[method] = error

    def _record(self, method: str, kwargs: dict) -> None:
        if method in self.failures:
            raise SlackApiError(f"{method} failed", DummyResponse(self.failures[method]))
        with self._lock:
            self.calls.append((method, kwargs))

    def calls_to(self, method: str) -> list[dict]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def chat_postMessage(self, **kwargs):
        if self.post_delay:
            time.sleep(self.post_delay)
        self._record("chat_postMessage", kwargs)
        with self._lock:
            self._counter += 1
            ts = f"1700000000.{self._counter:06d}"
        return {"ok": True, "channel": kwargs["channel"], "ts": ts}

    def chat_update(self, **kwargs):
        self._record("chat_update", kwargs)
        return {"ok": True, "channel": kwargs["channel"], "ts": kwargs["ts"]}

    def reactions_add(self, **kwargs):
        self._record("reactions_add", kwargs)
        return {"ok": True}

    def reactions_remove(self, **kwargs):
        self._record("reactions_remove", kwargs)
        return {"ok": True}

    def auth_test(self):
        self._record("auth_test", {})
        return {"ok": True, "user_id": "UBOT"}


@pytest.fixture
def web_client():
    return FakeWebClient()


def pr_payload(
    *,
    action: str = "opened",
    repo: str = "acme/widgets",
    number: int = 12,
    title: str = "Add widget support",
    author: str = "octocat",
    merged: bool = False,
    teams: tuple[str, ...] = (),
) -> dict:
    return {
        "action": action,
        "number": number,
        "pull_request": {
            "number": number,
            "title": title,
            "html_url": f"https://github.com/{repo}/pull/{number}",
            "user": {"login": author},
            "merged": merged,
            "requested_teams": [{"slug": slug, "name": slug.title()} for slug in teams],
            "base": {"repo": {"full_name": repo}},
        },
        "repository": {"full_name": repo},
        "sender": {"login": author},
    }


def review_payload(reviewer: str, state: str = "approved", *, action: str = "submitted", **kwargs) -> dict:
    payload = pr_payload(action=action, **kwargs)
    payload["review"] = {"id": 1, "state": state, "user": {"login": reviewer}}
    payload["sender"] = {"login": reviewer}
    return payload


def comment_payload(commenter: str, *, action: str = "created", **kwargs) -> dict:
    payload = pr_payload(action=action, **kwargs)
    payload["comment"] = {"id": 99, "user": {"login": commenter}}
    payload["sender"] = {"login": commenter}
    return payload
