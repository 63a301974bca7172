"""Converge a pull request's Slack message to its aggregate status."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Iterable, Mapping

from slack_sdk.errors import SlackApiError, SlackClientError
import structlog

from github_slack_bot.directory import IdentityDirectory
from github_slack_bot.errors import DownstreamUnavailableError
from github_slack_bot.slack_client import SlackClient

from .messages import DEFAULT_PRESENTATION, Presentation, build_pr_message
from .state import PrSnapshot

# Slack answers with these when the reaction is already in the wanted state.
_IDEMPOTENT_REACTION_ERRORS = frozenset({"already_reacted", "no_reaction"})


@dataclass(frozen=True)
class MessageRef:
    channel_id: str
    ts: str


def _error_code(exc: Exception) -> str:
    response = getattr(exc, "response", None)
    if response is not None:
        try:
            return response.get("error") or str(exc)
        except AttributeError:
            pass
    return str(exc) or exc.__class__.__name__


class SlackRenderer:
    """Post once, then update in place, the Slack message for each pull request."""

    def __init__(
        self,
        *,
        client: SlackClient,
        directory: IdentityDirectory,
        default_channel: str,
        presentation: Presentation = DEFAULT_PRESENTATION,
    ) -> None:
        self._client = client
        self._directory = directory
        self._default_channel = default_channel
        self._presentation = presentation

    def resolve_channel(self, team_slugs: Iterable[str]) -> str:
        """Return the first channel mapped to any requested team, else the default."""

        channels: set[str] = set()
        for slug in team_slugs:
            channels.update(self._directory.lookup_channels_for_team(slug))
        if channels:
            return sorted(channels)[0]
        return self._default_channel

    def render(self, snapshot: PrSnapshot) -> Mapping[str, Any]:
        author_slack_id = self._directory.lookup_slack_user(snapshot.author)
        return build_pr_message(
            snapshot=snapshot,
            author_slack_id=author_slack_id,
            presentation=self._presentation,
        )

    def publish(self, snapshot: PrSnapshot, *, team_slugs: Iterable[str] = ()) -> MessageRef:
        """Post the first message for *snapshot* and return its reference."""

        channel = self.resolve_channel(team_slugs)
        payload = self.render(snapshot)
        log = structlog.get_logger().bind(pr=str(snapshot.key), channel=channel)

        response = self._call(
            "post_message",
            log,
            lambda: self._client.post_message(channel=channel, text=payload["text"], blocks=payload["blocks"]),
        )
        channel_id = response.get("channel") or channel
        ts = response.get("ts")
        if not ts:
            log.error("slack_response_missing_ts", response_keys=sorted(response.keys()))
            raise DownstreamUnavailableError("Slack did not return a message timestamp")

        log.info("pr_message_posted", ts=ts)
        return MessageRef(channel_id=channel_id, ts=ts)

    def converge(self, previous: PrSnapshot, current: PrSnapshot, *, refresh_text: bool = True) -> FrozenSet[str]:
        """Bring the existing message in line with *current*.

        The message text is rewritten in place and only the reactions that
        differ from ``previous.reactions`` are added or removed. Returns the
        reaction set now applied.
        """

        if not current.has_message:
            raise ValueError(f"{current.key} has no Slack message to update")

        channel, ts = current.channel_id, current.message_ts
        log = structlog.get_logger().bind(pr=str(current.key), channel=channel, ts=ts)

        if refresh_text:
            payload = self.render(current)
            self._call(
                "update_message",
                log,
                lambda: self._client.update_message(channel=channel, ts=ts, text=payload["text"], blocks=payload["blocks"]),
            )

        desired = self._presentation.reactions_for(current)
        applied = previous.reactions
        for name in sorted(applied - desired):
            self._react("remove_reaction", log, lambda name=name: self._client.remove_reaction(channel=channel, ts=ts, name=name))
        for name in sorted(desired - applied):
            self._react("add_reaction", log, lambda name=name: self._client.add_reaction(channel=channel, ts=ts, name=name))

        log.info(
            "pr_message_converged",
            status=current.status,
            added=sorted(desired - applied),
            removed=sorted(applied - desired),
        )
        return desired

    def _react(self, operation: str, log, call: Callable[[], Any]) -> None:
        try:
            call()
        except SlackApiError as exc:
            if _error_code(exc) in _IDEMPOTENT_REACTION_ERRORS:
                return
            self._fail(operation, log, exc)
        except (SlackClientError, OSError) as exc:
            self._fail(operation, log, exc)

    def _call(self, operation: str, log, call: Callable[[], Mapping[str, Any]]) -> Mapping[str, Any]:
        try:
            return call()
        except (SlackClientError, OSError) as exc:
            self._fail(operation, log, exc)

    @staticmethod
    def _fail(operation: str, log, exc: Exception):
        status_code = getattr(getattr(exc, "response", None), "status_code", None)
        error_code = _error_code(exc)
        log.error("slack_call_failed", operation=operation, error=error_code, status_code=status_code)
        raise DownstreamUnavailableError(f"Slack {operation} failed: {error_code}", error_code=error_code) from exc
