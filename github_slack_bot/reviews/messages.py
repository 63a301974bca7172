"""Block Kit message builders for pull request notifications."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Mapping

from . import state

NEEDS_ATTENTION_EMOJI = "grey_question"
NEEDS_ATTENTION_LABEL = "Needs attention"


@dataclass(frozen=True)
class StatusStyle:
    emoji: str
    label: str


@dataclass(frozen=True)
class Presentation:
    """Emoji and labels used to render each aggregate status."""

    statuses: Mapping[str, StatusStyle]
    approved_emoji: str = "white_check_mark"
    commented_emoji: str = "speech_balloon"
    fallback: StatusStyle = StatusStyle(NEEDS_ATTENTION_EMOJI, NEEDS_ATTENTION_LABEL)

    @classmethod
    def from_settings(cls, settings) -> "Presentation":
        return cls(
            statuses={
                state.NEEDS_REVIEW: StatusStyle(settings.needs_review_emoji, "Needs review"),
                state.PARTIALLY_APPROVED: StatusStyle(settings.partial_approval_emoji, "Partially approved"),
                state.APPROVED: StatusStyle(settings.ready_to_merge_emoji, "Ready to merge"),
                state.CHANGES_REQUESTED: StatusStyle(settings.changes_requested_emoji, "Changes requested"),
                state.MERGED: StatusStyle(settings.merged_emoji, "Merged"),
                state.CLOSED: StatusStyle(settings.closed_emoji, "Closed"),
            },
            approved_emoji=settings.approved_emoji,
            commented_emoji=settings.commented_emoji,
        )

    def style_for(self, status: str) -> StatusStyle:
        """Return the style for *status*; unknown values get the fallback marker."""

        return self.statuses.get(status, self.fallback)

    def reactions_for(self, snapshot: state.PrSnapshot) -> FrozenSet[str]:
        reactions = {self.style_for(snapshot.status).emoji}
        if snapshot.approval_count:
            reactions.add(self.approved_emoji)
        if snapshot.comment_count:
            reactions.add(self.commented_emoji)
        return frozenset(reactions)


DEFAULT_PRESENTATION = Presentation(
    statuses={
        state.NEEDS_REVIEW: StatusStyle("warning", "Needs review"),
        state.PARTIALLY_APPROVED: StatusStyle("one", "Partially approved"),
        state.APPROVED: StatusStyle("rocket", "Ready to merge"),
        state.CHANGES_REQUESTED: StatusStyle("no_entry", "Changes requested"),
        state.MERGED: StatusStyle("git-merged-pr", "Merged"),
        state.CLOSED: StatusStyle("x", "Closed"),
    }
)


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def format_person(login: str | None, slack_user_id: str | None) -> str:
    if slack_user_id:
        return f"<@{slack_user_id}>"
    if login:
        return f"`{login}`"
    return "_unknown_"


def format_status_line(snapshot: state.PrSnapshot, presentation: Presentation = DEFAULT_PRESENTATION) -> str:
    style = presentation.style_for(snapshot.status)
    line = f":{style.emoji}: *{style.label}*"
    if not snapshot.is_terminal:
        line += f" · {snapshot.approval_count}/{snapshot.required_approvals} approvals"
    if snapshot.blockers:
        line += f" · changes requested by {', '.join(f'`{login}`' for login in sorted(snapshot.blockers))}"
    if snapshot.comment_count:
        noun = "comment" if snapshot.comment_count == 1 else "comments"
        line += f" · {snapshot.comment_count} {noun}"
    return line


def build_pr_message(
    *,
    snapshot: state.PrSnapshot,
    author_slack_id: str | None = None,
    presentation: Presentation = DEFAULT_PRESENTATION,
) -> Dict[str, Any]:
    """Build the canonical Slack message payload for a pull request."""

    title = _escape(snapshot.title) or "(untitled)"
    repo_label = f"{snapshot.key.repository}#{snapshot.key.number}"
    if snapshot.html_url:
        headline = f"<{snapshot.html_url}|{repo_label}: {title}>"
    else:
        headline = f"{repo_label}: {title}"

    author = format_person(snapshot.author, author_slack_id)
    status_line = format_status_line(snapshot, presentation)

    blocks: List[Dict[str, Any]] = [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*{headline}*"},
        },
        {
            "type": "context",
            "elements": [
                {"type": "mrkdwn", "text": f"Opened by {author}"},
            ],
        },
        {
            "type": "context",
            "elements": [
                {"type": "mrkdwn", "text": status_line},
            ],
        },
    ]

    style = presentation.style_for(snapshot.status)
    return {
        "text": f"[{style.label}] {repo_label}: {snapshot.title or '(untitled)'} by {snapshot.author or 'unknown'}",
        "blocks": blocks,
    }
