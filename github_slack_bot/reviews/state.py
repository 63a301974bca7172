"""Helpers for computing the aggregate review status of a pull request."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import AbstractSet, FrozenSet, Iterable

from github_slack_bot.models import StateConflictError

from .events import (
    PULL_REQUEST_EVENT,
    PULL_REQUEST_REVIEW_COMMENT_EVENT,
    PULL_REQUEST_REVIEW_EVENT,
    PrEvent,
    PullRequestKey,
)

NEEDS_REVIEW = "needs_review"
PARTIALLY_APPROVED = "partially_approved"
APPROVED = "approved"
CHANGES_REQUESTED = "changes_requested"
MERGED = "merged"
CLOSED = "closed"

TERMINAL_STATUSES = frozenset({MERGED, CLOSED})
_OPEN_STATUSES = frozenset({NEEDS_REVIEW, PARTIALLY_APPROVED, APPROVED, CHANGES_REQUESTED})

_ALLOWED_TRANSITIONS = {
    NEEDS_REVIEW: _OPEN_STATUSES | TERMINAL_STATUSES,
    PARTIALLY_APPROVED: _OPEN_STATUSES | TERMINAL_STATUSES,
    APPROVED: _OPEN_STATUSES | TERMINAL_STATUSES,
    CHANGES_REQUESTED: _OPEN_STATUSES | TERMINAL_STATUSES,
    MERGED: frozenset({MERGED}),
    CLOSED: frozenset({CLOSED, MERGED}),
}

_OPENING_ACTIONS = frozenset({"opened", "reopened", "ready_for_review"})


@dataclass(frozen=True)
class RepositoryPolicy:
    """Static approval policy: listed repositories need two approvals."""

    two_approval_repos: FrozenSet[str] = frozenset()

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "RepositoryPolicy":
        return cls(frozenset(name.strip().lower() for name in names if name and name.strip()))

    def required_approvals(self, repository: str) -> int:
        return 2 if repository.lower() in self.two_approval_repos else 1


@dataclass(frozen=True)
class PrSnapshot:
    """Immutable view of a pull request's notification record."""

    key: PullRequestKey
    title: str
    html_url: str
    author: str | None
    required_approvals: int
    status: str = NEEDS_REVIEW
    approvers: FrozenSet[str] = frozenset()
    blockers: FrozenSet[str] = frozenset()
    comment_count: int = 0
    sequence: int = 0
    channel_id: str | None = None
    message_ts: str | None = None
    reactions: FrozenSet[str] = frozenset()

    @property
    def approval_count(self) -> int:
        return len(self.approvers)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_message(self) -> bool:
        return bool(self.channel_id and self.message_ts)

    def with_message(self, channel_id: str, message_ts: str) -> "PrSnapshot":
        return replace(self, channel_id=channel_id, message_ts=message_ts)


@dataclass(frozen=True)
class Transition:
    """Outcome of applying one event to a snapshot.

    ``snapshot`` is ``None`` when the event is acknowledged without creating
    a record. ``baseline`` is the freshly created record the event was
    applied to when no record existed before.
    """

    snapshot: PrSnapshot | None
    baseline: PrSnapshot | None = None
    conflict: str | None = None
    status_changed: bool = False
    notes: tuple[str, ...] = field(default_factory=tuple)


def derive_open_status(*, approvers: AbstractSet[str], blockers: AbstractSet[str], required: int) -> str:
    """Return the non-terminal status implied by the current review tallies."""

    if blockers:
        return CHANGES_REQUESTED
    if len(approvers) >= required:
        return APPROVED
    if approvers:
        return PARTIALLY_APPROVED
    return NEEDS_REVIEW


def resolve_status(current: str, candidate: str) -> str:
    """Return *candidate* if the move from *current* is allowed.

    Raises :class:`StateConflictError` when the move would take a merged or
    closed pull request anywhere other than an allowed terminal state.
    """

    allowed = _ALLOWED_TRANSITIONS.get(current)
    if allowed is None:
        # unknown stored value: let the derived status replace it
        return candidate
    if candidate not in allowed:
        raise StateConflictError(f"Cannot transition from {current} to {candidate}")
    return candidate


def initial_snapshot(event: PrEvent, policy: RepositoryPolicy) -> PrSnapshot:
    pull_request = event.pull_request
    return PrSnapshot(
        key=event.key,
        title=pull_request.title,
        html_url=pull_request.html_url,
        author=event.author,
        required_approvals=policy.required_approvals(event.key.repository),
    )


def _closing_status(event: PrEvent) -> str:
    return MERGED if event.pull_request.merged else CLOSED


def _apply_review(snapshot: PrSnapshot, event: PrEvent) -> PrSnapshot:
    reviewer = event.actor
    if not reviewer:
        return snapshot

    approvers = set(snapshot.approvers)
    blockers = set(snapshot.blockers)
    comment_count = snapshot.comment_count

    if event.action == "dismissed":
        approvers.discard(reviewer)
        blockers.discard(reviewer)
    elif event.action == "submitted":
        if event.review_state == "approved":
            approvers.add(reviewer)
            blockers.discard(reviewer)
        elif event.review_state == "changes_requested":
            blockers.add(reviewer)
        elif event.review_state == "commented":
            comment_count += 1

    return replace(
        snapshot,
        approvers=frozenset(approvers),
        blockers=frozenset(blockers),
        comment_count=comment_count,
    )


def _is_verdict(event: PrEvent) -> bool:
    if event.name != PULL_REQUEST_REVIEW_EVENT:
        return False
    if event.action == "dismissed":
        return True
    return event.action == "submitted" and event.review_state in {"approved", "changes_requested"}


def _apply_review_comment(snapshot: PrSnapshot, event: PrEvent) -> PrSnapshot:
    if event.action == "created":
        return replace(snapshot, comment_count=snapshot.comment_count + 1)
    if event.action == "deleted":
        return replace(snapshot, comment_count=max(snapshot.comment_count - 1, 0))
    return snapshot


def apply_event(previous: PrSnapshot | None, event: PrEvent, policy: RepositoryPolicy) -> Transition:
    """Fold *event* into *previous* and return the resulting transition.

    This function is pure; persistence and Slack side effects are left to the
    caller, which must hold the pull request's lock.
    """

    baseline = None
    if previous is None:
        if event.name == PULL_REQUEST_EVENT and event.action == "closed":
            return Transition(snapshot=None, notes=("closed_before_tracked",))
        baseline = initial_snapshot(event, policy)
        previous = baseline

    pull_request = event.pull_request
    updated = replace(
        previous,
        title=pull_request.title or previous.title,
        html_url=pull_request.html_url or previous.html_url,
        author=event.author or previous.author,
        sequence=previous.sequence + 1,
    )

    if event.name == PULL_REQUEST_EVENT and event.action == "closed":
        candidate = _closing_status(event)
        if previous.status == MERGED and candidate == CLOSED:
            candidate = MERGED
    elif previous.is_terminal:
        # tallies are frozen once merged or closed; the attempted status is
        # still computed so the conflict gets reported
        candidate = previous.status
        if event.action in _OPENING_ACTIONS or _is_verdict(event):
            attempted = _apply_review(updated, event) if event.name == PULL_REQUEST_REVIEW_EVENT else updated
            candidate = derive_open_status(
                approvers=attempted.approvers,
                blockers=attempted.blockers,
                required=attempted.required_approvals,
            )
    else:
        if event.name == PULL_REQUEST_REVIEW_EVENT:
            updated = _apply_review(updated, event)
        elif event.name == PULL_REQUEST_REVIEW_COMMENT_EVENT:
            updated = _apply_review_comment(updated, event)
        candidate = derive_open_status(
            approvers=updated.approvers,
            blockers=updated.blockers,
            required=updated.required_approvals,
        )

    conflict = None
    try:
        status = resolve_status(previous.status, candidate)
    except StateConflictError as exc:
        conflict = str(exc)
        status = previous.status

    updated = replace(updated, status=status)
    return Transition(
        snapshot=updated,
        baseline=baseline,
        conflict=conflict,
        status_changed=status != previous.status,
    )
