"""Tests for the review aggregation state machine."""

import pytest

from conftest import comment_payload, pr_payload, review_payload
from github_slack_bot.models import StateConflictError
from github_slack_bot.reviews.events import parse_event
from github_slack_bot.reviews.state import (
    APPROVED,
    CHANGES_REQUESTED,
    CLOSED,
    MERGED,
    NEEDS_REVIEW,
    PARTIALLY_APPROVED,
    RepositoryPolicy,
    apply_event,
    derive_open_status,
    resolve_status,
)

POLICY = RepositoryPolicy.from_names(["acme/core"])


def _opened(repo="acme/widgets", number=12):
    return parse_event("pull_request", pr_payload(repo=repo, number=number))


def _review(reviewer, state="approved", *, repo="acme/widgets", number=12, action="submitted"):
    return parse_event(
        "pull_request_review",
        review_payload(reviewer, state, action=action, repo=repo, number=number),
    )


def _closed(*, merged, repo="acme/widgets", number=12):
    return parse_event("pull_request", pr_payload(action="closed", merged=merged, repo=repo, number=number))


def _fold(events):
    snapshot = None
    for event in events:
        transition = apply_event(snapshot, event, POLICY)
        snapshot = transition.snapshot
    return snapshot


def test_required_approvals_follow_repository_policy():
    assert POLICY.required_approvals("acme/core") == 2
    assert POLICY.required_approvals("ACME/Core") == 2
    assert POLICY.required_approvals("acme/widgets") == 1


def test_single_approval_repository_becomes_approved():
    opened = apply_event(None, _opened(), POLICY)
    assert opened.snapshot.status == NEEDS_REVIEW
    assert opened.baseline is not None
    assert opened.snapshot.sequence == 1

    approved = apply_event(opened.snapshot, _review("x"), POLICY)
    assert approved.snapshot.status == APPROVED
    assert approved.snapshot.approval_count == 1
    assert approved.status_changed is True
    assert approved.baseline is None


def test_two_approval_repository_counts_distinct_reviewers():
    repo = {"repo": "acme/core", "number": 7}
    snapshot = apply_event(None, _opened(**repo), POLICY).snapshot
    assert snapshot.required_approvals == 2

    snapshot = apply_event(snapshot, _review("x", **repo), POLICY).snapshot
    assert snapshot.status == PARTIALLY_APPROVED

    duplicate = apply_event(snapshot, _review("x", **repo), POLICY)
    assert duplicate.snapshot.status == PARTIALLY_APPROVED
    assert duplicate.snapshot.approval_count == 1
    assert duplicate.status_changed is False

    snapshot = apply_event(duplicate.snapshot, _review("y", **repo), POLICY).snapshot
    assert snapshot.status == APPROVED
    assert snapshot.approvers == frozenset({"x", "y"})


def test_merged_pull_request_ignores_late_approval():
    repo = {"repo": "acme/core", "number": 7}
    snapshot = _fold([_opened(**repo), _review("x", **repo), _closed(merged=True, **repo)])
    assert snapshot.status == MERGED

    late = apply_event(snapshot, _review("y", **repo), POLICY)

    assert late.snapshot.status == MERGED
    assert late.snapshot.approval_count == 1
    assert late.status_changed is False


@pytest.mark.parametrize("required", [1, 2, 3])
def test_approved_exactly_when_required_reviewers_approve(required):
    approvers = set()
    for index in range(required):
        assert derive_open_status(approvers=approvers, blockers=set(), required=required) != APPROVED
        approvers.add(f"reviewer-{index}")
    assert derive_open_status(approvers=approvers, blockers=set(), required=required) == APPROVED


def test_changes_requested_blocks_until_same_reviewer_approves():
    snapshot = _fold([_opened(), _review("x"), _review("y", "changes_requested")])
    assert snapshot.status == CHANGES_REQUESTED
    assert snapshot.blockers == frozenset({"y"})

    snapshot = apply_event(snapshot, _review("z"), POLICY).snapshot
    assert snapshot.status == CHANGES_REQUESTED

    snapshot = apply_event(snapshot, _review("y"), POLICY).snapshot
    assert snapshot.status == APPROVED
    assert snapshot.blockers == frozenset()


def test_dismissed_review_withdraws_approval():
    snapshot = _fold([_opened(), _review("x")])

    snapshot = apply_event(snapshot, _review("x", "dismissed", action="dismissed"), POLICY).snapshot

    assert snapshot.status == NEEDS_REVIEW
    assert snapshot.approval_count == 0


def test_comments_are_counted_without_changing_status():
    snapshot = _fold([_opened(), _review("x", "commented")])
    snapshot = apply_event(snapshot, parse_event("pull_request_review_comment", comment_payload("y")), POLICY).snapshot

    assert snapshot.status == NEEDS_REVIEW
    assert snapshot.comment_count == 2

    deleted = parse_event("pull_request_review_comment", comment_payload("y", action="deleted"))
    snapshot = apply_event(snapshot, deleted, POLICY).snapshot
    assert snapshot.comment_count == 1


def test_closed_without_merge_then_merged_is_allowed():
    snapshot = _fold([_opened(), _closed(merged=False)])
    assert snapshot.status == CLOSED

    snapshot = apply_event(snapshot, _closed(merged=True), POLICY).snapshot
    assert snapshot.status == MERGED


def test_closed_pull_request_ignores_late_review_and_comment():
    snapshot = _fold([_opened(), _closed(merged=False)])

    late_review = apply_event(snapshot, _review("x"), POLICY)

    assert late_review.snapshot.status == CLOSED
    assert late_review.snapshot.approval_count == 0
    assert late_review.conflict == "Cannot transition from closed to approved"
    assert late_review.status_changed is False

    comment = parse_event("pull_request_review_comment", comment_payload("y"))
    late_comment = apply_event(late_review.snapshot, comment, POLICY)

    assert late_comment.snapshot.status == CLOSED
    assert late_comment.snapshot.comment_count == 0
    assert late_comment.status_changed is False


def test_unmerged_close_after_merge_keeps_merged():
    snapshot = _fold([_opened(), _closed(merged=True), _closed(merged=False)])

    assert snapshot.status == MERGED


def test_reopening_a_merged_pull_request_is_a_conflict():
    snapshot = _fold([_opened(), _closed(merged=True)])
    reopened = parse_event("pull_request", pr_payload(action="reopened"))

    transition = apply_event(snapshot, reopened, POLICY)

    assert transition.snapshot.status == MERGED
    assert transition.conflict == "Cannot transition from merged to needs_review"


def test_closed_event_for_untracked_pull_request_is_ignored():
    transition = apply_event(None, _closed(merged=False), POLICY)

    assert transition.snapshot is None
    assert transition.notes == ("closed_before_tracked",)


def test_first_event_of_any_other_kind_creates_baseline():
    transition = apply_event(None, _review("x"), POLICY)

    assert transition.baseline.status == NEEDS_REVIEW
    assert transition.baseline.sequence == 0
    assert transition.snapshot.status == APPROVED


def test_resolve_status_rejects_leaving_terminal_state():
    with pytest.raises(StateConflictError):
        resolve_status(MERGED, APPROVED)
    assert resolve_status(CLOSED, MERGED) == MERGED
    assert resolve_status("unknown", NEEDS_REVIEW) == NEEDS_REVIEW


def test_apply_event_does_not_mutate_previous_snapshot():
    previous = _fold([_opened()])

    apply_event(previous, _review("x"), POLICY)

    assert previous.approvers == frozenset()
    assert previous.status == NEEDS_REVIEW
