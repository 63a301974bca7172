"""Persistence of pull request notification records."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import FrozenSet

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from github_slack_bot.models import (
    OptimisticLockError,
    PrNotification,
    ProcessedDelivery,
    ReviewerState,
    StatusHistory,
)

from .events import PrEvent, PullRequestKey
from .state import PrSnapshot


def _split_reactions(raw: str) -> FrozenSet[str]:
    return frozenset(item for item in (raw or "").split(",") if item)


def _join_reactions(reactions: FrozenSet[str]) -> str:
    return ",".join(sorted(reactions))


def _get_record(session: Session, key: PullRequestKey) -> PrNotification | None:
    return session.execute(
        select(PrNotification)
        .options(selectinload(PrNotification.reviewers))
        .where(PrNotification.repository == key.repository, PrNotification.number == key.number)
    ).scalar_one_or_none()


def to_snapshot(record: PrNotification) -> PrSnapshot:
    return PrSnapshot(
        key=PullRequestKey(repository=record.repository, number=record.number),
        title=record.title,
        html_url=record.html_url,
        author=record.author_login,
        required_approvals=record.required_approvals,
        status=record.aggregate_status,
        approvers=frozenset(row.reviewer for row in record.reviewers if row.approved),
        blockers=frozenset(row.reviewer for row in record.reviewers if row.blocking),
        comment_count=record.comment_count,
        sequence=record.last_event_sequence,
        channel_id=record.slack_channel_id,
        message_ts=record.slack_message_ts,
        reactions=_split_reactions(record.reactions),
    )


def load_snapshot(session: Session, key: PullRequestKey) -> PrSnapshot | None:
    """Return the stored snapshot for *key*, or None if it has no message yet."""

    record = _get_record(session, key)
    if record is None:
        return None
    return to_snapshot(record)


def create_record(session: Session, snapshot: PrSnapshot) -> None:
    """Insert the first record for a pull request together with its message reference."""

    if not snapshot.has_message:
        raise ValueError("A record can only be created once its Slack message exists")

    record = PrNotification(
        repository=snapshot.key.repository,
        number=snapshot.key.number,
        title=snapshot.title,
        html_url=snapshot.html_url,
        author_login=snapshot.author,
        slack_channel_id=snapshot.channel_id,
        slack_message_ts=snapshot.message_ts,
        aggregate_status=snapshot.status,
        approval_count=snapshot.approval_count,
        required_approvals=snapshot.required_approvals,
        comment_count=snapshot.comment_count,
        reactions=_join_reactions(snapshot.reactions),
        last_event_sequence=snapshot.sequence,
    )
    session.add(record)
    try:
        session.flush()
    except IntegrityError as exc:
        raise OptimisticLockError(f"{snapshot.key} was created concurrently") from exc


def _sync_reviewers(session: Session, record: PrNotification, snapshot: PrSnapshot) -> None:
    existing = {row.reviewer: row for row in record.reviewers}
    for reviewer in snapshot.approvers | snapshot.blockers | set(existing):
        approved = reviewer in snapshot.approvers
        blocking = reviewer in snapshot.blockers
        row = existing.get(reviewer)
        if row is None:
            session.add(
                ReviewerState(notification_id=record.id, reviewer=reviewer, approved=approved, blocking=blocking)
            )
        elif not approved and not blocking:
            session.delete(row)
        else:
            row.approved = approved
            row.blocking = blocking


def save_snapshot(
    session: Session,
    previous: PrSnapshot,
    current: PrSnapshot,
    *,
    changed_by: str,
    changed_at: datetime | None = None,
) -> None:
    """Persist *current* over *previous* using the event sequence as a version.

    Raises :class:`OptimisticLockError` when the stored sequence no longer
    matches ``previous.sequence``.
    """

    changed_time = changed_at or datetime.now(UTC)
    record = _get_record(session, previous.key)
    if record is None:
        raise OptimisticLockError(f"{previous.key} disappeared before it could be updated")

    stmt = (
        update(PrNotification)
        .where(PrNotification.id == record.id, PrNotification.last_event_sequence == previous.sequence)
        .values(
            title=current.title,
            html_url=current.html_url,
            author_login=current.author,
            aggregate_status=current.status,
            approval_count=current.approval_count,
            comment_count=current.comment_count,
            reactions=_join_reactions(current.reactions),
            last_event_sequence=current.sequence,
            updated_at=changed_time,
        )
    )
    result = session.execute(stmt)
    if result.rowcount != 1:
        session.rollback()
        raise OptimisticLockError(f"{previous.key} was updated concurrently")

    _sync_reviewers(session, record, current)

    if current.status != previous.status:
        session.add(
            StatusHistory(
                notification_id=record.id,
                from_status=previous.status,
                to_status=current.status,
                changed_at=changed_time,
                changed_by=changed_by,
            )
        )


def delivery_seen(session: Session, delivery_id: str | None) -> bool:
    if not delivery_id:
        return False
    return session.get(ProcessedDelivery, delivery_id) is not None


def mark_delivery(session: Session, event: PrEvent, *, outcome: str = "processed") -> None:
    if not event.delivery_id:
        return
    session.add(
        ProcessedDelivery(
            delivery_id=event.delivery_id,
            event=event.name,
            repository=event.key.repository,
            number=event.key.number,
            outcome=outcome,
        )
    )
