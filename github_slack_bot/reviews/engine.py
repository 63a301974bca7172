"""Serialized application of GitHub review events to Slack notifications."""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass, replace
import threading
from typing import Any, Mapping

import structlog
from sqlalchemy.orm import Session, sessionmaker

from github_slack_bot.background import run_async
from github_slack_bot.db import session_scope
from github_slack_bot.locks import KeyedLock

from .events import PrEvent, PullRequestKey, derive_pr_key, parse_event
from .notifications import SlackRenderer
from .state import RepositoryPolicy, apply_event
from .storage import create_record, delivery_seen, load_snapshot, mark_delivery, save_snapshot

PROCESSED = "processed"
DUPLICATE = "duplicate"
IGNORED = "ignored"


@dataclass(frozen=True)
class HandleResult:
    key: PullRequestKey
    outcome: str
    status: str | None = None
    approval_count: int = 0
    posted: bool = False


class ReviewSyncEngine:
    """Apply pull request events one at a time per PR and mirror them to Slack."""

    def __init__(
        self,
        *,
        renderer: SlackRenderer,
        policy: RepositoryPolicy,
        guard: KeyedLock | None = None,
        session_factory: sessionmaker[Session] | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self._renderer = renderer
        self._policy = policy
        self._guard = guard or KeyedLock()
        self._session_factory = session_factory
        self._lock_timeout = lock_timeout

    @property
    def guard(self) -> KeyedLock:
        return self._guard

    def handle(self, event_name: str, payload: Mapping[str, Any], *, delivery_id: str | None = None) -> HandleResult:
        """Process one webhook delivery.

        Raises ``MalformedEventError`` for payloads that are not PR events,
        ``DownstreamUnavailableError`` when Slack or the directory fails,
        ``OptimisticLockError`` when another process wrote the record first
        and ``TimeoutError`` when the PR stays locked past the lock timeout.
        """

        event, log = self._classify(event_name, payload, delivery_id)
        return self._guard.run(event.key, self._process, event, log, timeout=self._lock_timeout)

    def handle_in_background(
        self,
        event_name: str,
        payload: Mapping[str, Any],
        *,
        delivery_id: str | None = None,
        trace_id: str | None = None,
        abandoned: threading.Event | None = None,
    ) -> Future:
        """Wait for the PR's lock in the calling thread, then process on the shared pool.

        Only the locked work occupies a pool worker, so deliveries queued
        behind a busy PR never starve other PRs of workers. The worker
        releases the lock when it finishes. Setting *abandoned* stops the
        worker before it commits the new record.
        """

        event, log = self._classify(event_name, payload, delivery_id)
        self._guard.acquire(event.key, timeout=self._lock_timeout)
        try:
            return run_async(self._process_and_release, event, log, abandoned, trace_id=trace_id)
        except BaseException:
            self._guard.release(event.key)
            raise

    def _classify(self, event_name: str, payload: Mapping[str, Any], delivery_id: str | None):
        context = derive_pr_key(payload)
        event = parse_event(event_name, payload, delivery_id=delivery_id)
        log = structlog.get_logger().bind(
            pr=context.label,
            event=event.name,
            action=event.action,
            delivery_id=delivery_id,
        )
        return event, log

    def _process_and_release(self, event: PrEvent, log, abandoned: threading.Event | None) -> HandleResult:
        try:
            return self._process(event, log, abandoned)
        finally:
            self._guard.release(event.key)

    def _process(self, event: PrEvent, log, abandoned: threading.Event | None = None) -> HandleResult:
        with session_scope(self._session_factory) as session:
            if delivery_seen(session, event.delivery_id):
                log.info("duplicate_delivery_skipped")
                return HandleResult(key=event.key, outcome=DUPLICATE)
            previous = load_snapshot(session, event.key)

        transition = apply_event(previous, event, self._policy)
        if transition.conflict:
            log.warning("state_conflict_ignored", reason=transition.conflict, status=previous.status if previous else None)

        if transition.snapshot is None:
            with session_scope(self._session_factory) as session:
                mark_delivery(session, event, outcome=IGNORED)
            log.info("pr_event_ignored", notes=list(transition.notes))
            return HandleResult(key=event.key, outcome=IGNORED)

        current = transition.snapshot
        posted = False
        if previous is None:
            ref = self._renderer.publish(current, team_slugs=event.team_slugs)
            previous = transition.baseline.with_message(ref.channel_id, ref.ts)
            # the message reference is committed on its own so a later failure
            # can never lead to a second post for this PR
            with session_scope(self._session_factory) as session:
                create_record(session, previous)
            current = current.with_message(ref.channel_id, ref.ts)
            posted = True

        reactions = self._renderer.converge(previous, current, refresh_text=not posted)
        current = replace(current, reactions=reactions)

        if abandoned is not None and abandoned.is_set():
            # the caller already answered 503; leave the record for the redelivery
            log.warning("pr_event_abandoned", status=current.status, sequence=previous.sequence)
            raise TimeoutError(f"Processing of {event.key} was abandoned by its caller")

        with session_scope(self._session_factory) as session:
            save_snapshot(session, previous, current, changed_by=event.actor or "github")
            mark_delivery(session, event)

        log.info(
            "pr_event_processed",
            status=current.status,
            previous_status=previous.status,
            approval_count=current.approval_count,
            required_approvals=current.required_approvals,
            sequence=current.sequence,
            posted=posted,
        )
        return HandleResult(
            key=event.key,
            outcome=PROCESSED,
            status=current.status,
            approval_count=current.approval_count,
            posted=posted,
        )
