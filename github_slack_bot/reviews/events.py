"""Parsing of GitHub pull-request webhook payloads into review events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping

from pydantic import BaseModel, Field, ValidationError

PULL_REQUEST_EVENT = "pull_request"
PULL_REQUEST_REVIEW_EVENT = "pull_request_review"
PULL_REQUEST_REVIEW_COMMENT_EVENT = "pull_request_review_comment"

SUPPORTED_EVENTS = frozenset(
    {
        PULL_REQUEST_EVENT,
        PULL_REQUEST_REVIEW_EVENT,
        PULL_REQUEST_REVIEW_COMMENT_EVENT,
    }
)


class MalformedEventError(ValueError):
    """Raised when a webhook payload lacks the fields every PR event must carry."""


class UserRef(BaseModel):
    login: str


class TeamRef(BaseModel):
    slug: str
    name: str | None = None


class RepositoryRef(BaseModel):
    full_name: str = Field(..., min_length=1)


class BaseRef(BaseModel):
    repo: RepositoryRef


class PullRequestPayload(BaseModel):
    """The subset of GitHub's ``pull_request`` object the bot relies on."""

    number: int
    base: BaseRef
    title: str = ""
    html_url: str = ""
    user: UserRef | None = None
    merged: bool | None = False
    draft: bool = False
    requested_teams: List[TeamRef] = Field(default_factory=list)


class ReviewPayload(BaseModel):
    id: int | None = None
    state: str = ""
    user: UserRef | None = None


class CommentPayload(BaseModel):
    id: int | None = None
    user: UserRef | None = None


class WebhookPayload(BaseModel):
    action: str = ""
    pull_request: PullRequestPayload
    review: ReviewPayload | None = None
    comment: CommentPayload | None = None
    sender: UserRef | None = None


@dataclass(frozen=True, order=True)
class PullRequestKey:
    """Stable identity of a pull request's notification thread."""

    repository: str
    number: int

    def __str__(self) -> str:
        return f"{self.repository}#{self.number}"


@dataclass(frozen=True)
class PrKeyContext:
    key: PullRequestKey
    label: str


@dataclass(frozen=True)
class PrEvent:
    """A classified webhook delivery for one pull request."""

    name: str
    action: str
    key: PullRequestKey
    label: str
    pull_request: PullRequestPayload
    review_state: str | None = None
    actor: str | None = None
    delivery_id: str | None = None

    @property
    def author(self) -> str | None:
        return self.pull_request.user.login if self.pull_request.user else None

    @property
    def team_slugs(self) -> List[str]:
        return [team.slug for team in self.pull_request.requested_teams]


def _describe(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}"


def derive_pr_key(payload: Mapping[str, Any]) -> PrKeyContext:
    """Return the key and log label of the pull request *payload* refers to."""

    raw = payload.get("pull_request") if isinstance(payload, Mapping) else None
    if not isinstance(raw, Mapping):
        raise MalformedEventError("Event payload has no pull_request object")

    try:
        pull_request = PullRequestPayload.model_validate(raw)
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid pull_request object ({_describe(exc)})") from exc

    key = PullRequestKey(repository=pull_request.base.repo.full_name.lower(), number=pull_request.number)
    return PrKeyContext(key=key, label=f"{pull_request.base.repo.full_name}#{pull_request.number}")


def parse_event(event_name: str, payload: Mapping[str, Any], *, delivery_id: str | None = None) -> PrEvent:
    """Validate *payload* and classify it as a :class:`PrEvent`."""

    if event_name not in SUPPORTED_EVENTS:
        raise MalformedEventError(f"Unsupported event type '{event_name}'")

    context = derive_pr_key(payload)
    try:
        body = WebhookPayload.model_validate(payload)
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid {event_name} payload ({_describe(exc)})") from exc

    review_state = None
    actor = body.sender.login if body.sender else None
    if event_name == PULL_REQUEST_REVIEW_EVENT:
        if body.review is None:
            raise MalformedEventError("pull_request_review event has no review object")
        review_state = body.review.state.lower() or None
        if body.review.user is not None:
            actor = body.review.user.login
        if not actor:
            raise MalformedEventError("pull_request_review event has no reviewer")
    elif event_name == PULL_REQUEST_REVIEW_COMMENT_EVENT and body.comment and body.comment.user:
        actor = body.comment.user.login

    return PrEvent(
        name=event_name,
        action=body.action.lower(),
        key=context.key,
        label=context.label,
        pull_request=body.pull_request,
        review_state=review_state,
        actor=actor.lower() if actor else None,
        delivery_id=delivery_id,
    )
