"""Pull request review tracking: event parsing, status aggregation and Slack rendering."""

from .engine import HandleResult, ReviewSyncEngine
from .events import MalformedEventError, PrEvent, PullRequestKey, SUPPORTED_EVENTS, derive_pr_key, parse_event
from .messages import Presentation, build_pr_message
from .notifications import MessageRef, SlackRenderer
from .state import PrSnapshot, RepositoryPolicy, apply_event

__all__ = [
    "HandleResult",
    "ReviewSyncEngine",
    "MalformedEventError",
    "PrEvent",
    "PullRequestKey",
    "SUPPORTED_EVENTS",
    "derive_pr_key",
    "parse_event",
    "Presentation",
    "build_pr_message",
    "MessageRef",
    "SlackRenderer",
    "PrSnapshot",
    "RepositoryPolicy",
    "apply_event",
]
