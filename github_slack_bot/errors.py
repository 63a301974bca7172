"""Errors shared by the webhook relay and its collaborators."""

from __future__ import annotations


class DownstreamUnavailableError(Exception):
    """Raised when Slack or the identity directory cannot complete a call."""

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code
