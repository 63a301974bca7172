"""Slash commands that maintain the GitHub to Slack identity directory."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from sqlalchemy.exc import SQLAlchemyError
import structlog

from github_slack_bot.directory import IdentityDirectory
from github_slack_bot.errors import DownstreamUnavailableError

ADD_GITHUB_USER_COMMAND = "/addgithubuser"
REMOVE_GITHUB_USER_COMMAND = "/removegithubuser"
ADD_CHANNEL_COMMAND = "/addchannel"
REMOVE_CHANNEL_COMMAND = "/removechannel"

_ERROR_TEXT = ":x: Error processing your request. Please try again."


@dataclass(frozen=True)
class CommandSpec:
    name: str
    argument: str
    subject: str  # "user" or "channel"
    run: Callable[[IdentityDirectory, str, str], str]


def _ephemeral(text: str) -> dict[str, str]:
    return {"response_type": "ephemeral", "text": text}


def _add_user(directory: IdentityDirectory, github_username: str, slack_user_id: str) -> str:
    directory.set_mapping(github_username, slack_user_id)
    return f":white_check_mark: Successfully linked your Slack account to GitHub username: {github_username}"


def _remove_user(directory: IdentityDirectory, github_username: str, slack_user_id: str) -> str:
    if directory.remove_mapping(github_username):
        return f":boom: Successfully removed the Slack user linked with GitHub username: {github_username}"
    return f"No Slack user is linked with GitHub username: {github_username}"


def _add_channel(directory: IdentityDirectory, github_team: str, channel_id: str) -> str:
    if directory.add_channel(github_team, channel_id):
        return f":white_check_mark: Successfully linked this channel to GitHub team: {github_team}"
    return f"This channel is already linked to GitHub team: {github_team}"


def _remove_channel(directory: IdentityDirectory, github_team: str, channel_id: str) -> str:
    if directory.remove_channel(github_team, channel_id):
        return f":boom: Successfully unlinked this channel from GitHub team: {github_team}"
    return f"This channel was not linked to GitHub team: {github_team}"


COMMANDS: dict[str, CommandSpec] = {
    spec.name: spec
    for spec in (
        CommandSpec(ADD_GITHUB_USER_COMMAND, "github-username", "user", _add_user),
        CommandSpec(REMOVE_GITHUB_USER_COMMAND, "github-username", "user", _remove_user),
        CommandSpec(ADD_CHANNEL_COMMAND, "github-team", "channel", _add_channel),
        CommandSpec(REMOVE_CHANNEL_COMMAND, "github-team", "channel", _remove_channel),
    )
}


def parse_command_argument(text: str | None, spec: CommandSpec) -> str:
    """Return the single argument of a directory command or raise ValueError with usage."""

    argument = (text or "").strip()
    if not argument:
        label = "GitHub username" if spec.subject == "user" else "GitHub team name"
        raise ValueError(f"Please provide a {label}. Usage: {spec.name} <{spec.argument}>")
    return argument.split()[0].lstrip("@")


def handle_directory_command(ack, command: Mapping[str, Any], directory: IdentityDirectory) -> None:
    """Bolt handler shared by every directory slash command."""

    name = (command.get("command") or "").lower()
    log = structlog.get_logger().bind(command=name)
    spec = COMMANDS.get(name)
    if spec is None:
        ack(_ephemeral(f"Unknown command `{name}`."))
        return

    try:
        argument = parse_command_argument(command.get("text"), spec)
    except ValueError as exc:
        log.info("slash_command_missing_argument")
        ack(_ephemeral(str(exc)))
        return

    subject_id = command.get("user_id") if spec.subject == "user" else command.get("channel_id")
    if not subject_id:
        log.warning("slash_command_subject_missing", subject=spec.subject)
        ack(_ephemeral(f"Unable to identify {spec.subject}. Please try again."))
        return

    try:
        text = spec.run(directory, argument, subject_id)
    except (SQLAlchemyError, DownstreamUnavailableError):
        log.error("slash_command_failed", argument=argument, exc_info=True)
        ack(_ephemeral(_ERROR_TEXT))
        return

    log.info("slash_command_handled", argument=argument, subject_id=subject_id)
    ack(_ephemeral(text))


def register_command_handlers(bolt_app, directory: IdentityDirectory) -> None:
    for name in COMMANDS:

        @bolt_app.command(name)
        def handle_command(ack, command):
            handle_directory_command(ack=ack, command=command, directory=directory)
