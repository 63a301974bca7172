"""Application entry point for the GitHub pull request Slack relay."""

from __future__ import annotations

import json
from pathlib import Path
import threading
from uuid import uuid4

from flask import Flask, current_app, jsonify, request
from slack_bolt import App as SlackApp
from slack_bolt.adapter.flask import SlackRequestHandler
from slack_sdk import WebClient
from slack_sdk.errors import SlackClientError
from sqlalchemy import text
import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

from github_slack_bot.background import wait_for_result
from github_slack_bot.commands import register_command_handlers
from github_slack_bot.config import AppSettings, get_settings
from github_slack_bot.db import create_schema, get_session_factory, session_scope
from github_slack_bot.directory import IdentityDirectory
from github_slack_bot.errors import DownstreamUnavailableError
from github_slack_bot.locks import KeyedLock
from github_slack_bot.logging_config import configure_logging
from github_slack_bot.models import OptimisticLockError
from github_slack_bot.reviews import (
    SUPPORTED_EVENTS,
    MalformedEventError,
    Presentation,
    RepositoryPolicy,
    ReviewSyncEngine,
    SlackRenderer,
)
from github_slack_bot.security import (
    GITHUB_DELIVERY_HEADER,
    GITHUB_EVENT_HEADER,
    GITHUB_SIGNATURE_HEADER,
    SLACK_SIGNATURE_HEADER,
    SLACK_TIMESTAMP_HEADER,
    is_valid_github_request,
    is_valid_slack_request,
)
from github_slack_bot.slack_client import SlackClient

ENGINE_EXTENSION = "review_sync_engine"
SLACK_EXTENSION = "slack_client"


def _create_bolt_app(settings: AppSettings) -> SlackApp:
    """Initialise the Slack Bolt application using validated settings."""

    return SlackApp(
        client=WebClient(token=settings.bot_token, timeout=settings.slack_timeout_seconds),
        signing_secret=settings.signing_secret,
        token_verification_enabled=False,
    )


def _build_engine(settings: AppSettings, slack_client: SlackClient, directory: IdentityDirectory) -> ReviewSyncEngine:
    renderer = SlackRenderer(
        client=slack_client,
        directory=directory,
        default_channel=settings.default_channel,
        presentation=Presentation.from_settings(settings),
    )
    return ReviewSyncEngine(
        renderer=renderer,
        policy=RepositoryPolicy.from_names(settings.two_approval_repos),
        guard=KeyedLock(),
        session_factory=get_session_factory(),
        lock_timeout=settings.lock_timeout_seconds,
    )


def _register_error_handlers(flask_app: Flask) -> None:
    """Register a JSON error handler that attaches a trace identifier."""

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[override]
        trace_id = str(uuid4())
        flask_app.logger.exception(
            "Unhandled application error", extra={"trace_id": trace_id}, exc_info=error
        )
        response = jsonify({"error": "internal_server_error", "trace_id": trace_id})
        response.status_code = 500
        return response


def _json_response(payload: dict, status: int):
    response = jsonify(payload)
    response.status_code = status
    return response


def _handle_github_webhook(settings: AppSettings):
    raw_body = request.get_data()
    signature = request.headers.get(GITHUB_SIGNATURE_HEADER, "")
    event_name = request.headers.get(GITHUB_EVENT_HEADER, "")
    delivery_id = request.headers.get(GITHUB_DELIVERY_HEADER) or None

    trace_id = str(uuid4())
    bind_contextvars(trace_id=trace_id)
    log = structlog.get_logger().bind(event=event_name, delivery_id=delivery_id)
    try:
        if not signature or not event_name or not raw_body:
            log.warning("github_webhook_incomplete", has_signature=bool(signature), has_payload=bool(raw_body))
            return _json_response({"message": "Missing headers or payload"}, 400)

        if not is_valid_github_request(secret=settings.github_webhook_secret, body=raw_body, signature=signature):
            log.error("github_signature_invalid")
            return _json_response({"message": "Invalid signature"}, 401)

        log.info("github_webhook_received")
        if event_name not in SUPPORTED_EVENTS:
            log.debug("github_event_unhandled")
            return _json_response({"message": "Event ignored", "outcome": "ignored"}, 200)

        try:
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError):
            log.error("github_payload_not_json")
            return _json_response({"message": "Malformed event dropped", "outcome": "dropped"}, 202)

        engine: ReviewSyncEngine = current_app.extensions[ENGINE_EXTENSION]
        abandoned = threading.Event()
        try:
            future = engine.handle_in_background(
                event_name,
                payload,
                delivery_id=delivery_id,
                trace_id=trace_id,
                abandoned=abandoned,
            )
            result = wait_for_result(future, timeout=settings.handler_timeout_seconds)
        except MalformedEventError as exc:
            log.error("github_event_malformed", error=str(exc))
            return _json_response({"message": "Malformed event dropped", "outcome": "dropped"}, 202)
        except DownstreamUnavailableError as exc:
            log.error("github_event_downstream_unavailable", error=str(exc))
            return _json_response({"message": "Downstream unavailable", "trace_id": trace_id}, 503)
        except TimeoutError as exc:
            abandoned.set()
            log.error("github_event_timed_out", error=str(exc))
            return _json_response({"message": "Timed out processing event", "trace_id": trace_id}, 503)
        except OptimisticLockError as exc:
            log.warning("github_event_conflict", error=str(exc))
            return _json_response({"message": "Concurrent update, retry", "trace_id": trace_id}, 409)

        return _json_response(
            {
                "message": "Webhook received and processed",
                "pr": str(result.key),
                "outcome": result.outcome,
                "status": result.status,
            },
            200,
        )
    finally:
        unbind_contextvars("trace_id")


_LOGGING_CONFIGURED = False


def _load_version() -> str:
    version_file = Path(__file__).resolve().parent / "VERSION"
    if version_file.exists():
        return version_file.read_text(encoding="utf-8").strip()
    return "unknown"


def create_app() -> Flask:
    """Create and configure the Flask application."""

    global _LOGGING_CONFIGURED
    settings = get_settings()
    if not _LOGGING_CONFIGURED:
        configure_logging(settings.log_level)
        _LOGGING_CONFIGURED = True

    create_schema()

    bolt_app = _create_bolt_app(settings)
    handler = SlackRequestHandler(bolt_app)
    slack_client = SlackClient(client=bolt_app.client)
    directory = IdentityDirectory(get_session_factory())
    register_command_handlers(bolt_app, directory)

    flask_app = Flask(__name__)
    flask_app.config["APP_VERSION"] = _load_version()
    flask_app.logger.setLevel(settings.log_level)
    flask_app.extensions[ENGINE_EXTENSION] = _build_engine(settings, slack_client, directory)
    flask_app.extensions[SLACK_EXTENSION] = slack_client

    _register_error_handlers(flask_app)

    @flask_app.route("/github-webhook", methods=["POST"])
    def github_webhook():
        return _handle_github_webhook(settings)

    @flask_app.route("/slack/commands", methods=["POST"])
    def slack_commands():
        raw_body = request.get_data(as_text=True)
        timestamp = request.headers.get(SLACK_TIMESTAMP_HEADER, "")
        signature = request.headers.get(SLACK_SIGNATURE_HEADER, "")

        if not is_valid_slack_request(
            signing_secret=settings.signing_secret,
            timestamp=timestamp,
            body=raw_body,
            signature=signature,
        ):
            return _json_response({"error": "invalid_signature"}, 401)

        return handler.handle(request)

    @flask_app.route("/healthz", methods=["GET"])
    def healthz():
        health: dict[str, object] = {"ok": True}
        health["version"] = flask_app.config.get("APP_VERSION", "unknown")

        try:
            get_settings()
            health["config"] = "valid"
        except Exception as exc:
            health["config"] = "invalid"
            health["config_error"] = str(exc)
            health["ok"] = False

        try:
            with session_scope() as session:
                session.execute(text("SELECT 1"))
            health["db"] = "up"
        except Exception as exc:
            health["db"] = "down"
            health["db_error"] = str(exc)
            health["ok"] = False

        try:
            auth = flask_app.extensions[SLACK_EXTENSION].auth_test()
            if not auth.get("ok"):
                raise RuntimeError(auth.get("error") or "Slack authentication test failed")
            health["slack"] = "up"
        except (SlackClientError, OSError, RuntimeError) as exc:
            health["slack"] = "down"
            health["slack_error"] = str(exc)
            health["ok"] = False

        status = 200 if health["ok"] else 503
        if not health["ok"]:
            structlog.get_logger().error("health_check_failed", **{k: v for k, v in health.items() if k != "ok"})
        return jsonify(health), status

    return flask_app


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    application = create_app()
    application.run(host="0.0.0.0", port=get_settings().port, debug=False)
