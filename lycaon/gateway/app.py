from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any
from urllib.parse import parse_qs

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from slack_sdk.signature import SignatureVerifier

from lycaon.channels import slack_render as render
from lycaon.channels.slack import SlackService
from lycaon.config.incident_config import load_incident_config
from lycaon.config.settings import get_settings
from lycaon.domain.models import (
    IncidentDetails,
    StatusHistoryWithUser,
    TaskUpdateRequest,
    UpdateIncidentRequest,
    User,
)
from lycaon.gateway.dispatch import AsyncDispatcher
from lycaon.gateway.protocol import (
    ErrorData,
    ErrorResponse,
    IncidentUpdateParams,
    IncidentView,
    SlackEventEnvelope,
    SlackInteraction,
    StatusChangeParams,
    StatusHistoryView,
    TaskCreateParams,
    TaskUpdateParams,
    TaskView,
)
from lycaon.incident.coordinator import IncidentCoordinator
from lycaon.incident.tasks import TaskTracker
from lycaon.infra.errors import (
    ChannelError,
    GatewayError,
    InvalidInputError,
    LycaonError,
    NoOpTransitionError,
    NotFoundError,
)
from lycaon.infra.logging import setup_logging
from lycaon.llm.model_client import OpenAICompatModelClient
from lycaon.llm.summarizer import IncidentSummarizer
from lycaon.storage.database import create_db_engine, ensure_schema, make_session_factory
from lycaon.storage.repository import SqlRepository

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize shared state on startup."""
    settings = get_settings()
    setup_logging(json_output=settings.log.json_output, log_level=settings.log.level)

    # Fail fast: a broken incident config must not start the service
    incident_config = load_incident_config(settings.incident.config_path)

    engine = await create_db_engine(settings.database)
    await ensure_schema(engine, settings.database.schema_)
    repository = SqlRepository(make_session_factory(engine))
    logger.info("db_connected")

    slack = SlackService(settings.slack.bot_token)
    bot_user_id = ""
    try:
        bot_user_id = await slack.bot_user_id()
    except ChannelError as exc:
        logger.warning("slack_bot_identity_unavailable", error=str(exc))

    summarizer = None
    if settings.openai.api_key:
        summarizer = IncidentSummarizer(
            OpenAICompatModelClient(
                api_key=settings.openai.api_key,
                base_url=settings.openai.base_url,
                timeout=settings.openai.timeout_s,
                max_retries=settings.openai.max_retries,
            ),
            settings.openai.model,
            incident_config,
        )
        logger.info("incident_summarizer_enabled", model=settings.openai.model)

    coordinator = IncidentCoordinator(
        repository,
        slack,
        incident_config,
        summarizer=summarizer,
        channel_prefix=settings.slack.channel_prefix,
        frontend_url=settings.incident.frontend_url,
        initial_triage=settings.incident.initial_triage,
        request_ttl=timedelta(minutes=settings.incident.request_ttl_minutes),
    )
    dispatcher = AsyncDispatcher(max_concurrency=settings.dispatch.max_concurrency)

    app.state.coordinator = coordinator
    app.state.tasks = TaskTracker(repository, slack)
    app.state.dispatcher = dispatcher
    app.state.slack = slack
    app.state.bot_user_id = bot_user_id
    app.state.signature_verifier = (
        SignatureVerifier(settings.slack.signing_secret)
        if settings.slack.signing_secret
        else None
    )
    logger.info(
        "gateway_started",
        host=settings.gateway.host,
        port=settings.gateway.port,
        channel_prefix=settings.slack.channel_prefix,
        categories=len(incident_config.categories),
    )

    yield

    await dispatcher.drain(timeout=settings.dispatch.drain_timeout_s)
    await repository.close()
    await engine.dispose()
    logger.info("db_engine_disposed")


app = FastAPI(title="lycaon", version="0.1.0", lifespan=lifespan)


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    """Bind a request_id to structlog context; dispatched work inherits it."""
    structlog.contextvars.clear_contextvars()
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _http_status(exc: LycaonError) -> int:
    if isinstance(exc, NoOpTransitionError):
        return 409
    if isinstance(exc, InvalidInputError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, GatewayError) and exc.code == "INVALID_SIGNATURE":
        return 401
    return 500


@app.exception_handler(LycaonError)
async def lycaon_error_handler(request: Request, exc: LycaonError) -> JSONResponse:
    status = _http_status(exc)
    if status >= 500:
        logger.error("request_error", code=exc.code, error=str(exc), path=request.url.path)
    else:
        logger.warning("request_error", code=exc.code, error=str(exc), path=request.url.path)
    body = ErrorResponse(error=ErrorData(code=exc.code, message=str(exc)))
    return JSONResponse(status_code=status, content=body.model_dump())


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Slack callbacks
# ---------------------------------------------------------------------------


async def _verified_body(request: Request) -> bytes:
    body = await request.body()
    verifier: SignatureVerifier | None = request.app.state.signature_verifier
    if verifier is not None and not verifier.is_valid_request(body, dict(request.headers)):
        raise GatewayError("invalid Slack request signature", code="INVALID_SIGNATURE")
    return body


@app.post("/slack/events")
async def slack_events(request: Request) -> Response:
    body = await _verified_body(request)
    try:
        envelope = SlackEventEnvelope.model_validate_json(body)
    except ValidationError as e:
        raise InvalidInputError(f"malformed Slack event: {e}") from e

    if envelope.type == "url_verification":
        return JSONResponse({"challenge": envelope.challenge})

    # Slack redelivers when the ack was late; the first delivery is already handled
    if request.headers.get("x-slack-retry-num"):
        logger.info("slack_event_retry_ignored", event_id=envelope.event_id)
        return JSONResponse({"ok": True})

    event = envelope.event
    if envelope.type != "event_callback" or event is None:
        return JSONResponse({"ok": True})

    structlog.contextvars.bind_contextvars(slack_user=event.user, event_id=envelope.event_id)
    coordinator: IncidentCoordinator = request.app.state.coordinator
    dispatcher: AsyncDispatcher = request.app.state.dispatcher

    if event.type == "app_mention" and not event.bot_id:
        bot_user_id = request.app.state.bot_user_id or envelope.bot_user_id
        task_command = render.parse_task_command(event.text, bot_user_id)
        command = render.parse_incident_command(event.text, bot_user_id)
        if task_command is not None:
            tasks: TaskTracker = request.app.state.tasks
            logger.info("task_command_received", channel_id=event.channel)
            dispatcher.dispatch(
                lambda: tasks.handle_task_command(
                    event.channel, event.ts, event.user, task_command.title
                ),
                name="task_command",
            )
        elif command is not None:
            logger.info(
                "incident_command_received", channel_id=event.channel, title=command.title
            )
            dispatcher.dispatch(
                lambda: coordinator.propose_incident(
                    event.channel, event.ts, event.thread_ts, command.title, event.user
                ),
                name="propose_incident",
            )
    elif event.type == "member_joined_channel":
        dispatcher.dispatch(
            lambda: coordinator.record_member_joined(event.channel, event.user),
            name="member_joined",
        )
    elif event.type == "member_left_channel":
        dispatcher.dispatch(
            lambda: coordinator.record_member_left(event.channel, event.user),
            name="member_left",
        )
    else:
        logger.debug("slack_event_ignored", event_type=event.type)

    return JSONResponse({"ok": True})


def _parse_interaction(body: bytes) -> SlackInteraction:
    form = parse_qs(body.decode("utf-8"))
    raw = (form.get("payload") or [""])[0]
    if not raw:
        raise InvalidInputError("interaction payload is missing")
    try:
        return SlackInteraction.model_validate_json(raw)
    except ValidationError as e:
        raise InvalidInputError(f"malformed interaction payload: {e}") from e


@app.post("/slack/interactions")
async def slack_interactions(request: Request) -> Response:
    body = await _verified_body(request)
    interaction = _parse_interaction(body)
    structlog.contextvars.bind_contextvars(slack_user=interaction.user.id)

    coordinator: IncidentCoordinator = request.app.state.coordinator
    try:
        await coordinator.record_user(interaction.user.id, interaction.display_name)
    except LycaonError as exc:
        logger.warning("slack_user_upsert_failed", user_id=interaction.user.id, error=str(exc))

    if interaction.type == "block_actions":
        for action in interaction.actions:
            await _handle_block_action(request, interaction, action.action_id, action.value)
        return Response(status_code=200)

    if interaction.type == "view_submission" and interaction.view is not None:
        result = await _handle_view_submission(request, interaction)
        if result:
            return JSONResponse(result)
        return Response(status_code=200)

    logger.debug("slack_interaction_ignored", interaction_type=interaction.type)
    return Response(status_code=200)


async def _handle_block_action(
    request: Request, interaction: SlackInteraction, action_id: str, value: str
) -> None:
    coordinator: IncidentCoordinator = request.app.state.coordinator
    dispatcher: AsyncDispatcher = request.app.state.dispatcher
    user_id = interaction.user.id
    channel_id = interaction.channel_id

    if action_id == render.ACTION_CREATE_INCIDENT:
        if not value:
            raise InvalidInputError("empty request ID in action value")
        logger.info("incident_create_requested", request_id=value, channel_id=channel_id)
        dispatcher.dispatch(
            lambda: coordinator.handle_create_incident_action_async(value, user_id, channel_id),
            name="create_incident",
        )

    elif action_id == render.ACTION_EDIT_INCIDENT:
        try:
            await coordinator.open_request_edit_modal(value, interaction.trigger_id)
        except NotFoundError:
            await _notify_ephemeral(
                request,
                channel_id,
                user_id,
                "Failed to open edit dialog. The request was not found.",
            )

    elif action_id == render.ACTION_EDIT_STATUS:
        try:
            incident_id = int(value)
        except ValueError as e:
            raise InvalidInputError(f"invalid incident ID in action value: {value!r}") from e
        incident = await coordinator.get_incident(incident_id)
        message_ts = interaction.container.message_ts if interaction.container else ""
        await request.app.state.slack.open_view(
            interaction.trigger_id,
            render.status_change_modal(incident, channel_id, message_ts),
        )

    elif action_id == render.ACTION_EDIT_DETAILS:
        try:
            incident_id = int(value)
        except ValueError as e:
            raise InvalidInputError(f"invalid incident ID in action value: {value!r}") from e
        await coordinator.open_incident_details_modal(incident_id, interaction.trigger_id)

    elif action_id in (
        render.ACTION_TASK_COMPLETE,
        render.ACTION_TASK_UNCOMPLETE,
        render.ACTION_TASK_EDIT,
    ):
        await _handle_task_action(request, interaction, action_id, value)

    else:
        logger.debug("slack_action_ignored", action_id=action_id)


async def _handle_task_action(
    request: Request, interaction: SlackInteraction, action_id: str, value: str
) -> None:
    tasks: TaskTracker = request.app.state.tasks
    try:
        incident_id, task_id = render.parse_task_ref(value)
    except ValueError as e:
        raise InvalidInputError(f"invalid task reference in action value: {value!r}") from e

    try:
        if action_id == render.ACTION_TASK_COMPLETE:
            await tasks.complete_task(incident_id, task_id)
        elif action_id == render.ACTION_TASK_UNCOMPLETE:
            await tasks.uncomplete_task(incident_id, task_id)
        else:
            await tasks.open_task_edit_modal(incident_id, task_id, interaction.trigger_id)
    except (InvalidInputError, NotFoundError) as exc:
        logger.warning("task_action_failed", action_id=action_id, error=str(exc))
        await _notify_ephemeral(
            request, interaction.channel_id, interaction.user.id, f"Task update failed: {exc}"
        )


async def _notify_ephemeral(
    request: Request, channel_id: str, user_id: str, message: str
) -> None:
    if not channel_id:
        return
    try:
        await request.app.state.slack.post_ephemeral(
            channel_id, user_id, message, blocks=render.error_blocks(message)
        )
    except ChannelError as exc:
        logger.warning("slack_ephemeral_failed", channel_id=channel_id, error=str(exc))


async def _handle_view_submission(
    request: Request, interaction: SlackInteraction
) -> dict[str, Any] | None:
    """Returns a response_action payload when the modal should show errors."""
    coordinator: IncidentCoordinator = request.app.state.coordinator
    dispatcher: AsyncDispatcher = request.app.state.dispatcher
    view = interaction.view
    user_id = interaction.user.id

    if view.callback_id == render.CALLBACK_STATUS_CHANGE:
        try:
            incident_id, _, _ = render.parse_status_change_metadata(view.private_metadata)
        except (ValueError, KeyError, json.JSONDecodeError) as e:
            raise InvalidInputError(f"malformed status modal metadata: {e}") from e
        status = render.view_state_value(view.state, render.BLOCK_STATUS, "status_select")
        note = render.view_state_value(view.state, render.BLOCK_NOTE, "note_input")
        try:
            await coordinator.update_status(incident_id, status, user_id, note)
        except (InvalidInputError, NotFoundError) as exc:
            return {"response_action": "errors", "errors": {render.BLOCK_STATUS: str(exc)}}
        return None

    if view.callback_id == render.CALLBACK_INCIDENT_CREATION:
        request_id = view.private_metadata
        try:
            draft = await coordinator.get_incident_request(request_id)
        except (InvalidInputError, NotFoundError):
            return {
                "response_action": "errors",
                "errors": {render.BLOCK_TITLE: render.ERROR_REQUEST_NOT_FOUND},
            }
        state = view.state
        if render.view_state_has_block(state, render.BLOCK_ASSETS):
            asset_ids = render.view_state_values(state, render.BLOCK_ASSETS, "assets_select")
        else:
            asset_ids = list(draft.asset_ids)
        details = IncidentDetails(
            title=render.view_state_value(state, render.BLOCK_TITLE, "title_input"),
            description=render.view_state_value(
                state, render.BLOCK_DESCRIPTION, "description_input"
            ),
            category_id=render.view_state_value(state, render.BLOCK_CATEGORY, "category_select"),
            severity_id=render.view_state_value(state, render.BLOCK_SEVERITY, "severity_select"),
            asset_ids=asset_ids,
            private=render.PRIVATE_OPTION
            in render.view_state_values(state, render.BLOCK_PRIVATE, "private_select"),
        )
        dispatcher.dispatch(
            lambda: coordinator.handle_create_incident_action_async(
                request_id, user_id, draft.channel_id, details
            ),
            name="create_incident",
        )
        return None

    if view.callback_id == render.CALLBACK_EDIT_DETAILS:
        try:
            incident_id = int(view.private_metadata)
        except ValueError as e:
            raise InvalidInputError(f"malformed details modal metadata: {e}") from e
        update = _details_update(view.state)
        try:
            await coordinator.update_incident(incident_id, update, user_id)
        except (InvalidInputError, NotFoundError) as exc:
            return {"response_action": "errors", "errors": {render.BLOCK_TITLE: str(exc)}}
        return None

    if view.callback_id == render.CALLBACK_TASK_EDIT:
        tasks: TaskTracker = request.app.state.tasks
        try:
            incident_id, task_id = render.parse_task_ref(view.private_metadata)
        except ValueError as e:
            raise InvalidInputError(f"malformed task modal metadata: {e}") from e
        state = view.state
        task_update = TaskUpdateRequest(
            title=render.view_state_value(state, render.BLOCK_TITLE, "title_input"),
            description=render.view_state_value(
                state, render.BLOCK_DESCRIPTION, "description_input"
            ),
            status=render.view_state_value(state, render.BLOCK_STATUS, "status_select") or None,
            assignee_id=render.view_state_user(state, render.BLOCK_ASSIGNEE, "assignee_select"),
        )
        try:
            await tasks.update_task(incident_id, task_id, task_update)
        except (InvalidInputError, NotFoundError) as exc:
            return {"response_action": "errors", "errors": {render.BLOCK_TITLE: str(exc)}}
        return None

    logger.debug("slack_view_ignored", callback_id=view.callback_id)
    return None


def _details_update(state: dict[str, Any]) -> UpdateIncidentRequest:
    """Severity and assets stay unchanged when their block was not rendered."""
    severity_id = None
    if render.view_state_has_block(state, render.BLOCK_SEVERITY):
        severity_id = (
            render.view_state_value(state, render.BLOCK_SEVERITY, "severity_select") or None
        )
    asset_ids = None
    if render.view_state_has_block(state, render.BLOCK_ASSETS):
        asset_ids = render.view_state_values(state, render.BLOCK_ASSETS, "assets_select")
    return UpdateIncidentRequest(
        title=render.view_state_value(state, render.BLOCK_TITLE, "title_input"),
        description=render.view_state_value(state, render.BLOCK_DESCRIPTION, "description_input"),
        lead=render.view_state_user(state, render.BLOCK_LEAD, "lead_select"),
        severity_id=severity_id,
        asset_ids=asset_ids,
    )


# ---------------------------------------------------------------------------
# JSON API
# ---------------------------------------------------------------------------


@app.get("/api/incidents/recent")
async def recent_incidents(request: Request, days: int = 7) -> dict[str, list[IncidentView]]:
    coordinator: IncidentCoordinator = request.app.state.coordinator
    grouped = await coordinator.list_recent_open_incidents(days)
    return {
        day: [IncidentView.from_incident(i) for i in incidents]
        for day, incidents in grouped.items()
    }


@app.get("/api/incidents/{incident_id}")
async def get_incident(request: Request, incident_id: int) -> IncidentView:
    coordinator: IncidentCoordinator = request.app.state.coordinator
    return IncidentView.from_incident(await coordinator.get_incident(incident_id))


@app.get("/api/incidents/{incident_id}/history")
async def get_incident_history(request: Request, incident_id: int) -> list[StatusHistoryView]:
    coordinator: IncidentCoordinator = request.app.state.coordinator
    entries = await coordinator.ledger.history(incident_id)
    return [StatusHistoryView.from_entry(e) for e in entries]


@app.post("/api/incidents/{incident_id}/status")
async def change_incident_status(
    request: Request, incident_id: int, params: StatusChangeParams
) -> StatusHistoryView:
    coordinator: IncidentCoordinator = request.app.state.coordinator
    entry = await coordinator.update_status(incident_id, params.status, params.actor, params.note)
    actor = User(slack_user_id=params.actor, name=params.actor)
    return StatusHistoryView.from_entry(StatusHistoryWithUser(history=entry, user=actor))


@app.patch("/api/incidents/{incident_id}")
async def update_incident(
    request: Request, incident_id: int, params: IncidentUpdateParams
) -> IncidentView:
    coordinator: IncidentCoordinator = request.app.state.coordinator
    update = UpdateIncidentRequest(
        title=params.title,
        description=params.description,
        lead=params.lead,
        severity_id=params.severity_id,
        asset_ids=params.asset_ids,
        status=params.status,
        note=params.note,
    )
    incident = await coordinator.update_incident(incident_id, update, params.actor)
    return IncidentView.from_incident(incident)


@app.post("/api/incidents/{incident_id}/members/sync")
async def sync_incident_members(request: Request, incident_id: int) -> IncidentView:
    coordinator: IncidentCoordinator = request.app.state.coordinator
    return IncidentView.from_incident(await coordinator.sync_joined_members(incident_id))


@app.get("/api/incidents/{incident_id}/tasks")
async def list_incident_tasks(request: Request, incident_id: int) -> list[TaskView]:
    tasks: TaskTracker = request.app.state.tasks
    return [TaskView.from_task(t) for t in await tasks.list_tasks(incident_id)]


@app.post("/api/incidents/{incident_id}/tasks", status_code=201)
async def create_incident_task(
    request: Request, incident_id: int, params: TaskCreateParams
) -> TaskView:
    tasks: TaskTracker = request.app.state.tasks
    task = await tasks.create_task(incident_id, params.title, params.actor)
    return TaskView.from_task(task)


@app.patch("/api/incidents/{incident_id}/tasks/{task_id}")
async def update_incident_task(
    request: Request, incident_id: int, task_id: str, params: TaskUpdateParams
) -> TaskView:
    tasks: TaskTracker = request.app.state.tasks
    update = TaskUpdateRequest(
        title=params.title,
        description=params.description,
        status=params.status,
        assignee_id=params.assignee_id,
    )
    return TaskView.from_task(await tasks.update_task(incident_id, task_id, update))
