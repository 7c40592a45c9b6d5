"""Incident creation pipeline and incident-level operations.

create_incident runs its steps in a fixed order. Hard steps (number
allocation, channel creation, persistence, initial history) abort the
pipeline. Soft steps (team lookup, purpose, creator invite, bookmark,
welcome message, category invitations) are logged and skipped on failure.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime, timedelta

import structlog

from lycaon.channels import slack_render as render
from lycaon.channels.slack import ChatMessage, SlackClient
from lycaon.config.incident_config import IncidentConfig
from lycaon.constants import DEFAULT_CHANNEL_PREFIX
from lycaon.domain.models import (
    CreateIncidentRequest,
    Incident,
    IncidentDetails,
    IncidentRequest,
    StatusHistory,
    UpdateIncidentRequest,
    User,
)
from lycaon.domain.types import IncidentStatus, validate_incident_id
from lycaon.incident.invite import InvitationResolver
from lycaon.incident.sequence import SequenceAllocator
from lycaon.incident.status import StatusLedger
from lycaon.infra.errors import (
    ChannelError,
    IncidentNotFoundError,
    IncidentRequestNotFoundError,
    InconsistentIncidentError,
    InvalidInputError,
    LLMError,
    PipelineError,
)
from lycaon.llm.summarizer import IncidentSummarizer
from lycaon.storage.repository import Repository

logger = structlog.get_logger()

_HISTORY_WINDOW = timedelta(hours=2)
_HISTORY_LIMIT = 256


class IncidentCoordinator:
    def __init__(
        self,
        repository: Repository,
        slack: SlackClient,
        config: IncidentConfig,
        *,
        allocator: SequenceAllocator | None = None,
        ledger: StatusLedger | None = None,
        resolver: InvitationResolver | None = None,
        summarizer: IncidentSummarizer | None = None,
        channel_prefix: str = DEFAULT_CHANNEL_PREFIX,
        frontend_url: str = "",
        initial_triage: bool = True,
        request_ttl: timedelta = timedelta(minutes=30),
    ) -> None:
        self._repo = repository
        self._slack = slack
        self._config = config
        self._allocator = allocator or SequenceAllocator(repository)
        self._ledger = ledger or StatusLedger(repository)
        self._resolver = resolver or InvitationResolver(slack)
        self._summarizer = summarizer
        self._channel_prefix = channel_prefix
        self._frontend_url = frontend_url.rstrip("/")
        self._initial_triage = initial_triage
        self._request_ttl = request_ttl

    @property
    def ledger(self) -> StatusLedger:
        return self._ledger

    @property
    def config(self) -> IncidentConfig:
        return self._config

    # ------------------------------------------------------------------
    # Creation pipeline
    # ------------------------------------------------------------------

    def _validate_create(self, req: CreateIncidentRequest) -> None:
        if not req.created_by:
            raise InvalidInputError("creator user ID is required")
        if not req.origin_channel_id:
            raise InvalidInputError("origin channel ID is required")
        self._config.validate_severity_id(req.severity_id)
        self._config.validate_category_id(req.category_id)
        self._config.validate_asset_ids(req.asset_ids)

    async def create_incident(self, req: CreateIncidentRequest) -> Incident:
        """Run the full creation pipeline and return the persisted incident.

        Raises:
            InvalidInputError: request failed validation (nothing allocated).
            PipelineError: a hard step failed; ``step`` names which one.
            InconsistentIncidentError: incident persisted but its initial
                history entry could not be written after one retry.
        """
        self._validate_create(req)

        try:
            incident_id = await self._allocator.next()
        except Exception as exc:
            raise PipelineError(
                f"failed to allocate incident number: {exc}", step="allocate"
            ) from exc

        log = logger.bind(incident_id=incident_id)

        team_id = ""
        try:
            team_id = await self._slack.auth_test()
        except ChannelError as exc:
            log.warning("incident_team_lookup_failed", error=str(exc))

        initial_triage = (
            self._initial_triage if req.initial_triage is None else req.initial_triage
        )
        incident = Incident.new(
            prefix=self._channel_prefix,
            incident_id=incident_id,
            title=req.title,
            description=req.description,
            category_id=req.category_id,
            severity_id=req.severity_id,
            asset_ids=req.asset_ids,
            origin_channel_id=req.origin_channel_id,
            origin_channel_name=req.origin_channel_name or req.origin_channel_id,
            created_by=req.created_by,
            initial_triage=initial_triage,
            team_id=team_id,
            private=req.private,
        )

        try:
            channel = await self._slack.create_channel(
                incident.channel_name, is_private=incident.private
            )
        except Exception as exc:
            raise PipelineError(
                f"failed to create channel {incident.channel_name}: {exc}",
                step="provision_channel",
            ) from exc
        incident.channel_id = channel.id

        await self._decorate_channel(incident)

        try:
            await self._repo.put_incident(incident)
        except Exception as exc:
            log.error("incident_persist_failed", channel_id=incident.channel_id, error=str(exc))
            raise PipelineError(
                f"failed to save incident {incident_id}: {exc}", step="persist"
            ) from exc

        await self._record_initial_history(incident)

        log.info(
            "incident_created",
            channel_id=incident.channel_id,
            channel_name=incident.channel_name,
            status=incident.status.value,
            created_by=incident.created_by,
        )

        await self._invite_category_members(incident)
        return incident

    async def _decorate_channel(self, incident: Incident) -> None:
        """Soft steps between channel creation and persistence."""
        log = logger.bind(incident_id=incident.id, channel_id=incident.channel_id)

        if incident.title:
            try:
                await self._slack.set_purpose(incident.channel_id, incident.title)
            except ChannelError as exc:
                log.warning("incident_set_purpose_failed", error=str(exc))

        try:
            await self._slack.invite_users(incident.channel_id, [incident.created_by])
        except ChannelError as exc:
            log.warning(
                "incident_creator_invite_failed", user_id=incident.created_by, error=str(exc)
            )
        else:
            if incident.private:
                incident.joined_members.add(incident.created_by)

        if self._frontend_url:
            link = f"{self._frontend_url}/incidents/{incident.id}"
            try:
                await self._slack.add_bookmark(
                    incident.channel_id, f"Incident #{incident.id} - Web UI", link
                )
            except ChannelError as exc:
                log.warning("incident_bookmark_failed", link=link, error=str(exc))

        try:
            incident.welcome_message_ts = await self._slack.post_message(
                incident.channel_id,
                f"Incident #{incident.id}: {incident.title or incident.channel_name}",
                blocks=render.welcome_blocks(incident, self._config),
            )
        except ChannelError as exc:
            log.warning("incident_welcome_failed", error=str(exc))

    async def _record_initial_history(self, incident: Incident) -> StatusHistory:
        try:
            return await self._ledger.record_initial(incident)
        except Exception as exc:
            logger.warning(
                "initial_history_failed_retrying", incident_id=incident.id, error=str(exc)
            )

        try:
            return await self._ledger.record_initial(incident)
        except Exception as exc:
            logger.error(
                "incident_inconsistent",
                incident_id=incident.id,
                channel_id=incident.channel_id,
                error=str(exc),
            )
            raise InconsistentIncidentError(
                f"incident {incident.id} saved without initial status history: {exc}",
                incident=incident,
            ) from exc

    async def _invite_category_members(self, incident: Incident) -> None:
        if not incident.category_id:
            return
        category = self._config.find_category(incident.category_id)
        if category is None or not category.has_invitees:
            logger.debug("incident_no_category_invitees", category_id=incident.category_id)
            return

        try:
            result = await self._resolver.invite_users_by_list(
                category.invite_users, category.invite_groups, incident.channel_id
            )
        except Exception as exc:
            logger.warning(
                "incident_category_invite_failed",
                incident_id=incident.id,
                category_id=incident.category_id,
                error=str(exc),
            )
            return

        if not incident.private or not result.succeeded:
            return
        invited = [d.user_id for d in result.succeeded]
        incident.joined_members.update(invited)
        try:
            await self._repo.add_joined_members(incident.id, invited)
        except Exception as exc:
            logger.warning("incident_members_save_failed", incident_id=incident.id, error=str(exc))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_incident(self, incident_id: int) -> Incident:
        validate_incident_id(incident_id)
        return await self._repo.get_incident(incident_id)

    async def get_incident_by_channel(self, channel_id: str) -> Incident:
        if not channel_id:
            raise InvalidInputError("channel ID is required")
        return await self._repo.get_incident_by_channel(channel_id)

    async def list_recent_open_incidents(self, days: int = 7) -> dict[str, list[Incident]]:
        """Open incidents of the last ``days`` days keyed by YYYY-MM-DD, newest first."""
        if days <= 0:
            days = 7
        since = datetime.now(UTC) - timedelta(days=days)
        incidents = await self._repo.list_incidents_since(since)

        grouped: dict[str, list[Incident]] = defaultdict(list)
        for incident in incidents:
            if incident.is_open:
                grouped[incident.created_at.strftime("%Y-%m-%d")].append(incident)
        return {
            day: sorted(items, key=lambda i: i.created_at, reverse=True)
            for day, items in sorted(grouped.items(), reverse=True)
        }

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def update_incident(
        self, incident_id: int, req: UpdateIncidentRequest, updated_by: str
    ) -> Incident:
        """Apply the fields set on ``req``. Status changes go through the ledger."""
        validate_incident_id(incident_id)
        if not updated_by:
            raise InvalidInputError("updater user ID is required")
        if req.title is not None and not req.title.strip():
            raise InvalidInputError("incident title cannot be empty")
        if req.severity_id:
            self._config.validate_severity_id(req.severity_id)
        if req.asset_ids:
            self._config.validate_asset_ids(req.asset_ids)
        status = IncidentStatus.parse(req.status) if req.status is not None else None

        incident = await self._repo.get_incident(incident_id)
        fields: dict[str, object] = {}
        changes: list[str] = []

        if req.title is not None and req.title != incident.title:
            fields["title"] = req.title
            changes.append("title")
        if req.description is not None and req.description != incident.description:
            fields["description"] = req.description
            changes.append("description")
        if req.lead is not None and req.lead != incident.lead:
            fields["lead"] = req.lead
            changes.append("lead")
        if req.severity_id is not None and req.severity_id != incident.severity_id:
            fields["severity_id"] = req.severity_id
            changes.append("severity")
        if req.asset_ids is not None and set(req.asset_ids) != set(incident.asset_ids):
            fields["asset_ids"] = list(req.asset_ids)
            changes.append("assets")

        if status is not None and status != incident.status:
            await self._ledger.transition(incident_id, status, updated_by, req.note)
            changes.append("status")

        if not changes:
            return incident

        if fields:
            await self._repo.update_incident_fields(incident_id, **fields)
        incident = await self._repo.get_incident(incident_id)

        logger.info(
            "incident_updated", incident_id=incident_id, changes=changes, updated_by=updated_by
        )
        await self._announce(incident, render.details_updated_text(changes))
        return incident

    async def update_status(
        self, incident_id: int, status: IncidentStatus | str, actor: str, note: str = ""
    ) -> StatusHistory:
        """Ledger transition plus a best-effort notice in the incident channel."""
        entry = await self._ledger.transition(incident_id, status, actor, note)
        try:
            incident = await self._repo.get_incident(incident_id)
        except Exception as exc:
            logger.warning(
                "incident_status_notice_skipped", incident_id=incident_id, error=str(exc)
            )
            return entry
        await self._announce(
            incident, render.status_changed_text(incident.id, entry.status, actor, note)
        )
        return entry

    async def open_incident_details_modal(self, incident_id: int, trigger_id: str) -> None:
        incident = await self.get_incident(incident_id)
        await self._slack.open_view(
            trigger_id, render.incident_details_modal(incident, self._config)
        )

    async def _announce(self, incident: Incident, text: str) -> None:
        if not incident.channel_id:
            return
        try:
            await self._slack.post_message(incident.channel_id, text)
        except ChannelError as exc:
            logger.warning("incident_notice_failed", incident_id=incident.id, error=str(exc))

        if incident.welcome_message_ts:
            try:
                await self._slack.update_message(
                    incident.channel_id,
                    incident.welcome_message_ts,
                    f"Incident #{incident.id}: {incident.title or incident.channel_name}",
                    blocks=render.welcome_blocks(incident, self._config),
                )
            except ChannelError as exc:
                logger.warning(
                    "incident_welcome_refresh_failed", incident_id=incident.id, error=str(exc)
                )

    # ------------------------------------------------------------------
    # Drafts (incident requests)
    # ------------------------------------------------------------------

    async def propose_incident(
        self,
        channel_id: str,
        message_ts: str,
        thread_ts: str,
        title: str,
        requested_by: str,
    ) -> IncidentRequest:
        """Store a draft and post the 'declare incident?' prompt in thread."""
        if not channel_id or not message_ts:
            raise InvalidInputError("channel ID and message timestamp are required")
        if not requested_by:
            raise InvalidInputError("requesting user ID is required")

        request = IncidentRequest.new(
            channel_id=channel_id,
            message_ts=message_ts,
            requested_by=requested_by,
            title=title,
            ttl=self._request_ttl,
        )
        if not title and self._summarizer is not None:
            await self._fill_from_history(self._summarizer, request, thread_ts)

        await self._repo.save_incident_request(request)

        try:
            request.bot_message_ts = await self._slack.post_message(
                channel_id,
                f"Declare incident: {request.title or 'Incident'}?",
                blocks=render.incident_prompt_blocks(
                    request.id,
                    request.title,
                    request.description,
                    request.category_id,
                    request.severity_id,
                    self._config,
                ),
                thread_ts=thread_ts or message_ts,
            )
        except ChannelError:
            logger.error(
                "incident_prompt_post_failed", request_id=request.id, channel_id=channel_id
            )
            try:
                await self._repo.delete_incident_request(request.id)
            except Exception as exc:
                logger.warning(
                    "incident_request_cleanup_failed", request_id=request.id, error=str(exc)
                )
            raise

        await self._repo.save_incident_request(request)
        logger.info(
            "incident_proposed",
            request_id=request.id,
            channel_id=channel_id,
            summarized=bool(request.title and not title),
        )
        return request

    async def _fill_from_history(
        self, summarizer: IncidentSummarizer, request: IncidentRequest, thread_ts: str
    ) -> None:
        try:
            messages = await self._recent_messages(
                request.channel_id, request.message_ts, thread_ts
            )
            summary = await summarizer.summarize(messages)
        except (ChannelError, LLMError) as exc:
            logger.warning("incident_summary_failed", channel_id=request.channel_id, error=str(exc))
            return
        if summary is None:
            return
        request.title = summary.title
        request.description = summary.description
        if summary.category_id:
            request.category_id = summary.category_id

    async def _recent_messages(
        self, channel_id: str, message_ts: str, thread_ts: str
    ) -> list[ChatMessage]:
        if thread_ts and thread_ts != message_ts:
            return await self._slack.get_thread_replies(channel_id, thread_ts, limit=_HISTORY_LIMIT)
        return await self._slack.get_conversation_history(
            channel_id,
            oldest=datetime.now(UTC) - _HISTORY_WINDOW,
            limit=_HISTORY_LIMIT,
        )

    async def get_incident_request(self, request_id: str) -> IncidentRequest:
        if not request_id:
            raise InvalidInputError("request ID is required")
        return await self._repo.get_incident_request(request_id)

    async def open_request_edit_modal(self, request_id: str, trigger_id: str) -> None:
        request = await self.get_incident_request(request_id)
        await self._slack.open_view(
            trigger_id,
            render.incident_edit_modal(
                request.id,
                request.title,
                request.description,
                request.category_id,
                request.severity_id,
                self._config,
                asset_ids=request.asset_ids,
            ),
        )

    async def handle_create_incident_action(
        self, request_id: str, user_id: str, details: IncidentDetails | None = None
    ) -> Incident:
        """Turn a stored draft into an incident.

        ``details`` carries values edited in the modal; without it the draft's
        own values are used. The draft is claimed before any number is
        allocated, so a double click declares one incident. It is put back
        when creation fails before the incident is persisted.
        """
        if not request_id:
            raise InvalidInputError("request ID is required")
        if not user_id:
            raise InvalidInputError("user ID is required")

        request = await self._repo.consume_incident_request(request_id)
        try:
            incident = await self._create_from_request(request, user_id, details)
        except InconsistentIncidentError:
            raise
        except Exception:
            await self._restore_request(request)
            raise

        try:
            incident.declared_message_ts = await self._slack.post_message(
                request.channel_id,
                f"Incident channel <#{incident.channel_id}> has been created",
                blocks=render.incident_created_blocks(
                    incident.channel_id,
                    incident.title,
                    incident.category_id,
                    incident.severity_id,
                    self._config,
                ),
                thread_ts=request.message_ts,
            )
        except ChannelError as exc:
            logger.warning(
                "incident_created_notice_failed", incident_id=incident.id, error=str(exc)
            )
        else:
            try:
                await self._repo.update_incident_fields(
                    incident.id, declared_message_ts=incident.declared_message_ts
                )
            except Exception as exc:
                logger.warning(
                    "incident_declared_ts_save_failed", incident_id=incident.id, error=str(exc)
                )

        prompt_ts = request.bot_message_ts or request.message_ts
        try:
            await self._slack.update_message(
                request.channel_id,
                prompt_ts,
                "Incident declared",
                blocks=render.incident_declared_blocks(incident.title),
            )
        except ChannelError as exc:
            logger.warning("incident_prompt_update_failed", message_ts=prompt_ts, error=str(exc))

        return incident

    async def _restore_request(self, request: IncidentRequest) -> None:
        try:
            await self._repo.save_incident_request(request)
        except Exception as exc:
            logger.warning("incident_request_restore_failed", request_id=request.id, error=str(exc))

    async def _create_from_request(
        self, request: IncidentRequest, user_id: str, details: IncidentDetails | None
    ) -> Incident:
        origin_name = request.channel_id
        try:
            info = await self._slack.get_conversation_info(request.channel_id)
            origin_name = info.name or request.channel_id
        except ChannelError as exc:
            logger.warning(
                "origin_channel_lookup_failed", channel_id=request.channel_id, error=str(exc)
            )

        if details is not None:
            create = CreateIncidentRequest(
                title=details.title,
                description=details.description,
                category_id=details.category_id,
                severity_id=details.severity_id,
                asset_ids=list(details.asset_ids),
                private=details.private,
                origin_channel_id=request.channel_id,
                origin_channel_name=origin_name,
                created_by=user_id,
            )
        else:
            create = CreateIncidentRequest(
                title=request.title,
                description=request.description,
                category_id=request.category_id,
                severity_id=request.severity_id,
                asset_ids=list(request.asset_ids),
                origin_channel_id=request.channel_id,
                origin_channel_name=origin_name,
                created_by=user_id,
            )

        return await self.create_incident(create)

    async def handle_create_incident_action_async(
        self,
        request_id: str,
        user_id: str,
        channel_id: str,
        details: IncidentDetails | None = None,
    ) -> None:
        """Dispatched wrapper: failures become a message in ``channel_id``. Never raises."""
        try:
            incident = await self.handle_create_incident_action(request_id, user_id, details)
        except IncidentRequestNotFoundError:
            logger.warning("incident_request_missing", request_id=request_id, user_id=user_id)
            await self._post_error(channel_id, render.ERROR_REQUEST_NOT_FOUND)
            return
        except Exception:
            logger.exception(
                "incident_create_action_failed", request_id=request_id, user_id=user_id
            )
            await self._post_error(channel_id, render.ERROR_CREATE_FAILED)
            return

        logger.info(
            "incident_create_action_completed",
            incident_id=incident.id,
            channel_name=incident.channel_name,
            created_by=user_id,
        )

    async def _post_error(self, channel_id: str, message: str) -> None:
        if not channel_id:
            return
        try:
            await self._slack.post_message(
                channel_id, message, blocks=render.error_blocks(message)
            )
        except Exception:
            logger.exception("incident_error_notice_failed", channel_id=channel_id)

    # ------------------------------------------------------------------
    # Membership of private incident channels
    # ------------------------------------------------------------------

    async def _private_incident_for_channel(self, channel_id: str) -> Incident | None:
        try:
            incident = await self._repo.get_incident_by_channel(channel_id)
        except IncidentNotFoundError:
            return None
        return incident if incident.private else None

    async def record_member_joined(self, channel_id: str, user_id: str) -> None:
        incident = await self._private_incident_for_channel(channel_id)
        if incident is None or user_id in incident.joined_members:
            return
        await self._repo.add_joined_members(incident.id, [user_id])
        logger.info("incident_member_joined", incident_id=incident.id, user_id=user_id)

    async def record_member_left(self, channel_id: str, user_id: str) -> None:
        incident = await self._private_incident_for_channel(channel_id)
        if incident is None or user_id not in incident.joined_members:
            return
        await self._repo.remove_joined_member(incident.id, user_id)
        logger.info("incident_member_left", incident_id=incident.id, user_id=user_id)

    async def sync_joined_members(self, incident_id: int) -> Incident:
        """Replace joined_members with the channel's current member list."""
        incident = await self.get_incident(incident_id)
        if not incident.private or not incident.channel_id:
            return incident
        members = await self._slack.list_conversation_members(incident.channel_id)
        incident.joined_members = set(members)
        await self._repo.update_incident_fields(incident_id, joined_members=incident.joined_members)
        logger.info("incident_members_synced", incident_id=incident_id, count=len(members))
        return incident

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def record_user(self, slack_user_id: str, name: str, email: str = "") -> None:
        """Upsert a user seen in an interaction so history can show names."""
        if not slack_user_id:
            return
        now = datetime.now(UTC)
        await self._repo.save_user(
            User(
                slack_user_id=slack_user_id,
                name=name or slack_user_id,
                email=email,
                created_at=now,
                updated_at=now,
            )
        )
