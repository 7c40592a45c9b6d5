"""Resolve configured invitee references and invite them in one batch.

User references:
    U.../W...  used as-is
    B...       bot ID, mapped to the bot's user ID through the directory
    @name      matched against user names, real names and display names
Group references:
    @handle    matched against user group name or handle
    S...       user group ID

Resolution failures are reported per entry and never abort the batch.
"""

from __future__ import annotations

import structlog

from lycaon.channels.slack import DirectoryUser, SlackClient
from lycaon.domain.models import InvitationResult, InviteDetail
from lycaon.domain.types import InviteStatus
from lycaon.infra.errors import ChannelError, InvalidInputError

logger = structlog.get_logger()


class _Directory:
    """users.list fetched lazily, at most once per resolve() call."""

    def __init__(self, slack: SlackClient) -> None:
        self._slack = slack
        self._users: list[DirectoryUser] | None = None
        self._error: ChannelError | None = None

    async def users(self) -> list[DirectoryUser]:
        if self._error is not None:
            raise self._error
        if self._users is None:
            try:
                self._users = await self._slack.list_users()
            except ChannelError as exc:
                self._error = exc
                raise
        return self._users


class InvitationResolver:
    def __init__(self, slack: SlackClient) -> None:
        self._slack = slack

    async def resolve(self, users: list[str], groups: list[str]) -> list[InviteDetail]:
        """Map references to details, in input order (users first, then groups)."""
        directory = _Directory(self._slack)
        details: list[InviteDetail] = []

        for ref in users:
            details.append(await self._resolve_user(ref, directory))

        for ref in groups:
            try:
                members = await self._resolve_group_members(ref)
            except (ChannelError, InvalidInputError) as exc:
                logger.warning("invite_group_resolve_failed", group=ref, error=str(exc))
                continue
            details.extend(InviteDetail(source_config=ref, user_id=m) for m in members)

        return details

    async def _resolve_user(self, ref: str, directory: _Directory) -> InviteDetail:
        if ref.startswith(("U", "W")):
            return InviteDetail(source_config=ref, user_id=ref)

        if ref.startswith("B"):
            try:
                found = next(
                    (u for u in await directory.users() if u.is_bot and u.bot_id == ref),
                    None,
                )
            except ChannelError as exc:
                logger.warning("invite_bot_resolve_failed", bot_id=ref, error=str(exc))
                return InviteDetail.failed(ref, str(exc))
            if found is None:
                logger.warning("invite_bot_not_found", bot_id=ref)
                return InviteDetail.failed(ref, "bot not found")
            return InviteDetail(source_config=ref, user_id=found.id)

        if ref.startswith("@") and len(ref) > 1:
            name = ref[1:]
            try:
                found = next((u for u in await directory.users() if u.matches_name(name)), None)
            except ChannelError as exc:
                logger.warning("invite_user_resolve_failed", user=ref, error=str(exc))
                return InviteDetail.failed(ref, str(exc), username=ref)
            if found is None:
                logger.warning("invite_user_not_found", user=ref)
                return InviteDetail.failed(ref, "user not found", username=ref)
            return InviteDetail(source_config=ref, user_id=found.id, username=ref)

        logger.warning("invite_user_reference_invalid", user=ref)
        return InviteDetail.failed(ref, "invalid user reference")

    async def _resolve_group_members(self, ref: str) -> list[str]:
        if ref.startswith("@") and len(ref) > 1:
            name = ref[1:]
            groups = await self._slack.list_user_groups()
            group = next((g for g in groups if name in (g.name, g.handle)), None)
            if group is None:
                raise InvalidInputError(f"group not found: {ref}")
            group_id = group.id
        elif ref.startswith("S"):
            group_id = ref
        else:
            raise InvalidInputError(f"invalid group reference: {ref}")
        return await self._slack.list_user_group_members(group_id)

    async def invite(self, channel_id: str, details: list[InviteDetail]) -> list[InviteDetail]:
        """Invite every resolved entry with one call; failed entries pass through.

        The single call decides the outcome of all resolved entries together.
        """
        if not channel_id:
            raise InvalidInputError("channel ID is required")

        user_ids = list(dict.fromkeys(d.user_id for d in details if d.is_invitable))
        if not user_ids:
            logger.info("invite_nothing_to_invite", channel_id=channel_id)
            return list(details)

        error = ""
        try:
            await self._slack.invite_users(channel_id, user_ids)
        except ChannelError as exc:
            error = str(exc)
            logger.warning(
                "invite_batch_failed", channel_id=channel_id, count=len(user_ids), error=error
            )

        outcome: list[InviteDetail] = []
        for detail in details:
            if not detail.is_invitable:
                outcome.append(detail)
            elif error:
                outcome.append(
                    InviteDetail(
                        source_config=detail.source_config,
                        user_id=detail.user_id,
                        username=detail.username,
                        status=InviteStatus.failed,
                        error=error,
                    )
                )
            else:
                outcome.append(
                    InviteDetail(
                        source_config=detail.source_config,
                        user_id=detail.user_id,
                        username=detail.username,
                        status=InviteStatus.success,
                    )
                )
        return outcome

    async def invite_users_by_list(
        self, users: list[str], groups: list[str], channel_id: str
    ) -> InvitationResult:
        if not channel_id:
            raise InvalidInputError("channel ID is required")

        logger.info(
            "invite_started",
            channel_id=channel_id,
            user_count=len(users),
            group_count=len(groups),
        )
        resolved = await self.resolve(users, groups)
        result = InvitationResult(details=await self.invite(channel_id, resolved))
        logger.info(
            "invite_completed",
            channel_id=channel_id,
            succeeded=len(result.succeeded),
            failed=len(result.failed),
            details=[
                {
                    "source": d.source_config,
                    "user_id": d.user_id,
                    "status": d.status.value,
                    "error": d.error,
                }
                for d in result.details
            ],
        )
        return result
