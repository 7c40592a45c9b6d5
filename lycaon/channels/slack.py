"""Slack Web API adapter.

SlackService wraps slack_sdk's AsyncWebClient behind the narrow SlackClient
interface the incident layer depends on. Every Slack or transport failure is
re-raised as ChannelError; no call is retried here.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import aiohttp
import structlog
from slack_sdk.errors import SlackApiError, SlackClientError
from slack_sdk.web.async_client import AsyncWebClient
from slack_sdk.web.async_slack_response import AsyncSlackResponse

from lycaon.infra.errors import ChannelError

logger = structlog.get_logger()

# Slack caps page sizes at 1000; 200 is the recommended value
_PAGE_LIMIT = 200


@dataclass(frozen=True)
class ChannelInfo:
    id: str
    name: str
    is_private: bool = False


@dataclass(frozen=True)
class DirectoryUser:
    """One entry of users.list, reduced to the fields used for matching."""

    id: str
    name: str = ""
    real_name: str = ""
    display_name: str = ""
    profile_real_name: str = ""
    email: str = ""
    is_bot: bool = False
    bot_id: str = ""

    def matches_name(self, name: str) -> bool:
        return name in (
            self.name,
            self.real_name,
            self.display_name,
            self.profile_real_name,
        )


@dataclass(frozen=True)
class UserGroup:
    id: str
    name: str = ""
    handle: str = ""


@dataclass(frozen=True)
class ChatMessage:
    ts: str
    user: str = ""
    text: str = ""
    thread_ts: str = ""


class SlackClient(Protocol):
    async def auth_test(self) -> str: ...

    async def create_channel(self, name: str, *, is_private: bool = False) -> ChannelInfo: ...

    async def set_purpose(self, channel_id: str, purpose: str) -> None: ...

    async def invite_users(self, channel_id: str, user_ids: list[str]) -> None: ...

    async def add_bookmark(self, channel_id: str, title: str, link: str) -> None: ...

    async def post_message(
        self,
        channel_id: str,
        text: str,
        *,
        blocks: list[dict[str, Any]] | None = None,
        thread_ts: str | None = None,
    ) -> str: ...

    async def post_ephemeral(
        self,
        channel_id: str,
        user_id: str,
        text: str,
        *,
        blocks: list[dict[str, Any]] | None = None,
    ) -> None: ...

    async def update_message(
        self,
        channel_id: str,
        ts: str,
        text: str,
        *,
        blocks: list[dict[str, Any]] | None = None,
    ) -> None: ...

    async def open_view(self, trigger_id: str, view: dict[str, Any]) -> None: ...

    async def get_conversation_info(self, channel_id: str) -> ChannelInfo: ...

    async def list_conversation_members(self, channel_id: str) -> list[str]: ...

    async def list_users(self) -> list[DirectoryUser]: ...

    async def list_user_groups(self) -> list[UserGroup]: ...

    async def list_user_group_members(self, group_id: str) -> list[str]: ...

    async def get_conversation_history(
        self, channel_id: str, *, oldest: datetime | None = None, limit: int = 256
    ) -> list[ChatMessage]: ...

    async def get_thread_replies(
        self, channel_id: str, thread_ts: str, *, limit: int = 256
    ) -> list[ChatMessage]: ...


def _to_directory_user(member: dict[str, Any]) -> DirectoryUser:
    profile = member.get("profile") or {}
    return DirectoryUser(
        id=member.get("id", ""),
        name=member.get("name", ""),
        real_name=member.get("real_name", ""),
        display_name=profile.get("display_name", ""),
        profile_real_name=profile.get("real_name", ""),
        email=profile.get("email", ""),
        is_bot=bool(member.get("is_bot", False)),
        bot_id=profile.get("bot_id", ""),
    )


def _to_message(raw: dict[str, Any]) -> ChatMessage:
    return ChatMessage(
        ts=raw.get("ts", ""),
        user=raw.get("user", "") or raw.get("bot_id", ""),
        text=raw.get("text", ""),
        thread_ts=raw.get("thread_ts", ""),
    )


def _next_cursor(response: AsyncSlackResponse) -> str:
    return (response.get("response_metadata") or {}).get("next_cursor", "")


class SlackService:
    """SlackClient implementation over slack_sdk.AsyncWebClient."""

    def __init__(self, bot_token: str, *, client: AsyncWebClient | None = None) -> None:
        self._client = client or AsyncWebClient(token=bot_token)

    async def _call(
        self, method: str, pending: Awaitable[AsyncSlackResponse]
    ) -> AsyncSlackResponse:
        try:
            return await pending
        except SlackApiError as exc:
            error = exc.response.get("error", "unknown_error")
            raise ChannelError(f"{method} failed: {error}", code="SLACK_API_ERROR") from exc
        except (SlackClientError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ChannelError(f"{method} failed: {exc}", code="SLACK_TRANSPORT_ERROR") from exc

    async def auth_test(self) -> str:
        """Return the workspace (team) ID of the bot token."""
        response = await self._call("auth.test", self._client.auth_test())
        return response.get("team_id", "")

    async def bot_user_id(self) -> str:
        response = await self._call("auth.test", self._client.auth_test())
        return response.get("user_id", "")

    async def create_channel(self, name: str, *, is_private: bool = False) -> ChannelInfo:
        response = await self._call(
            "conversations.create",
            self._client.conversations_create(name=name, is_private=is_private),
        )
        channel = response.get("channel") or {}
        logger.info("slack_channel_created", channel_id=channel.get("id"), name=name)
        return ChannelInfo(
            id=channel.get("id", ""),
            name=channel.get("name", name),
            is_private=bool(channel.get("is_private", is_private)),
        )

    async def set_purpose(self, channel_id: str, purpose: str) -> None:
        await self._call(
            "conversations.setPurpose",
            self._client.conversations_setPurpose(channel=channel_id, purpose=purpose),
        )

    async def invite_users(self, channel_id: str, user_ids: list[str]) -> None:
        await self._call(
            "conversations.invite",
            self._client.conversations_invite(channel=channel_id, users=user_ids),
        )

    async def add_bookmark(self, channel_id: str, title: str, link: str) -> None:
        await self._call(
            "bookmarks.add",
            self._client.bookmarks_add(
                channel_id=channel_id, title=title, type="link", link=link
            ),
        )

    async def post_message(
        self,
        channel_id: str,
        text: str,
        *,
        blocks: list[dict[str, Any]] | None = None,
        thread_ts: str | None = None,
    ) -> str:
        response = await self._call(
            "chat.postMessage",
            self._client.chat_postMessage(
                channel=channel_id, text=text, blocks=blocks, thread_ts=thread_ts
            ),
        )
        return response.get("ts", "")

    async def post_ephemeral(
        self,
        channel_id: str,
        user_id: str,
        text: str,
        *,
        blocks: list[dict[str, Any]] | None = None,
    ) -> None:
        await self._call(
            "chat.postEphemeral",
            self._client.chat_postEphemeral(
                channel=channel_id, user=user_id, text=text, blocks=blocks
            ),
        )

    async def update_message(
        self,
        channel_id: str,
        ts: str,
        text: str,
        *,
        blocks: list[dict[str, Any]] | None = None,
    ) -> None:
        await self._call(
            "chat.update",
            self._client.chat_update(channel=channel_id, ts=ts, text=text, blocks=blocks),
        )

    async def open_view(self, trigger_id: str, view: dict[str, Any]) -> None:
        await self._call("views.open", self._client.views_open(trigger_id=trigger_id, view=view))

    async def get_conversation_info(self, channel_id: str) -> ChannelInfo:
        response = await self._call(
            "conversations.info", self._client.conversations_info(channel=channel_id)
        )
        channel = response.get("channel") or {}
        return ChannelInfo(
            id=channel.get("id", channel_id),
            name=channel.get("name", ""),
            is_private=bool(channel.get("is_private", False)),
        )

    async def list_conversation_members(self, channel_id: str) -> list[str]:
        members: list[str] = []
        cursor = ""
        while True:
            response = await self._call(
                "conversations.members",
                self._client.conversations_members(
                    channel=channel_id, cursor=cursor or None, limit=_PAGE_LIMIT
                ),
            )
            members.extend(response.get("members") or [])
            cursor = _next_cursor(response)
            if not cursor:
                return members

    async def list_users(self) -> list[DirectoryUser]:
        users: list[DirectoryUser] = []
        cursor = ""
        while True:
            response = await self._call(
                "users.list",
                self._client.users_list(cursor=cursor or None, limit=_PAGE_LIMIT),
            )
            users.extend(_to_directory_user(m) for m in response.get("members") or [])
            cursor = _next_cursor(response)
            if not cursor:
                return users

    async def list_user_groups(self) -> list[UserGroup]:
        response = await self._call("usergroups.list", self._client.usergroups_list())
        return [
            UserGroup(id=g.get("id", ""), name=g.get("name", ""), handle=g.get("handle", ""))
            for g in response.get("usergroups") or []
        ]

    async def list_user_group_members(self, group_id: str) -> list[str]:
        response = await self._call(
            "usergroups.users.list", self._client.usergroups_users_list(usergroup=group_id)
        )
        return list(response.get("users") or [])

    async def get_conversation_history(
        self, channel_id: str, *, oldest: datetime | None = None, limit: int = 256
    ) -> list[ChatMessage]:
        kwargs: dict[str, Any] = {"channel": channel_id, "limit": limit}
        if oldest is not None:
            kwargs["oldest"] = f"{oldest.timestamp():.6f}"
        response = await self._call(
            "conversations.history", self._client.conversations_history(**kwargs)
        )
        # Slack returns newest first; callers want reading order
        return [_to_message(m) for m in reversed(response.get("messages") or [])]

    async def get_thread_replies(
        self, channel_id: str, thread_ts: str, *, limit: int = 256
    ) -> list[ChatMessage]:
        response = await self._call(
            "conversations.replies",
            self._client.conversations_replies(channel=channel_id, ts=thread_ts, limit=limit),
        )
        return [_to_message(m) for m in response.get("messages") or []]
