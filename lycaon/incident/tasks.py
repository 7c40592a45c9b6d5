"""Follow-up tasks of an incident, tracked from its Slack channel.

A task is created with '<@bot> t <title>' inside an incident channel and
shown as a message with Edit / Complete buttons. The stored task is the
source of truth; its Slack message is refreshed best-effort after changes.
"""

from __future__ import annotations

from datetime import UTC, datetime

import structlog

from lycaon.channels import slack_render as render
from lycaon.channels.slack import SlackClient
from lycaon.domain.models import Task, TaskUpdateRequest
from lycaon.domain.types import TaskStatus, validate_incident_id
from lycaon.infra.errors import ChannelError, InvalidInputError, LycaonError, NotFoundError
from lycaon.storage.repository import Repository

logger = structlog.get_logger()


class TaskTracker:
    def __init__(self, repository: Repository, slack: SlackClient) -> None:
        self._repo = repository
        self._slack = slack

    async def create_task(
        self, incident_id: int, title: str, created_by: str, *, channel_id: str = ""
    ) -> Task:
        validate_incident_id(incident_id)
        await self._repo.get_incident(incident_id)
        task = Task.new(incident_id, title.strip(), created_by, channel_id=channel_id)
        await self._repo.create_task(task)
        logger.info("task_created", incident_id=incident_id, task_id=task.id)
        return task

    async def list_tasks(self, incident_id: int) -> list[Task]:
        validate_incident_id(incident_id)
        await self._repo.get_incident(incident_id)
        return await self._repo.list_tasks(incident_id)

    async def get_task(self, incident_id: int, task_id: str) -> Task:
        validate_incident_id(incident_id)
        if not task_id:
            raise InvalidInputError("task ID is required")
        return await self._repo.get_task(incident_id, task_id)

    async def update_task(
        self, incident_id: int, task_id: str, req: TaskUpdateRequest
    ) -> Task:
        task = await self.get_task(incident_id, task_id)
        if req.title is not None:
            if not req.title.strip():
                raise InvalidInputError("task title cannot be empty")
            task.title = req.title.strip()
        if req.description is not None:
            task.description = req.description
        if req.assignee_id is not None:
            task.assignee_id = req.assignee_id
        status = TaskStatus.parse(req.status) if req.status is not None else task.status
        if status != task.status:
            task.set_status(status)
        else:
            task.updated_at = datetime.now(UTC)
        await self._repo.update_task(task)
        logger.info("task_updated", incident_id=incident_id, task_id=task_id)
        await self._refresh_message(task)
        return task

    async def complete_task(self, incident_id: int, task_id: str) -> Task:
        task = await self.get_task(incident_id, task_id)
        task.complete()
        await self._repo.update_task(task)
        logger.info("task_completed", incident_id=incident_id, task_id=task_id)
        await self._refresh_message(task)
        return task

    async def uncomplete_task(self, incident_id: int, task_id: str) -> Task:
        task = await self.get_task(incident_id, task_id)
        task.uncomplete()
        await self._repo.update_task(task)
        logger.info("task_uncompleted", incident_id=incident_id, task_id=task_id)
        await self._refresh_message(task)
        return task

    async def open_task_edit_modal(self, incident_id: int, task_id: str, trigger_id: str) -> None:
        task = await self.get_task(incident_id, task_id)
        await self._slack.open_view(trigger_id, render.task_edit_modal(task))

    async def _refresh_message(self, task: Task) -> None:
        if not task.message_ts or not task.channel_id:
            return
        try:
            await self._slack.update_message(
                task.channel_id,
                task.message_ts,
                f"Task: {task.title}",
                blocks=render.task_message_blocks(task),
            )
        except ChannelError as exc:
            logger.warning("task_message_update_failed", task_id=task.id, error=str(exc))

    # ------------------------------------------------------------------
    # Slack command
    # ------------------------------------------------------------------

    async def handle_task_command(
        self, channel_id: str, message_ts: str, user_id: str, title: str
    ) -> None:
        """'<@bot> t [title]' in an incident channel. Dispatched; never raises.

        Without a title the incident's task list is posted; otherwise a task
        is created and posted as its own message.
        """
        try:
            incident = await self._repo.get_incident_by_channel(channel_id)
        except NotFoundError:
            await self._reply(channel_id, message_ts, render.ERROR_NO_INCIDENT_FOR_TASK)
            return
        except LycaonError:
            logger.exception("task_incident_lookup_failed", channel_id=channel_id)
            await self._reply(channel_id, message_ts, render.ERROR_TASK_LIST_FAILED)
            return

        if not title:
            try:
                tasks = await self._repo.list_tasks(incident.id)
            except LycaonError:
                logger.exception("task_list_failed", incident_id=incident.id)
                await self._reply(channel_id, message_ts, render.ERROR_TASK_LIST_FAILED)
                return
            await self._post(
                channel_id,
                f"Tasks for incident #{incident.id}",
                render.task_list_blocks(tasks, incident),
            )
            return

        try:
            task = await self.create_task(incident.id, title, user_id, channel_id=channel_id)
        except LycaonError:
            logger.exception("task_create_failed", incident_id=incident.id)
            await self._reply(channel_id, message_ts, render.ERROR_TASK_CREATE_FAILED)
            return

        ts = await self._post(channel_id, f"Task: {task.title}", render.task_message_blocks(task))
        if not ts:
            return
        task.message_ts = ts
        try:
            await self._repo.update_task(task)
        except LycaonError as exc:
            logger.warning("task_message_ts_save_failed", task_id=task.id, error=str(exc))

    async def _post(self, channel_id: str, text: str, blocks: list[dict]) -> str:
        try:
            return await self._slack.post_message(channel_id, text, blocks=blocks)
        except ChannelError as exc:
            logger.warning("task_message_post_failed", channel_id=channel_id, error=str(exc))
            return ""

    async def _reply(self, channel_id: str, thread_ts: str, message: str) -> None:
        try:
            await self._slack.post_message(channel_id, message, thread_ts=thread_ts)
        except ChannelError as exc:
            logger.warning("task_reply_failed", channel_id=channel_id, error=str(exc))
