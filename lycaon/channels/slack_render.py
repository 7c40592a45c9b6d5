"""Slack rendering: Block Kit payloads, modal views, command parsing."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from lycaon.config.incident_config import IncidentConfig, Severity
from lycaon.domain.models import Incident, Task
from lycaon.domain.types import IncidentStatus, TaskStatus

# ── Action / callback identifiers ───────────────────────────────────────────

ACTION_CREATE_INCIDENT = "create_incident"
ACTION_EDIT_INCIDENT = "edit_incident"
ACTION_EDIT_STATUS = "edit_incident_status"
ACTION_EDIT_DETAILS = "edit_incident_details"
ACTION_TASK_COMPLETE = "task_complete"
ACTION_TASK_UNCOMPLETE = "task_uncomplete"
ACTION_TASK_EDIT = "task_edit"
CALLBACK_INCIDENT_CREATION = "incident_creation_modal"
CALLBACK_STATUS_CHANGE = "status_change_modal"
CALLBACK_EDIT_DETAILS = "edit_incident_details_modal"
CALLBACK_TASK_EDIT = "task_edit_modal"

BLOCK_TITLE = "title_block"
BLOCK_DESCRIPTION = "description_block"
BLOCK_CATEGORY = "category_block"
BLOCK_SEVERITY = "severity_block"
BLOCK_ASSETS = "assets_block"
BLOCK_PRIVATE = "private_block"
BLOCK_LEAD = "lead_block"
BLOCK_STATUS = "status_block"
BLOCK_NOTE = "note_block"
BLOCK_ASSIGNEE = "assignee_block"

PRIVATE_OPTION = "private"

ERROR_CREATE_FAILED = "Failed to create incident. Please try again."
ERROR_REQUEST_NOT_FOUND = "Failed to create incident. The request was not found."
ERROR_NO_INCIDENT_FOR_TASK = "Please create an incident first."
ERROR_TASK_LIST_FAILED = "Failed to retrieve task list."
ERROR_TASK_CREATE_FAILED = "Failed to create task."

# ── Emoji ───────────────────────────────────────────────────────────────────

_STATUS_EMOJI: dict[IncidentStatus, str] = {
    IncidentStatus.triage: "🟡",
    IncidentStatus.handling: "🔴",
    IncidentStatus.monitoring: "🟠",
    IncidentStatus.closed: "🟢",
}


def status_emoji(status: IncidentStatus) -> str:
    return _STATUS_EMOJI.get(status, "⚪")


def severity_emoji(level: int) -> str:
    if level >= 80:
        return "🚨"
    if level >= 50:
        return "⚠️"
    if level >= 10:
        return "ℹ️"
    return "✅"


def format_severity(severity: Severity | None) -> str:
    if severity is None or severity.is_unknown:
        return "❓ Unknown"
    return f"{severity_emoji(severity.level)} {severity.name}"


def _category_text(config: IncidentConfig, category_id: str) -> str:
    category = config.find_category(category_id) if category_id else None
    if category is None:
        return "Unknown"
    return f"📂 {category.name}"


# ── Block primitives ────────────────────────────────────────────────────────


def _plain(text: str) -> dict[str, Any]:
    return {"type": "plain_text", "text": text}


def _mrkdwn(text: str) -> dict[str, Any]:
    return {"type": "mrkdwn", "text": text}


def _section(text: str) -> dict[str, Any]:
    return {"type": "section", "text": _mrkdwn(text)}


def _header(text: str) -> dict[str, Any]:
    # Slack caps header text at 150 chars
    return {"type": "header", "text": _plain(text[:150] or "Incident")}


def _button(
    action_id: str, text: str, value: str, *, primary: bool = False, style: str = ""
) -> dict[str, Any]:
    button: dict[str, Any] = {
        "type": "button",
        "action_id": action_id,
        "text": _plain(text),
        "value": value,
    }
    if primary:
        style = "primary"
    if style:
        button["style"] = style
    return button


def _option(text: str, value: str) -> dict[str, Any]:
    return {"text": _plain(text), "value": value}


def _input(
    block_id: str, label: str, element: dict[str, Any], *, optional: bool = False
) -> dict[str, Any]:
    block: dict[str, Any] = {
        "type": "input",
        "block_id": block_id,
        "label": _plain(label),
        "element": element,
    }
    if optional:
        block["optional"] = True
    return block


def _text_input(action_id: str, initial: str = "", *, multiline: bool = False) -> dict[str, Any]:
    element: dict[str, Any] = {"type": "plain_text_input", "action_id": action_id}
    if multiline:
        element["multiline"] = True
    if initial:
        element["initial_value"] = initial
    return element


def _severity_block(config: IncidentConfig, severity_id: str) -> dict[str, Any]:
    element: dict[str, Any] = {
        "type": "static_select",
        "action_id": "severity_select",
        "options": [
            _option(f"{severity_emoji(s.level)} {s.name}", s.id) for s in config.severities
        ],
    }
    current = config.find_severity(severity_id) if severity_id else None
    if current is not None:
        element["initial_option"] = _option(
            f"{severity_emoji(current.level)} {current.name}", current.id
        )
    return _input(BLOCK_SEVERITY, "Severity", element, optional=True)


def _assets_block(config: IncidentConfig, asset_ids: list[str]) -> dict[str, Any]:
    element: dict[str, Any] = {
        "type": "multi_static_select",
        "action_id": "assets_select",
        "placeholder": _plain("Select affected assets"),
        "options": [_option(a.name, a.id) for a in config.assets],
    }
    selected = [a for a in (config.find_asset(i) for i in asset_ids) if a is not None]
    if selected:
        element["initial_options"] = [_option(a.name, a.id) for a in selected]
    return _input(BLOCK_ASSETS, "Assets", element, optional=True)


def error_blocks(message: str) -> list[dict[str, Any]]:
    return [_section(f"❌ Error: {message}")]


# ── Incident prompt (draft) ─────────────────────────────────────────────────


def incident_prompt_blocks(
    request_id: str,
    title: str,
    description: str,
    category_id: str,
    severity_id: str,
    config: IncidentConfig,
) -> list[dict[str, Any]]:
    """'Declare incident?' prompt posted in the thread that triggered it."""
    blocks: list[dict[str, Any]] = [_header(title or "Incident")]

    fields: list[dict[str, Any]] = []
    if category_id:
        fields.append(_mrkdwn(f"*Category:*\n{_category_text(config, category_id)}"))
    if severity_id:
        severity = config.find_severity_with_fallback(severity_id)
        fields.append(_mrkdwn(f"*Severity:*\n{format_severity(severity)}"))
    if fields:
        blocks.append({"type": "section", "fields": fields})

    if description:
        blocks.append(_section(f"*Description:*\n{description}"))

    blocks.append({"type": "divider"})
    blocks.append(
        {
            "type": "actions",
            "block_id": "incident_creation",
            "elements": [
                _button(ACTION_CREATE_INCIDENT, "Declare", request_id, primary=True),
                _button(ACTION_EDIT_INCIDENT, "Edit", request_id),
            ],
        }
    )
    return blocks


def incident_declared_blocks(title: str) -> list[dict[str, Any]]:
    if title:
        return [_section(f"✅ Incident declared for: *{title}*")]
    return [_section("✅ Incident declared")]


def incident_created_blocks(
    channel_id: str,
    title: str,
    category_id: str,
    severity_id: str,
    config: IncidentConfig,
) -> list[dict[str, Any]]:
    """Notification posted back to the origin thread."""
    category = config.find_category(category_id) if category_id else None
    category_name = category.name if category else "Unknown"
    if title:
        message = (
            f"✅ Incident channel <#{channel_id}> has been created for: *{title}*\n"
            f"*Category:* {category_name}"
        )
    else:
        message = (
            f"✅ Incident channel <#{channel_id}> has been created\n*Category:* {category_name}"
        )
    severity = config.find_severity_with_fallback(severity_id)
    message += f"\n*Severity:* {format_severity(severity)}"
    return [_section(message)]


# ── Incident channel ────────────────────────────────────────────────────────


def status_message_blocks(incident: Incident, config: IncidentConfig) -> list[dict[str, Any]]:
    lead = f"<@{incident.lead}>" if incident.lead else "_unassigned_"
    severity = config.find_severity_with_fallback(incident.severity_id)
    description = incident.description.replace("\n", " ") or "_none_"
    return [
        _header(incident.title or f"Incident #{incident.id}"),
        {"type": "divider"},
        {
            "type": "section",
            "fields": [
                _mrkdwn(f"*Status:*\n{status_emoji(incident.status)} {incident.status.value}"),
                _mrkdwn(f"*Lead:*\n{lead}"),
                _mrkdwn(f"*Category:*\n{_category_text(config, incident.category_id)}"),
                _mrkdwn(f"*Severity:*\n{format_severity(severity)}"),
            ],
        },
        _section(f"*Description:*\n{description}"),
        {
            "type": "actions",
            "block_id": "status_actions",
            "elements": [
                _button(ACTION_EDIT_STATUS, "Status update", str(incident.id), primary=True),
                _button(ACTION_EDIT_DETAILS, "Edit details", str(incident.id)),
            ],
        },
    ]


def welcome_blocks(incident: Incident, config: IncidentConfig) -> list[dict[str, Any]]:
    """Status message plus origin line and coordination hint."""
    blocks = status_message_blocks(incident, config)
    origin = _section(
        f"This incident was created from *#{incident.origin_channel_name}* "
        f"by <@{incident.created_by}>"
    )
    hint = _section("Please use this channel to coordinate incident response activities.")
    return [blocks[0], origin, *blocks[1:-1], hint, blocks[-1]]


def details_updated_text(changes: list[str]) -> str:
    return "📝 Incident details updated: " + ", ".join(changes)


def status_changed_text(incident_id: int, status: IncidentStatus, actor: str, note: str) -> str:
    text = (
        f"{status_emoji(status)} Incident #{incident_id} "
        f"status changed to *{status.value}* by <@{actor}>"
    )
    if note:
        text += f"\n> {note}"
    return text


# ── Modals ──────────────────────────────────────────────────────────────────


def status_change_modal(incident: Incident, channel_id: str, message_ts: str) -> dict[str, Any]:
    options = [_option(f"{status_emoji(s)} {s.value}", s.value) for s in IncidentStatus]
    metadata = json.dumps(
        {"incident_id": incident.id, "channel_id": channel_id, "message_ts": message_ts}
    )
    return {
        "type": "modal",
        "callback_id": CALLBACK_STATUS_CHANGE,
        "title": _plain("Change Status"),
        "submit": _plain("Update"),
        "close": _plain("Cancel"),
        "private_metadata": metadata,
        "blocks": [
            _section("*Select new status for incident:*"),
            {
                "type": "input",
                "block_id": BLOCK_STATUS,
                "label": _plain("Status"),
                "element": {
                    "type": "static_select",
                    "action_id": "status_select",
                    "placeholder": _plain("Choose a status..."),
                    "options": options,
                },
            },
            {
                "type": "input",
                "block_id": BLOCK_NOTE,
                "optional": True,
                "label": _plain("Note (optional)"),
                "element": {
                    "type": "plain_text_input",
                    "action_id": "note_input",
                    "multiline": True,
                    "placeholder": _plain("Add a note about this status change..."),
                },
            },
        ],
    }


def incident_edit_modal(
    request_id: str,
    title: str,
    description: str,
    category_id: str,
    severity_id: str,
    config: IncidentConfig,
    *,
    asset_ids: list[str] | None = None,
) -> dict[str, Any]:
    """Editable draft shown before declaring; submits as incident_creation_modal."""
    category_element: dict[str, Any] = {
        "type": "static_select",
        "action_id": "category_select",
        "options": [_option(c.name, c.id) for c in config.categories],
    }
    selected = config.find_category(category_id) if category_id else None
    if selected is not None:
        category_element["initial_option"] = _option(selected.name, selected.id)

    blocks: list[dict[str, Any]] = [
        _input(BLOCK_TITLE, "Title", _text_input("title_input", title)),
        _input(
            BLOCK_DESCRIPTION,
            "Description",
            _text_input("description_input", description, multiline=True),
            optional=True,
        ),
        _input(BLOCK_CATEGORY, "Category", category_element),
    ]
    if config.severities:
        blocks.append(_severity_block(config, severity_id))
    if config.assets:
        blocks.append(_assets_block(config, list(asset_ids or [])))
    blocks.append(
        _input(
            BLOCK_PRIVATE,
            "Access",
            {
                "type": "checkboxes",
                "action_id": "private_select",
                "options": [
                    _option("Private channel (only invited members can see it)", PRIVATE_OPTION)
                ],
            },
            optional=True,
        )
    )

    return {
        "type": "modal",
        "callback_id": CALLBACK_INCIDENT_CREATION,
        "title": _plain("Edit Incident"),
        "submit": _plain("Declare"),
        "close": _plain("Cancel"),
        "private_metadata": request_id,
        "blocks": blocks,
    }


def incident_details_modal(incident: Incident, config: IncidentConfig) -> dict[str, Any]:
    """Edit title, description, lead, severity and assets of a declared incident."""
    lead_element: dict[str, Any] = {
        "type": "users_select",
        "action_id": "lead_select",
        "placeholder": _plain("Select incident lead"),
    }
    if incident.lead:
        lead_element["initial_user"] = incident.lead

    blocks: list[dict[str, Any]] = [
        _input(BLOCK_TITLE, "Title", _text_input("title_input", incident.title)),
        _input(
            BLOCK_DESCRIPTION,
            "Description",
            _text_input("description_input", incident.description, multiline=True),
            optional=True,
        ),
        _input(BLOCK_LEAD, "Lead", lead_element, optional=True),
    ]
    if config.severities:
        blocks.append(_severity_block(config, incident.severity_id))
    if config.assets:
        blocks.append(_assets_block(config, incident.asset_ids))

    return {
        "type": "modal",
        "callback_id": CALLBACK_EDIT_DETAILS,
        "title": _plain("Edit Incident Details"),
        "submit": _plain("Save"),
        "close": _plain("Cancel"),
        "private_metadata": str(incident.id),
        "blocks": blocks,
    }


# ── Tasks ───────────────────────────────────────────────────────────────────


def task_ref(task: Task) -> str:
    return f"{task.incident_id}:{task.id}"


def parse_task_ref(value: str) -> tuple[int, str]:
    """Split an '<incident_id>:<task_id>' button value. Raises ValueError."""
    incident_part, _, task_id = value.partition(":")
    if not task_id:
        raise ValueError(f"malformed task reference {value!r}")
    return int(incident_part), task_id


def task_message_blocks(task: Task) -> list[dict[str, Any]]:
    status_line = "✅ Completed" if task.is_completed else "🔄 In Progress"
    if task.assignee_id:
        status_line += f" • <@{task.assignee_id}>"

    ref = task_ref(task)
    if task.is_completed:
        toggle = _button(ACTION_TASK_UNCOMPLETE, "Uncomplete", ref, style="danger")
    else:
        toggle = _button(ACTION_TASK_COMPLETE, "Complete", ref, primary=True)
    return [
        _section(f"*{task.title}*\n_{status_line}_"),
        {
            "type": "actions",
            "block_id": "task_actions",
            "elements": [_button(ACTION_TASK_EDIT, "Edit", ref), toggle],
        },
    ]


def task_list_blocks(tasks: list[Task], incident: Incident) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = [_section(f"📋 *Task List for Incident #{incident.id}*")]
    if not tasks:
        blocks.append({"type": "section", "text": _plain("No tasks have been created yet.")})
        return blocks

    lines: list[str] = []
    for task in tasks:
        emoji = "✅" if task.is_completed else "🔄"
        url = task.message_url(incident.channel_id)
        line = f"{emoji} <{url}|{task.title}>" if url else f"{emoji} {task.title}"
        if task.assignee_id:
            line += f" - <@{task.assignee_id}>"
        lines.append(line)
    blocks.append(_section("\n".join(lines)))

    completed = sum(1 for t in tasks if t.is_completed)
    summary = (
        f"*Incomplete:* {len(tasks) - completed}  |  *Completed:* {completed}"
        f"  |  *Total:* {len(tasks)}"
    )
    blocks.append({"type": "context", "elements": [_mrkdwn(summary)]})
    return blocks


_TASK_STATUS_LABELS = {
    TaskStatus.todo: "Todo",
    TaskStatus.follow_up: "Follow-up",
    TaskStatus.completed: "Completed",
}


def task_edit_modal(task: Task) -> dict[str, Any]:
    options = [_option(label, s.value) for s, label in _TASK_STATUS_LABELS.items()]
    status_element: dict[str, Any] = {
        "type": "static_select",
        "action_id": "status_select",
        "options": options,
        "initial_option": _option(_TASK_STATUS_LABELS[task.status], task.status.value),
    }
    assignee_element: dict[str, Any] = {
        "type": "users_select",
        "action_id": "assignee_select",
        "placeholder": _plain("Select Assignee"),
    }
    if task.assignee_id:
        assignee_element["initial_user"] = task.assignee_id

    return {
        "type": "modal",
        "callback_id": CALLBACK_TASK_EDIT,
        "title": _plain("Edit Task"),
        "submit": _plain("Save"),
        "close": _plain("Cancel"),
        "private_metadata": task_ref(task),
        "blocks": [
            _input(BLOCK_TITLE, "Title", _text_input("title_input", task.title)),
            _input(
                BLOCK_DESCRIPTION,
                "Description",
                _text_input("description_input", task.description, multiline=True),
                optional=True,
            ),
            _input(BLOCK_STATUS, "Status", status_element),
            _input(BLOCK_ASSIGNEE, "Assignee", assignee_element, optional=True),
        ],
    }


# ── Inbound parsing ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class IncidentCommand:
    title: str = ""


def parse_incident_command(text: str, bot_user_id: str) -> IncidentCommand | None:
    """Detect '<@BOT> inc [title]'. 'inc' must directly follow the bot mention.

    Returns None when the message is not an incident trigger.
    """
    if not text or not bot_user_id:
        return None
    mention = f"<@{bot_user_id}>"
    parts = text.split()
    for i, part in enumerate(parts):
        if part == mention and i + 1 < len(parts) and parts[i + 1].lower() == "inc":
            return IncidentCommand(title=" ".join(parts[i + 2 :]).strip())
    return None


@dataclass(frozen=True)
class TaskCommand:
    title: str = ""


def parse_task_command(text: str, bot_user_id: str) -> TaskCommand | None:
    """Detect '<@BOT> t|task [title]'. An empty title asks for the task list."""
    if not text or not bot_user_id:
        return None
    mention = f"<@{bot_user_id}>"
    parts = text.split()
    for i, part in enumerate(parts):
        if part == mention and i + 1 < len(parts) and parts[i + 1].lower() in ("t", "task"):
            title = " ".join(parts[i + 2 :]).strip()
            if len(title) >= 2 and title[0] == title[-1] == '"':
                title = title[1:-1].strip()
            return TaskCommand(title=title)
    return None


def parse_status_change_metadata(raw: str) -> tuple[int, str, str]:
    """Decode private_metadata of the status modal into (incident_id, channel_id, ts)."""
    data = json.loads(raw)
    return int(data["incident_id"]), data.get("channel_id", ""), data.get("message_ts", "")


def view_state_value(state: dict[str, Any], block_id: str, action_id: str) -> str:
    """Pull a submitted value out of view.state.values (text input or select)."""
    action = (state.get("values") or {}).get(block_id, {}).get(action_id) or {}
    if action.get("selected_option"):
        return action["selected_option"].get("value", "")
    return action.get("value") or ""


def view_state_user(state: dict[str, Any], block_id: str, action_id: str) -> str:
    action = (state.get("values") or {}).get(block_id, {}).get(action_id) or {}
    return action.get("selected_user") or ""


def view_state_values(state: dict[str, Any], block_id: str, action_id: str) -> list[str]:
    """Values of a multi-select or checkbox group, in submitted order."""
    action = (state.get("values") or {}).get(block_id, {}).get(action_id) or {}
    return [o.get("value", "") for o in action.get("selected_options") or []]


def view_state_has_block(state: dict[str, Any], block_id: str) -> bool:
    return block_id in (state.get("values") or {})
