"""Draft an incident title, description and category from recent chat.

The model is asked for a JSON object; anything that does not parse into a
usable summary yields None so callers keep their manual values.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from lycaon.channels.slack import ChatMessage
from lycaon.config.incident_config import IncidentConfig
from lycaon.llm.model_client import ModelClient

logger = structlog.get_logger()

_SYSTEM_PROMPT = """\
You are an incident response assistant. Read the Slack conversation below and
draft an incident declaration.

Respond with a single JSON object with exactly these keys:
  "title":       a concise incident title, at most 80 characters
  "description": two or three sentences describing impact and known facts
  "category":    one of the category IDs listed below

Categories:
{categories}
"""


@dataclass(frozen=True)
class IncidentSummary:
    title: str
    description: str
    category_id: str = ""


def _format_timestamp(ts: str) -> str:
    try:
        return datetime.fromtimestamp(float(ts), UTC).strftime("%H:%M")
    except ValueError:
        return ts


def _render_transcript(messages: list[ChatMessage]) -> str:
    lines = [
        f"[{_format_timestamp(m.ts)}] {m.user or 'unknown'}: {m.text}"
        for m in messages
        if m.text
    ]
    return "\n".join(lines)


class IncidentSummarizer:
    def __init__(self, client: ModelClient, model: str, config: IncidentConfig) -> None:
        self._client = client
        self._model = model
        self._config = config

    def _system_prompt(self) -> str:
        categories = "\n".join(
            f"- {c.id}: {c.name}" + (f" ({c.description})" if c.description else "")
            for c in self._config.categories
        )
        return _SYSTEM_PROMPT.format(categories=categories)

    async def summarize(self, messages: list[ChatMessage]) -> IncidentSummary | None:
        """Return a summary, or None when there is nothing usable.

        LLMError from the model client propagates.
        """
        transcript = _render_transcript(messages)
        if not transcript:
            return None

        raw = await self._client.chat(
            [
                {"role": "system", "content": self._system_prompt()},
                {"role": "user", "content": transcript},
            ],
            self._model,
            json_output=True,
        )
        return self._parse(raw)

    def _parse(self, raw: str) -> IncidentSummary | None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("incident_summary_invalid_json", chars=len(raw))
            return None
        if not isinstance(data, dict):
            logger.warning("incident_summary_not_object")
            return None

        title = data.get("title")
        description = data.get("description")
        if not isinstance(title, str) or not title.strip():
            logger.warning("incident_summary_missing_title")
            return None
        if not isinstance(description, str) or not description.strip():
            logger.warning("incident_summary_missing_description")
            return None

        category_id = data.get("category")
        if not isinstance(category_id, str) or self._config.find_category(category_id) is None:
            category_id = ""

        return IncidentSummary(
            title=title.strip(),
            description=description.strip(),
            category_id=category_id,
        )
