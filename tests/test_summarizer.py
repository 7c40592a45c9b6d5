"""Tests for IncidentSummarizer."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from lycaon.channels.slack import ChatMessage
from lycaon.infra.errors import LLMError
from lycaon.llm.summarizer import IncidentSummarizer, IncidentSummary

_MESSAGES = [
    ChatMessage(ts="1700000000.000100", user="U0BOB", text="checkout returns 500"),
    ChatMessage(ts="1700000060.000100", user="U0CAROL", text=""),
    ChatMessage(ts="1700000120.000100", user="U0CAROL", text="db primary is down"),
]


def _summarizer(incident_config, reply: str | Exception) -> tuple[IncidentSummarizer, MagicMock]:
    client = MagicMock()
    if isinstance(reply, Exception):
        client.chat = AsyncMock(side_effect=reply)
    else:
        client.chat = AsyncMock(return_value=reply)
    return IncidentSummarizer(client, "test-model", incident_config), client


class TestSummarize:
    @pytest.mark.asyncio
    async def test_parses_summary(self, incident_config):
        reply = json.dumps(
            {
                "title": " Checkout down ",
                "description": "Primary database unavailable.",
                "category": "system_failure",
            }
        )
        summarizer, client = _summarizer(incident_config, reply)

        summary = await summarizer.summarize(_MESSAGES)

        assert summary == IncidentSummary(
            "Checkout down", "Primary database unavailable.", "system_failure"
        )
        messages, model = client.chat.await_args.args
        assert model == "test-model"
        assert client.chat.await_args.kwargs["json_output"] is True
        assert "security_incident: Security Incident" in messages[0]["content"]
        transcript = messages[1]["content"]
        assert "U0BOB: checkout returns 500" in transcript
        # empty messages are skipped
        assert len(transcript.splitlines()) == 2

    @pytest.mark.asyncio
    async def test_unknown_category_dropped(self, incident_config):
        reply = json.dumps({"title": "T", "description": "D", "category": "made_up"})
        summarizer, _ = _summarizer(incident_config, reply)

        summary = await summarizer.summarize(_MESSAGES)

        assert summary.category_id == ""

    @pytest.mark.asyncio
    async def test_empty_transcript_skips_model(self, incident_config):
        summarizer, client = _summarizer(incident_config, "{}")

        assert await summarizer.summarize([ChatMessage(ts="1.0", text="")]) is None
        client.chat.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply",
        [
            "not json",
            "[1, 2]",
            json.dumps({"title": "", "description": "D"}),
            json.dumps({"title": "T"}),
            json.dumps({"title": 5, "description": "D"}),
        ],
    )
    async def test_unusable_reply_returns_none(self, incident_config, reply):
        summarizer, _ = _summarizer(incident_config, reply)
        assert await summarizer.summarize(_MESSAGES) is None

    @pytest.mark.asyncio
    async def test_llm_error_propagates(self, incident_config):
        summarizer, _ = _summarizer(incident_config, LLMError("rate limited"))
        with pytest.raises(LLMError):
            await summarizer.summarize(_MESSAGES)
