"""Tests for AI analysis of completed delegations."""

import asyncio
import json
from datetime import UTC
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock
from unittest.mock import MagicMock
from unittest.mock import patch

import anthropic
import httpx
import pytest
from conftest import make_message

from async_agent.analysis import AnthropicCompletionClient
from async_agent.analysis import SessionAnalyzer
from async_agent.analysis import build_analysis_prompt
from async_agent.analysis import format_transcript
from async_agent.credentials import CredentialStore
from async_agent.credentials import ModelCatalog
from async_agent.errors import AnalysisConfigError
from async_agent.errors import AnalysisTimeoutError
from async_agent.errors import RemoteCallError
from async_agent.models import Delegation
from async_agent.utils import ModelRef


def _delegation() -> Delegation:
    return Delegation(
        id="ses_1",
        parent_session_id="p1",
        parent_message_id="msg",
        parent_agent="build",
        agent="explore",
        prompt="Find every caller of parse()",
        status="completed",
        started_at=datetime(2025, 1, 1, tzinfo=UTC),
        completed_at=datetime(2025, 1, 1, 0, 0, 42, tzinfo=UTC),
        duration="42s",
    )


@pytest.fixture
def stores(tmp_path):
    models = tmp_path / "models.json"
    models.write_text(json.dumps({"minimax": {"api": "https://api.minimax.io/anthropic/v1"}}))
    auth = tmp_path / "auth.json"
    auth.write_text(json.dumps({"minimax": {"type": "api", "key": "sk-test"}}))
    return ModelCatalog(models), CredentialStore(auth)


def _completion(result="Verdict: RELIABLE"):
    completion = MagicMock()
    completion.complete = AsyncMock(return_value=result)
    return completion


# ============================================================================
# Transcript rendering
# ============================================================================


def test_format_transcript_renders_roles_and_parts():
    messages = [
        make_message("m1", "user", "  Find callers  "),
        make_message(
            "m2",
            "assistant",
            parts=[
                {"type": "reasoning", "text": "r" * 600},
                {
                    "type": "tool",
                    "tool": "grep",
                    "state": {"status": "completed", "output": "o" * 600},
                },
                {"type": "tool", "tool": "read", "state": {"status": "error", "error": "ENOENT"}},
                {"type": "tool_result", "output": "3 matches"},
                {"type": "text", "text": "Found 3"},
            ],
        ),
    ]

    text = format_transcript(messages)

    user_block, assistant_block = text.split("\n\n")
    assert user_block == "[USER]\nFind callers"
    lines = assistant_block.split("\n")
    assert lines[0] == "[ASSISTANT]"
    assert lines[1] == f"[reasoning] {'r' * 500}... (truncated 100 chars)"
    assert lines[2] == "[tool call] grep (completed)"
    assert lines[3] == f"[tool output] {'o' * 500}... (truncated 100 chars)"
    assert lines[4] == "[tool call] read (error)"
    assert lines[5] == "[tool error] ENOENT"
    assert lines[6] == "[tool result] 3 matches"
    assert lines[7] == "Found 3"


def test_analysis_prompt_has_every_review_section():
    prompt = build_analysis_prompt(_delegation(), "")

    assert "- ID: ses_1" in prompt
    assert "Find every caller of parse()" in prompt
    assert "(empty)" in prompt
    for heading in (
        "Missed requirements",
        "Incorrect assumptions",
        "Abandoned work",
        "Regressions",
        "Strengths",
        "Termination quality",
        "Reliability verdict",
        "Recommended next action",
    ):
        assert f"**{heading}**" in prompt


# ============================================================================
# SessionAnalyzer
# ============================================================================


@pytest.mark.asyncio
async def test_analyze_resolves_endpoint_and_key(fake_client, stores):
    catalog, credentials = stores
    fake_client.transcripts["ses_1"] = [make_message("m1", "assistant", "done")]
    completion = _completion()
    analyzer = SessionAnalyzer(
        fake_client, catalog=catalog, credentials=credentials, completion=completion
    )

    report = await analyzer.analyze(_delegation(), "minimax/MiniMax-M2.5")

    kwargs = completion.complete.await_args.kwargs
    assert kwargs["model"] == ModelRef("minimax", "MiniMax-M2.5")
    assert kwargs["api_key"] == "sk-test"
    assert kwargs["base_url"] == "https://api.minimax.io/anthropic/v1"
    assert "[ASSISTANT]\ndone" in kwargs["prompt"]
    assert report.startswith("# AI Analysis: ses_1\n\n**Agent:** explore\n")
    assert "**Model:** minimax/MiniMax-M2.5" in report
    assert "**Duration:** 42s" in report
    assert report.endswith("---\n\nVerdict: RELIABLE")


@pytest.mark.asyncio
async def test_analyze_times_out(fake_client, stores):
    catalog, credentials = stores

    async def slow_complete(**kwargs):
        await asyncio.sleep(5)
        return "late"

    completion = MagicMock()
    completion.complete = slow_complete
    analyzer = SessionAnalyzer(
        fake_client, catalog=catalog, credentials=credentials, completion=completion, timeout=0.01
    )

    with pytest.raises(AnalysisTimeoutError) as exc_info:
        await analyzer.analyze(_delegation(), "minimax/MiniMax-M2.5")

    assert exc_info.value.timeout == 0.01
    assert exc_info.value.delegation_id == "ses_1"


@pytest.mark.asyncio
async def test_missing_credential_is_config_error(fake_client, stores):
    catalog, credentials = stores
    completion = _completion()
    analyzer = SessionAnalyzer(
        fake_client, catalog=catalog, credentials=credentials, completion=completion
    )

    with pytest.raises(AnalysisConfigError, match="No credential found for provider 'openai'"):
        await analyzer.analyze(_delegation(), "openai/gpt-4o")

    completion.complete.assert_not_awaited()


@pytest.mark.asyncio
async def test_audit_record_written_in_debug(fake_client, stores, tmp_path):
    catalog, credentials = stores
    audit_dir = tmp_path / "audit"
    analyzer = SessionAnalyzer(
        fake_client,
        catalog=catalog,
        credentials=credentials,
        completion=_completion("ok"),
        audit_dir=audit_dir,
        debug=True,
    )

    await analyzer.analyze(_delegation(), "minimax/MiniMax-M2.5")

    [record_path] = list(audit_dir.glob("analysis-ses_1-*.json"))
    record = json.loads(record_path.read_text())
    assert record["delegationId"] == "ses_1"
    assert record["model"] == "minimax/MiniMax-M2.5"
    assert record["status"] == "success"
    assert record["result"] == "ok"
    assert isinstance(record["durationMs"], int)


@pytest.mark.asyncio
async def test_audit_record_for_failure(fake_client, stores, tmp_path):
    catalog, credentials = stores
    audit_dir = tmp_path / "audit"
    completion = MagicMock()
    completion.complete = AsyncMock(side_effect=RemoteCallError("overloaded", operation="completion"))
    analyzer = SessionAnalyzer(
        fake_client,
        catalog=catalog,
        credentials=credentials,
        completion=completion,
        audit_dir=audit_dir,
        debug=True,
    )

    with pytest.raises(RemoteCallError):
        await analyzer.analyze(_delegation(), "minimax/MiniMax-M2.5")

    [record_path] = list(audit_dir.glob("analysis-ses_1-*.json"))
    record = json.loads(record_path.read_text())
    assert record["status"] == "error"
    assert record["error"] == "overloaded"
    assert "result" not in record


@pytest.mark.asyncio
async def test_no_audit_without_debug(fake_client, stores, tmp_path):
    catalog, credentials = stores
    audit_dir = tmp_path / "audit"
    analyzer = SessionAnalyzer(
        fake_client,
        catalog=catalog,
        credentials=credentials,
        completion=_completion(),
        audit_dir=audit_dir,
    )

    await analyzer.analyze(_delegation(), "minimax/MiniMax-M2.5")

    assert not audit_dir.exists()


# ============================================================================
# AnthropicCompletionClient
# ============================================================================


def _mock_sdk(create):
    sdk_client = MagicMock()
    sdk_client.messages.create = create
    sdk_client.close = AsyncMock()
    return sdk_client


@pytest.mark.asyncio
async def test_anthropic_client_strips_v1_and_joins_text():
    response = SimpleNamespace(
        content=[
            SimpleNamespace(type="thinking", thinking="hmm"),
            SimpleNamespace(type="text", text="part one"),
            SimpleNamespace(type="text", text="part two"),
        ]
    )
    sdk_client = _mock_sdk(AsyncMock(return_value=response))

    with patch("async_agent.analysis.AsyncAnthropic", return_value=sdk_client) as sdk_cls:
        text = await AnthropicCompletionClient(max_tokens=1024).complete(
            model=ModelRef("minimax", "MiniMax-M2.5"),
            api_key="sk-test",
            base_url="https://api.minimax.io/anthropic/v1/",
            prompt="review this",
        )

    assert text == "part one\npart two"
    sdk_cls.assert_called_once_with(
        api_key="sk-test", base_url="https://api.minimax.io/anthropic", max_retries=0
    )
    sdk_client.messages.create.assert_awaited_once_with(
        model="MiniMax-M2.5",
        max_tokens=1024,
        messages=[{"role": "user", "content": "review this"}],
    )
    sdk_client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_anthropic_client_translates_sdk_errors():
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    sdk_client = _mock_sdk(AsyncMock(side_effect=anthropic.APIConnectionError(request=request)))

    with patch("async_agent.analysis.AsyncAnthropic", return_value=sdk_client):
        with pytest.raises(RemoteCallError) as exc_info:
            await AnthropicCompletionClient().complete(
                model=ModelRef("anthropic", "claude-sonnet-4"),
                api_key="sk-test",
                base_url="https://api.anthropic.com",
                prompt="p",
            )

    assert exc_info.value.operation == "completion"
    assert isinstance(exc_info.value.__cause__, anthropic.APIConnectionError)
    sdk_client.close.assert_awaited_once()
