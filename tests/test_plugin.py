"""Tests for host integration: event routing, /delegation and prompt shaping."""

import logging
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from async_agent.client import HttpSessionClient
from async_agent.message_models import SessionInfo
from async_agent.plugin import AsyncAgentPlugin
from async_agent.rules import DELEGATION_RULES
from async_agent.tools import ToolContext


@pytest_asyncio.fixture
async def plugin(fake_client, settings) -> AsyncGenerator[AsyncAgentPlugin, None]:
    p = AsyncAgentPlugin(fake_client, settings=settings)
    yield p
    await p.aclose()


async def _start(plugin: AsyncAgentPlugin, prompt: str = "Find X") -> str:
    result = await plugin.execute_tool(
        "delegate",
        {"prompt": prompt, "agent": "explore"},
        ToolContext(session_id="p1", message_id="msg_parent"),
    )
    assert result.success
    return result.output.split("\n")[0].removeprefix("Delegation started: ")


# ============================================================================
# Event feed
# ============================================================================


class TestEventRouting:
    @pytest.mark.asyncio
    async def test_session_idle_completes(self, plugin):
        delegation_id = await _start(plugin)

        await plugin.handle_event({"type": "session.idle", "properties": {"sessionID": delegation_id}})

        assert plugin.manager.get(delegation_id).status == "completed"

    @pytest.mark.asyncio
    async def test_text_part_updates_progress(self, plugin):
        delegation_id = await _start(plugin)

        await plugin.handle_event(
            {
                "type": "message.part.updated",
                "properties": {"part": {"type": "text", "sessionID": delegation_id, "text": "Reading files"}},
            }
        )

        progress = plugin.manager.get(delegation_id).progress
        assert progress.last_message == "Reading files"
        assert progress.last_message_at is not None

    @pytest.mark.asyncio
    async def test_tool_part_counted_once_when_finished(self, plugin):
        delegation_id = await _start(plugin)

        for status in ("pending", "running", "completed"):
            await plugin.handle_event(
                {
                    "type": "message.part.updated",
                    "properties": {
                        "part": {"type": "tool", "sessionID": delegation_id, "state": {"status": status}}
                    },
                }
            )

        assert plugin.manager.get(delegation_id).progress.tool_calls == 1

    @pytest.mark.asyncio
    async def test_message_updated_refreshes_liveness(self, plugin):
        delegation_id = await _start(plugin)
        before = plugin.manager.get(delegation_id).progress.last_update

        await plugin.handle_event(
            {"type": "message.updated", "properties": {"info": {"sessionID": delegation_id}}}
        )

        assert plugin.manager.get(delegation_id).progress.last_update >= before

    @pytest.mark.asyncio
    async def test_unknown_and_malformed_events_are_ignored(self, plugin):
        delegation_id = await _start(plugin)

        await plugin.handle_event({"type": "file.edited", "properties": {"file": "x"}})
        await plugin.handle_event({"type": "session.idle"})
        await plugin.handle_event({"type": "message.part.updated", "properties": {}})

        assert plugin.manager.get(delegation_id).status == "running"


# ============================================================================
# Tools and /delegation
# ============================================================================


@pytest.mark.asyncio
async def test_unknown_tool(plugin):
    result = await plugin.execute_tool("delegate_everything", {}, ToolContext(session_id="p1"))

    assert not result.success
    assert result.error == {"message": "Unknown tool: delegate_everything"}


def test_command_config(plugin):
    assert set(plugin.command_config()) == {"delegation"}


@pytest.mark.asyncio
async def test_other_commands_are_not_handled(plugin, fake_client):
    assert await plugin.execute_command("compact", "p1") is False
    assert fake_client.prompts_to("p1") == []


@pytest.mark.asyncio
async def test_delegation_command_merges_persisted_sessions(plugin, fake_client):
    fake_client.children_by_parent["p1"] = [
        SessionInfo(id="ses_old", title="Delegation: researcher", time={"created": 1_700_000_000_000}),
        SessionInfo(id="ses_chat", title="Side conversation"),
    ]
    delegation_id = await _start(plugin)

    assert await plugin.execute_command("delegation", "p1") is True

    [posted] = fake_client.prompts_to("p1")
    assert posted["no_reply"] is True
    text = posted["text"]
    assert text.startswith("## Delegations (2)\n")
    assert "**[ses_old]** Delegation: researcher" in text
    assert "  Status: PERSISTED | Agent: researcher | Duration: —" in text
    assert "  Started: 2023-11-14T22:13:20+00:00" in text
    assert "  Status: RUNNING | Agent: explore | Duration: —" in text
    assert f"  `opencode -s {delegation_id}`" in text
    assert "ses_chat" not in text


@pytest.mark.asyncio
async def test_delegation_listing_when_empty(plugin):
    assert await plugin.render_delegation_listing("p1") == "No delegations found for this session."


# ============================================================================
# Prompt shaping
# ============================================================================


def test_system_transform_without_config_document(plugin):
    assert plugin.system_transform() == [DELEGATION_RULES]


def test_system_transform_includes_config_document(plugin, settings):
    settings.config_doc_path.write_text("Prefer minimax for research.\n")

    sections = plugin.system_transform()

    assert sections[0] == DELEGATION_RULES
    assert sections[1] == "<bg-agents-config>\nPrefer minimax for research.\n\n</bg-agents-config>"


@pytest.mark.asyncio
async def test_compaction_context(plugin):
    assert plugin.compaction_context() == []

    delegation_id = await _start(plugin)
    [context] = plugin.compaction_context()

    assert context.startswith("<delegation-context>\n## Running Delegations")
    assert f"### `{delegation_id}` (explore)" in context
    assert context.endswith("</delegation-context>")


@pytest.mark.asyncio
async def test_from_settings_builds_http_client(settings):
    plugin = AsyncAgentPlugin.from_settings(settings, directory="/work/repo")
    try:
        assert isinstance(plugin.client, HttpSessionClient)
        assert plugin.client.directory == "/work/repo"
        assert plugin.manager.analyzer is not None
        assert set(plugin.tools) >= {"delegate", "delegation_read"}
        assert plugin.log_handler in logging.getLogger("async_agent").handlers
    finally:
        await plugin.aclose()

    assert plugin.log_handler is None
