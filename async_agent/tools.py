"""
Delegation tools exposed to the calling agent.

Each tool has ``name``, ``description``, ``input_schema`` and an async
``execute(input, ctx)`` returning a ``ToolResult``. The result's ``output`` is
the exact text the calling agent sees; failures are reported as text and
never raised.
"""

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from .manager import DelegationManager
from .models import DelegateInput
from .models import ReadDelegationArgs
from .models import ToolResult

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """Who is calling a tool."""

    session_id: str | None = None
    message_id: str | None = None
    agent: str = "build"


def _failure(text: str) -> ToolResult:
    return ToolResult(success=False, output=text, error={"message": text})


def _missing_context(tool_name: str, field: str = "sessionID") -> ToolResult:
    return _failure(f"❌ {tool_name} requires {field}. This is a system error.")


class DelegateTool:
    """Launch a background delegation."""

    name = "delegate"
    description = """Delegate a task to an agent. Returns immediately with the session ID.

Use this for:
- Research tasks (will be auto-saved)
- Parallel work that can run in background
- Any task where you want persistent, retrievable output

On completion, a notification will arrive with the session ID, status, duration.
Use `delegation_read` with the session ID to retrieve the result."""

    def __init__(self, manager: DelegationManager):
        self.manager = manager

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": "The full detailed prompt for the agent. Must be in English.",
                },
                "agent": {
                    "type": "string",
                    "description": 'Agent to delegate to: "explore" (codebase search), '
                    '"researcher" (external research), etc.',
                },
                "model": {
                    "type": "string",
                    "description": 'Override model for this delegation. Format: "provider/model" '
                    '(e.g. "minimax/MiniMax-M2.5"). If not set, uses the agent default.',
                },
            },
            "required": ["prompt", "agent"],
        }

    async def execute(self, input: dict[str, Any], ctx: ToolContext) -> ToolResult:
        if not ctx.session_id:
            return _missing_context(self.name)
        if not ctx.message_id:
            return _missing_context(self.name, "messageID")

        try:
            delegation = await self.manager.delegate(
                DelegateInput(
                    parent_session_id=ctx.session_id,
                    parent_message_id=ctx.message_id,
                    parent_agent=ctx.agent,
                    prompt=input.get("prompt", ""),
                    agent=input.get("agent", ""),
                    model=input.get("model") or None,
                )
            )
        except Exception as e:
            logger.debug(f"delegate failed: {e!r}")
            return _failure(f"❌ Delegation failed:\n\n{e}")

        pending_count = self.manager.get_pending_count(ctx.session_id)
        response = f"Delegation started: {delegation.id}\nAgent: {delegation.agent}"
        if pending_count > 1:
            response += f"\n\n{pending_count} delegations now active."
        response += (
            "\n\nYou WILL be notified via <system-reminder> when complete. "
            "Do NOT poll delegation_list()."
        )
        return ToolResult(output=response)


class DelegationReadTool:
    """Read a delegation's output."""

    name = "delegation_read"
    description = """Read the output of a delegation by its ID.

Modes:
- simple (default): Returns just the final result
- full: Returns all messages in the session with timestamps

Set ai=true to get an AI review of a completed delegation's reliability.
Use filters to get specific parts of the conversation."""

    def __init__(self, manager: DelegationManager):
        self.manager = manager

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "The delegation session ID"},
                "mode": {
                    "type": "string",
                    "enum": ["simple", "full"],
                    "description": "Output mode: 'simple' for result only, 'full' for all messages",
                },
                "include_thinking": {
                    "type": "boolean",
                    "description": "Include thinking/reasoning blocks in full mode",
                },
                "include_tools": {
                    "type": "boolean",
                    "description": "Include tool results in full mode",
                },
                "since_message_id": {
                    "type": "string",
                    "description": "Return only messages after this message ID (full mode only)",
                },
                "limit": {
                    "type": "integer",
                    "description": "Max messages to return, capped at 100 (full mode only)",
                },
                "ai": {
                    "type": "boolean",
                    "description": "Analyze the completed session with an AI reviewer",
                },
                "ai_model": {
                    "type": "string",
                    "description": 'Model for the AI review, "provider/model". '
                    "Defaults to the calling session's model.",
                },
            },
            "required": ["id"],
        }

    async def execute(self, input: dict[str, Any], ctx: ToolContext) -> ToolResult:
        if not ctx.session_id:
            return _missing_context(self.name)

        try:
            args = ReadDelegationArgs.model_validate(
                {k: v for k, v in input.items() if v is not None}
            )
            return ToolResult(output=await self.manager.read_delegation(args))
        except ValidationError as e:
            return _failure(f"❌ Error reading delegation: invalid arguments ({e.error_count()} errors)")
        except Exception as e:
            return _failure(f"❌ Error reading delegation: {e}")


class DelegationListTool:
    """List delegations of the calling session."""

    name = "delegation_list"
    description = """List all delegations for the current session.
Shows running, completed, cancelled, and error tasks with metadata."""

    def __init__(self, manager: DelegationManager):
        self.manager = manager

    @property
    def input_schema(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, input: dict[str, Any], ctx: ToolContext) -> ToolResult:
        if not ctx.session_id:
            return _missing_context(self.name)

        delegations = self.manager.list_delegations(ctx.session_id)
        if not delegations:
            return ToolResult(output="No delegations found for this session.")

        lines = []
        for d in delegations:
            title_part = f" | {d.title}" if d.title else ""
            duration_part = f" ({d.duration})" if d.duration else ""
            desc_part = ""
            if d.description:
                ellipsis = "..." if len(d.description) > 100 else ""
                desc_part = f"\n  → {d.description[:100]}{ellipsis}"
            lines.append(f"- **{d.id}**{title_part} [{d.status}]{duration_part}{desc_part}")

        return ToolResult(output="## Delegations\n\n" + "\n".join(lines))


class DelegationCancelTool:
    """Cancel one or all running delegations."""

    name = "delegation_cancel"
    description = """Cancel a running delegation by ID, or cancel all running delegations.

Cancelled tasks can be resumed later with delegation_resume()."""

    def __init__(self, manager: DelegationManager):
        self.manager = manager

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Task ID to cancel"},
                "all": {"type": "boolean", "description": "Cancel ALL running delegations"},
            },
        }

    async def execute(self, input: dict[str, Any], ctx: ToolContext) -> ToolResult:
        if not ctx.session_id:
            return _missing_context(self.name)

        try:
            if input.get("all"):
                cancelled = await self.manager.cancel_all(ctx.session_id)
                if not cancelled:
                    return ToolResult(output="No running delegations to cancel.")
                listing = "\n".join(f"- {i}" for i in cancelled)
                return ToolResult(output=f"Cancelled {len(cancelled)} delegation(s):\n{listing}")

            delegation_id = input.get("id")
            if not delegation_id:
                return _failure("❌ Must provide either 'id' or 'all=true'")

            if not await self.manager.cancel(delegation_id):
                return _failure(
                    f'❌ Could not cancel "{delegation_id}". Task may not exist or is not running.'
                )
            return ToolResult(
                output=f"✅ Cancelled delegation: {delegation_id}\n\n"
                f'You can resume it later with delegation_resume(id="{delegation_id}")'
            )
        except Exception as e:
            return _failure(f"❌ Error cancelling: {e}")


class DelegationResumeTool:
    """Resume a cancelled or errored delegation."""

    name = "delegation_resume"
    description = """Resume a cancelled or errored delegation by sending a new prompt to the same session.

The agent will have access to the previous conversation context."""

    def __init__(self, manager: DelegationManager):
        self.manager = manager

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Task ID to resume"},
                "prompt": {
                    "type": "string",
                    "description": "Optional prompt to send "
                    "(default: 'Continue from where you left off.')",
                },
            },
            "required": ["id"],
        }

    async def execute(self, input: dict[str, Any], ctx: ToolContext) -> ToolResult:
        if not ctx.session_id:
            return _missing_context(self.name)

        try:
            delegation = await self.manager.resume(input.get("id", ""), input.get("prompt") or None)
        except Exception as e:
            return _failure(f"❌ Error resuming: {e}")
        return ToolResult(
            output=f"✅ Resumed delegation: {delegation.id}\n"
            f"Agent: {delegation.agent}\nStatus: {delegation.status}"
        )


def create_tools(manager: DelegationManager) -> dict[str, Any]:
    """All delegation tools keyed by name."""
    tools = [
        DelegateTool(manager),
        DelegationReadTool(manager),
        DelegationListTool(manager),
        DelegationCancelTool(manager),
        DelegationResumeTool(manager),
    ]
    return {tool.name: tool for tool in tools}
