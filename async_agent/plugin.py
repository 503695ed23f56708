"""
Host integration for async-agent.

``AsyncAgentPlugin`` assembles the session client, the manager and the tools,
and exposes the entry points the host calls: the event feed, tool execution,
the ``/delegation`` command, the system prompt transform and the compaction
context.
"""

import logging
from pathlib import Path
from typing import Any

from .analysis import SessionAnalyzer
from .client import HttpSessionClient
from .client import SessionClient
from .credentials import CredentialStore
from .credentials import ModelCatalog
from .hooks import HookRegistry
from .log import RemoteLogHandler
from .log import configure_logging
from .manager import SESSION_TITLE_PREFIX
from .manager import DelegationManager
from .models import ToolResult
from .rules import format_delegation_context
from .rules import system_prompt_sections
from .settings import Settings
from .tools import ToolContext
from .tools import create_tools

logger = logging.getLogger(__name__)

DELEGATION_COMMAND = "delegation"


class AsyncAgentPlugin:
    """Wires a DelegationManager into the host.

    Usage:
        plugin = AsyncAgentPlugin.from_settings(Settings.load(), directory=cwd)
        await plugin.handle_event(event)
        result = await plugin.execute_tool("delegate", {...}, ToolContext(...))
    """

    def __init__(
        self,
        client: SessionClient,
        *,
        settings: Settings | None = None,
        hooks: HookRegistry | None = None,
        analyzer: SessionAnalyzer | None = None,
    ):
        self.client = client
        self.settings = settings or Settings()
        self.hooks = hooks or HookRegistry()
        self.manager = DelegationManager(
            client, settings=self.settings, hooks=self.hooks, analyzer=analyzer
        )
        self.tools = create_tools(self.manager)
        self.log_handler: RemoteLogHandler | None = None
        logger.debug("AsyncAgentPlugin initialized")

    @classmethod
    def from_settings(
        cls, settings: Settings, *, directory: str | Path | None = None
    ) -> "AsyncAgentPlugin":
        """Build a plugin talking HTTP to the configured server."""
        client = HttpSessionClient(
            settings.server_url,
            directory=str(directory) if directory else None,
            timeout=settings.request_timeout,
        )
        analyzer = SessionAnalyzer(
            client,
            catalog=ModelCatalog(settings.models_path),
            credentials=CredentialStore(settings.auth_path),
            timeout=settings.analysis_timeout,
            audit_dir=settings.audit_dir,
            debug=settings.debug,
        )
        plugin = cls(client, settings=settings, analyzer=analyzer)
        plugin.log_handler = configure_logging(
            client, level=logging.DEBUG if settings.debug else logging.INFO
        )
        return plugin

    async def aclose(self) -> None:
        await self.manager.shutdown()
        if self.log_handler is not None:
            logging.getLogger("async_agent").removeHandler(self.log_handler)
            self.log_handler = None
        close = getattr(self.client, "aclose", None)
        if close is not None:
            await close()

    # ---- Event feed ----

    async def handle_event(self, event: dict[str, Any]) -> None:
        """Route a server event to the manager. Unknown events are ignored."""
        event_type = event.get("type")
        properties = event.get("properties") or {}

        if event_type == "session.idle":
            session_id = properties.get("sessionID")
            if session_id:
                await self.manager.handle_session_idle(session_id)

        elif event_type == "message.updated":
            session_id = (properties.get("info") or {}).get("sessionID")
            if session_id:
                self.manager.handle_message_event(session_id)

        elif event_type == "message.part.updated":
            part = properties.get("part") or {}
            session_id = part.get("sessionID")
            if not session_id:
                return
            if part.get("type") == "text":
                self.manager.handle_message_event(session_id, part.get("text") or None)
            elif part.get("type") == "tool":
                # Tool parts are re-sent on every state change; count each call once
                finished = (part.get("state") or {}).get("status") in ("completed", "error")
                self.manager.handle_message_event(session_id, tool_call=finished)
            else:
                self.manager.handle_message_event(session_id)

    # ---- Tools ----

    async def execute_tool(self, name: str, input: dict[str, Any], ctx: ToolContext) -> ToolResult:
        tool = self.tools.get(name)
        if tool is None:
            return ToolResult(success=False, error={"message": f"Unknown tool: {name}"})
        return await tool.execute(input, ctx)

    # ---- /delegation command ----

    def command_config(self) -> dict[str, dict[str, str]]:
        """Slash command registration for the host config."""
        return {
            DELEGATION_COMMAND: {
                "template": "Show all background delegation sessions with their status, "
                "IDs, agents, and metadata.",
                "description": "List all background delegations",
            }
        }

    async def execute_command(self, command: str, session_id: str) -> bool:
        """
        Handle ``/delegation`` by posting a listing into the session.

        Returns:
            True if the command was handled here
        """
        if command != DELEGATION_COMMAND:
            return False

        message = await self.render_delegation_listing(session_id)
        await self.client.prompt(session_id, [{"type": "text", "text": message}], no_reply=True)
        return True

    async def render_delegation_listing(self, session_id: str) -> str:
        """Merge delegation child sessions on the server with in-memory records."""
        try:
            children = await self.client.children(session_id)
        except Exception as e:
            logger.debug(f"Could not list child sessions of {session_id}: {e}")
            children = []

        sessions = [s for s in children if (s.title or "").startswith(SESSION_TITLE_PREFIX.strip())]
        in_memory = self.manager.list_all_delegations()
        by_id = {d.id: d for d in in_memory}

        if not sessions and not in_memory:
            return "No delegations found for this session."

        entries: list[dict[str, str]] = []
        seen: set[str] = set()

        # Sessions on the server outlive this process; unknown ones are PERSISTED
        for s in sessions:
            seen.add(s.id)
            mem = by_id.get(s.id)
            created = s.created_at or (mem.started_at if mem else None)
            entries.append(
                {
                    "id": s.id,
                    "title": (mem.title if mem and mem.title else None) or s.title or "—",
                    "agent": (mem.agent if mem else None)
                    or (s.title or "").replace(SESSION_TITLE_PREFIX, "")
                    or "unknown",
                    "status": mem.status.upper() if mem else "PERSISTED",
                    "duration": (mem.duration if mem else None) or "—",
                    "started": created.isoformat() if created else "—",
                }
            )

        for d in in_memory:
            if d.id in seen:
                continue
            entries.append(
                {
                    "id": d.id,
                    "title": d.title or (d.description or "")[:60] or "—",
                    "agent": d.agent or "unknown",
                    "status": d.status.upper(),
                    "duration": d.duration or "—",
                    "started": d.started_at.isoformat() if d.started_at else "—",
                }
            )

        lines = [f"## Delegations ({len(entries)})\n"]
        for e in entries:
            lines.append(f"**[{e['id']}]** {e['title']}")
            lines.append(f"  Status: {e['status']} | Agent: {e['agent']} | Duration: {e['duration']}")
            lines.append(f"  Started: {e['started']}")
            lines.append(f"  `opencode -s {e['id']}`")
            lines.append("")
        return "\n".join(lines)

    # ---- Prompt shaping ----

    def system_transform(self) -> list[str]:
        """Sections to append to the calling agent's system prompt."""
        return system_prompt_sections(self.settings.config_doc_path)

    def compaction_context(self) -> list[str]:
        """Context to carry across compaction; empty when nothing is running."""
        running = self.manager.get_running_delegations()
        if not running:
            return []
        return [format_delegation_context(running)]
