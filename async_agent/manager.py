"""
Delegation lifecycle coordinator.

``DelegationManager`` is the only writer of delegation state. It launches
delegations as child sessions on the remote session API, tracks each one from
``running`` to a terminal status, batches notifications back to the parent
session and answers read/cancel/resume/list requests.

Everything runs on one event loop. Work that must outlive the call that
started it (prompt dispatch, notification delivery, toasts, watchdog expiry)
runs as tasks held in ``DelegationState.background_tasks``. Every terminal
handler checks that the delegation is still ``running`` before acting, and
``cancel`` records its outcome locally before awaiting the remote abort, so a
cancel always wins over an idle signal or timeout that arrives during the
abort.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from . import events
from .analysis import SessionAnalyzer
from .client import SessionClient
from .client import ToastVariant
from .errors import AgentNotFoundError
from .errors import DelegationNotFoundError
from .errors import InvalidStateError
from .errors import SessionCreateError
from .hooks import HookRegistry
from .message_models import MessageTime
from .message_models import ReasoningPart
from .message_models import SessionMessage
from .message_models import TextPart
from .message_models import ToolResultPart
from .models import RESUMABLE_STATUSES
from .models import TERMINAL_STATUSES
from .models import DelegateInput
from .models import Delegation
from .models import DelegationListItem
from .models import DelegationProgress
from .models import DelegationStatus
from .models import ReadDelegationArgs
from .notifications import compose_notification
from .settings import Settings
from .utils import format_duration
from .utils import parse_model
from .utils import utcnow

logger = logging.getLogger(__name__)

# Nested delegation and planning stay off inside a delegated session
DISABLED_TOOLS = {
    "task": False,
    "delegate": False,
    "todowrite": False,
    "plan_save": False,
}

DEFAULT_RESUME_PROMPT = "Continue from where you left off."
SESSION_TITLE_PREFIX = "Delegation: "
MAX_FULL_MESSAGES = 100
THINKING_PREVIEW_LENGTH = 2000


class DelegationState:
    """State owned by one manager.

    Attributes:
        delegations: Delegation records keyed by id (= remote session id)
        pending_by_parent: Parent session id -> ids not yet reported resolved.
            Sets are never removed; an empty set means nothing outstanding.
        watchdogs: Armed timeout handles keyed by delegation id
        runs: Run counter per delegation, bumped by every launch and resume
        background_tasks: Detached tasks kept alive until they finish
    """

    def __init__(self):
        self.delegations: dict[str, Delegation] = {}
        self.pending_by_parent: dict[str, set[str]] = {}
        self.watchdogs: dict[str, asyncio.TimerHandle] = {}
        self.background_tasks: set[asyncio.Task] = set()
        self.runs: dict[str, int] = {}

    def start_run(self, delegation_id: str) -> int:
        run = self.runs.get(delegation_id, 0) + 1
        self.runs[delegation_id] = run
        return run

    def pending_for(self, parent_session_id: str) -> set[str]:
        return self.pending_by_parent.setdefault(parent_session_id, set())


class DelegationManager:
    """Owns delegation state and every lifecycle transition."""

    def __init__(
        self,
        client: SessionClient,
        *,
        settings: Settings | None = None,
        hooks: HookRegistry | None = None,
        analyzer: SessionAnalyzer | None = None,
        state: DelegationState | None = None,
    ):
        self.client = client
        self.settings = settings or Settings()
        self.hooks = hooks
        self.analyzer = analyzer
        self.state = state or DelegationState()

    # ---- Core operations ----

    async def delegate(self, input: DelegateInput) -> Delegation:
        """
        Launch a delegation and return its ``running`` record immediately.

        Raises:
            AgentNotFoundError: If the agent is not usable as a sub-agent
            SessionCreateError: If the server created no session
            RemoteCallError: If the agent catalog or session creation call fails
        """
        logger.debug(f"delegate() called for agent '{input.agent}' from {input.parent_session_id}")

        agents = [a for a in await self.client.agents() if a.usable_as_subagent]
        if not any(a.name == input.agent for a in agents):
            available = "\n".join(
                f"• {a.name}" + (f" - {a.description}" if a.description else "") for a in agents
            )
            raise AgentNotFoundError(
                f'Agent "{input.agent}" not found.\n\nAvailable agents:\n{available or "(none)"}',
                agent=input.agent,
                available=[a.name for a in agents],
            )

        session = await self.client.create_session(
            input.parent_session_id, f"{SESSION_TITLE_PREFIX}{input.agent}"
        )
        if session is None:
            raise SessionCreateError("Failed to create delegation session")

        parent_model = await self._capture_parent_model(input.parent_session_id)

        delegation = Delegation(
            id=session.id,
            parent_session_id=input.parent_session_id,
            parent_message_id=input.parent_message_id,
            parent_agent=input.parent_agent,
            parent_model=parent_model,
            agent=input.agent,
            prompt=input.prompt,
            model=input.model,
        )
        self.state.delegations[delegation.id] = delegation

        pending = self.state.pending_for(delegation.parent_session_id)
        pending.add(delegation.id)
        logger.debug(
            f"Tracking delegation {delegation.id} for parent {delegation.parent_session_id}. "
            f"Pending count: {len(pending)}"
        )

        self._arm_watchdog(delegation.id)
        self._toast("New Background Task", f"{delegation.id} ({delegation.agent})", "info", 3000)
        run = self.state.start_run(delegation.id)
        self._spawn(
            self._dispatch_prompt(delegation.id, input.prompt, run), f"prompt-{delegation.id}"
        )
        await self._emit(events.DELEGATION_STARTED, delegation)

        return delegation.model_copy(deep=True)

    async def resume(self, delegation_id: str, prompt: str | None = None) -> Delegation:
        """
        Send a follow-up prompt to a cancelled or failed delegation's session.

        Raises:
            DelegationNotFoundError: If the id is unknown
            InvalidStateError: If the delegation is not cancelled or errored
        """
        delegation = self.state.delegations.get(delegation_id)
        if delegation is None:
            raise DelegationNotFoundError(
                f'Delegation "{delegation_id}" not found', delegation_id=delegation_id
            )
        if delegation.status not in RESUMABLE_STATUSES:
            raise InvalidStateError(
                f'Cannot resume delegation: status is "{delegation.status}". '
                "Only cancelled or error tasks can be resumed.",
                delegation_id=delegation_id,
                status=delegation.status,
            )

        delegation.status = "running"
        delegation.started_at = utcnow()
        delegation.completed_at = None
        delegation.duration = None
        delegation.error = None
        delegation.progress = DelegationProgress()

        self.state.pending_for(delegation.parent_session_id).add(delegation.id)
        self._arm_watchdog(delegation.id)
        run = self.state.start_run(delegation.id)
        self._spawn(
            self._dispatch_prompt(delegation.id, prompt or DEFAULT_RESUME_PROMPT, run),
            f"prompt-{delegation.id}",
        )

        logger.debug(f"Resumed delegation {delegation.id}")
        await self._emit(events.DELEGATION_RESUMED, delegation)
        return delegation.model_copy(deep=True)

    async def cancel(self, delegation_id: str) -> bool:
        """Cancel a running delegation. Returns False if unknown or not running."""
        delegation = self.state.delegations.get(delegation_id)
        if delegation is None or not delegation.is_running:
            return False

        # Local status first: an idle signal arriving during the abort must see "cancelled"
        self._finish(delegation, "cancelled")
        await self._abort(delegation.session_id)

        await self._notify_parent(delegation)
        self._toast(
            "Task Cancelled", f"{delegation.id} cancelled ({delegation.duration})", "info", 3000
        )
        await self._emit(events.DELEGATION_CANCELLED, delegation)

        logger.debug(f"Cancelled delegation {delegation.id}")
        return True

    async def cancel_all(self, parent_session_id: str) -> list[str]:
        """Cancel every running delegation of a parent. Returns the cancelled ids."""
        running = [
            d.id
            for d in list(self.state.delegations.values())
            if d.parent_session_id == parent_session_id and d.is_running
        ]
        cancelled = []
        for delegation_id in running:
            if await self.cancel(delegation_id):
                cancelled.append(delegation_id)
        return cancelled

    # ---- Event handlers ----

    async def handle_timeout(self, delegation_id: str) -> None:
        delegation = self.state.delegations.get(delegation_id)
        if delegation is None or not delegation.is_running:
            return

        logger.debug(f"handle_timeout for delegation {delegation.id}")
        self._finish(
            delegation,
            "timeout",
            error=f"Delegation timed out after {self.settings.max_run_time:g}s",
        )
        await self._abort(delegation.session_id)
        await self._notify_parent(delegation)
        await self._emit(events.DELEGATION_TIMEOUT, delegation)

    async def handle_session_idle(self, session_id: str) -> None:
        delegation = self.state.delegations.get(session_id)
        if delegation is None or not delegation.is_running:
            return

        # Idle events carry no run identity; after a resume, only a reply
        # created since the resume ends the run
        run = self.state.runs.get(delegation.id, 1)
        if run > 1:
            if not await self._replied_since_start(delegation):
                logger.debug(f"Ignoring idle for {delegation.id}: no reply since resume")
                return
            if not delegation.is_running or self.state.runs.get(delegation.id) != run:
                return

        logger.debug(f"handle_session_idle for delegation {delegation.id}")
        self._finish(delegation, "completed")

        try:
            messages = await self.client.messages(delegation.session_id)
            first_user = next((m for m in messages if m.role == "user"), None)
            text_part = first_user.text_parts()[0] if first_user and first_user.text_parts() else None
            if text_part is not None:
                delegation.description = text_part.text[:150]
                delegation.title = text_part.text.split("\n")[0][:50]
        except Exception as e:
            logger.debug(f"Could not derive title for {delegation.id}: {e}")

        self._toast(
            "Task Completed",
            f'"{delegation.id}" finished in {delegation.duration}',
            "success",
            5000,
        )
        await self._notify_parent(delegation)
        await self._emit(events.DELEGATION_COMPLETED, delegation)

    async def _replied_since_start(self, delegation: Delegation) -> bool:
        """Whether the session holds an assistant message newer than the run start."""
        try:
            messages = await self.client.messages(delegation.session_id)
        except Exception as e:
            logger.debug(f"Could not check replies of {delegation.id}: {e}")
            return True

        started_ms = delegation.started_at.timestamp() * 1000
        for message in messages:
            if message.role != "assistant":
                continue
            # Messages without a numeric timestamp cannot be dated; count them
            if not isinstance(message.info.time, MessageTime):
                return True
            if message.info.time.created >= started_ms:
                return True
        return False

    def handle_message_event(
        self, session_id: str, text: str | None = None, *, tool_call: bool = False
    ) -> None:
        """Record liveness for a running delegation. Never changes status."""
        delegation = self.state.delegations.get(session_id)
        if delegation is None or not delegation.is_running:
            return

        now = utcnow()
        delegation.progress.last_update = now
        if text:
            delegation.progress.last_message = text
            delegation.progress.last_message_at = now
        if tool_call:
            delegation.progress.tool_calls += 1

    # ---- Read delegation results ----

    async def read_delegation(self, args: ReadDelegationArgs) -> str:
        """
        Render a delegation's outcome as text.

        Raises:
            DelegationNotFoundError: If the id is unknown
        """
        delegation = self.state.delegations.get(args.id)
        if delegation is None:
            raise DelegationNotFoundError(
                f'Delegation "{args.id}" not found.\n\n'
                "Use delegation_list() to see available delegations.",
                delegation_id=args.id,
            )

        if delegation.is_running:
            if args.ai:
                return (
                    f'Delegation "{args.id}" is still running. '
                    "AI analysis is only available after completion.\n\n"
                    "Wait for the completion notification, then call "
                    "delegation_read(ai=true) again."
                )
            return (
                f'Delegation "{args.id}" is still running.\n\n'
                f"Status: {delegation.status}\n"
                f"Started: {delegation.started_at.isoformat()}\n\n"
                "Wait for completion notification, then call delegation_read() again."
            )

        if delegation.status != "completed":
            message = f'Delegation "{args.id}" ended with status: {delegation.status}'
            if delegation.error:
                message += f"\n\nError: {delegation.error}"
            if delegation.duration:
                message += f"\n\nDuration: {delegation.duration}"
            return message

        if args.ai:
            return await self._analyze(delegation, args.ai_model)

        if not args.mode or args.mode == "simple":
            return await self._simple_result(delegation)

        if args.mode == "full":
            return await self._full_session(delegation, args)

        return "Invalid mode. Use 'simple' or 'full'."

    async def _simple_result(self, delegation: Delegation) -> str:
        try:
            messages = await self.client.messages(delegation.session_id)
        except Exception as e:
            return f"Error retrieving result: {e}"

        if not messages:
            return f'Delegation "{delegation.id}" completed but produced no output.'

        assistant_messages = [m for m in messages if m.role == "assistant"]
        if not assistant_messages:
            return f'Delegation "{delegation.id}" completed but produced no assistant response.'

        text_parts = assistant_messages[-1].text_parts()
        if not text_parts:
            return f'Delegation "{delegation.id}" completed but produced no text content.'

        result = "\n".join(p.text for p in text_parts)
        completed = (
            f"**Completed:** {delegation.completed_at.isoformat()}"
            if delegation.completed_at
            else ""
        )
        header = (
            f"# Task Result: {delegation.id}\n\n"
            f"**Agent:** {delegation.agent}\n"
            f"**Status:** {delegation.status}\n"
            f"**Duration:** {delegation.duration or 'N/A'}\n"
            f"**Started:** {delegation.started_at.isoformat()}\n"
            f"{completed}\n\n"
            "---\n\n"
        )
        return header + result

    async def _full_session(self, delegation: Delegation, args: ReadDelegationArgs) -> str:
        try:
            messages = await self.client.messages(delegation.session_id)
        except Exception as e:
            return f"Error fetching session: {e}"

        if not messages:
            return f'Delegation "{delegation.id}" has no messages.'

        # Lexical order on the rendered timestamp; MessageTime renders as ISO-8601
        ordered = sorted(messages, key=lambda m: m.info.sort_key)

        filtered = ordered
        if args.since_message_id:
            index = next(
                (i for i, m in enumerate(ordered) if m.info.id == args.since_message_id), None
            )
            if index is not None:
                filtered = ordered[index + 1 :]

        limit = min(args.limit, MAX_FULL_MESSAGES) if args.limit else None
        has_more = limit is not None and len(filtered) > limit
        visible = filtered[:limit] if limit is not None else filtered

        lines = [
            f"# Full Session: {delegation.id}",
            "",
            f"**Agent:** {delegation.agent}",
            f"**Status:** {delegation.status}",
            f"**Duration:** {delegation.duration or 'N/A'}",
            f"**Total messages:** {len(ordered)}",
            f"**Returned:** {len(visible)}",
            f"**Has more:** {'true' if has_more else 'false'}",
            "",
            "## Messages",
            "",
        ]
        for message in visible:
            lines.extend(self._render_message(message, args))

        return "\n".join(lines)

    @staticmethod
    def _render_message(message: SessionMessage, args: ReadDelegationArgs) -> list[str]:
        time = message.info.time if message.info.time is not None else "unknown"
        lines = [f"### [{message.role}] {time} (id: {message.info.id or 'unknown'})", ""]

        for part in message.parts:
            if isinstance(part, TextPart) and part.text:
                lines.extend([part.text.strip(), ""])
            elif isinstance(part, ReasoningPart) and args.include_thinking and part.content:
                lines.extend([f"[thinking] {part.content[:THINKING_PREVIEW_LENGTH]}", ""])
            elif isinstance(part, ToolResultPart) and args.include_tools and part.result:
                lines.extend([f"[tool result] {part.result}", ""])
        return lines

    async def _analyze(self, delegation: Delegation, ai_model: str | None) -> str:
        if self.analyzer is None:
            return "AI analysis is not configured."

        model = ai_model or delegation.parent_model or await self._default_model()
        if not model:
            return (
                "No model available for AI analysis. Pass ai_model=\"provider/model\" "
                "or set a default model in the global config."
            )

        if self.hooks:
            await self.hooks.emit(
                events.ANALYSIS_START, {"delegation_id": delegation.id, "model": model}
            )
        try:
            report = await self.analyzer.analyze(delegation.model_copy(deep=True), model)
        except Exception as e:
            logger.debug(f"AI analysis failed for {delegation.id}: {e!r}")
            report = f"AI analysis failed: {e}"
            status = "error"
        else:
            status = "success"
        if self.hooks:
            await self.hooks.emit(
                events.ANALYSIS_END,
                {"delegation_id": delegation.id, "model": model, "status": status},
            )
        return report

    async def _default_model(self) -> str | None:
        try:
            return (await self.client.config()).model
        except Exception as e:
            logger.debug(f"Could not fetch global config: {e}")
            return None

    # ---- Queries ----

    def get(self, delegation_id: str) -> Delegation | None:
        delegation = self.state.delegations.get(delegation_id)
        return delegation.model_copy(deep=True) if delegation else None

    def list_delegations(self, parent_session_id: str) -> list[DelegationListItem]:
        items = [
            DelegationListItem.from_delegation(d)
            for d in self.state.delegations.values()
            if d.parent_session_id == parent_session_id
        ]
        return sorted(items, key=lambda i: i.started_at, reverse=True)

    def list_all_delegations(self) -> list[DelegationListItem]:
        items = [DelegationListItem.from_delegation(d) for d in self.state.delegations.values()]
        return sorted(items, key=lambda i: i.started_at, reverse=True)

    def find_by_session(self, session_id: str) -> Delegation | None:
        # Delegation ids are session ids
        return self.get(session_id)

    def get_pending_count(self, parent_session_id: str) -> int:
        return len(self.state.pending_by_parent.get(parent_session_id, ()))

    def get_running_delegations(self) -> list[Delegation]:
        return [d.model_copy(deep=True) for d in self.state.delegations.values() if d.is_running]

    # ---- Background work ----

    async def drain(self) -> None:
        """Wait until every detached task, including ones they spawn, has finished."""
        while self.state.background_tasks:
            await asyncio.gather(*list(self.state.background_tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Disarm all watchdogs and cancel in-flight detached work."""
        for handle in self.state.watchdogs.values():
            handle.cancel()
        self.state.watchdogs.clear()

        tasks = list(self.state.background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug(f"Manager shut down ({len(tasks)} background tasks cancelled)")

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self.state.background_tasks.add(task)
        task.add_done_callback(self.state.background_tasks.discard)
        return task

    def _arm_watchdog(self, delegation_id: str) -> None:
        previous = self.state.watchdogs.pop(delegation_id, None)
        if previous is not None:
            previous.cancel()

        self.state.watchdogs[delegation_id] = asyncio.get_running_loop().call_later(
            self.settings.watchdog_delay, self._on_watchdog, delegation_id
        )

    def _on_watchdog(self, delegation_id: str) -> None:
        self.state.watchdogs.pop(delegation_id, None)
        delegation = self.state.delegations.get(delegation_id)
        if delegation is not None and delegation.is_running:
            self._spawn(self.handle_timeout(delegation_id), f"timeout-{delegation_id}")

    async def _dispatch_prompt(self, delegation_id: str, text: str, run: int) -> None:
        delegation = self.state.delegations[delegation_id]
        try:
            await self.client.prompt(
                delegation.session_id,
                [{"type": "text", "text": text}],
                agent=delegation.agent,
                tools=dict(DISABLED_TOOLS),
                model=parse_model(delegation.model) if delegation.model else None,
            )
        except Exception as e:
            if self.state.runs.get(delegation_id) != run:
                logger.debug(f"Ignoring failure of superseded run {run} of {delegation_id}: {e}")
                return
            if not delegation.is_running:
                logger.debug(f"Prompt for {delegation_id} ended after {delegation.status}: {e}")
                return
            logger.debug(f"Prompt dispatch failed for {delegation_id}: {e!r}")
            self._finish(delegation, "error", error=str(e) or type(e).__name__)
            await self._notify_parent(delegation)
            await self._emit(events.DELEGATION_ERROR, delegation)

    def _finish(
        self, delegation: Delegation, status: DelegationStatus, error: str | None = None
    ) -> None:
        delegation.status = status
        delegation.completed_at = utcnow()
        delegation.duration = format_duration(delegation.started_at, delegation.completed_at)
        if error is not None:
            delegation.error = error

        handle = self.state.watchdogs.pop(delegation.id, None)
        if handle is not None:
            handle.cancel()

    async def _abort(self, session_id: str) -> None:
        try:
            await self.client.abort(session_id)
        except Exception as e:
            logger.debug(f"Abort of {session_id} failed: {e}")

    async def _capture_parent_model(self, parent_session_id: str) -> str | None:
        try:
            messages = await self.client.messages(parent_session_id)
        except Exception as e:
            logger.debug(f"Could not read parent model for {parent_session_id}: {e}")
            return None

        for message in reversed(messages):
            if message.role != "user":
                continue
            ref = message.info.model_ref()
            return str(ref) if ref else None
        return None

    async def _notify_parent(self, delegation: Delegation) -> None:
        pending = self.state.pending_for(delegation.parent_session_id)
        pending.discard(delegation.id)
        remaining = len(pending)

        resolved = [
            d.model_copy(deep=True)
            for d in self.state.delegations.values()
            if d.parent_session_id == delegation.parent_session_id and d.status in TERMINAL_STATUSES
        ]
        notification = compose_notification(
            delegation.model_copy(deep=True), resolved, remaining
        )
        # A reply-expecting prompt resolves only when the parent's turn ends
        self._spawn(
            self._deliver(delegation, notification.text, notification.no_reply, remaining),
            f"notify-{delegation.parent_session_id}",
        )

    async def _deliver(
        self, delegation: Delegation, text: str, no_reply: bool, remaining: int
    ) -> None:
        try:
            await self.client.prompt(
                delegation.parent_session_id,
                [{"type": "text", "text": text}],
                agent=delegation.parent_agent,
                no_reply=no_reply,
            )
        except Exception as e:
            logger.debug(f"Failed to notify parent {delegation.parent_session_id}: {e}")
            if self.hooks:
                await self.hooks.emit(
                    events.NOTIFICATION_FAILED,
                    {"delegation_id": delegation.id, "error": str(e)},
                )
            return

        logger.debug(
            f"Notified parent session {delegation.parent_session_id} "
            f"(status={delegation.status.upper()}, remaining={remaining})"
        )
        if self.hooks:
            await self.hooks.emit(
                events.NOTIFICATION_SENT,
                {
                    "delegation_id": delegation.id,
                    "parent_session_id": delegation.parent_session_id,
                    "remaining": remaining,
                },
            )

    def _toast(self, title: str, message: str, variant: ToastVariant, duration: int) -> None:
        self._spawn(self._show_toast(title, message, variant, duration), "toast")

    async def _show_toast(
        self, title: str, message: str, variant: ToastVariant, duration: int
    ) -> None:
        try:
            await self.client.show_toast(title, message, variant, duration)
        except Exception as e:
            logger.debug(f"Toast '{title}' failed: {e}")

    async def _emit(self, event: str, delegation: Delegation) -> None:
        if self.hooks is None:
            return
        await self.hooks.emit(
            event,
            {
                "delegation_id": delegation.id,
                "parent_session_id": delegation.parent_session_id,
                "agent": delegation.agent,
                "status": delegation.status,
                "error": delegation.error,
                "duration": delegation.duration,
            },
        )
