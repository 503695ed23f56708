"""Shared fixtures: a scripted in-memory session API and a manager wired to it."""

import asyncio
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from async_agent.manager import DelegationManager
from async_agent.message_models import AgentInfo
from async_agent.message_models import GlobalConfig
from async_agent.message_models import SessionInfo
from async_agent.message_models import SessionMessage
from async_agent.models import DelegateInput
from async_agent.settings import Settings


def make_message(
    message_id: str,
    role: str,
    text: str | None = None,
    *,
    parts: list[dict[str, Any]] | None = None,
    created: float = 1_700_000_000_000,
    **info: Any,
) -> SessionMessage:
    """Build a transcript message the way the server would send it."""
    if parts is None:
        parts = [{"type": "text", "text": text}] if text is not None else []
    return SessionMessage.model_validate(
        {
            "info": {"id": message_id, "role": role, "time": {"created": created}, **info},
            "parts": parts,
        }
    )


class FakeSessionClient:
    """In-memory SessionClient.

    Every call is recorded. Gates (``asyncio.Event``) let a test hold a call
    open to interleave other operations with it. Prompts to sessions in
    ``park_sessions`` each wait on their own future in ``parked``, so a test
    can settle individual turns.
    """

    def __init__(self):
        self.agent_catalog: list[AgentInfo] = [
            AgentInfo(name="explore", description="Codebase search", mode="subagent"),
            AgentInfo(name="researcher", description="External research", mode="all"),
            AgentInfo(name="general"),
            AgentInfo(name="build", description="Primary agent", mode="primary"),
        ]
        self.global_config = GlobalConfig(model="anthropic/claude-sonnet-4")
        self.transcripts: dict[str, list[SessionMessage]] = {}
        self.children_by_parent: dict[str, list[SessionInfo]] = {}

        self.created: list[tuple[str, str]] = []
        self.prompts: list[dict[str, Any]] = []
        self.aborts: list[str] = []
        self.toasts: list[dict[str, Any]] = []
        self.logs: list[tuple[str, str, str]] = []

        self.create_returns_none = False
        self.prompt_errors: dict[str, Exception] = {}
        self.prompt_gate: asyncio.Event | None = None
        self.park_sessions: set[str] = set()
        self.parked: dict[str, list[asyncio.Future]] = {}
        self.abort_gate: asyncio.Event | None = None
        self.abort_error: Exception | None = None
        self.messages_error: Exception | None = None
        self.toast_error: Exception | None = None

        self._next_id = 0

    async def create_session(self, parent_id: str, title: str) -> SessionInfo | None:
        self.created.append((parent_id, title))
        if self.create_returns_none:
            return None
        self._next_id += 1
        return SessionInfo(id=f"ses_{self._next_id}", title=title, parentID=parent_id)

    async def prompt(self, session_id, parts, *, agent=None, tools=None, model=None, no_reply=False):
        self.prompts.append(
            {
                "session_id": session_id,
                "text": parts[0]["text"],
                "agent": agent,
                "tools": tools,
                "model": model,
                "no_reply": no_reply,
            }
        )
        if session_id in self.prompt_errors:
            raise self.prompt_errors[session_id]
        if self.prompt_gate is not None:
            await self.prompt_gate.wait()
        if session_id in self.park_sessions:
            turn = asyncio.get_running_loop().create_future()
            self.parked.setdefault(session_id, []).append(turn)
            await turn

    async def abort(self, session_id: str) -> bool:
        self.aborts.append(session_id)
        if self.abort_gate is not None:
            await self.abort_gate.wait()
        if self.abort_error is not None:
            raise self.abort_error
        return True

    async def messages(self, session_id: str) -> list[SessionMessage]:
        if self.messages_error is not None:
            raise self.messages_error
        return list(self.transcripts.get(session_id, []))

    async def children(self, session_id: str) -> list[SessionInfo]:
        return list(self.children_by_parent.get(session_id, []))

    async def agents(self) -> list[AgentInfo]:
        return list(self.agent_catalog)

    async def config(self) -> GlobalConfig:
        return self.global_config

    async def show_toast(self, title, message, variant="info", duration=3000) -> None:
        self.toasts.append(
            {"title": title, "message": message, "variant": variant, "duration": duration}
        )
        if self.toast_error is not None:
            raise self.toast_error

    async def log(self, level, message, service="async-agent") -> None:
        self.logs.append((level, message, service))

    def prompts_to(self, session_id: str) -> list[dict[str, Any]]:
        return [p for p in self.prompts if p["session_id"] == session_id]


@pytest.fixture
def fake_client() -> FakeSessionClient:
    return FakeSessionClient()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        audit_dir=tmp_path / "audit",
        models_path=tmp_path / "models.json",
        auth_path=tmp_path / "auth.json",
        config_doc_path=tmp_path / "async-agent.md",
    )


@pytest_asyncio.fixture
async def manager(
    fake_client: FakeSessionClient, settings: Settings
) -> AsyncGenerator[DelegationManager, None]:
    mgr = DelegationManager(fake_client, settings=settings)
    yield mgr
    await mgr.shutdown()


def delegate_input(prompt: str = "X", agent: str = "explore", parent: str = "p1", **kwargs) -> DelegateInput:
    return DelegateInput(
        parent_session_id=parent,
        parent_message_id=kwargs.pop("parent_message_id", "msg_parent"),
        parent_agent=kwargs.pop("parent_agent", "build"),
        prompt=prompt,
        agent=agent,
        **kwargs,
    )
