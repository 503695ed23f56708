"""
Core data models for delegation tracking.
Uses Pydantic for validation and serialization.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel
from pydantic import Field

from .utils import utcnow

DelegationStatus = Literal["running", "completed", "error", "cancelled", "timeout"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "error", "cancelled", "timeout"})
RESUMABLE_STATUSES: frozenset[str] = frozenset({"cancelled", "error"})


class DelegationProgress(BaseModel):
    """Best-effort liveness info. Not authoritative for status."""

    tool_calls: int = 0
    last_update: datetime = Field(default_factory=utcnow)
    last_message: str | None = None
    last_message_at: datetime | None = None


class Delegation(BaseModel):
    """One background task, backed 1:1 by a remote session.

    The delegation id is the remote session id; ``session_id`` is kept as a
    read-only alias so API calls read naturally.
    """

    id: str = Field(..., description="Remote session id, doubles as delegation id")

    parent_session_id: str
    parent_message_id: str
    parent_agent: str
    parent_model: str | None = Field(
        default=None,
        description="provider/model of the parent's last user message, captured once at creation",
    )

    agent: str
    prompt: str
    model: str | None = Field(default=None, description="Explicit provider/model override")

    status: DelegationStatus = "running"
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    duration: str | None = None
    error: str | None = None

    title: str | None = None
    description: str | None = None

    progress: DelegationProgress = Field(default_factory=DelegationProgress)

    @property
    def session_id(self) -> str:
        return self.id

    @property
    def is_running(self) -> bool:
        return self.status == "running"


class DelegateInput(BaseModel):
    """Arguments for launching a delegation."""

    parent_session_id: str
    parent_message_id: str
    parent_agent: str
    prompt: str
    agent: str
    model: str | None = None


class DelegationListItem(BaseModel):
    """Read-only listing view of a delegation."""

    id: str
    status: DelegationStatus
    title: str | None = None
    description: str | None = None
    agent: str | None = None
    duration: str | None = None
    started_at: datetime | None = None

    @classmethod
    def from_delegation(cls, delegation: Delegation) -> "DelegationListItem":
        return cls(
            id=delegation.id,
            status=delegation.status,
            title=delegation.title,
            description=delegation.description,
            agent=delegation.agent,
            duration=delegation.duration,
            started_at=delegation.started_at,
        )


class ReadDelegationArgs(BaseModel):
    """Arguments for reading a delegation's output.

    ``mode`` is a plain string so unknown values reach the reader and get a
    textual answer instead of a validation error.
    """

    id: str
    mode: str = "simple"
    include_thinking: bool = False
    include_tools: bool = False
    since_message_id: str | None = None
    limit: int | None = Field(default=None, ge=1)
    ai: bool = Field(default=False, description="Run AI analysis of the completed session")
    ai_model: str | None = Field(default=None, description="provider/model used for analysis")


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = Field(default=True, description="Whether execution succeeded")
    output: str | None = Field(default=None, description="Text returned to the calling agent")
    error: dict[str, str] | None = Field(default=None, description="Error details if failed")

    def __str__(self) -> str:
        # Failures still carry readable output for the calling agent
        if self.output:
            return self.output
        if self.success:
            return "Success"
        return (
            f"Error: {self.error.get('message', 'Unknown error')}"
            if self.error
            else "Failed"
        )
