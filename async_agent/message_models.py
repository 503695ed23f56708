"""Typed payloads returned by the remote session API.

The session API speaks camelCase JSON; models accept both the wire aliases and
the Python field names. Message parts form a closed, discriminated set:
text, reasoning, tool call, tool result, file, patch, snapshot, agent switch
and step markers. Parts of any other type are dropped on parse.
"""

import logging
from datetime import UTC
from datetime import datetime
from typing import Annotated
from typing import Any
from typing import Literal
from typing import Union

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from .utils import ModelRef

logger = logging.getLogger(__name__)


class _Wire(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, protected_namespaces=())


class TextPart(_Wire):
    """Regular text content."""

    type: Literal["text"] = "text"
    text: str = ""
    synthetic: bool | None = None


class ReasoningPart(_Wire):
    """Model reasoning. Older servers send ``thinking`` blocks instead."""

    type: Literal["reasoning", "thinking"] = "reasoning"
    text: str = ""
    thinking: str | None = None

    @property
    def content(self) -> str:
        return self.thinking or self.text


class ToolState(_Wire):
    status: str = "pending"
    input: dict[str, Any] | None = None
    output: str | None = None
    error: str | None = None


class ToolCallPart(_Wire):
    """Tool invocation, carrying its own execution state."""

    type: Literal["tool"] = "tool"
    tool: str
    call_id: str | None = Field(default=None, alias="callID")
    state: ToolState = Field(default_factory=ToolState)


class ToolResultPart(_Wire):
    """Standalone tool result."""

    type: Literal["tool_result"] = "tool_result"
    content: str | None = None
    output: str | None = None

    @property
    def result(self) -> str:
        return self.content or self.output or ""


class FilePart(_Wire):
    type: Literal["file"] = "file"
    mime: str | None = None
    filename: str | None = None
    url: str | None = None


class PatchPart(_Wire):
    type: Literal["patch"] = "patch"
    hash: str | None = None
    files: list[str] = Field(default_factory=list)


class SnapshotPart(_Wire):
    type: Literal["snapshot"] = "snapshot"
    snapshot: str | None = None


class AgentPart(_Wire):
    """Switch to another agent within the session."""

    type: Literal["agent"] = "agent"
    name: str


class StepPart(_Wire):
    type: Literal["step-start", "step-finish"]


Part = Annotated[
    Union[
        TextPart,
        ReasoningPart,
        ToolCallPart,
        ToolResultPart,
        FilePart,
        PatchPart,
        SnapshotPart,
        AgentPart,
        StepPart,
    ],
    Field(discriminator="type"),
]

KNOWN_PART_TYPES = frozenset(
    {
        "text",
        "reasoning",
        "thinking",
        "tool",
        "tool_result",
        "file",
        "patch",
        "snapshot",
        "agent",
        "step-start",
        "step-finish",
    }
)


class MessageTime(_Wire):
    """Epoch-millisecond timestamps of a message."""

    created: float
    completed: float | None = None

    def __str__(self) -> str:
        # ISO-8601 keeps lexical order equal to chronological order
        return datetime.fromtimestamp(self.created / 1000, tz=UTC).isoformat()


class ModelSelection(_Wire):
    provider_id: str = Field(alias="providerID")
    model_id: str = Field(alias="modelID")


class MessageInfo(_Wire):
    id: str
    session_id: str | None = Field(default=None, alias="sessionID")
    # Any role string is accepted; readers only act on "user" and "assistant"
    role: str
    time: MessageTime | str | None = None
    agent: str | None = None
    # Assistant messages report the model flat, user messages nest it
    provider_id: str | None = Field(default=None, alias="providerID")
    model_id: str | None = Field(default=None, alias="modelID")
    model: ModelSelection | None = None

    @property
    def sort_key(self) -> str:
        return str(self.time) if self.time is not None else ""

    def model_ref(self) -> ModelRef | None:
        if self.model is not None:
            return ModelRef(self.model.provider_id, self.model.model_id)
        if self.provider_id and self.model_id:
            return ModelRef(self.provider_id, self.model_id)
        return None


class SessionMessage(_Wire):
    """One message of a session transcript with its parts."""

    info: MessageInfo
    parts: list[Part] = Field(default_factory=list)

    @field_validator("parts", mode="before")
    @classmethod
    def _drop_unknown_parts(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        kept = []
        for part in value:
            part_type = part.get("type") if isinstance(part, dict) else getattr(part, "type", None)
            if part_type in KNOWN_PART_TYPES:
                kept.append(part)
            else:
                logger.debug(f"Dropping message part of unknown type '{part_type}'")
        return kept

    @property
    def role(self) -> str:
        return self.info.role

    def text_parts(self) -> list[TextPart]:
        return [p for p in self.parts if isinstance(p, TextPart)]

    def text(self) -> str:
        return "\n".join(p.text for p in self.text_parts())


class SessionTime(_Wire):
    created: float | None = None
    updated: float | None = None


class SessionInfo(_Wire):
    """A remote session record."""

    id: str
    title: str | None = None
    parent_id: str | None = Field(default=None, alias="parentID")
    time: SessionTime | None = None

    @property
    def created_at(self) -> datetime | None:
        if self.time is None or self.time.created is None:
            return None
        # time.created is already in milliseconds
        return datetime.fromtimestamp(self.time.created / 1000, tz=UTC)


class AgentInfo(_Wire):
    """An agent advertised by the session API."""

    name: str
    description: str | None = None
    mode: str | None = None

    @property
    def usable_as_subagent(self) -> bool:
        return self.mode in (None, "", "subagent", "all")


class GlobalConfig(_Wire):
    """Subset of the global configuration the coordinator reads."""

    model: str | None = None
    small_model: str | None = None
