"""
AI analysis of completed delegation sessions.

The analyzer resolves an analysis model to an endpoint and key, renders the
delegation's transcript into a fixed review prompt, and asks a completion
model for a reliability report. With debug enabled, every run leaves a JSON
audit record behind.
"""

import asyncio
import json
import logging
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any
from typing import Protocol
from typing import runtime_checkable

import anthropic
from anthropic import AsyncAnthropic

from .client import SessionClient
from .credentials import CredentialStore
from .credentials import ModelCatalog
from .errors import AnalysisTimeoutError
from .errors import RemoteCallError
from .message_models import ReasoningPart
from .message_models import SessionMessage
from .message_models import TextPart
from .message_models import ToolCallPart
from .message_models import ToolResultPart
from .models import Delegation
from .utils import ModelRef
from .utils import parse_model
from .utils import truncate
from .utils import utcnow

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 500
MAX_TOKENS = 4096

ANALYSIS_PROMPT_TEMPLATE = """You are reviewing the work of a background agent that ran without supervision.
Judge whether its result can be trusted by the agent that delegated the task.

## Delegation
- ID: {delegation_id}
- Agent: {agent}
- Status: {status}
- Duration: {duration}

## Original Task
{prompt}

## Session Transcript
{transcript}

## Review
Answer each section concisely, citing transcript evidence where possible.

1. **Missed requirements**: parts of the task that were not addressed.
2. **Incorrect assumptions**: claims or decisions not supported by what the agent observed.
3. **Abandoned work**: steps started and never finished.
4. **Regressions**: changes that may break something that worked before.
5. **Strengths**: what was done well and can be relied on.
6. **Termination quality**: did the agent stop because it finished, or because it gave up or ran out of time?
7. **Reliability verdict**: one of RELIABLE, PARTIALLY RELIABLE, UNRELIABLE, with a one-sentence justification.
8. **Recommended next action**: the single most useful thing the delegating agent should do next.
"""


@runtime_checkable
class CompletionClient(Protocol):
    """Single-shot text completion against a model endpoint."""

    async def complete(
        self,
        *,
        model: ModelRef,
        api_key: str,
        base_url: str,
        prompt: str,
    ) -> str:
        """Return the model's text answer to ``prompt``."""
        ...


class AnthropicCompletionClient:
    """CompletionClient over the Anthropic Messages API.

    Any provider exposing an Anthropic-compatible endpoint works; the catalog
    supplies its base URL.
    """

    def __init__(self, max_tokens: int = MAX_TOKENS):
        self.max_tokens = max_tokens

    async def complete(
        self,
        *,
        model: ModelRef,
        api_key: str,
        base_url: str,
        prompt: str,
    ) -> str:
        # The SDK appends /v1/messages itself
        if base_url.rstrip("/").endswith("/v1"):
            base_url = base_url.rstrip("/")[: -len("/v1")]

        client = AsyncAnthropic(api_key=api_key, base_url=base_url, max_retries=0)
        try:
            response = await client.messages.create(
                model=model.model_id,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as e:
            raise RemoteCallError(
                str(e),
                operation="completion",
                status_code=getattr(e, "status_code", None),
            ) from e
        except anthropic.APIError as e:
            raise RemoteCallError(
                str(e) or f"{type(e).__name__}: (no message)",
                operation="completion",
            ) from e
        finally:
            await client.close()

        return "\n".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )


def format_transcript(messages: Sequence[SessionMessage]) -> str:
    """Render a session transcript as role-tagged plain text.

    Reasoning and tool-result previews are cut to ``PREVIEW_LENGTH`` chars.
    """
    blocks: list[str] = []
    for message in messages:
        lines = [f"[{message.role.upper()}]"]
        for part in message.parts:
            if isinstance(part, TextPart) and part.text:
                lines.append(part.text.strip())
            elif isinstance(part, ReasoningPart) and part.content:
                lines.append(f"[reasoning] {truncate(part.content, PREVIEW_LENGTH)}")
            elif isinstance(part, ToolCallPart):
                lines.append(f"[tool call] {part.tool} ({part.state.status})")
                if part.state.output:
                    lines.append(f"[tool output] {truncate(part.state.output, PREVIEW_LENGTH)}")
                if part.state.error:
                    lines.append(f"[tool error] {truncate(part.state.error, PREVIEW_LENGTH)}")
            elif isinstance(part, ToolResultPart) and part.result:
                lines.append(f"[tool result] {truncate(part.result, PREVIEW_LENGTH)}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def build_analysis_prompt(delegation: Delegation, transcript: str) -> str:
    return ANALYSIS_PROMPT_TEMPLATE.format(
        delegation_id=delegation.id,
        agent=delegation.agent,
        status=delegation.status,
        duration=delegation.duration or "N/A",
        prompt=delegation.prompt,
        transcript=transcript or "(empty)",
    )


class SessionAnalyzer:
    """Runs AI analysis over a completed delegation.

    Contract:
    - Inputs: a completed delegation and an analysis model ``provider/model``
    - Outputs: a markdown report
    - Errors: AnalysisConfigError, AnalysisTimeoutError, RemoteCallError
    - Side effects: one audit record per run when ``debug`` is set
    """

    def __init__(
        self,
        client: SessionClient,
        *,
        catalog: ModelCatalog,
        credentials: CredentialStore,
        completion: CompletionClient | None = None,
        timeout: float = 60.0,
        audit_dir: Path | None = None,
        debug: bool = False,
    ):
        self.client = client
        self.catalog = catalog
        self.credentials = credentials
        self.completion = completion or AnthropicCompletionClient()
        self.timeout = timeout
        self.audit_dir = audit_dir
        self.debug = debug

    async def analyze(self, delegation: Delegation, model: str) -> str:
        """Analyze a delegation's session with ``model`` and return the report."""
        model_ref = parse_model(model)
        started = time.monotonic()
        try:
            messages = await self.client.messages(delegation.id)
            base_url = self.catalog.resolve_base_url(model_ref)
            api_key = self.credentials.get_api_key(model_ref.provider_id)
            prompt = build_analysis_prompt(delegation, format_transcript(messages))

            logger.debug(
                f"Analyzing delegation {delegation.id} with {model_ref} "
                f"({len(messages)} messages)"
            )
            try:
                result = await asyncio.wait_for(
                    self.completion.complete(
                        model=model_ref,
                        api_key=api_key,
                        base_url=base_url,
                        prompt=prompt,
                    ),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError as e:
                raise AnalysisTimeoutError(
                    f"AI analysis timed out after {self.timeout}s",
                    delegation_id=delegation.id,
                    timeout=self.timeout,
                ) from e
        except Exception as e:
            self._audit(delegation, model, started, error=str(e) or type(e).__name__)
            raise

        self._audit(delegation, model, started, result=result)
        return (
            f"# AI Analysis: {delegation.id}\n\n"
            f"**Agent:** {delegation.agent}\n"
            f"**Model:** {model}\n"
            f"**Duration:** {delegation.duration or 'N/A'}\n\n"
            "---\n\n"
            f"{result}"
        )

    def _audit(
        self,
        delegation: Delegation,
        model: str,
        started: float,
        *,
        result: str | None = None,
        error: str | None = None,
    ) -> None:
        if not self.debug or self.audit_dir is None:
            return

        now = utcnow()
        record: dict[str, Any] = {
            "timestamp": now.isoformat(),
            "delegationId": delegation.id,
            "model": model,
            "status": "error" if error is not None else "success",
            "durationMs": int((time.monotonic() - started) * 1000),
        }
        if error is not None:
            record["error"] = error
        else:
            record["result"] = result

        path = self.audit_dir / f"analysis-{delegation.id}-{now.strftime('%Y%m%dT%H%M%S%fZ')}.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(record, indent=2), encoding="utf-8")
            logger.debug(f"Wrote analysis audit record {path}")
        except OSError as e:
            logger.warning(f"Failed to write analysis audit record {path}: {e}")
