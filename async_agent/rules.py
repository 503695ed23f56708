"""Prompt text injected into the calling agent's context."""

import logging
from collections.abc import Sequence
from pathlib import Path

from .models import Delegation

logger = logging.getLogger(__name__)

DELEGATION_RULES = """<system-reminder>
<delegation-system>

## Async Delegation

You have tools for parallel background work:
- `delegate(prompt, agent)` - Launch task, returns ID immediately
- `delegate(prompt, agent, model)` - Launch task with specific model override
- `delegation_read(id)` - Retrieve completed result
- `delegation_read(id, ai=true)` - AI review of a completed result's reliability
- `delegation_list()` - List delegations (use sparingly)
- `delegation_cancel(id|all)` - Cancel running task(s)
- `delegation_resume(id, prompt?)` - Continue cancelled task (same session)

## How It Works

1. Call `delegate()` - Get task ID immediately, continue working
2. Receive `<system-reminder>` notification when complete
3. Call `delegation_read(id)` to get the actual result

## Model Override

The `delegate` tool accepts an optional `model` parameter in "provider/model" format.
Example: `delegate(prompt, agent, model="minimax/MiniMax-M2.5")`
If not specified, the agent's default model is used.

## Critical Constraints

**NEVER poll `delegation_list` to check completion.**
You WILL be notified via `<system-reminder>`. Polling wastes tokens.

**NEVER wait idle.** Always have productive work while delegations run.

**Cancelled tasks can be resumed** with `delegation_resume()` - same session, full context.

</delegation-system>
</system-reminder>"""

STATUS_MARKERS = {
    "completed": "✅",
    "error": "❌",
    "timeout": "⏱️",
}


def read_config_document(path: Path) -> str:
    """Return the user's model preference document, or "" if unreadable."""
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        logger.debug(f"No delegation config document at {path}: {e}")
        return ""


def system_prompt_sections(config_doc_path: Path) -> list[str]:
    """Sections appended to the calling agent's system prompt."""
    sections = [DELEGATION_RULES]
    config = read_config_document(config_doc_path)
    if config.strip():
        sections.append(f"<bg-agents-config>\n{config}\n</bg-agents-config>")
    return sections


def format_delegation_context(
    running: Sequence[Delegation],
    completed: Sequence[Delegation] = (),
) -> str:
    """Reminder of outstanding delegations, kept across context compaction."""
    sections = ["<delegation-context>"]

    if running:
        sections.extend(["## Running Delegations", ""])
        for d in running:
            agent = f" ({d.agent})" if d.agent else ""
            sections.append(f"### `{d.id}`{agent}")
            sections.append(f"**Started:** {d.started_at.isoformat()}")
            sections.append("")
        sections.append(
            "> **Note:** You WILL be notified via `<system-reminder>` when delegations complete."
        )
        sections.append("> Do NOT poll `delegation_list` - continue productive work.")
        sections.append("")

    if completed:
        sections.extend(["## Recent Completed Delegations", ""])
        for d in completed:
            sections.append(f"### {STATUS_MARKERS.get(d.status, '🚫')} `{d.id}`")
            sections.append(f"**Status:** {d.status}")
            if d.duration:
                sections.append(f"**Duration:** {d.duration}")
            sections.append("")
        sections.append("> Use `delegation_list()` to see all delegations.")
        sections.append("")

    sections.append("## Retrieval")
    sections.append('Use `delegation_read("id")` to access results.')
    sections.append('Use `delegation_read(id, mode="full")` for full conversation.')
    sections.append("</delegation-context>")
    return "\n".join(sections)
