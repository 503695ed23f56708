"""
Parent-session notification texts.

Notifications are batched per parent: while siblings are still running, each
resolved delegation produces a short status notice that asks for no reply.
When the last one resolves, a single digest lists every resolved delegation
and expects the parent to respond.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from .models import Delegation

INSPECT_HINT = "To inspect session content(human): "


@dataclass(frozen=True)
class Notification:
    """A message destined for the parent session."""

    text: str
    no_reply: bool

    @property
    def all_complete(self) -> bool:
        return not self.no_reply


def _label(delegation: Delegation) -> str:
    return delegation.title or delegation.prompt[:80]


def _inspect_command(delegation_id: str) -> str:
    return f"opencode -s {delegation_id}"


def compose_all_complete(delegation: Delegation, resolved: Sequence[Delegation]) -> str:
    """Digest sent once every delegation of a parent has resolved."""
    tasks = list(resolved) or [delegation]
    completed_list = "\n".join(f"- `{t.id}`: {_label(t)}" for t in tasks)
    session_hints = "\n".join(_inspect_command(t.id) for t in tasks)

    return (
        "<system-reminder>\n"
        "[ALL BACKGROUND TASKS COMPLETE]\n"
        "\n"
        "**Completed:**\n"
        f"{completed_list}\n"
        "\n"
        'Use `delegation_read(id="<id>")` to retrieve each result.\n'
        "</system-reminder>\n"
        f"{INSPECT_HINT}{session_hints}"
    )


def compose_status_notice(delegation: Delegation, remaining: int) -> str:
    """Per-delegation notice sent while siblings are still running."""
    status_text = delegation.status.upper()
    duration = delegation.duration or "N/A"
    error_info = f"\n**Error:** {delegation.error}" if delegation.error else ""
    plural = "" if remaining == 1 else "s"

    return (
        "<system-reminder>\n"
        f"[BACKGROUND TASK {status_text}]\n"
        f"**ID:** `{delegation.id}`\n"
        f"**Agent:** {delegation.agent}\n"
        f"**Duration:** {duration}{error_info}\n"
        "\n"
        f"**{remaining} task{plural} still in progress.** You WILL be notified when ALL complete.\n"
        "Do NOT poll - continue productive work.\n"
        "\n"
        f'Use `delegation_read(id="{delegation.id}")` to retrieve this result when ready.\n'
        "</system-reminder>\n"
        f"{INSPECT_HINT}{_inspect_command(delegation.id)}"
    )


def compose_notification(
    delegation: Delegation,
    resolved: Sequence[Delegation],
    remaining: int,
) -> Notification:
    """
    Build the notification for a delegation that just left ``running``.

    Args:
        delegation: The delegation that resolved
        resolved: Every non-running delegation of the same parent
        remaining: Size of the parent's pending set after removing ``delegation``

    Returns:
        Notification whose ``no_reply`` is False only for the final digest
    """
    if remaining <= 0:
        return Notification(text=compose_all_complete(delegation, resolved), no_reply=False)
    return Notification(text=compose_status_notice(delegation, remaining), no_reply=True)
