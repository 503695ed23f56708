"""Formatting helpers shared across the package."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC
from datetime import datetime


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


def format_duration(started_at: datetime, completed_at: datetime | None = None) -> str:
    """Format elapsed time as a short human string.

    Examples:
        >>> from datetime import timedelta
        >>> t = datetime(2025, 1, 1, tzinfo=UTC)
        >>> format_duration(t, t + timedelta(seconds=42))
        '42s'
        >>> format_duration(t, t + timedelta(seconds=150))
        '2m 30s'
        >>> format_duration(t, t + timedelta(hours=1))
        '1h'
    """
    end = completed_at or utcnow()
    diff_sec = max(int((end - started_at).total_seconds()), 0)

    if diff_sec < 60:
        return f"{diff_sec}s"

    diff_min = diff_sec // 60
    if diff_min < 60:
        secs = diff_sec % 60
        return f"{diff_min}m {secs}s" if secs > 0 else f"{diff_min}m"

    diff_hour = diff_min // 60
    mins = diff_min % 60
    return f"{diff_hour}h {mins}m" if mins > 0 else f"{diff_hour}h"


@dataclass(frozen=True)
class ModelRef:
    """A model addressed as ``provider/model``."""

    provider_id: str
    model_id: str

    def __str__(self) -> str:
        return f"{self.provider_id}/{self.model_id}"

    def to_dict(self) -> dict[str, str]:
        """Wire shape expected by the session API."""
        return {"providerID": self.provider_id, "modelID": self.model_id}


def parse_model(model: str) -> ModelRef:
    """Split a ``provider/model`` string on the first separator.

    Model ids may themselves contain slashes, so only the first one counts.

    Examples:
        >>> parse_model("minimax/MiniMax-M2.5")
        ModelRef(provider_id='minimax', model_id='MiniMax-M2.5')
        >>> parse_model("openrouter/meta/llama-3").model_id
        'meta/llama-3'
        >>> parse_model("bare").model_id
        ''
    """
    provider_id, _, model_id = model.partition("/")
    return ModelRef(provider_id=provider_id, model_id=model_id)


def truncate(text: str, max_length: int) -> str:
    """Truncate text, marking how much was dropped.

    Examples:
        >>> truncate("short", 10)
        'short'
        >>> truncate("x" * 12, 10)
        'xxxxxxxxxx... (truncated 2 chars)'
    """
    if len(text) <= max_length:
        return text
    return f"{text[:max_length]}... (truncated {len(text) - max_length} chars)"
