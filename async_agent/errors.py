"""Delegation error taxonomy.

Provides a shared vocabulary for failures in the delegation lifecycle so the
tool layer can turn any of them into actionable text, while internal handlers
can log and move on.

Design principles:
- Remote transport errors are translated at the client boundary into
  ``RemoteCallError`` with ``raise ... from native_error`` so the original
  exception stays available via ``__cause__``.
- User-facing operations raise these types; the tool layer renders them.
- Detached lifecycle handlers (watchdog, idle signal, notifier) never let them
  escape.
"""

from __future__ import annotations


class DelegationError(Exception):
    """Base for all delegation errors.

    Attributes:
        delegation_id: Delegation the error relates to, if any.
    """

    def __init__(self, message: str, *, delegation_id: str | None = None) -> None:
        super().__init__(message)
        self.delegation_id = delegation_id

    def __repr__(self) -> str:
        parts = [repr(str(self))]
        if self.delegation_id is not None:
            parts.append(f"delegation_id={self.delegation_id!r}")
        return f"{type(self).__name__}({', '.join(parts)})"


class AgentNotFoundError(DelegationError):
    """Requested agent is not in the agent catalog.

    Attributes:
        agent: The name that was requested.
        available: Names of agents usable as sub-agents.
    """

    def __init__(
        self,
        message: str,
        *,
        agent: str,
        available: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.agent = agent
        self.available = available or []


class SessionCreateError(DelegationError):
    """Remote session creation returned no session id."""

    pass


class DelegationNotFoundError(DelegationError):
    """No delegation is tracked under the given id."""

    pass


class InvalidStateError(DelegationError):
    """Operation is not allowed from the delegation's current status.

    Attributes:
        status: Status the delegation was in when the operation was attempted.
    """

    def __init__(
        self,
        message: str,
        *,
        delegation_id: str | None = None,
        status: str | None = None,
    ) -> None:
        super().__init__(message, delegation_id=delegation_id)
        self.status = status


class RemoteCallError(DelegationError):
    """A call to the remote session API or completion API failed.

    Attributes:
        operation: Name of the remote operation (e.g. "session.create").
        status_code: HTTP status code, if the failure carried one.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code

    def __repr__(self) -> str:
        parts = [repr(str(self))]
        if self.operation is not None:
            parts.append(f"operation={self.operation!r}")
        if self.status_code is not None:
            parts.append(f"status_code={self.status_code!r}")
        return f"{type(self).__name__}({', '.join(parts)})"


class AnalysisConfigError(DelegationError):
    """No usable model, endpoint, or credential for AI analysis."""

    pass


class AnalysisTimeoutError(DelegationError):
    """The completion request for AI analysis exceeded its time budget.

    Attributes:
        timeout: Budget in seconds that was exceeded.
    """

    def __init__(
        self,
        message: str,
        *,
        delegation_id: str | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(message, delegation_id=delegation_id)
        self.timeout = timeout
