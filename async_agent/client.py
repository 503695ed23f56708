"""
Remote session API surface.

``SessionClient`` is the structural interface the coordinator depends on.
``HttpSessionClient`` implements it over the agent server's REST API with
httpx; every transport or status failure is translated into
``RemoteCallError`` at this boundary.
"""

import logging
from typing import Any
from typing import Literal
from typing import Protocol
from typing import runtime_checkable

import httpx

from .errors import RemoteCallError
from .message_models import AgentInfo
from .message_models import GlobalConfig
from .message_models import SessionInfo
from .message_models import SessionMessage
from .utils import ModelRef

logger = logging.getLogger(__name__)

ToastVariant = Literal["info", "success", "warning", "error"]
LogLevel = Literal["debug", "info", "warn", "error"]


@runtime_checkable
class SessionClient(Protocol):
    """Interface for the remote agent-session API."""

    async def create_session(self, parent_id: str, title: str) -> SessionInfo | None:
        """
        Create a child session.

        Returns:
            The created session, or None if the server answered without an id
        """
        ...

    async def prompt(
        self,
        session_id: str,
        parts: list[dict[str, Any]],
        *,
        agent: str | None = None,
        tools: dict[str, bool] | None = None,
        model: ModelRef | None = None,
        no_reply: bool = False,
    ) -> None:
        """
        Send a prompt into a session.

        Resolves when the server accepts the prompt and finishes the turn, so
        callers that must not block dispatch it as a detached task.
        """
        ...

    async def abort(self, session_id: str) -> bool:
        """Abort whatever the session is currently generating."""
        ...

    async def messages(self, session_id: str) -> list[SessionMessage]:
        """Fetch the ordered transcript of a session."""
        ...

    async def children(self, session_id: str) -> list[SessionInfo]:
        """List child sessions of a parent session."""
        ...

    async def agents(self) -> list[AgentInfo]:
        """List agents known to the server."""
        ...

    async def config(self) -> GlobalConfig:
        """Fetch the server's global configuration."""
        ...

    async def show_toast(
        self,
        title: str,
        message: str,
        variant: ToastVariant = "info",
        duration: int = 3000,
    ) -> None:
        """Show a transient notification in the UI."""
        ...

    async def log(self, level: LogLevel, message: str, service: str = "async-agent") -> None:
        """Write a structured log entry on the server."""
        ...


class HttpSessionClient:
    """SessionClient over HTTP.

    Contract:
    - Inputs: server base URL, optional project directory scoping every call
    - Outputs: typed models from ``message_models``
    - Errors: RemoteCallError for transport failures and non-2xx responses
    """

    def __init__(
        self,
        base_url: str,
        *,
        directory: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            base_url: Agent server URL (e.g. "http://127.0.0.1:4096")
            directory: Project directory forwarded as the ``directory`` query param
            timeout: Default request timeout in seconds. Prompts run without one.
            transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self.directory = directory
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpSessionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        timeout: Any = httpx.USE_CLIENT_DEFAULT,
    ) -> Any:
        params = {"directory": self.directory} if self.directory else None
        try:
            response = await self._client.request(
                method, path, json=json, params=params, timeout=timeout
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteCallError(
                f"{operation} failed: HTTP {e.response.status_code}",
                operation=operation,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise RemoteCallError(
                f"{operation} failed: {str(e) or type(e).__name__}",
                operation=operation,
            ) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteCallError(
                f"{operation} returned invalid JSON", operation=operation
            ) from e

    async def create_session(self, parent_id: str, title: str) -> SessionInfo | None:
        data = await self._request(
            "session.create",
            "POST",
            "/session",
            json={"title": title, "parentID": parent_id},
        )
        if not isinstance(data, dict) or not data.get("id"):
            logger.debug(f"session.create returned no id: {data!r}")
            return None
        return SessionInfo.model_validate(data)

    async def prompt(
        self,
        session_id: str,
        parts: list[dict[str, Any]],
        *,
        agent: str | None = None,
        tools: dict[str, bool] | None = None,
        model: ModelRef | None = None,
        no_reply: bool = False,
    ) -> None:
        body: dict[str, Any] = {"parts": parts}
        if agent:
            body["agent"] = agent
        if tools is not None:
            body["tools"] = tools
        if model is not None:
            body["model"] = model.to_dict()
        if no_reply:
            body["noReply"] = True
        # A prompt lasts as long as the agent's turn
        await self._request(
            "session.prompt",
            "POST",
            f"/session/{session_id}/message",
            json=body,
            timeout=None,
        )

    async def abort(self, session_id: str) -> bool:
        data = await self._request("session.abort", "POST", f"/session/{session_id}/abort")
        return bool(data)

    async def messages(self, session_id: str) -> list[SessionMessage]:
        data = await self._request("session.messages", "GET", f"/session/{session_id}/message")
        return [SessionMessage.model_validate(item) for item in data or []]

    async def children(self, session_id: str) -> list[SessionInfo]:
        data = await self._request("session.children", "GET", f"/session/{session_id}/children")
        return [SessionInfo.model_validate(item) for item in data or []]

    async def agents(self) -> list[AgentInfo]:
        data = await self._request("app.agents", "GET", "/agent")
        return [AgentInfo.model_validate(item) for item in data or []]

    async def config(self) -> GlobalConfig:
        data = await self._request("config.get", "GET", "/config")
        return GlobalConfig.model_validate(data or {})

    async def show_toast(
        self,
        title: str,
        message: str,
        variant: ToastVariant = "info",
        duration: int = 3000,
    ) -> None:
        await self._request(
            "tui.showToast",
            "POST",
            "/tui/show-toast",
            json={"title": title, "message": message, "variant": variant, "duration": duration},
        )

    async def log(self, level: LogLevel, message: str, service: str = "async-agent") -> None:
        await self._request(
            "app.log",
            "POST",
            "/log",
            json={"service": service, "level": level, "message": message},
        )
