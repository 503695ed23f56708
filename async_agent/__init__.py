"""
async-agent - Background delegation coordinator for remote agent sessions.
"""

__version__ = "1.0.0"

from .analysis import AnthropicCompletionClient
from .analysis import CompletionClient
from .analysis import SessionAnalyzer
from .client import HttpSessionClient
from .client import SessionClient
from .credentials import CredentialStore
from .credentials import ModelCatalog
from .errors import AgentNotFoundError
from .errors import AnalysisConfigError
from .errors import AnalysisTimeoutError
from .errors import DelegationError
from .errors import DelegationNotFoundError
from .errors import InvalidStateError
from .errors import RemoteCallError
from .errors import SessionCreateError
from .hooks import HookRegistry
from .manager import DelegationManager
from .manager import DelegationState
from .models import DelegateInput
from .models import Delegation
from .models import DelegationListItem
from .models import DelegationProgress
from .models import ReadDelegationArgs
from .models import ToolResult
from .notifications import Notification
from .notifications import compose_notification
from .plugin import AsyncAgentPlugin
from .settings import Settings
from .tools import ToolContext
from .utils import ModelRef
from .utils import format_duration
from .utils import parse_model

__all__ = [
    "__version__",
    "AgentNotFoundError",
    "AnalysisConfigError",
    "AnalysisTimeoutError",
    "AnthropicCompletionClient",
    "AsyncAgentPlugin",
    "CompletionClient",
    "CredentialStore",
    "DelegateInput",
    "Delegation",
    "DelegationError",
    "DelegationListItem",
    "DelegationManager",
    "DelegationNotFoundError",
    "DelegationProgress",
    "DelegationState",
    "HookRegistry",
    "HttpSessionClient",
    "InvalidStateError",
    "ModelCatalog",
    "ModelRef",
    "Notification",
    "ReadDelegationArgs",
    "RemoteCallError",
    "SessionAnalyzer",
    "SessionClient",
    "SessionCreateError",
    "Settings",
    "ToolContext",
    "ToolResult",
    "compose_notification",
    "format_duration",
    "parse_model",
]
