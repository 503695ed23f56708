"""
Canonical delegation lifecycle event names.
Stable surface for hooks and observability.
"""

# Launch
DELEGATION_STARTED = "delegation:started"
DELEGATION_RESUMED = "delegation:resumed"

# Terminal transitions
DELEGATION_COMPLETED = "delegation:completed"
DELEGATION_ERROR = "delegation:error"
DELEGATION_CANCELLED = "delegation:cancelled"
DELEGATION_TIMEOUT = "delegation:timeout"

# Parent notification delivery
NOTIFICATION_SENT = "notification:sent"
NOTIFICATION_FAILED = "notification:failed"

# AI analysis of completed sessions
ANALYSIS_START = "analysis:start"
ANALYSIS_END = "analysis:end"

ALL_EVENTS = [
    DELEGATION_STARTED,
    DELEGATION_RESUMED,
    DELEGATION_COMPLETED,
    DELEGATION_ERROR,
    DELEGATION_CANCELLED,
    DELEGATION_TIMEOUT,
    NOTIFICATION_SENT,
    NOTIFICATION_FAILED,
    ANALYSIS_START,
    ANALYSIS_END,
]
