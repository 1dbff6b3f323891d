"""
Core Package - client-side refresh and session-liveness core.

Components:
- DirtyFormRegistry: which editable forms hold unsaved input
- RefreshScheduler: throttled, unsaved-data-aware refresh per consumer
- SessionLivenessMonitor: grace period, inactivity and supersession handling
- RefreshMonitor: bounded log of refresh decisions
- ActivityTracker / SessionApiClient: activity heartbeat and session endpoints
- LifecycleEventSource: host-neutral visibility/focus events
"""

# Version information
__version__ = "1.0.0"

from .activity_client import SessionApiClient
from .activity_tracker import ActivityTracker
from .deferred_task import AsyncioTimerHost, DeferredTask, InFlightFlag, TimerHost
from .dirty_forms import DirtyFormRegistry, get_dirty_form_registry
from .exceptions import (
    ActivityCheckError,
    ConfigurationError,
    FatalError,
    IdentityProviderError,
    PortalCoreError,
    RetryableError,
    SessionSupersededError,
    UnknownConsumerError,
)
from .lifecycle_events import LifecycleEventSource, RefreshTrigger, TriggerKind, get_lifecycle_source
from .login_marker import (
    LoginMarker,
    clear_fresh_login_marker,
    get_login_marker,
    is_within_login_grace_period,
    mark_fresh_login,
)
from .protocols import Identity
from .query_cache import QueryCache, get_query_cache
from .refresh_monitor import RefreshMonitor, get_refresh_monitor
from .refresh_scheduler import (
    RefreshHandle,
    RefreshOutcome,
    RefreshPolicy,
    RefreshScheduler,
    get_refresh_scheduler,
    register_refresh_policy,
)
from .session_liveness import (
    InvalidationReason,
    SessionLivenessMonitor,
    SessionPhase,
    SessionState,
    start_session_liveness,
    wait_for_session,
)

__all__ = [
    "ActivityCheckError",
    "ActivityTracker",
    "AsyncioTimerHost",
    "ConfigurationError",
    "DeferredTask",
    "DirtyFormRegistry",
    "FatalError",
    "Identity",
    "IdentityProviderError",
    "InFlightFlag",
    "InvalidationReason",
    "LifecycleEventSource",
    "LoginMarker",
    "PortalCoreError",
    "QueryCache",
    "RefreshHandle",
    "RefreshMonitor",
    "RefreshOutcome",
    "RefreshPolicy",
    "RefreshScheduler",
    "RefreshTrigger",
    "RetryableError",
    "SessionApiClient",
    "SessionLivenessMonitor",
    "SessionPhase",
    "SessionState",
    "SessionSupersededError",
    "TimerHost",
    "TriggerKind",
    "UnknownConsumerError",
    "__version__",
    "clear_fresh_login_marker",
    "get_dirty_form_registry",
    "get_lifecycle_source",
    "get_login_marker",
    "get_query_cache",
    "get_refresh_monitor",
    "get_refresh_scheduler",
    "is_within_login_grace_period",
    "mark_fresh_login",
    "register_refresh_policy",
    "start_session_liveness",
    "wait_for_session",
]
