"""Client-side access to the Endgame API: HTTP, session, optimistic toggles and views."""

from endgame.client.http import ApiClient, ApiError
from endgame.client.optimistic import (
    Confirmed,
    FollowToggle,
    LikeToggle,
    MutationInFlightError,
    OptimisticToggle,
    RolledBack,
    Tentative,
    ToggleState,
)
from endgame.client.session import SessionContext, SessionNotStartedError
from endgame.client.views import ViewLoader, ViewUnmountedError

__all__ = [
    "ApiClient",
    "ApiError",
    "Confirmed",
    "FollowToggle",
    "LikeToggle",
    "MutationInFlightError",
    "OptimisticToggle",
    "RolledBack",
    "SessionContext",
    "SessionNotStartedError",
    "Tentative",
    "ToggleState",
    "ViewLoader",
    "ViewUnmountedError",
]
