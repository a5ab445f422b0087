import logging
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from endgame.client.http import ApiClient, ApiError
from endgame.schemas.schemas import ProfilePrivateResponse

if TYPE_CHECKING:
    from endgame.client.views import ViewLoader

logger = logging.getLogger(__name__)


class SessionNotStartedError(RuntimeError):
    """Raised when a signed-in profile is required but there is none."""


class SessionContext:
    """
    The signed-in profile and everything bound to it.

    Views receive the session explicitly and register with it, so signing
    out tears every one of them down before the credentials are dropped.
    """

    def __init__(self, api: ApiClient):
        self.api = api
        self.profile: Optional[ProfilePrivateResponse] = None
        self._views: set["ViewLoader"] = set()

    @classmethod
    async def start(cls, api: ApiClient, token: str) -> "SessionContext":
        """Adopt a token and load the profile it belongs to"""
        api.set_token(token)
        session = cls(api)
        try:
            session.profile = await api.get_me()
        except ApiError:
            api.set_token(None)
            raise
        logger.info(f"Session started for {session.profile.username}")
        return session

    @property
    def active(self) -> bool:
        return self.profile is not None

    @property
    def profile_id(self) -> UUID:
        if self.profile is None:
            raise SessionNotStartedError("No profile is signed in")
        return self.profile.id

    @property
    def view_count(self) -> int:
        return len(self._views)

    def register_view(self, view: "ViewLoader") -> None:
        if not self.active:
            raise SessionNotStartedError("Cannot mount a view without a session")
        self._views.add(view)

    def unregister_view(self, view: "ViewLoader") -> None:
        self._views.discard(view)

    async def sign_out(self) -> None:
        """Cancel every view's in-flight work, then forget the credentials"""
        for view in list(self._views):
            await view.unmount()
        self._views.clear()
        self.api.set_token(None)
        self.profile = None
        logger.info("Session signed out")
