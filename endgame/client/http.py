"""
Async HTTP client for the Endgame API.

Reads (GET) are idempotent and retried with exponential backoff on
transport failures and 5xx responses. Writes are sent exactly once; a failed
write surfaces as ``ApiError`` so the caller can roll back.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Optional
from uuid import UUID

import httpx

from endgame.schemas.schemas import (
    FeedResponse,
    FollowStateResponse,
    LikeStateResponse,
    NotificationListResponse,
    PostResponse,
    ProfilePrivateResponse,
    ProfileResponse,
    ProfileSummary,
    Token,
)

logger = logging.getLogger(__name__)

RETRYABLE_METHODS = frozenset({"GET"})


class ApiError(Exception):
    """A request failed; status_code is None when no response arrived."""

    def __init__(self, status_code: Optional[int], detail: str):
        super().__init__(f"{status_code}: {detail}" if status_code else detail)
        self.status_code = status_code
        self.detail = detail


def _detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict) and "detail" in payload:
        return str(payload["detail"])
    return str(payload)


class ApiClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff: float = 0.2,
    ):
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
        self._token = token
        self.max_attempts = max_attempts
        self.backoff = backoff

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and return its decoded JSON body (None for 204)."""
        method = method.upper()
        attempts = self.max_attempts if method in RETRYABLE_METHODS else 1
        headers = dict(kwargs.pop("headers", None) or {})
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.request(method, path, headers=headers, **kwargs)
            except httpx.TransportError as exc:
                if attempt == attempts:
                    raise ApiError(None, f"{method} {path} failed: {exc}") from exc
                logger.warning(f"{method} {path} attempt {attempt} failed: {exc}")
            else:
                if response.status_code < 500 or attempt == attempts:
                    break
                logger.warning(f"{method} {path} attempt {attempt} returned {response.status_code}")
            await asyncio.sleep(self.backoff * 2 ** (attempt - 1))

        if response.is_error:
            raise ApiError(response.status_code, _detail(response))
        if response.status_code == httpx.codes.NO_CONTENT or not response.content:
            return None
        return response.json()

    # Auth
    async def login(self, username: str, password: str) -> Token:
        data = await self.request("POST", "/api/v1/auth/login", data={"username": username, "password": password})
        token = Token(**data)
        self.set_token(token.access_token)
        return token

    async def get_me(self) -> ProfilePrivateResponse:
        return ProfilePrivateResponse(**await self.request("GET", "/api/v1/auth/me"))

    # Profiles
    async def get_profile(self, profile_id: UUID) -> ProfileResponse:
        return ProfileResponse(**await self.request("GET", f"/api/v1/profiles/{profile_id}"))

    async def get_leaderboard(self, limit: int = 50) -> list[ProfileSummary]:
        rows = await self.request("GET", "/api/v1/profiles/leaderboard", params={"limit": limit})
        return [ProfileSummary(**row) for row in rows]

    async def search_profiles(self, query: str, limit: int = 20) -> list[ProfileSummary]:
        rows = await self.request("GET", "/api/v1/profiles/search", params={"q": query, "limit": limit})
        return [ProfileSummary(**row) for row in rows]

    async def follow(self, profile_id: UUID) -> FollowStateResponse:
        return FollowStateResponse(**await self.request("POST", f"/api/v1/profiles/{profile_id}/follow"))

    async def unfollow(self, profile_id: UUID) -> FollowStateResponse:
        return FollowStateResponse(**await self.request("DELETE", f"/api/v1/profiles/{profile_id}/follow"))

    # Posts
    async def get_feed(self) -> list[PostResponse]:
        return FeedResponse(**await self.request("GET", "/api/v1/feed")).posts

    async def get_post(self, post_id: UUID) -> PostResponse:
        return PostResponse(**await self.request("GET", f"/api/v1/posts/{post_id}"))

    async def get_posts_by_tag(self, tag: str) -> list[PostResponse]:
        rows = await self.request("GET", f"/api/v1/posts/tagged/{tag}")
        return [PostResponse(**row) for row in rows]

    async def create_post(
        self,
        files: Sequence[tuple[str, bytes, str]],
        caption: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> PostResponse:
        """files are (filename, data, content_type) triples"""
        data = {}
        if caption:
            data["caption"] = caption
        if tags:
            data["tags"] = ",".join(tags)
        multipart = [("files", (name, content, content_type)) for name, content, content_type in files]
        return PostResponse(**await self.request("POST", "/api/v1/posts", data=data, files=multipart))

    async def delete_post(self, post_id: UUID) -> None:
        await self.request("DELETE", f"/api/v1/posts/{post_id}")

    async def like_post(self, post_id: UUID) -> LikeStateResponse:
        return LikeStateResponse(**await self.request("POST", f"/api/v1/posts/{post_id}/like"))

    async def unlike_post(self, post_id: UUID) -> LikeStateResponse:
        return LikeStateResponse(**await self.request("DELETE", f"/api/v1/posts/{post_id}/like"))

    # Notifications
    async def get_notifications(self) -> NotificationListResponse:
        return NotificationListResponse(**await self.request("GET", "/api/v1/notifications"))

    async def mark_notification_read(self, notification_id: UUID) -> None:
        await self.request("POST", f"/api/v1/notifications/{notification_id}/read")

    async def mark_all_notifications_read(self) -> int:
        return (await self.request("POST", "/api/v1/notifications/read-all"))["updated"]
