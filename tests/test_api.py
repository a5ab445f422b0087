import io
from datetime import UTC, datetime
from uuid import uuid4

import pytest
from fastapi import UploadFile
from fastapi.testclient import TestClient

from endgame.api import uploads
from endgame.api.uploads import read_upload
from endgame.core.auth import create_access_token, get_current_profile
from endgame.main import app
from endgame.models.models import Profile
from endgame.schemas.schemas import FollowStateResponse, LikeStateResponse, PostResponse
from endgame.services import post_service, profile_service
from endgame.services.errors import PermissionDeniedError, PostNotFoundError, ValidationError

ME = Profile(username="runner", email="runner@example.com", full_name="Road Runner")


@pytest.fixture
def client():
    app.dependency_overrides[get_current_profile] = lambda: ME
    # Not entered as a context manager, so startup does not open the pool or Redis
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_mutations_require_authentication():
    response = TestClient(app).post(f"/api/v1/posts/{uuid4()}/like")

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_like_returns_committed_state(client, monkeypatch):
    post_id = uuid4()
    calls = []

    async def fake_like(user_id, target):
        calls.append((user_id, target))
        return LikeStateResponse(post_id=target, liked=True, likes_count=3)

    monkeypatch.setattr(post_service, "like_post", fake_like)

    response = client.post(f"/api/v1/posts/{post_id}/like")

    assert response.status_code == 200
    assert response.json() == {"post_id": str(post_id), "liked": True, "likes_count": 3}
    assert calls == [(ME.id, post_id)]


def test_delete_uses_token_identity_and_maps_forbidden(client, monkeypatch):
    seen = []

    async def fake_delete(post_id, owner_id):
        seen.append(owner_id)
        raise PermissionDeniedError("You can only delete your own posts")

    monkeypatch.setattr(post_service, "delete_post", fake_delete)

    response = client.delete(f"/api/v1/posts/{uuid4()}")

    assert response.status_code == 403
    assert seen == [ME.id]


def test_missing_post_maps_to_404(client, monkeypatch):
    async def fake_get(post_id, viewer_id=None):
        raise PostNotFoundError(f"Post {post_id} not found")

    monkeypatch.setattr(post_service, "get_post", fake_get)

    assert client.get(f"/api/v1/posts/{uuid4()}").status_code == 404


def test_self_follow_maps_to_422(client, monkeypatch):
    async def fake_follow(follower_id, following_id):
        raise ValidationError("You cannot follow yourself")

    monkeypatch.setattr(profile_service, "follow_profile", fake_follow)

    response = client.post(f"/api/v1/profiles/{ME.id}/follow")

    assert response.status_code == 422
    assert response.json()["detail"] == "You cannot follow yourself"


def test_unfollow(client, monkeypatch):
    star = uuid4()

    async def fake_unfollow(follower_id, following_id):
        return FollowStateResponse(profile_id=following_id, following=False, followers_count=0)

    monkeypatch.setattr(profile_service, "unfollow_profile", fake_unfollow)

    response = client.delete(f"/api/v1/profiles/{star}/follow")

    assert response.status_code == 200
    assert response.json()["following"] is False


def test_create_post_accepts_multipart(client, monkeypatch):
    captured = {}

    async def fake_create(owner_id, files, caption, tags):
        captured.update(owner_id=owner_id, files=files, caption=caption, tags=tags)
        return PostResponse(
            id=uuid4(),
            user_id=owner_id,
            caption=caption,
            media_urls=["https://media.example.com/a.jpg", "https://media.example.com/b.jpg"],
            created_at=datetime.now(UTC),
        )

    monkeypatch.setattr(post_service, "create_post", fake_create)

    response = client.post(
        "/api/v1/posts",
        data={"caption": "Match point", "tags": "#Tennis, clay"},
        files=[
            ("files", ("a.jpg", b"one", "image/jpeg")),
            ("files", ("b.png", b"two", "image/png")),
        ],
    )

    assert response.status_code == 201
    assert captured["owner_id"] == ME.id
    assert [media.filename for media in captured["files"]] == ["a.jpg", "b.png"]
    assert captured["files"][1].data == b"two"
    assert captured["tags"] == ["#Tennis", " clay"]


def test_oversized_upload_is_rejected_before_the_service(client, monkeypatch):
    monkeypatch.setattr(uploads, "MAX_MEDIA_BYTES", 8)

    async def fake_create(*args):
        raise AssertionError("oversized uploads must not reach the service")

    monkeypatch.setattr(post_service, "create_post", fake_create)

    response = client.post("/api/v1/posts", files=[("files", ("big.jpg", b"x" * 64, "image/jpeg"))])

    assert response.status_code == 422


async def test_read_upload_reads_at_most_one_byte_past_the_limit():
    class TrackingFile(io.BytesIO):
        def __init__(self, data):
            super().__init__(data)
            self.requested = []

        def read(self, size=-1):
            self.requested.append(size)
            return super().read(size)

    source = TrackingFile(b"x" * 1000)
    upload = UploadFile(file=source, filename="big.jpg")

    with pytest.raises(ValidationError):
        await read_upload(upload, max_bytes=10)

    assert source.requested == [11]


def test_login_issues_token_for_profile(monkeypatch):
    async def fake_authenticate(login, password):
        return ME

    monkeypatch.setattr("endgame.api.auth.authenticate", fake_authenticate)

    response = TestClient(app).post("/api/v1/auth/login", data={"username": "runner", "password": "secret"})

    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"
    assert response.json()["access_token"]


def test_bearer_token_resolves_profile(monkeypatch):
    async def fake_record(profile_id):
        return ME if profile_id == ME.id else None

    monkeypatch.setattr(profile_service, "get_profile_record", fake_record)
    token = create_access_token(ME.id)

    response = TestClient(app).get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["email"] == "runner@example.com"
