"""
Media upload sequencing.

Files are validated up front, uploaded one at a time under collision-free
keys namespaced by the owner id, and only handed back once every upload has
succeeded. A failed upload deletes the objects stored before it, so callers
never see (or leak) a partial batch.
"""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from uuid import UUID, uuid4

from starlette.concurrency import run_in_threadpool

from endgame.config_secrets import MAX_MEDIA_BYTES, MAX_MEDIA_FILES, MAX_PROFILE_IMAGE_BYTES
from endgame.services import s3_service
from endgame.services.errors import MediaUploadError, ValidationError

logger = logging.getLogger(__name__)

_EXTENSION_PATTERN = re.compile(r"^[a-z0-9]{1,10}$")


@dataclass(frozen=True)
class MediaFile:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class UploadedMedia:
    keys: list[str] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)


def _extension(media: MediaFile) -> str:
    ext = ""
    if "." in media.filename:
        ext = media.filename.rsplit(".", 1)[-1].lower()
    if not _EXTENSION_PATTERN.match(ext):
        ext = media.content_type.split("/", 1)[-1].split(";", 1)[0].strip().lower()
    if not _EXTENSION_PATTERN.match(ext):
        ext = "bin"
    return ext


def media_key(owner_id: UUID, media: MediaFile, prefix: str | None = None) -> str:
    """``<owner_id>/[<prefix>/]<random>.<ext>``"""
    parts = [str(owner_id)]
    if prefix:
        parts.append(prefix)
    parts.append(f"{uuid4().hex}.{_extension(media)}")
    return "/".join(parts)


def _validate_image(media: MediaFile, max_bytes: int) -> None:
    if not media.content_type.startswith("image/"):
        raise ValidationError(f"{media.filename} is not an image")
    if media.size == 0:
        raise ValidationError(f"{media.filename} is empty")
    if media.size > max_bytes:
        raise ValidationError(f"{media.filename} is larger than {max_bytes // (1024 * 1024)}MB")


def validate_media(files: Sequence[MediaFile]) -> None:
    """Check a post's media before any upload starts"""
    if not files:
        raise ValidationError("Please select at least one image to upload")
    if len(files) > MAX_MEDIA_FILES:
        raise ValidationError(f"You can upload up to {MAX_MEDIA_FILES} photos per post")
    for media in files:
        _validate_image(media, MAX_MEDIA_BYTES)


def validate_profile_image(media: MediaFile) -> None:
    _validate_image(media, MAX_PROFILE_IMAGE_BYTES)


async def discard_media(keys: Sequence[str]) -> None:
    """Best-effort delete of stored objects; failures are logged"""
    for key in keys:
        deleted = await run_in_threadpool(s3_service.delete_media_from_s3, key)
        if not deleted:
            logger.error(f"Could not delete orphaned media object {key}")


async def upload_media_batch(owner_id: UUID, files: Sequence[MediaFile], prefix: str | None = None) -> UploadedMedia:
    """
    Upload files in order and return their keys and public URLs.

    Raises MediaUploadError after deleting whatever was already uploaded if
    any single upload fails.
    """
    uploaded = UploadedMedia()
    for media in files:
        key = media_key(owner_id, media, prefix)
        url = await run_in_threadpool(s3_service.upload_media_to_s3, media.data, key, media.content_type)
        if url is None:
            logger.warning(f"Upload of {media.filename} failed, discarding {len(uploaded.keys)} uploaded objects")
            await discard_media(uploaded.keys)
            raise MediaUploadError(f"Failed to upload {media.filename}")
        uploaded.keys.append(key)
        uploaded.urls.append(url)

    logger.info(f"Uploaded {len(uploaded.keys)} media objects for {owner_id}")
    return uploaded


async def discard_media_urls(owner_id: UUID, urls: Sequence[str]) -> None:
    """Delete the objects behind public media URLs stored under ``owner_id``"""
    namespace = f"{owner_id}/"
    keys = []
    for url in urls:
        key = s3_service.key_from_public_url(url)
        if not key:
            continue
        if not key.startswith(namespace):
            logger.warning(f"Refusing to delete {key}: not owned by {owner_id}")
            continue
        keys.append(key)
    await discard_media(keys)
