from typing import Optional

from fastapi import UploadFile

from endgame.config_secrets import MAX_MEDIA_BYTES
from endgame.services.errors import ValidationError
from endgame.services.media_service import MediaFile


async def read_upload(upload: UploadFile, max_bytes: Optional[int] = None) -> MediaFile:
    """Read a multipart file part into memory, never more than max_bytes + 1 bytes."""
    if max_bytes is None:
        max_bytes = MAX_MEDIA_BYTES
    data = await upload.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValidationError(f"{upload.filename or 'upload'} is larger than {max_bytes // (1024 * 1024)}MB")
    return MediaFile(
        filename=upload.filename or "upload",
        content_type=upload.content_type or "application/octet-stream",
        data=data,
    )
