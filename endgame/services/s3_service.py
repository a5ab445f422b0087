import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from endgame.config_secrets import (
    AWS_ACCESS_KEY_ID,
    AWS_REGION,
    AWS_S3_ENDPOINT_URL,
    AWS_SECRET_ACCESS_KEY,
    MEDIA_PUBLIC_BASE_URL,
    MEDIA_S3_BUCKET,
)

logger = logging.getLogger(__name__)

# Initialize S3 client
s3_client = boto3.client(
    "s3",
    region_name=AWS_REGION,
    endpoint_url=AWS_S3_ENDPOINT_URL,
    aws_access_key_id=AWS_ACCESS_KEY_ID,
    aws_secret_access_key=AWS_SECRET_ACCESS_KEY,
)


def get_public_url(key: str) -> str:
    """
    Build the stable public URL of a stored object

    Args:
        key: The S3 key of the object

    Returns:
        The public URL
    """
    return f"{MEDIA_PUBLIC_BASE_URL.rstrip('/')}/{key}"


def key_from_public_url(url: str) -> Optional[str]:
    """
    Recover the S3 key from a URL produced by get_public_url

    Returns:
        The key, or None if the URL does not point into the media bucket
    """
    base = MEDIA_PUBLIC_BASE_URL.rstrip("/") + "/"
    if not url.startswith(base):
        return None
    return url[len(base):] or None


def upload_media_to_s3(
    data: bytes,
    key: str,
    content_type: Optional[str] = None,
) -> Optional[str]:
    """
    Upload one media object to S3

    Args:
        data: The bytes of the file
        key: The S3 key to store it under
        content_type: The content type of the file

    Returns:
        The public URL if successful, None otherwise
    """
    try:
        extra_args = {}
        if content_type:
            extra_args["ContentType"] = content_type

        s3_client.put_object(
            Bucket=MEDIA_S3_BUCKET,
            Key=key,
            Body=data,
            **extra_args,
        )
    except (BotoCoreError, ClientError):
        logger.exception(f"Failed to upload media {key} to S3.")
        return None
    else:
        return get_public_url(key)


def delete_media_from_s3(key: str) -> bool:
    """
    Delete one media object from S3

    Args:
        key: The S3 key of the object

    Returns:
        True if successful, False otherwise
    """
    try:
        s3_client.delete_object(
            Bucket=MEDIA_S3_BUCKET,
            Key=key,
        )
    except (BotoCoreError, ClientError):
        logger.exception(f"Failed to delete media {key} from S3.")
        return False
    else:
        return True
