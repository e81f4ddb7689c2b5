"""
Object storage for built sites.

Cloudflare R2 speaks the S3 API, so a plain boto3 S3 client is used with
R2's endpoint. boto3 is synchronous; every call is pushed to a worker
thread with asyncio.to_thread() so uploads never block the event loop.
"""

import asyncio
import logging
import mimetypes

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from frontbase.config import (
    R2_ACCESS_KEY_ID,
    R2_BUCKET_NAME,
    R2_ENDPOINT,
    R2_SECRET_ACCESS_KEY,
)
from frontbase.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


def content_type_for(key: str) -> str:
    return mimetypes.guess_type(key)[0] or "application/octet-stream"


class S3Storage:
    def __init__(
        self,
        bucket: str = R2_BUCKET_NAME,
        endpoint_url: str = R2_ENDPOINT,
        access_key_id: str = R2_ACCESS_KEY_ID,
        secret_access_key: str = R2_SECRET_ACCESS_KEY,
        client=None,
    ):
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
            region_name="auto",
        )

    def _put(self, path: str, key: str) -> None:
        with open(path, "rb") as body:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type_for(key),
            )

    async def upload_file(self, path: str, key: str) -> None:
        """Upload the local file at `path` under `key`."""
        try:
            await asyncio.to_thread(self._put, path, key)
        except (BotoCoreError, ClientError) as exc:
            logger.error("Failed to upload %s to bucket %s: %s", key, self.bucket, exc)
            raise UpstreamUnavailableError("Object storage", str(exc)) from exc
        logger.debug("Uploaded %s", key)
