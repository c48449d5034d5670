"""
R2 (S3 API) blob store for generated media.

Objects are namespaced per project and media kind, with a millisecond
suffix so regenerations never overwrite each other:

  {project_id}/images/asset-{asset_id}-{ms}.png
  {project_id}/images/scene-{index}-{start|end}-{ms}.png
  {project_id}/videos/scene-{index}-video-{ms}.mp4

The store only hands out public URLs; callers persist those URLs and never
the bytes.
"""

import os
import time
import asyncio
import logging
from typing import Optional

import boto3
import httpx
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import StorageError
from .models import FrameType

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "video/mp4": "mp4",
}


# ── Path helpers ─────────────────────────────────────────────────────────────

def _stamp() -> int:
    return int(time.time() * 1000)


def _ext(content_type: str) -> str:
    return _EXTENSIONS.get(content_type, "bin")


def asset_image_path(project_id: str, asset_id: str, content_type: str = "image/png") -> str:
    return f"{project_id}/images/asset-{asset_id}-{_stamp()}.{_ext(content_type)}"


def keyframe_path(
    project_id: str,
    scene_index: int,
    frame_type: FrameType,
    content_type: str = "image/png",
) -> str:
    return (
        f"{project_id}/images/scene-{scene_index}-{frame_type.value}-{_stamp()}.{_ext(content_type)}"
    )


def scene_video_path(project_id: str, scene_index: int) -> str:
    return f"{project_id}/videos/scene-{scene_index}-video-{_stamp()}.mp4"


# ═════════════════════════════════════════════════════════════════════════════
# Store
# ═════════════════════════════════════════════════════════════════════════════

class R2BlobStore:
    def __init__(
        self,
        s3_client,
        bucket: str,
        public_url: str,
        fetch_timeout: float = 60,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._s3 = s3_client
        self._bucket = bucket
        self._public_url = public_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=fetch_timeout)

    @classmethod
    def from_env(cls) -> "R2BlobStore":
        account_id = os.getenv("R2_ACCOUNT_ID", "")
        public_url = os.getenv("R2_PUBLIC_URL", "")
        if not account_id or not public_url:
            raise RuntimeError("R2_ACCOUNT_ID and R2_PUBLIC_URL must be set")

        s3 = boto3.client(
            "s3",
            endpoint_url=f"https://{account_id}.r2.cloudflarestorage.com",
            aws_access_key_id=os.getenv("R2_ACCESS_KEY_ID", ""),
            aws_secret_access_key=os.getenv("R2_SECRET_ACCESS_KEY", ""),
            config=BotoConfig(signature_version="s3v4"),
            region_name="auto",
        )
        return cls(s3, os.getenv("R2_BUCKET_NAME", "project-assets"), public_url)

    def public_url(self, path: str) -> str:
        return f"{self._public_url}/{path}"

    async def put(self, data: bytes, content_type: str, path: str) -> str:
        """Upload bytes and return the object's public URL."""
        try:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=self._bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"R2 upload failed for key={path}: {e}")
            raise StorageError(f"Upload failed for {path}: {e}") from e

        url = self.public_url(path)
        logger.info(f"Uploaded to R2: {url} ({len(data)} bytes)")
        return url

    async def aclose(self):
        await self._http.aclose()

    async def fetch(self, url: str) -> bytes:
        """Download a previously stored object by its public URL."""
        try:
            response = await self._http.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"Fetch failed for {url}: {e}") from e
        return response.content
