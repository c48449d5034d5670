"""
Veo long-running video jobs: submit, poll until done, download.

The wait loop sleeps a fixed interval between polls and is bounded both by
wall-clock (VIDEO_MAX_WAIT_SECONDS) and, optionally, by a poll count. Each
poll goes through the client's retry wrapper, so a transient hiccup on one
status check does not fail the render.
"""

import os
import time
import asyncio
import logging
from typing import Optional

from .errors import GenerationTimedOut, NoContentReturned, VideoOperationFailed
from .gemini_client import GeminiClient, ReferenceFrame, VideoOperation, VideoRequest

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

DEFAULT_POLL_INTERVAL = 5      # seconds
DEFAULT_MAX_WAIT_SECONDS = 900  # 15 minutes
VIDEO_ASPECT_RATIO = "9:16"


class VideoJobPoller:
    def __init__(
        self,
        client: GeminiClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_wait: float = DEFAULT_MAX_WAIT_SECONDS,
        max_polls: Optional[int] = None,
    ):
        self._client = client
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.max_polls = max_polls

    @classmethod
    def from_env(cls, client: GeminiClient) -> "VideoJobPoller":
        return cls(
            client,
            poll_interval=float(os.getenv("VIDEO_POLL_INTERVAL", str(DEFAULT_POLL_INTERVAL))),
            max_wait=float(os.getenv("VIDEO_MAX_WAIT_SECONDS", str(DEFAULT_MAX_WAIT_SECONDS))),
        )

    async def submit(
        self,
        prompt: str,
        start_frame: Optional[ReferenceFrame] = None,
        end_frame: Optional[ReferenceFrame] = None,
    ) -> VideoOperation:
        return await self._client.submit_video(VideoRequest(
            prompt=prompt,
            start_frame=start_frame,
            end_frame=end_frame,
            aspect_ratio=VIDEO_ASPECT_RATIO,
        ))

    async def poll(self, operation: VideoOperation) -> VideoOperation:
        return await self._client.get_operation(operation)

    async def wait(self, operation: VideoOperation) -> str:
        """Block (asynchronously) until the operation is done; return its video URI."""
        started = time.monotonic()
        polls = 0

        while not operation.done:
            elapsed = time.monotonic() - started
            if elapsed >= self.max_wait:
                raise GenerationTimedOut(
                    f"Video operation {operation.name} not done after {elapsed:.0f}s"
                )
            if self.max_polls is not None and polls >= self.max_polls:
                raise GenerationTimedOut(
                    f"Video operation {operation.name} not done after {polls} polls"
                )

            await asyncio.sleep(self.poll_interval)
            operation = await self.poll(operation)
            polls += 1
            logger.info(f"Veo poll #{polls}: {operation.name} done={operation.done}")

        if operation.error_message:
            raise VideoOperationFailed(f"Veo generation failed: {operation.error_message}")
        if not operation.video_uri:
            raise NoContentReturned(f"Veo operation {operation.name} finished without a video")
        return operation.video_uri

    async def render(
        self,
        prompt: str,
        start_frame: Optional[ReferenceFrame] = None,
        end_frame: Optional[ReferenceFrame] = None,
    ) -> bytes:
        """Submit, wait and download. Returns the MP4 bytes."""
        operation = await self.submit(prompt, start_frame, end_frame)
        uri = await self.wait(operation)
        data = await self._client.download_media(uri)
        logger.info(f"Veo video downloaded: {operation.name} ({len(data)} bytes)")
        return data
