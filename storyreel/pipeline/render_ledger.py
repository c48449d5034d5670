"""
Scene render ledger: the durable per-scene record of keyframe URLs, video
status and video URL.

State machine (one row per project_id + scene_index):

  pending ──begin──► rendering_video ──complete──► completed
                            │
                            └──────fail──────────► failed

Keyframe writes touch exactly one frame column and never the status. Any
terminal row may be re-rendered; the last writer wins.

RenderLocks is the in-process guard that keeps a scene from running two
video renders at once. It lives in memory, so a worker restart drops it.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Optional

from .. import metrics
from .errors import RenderInProgress
from .models import FrameType, RenderStatus, SceneRender

logger = logging.getLogger(__name__)

_FRAME_COLUMNS = {
    FrameType.START: "start_frame_url",
    FrameType.END: "end_frame_url",
}


class SceneRenderLedger:
    def __init__(self, store):
        self._store = store

    def ensure_exists(self, project_id: str, scene_index: int):
        """Create the row as pending if missing. Never overwrites."""
        self._store.upsert_scene_renders(project_id, [scene_index])

    def ensure_all(self, project_id: str, scene_count: int):
        self._store.upsert_scene_renders(project_id, range(scene_count))

    def get(self, project_id: str, scene_index: int) -> Optional[SceneRender]:
        return self._store.get_scene_render(project_id, scene_index)

    def record_keyframe(
        self,
        project_id: str,
        scene_index: int,
        frame_type: FrameType,
        url: str,
    ):
        self._store.update_scene_render(
            project_id, scene_index, {_FRAME_COLUMNS[frame_type]: url}
        )
        logger.info(f"[{project_id}/{scene_index}] {frame_type.value} keyframe recorded")

    def begin_video_render(self, project_id: str, scene_index: int):
        self._set_status(project_id, scene_index, RenderStatus.RENDERING_VIDEO)

    def complete_video_render(self, project_id: str, scene_index: int, video_url: str):
        self._set_status(
            project_id, scene_index, RenderStatus.COMPLETED, video_url=video_url
        )

    def fail_video_render(self, project_id: str, scene_index: int):
        self._set_status(project_id, scene_index, RenderStatus.FAILED)

    def _set_status(self, project_id: str, scene_index: int, status: RenderStatus, **fields):
        self._store.update_scene_render(
            project_id, scene_index, {"status": status.value, **fields}
        )
        logger.info(f"[{project_id}/{scene_index}] render → {status.value}")


# ═════════════════════════════════════════════════════════════════════════════
# Per-scene render lock
# ═════════════════════════════════════════════════════════════════════════════

class RenderLocks:
    """Non-blocking, per-(project, scene) exclusive slots."""

    def __init__(self):
        self._lock = threading.Lock()
        self._held: set[tuple[str, int]] = set()

    def try_acquire(self, project_id: str, scene_index: int) -> bool:
        key = (project_id, scene_index)
        with self._lock:
            if key in self._held:
                return False
            self._held.add(key)
            metrics.set_gauge("renders.active", len(self._held))
            return True

    def release(self, project_id: str, scene_index: int):
        with self._lock:
            self._held.discard((project_id, scene_index))
            metrics.set_gauge("renders.active", len(self._held))

    def is_held(self, project_id: str, scene_index: int) -> bool:
        with self._lock:
            return (project_id, scene_index) in self._held

    def active(self) -> int:
        with self._lock:
            return len(self._held)

    @contextmanager
    def hold(self, project_id: str, scene_index: int):
        """Raises RenderInProgress instead of waiting."""
        if not self.try_acquire(project_id, scene_index):
            raise RenderInProgress(project_id, scene_index)
        try:
            yield
        finally:
            self.release(project_id, scene_index)
