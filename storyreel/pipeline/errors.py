"""
Error taxonomy for the production pipeline.

  PipelineError
    ├── GenerationError            : anything raised talking to the provider
    │     ├── TransientProviderError   (429 / 5xx / network, retried)
    │     ├── PermanentProviderError   (other 4xx, policy rejections, not retried)
    │     ├── NoContentReturned        (parsed OK but no usable payload)
    │     │     └── NoImageData
    │     ├── GenerationTimedOut       (video operation exceeded its wait bound)
    │     └── VideoOperationFailed     (operation finished with an error)
    ├── StorageError               : blob store upload / fetch failure
    ├── NotFoundError              : script / asset / render row missing
    └── RenderInProgress           : scene already has a video render running
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for every failure the pipeline raises on purpose."""


# ── Generation provider ──────────────────────────────────────────────────────

class GenerationError(PipelineError):
    pass


class TransientProviderError(GenerationError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PermanentProviderError(GenerationError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NoContentReturned(GenerationError):
    pass


class NoImageData(NoContentReturned):
    pass


class GenerationTimedOut(GenerationError):
    pass


class VideoOperationFailed(GenerationError):
    pass


# ── Collaborators ────────────────────────────────────────────────────────────

class StorageError(PipelineError):
    pass


class NotFoundError(PipelineError):
    pass


class RenderInProgress(PipelineError):
    def __init__(self, project_id: str, scene_index: int):
        super().__init__(
            f"Scene {scene_index} of project {project_id} is already rendering"
        )
        self.project_id = project_id
        self.scene_index = scene_index


def is_transient_status(status_code: int) -> bool:
    """429 and every 5xx are worth another attempt."""
    return status_code == 429 or status_code >= 500
