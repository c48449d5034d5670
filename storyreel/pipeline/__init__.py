"""
Short-video production pipeline

  Ideas → Script → Asset analysis → Asset images
        → Keyframes (start / end per scene) → Scene videos (Veo)

Per-scene progress is kept in the scene render ledger so every stage can be
re-run and resumed.
"""

from .orchestrator import PipelineOrchestrator
from .routes import router
from .models import FrameType, ProjectStatus, RenderStatus

__all__ = [
    "PipelineOrchestrator",
    "router",
    "FrameType",
    "ProjectStatus",
    "RenderStatus",
]
