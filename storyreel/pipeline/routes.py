"""
FastAPI routes for the production pipeline.

Ideas & Project:
  POST /pipeline/ideas                                   Three concepts for a topic
  POST /pipeline/projects                                Create project from a chosen idea
  POST /pipeline/scripts/generate                        Draft a script (not saved)

Script:
  GET  /pipeline/projects/{id}/script                    Current script
  PUT  /pipeline/projects/{id}/script                    Save / edit script

Assets:
  POST /pipeline/projects/{id}/assets/analyze            Extract assets from script
  GET  /pipeline/projects/{id}/assets                    List assets
  POST /pipeline/assets/{asset_id}/image                 Generate concept sheet

Storyboard & Studio:
  POST /pipeline/projects/{id}/renders/init              Pending row per scene
  GET  /pipeline/projects/{id}/renders                   Render ledger
  POST /pipeline/projects/{id}/scenes/{i}/keyframes/{f}  Generate start|end keyframe
  POST /pipeline/projects/{id}/scenes/{i}/video          Start video render (202)
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from .errors import (
    GenerationError,
    NotFoundError,
    PipelineError,
    RenderInProgress,
    StorageError,
)
from .models import (
    Asset,
    FrameType,
    GeneratedIdea,
    IdeasRequest,
    KeyframeResponse,
    Project,
    ProjectCreateRequest,
    RenderAccepted,
    SceneRender,
    Script,
    ScriptGenerateRequest,
)
from .orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pipeline", tags=["pipeline"])

# Process-wide orchestrator, built on first use so load_dotenv() has run
_orchestrator: Optional[PipelineOrchestrator] = None


def get_orchestrator() -> PipelineOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = PipelineOrchestrator.from_env()
    return _orchestrator


async def close_orchestrator():
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.aclose()
        _orchestrator = None


def _http_error(e: PipelineError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, RenderInProgress):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (GenerationError, StorageError)):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


# ═════════════════════════════════════════════════════════════════════════════
# Ideas & Project
# ═════════════════════════════════════════════════════════════════════════════

@router.post("/ideas", response_model=list[GeneratedIdea])
async def generate_ideas(
    request: IdeasRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.generate_ideas(request.topic)
    except PipelineError as e:
        logger.error(f"Idea generation failed for '{request.topic}': {e}")
        raise _http_error(e)


@router.post("/projects", response_model=Project, status_code=status.HTTP_201_CREATED)
async def create_project(
    request: ProjectCreateRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.create_project(request.user_id, request.topic, request.idea)


@router.post("/scripts/generate", response_model=Script)
async def generate_script(
    request: ScriptGenerateRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.generate_script(request.topic, request.idea_description)
    except PipelineError as e:
        logger.error(f"Script generation failed for '{request.topic}': {e}")
        raise _http_error(e)


# ═════════════════════════════════════════════════════════════════════════════
# Script
# ═════════════════════════════════════════════════════════════════════════════

@router.get("/projects/{project_id}/script", response_model=Script)
async def get_script(
    project_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.get_script(project_id)
    except PipelineError as e:
        raise _http_error(e)


@router.put("/projects/{project_id}/script", response_model=Script)
async def save_script(
    project_id: str,
    script: Script,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.save_script(project_id, script)
    except PipelineError as e:
        raise _http_error(e)


# ═════════════════════════════════════════════════════════════════════════════
# Assets
# ═════════════════════════════════════════════════════════════════════════════

@router.post("/projects/{project_id}/assets/analyze", response_model=list[Asset])
async def analyze_script(
    project_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.analyze_script(project_id)
    except PipelineError as e:
        logger.error(f"[{project_id}] script analysis failed: {e}")
        raise _http_error(e)


@router.get("/projects/{project_id}/assets", response_model=list[Asset])
async def list_assets(
    project_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.list_assets(project_id)


@router.post("/assets/{asset_id}/image", response_model=Asset)
async def generate_asset_image(
    asset_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.generate_asset_image(asset_id)
    except PipelineError as e:
        logger.error(f"Asset image failed for {asset_id}: {e}")
        raise _http_error(e)


# ═════════════════════════════════════════════════════════════════════════════
# Storyboard & Studio
# ═════════════════════════════════════════════════════════════════════════════

@router.post("/projects/{project_id}/renders/init", response_model=list[SceneRender])
async def initialize_renders(
    project_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.initialize_renders(project_id)
    except PipelineError as e:
        raise _http_error(e)


@router.get("/projects/{project_id}/renders", response_model=list[SceneRender])
async def list_scene_renders(
    project_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.list_scene_renders(project_id)


@router.post(
    "/projects/{project_id}/scenes/{scene_index}/keyframes/{frame_type}",
    response_model=KeyframeResponse,
)
async def generate_keyframe(
    project_id: str,
    scene_index: int,
    frame_type: FrameType,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        url = await orchestrator.generate_keyframe(project_id, scene_index, frame_type)
    except PipelineError as e:
        logger.error(f"[{project_id}/{scene_index}] {frame_type.value} keyframe failed: {e}")
        raise _http_error(e)

    return KeyframeResponse(
        project_id=project_id,
        scene_index=scene_index,
        frame_type=frame_type,
        url=url,
    )


@router.post(
    "/projects/{project_id}/scenes/{scene_index}/video",
    response_model=RenderAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def generate_scene_video(
    project_id: str,
    scene_index: int,
    background_tasks: BackgroundTasks,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """
    Start a scene render in the background. Poll GET .../renders for the
    outcome; failures land on the ledger as `failed`.

    Errors:
      - 404: Unknown project or scene index
      - 409: Scene is already rendering
    """
    try:
        orchestrator.reserve_render(project_id, scene_index)
    except PipelineError as e:
        raise _http_error(e)

    background_tasks.add_task(
        orchestrator.run_scene_video_background, project_id, scene_index
    )
    return RenderAccepted(project_id=project_id, scene_index=scene_index)
