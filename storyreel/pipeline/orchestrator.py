"""
PipelineOrchestrator: drives a project from topic to rendered scenes.

  generate_ideas → create_project → generate_script → save_script
    → analyze_script → generate_asset_image (per asset)
    → generate_keyframe (per scene, start + end)
    → generate_scene_video (per scene)

Each stage is its own entry point; the UI decides when to call the next one.
Progress lives in the project store (assets, scene render ledger), so any
stage can be re-run after a worker restart.

Failure policy:
  - ideas / script / analysis / asset image / keyframe: errors propagate,
    nothing is written, the entity keeps its last good state.
  - scene video: never raises a stage error. The ledger row goes to
    `failed` and the render is returned.
"""

import os
import json
import logging
import mimetypes
from typing import Optional

from pydantic import ValidationError

from .. import metrics
from .errors import (
    NoContentReturned,
    NotFoundError,
    PermanentProviderError,
    PipelineError,
    RenderInProgress,
    StorageError,
)
from .gemini_client import GeminiClient, ImageRequest, ReferenceFrame
from .keyframes import KeyframeSynthesizer
from .models import (
    Asset,
    AssetEntity,
    AssetStatus,
    FrameType,
    GeneratedIdea,
    Project,
    ProjectStatus,
    RenderStatus,
    Scene,
    SceneRender,
    Script,
)
from .project_store import SupabaseProjectStore
from .render_ledger import RenderLocks, SceneRenderLedger
from .storage import R2BlobStore, asset_image_path, keyframe_path, scene_video_path
from .video_poller import VideoJobPoller

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

ASSET_IMAGE_ASPECT_RATIO = "16:9"
IDEA_COUNT = 3


# ── Prompts ──────────────────────────────────────────────────────────────────

IDEAS_PROMPT = """You are a creative director for a short-form video production platform.
The user wants to create a short video (TikTok/Shorts) about the topic: "{topic}".

Generate {count} distinct, creative video concepts based on this topic.
The concepts should be viral-worthy, engaging, and feasible to produce using AI tools.

Return a JSON array of objects with the following structure:
[
  {{
    "title": "Catchy Title",
    "description": "A brief description of the video concept, plot, and hook.",
    "metrics": {{
      "estimated_engagement": "High/Very High",
      "production_difficulty": "Low/Medium/High",
      "estimated_duration": "30s/60s"
    }},
    "visual_style": "Description of the visual style (e.g., Cinematic, Cartoon, Minimalist)"
  }}
]
"""

SCRIPT_PROMPT = """You are a professional screenwriter and cinematographer for viral short videos.

Topic: "{topic}"
Concept: "{idea}"

Create a complete script for this video.

For each scene, also act as a Director and describe the Start (0s) and End (Ns) frames visually.
The Start and End frames MUST show the progression of the action described.
Example:
- Action: "Man walks into room."
- Start Frame: "Wide shot, man outside closed door, hand reaching for handle."
- End Frame: "Man standing inside room, door open behind him."

Constraints:
- Total duration should be between 30-60 seconds.
- Each scene duration MUST be exactly 4, 6, or 8 seconds.

Return a JSON object:
{{
  "title": "Video Title",
  "scenes": [
    {{
      "id": 1,
      "visual": "General action description...",
      "audio": "Voiceover text...",
      "duration": 4,
      "characters": ["Name"],
      "start_frame_prompt": "Detailed description of the very first frame...",
      "end_frame_prompt": "Detailed description of the very last frame..."
    }}
  ]
}}
"""

ANALYSIS_PROMPT = """Analyze this video script and identify all recurring Characters, key Items, and Locations that appear VISUALLY on screen.

Script: {script}

STRICT EXCLUSION RULES:
- DO NOT include "Voiceover", "Narrator", "VO", "Speaker", "Off-screen voice".
- DO NOT include abstract concepts like "Happiness", "Speed", "Silence".
- DO NOT include "Camera", "Lens", "Lighting" as assets.
- ONLY include physical entities that exist in the world of the video and appear in multiple scenes.

For each entity, create a detailed visual description suitable for an AI Image Generator.
Identify which scene IDs they appear in.

Return a JSON object with a key "entities" containing an array:
{{
  "entities": [
    {{
      "name": "Protagonist (John)",
      "type": "character",
      "description": "Short description of role",
      "visual_prompt": "A young man in his 20s, messy brown hair, wearing a red hoodie, cinematic lighting",
      "appearances": [1, 3, 5]
    }}
  ]
}}
"""

CONCEPT_ART_PROMPT = """Create a professional {kind} SHEET / CONCEPT ART.
Layout: Wide format, neutral grey studio background.

Requirements:
- Main View: High-fidelity, detailed render of the subject.
- Detail Views: 2-3 smaller inset sketches showing different angles or close-ups.
- Annotations: Technical notes about materials, textures, or key features (visual style only, no text legibility required).

Subject: "{name}"
Visual Description: "{visual_prompt}"

Style: Triple-A Game Art / Cinematic Film Pre-production Art.
High contrast, clean lines, photorealistic textures.
"""


def build_video_prompt(scene: Scene) -> str:
    return (
        f"{scene.visual}. Vertical Video 9:16. Cinematic lighting, 4k, fluid motion. "
        f"{scene.audio}"
    ).strip()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _guess_image_type(url: str) -> str:
    guessed, _ = mimetypes.guess_type(url.split("?")[0])
    return guessed or "image/png"


# ═════════════════════════════════════════════════════════════════════════════
# Orchestrator
# ═════════════════════════════════════════════════════════════════════════════

class PipelineOrchestrator:
    """
    Usage:
        orchestrator = PipelineOrchestrator.from_env()

        ideas = await orchestrator.generate_ideas("deep sea creatures")
        project = await orchestrator.create_project(user_id, topic, ideas[0])
        script = await orchestrator.generate_script(topic, ideas[0].description)
        await orchestrator.save_script(project.id, script)

        assets = await orchestrator.analyze_script(project.id)
        await orchestrator.generate_keyframe(project.id, 0, FrameType.START)
        render = await orchestrator.generate_scene_video(project.id, 0)
    """

    def __init__(
        self,
        client: GeminiClient,
        store,
        blobs,
        synthesizer: Optional[KeyframeSynthesizer] = None,
        poller: Optional[VideoJobPoller] = None,
        ledger: Optional[SceneRenderLedger] = None,
        locks: Optional[RenderLocks] = None,
        skip_existing_assets: bool = False,
    ):
        self.client = client
        self.store = store
        self.blobs = blobs
        self.synthesizer = synthesizer or KeyframeSynthesizer(client)
        self.poller = poller or VideoJobPoller(client)
        self.ledger = ledger or SceneRenderLedger(store)
        self.locks = locks or RenderLocks()
        self.skip_existing_assets = skip_existing_assets

    @classmethod
    def from_env(cls) -> "PipelineOrchestrator":
        client = GeminiClient.from_env()
        return cls(
            client,
            SupabaseProjectStore.from_env(),
            R2BlobStore.from_env(),
            poller=VideoJobPoller.from_env(client),
            skip_existing_assets=_env_flag("ANALYSIS_SKIP_EXISTING"),
        )

    async def aclose(self):
        await self.client.aclose()
        await self.blobs.aclose()

    # ── Helpers ──────────────────────────────────────────────────────────

    def find_scene(self, project_id: str, scene_index: int) -> Scene:
        script = self.store.get_script(project_id)
        if not 0 <= scene_index < len(script.scenes):
            raise NotFoundError(
                f"Scene {scene_index} not found in project {project_id} "
                f"({len(script.scenes)} scenes)"
            )
        return script.scenes[scene_index]

    def _advance_project(self, project_id: str, target: ProjectStatus):
        """Move the project forward to `target`; never moves it back."""
        project = self.store.get_project(project_id)
        if not project.status.is_before(target):
            return
        self.store.update_project_status(project_id, target)
        logger.info(f"[{project_id}] project {project.status.value} → {target.value}")

    def _sync_completion(self, project_id: str, scene_count: int):
        renders = {
            render.scene_index: render
            for render in self.store.list_scene_renders(project_id)
        }
        done = all(
            index in renders and renders[index].status == RenderStatus.COMPLETED
            for index in range(scene_count)
        )
        if done:
            self._advance_project(project_id, ProjectStatus.COMPLETED)

    # ── Ideas & Project ──────────────────────────────────────────────────

    async def generate_ideas(self, topic: str) -> list[GeneratedIdea]:
        data = await self.client.generate_json(
            IDEAS_PROMPT.format(topic=topic, count=IDEA_COUNT)
        )
        if isinstance(data, dict):
            data = data.get("ideas") or data.get("concepts") or []
        if not isinstance(data, list):
            raise PermanentProviderError(f"Ideas response is not a list: {str(data)[:200]}")

        try:
            ideas = [GeneratedIdea.model_validate(item) for item in data]
        except ValidationError as e:
            raise PermanentProviderError(f"Ideas response failed validation: {e}") from e

        if not ideas:
            raise NoContentReturned(f"No ideas generated for topic '{topic}'")

        logger.info(f"Generated {len(ideas)} ideas for topic '{topic}'")
        return ideas

    async def create_project(self, user_id: str, topic: str, idea: GeneratedIdea) -> Project:
        project = self.store.create_project(user_id=user_id, title=idea.title, theme=topic)
        logger.info(f"[{project.id}] project created for user {user_id}: '{idea.title}'")

        try:
            self.store.save_idea(project.id, idea)
        except Exception as e:
            # The project is usable without its idea record
            logger.warning(f"[{project.id}] failed to save selected idea: {e}")

        return project

    # ── Script ───────────────────────────────────────────────────────────

    async def generate_script(self, topic: str, idea_description: str) -> Script:
        data = await self.client.generate_json(
            SCRIPT_PROMPT.format(topic=topic, idea=idea_description)
        )
        try:
            script = Script.model_validate(data)
        except ValidationError as e:
            raise PermanentProviderError(f"Script response failed validation: {e}") from e

        if not script.scenes:
            raise NoContentReturned("Script generation returned no scenes")

        if not script.duration_in_range:
            logger.warning(
                f"Generated script '{script.title}' runs {script.total_duration}s, "
                f"outside the 30-60s target"
            )
        logger.info(f"Generated script '{script.title}': {len(script.scenes)} scenes")
        return script

    async def save_script(self, project_id: str, script: Script) -> Script:
        self.store.upsert_script(project_id, script)
        self._advance_project(project_id, ProjectStatus.ASSETS)
        logger.info(f"[{project_id}] script saved ({len(script.scenes)} scenes)")
        return script

    async def get_script(self, project_id: str) -> Script:
        return self.store.get_script(project_id)

    # ── Assets ───────────────────────────────────────────────────────────

    async def list_assets(self, project_id: str) -> list[Asset]:
        return self.store.get_assets(project_id)

    def _parse_entities(self, project_id: str, data) -> list[AssetEntity]:
        raw = data.get("entities") if isinstance(data, dict) else data
        if not isinstance(raw, list):
            raise PermanentProviderError(f"Analysis response has no entity list: {str(data)[:200]}")

        entities = []
        for item in raw:
            try:
                entities.append(AssetEntity.model_validate(item))
            except ValidationError as e:
                logger.warning(f"[{project_id}] skipping malformed entity {item!r}: {e}")
        return entities

    async def analyze_script(self, project_id: str) -> list[Asset]:
        """Extract recurring entities from the script and store them as pending assets."""
        script = self.store.get_script(project_id)
        data = await self.client.generate_json(
            ANALYSIS_PROMPT.format(script=json.dumps(script.model_dump(mode="json")))
        )
        entities = self._parse_entities(project_id, data)

        if self.skip_existing_assets:
            existing = {asset.name.strip().lower() for asset in self.store.get_assets(project_id)}
            kept = [e for e in entities if e.name.strip().lower() not in existing]
            if len(kept) < len(entities):
                logger.info(
                    f"[{project_id}] skipping {len(entities) - len(kept)} already-known entities"
                )
            entities = kept

        assets = self.store.insert_assets(project_id, entities)
        metrics.inc_counter("assets.extracted", len(assets))
        logger.info(f"[{project_id}] analysis stored {len(assets)} assets")
        return assets

    async def generate_asset_image(self, asset_id: str) -> Asset:
        asset = self.store.get_asset(asset_id)
        if not asset.visual_prompt:
            raise NotFoundError(f"Asset {asset_id} has no visual prompt")

        prompt = CONCEPT_ART_PROMPT.format(
            kind=asset.type.value.upper(),
            name=asset.name,
            visual_prompt=asset.visual_prompt,
        )
        data, mime_type = await self.client.generate_image(
            ImageRequest(prompt=prompt, aspect_ratio=ASSET_IMAGE_ASPECT_RATIO)
        )
        url = await self.blobs.put(
            data, mime_type, asset_image_path(asset.project_id, asset_id, mime_type)
        )

        updated = asset.model_copy(update={"url": url, "status": AssetStatus.GENERATED})
        self.store.update_asset(updated)
        metrics.inc_counter("assets.generated")
        logger.info(f"[{asset.project_id}] asset '{asset.name}' generated: {url}")
        return updated

    # ── Keyframes ────────────────────────────────────────────────────────

    async def generate_keyframe(
        self,
        project_id: str,
        scene_index: int,
        frame_type: FrameType,
    ) -> str:
        """Generate, upload and record one keyframe. Returns its public URL."""
        scene = self.find_scene(project_id, scene_index)
        assets = self.store.get_assets(project_id)

        image = await self.synthesizer.synthesize(scene, frame_type, assets)
        url = await self.blobs.put(
            image.data,
            image.mime_type,
            keyframe_path(project_id, scene_index, frame_type, image.mime_type),
        )

        self.ledger.ensure_exists(project_id, scene_index)
        self.ledger.record_keyframe(project_id, scene_index, frame_type, url)
        self._advance_project(project_id, ProjectStatus.STORYBOARD)
        metrics.inc_counter("keyframes.generated")
        return url

    # ── Scene renders ────────────────────────────────────────────────────

    async def list_scene_renders(self, project_id: str) -> list[SceneRender]:
        return self.store.list_scene_renders(project_id)

    async def initialize_renders(self, project_id: str) -> list[SceneRender]:
        """Create a pending ledger row for every scene in the script."""
        script = self.store.get_script(project_id)
        self.ledger.ensure_all(project_id, len(script.scenes))
        return self.store.list_scene_renders(project_id)

    def reserve_render(self, project_id: str, scene_index: int):
        """
        Take the scene's render slot for a later run_scene_video_background.

        Raises NotFoundError for an unknown project or scene and
        RenderInProgress if the slot is already taken.
        """
        self.find_scene(project_id, scene_index)
        if not self.locks.try_acquire(project_id, scene_index):
            raise RenderInProgress(project_id, scene_index)

    async def _load_reference(
        self,
        project_id: str,
        scene_index: int,
        render: Optional[SceneRender],
        frame_type: FrameType,
    ) -> Optional[ReferenceFrame]:
        url = render.frame_url(frame_type) if render else None
        if not url:
            return None
        try:
            data = await self.blobs.fetch(url)
        except StorageError as e:
            logger.warning(f"[{project_id}/{scene_index}] {frame_type.value} frame unavailable: {e}")
            return None
        return ReferenceFrame(data=data, mime_type=_guess_image_type(url))

    async def generate_scene_video(self, project_id: str, scene_index: int) -> SceneRender:
        """
        Render one scene's clip from its keyframes.

        Exclusive per scene: a second concurrent call raises RenderInProgress
        without touching the ledger. Unknown project or scene raises
        NotFoundError. Every failure after that is recorded as `failed` on the
        ledger and the render is returned.
        """
        with self.locks.hold(project_id, scene_index):
            return await self._render_scene_video(project_id, scene_index)

    async def _render_scene_video(self, project_id: str, scene_index: int) -> SceneRender:
        script = self.store.get_script(project_id)
        if not 0 <= scene_index < len(script.scenes):
            raise NotFoundError(f"Scene {scene_index} not found in project {project_id}")
        scene = script.scenes[scene_index]

        existing = self.ledger.get(project_id, scene_index)
        start_frame = await self._load_reference(project_id, scene_index, existing, FrameType.START)
        end_frame = await self._load_reference(project_id, scene_index, existing, FrameType.END)

        self.ledger.ensure_exists(project_id, scene_index)
        self.ledger.begin_video_render(project_id, scene_index)
        metrics.inc_counter("renders.rendering_video")
        logger.info(
            f"[{project_id}/{scene_index}] video render started "
            f"(start_frame={'yes' if start_frame else 'no'}, end_frame={'yes' if end_frame else 'no'})"
        )

        status = RenderStatus.FAILED
        try:
            self._advance_project(project_id, ProjectStatus.PRODUCTION)
            video = await self.poller.render(build_video_prompt(scene), start_frame, end_frame)
            url = await self.blobs.put(video, "video/mp4", scene_video_path(project_id, scene_index))
            self.ledger.complete_video_render(project_id, scene_index, url)
            status = RenderStatus.COMPLETED
            logger.info(f"[{project_id}/{scene_index}] video render completed: {url}")
        except PipelineError as e:
            logger.error(f"[{project_id}/{scene_index}] video render failed: {e}")
            metrics.record_error("generate_scene_video", type(e).__name__, str(e), project_id)
            self.ledger.fail_video_render(project_id, scene_index)
        except Exception as e:
            logger.error(
                f"[{project_id}/{scene_index}] video render crashed: {e}", exc_info=True
            )
            metrics.record_error("generate_scene_video", "unexpected", str(e), project_id)
            self.ledger.fail_video_render(project_id, scene_index)

        metrics.inc_counter(f"renders.{status.value}")

        if status == RenderStatus.COMPLETED:
            try:
                self._sync_completion(project_id, len(script.scenes))
            except Exception as e:
                logger.warning(f"[{project_id}] could not update project completion: {e}")

        return self.ledger.get(project_id, scene_index) or SceneRender(
            project_id=project_id, scene_index=scene_index, status=status
        )

    async def run_scene_video_background(self, project_id: str, scene_index: int):
        """
        Render a scene whose slot was taken with reserve_render, then free
        the slot. The caller already answered 202, so errors are only logged.
        """
        try:
            await self._render_scene_video(project_id, scene_index)
        except NotFoundError as e:
            logger.error(f"Background render rejected: {e}")
        finally:
            self.locks.release(project_id, scene_index)
