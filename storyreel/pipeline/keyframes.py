"""
Keyframe synthesis: one still image for a scene's start or end state.

Two phases per frame:
  1. Visual state. Use the script's start_frame_prompt / end_frame_prompt
     when present. Otherwise ask Gemini (text) to split the scene's action
     into a t=0 and a t=duration description.
  2. Image. Description + asset reference block + fixed vertical cinematic
     style, sent to Gemini image generation at 9:16.

The bytes are returned to the orchestrator, which uploads them and records
the URL on the scene's render row.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from .asset_matcher import build_reference_block, match_assets
from .errors import GenerationError
from .gemini_client import GeminiClient, ImageRequest
from .models import Asset, FrameType, Scene

logger = logging.getLogger(__name__)

KEYFRAME_ASPECT_RATIO = "9:16"

DIRECTOR_PROMPT = """You are a Cinematography Director.
Analyze this scene action and break it down into two distinct visual states.

Action: "{visual}"
Duration: {duration} seconds.

Task: Describe the VISUAL STATE at the exact Start (0.0s) and the exact End ({duration}.0s).
Focus on the change in subject pose, camera position, or object location.

If the action is "A man walks into a room":
- Start: "Wide shot, door closed, man standing outside reaching for handle."
- End: "Man standing inside the room, door open behind him."

Return ONLY a JSON object:
{{
  "start_visual": "Detailed visual description of the starting frame...",
  "end_visual": "Detailed visual description of the ending frame..."
}}
"""

KEYFRAME_PROMPT = """ROLE: Expert Cinematographer.
TASK: Generate a single 9:16 Keyframe image.

VISUAL DESCRIPTION:
"{description}"

STRICT CONSISTENCY ASSETS (Merge naturally):
{references}

STYLE: Photorealistic, 8k, Unreal Engine 5 render style, Volumetric lighting, Cinematic Color Grading.
ASPECT RATIO: 9:16 (Vertical Full Screen).
"""


@dataclass
class FrameStates:
    start_visual: str
    end_visual: str

    def for_frame(self, frame_type: FrameType) -> str:
        return self.start_visual if frame_type == FrameType.START else self.end_visual


@dataclass
class KeyframeImage:
    data: bytes
    mime_type: str = "image/png"
    description: str = ""


def build_keyframe_prompt(description: str, reference_block: str) -> str:
    return KEYFRAME_PROMPT.format(
        description=description,
        references=reference_block or "(none)",
    )


class KeyframeSynthesizer:
    def __init__(self, client: GeminiClient):
        self._client = client

    async def decompose(self, scene: Scene) -> FrameStates:
        """
        Start / end visual states for a scene.

        Explicit prompts from the script win and skip the text call. The
        decomposition is advisory: on any provider failure, or an empty
        field, the scene's own visual stands in.
        """
        start = scene.frame_prompt(FrameType.START)
        end = scene.frame_prompt(FrameType.END)
        if start and end:
            return FrameStates(start_visual=start, end_visual=end)

        try:
            data = await self._client.generate_json(
                DIRECTOR_PROMPT.format(visual=scene.visual, duration=scene.duration)
            )
        except GenerationError as e:
            logger.warning(f"State decomposition failed for scene {scene.id}, using visual: {e}")
            data = {}

        if not isinstance(data, dict):
            data = {}

        return FrameStates(
            start_visual=start or str(data.get("start_visual") or "").strip() or scene.visual,
            end_visual=end or str(data.get("end_visual") or "").strip() or scene.visual,
        )

    async def describe_frame(self, scene: Scene, frame_type: FrameType) -> str:
        explicit = scene.frame_prompt(frame_type)
        if explicit:
            return explicit
        states = await self.decompose(scene)
        return states.for_frame(frame_type)

    async def synthesize(
        self,
        scene: Scene,
        frame_type: FrameType,
        assets: Iterable[Asset],
    ) -> KeyframeImage:
        """Raises NoImageData if the provider answers without an image."""
        relevant = match_assets(scene.text, assets)
        description = await self.describe_frame(scene, frame_type)
        prompt = build_keyframe_prompt(description, build_reference_block(relevant))

        logger.info(
            f"Keyframe {frame_type.value} for scene {scene.id}: "
            f"{len(relevant)} reference asset(s), prompt {len(prompt)} chars"
        )

        data, mime_type = await self._client.generate_image(
            ImageRequest(prompt=prompt, aspect_ratio=KEYFRAME_ASPECT_RATIO)
        )
        return KeyframeImage(data=data, mime_type=mime_type, description=description)
