"""
Pydantic models and enums for the production pipeline.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


# ── Project ──────────────────────────────────────────────────────────────────

class ProjectStatus(str, Enum):
    SCRIPTING = "scripting"
    ASSETS = "assets"
    STORYBOARD = "storyboard"
    PRODUCTION = "production"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return list(ProjectStatus).index(self)

    def is_before(self, other: "ProjectStatus") -> bool:
        return self.rank < other.rank


class Project(BaseModel):
    id: str
    user_id: str
    title: str = ""
    theme: str = ""
    status: ProjectStatus = ProjectStatus.SCRIPTING


# ── Ideas ────────────────────────────────────────────────────────────────────

class IdeaMetrics(BaseModel):
    estimated_engagement: str = ""
    production_difficulty: str = "Medium"  # Low, Medium, High
    estimated_duration: str = ""


class GeneratedIdea(BaseModel):
    title: str
    description: str
    metrics: IdeaMetrics = Field(default_factory=IdeaMetrics)
    visual_style: str = ""


# ── Script ───────────────────────────────────────────────────────────────────

SCENE_DURATIONS = (4, 6, 8)
MIN_SCRIPT_SECONDS = 30
MAX_SCRIPT_SECONDS = 60


class FrameType(str, Enum):
    START = "start"
    END = "end"


class Scene(BaseModel):
    id: int
    visual: str
    audio: str = ""
    duration: int = 4
    characters: list[str] = Field(default_factory=list)
    start_frame_prompt: Optional[str] = None
    end_frame_prompt: Optional[str] = None

    @field_validator("duration", mode="before")
    @classmethod
    def snap_duration(cls, value):
        # The video model only renders 4, 6 or 8 second clips
        try:
            seconds = float(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"duration must be a number of seconds, got {value!r}") from e
        return min(SCENE_DURATIONS, key=lambda allowed: abs(allowed - seconds))

    @property
    def text(self) -> str:
        """Visual + voiceover, the haystack for asset matching."""
        return f"{self.visual} {self.audio}"

    def frame_prompt(self, frame_type: FrameType) -> Optional[str]:
        prompt = (
            self.start_frame_prompt
            if frame_type == FrameType.START
            else self.end_frame_prompt
        )
        if prompt and prompt.strip():
            return prompt
        return None


class Script(BaseModel):
    title: str = ""
    scenes: list[Scene] = Field(default_factory=list)

    @property
    def total_duration(self) -> int:
        return sum(scene.duration for scene in self.scenes)

    @property
    def duration_in_range(self) -> bool:
        """Advisory only: 30–60s is the target, nothing enforces it."""
        return MIN_SCRIPT_SECONDS <= self.total_duration <= MAX_SCRIPT_SECONDS


# ── Assets ───────────────────────────────────────────────────────────────────

class AssetType(str, Enum):
    CHARACTER = "character"
    ITEM = "item"
    LOCATION = "location"


class AssetStatus(str, Enum):
    PENDING_GENERATION = "pending_generation"
    GENERATED = "generated"


def _coerce_asset_type(value):
    if isinstance(value, AssetType):
        return value
    normalized = str(value or "").strip().lower()
    if normalized in AssetType._value2member_map_:
        return normalized
    return AssetType.ITEM.value


class AssetEntity(BaseModel):
    """One entity as returned by script analysis, before it is stored."""
    name: str
    type: AssetType = AssetType.ITEM
    description: str = ""
    visual_prompt: str = ""
    appearances: list[int] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        return _coerce_asset_type(value)


class Asset(BaseModel):
    id: Optional[str] = None
    project_id: str
    name: str
    type: AssetType = AssetType.ITEM
    description: str = ""
    visual_prompt: str = ""
    appearances: list[int] = Field(default_factory=list)
    status: AssetStatus = AssetStatus.PENDING_GENERATION
    url: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        return _coerce_asset_type(value)

    @property
    def is_generated(self) -> bool:
        return self.status == AssetStatus.GENERATED and bool(self.url)


# ── Scene Render Ledger ──────────────────────────────────────────────────────

class RenderStatus(str, Enum):
    PENDING = "pending"
    RENDERING_VIDEO = "rendering_video"
    COMPLETED = "completed"
    FAILED = "failed"


# Keyframe generation never persisted this state; rows written by older
# builds are read back as pending.
LEGACY_RENDER_STATUSES = {"generating_keyframes": RenderStatus.PENDING.value}


class SceneRender(BaseModel):
    project_id: str
    scene_index: int
    start_frame_url: Optional[str] = None
    end_frame_url: Optional[str] = None
    status: RenderStatus = RenderStatus.PENDING
    video_url: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def fold_legacy_status(cls, value):
        if isinstance(value, str):
            return LEGACY_RENDER_STATUSES.get(value, value)
        return value

    def frame_url(self, frame_type: FrameType) -> Optional[str]:
        if frame_type == FrameType.START:
            return self.start_frame_url
        return self.end_frame_url


# ── API Request / Response Models ────────────────────────────────────────────

class IdeasRequest(BaseModel):
    topic: str = Field(..., min_length=1)


class ProjectCreateRequest(BaseModel):
    user_id: str
    topic: str = Field(..., min_length=1)
    idea: GeneratedIdea


class ScriptGenerateRequest(BaseModel):
    topic: str = Field(..., min_length=1)
    idea_description: str


class KeyframeResponse(BaseModel):
    project_id: str
    scene_index: int
    frame_type: FrameType
    url: str


class RenderAccepted(BaseModel):
    project_id: str
    scene_index: int
    status: RenderStatus = RenderStatus.RENDERING_VIDEO
