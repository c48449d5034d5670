"""
Project store backed by Supabase (service role, bypasses RLS).

Tables:
  projects       id, user_id, title, theme, status
  ideas          project_id, title, description, metrics, selected
  scripts        project_id (unique), content jsonb, version
  assets         id, project_id, type, url, prompt, metadata jsonb
                 metadata = {name, description, appearances, type, status}
  scene_renders  project_id, scene_index (unique together),
                 start_frame_url, end_frame_url, status, video_url

Every call is a single-row (or single-statement) operation; nothing here
needs a transaction.
"""

import os
import logging
from typing import Iterable, Optional

from supabase import Client, create_client

from .errors import NotFoundError
from .models import (
    Asset,
    AssetEntity,
    AssetStatus,
    AssetType,
    GeneratedIdea,
    Project,
    ProjectStatus,
    RenderStatus,
    SceneRender,
    Script,
)

logger = logging.getLogger(__name__)

SCENE_RENDER_CONFLICT = "project_id,scene_index"


# ── Row mapping ──────────────────────────────────────────────────────────────

def _row_to_asset(row: dict) -> Asset:
    meta = row.get("metadata") or {}
    return Asset(
        id=str(row["id"]) if row.get("id") is not None else None,
        project_id=row["project_id"],
        name=meta.get("name", "Asset"),
        type=meta.get("type", AssetType.ITEM.value),
        description=meta.get("description", ""),
        visual_prompt=row.get("prompt") or "",
        appearances=meta.get("appearances") or [],
        status=meta.get("status", AssetStatus.PENDING_GENERATION.value),
        url=row.get("url") or "",
    )


def _asset_to_row(asset: Asset) -> dict:
    return {
        "project_id": asset.project_id,
        # Storage-level kind; the entity type lives in metadata
        "type": "character_sheet" if asset.type == AssetType.CHARACTER else "image",
        "url": asset.url,
        "prompt": asset.visual_prompt,
        "metadata": {
            "name": asset.name,
            "description": asset.description,
            "appearances": asset.appearances,
            "type": asset.type.value,
            "status": asset.status.value,
        },
    }


def _row_to_project(row: dict) -> Project:
    return Project(
        id=str(row["id"]),
        user_id=row["user_id"],
        title=row.get("title") or "",
        theme=row.get("theme") or "",
        status=row.get("status") or ProjectStatus.SCRIPTING.value,
    )


def _row_to_render(row: dict) -> SceneRender:
    return SceneRender(
        project_id=row["project_id"],
        scene_index=row["scene_index"],
        start_frame_url=row.get("start_frame_url"),
        end_frame_url=row.get("end_frame_url"),
        status=row.get("status") or RenderStatus.PENDING.value,
        video_url=row.get("video_url"),
    )


# ═════════════════════════════════════════════════════════════════════════════
# Store
# ═════════════════════════════════════════════════════════════════════════════

class SupabaseProjectStore:
    def __init__(self, client: Client):
        self._sb = client

    @classmethod
    def from_env(cls) -> "SupabaseProjectStore":
        url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL", "")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        return cls(create_client(url, key))

    def _first(self, query) -> Optional[dict]:
        result = query.limit(1).execute()
        return result.data[0] if result.data else None

    # ── Projects ─────────────────────────────────────────────────────────

    def create_project(self, user_id: str, title: str, theme: str) -> Project:
        result = self._sb.table("projects").insert({
            "user_id": user_id,
            "title": title,
            "theme": theme,
            "status": ProjectStatus.SCRIPTING.value,
        }).execute()
        return _row_to_project(result.data[0])

    def get_project(self, project_id: str) -> Project:
        row = self._first(self._sb.table("projects").select("*").eq("id", project_id))
        if not row:
            raise NotFoundError(f"Project {project_id} not found")
        return _row_to_project(row)

    def update_project_status(self, project_id: str, status: ProjectStatus):
        self._sb.table("projects").update({"status": status.value}).eq("id", project_id).execute()

    def save_idea(self, project_id: str, idea: GeneratedIdea):
        self._sb.table("ideas").insert({
            "project_id": project_id,
            "title": idea.title,
            "description": idea.description,
            "metrics": idea.metrics.model_dump(),
            "selected": True,
        }).execute()

    # ── Scripts ──────────────────────────────────────────────────────────

    def get_script(self, project_id: str) -> Script:
        row = self._first(self._sb.table("scripts").select("*").eq("project_id", project_id))
        if not row:
            raise NotFoundError(f"No script found for project {project_id}")
        return Script(**(row.get("content") or {}))

    def upsert_script(self, project_id: str, script: Script):
        self._sb.table("scripts").upsert(
            {
                "project_id": project_id,
                "content": script.model_dump(mode="json"),
                "version": 1,
            },
            on_conflict="project_id",
        ).execute()

    # ── Assets ───────────────────────────────────────────────────────────

    def get_assets(self, project_id: str) -> list[Asset]:
        result = self._sb.table("assets").select("*").eq("project_id", project_id).execute()
        return [_row_to_asset(row) for row in result.data or []]

    def get_asset(self, asset_id: str) -> Asset:
        row = self._first(self._sb.table("assets").select("*").eq("id", asset_id))
        if not row:
            raise NotFoundError(f"Asset {asset_id} not found")
        return _row_to_asset(row)

    def insert_assets(self, project_id: str, entities: Iterable[AssetEntity]) -> list[Asset]:
        rows = [
            _asset_to_row(Asset(project_id=project_id, **entity.model_dump()))
            for entity in entities
        ]
        if not rows:
            return []
        result = self._sb.table("assets").insert(rows).execute()
        return [_row_to_asset(row) for row in result.data or []]

    def update_asset(self, asset: Asset):
        """Persist url + status (the generated image) for an existing asset."""
        row = _asset_to_row(asset)
        self._sb.table("assets").update({
            "url": row["url"],
            "metadata": row["metadata"],
        }).eq("id", asset.id).execute()

    # ── Scene renders ────────────────────────────────────────────────────

    def get_scene_render(self, project_id: str, scene_index: int) -> Optional[SceneRender]:
        row = self._first(
            self._sb.table("scene_renders")
            .select("*")
            .match({"project_id": project_id, "scene_index": scene_index})
        )
        return _row_to_render(row) if row else None

    def list_scene_renders(self, project_id: str) -> list[SceneRender]:
        result = (
            self._sb.table("scene_renders")
            .select("*")
            .eq("project_id", project_id)
            .order("scene_index")
            .execute()
        )
        return [_row_to_render(row) for row in result.data or []]

    def upsert_scene_renders(self, project_id: str, scene_indices: Iterable[int]):
        """Create missing rows as pending; existing rows are left untouched."""
        rows = [
            {
                "project_id": project_id,
                "scene_index": index,
                "status": RenderStatus.PENDING.value,
            }
            for index in scene_indices
        ]
        if not rows:
            return
        self._sb.table("scene_renders").upsert(
            rows,
            on_conflict=SCENE_RENDER_CONFLICT,
            ignore_duplicates=True,
        ).execute()

    def update_scene_render(self, project_id: str, scene_index: int, fields: dict):
        (
            self._sb.table("scene_renders")
            .update(fields)
            .match({"project_id": project_id, "scene_index": scene_index})
            .execute()
        )
