import pytest
from pydantic import ValidationError

from storyreel.pipeline.models import (
    Asset,
    AssetEntity,
    AssetType,
    FrameType,
    ProjectStatus,
    RenderStatus,
    Scene,
    SceneRender,
    Script,
)


def test_scene_duration_snaps_to_allowed():
    assert Scene(id=1, visual="v", duration=3).duration == 4
    assert Scene(id=1, visual="v", duration=6).duration == 6
    assert Scene(id=1, visual="v", duration="7.6").duration == 8
    assert Scene(id=1, visual="v", duration=30).duration == 8


def test_scene_duration_must_be_numeric():
    for bad in (None, [4], "long"):
        with pytest.raises(ValidationError):
            Scene(id=1, visual="v", duration=bad)


def test_scene_blank_frame_prompt_is_none():
    scene = Scene(id=1, visual="v", start_frame_prompt="  ", end_frame_prompt="end")
    assert scene.frame_prompt(FrameType.START) is None
    assert scene.frame_prompt(FrameType.END) == "end"


def test_script_duration_is_advisory():
    short = Script(title="t", scenes=[Scene(id=1, visual="v", duration=4)])
    assert short.total_duration == 4
    assert not short.duration_in_range

    full = Script(title="t", scenes=[Scene(id=i, visual="v", duration=8) for i in range(5)])
    assert full.total_duration == 40
    assert full.duration_in_range


def test_asset_type_is_normalized():
    assert AssetEntity(name="John", type="Character").type == AssetType.CHARACTER
    assert AssetEntity(name="Fog", type="weather").type == AssetType.ITEM
    assert Asset(project_id="p", name="Pier", type=" LOCATION ").type == AssetType.LOCATION


def test_asset_is_generated_needs_url():
    asset = Asset(project_id="p", name="John", status="generated")
    assert not asset.is_generated
    assert asset.model_copy(update={"url": "https://cdn.test/a.png"}).is_generated


def test_legacy_render_status_reads_as_pending():
    render = SceneRender(project_id="p", scene_index=0, status="generating_keyframes")
    assert render.status == RenderStatus.PENDING


def test_project_status_ordering():
    assert ProjectStatus.SCRIPTING.is_before(ProjectStatus.ASSETS)
    assert ProjectStatus.PRODUCTION.is_before(ProjectStatus.COMPLETED)
    assert not ProjectStatus.STORYBOARD.is_before(ProjectStatus.ASSETS)
    assert not ProjectStatus.ASSETS.is_before(ProjectStatus.ASSETS)
