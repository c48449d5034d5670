import pytest

from storyreel.pipeline.errors import RenderInProgress
from storyreel.pipeline.models import FrameType, RenderStatus
from storyreel.pipeline.render_ledger import RenderLocks, SceneRenderLedger


@pytest.fixture
def ledger(store):
    return SceneRenderLedger(store)


def test_ensure_exists_is_idempotent(ledger, store):
    ledger.ensure_exists("p1", 0)
    ledger.record_keyframe("p1", 0, FrameType.START, "https://cdn.test/start.png")
    ledger.ensure_exists("p1", 0)

    render = ledger.get("p1", 0)
    assert render.status == RenderStatus.PENDING
    assert render.start_frame_url == "https://cdn.test/start.png"
    assert len(store.list_scene_renders("p1")) == 1


def test_ensure_all_creates_pending_rows(ledger, store):
    ledger.ensure_exists("p1", 1)
    ledger.begin_video_render("p1", 1)
    ledger.ensure_all("p1", 3)

    renders = store.list_scene_renders("p1")
    assert [r.scene_index for r in renders] == [0, 1, 2]
    assert [r.status for r in renders] == [
        RenderStatus.PENDING, RenderStatus.RENDERING_VIDEO, RenderStatus.PENDING,
    ]


def test_frame_writes_are_independent(ledger):
    ledger.ensure_exists("p1", 0)
    ledger.begin_video_render("p1", 0)
    ledger.record_keyframe("p1", 0, FrameType.END, "https://cdn.test/end.png")

    render = ledger.get("p1", 0)
    assert render.end_frame_url == "https://cdn.test/end.png"
    assert render.start_frame_url is None
    assert render.status == RenderStatus.RENDERING_VIDEO

    ledger.record_keyframe("p1", 0, FrameType.START, "https://cdn.test/start.png")
    render = ledger.get("p1", 0)
    assert render.start_frame_url == "https://cdn.test/start.png"
    assert render.end_frame_url == "https://cdn.test/end.png"


def test_last_writer_wins(ledger):
    ledger.ensure_exists("p1", 0)
    ledger.begin_video_render("p1", 0)
    ledger.complete_video_render("p1", 0, "https://cdn.test/v.mp4")
    assert ledger.get("p1", 0).status == RenderStatus.COMPLETED

    ledger.fail_video_render("p1", 0)
    render = ledger.get("p1", 0)
    assert render.status == RenderStatus.FAILED
    assert render.video_url == "https://cdn.test/v.mp4"

    ledger.begin_video_render("p1", 0)
    assert ledger.get("p1", 0).status == RenderStatus.RENDERING_VIDEO


def test_get_missing_row(ledger):
    assert ledger.get("p1", 7) is None


class TestRenderLocks:
    def test_second_acquire_fails(self):
        locks = RenderLocks()
        assert locks.try_acquire("p1", 0)
        assert not locks.try_acquire("p1", 0)
        assert locks.try_acquire("p1", 1)
        assert locks.active() == 2

        locks.release("p1", 0)
        assert locks.try_acquire("p1", 0)

    def test_hold_raises_when_taken(self):
        locks = RenderLocks()
        with locks.hold("p1", 0):
            assert locks.is_held("p1", 0)
            with pytest.raises(RenderInProgress) as exc:
                with locks.hold("p1", 0):
                    pass
            assert exc.value.scene_index == 0
        assert not locks.is_held("p1", 0)

    def test_hold_releases_on_error(self):
        locks = RenderLocks()
        with pytest.raises(ValueError):
            with locks.hold("p1", 0):
                raise ValueError("boom")
        assert locks.active() == 0
