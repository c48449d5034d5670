"""
Shared fixtures for the pipeline tests.
"""

import pytest

from storyreel import metrics
from storyreel.pipeline.models import Scene, Script
from storyreel.pipeline.orchestrator import PipelineOrchestrator
from storyreel.pipeline.video_poller import VideoJobPoller

from .fakes import FakeGeminiBackend, InMemoryBlobStore, InMemoryProjectStore


@pytest.fixture(autouse=True)
def clean_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def backend() -> FakeGeminiBackend:
    return FakeGeminiBackend()


@pytest.fixture
def store() -> InMemoryProjectStore:
    return InMemoryProjectStore()


@pytest.fixture
def blobs() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def two_scene_script() -> Script:
    return Script(
        title="The Last Keeper",
        scenes=[
            Scene(
                id=1,
                visual="John walks along the cliff toward the old lighthouse",
                audio="Nobody had climbed those stairs in years.",
                duration=4,
                characters=["John"],
            ),
            Scene(
                id=2,
                visual="Waves crash against black rocks at dusk",
                audio="The sea remembered.",
                duration=6,
            ),
        ],
    )


@pytest.fixture
def orchestrator(backend, store, blobs) -> PipelineOrchestrator:
    client = backend.client()
    return PipelineOrchestrator(
        client,
        store,
        blobs,
        poller=VideoJobPoller(client, poll_interval=0, max_wait=10),
    )


@pytest.fixture
def project(store, two_scene_script):
    """Project with the two-scene script saved."""
    created = store.create_project("user-1", "The Last Keeper", "lighthouses")
    store.upsert_script(created.id, two_scene_script)
    return created
