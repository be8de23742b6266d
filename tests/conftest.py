"""Pytest configuration and shared fixtures.

Puts ``backend/`` on ``sys.path`` so tests can import the ``clipweaver``
package without installing it, and provides an in-memory job store, a
scriptable fake provider and a notification sink that records every publish.
"""
import os
import sys
from collections import deque
from typing import Any

import pytest
import pytest_asyncio

BACKEND = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend"))
if BACKEND not in sys.path:
    sys.path.insert(0, BACKEND)

from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from clipweaver.database import init_db, make_session_factory  # noqa: E402
from clipweaver.errors import TransportError  # noqa: E402
from clipweaver.models.job import JobStatus  # noqa: E402
from clipweaver.services.job_repository import JobRepository  # noqa: E402
from clipweaver.services.orchestrator import Orchestrator  # noqa: E402
from clipweaver.services.provider_registry import ProviderRegistry  # noqa: E402
from clipweaver.services.providers.base import (  # noqa: E402
    ArtifactPaths,
    PollResult,
    ProviderCapabilities,
    SubmitResult,
    VideoProvider,
)


class FakeProvider(VideoProvider):
    """Provider whose poll answers are scripted per native id.

    Queue ``PollResult`` objects (or exceptions to raise) in ``polls``.
    When the queue is empty the last answer repeats.
    """

    name = "fake"
    capabilities = ProviderCapabilities(
        models=("A-fast", "A-pro"),
        durations=(4, 8),
        aspect_ratios=("16:9", "9:16"),
        resolutions=("720p", "1080p"),
        max_reference_images=1,
    )

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self.submitted: list = []
        self.polls: deque = deque()
        self.poll_calls = 0
        self.fetch_calls = 0
        self.fail_fetch = False
        self._last: Any = PollResult(status=JobStatus.QUEUED)
        self._counter = 0

    async def submit(self, request):
        self.submitted.append(request)
        self._counter += 1
        return SubmitResult(native_id=f"op-{self._counter}", metadata={"schema": "fake.op/v1"})

    async def poll(self, native_id):
        self.poll_calls += 1
        if self.polls:
            self._last = self.polls.popleft()
        if isinstance(self._last, Exception):
            raise self._last
        return self._last

    async def fetch_artifact(self, native_id, destination_id):
        self.fetch_calls += 1
        if self.fail_fetch:
            raise TransportError("connection reset", provider=self.name)
        return ArtifactPaths(
            video_path=self._artifact_path(destination_id, ".mp4"),
            thumbnail_path=self._artifact_path(destination_id, "_thumb.webp"),
        )


class FakeExtendingProvider(FakeProvider):
    """Same fake, but advertising remix and native extension."""

    name = "fakex"
    capabilities = ProviderCapabilities(
        models=("X-1",),
        durations=(4, 8),
        aspect_ratios=("16:9", "9:16"),
        resolutions=("720p", "1080p"),
        supports_remix=True,
        supports_extension=True,
    )

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self.extended: list = []
        self.remixed: list = []

    async def remix(self, native_id, prompt):
        self.remixed.append((native_id, prompt))
        self._counter += 1
        return SubmitResult(native_id=f"remix-{self._counter}")

    async def extend(self, native_id, prompt, duration, metadata):
        self.extended.append((native_id, prompt, duration, metadata))
        self._counter += 1
        return SubmitResult(native_id=f"ext-{self._counter}")


class RecordingSink:
    """NotificationSink that keeps every publish in memory."""

    def __init__(self):
        self.messages: list[dict[str, Any]] = []

    async def publish(self, owner_id, job_id, fields, snapshot=None):
        self.messages.append(
            {"owner_id": owner_id, "job_id": job_id, "fields": fields, "job": snapshot}
        )

    def for_job(self, job_id: str) -> list[dict[str, Any]]:
        return [m for m in self.messages if m["job_id"] == job_id]


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def repository(session_factory):
    return JobRepository(session_factory)


@pytest.fixture
def registry(tmp_path):
    registry = ProviderRegistry(media_dir=str(tmp_path), credentials={"fake": "k", "fakex": "k"})
    registry.register(FakeProvider)
    registry.register(FakeExtendingProvider)
    return registry


@pytest.fixture
def fake(registry):
    return registry.get_client("fake")


@pytest.fixture
def fakex(registry):
    return registry.get_client("fakex")


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def frame_extractor():
    calls: list[tuple[str, str]] = []

    async def extract(video_path, output_path):
        calls.append((video_path, output_path))
        with open(output_path, "wb") as f:
            f.write(b"\x89PNG")
        return output_path

    extract.calls = calls
    return extract


def flat_cost(model, duration, **kwargs):
    return round(duration * 0.05, 2)


@pytest_asyncio.fixture
async def orchestrator(repository, registry, sink, frame_extractor, tmp_path):
    # Long interval: tests drive reconciliation by hand.
    orch = Orchestrator(
        repository,
        registry,
        sink,
        poll_interval=3600,
        backoff_max=3600,
        provider_timeout=5,
        download_timeout=5,
        media_dir=str(tmp_path),
        frame_extractor=frame_extractor,
        cost_estimator=flat_cost,
    )
    yield orch
    await orch.shutdown()
