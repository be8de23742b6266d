"""
Provider adapter tests against mocked vendor HTTP APIs.

Every adapter gets an httpx.AsyncClient backed by httpx.MockTransport, so
the tests check wire translation and error mapping without the network.
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from clipweaver.errors import (
    ExtensionUnavailable,
    FrameExtractionError,
    ProviderError,
    TransportError,
    UnsupportedOperation,
    ValidationError,
)
from clipweaver.models.job import JobStatus
from clipweaver.schemas.job import VideoRequest
from clipweaver.services.providers.kling_video import KlingProvider, parse_model
from clipweaver.services.providers.sora_video import SoraProvider
from clipweaver.services.providers.veo_video import METADATA_SCHEMA as VEO_SCHEMA
from clipweaver.services.providers.veo_video import VeoProvider

VEO_BASE = "https://generativelanguage.googleapis.com/v1beta"
VEO_OPERATION = "models/veo-3.1-generate-preview/operations/op123"
VEO_VIDEO_URI = f"{VEO_BASE}/files/abc:download?alt=media"


class Recorder:
    """MockTransport handler that records requests and replays a route table."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        key = (request.method, request.url.path, request.url.params.get("variant"))
        handler = self.routes.get(key) or self.routes.get(key[:2])
        if handler is None:
            return httpx.Response(404, json={"error": {"message": f"no route {key}"}})
        if callable(handler):
            return handler(request)
        return handler


def make_provider(cls, routes, tmp_path, base_url):
    recorder = Recorder(routes)
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    provider = cls(api_key="test-key", base_url=base_url, media_dir=str(tmp_path), http_client=client)
    return provider, recorder


class TestSoraProvider:

    BASE = "https://api.openai.com/v1"

    @pytest.mark.asyncio
    async def test_submit_text_only(self, tmp_path):
        routes = {
            ("POST", "/v1/videos"): httpx.Response(
                200, json={"id": "video_123", "status": "queued", "progress": 0, "created_at": 1700000000}
            ),
        }
        sora, recorder = make_provider(SoraProvider, routes, tmp_path, self.BASE)

        result = await sora.submit(VideoRequest(prompt="a fox", model="sora-2", duration=4))

        assert result.native_id == "video_123"
        assert result.status == JobStatus.QUEUED
        assert result.metadata["schema"] == "sora.video/v1"
        sent = recorder.requests[0]
        assert sent.headers["Authorization"] == "Bearer test-key"
        assert sent.headers["Content-Type"].startswith("multipart/form-data")
        assert b'name="seconds"' in sent.content
        assert b"1280x720" in sent.content

    @pytest.mark.asyncio
    async def test_submit_with_input_reference(self, tmp_path):
        image = tmp_path / "ref.png"
        image.write_bytes(b"\x89PNGdata")
        routes = {("POST", "/v1/videos"): httpx.Response(200, json={"id": "video_9", "status": "queued"})}
        sora, recorder = make_provider(SoraProvider, routes, tmp_path, self.BASE)

        await sora.submit(VideoRequest(
            prompt="a fox", model="sora-2", duration=8, input_reference_path=str(image)
        ))

        body = recorder.requests[0].content
        assert b'name="input_reference"; filename="ref.png"' in body
        assert b"image/png" in body

    @pytest.mark.asyncio
    async def test_submit_rejected_at_creation(self, tmp_path):
        routes = {
            ("POST", "/v1/videos"): httpx.Response(
                200, json={"id": "video_1", "status": "failed", "error": {"message": "moderation"}}
            ),
        }
        sora, _ = make_provider(SoraProvider, routes, tmp_path, self.BASE)

        with pytest.raises(ProviderError, match="moderation"):
            await sora.submit(VideoRequest(prompt="x", model="sora-2", duration=4))

    @pytest.mark.asyncio
    async def test_http_error_maps_to_provider_error(self, tmp_path):
        routes = {
            ("POST", "/v1/videos"): httpx.Response(
                400, json={"error": {"message": "Invalid size"}}
            ),
        }
        sora, _ = make_provider(SoraProvider, routes, tmp_path, self.BASE)

        with pytest.raises(ProviderError) as exc_info:
            await sora.submit(VideoRequest(prompt="x", model="sora-2", duration=4))

        assert exc_info.value.status_code == 400
        assert "Invalid size" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_error_maps_to_transport_error(self, tmp_path):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        sora, _ = make_provider(SoraProvider, {("GET", "/v1/videos/video_1"): refuse}, tmp_path, self.BASE)

        with pytest.raises(TransportError):
            await sora.poll("video_1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body, status, progress, error",
        [
            ({"status": "queued", "progress": 0}, JobStatus.QUEUED, 0, None),
            ({"status": "in_progress", "progress": 42}, JobStatus.IN_PROGRESS, 42, None),
            ({"status": "completed", "progress": 97}, JobStatus.COMPLETED, 100, None),
            ({"status": "failed", "error": {"message": "blocked"}}, JobStatus.FAILED, 0, "blocked"),
            ({"status": "rendering"}, JobStatus.IN_PROGRESS, 0, None),
        ],
    )
    async def test_poll_status_mapping(self, tmp_path, body, status, progress, error):
        routes = {("GET", "/v1/videos/video_1"): httpx.Response(200, json={"id": "video_1", **body})}
        sora, _ = make_provider(SoraProvider, routes, tmp_path, self.BASE)

        result = await sora.poll("video_1")

        assert result.status == status
        assert result.progress == progress
        assert result.error == error

    @pytest.mark.asyncio
    async def test_fetch_artifact_downloads_video_and_thumbnail(self, tmp_path):
        routes = {
            ("GET", "/v1/videos/video_1/content", None): httpx.Response(200, content=b"mp4-bytes"),
            ("GET", "/v1/videos/video_1/content", "thumbnail"): httpx.Response(200, content=b"webp-bytes"),
        }
        sora, _ = make_provider(SoraProvider, routes, tmp_path, self.BASE)

        paths = await sora.fetch_artifact("video_1", "job1")

        assert paths.video_path == str(tmp_path / "job1.mp4")
        assert paths.thumbnail_path == str(tmp_path / "job1_thumb.webp")
        assert (tmp_path / "job1.mp4").read_bytes() == b"mp4-bytes"
        assert (tmp_path / "job1_thumb.webp").read_bytes() == b"webp-bytes"

    @pytest.mark.asyncio
    async def test_missing_thumbnail_does_not_fail_download(self, tmp_path):
        routes = {
            ("GET", "/v1/videos/video_1/content", None): httpx.Response(200, content=b"mp4-bytes"),
            ("GET", "/v1/videos/video_1/content", "thumbnail"): httpx.Response(404),
        }
        sora, _ = make_provider(SoraProvider, routes, tmp_path, self.BASE)

        paths = await sora.fetch_artifact("video_1", "job1")

        assert paths.thumbnail_path is None
        assert (tmp_path / "job1.mp4").exists()

    @pytest.mark.asyncio
    async def test_remix(self, tmp_path):
        routes = {
            ("POST", "/v1/videos/video_1/remix"): httpx.Response(
                200, json={"id": "video_2", "status": "queued", "remixed_from_video_id": "video_1"}
            ),
        }
        sora, recorder = make_provider(SoraProvider, routes, tmp_path, self.BASE)

        result = await sora.remix("video_1", "make it night")

        assert result.native_id == "video_2"
        assert json.loads(recorder.requests[0].content) == {"prompt": "make it night"}

    @pytest.mark.asyncio
    async def test_extend_is_unsupported(self, tmp_path):
        sora, recorder = make_provider(SoraProvider, {}, tmp_path, self.BASE)

        with pytest.raises(UnsupportedOperation):
            await sora.extend("video_1", "more", 4, {"schema": "sora.video/v1"})
        assert recorder.requests == []

    @pytest.mark.parametrize(
        "overrides",
        [
            {"model": "sora-3"},
            {"duration": 5},
            {"size": "1024x1024"},
            {"reference_image_paths": ["a.png"]},
            {"last_frame_path": "end.png"},
        ],
    )
    def test_validate_rejects(self, tmp_path, overrides):
        sora = SoraProvider(api_key="k", base_url=self.BASE, media_dir=str(tmp_path))
        request = VideoRequest(**{"prompt": "x", "model": "sora-2", "duration": 4, **overrides})

        with pytest.raises(ValidationError):
            sora.validate(request)

    def test_validate_accepts_portrait_hd(self, tmp_path):
        sora = SoraProvider(api_key="k", base_url=self.BASE, media_dir=str(tmp_path))
        sora.validate(VideoRequest(prompt="x", model="sora-2-pro", duration=12, size="1080x1920"))


class TestVeoProvider:

    def operation(self, **fields):
        return {"name": VEO_OPERATION, **fields}

    def done_operation(self):
        return self.operation(
            done=True,
            response={"generateVideoResponse": {"generatedSamples": [{"video": {"uri": VEO_VIDEO_URI}}]}},
        )

    @pytest.mark.asyncio
    async def test_submit_builds_long_running_request(self, tmp_path):
        first = tmp_path / "first.jpg"
        first.write_bytes(b"jpeg")
        routes = {
            ("POST", "/v1beta/models/veo-3.1-generate-preview:predictLongRunning"): httpx.Response(
                200, json=self.operation()
            ),
        }
        veo, recorder = make_provider(VeoProvider, routes, tmp_path, VEO_BASE)

        result = await veo.submit(VideoRequest(
            prompt="waves", model="veo-3.1-generate-preview", duration=6,
            aspect_ratio="9:16", resolution="1080p", generate_audio=False,
            input_reference_path=str(first),
        ))

        assert result.native_id == VEO_OPERATION
        assert result.metadata == {
            "schema": VEO_SCHEMA, "operation": VEO_OPERATION, "aspect_ratio": "9:16",
        }
        sent = recorder.requests[0]
        assert sent.url.params["key"] == "test-key"
        body = json.loads(sent.content)
        assert body["instances"][0]["prompt"] == "waves"
        assert body["instances"][0]["image"]["mimeType"] == "image/jpeg"
        assert body["parameters"]["aspectRatio"] == "9:16"
        assert body["parameters"]["resolution"] == "1080p"
        assert body["parameters"]["durationSeconds"] == 6
        assert body["parameters"]["generateAudio"] is False

    @pytest.mark.asyncio
    async def test_poll_running(self, tmp_path):
        routes = {("GET", f"/v1beta/{VEO_OPERATION}"): httpx.Response(200, json=self.operation(done=False))}
        veo, _ = make_provider(VeoProvider, routes, tmp_path, VEO_BASE)

        result = await veo.poll(VEO_OPERATION)

        assert result.status == JobStatus.IN_PROGRESS
        assert result.progress == 50

    @pytest.mark.asyncio
    async def test_poll_done_stores_video_handle(self, tmp_path):
        routes = {("GET", f"/v1beta/{VEO_OPERATION}"): httpx.Response(200, json=self.done_operation())}
        veo, _ = make_provider(VeoProvider, routes, tmp_path, VEO_BASE)

        result = await veo.poll(VEO_OPERATION)

        assert result.status == JobStatus.COMPLETED
        assert result.progress == 100
        assert result.metadata["schema"] == VEO_SCHEMA
        assert result.metadata["video_uri"] == VEO_VIDEO_URI

    @pytest.mark.asyncio
    async def test_poll_error(self, tmp_path):
        routes = {
            ("GET", f"/v1beta/{VEO_OPERATION}"): httpx.Response(
                200, json=self.operation(done=True, error={"code": 3, "message": "unsafe prompt"})
            ),
        }
        veo, _ = make_provider(VeoProvider, routes, tmp_path, VEO_BASE)

        result = await veo.poll(VEO_OPERATION)

        assert result.status == JobStatus.FAILED
        assert "unsafe prompt" in result.error

    @pytest.mark.asyncio
    async def test_poll_done_but_filtered(self, tmp_path):
        filtered = self.operation(
            done=True,
            response={"generateVideoResponse": {"raiMediaFilteredReasons": ["celebrity likeness"]}},
        )
        routes = {("GET", f"/v1beta/{VEO_OPERATION}"): httpx.Response(200, json=filtered)}
        veo, _ = make_provider(VeoProvider, routes, tmp_path, VEO_BASE)

        result = await veo.poll(VEO_OPERATION)

        assert result.status == JobStatus.FAILED
        assert "celebrity likeness" in result.error

    @pytest.mark.asyncio
    async def test_fetch_artifact_extracts_thumbnail(self, tmp_path, monkeypatch):
        routes = {
            ("GET", f"/v1beta/{VEO_OPERATION}"): httpx.Response(200, json=self.done_operation()),
            ("GET", "/v1beta/files/abc:download"): httpx.Response(200, content=b"veo-mp4"),
        }
        veo, recorder = make_provider(VeoProvider, routes, tmp_path, VEO_BASE)
        extract = AsyncMock(return_value=str(tmp_path / "job1_thumb.webp"))
        monkeypatch.setattr("clipweaver.services.frames.extract_last_frame", extract)

        paths = await veo.fetch_artifact(VEO_OPERATION, "job1")

        assert (tmp_path / "job1.mp4").read_bytes() == b"veo-mp4"
        assert paths.thumbnail_path == str(tmp_path / "job1_thumb.webp")
        extract.assert_awaited_once_with(str(tmp_path / "job1.mp4"), str(tmp_path / "job1_thumb.webp"))
        download = recorder.requests[-1]
        assert download.url.params["alt"] == "media"
        assert download.url.params["key"] == "test-key"

    @pytest.mark.asyncio
    async def test_thumbnail_failure_is_tolerated(self, tmp_path, monkeypatch):
        routes = {
            ("GET", f"/v1beta/{VEO_OPERATION}"): httpx.Response(200, json=self.done_operation()),
            ("GET", "/v1beta/files/abc:download"): httpx.Response(200, content=b"veo-mp4"),
        }
        veo, _ = make_provider(VeoProvider, routes, tmp_path, VEO_BASE)
        monkeypatch.setattr(
            "clipweaver.services.frames.extract_last_frame",
            AsyncMock(side_effect=FrameExtractionError("ffmpeg missing")),
        )

        paths = await veo.fetch_artifact(VEO_OPERATION, "job1")

        assert paths.thumbnail_path is None
        assert paths.video_path == str(tmp_path / "job1.mp4")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "metadata",
        [
            None,
            {},
            {"schema": "veo.operation/v0", "video_uri": VEO_VIDEO_URI},
            {"schema": VEO_SCHEMA, "operation": VEO_OPERATION},
        ],
    )
    async def test_extend_fails_loudly_without_usable_handle(self, tmp_path, metadata):
        veo, recorder = make_provider(VeoProvider, {}, tmp_path, VEO_BASE)

        with pytest.raises(ExtensionUnavailable):
            await veo.extend(VEO_OPERATION, "keep going", 8, metadata)

        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_extend_sends_stored_video(self, tmp_path):
        routes = {
            ("POST", "/v1beta/models/veo-3.1-generate-preview:predictLongRunning"): httpx.Response(
                200, json={"name": "models/veo-3.1-generate-preview/operations/ext1"}
            ),
        }
        veo, recorder = make_provider(VeoProvider, routes, tmp_path, VEO_BASE)
        metadata = {
            "schema": VEO_SCHEMA, "operation": VEO_OPERATION,
            "aspect_ratio": "16:9", "video_uri": VEO_VIDEO_URI,
        }

        result = await veo.extend(VEO_OPERATION, "keep going", 8, metadata)

        assert result.native_id.endswith("/ext1")
        body = json.loads(recorder.requests[0].content)
        assert body["instances"][0]["video"] == {"uri": VEO_VIDEO_URI}
        assert body["parameters"]["aspectRatio"] == "16:9"

    def test_validate_reference_images(self, tmp_path):
        veo = VeoProvider(api_key="k", base_url=VEO_BASE, media_dir=str(tmp_path))
        ok = VideoRequest(
            prompt="x", model="veo-3.1-generate-preview", duration=8,
            reference_image_paths=["a.png", "b.png", "c.png"],
        )
        veo.validate(ok)

        too_many = ok.model_copy(update={"reference_image_paths": ["a", "b", "c", "d"]})
        with pytest.raises(ValidationError):
            veo.validate(too_many)


class TestKlingProvider:

    BASE = "https://api-beijing.klingai.com/v1"

    def test_parse_model(self):
        assert parse_model("kling-v2-6(PRO)") == ("kling-v2-6", "pro")
        assert parse_model("kling-v1(STD)") == ("kling-v1", "std")
        assert parse_model("kling-v1") == ("kling-v1", "std")

    @pytest.mark.asyncio
    async def test_submit_text_to_video(self, tmp_path):
        routes = {
            ("POST", "/v1/videos/text2video"): httpx.Response(
                200, json={"code": 0, "data": {"task_id": "t1", "task_status": "submitted"}}
            ),
        }
        kling, recorder = make_provider(KlingProvider, routes, tmp_path, self.BASE)

        result = await kling.submit(VideoRequest(
            prompt="a kite", model="kling-v2-6(PRO)", duration=5, aspect_ratio="1:1"
        ))

        assert result.native_id == "text2video/t1"
        assert result.status == JobStatus.QUEUED
        body = json.loads(recorder.requests[0].content)
        assert body["model_name"] == "kling-v2-6"
        assert body["mode"] == "pro"
        assert body["duration"] == "5"
        assert body["aspect_ratio"] == "1:1"

    @pytest.mark.asyncio
    async def test_submit_first_and_last_frame(self, tmp_path):
        first, last = tmp_path / "a.png", tmp_path / "b.png"
        first.write_bytes(b"first")
        last.write_bytes(b"last")
        routes = {
            ("POST", "/v1/videos/image2video"): httpx.Response(
                200, json={"code": 0, "data": {"task_id": "t2"}}
            ),
        }
        kling, recorder = make_provider(KlingProvider, routes, tmp_path, self.BASE)

        result = await kling.submit(VideoRequest(
            prompt="morph", model="kling-v1(STD)", duration=10,
            input_reference_path=str(first), last_frame_path=str(last),
        ))

        assert result.native_id == "image2video/t2"
        body = json.loads(recorder.requests[0].content)
        assert body["image"] == "Zmlyc3Q="
        assert body["image_tail"] == "bGFzdA=="

    @pytest.mark.asyncio
    async def test_submit_error_code(self, tmp_path):
        routes = {
            ("POST", "/v1/videos/text2video"): httpx.Response(
                200, json={"code": 1102, "message": "balance not enough"}
            ),
        }
        kling, _ = make_provider(KlingProvider, routes, tmp_path, self.BASE)

        with pytest.raises(ProviderError, match="balance not enough"):
            await kling.submit(VideoRequest(prompt="x", model="kling-v1(STD)", duration=5))

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "task, status, progress",
        [
            ({"task_status": "submitted"}, JobStatus.QUEUED, 0),
            ({"task_status": "processing"}, JobStatus.IN_PROGRESS, 50),
            (
                {"task_status": "succeed", "task_result": {"videos": [{"url": "https://cdn/v.mp4"}]}},
                JobStatus.COMPLETED,
                100,
            ),
            ({"task_status": "failed", "task_status_msg": "risk control"}, JobStatus.FAILED, 0),
        ],
    )
    async def test_poll_status_mapping(self, tmp_path, task, status, progress):
        routes = {("GET", "/v1/videos/text2video/t1"): httpx.Response(200, json={"code": 0, "data": task})}
        kling, _ = make_provider(KlingProvider, routes, tmp_path, self.BASE)

        result = await kling.poll("text2video/t1")

        assert result.status == status
        assert result.progress == progress

    @pytest.mark.asyncio
    async def test_query_error_is_transient(self, tmp_path):
        routes = {
            ("GET", "/v1/videos/text2video/t1"): httpx.Response(200, json={"code": 5000, "message": "busy"}),
        }
        kling, _ = make_provider(KlingProvider, routes, tmp_path, self.BASE)

        with pytest.raises(TransportError):
            await kling.poll("text2video/t1")

    def test_last_frame_needs_first_frame(self, tmp_path):
        kling = KlingProvider(api_key="k", base_url=self.BASE, media_dir=str(tmp_path))
        request = VideoRequest(
            prompt="x", model="kling-v1(STD)", duration=5, last_frame_path="end.png"
        )

        with pytest.raises(ValidationError):
            kling.validate(request)

    def test_remix_not_advertised(self):
        assert KlingProvider.capabilities.supports_remix is False
        assert KlingProvider.capabilities.supports_extension is False
