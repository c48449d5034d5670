"""
Tests for the Gemini / Veo REST client: retry policy, payload parsing and
the long-running operation shape.
"""

import json

import httpx
import pytest

from storyreel import metrics
from storyreel.pipeline.errors import (
    NoContentReturned,
    NoImageData,
    PermanentProviderError,
    TransientProviderError,
    is_transient_status,
)
from storyreel.pipeline.gemini_client import (
    GeminiClient,
    ImageRequest,
    ReferenceFrame,
    TextRequest,
    VideoRequest,
    _parse_json_text,
    parse_operation,
)

from .fakes import PNG_BYTES


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_two_transient_failures_then_success(self, backend):
        backend.text_replies = [503, 429, {"ok": True}]
        client = backend.client()

        assert await client.generate_json("prompt") == {"ok": True}
        assert backend.text_calls == 3
        assert metrics.get_counter("requests.generate_json") == 3
        assert metrics.get_counter("retries.generate_json") == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self, backend):
        backend.text_replies = [400, {"ok": True}]
        client = backend.client()

        with pytest.raises(PermanentProviderError) as exc:
            await client.generate_json("prompt")

        assert exc.value.status_code == 400
        assert backend.text_calls == 1
        assert metrics.get_counter("errors.PermanentProviderError") == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_transient(self, backend):
        backend.text_replies = [500, 502, 503, 504, {"ok": True}]
        client = backend.client(max_retries=3)

        with pytest.raises(TransientProviderError) as exc:
            await client.generate_json("prompt")

        assert exc.value.status_code == 504
        assert backend.text_calls == 4
        assert metrics.get_counter("errors.transient_exhausted") == 1

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "[1, 2]"}]}}],
            })

        client = GeminiClient(
            api_key="test-key", retry_delay=0, transport=httpx.MockTransport(handler)
        )
        assert await client.generate_json("prompt") == [1, 2]
        assert len(calls) == 2

    def test_transient_statuses(self):
        assert is_transient_status(429)
        assert is_transient_status(500)
        assert is_transient_status(503)
        assert not is_transient_status(400)
        assert not is_transient_status(404)


class TestText:
    def test_parse_json_with_code_fence(self):
        assert _parse_json_text('```json\n{"a": 1}\n```') == {"a": 1}

    def test_parse_invalid_json_is_permanent(self):
        with pytest.raises(PermanentProviderError):
            _parse_json_text("not json at all")

    @pytest.mark.asyncio
    async def test_blocked_prompt_is_permanent(self):
        def handler(request):
            return httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})

        client = GeminiClient(
            api_key="test-key", retry_delay=0, transport=httpx.MockTransport(handler)
        )
        with pytest.raises(PermanentProviderError, match="SAFETY"):
            await client.generate_json("prompt")

    @pytest.mark.asyncio
    async def test_api_key_sent_as_query_param(self, backend):
        client = backend.client()
        await client.generate_json("prompt")

        request = backend.requests[0]
        assert request.url.params["key"] == "test-key"
        assert request.url.path.endswith("/models/gemini-2.5-flash:generateContent")

    @pytest.mark.asyncio
    async def test_invoke_dispatches_text(self, backend):
        backend.text_replies = [{"title": "x"}]
        result = await backend.client().invoke(TextRequest(prompt="p"))

        assert result.kind == "text"
        assert result.data == {"title": "x"}

    def test_missing_api_key(self):
        with pytest.raises(RuntimeError):
            GeminiClient(api_key="")


class TestImage:
    @pytest.mark.asyncio
    async def test_returns_first_inline_image(self, backend):
        data, mime_type = await backend.client().generate_image(
            ImageRequest(prompt="a lighthouse", aspect_ratio="9:16")
        )
        assert data == PNG_BYTES
        assert mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_no_inline_data_raises(self, backend):
        backend.image_replies = [None]
        with pytest.raises(NoImageData):
            await backend.client().generate_image(ImageRequest(prompt="a lighthouse"))
        assert backend.image_calls == 1

    @pytest.mark.asyncio
    async def test_aspect_ratio_sent(self, backend):
        await backend.client().generate_image(ImageRequest(prompt="p", aspect_ratio="16:9"))
        body = json.loads(backend.requests[0].content)
        assert body["generationConfig"]["imageConfig"] == {"aspectRatio": "16:9", "imageSize": "1K"}


class TestVideo:
    @pytest.mark.asyncio
    async def test_submit_includes_reference_frames(self, backend):
        client = backend.client()
        operation = await client.submit_video(VideoRequest(
            prompt="waves",
            start_frame=ReferenceFrame(data=b"start"),
            end_frame=ReferenceFrame(data=b"end", mime_type="image/jpeg"),
        ))

        assert operation.name == "models/veo/operations/op-1"
        assert not operation.done
        instance = backend.video_submissions[0]["instances"][0]
        assert instance["image"]["mimeType"] == "image/png"
        assert instance["lastFrame"]["mimeType"] == "image/jpeg"
        assert backend.video_submissions[0]["parameters"] == {"aspectRatio": "9:16"}

    @pytest.mark.asyncio
    async def test_download_media_appends_key(self, backend):
        client = backend.client()
        data = await client.download_media("https://media.test/files/abc:download?alt=media")

        assert data == backend.video_bytes
        params = backend.requests[0].url.params
        assert params["alt"] == "media"
        assert params["key"] == "test-key"

    def test_parse_done_operation(self):
        op = parse_operation({
            "name": "operations/1",
            "done": True,
            "response": {"generateVideoResponse": {
                "generatedSamples": [{"video": {"uri": "https://x/video"}}],
            }},
        })
        assert op.done
        assert op.video_uri == "https://x/video"
        assert op.error_message is None

    def test_parse_failed_operation(self):
        op = parse_operation({
            "name": "operations/1",
            "done": True,
            "error": {"code": 3, "message": "blocked by policy"},
        })
        assert op.done
        assert op.video_uri is None
        assert op.error_message == "blocked by policy"

    def test_parse_operation_without_name(self):
        with pytest.raises(NoContentReturned):
            parse_operation({})
