"""
Generation client: Gemini (text + image) and Veo (video) over the REST API.

One client instance is built at process start (GeminiClient.from_env()) and
handed to every component that needs it. All calls share a single retry
policy:

  - 429 / 5xx / network errors  → TransientProviderError, retried
  - any other 4xx               → PermanentProviderError, raised immediately
  - parsed but empty payload    → NoContentReturned, raised immediately

Backoff is a fixed delay between attempts; MAX_RETRIES counts the extra
attempts after the first failure.
"""

import os
import json
import time
import base64
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

import httpx

from .. import metrics
from .errors import (
    GenerationError,
    NoContentReturned,
    NoImageData,
    PermanentProviderError,
    TransientProviderError,
    is_transient_status,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Config ───────────────────────────────────────────────────────────────────

API_BASE = "https://generativelanguage.googleapis.com/v1beta"

DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
DEFAULT_IMAGE_MODEL = "gemini-3-pro-image-preview"
DEFAULT_VIDEO_MODEL = "veo-3.1-fast-generate-preview"

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0   # seconds, fixed between attempts
DEFAULT_HTTP_TIMEOUT = 120  # seconds


# ── Request / Result types ───────────────────────────────────────────────────

@dataclass
class TextRequest:
    """Structured-JSON text completion."""
    prompt: str
    model: Optional[str] = None
    temperature: Optional[float] = None


@dataclass
class ImageRequest:
    """Single still image."""
    prompt: str
    aspect_ratio: str = "9:16"
    image_size: str = "1K"
    model: Optional[str] = None


@dataclass
class ReferenceFrame:
    data: bytes
    mime_type: str = "image/png"

    def to_inline(self) -> dict:
        return {
            "bytesBase64Encoded": base64.b64encode(self.data).decode("utf-8"),
            "mimeType": self.mime_type,
        }


@dataclass
class VideoRequest:
    """Video from a prompt plus optional first / last reference frames."""
    prompt: str
    start_frame: Optional[ReferenceFrame] = None
    end_frame: Optional[ReferenceFrame] = None
    aspect_ratio: str = "9:16"
    model: Optional[str] = None


@dataclass
class VideoOperation:
    """Handle to a long-running Veo job."""
    name: str
    done: bool = False
    video_uri: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class GenerationResult:
    kind: str  # "text" | "image" | "video"
    data: Any = None
    image: Optional[bytes] = None
    mime_type: Optional[str] = None
    operation: Optional[VideoOperation] = None


GenerationRequest = Union[TextRequest, ImageRequest, VideoRequest]


# ── Response parsing helpers ─────────────────────────────────────────────────

def _parse_json_text(text: str) -> Any:
    """Parse JSON from a model response, tolerating markdown code fences."""
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if "```" in text:
            block = text.split("```")[1]
            if block.startswith("json"):
                block = block[4:]
            try:
                return json.loads(block.strip())
            except json.JSONDecodeError:
                pass
        raise PermanentProviderError(f"Gemini returned invalid JSON: {text[:200]}")


def _candidate_parts(payload: dict) -> list:
    feedback = payload.get("promptFeedback") or {}
    if feedback.get("blockReason"):
        raise PermanentProviderError(
            f"Prompt blocked by provider: {feedback['blockReason']}"
        )

    candidates = payload.get("candidates") or []
    if not candidates:
        raise NoContentReturned("Gemini returned no candidates.")
    return (candidates[0].get("content") or {}).get("parts") or []


def parse_operation(payload: dict, fallback_name: str = "") -> VideoOperation:
    """Map a Veo operation resource onto a VideoOperation."""
    name = payload.get("name") or fallback_name
    if not name:
        raise NoContentReturned("Video request returned no operation name.")

    done = bool(payload.get("done"))
    error = payload.get("error")
    video_uri = None

    if done and not error:
        response = payload.get("response") or {}
        samples = (
            (response.get("generateVideoResponse") or {}).get("generatedSamples")
            or response.get("generatedVideos")
            or []
        )
        if samples:
            video = samples[0].get("video") or {}
            video_uri = video.get("uri")

    return VideoOperation(
        name=name,
        done=done,
        video_uri=video_uri,
        error_message=(error.get("message") or str(error)) if error else None,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Client
# ═════════════════════════════════════════════════════════════════════════════

class GeminiClient:
    """
    Async Gemini / Veo client with a uniform retry wrapper.

    Usage:
        client = GeminiClient.from_env()
        data = await client.generate_json("Return a JSON object ...")
        image = await client.generate_image(ImageRequest(prompt="..."))
        op = await client.submit_video(VideoRequest(prompt="..."))
    """

    def __init__(
        self,
        api_key: str,
        text_model: str = DEFAULT_TEXT_MODEL,
        image_model: str = DEFAULT_IMAGE_MODEL,
        video_model: str = DEFAULT_VIDEO_MODEL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        api_base: str = API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise RuntimeError("GEMINI_API_KEY not set")

        self._api_key = api_key
        self._api_base = api_base.rstrip("/")
        self.text_model = text_model
        self.image_model = image_model
        self.video_model = video_model
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_env(cls, **overrides) -> "GeminiClient":
        """Build the process-wide client from environment variables."""
        settings = dict(
            api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY", ""),
            text_model=os.getenv("GEMINI_TEXT_MODEL", DEFAULT_TEXT_MODEL),
            image_model=os.getenv("GEMINI_IMAGE_MODEL", DEFAULT_IMAGE_MODEL),
            video_model=os.getenv("VEO_MODEL", DEFAULT_VIDEO_MODEL),
            max_retries=int(os.getenv("GEMINI_MAX_RETRIES", str(DEFAULT_MAX_RETRIES))),
            retry_delay=float(os.getenv("GEMINI_RETRY_DELAY", str(DEFAULT_RETRY_DELAY))),
            timeout=float(os.getenv("GEMINI_HTTP_TIMEOUT", str(DEFAULT_HTTP_TIMEOUT))),
        )
        settings.update(overrides)
        return cls(**settings)

    async def aclose(self):
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    # ── Retry wrapper ────────────────────────────────────────────────────

    async def _with_retry(self, op: str, call: Callable[[], Awaitable[T]]) -> T:
        started = time.monotonic()
        attempt = 0

        try:
            while True:
                attempt += 1
                metrics.inc_counter(f"requests.{op}")
                try:
                    return await call()
                except TransientProviderError as e:
                    if attempt > self._max_retries:
                        logger.error(f"{op} failed after {attempt} attempts: {e}")
                        metrics.record_error(op, "transient_exhausted", str(e))
                        raise
                    metrics.inc_counter(f"retries.{op}")
                    logger.warning(
                        f"{op} transient failure on attempt {attempt}/{self._max_retries + 1}: "
                        f"{e}. Retrying in {self._retry_delay:.1f}s"
                    )
                    await asyncio.sleep(self._retry_delay)
                except GenerationError as e:
                    logger.error(f"{op} failed without retry: {e}")
                    metrics.record_error(op, type(e).__name__, str(e))
                    raise
        finally:
            metrics.record_latency(op, (time.monotonic() - started) * 1000)

    # ── HTTP ─────────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        json_body: Optional[dict] = None,
        follow_redirects: bool = False,
    ) -> httpx.Response:
        try:
            # Merge the key so an existing query such as ?alt=media survives.
            response = await self._http.request(
                method,
                httpx.URL(url).copy_merge_params({"key": self._api_key}),
                json=json_body,
                follow_redirects=follow_redirects,
            )
        except httpx.TransportError as e:
            raise TransientProviderError(f"Gemini transport error: {e}") from e

        if response.status_code >= 400:
            message = f"Gemini API error {response.status_code}: {response.text[:500]}"
            if is_transient_status(response.status_code):
                raise TransientProviderError(message, response.status_code)
            raise PermanentProviderError(message, response.status_code)

        return response

    async def _post_json(self, url: str, body: dict) -> dict:
        response = await self._request("POST", url, json_body=body)
        return self._decode(response)

    async def _get_json(self, url: str) -> dict:
        response = await self._request("GET", url)
        return self._decode(response)

    @staticmethod
    def _decode(response: httpx.Response) -> dict:
        try:
            return response.json()
        except ValueError as e:
            raise PermanentProviderError(
                f"Malformed provider response: {response.text[:200]}"
            ) from e

    def _model_url(self, model: str, method: str) -> str:
        return f"{self._api_base}/models/{model}:{method}"

    # ── Polymorphic entry point ──────────────────────────────────────────

    async def invoke(self, request: GenerationRequest) -> GenerationResult:
        if isinstance(request, TextRequest):
            data = await self.generate_json(
                request.prompt, model=request.model, temperature=request.temperature
            )
            return GenerationResult(kind="text", data=data)

        if isinstance(request, ImageRequest):
            image, mime_type = await self.generate_image(request)
            return GenerationResult(kind="image", image=image, mime_type=mime_type)

        if isinstance(request, VideoRequest):
            operation = await self.submit_video(request)
            return GenerationResult(kind="video", operation=operation)

        raise TypeError(f"Unsupported generation request: {type(request).__name__}")

    # ── Text (structured JSON) ───────────────────────────────────────────

    async def generate_json(
        self,
        prompt: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> Any:
        model = model or self.text_model
        config: dict = {"responseMimeType": "application/json"}
        if temperature is not None:
            config["temperature"] = temperature

        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": config,
        }

        async def call():
            payload = await self._post_json(self._model_url(model, "generateContent"), body)
            text = "".join(
                part.get("text", "") for part in _candidate_parts(payload)
            )
            if not text.strip():
                raise NoContentReturned("Gemini returned an empty text response.")
            return _parse_json_text(text)

        return await self._with_retry("generate_json", call)

    # ── Image ────────────────────────────────────────────────────────────

    async def generate_image(self, request: ImageRequest) -> tuple[bytes, str]:
        """Returns (image_bytes, mime_type) of the first inline image."""
        model = request.model or self.image_model
        body = {
            "contents": [{"parts": [{"text": request.prompt}]}],
            "generationConfig": {
                "responseModalities": ["IMAGE"],
                "imageConfig": {
                    "aspectRatio": request.aspect_ratio,
                    "imageSize": request.image_size,
                },
            },
        }

        async def call():
            payload = await self._post_json(self._model_url(model, "generateContent"), body)
            try:
                parts = _candidate_parts(payload)
            except NoContentReturned as e:
                raise NoImageData(str(e)) from e

            for part in parts:
                inline = part.get("inlineData") or part.get("inline_data")
                if inline and inline.get("data"):
                    mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                    return base64.b64decode(inline["data"]), mime_type

            raise NoImageData("Gemini response contained no image data.")

        return await self._with_retry("generate_image", call)

    # ── Video (long-running) ─────────────────────────────────────────────

    async def submit_video(self, request: VideoRequest) -> VideoOperation:
        model = request.model or self.video_model
        instance: dict = {"prompt": request.prompt}
        if request.start_frame:
            instance["image"] = request.start_frame.to_inline()
        if request.end_frame:
            instance["lastFrame"] = request.end_frame.to_inline()

        body = {
            "instances": [instance],
            "parameters": {"aspectRatio": request.aspect_ratio},
        }

        async def call():
            payload = await self._post_json(self._model_url(model, "predictLongRunning"), body)
            return parse_operation(payload)

        operation = await self._with_retry("submit_video", call)
        logger.info(f"Veo operation started: {operation.name}")
        return operation

    async def get_operation(self, operation: VideoOperation) -> VideoOperation:
        url = f"{self._api_base}/{operation.name}"

        async def call():
            payload = await self._get_json(url)
            return parse_operation(payload, fallback_name=operation.name)

        return await self._with_retry("get_operation", call)

    async def download_media(self, uri: str) -> bytes:
        """Fetch generated media; the provider URI needs the API key appended."""

        async def call():
            response = await self._request("GET", uri, follow_redirects=True)
            if not response.content:
                raise NoContentReturned(f"Empty media download from {uri.split('?')[0]}")
            return response.content

        return await self._with_retry("download_media", call)
