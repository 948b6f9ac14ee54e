"""Gemini image generation and Veo animation over the REST API.

One ``GenerationClient`` is built per job from an injected API-key provider;
it never reads ambient configuration on its own.
"""
import asyncio
import base64
import logging
import os
import re
import time
from contextlib import asynccontextmanager
from urllib.parse import urlencode

import httpx

from studio.domain import (
    DEFAULT_SHOT_LABELS,
    SHOT_KINDS,
    VIDEO_ASPECT_RATIOS,
    ImageReference,
    ShotResult,
)
from studio.errors import (
    ContentBlockedError,
    DownloadError,
    MalformedResponseError,
    MissingCredentialError,
    OperationFailedError,
    ProviderError,
    UnsupportedAspectRatioError,
    VideoTimeoutError,
)
from studio.services import prompt_builder
from studio.services.fetcher import ResourceFetcher
from studio.services.retry import RetryPolicy, is_retryable_error, retry

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 120.0


def clean_api_key(value):
    return re.sub(r"\s+", "", value or "")


def resolve_api_key(override, config):
    """User override, then configured key, then the host-provided key file."""
    for candidate in (override, config.get("GEMINI_API_KEY")):
        key = clean_api_key(candidate)
        if key:
            return key
    key_file = config.get("GEMINI_API_KEY_FILE")
    if key_file and os.path.exists(key_file):
        with open(key_file, encoding="utf-8") as fh:
            return clean_api_key(fh.read()) or None
    return None


def with_query(url, **params):
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def extract_candidates(payload):
    """Find the candidate list in any of the response shapes the API uses."""
    if payload.get("candidates"):
        return payload["candidates"]
    response = payload.get("response") or {}
    if response.get("candidates"):
        return response["candidates"]
    for inlined in (payload.get("inlinedResponses"), response.get("inlinedResponses")):
        for item in inlined or []:
            candidates = ((item or {}).get("response") or {}).get("candidates")
            if candidates:
                return candidates
    return []


def extract_video_uri(operation):
    response = operation.get("response") or {}
    samples = (
        (response.get("generateVideoResponse") or {}).get("generatedSamples")
        or response.get("generatedVideos")
        or []
    )
    if not samples:
        return None
    return (samples[0].get("video") or {}).get("uri")


def _block_reason(payload, candidates):
    feedback = payload.get("promptFeedback") or (payload.get("response") or {}).get("promptFeedback") or {}
    if feedback.get("blockReason"):
        return feedback["blockReason"]
    ratings = feedback.get("safetyRatings") or []
    if ratings and ratings[0].get("category"):
        return ratings[0]["category"]
    if candidates and candidates[0].get("finishReason") not in (None, "STOP"):
        return candidates[0]["finishReason"]
    return None


class GenerationClient:
    def __init__(
        self,
        api_key_provider,
        http_client=None,
        fetcher=None,
        policy=None,
        image_model="gemini-2.5-flash-image",
        video_model="veo-3.1-fast-generate-preview",
        api_base="https://generativelanguage.googleapis.com/v1beta",
        video_resolution="720p",
        poll_interval=5.0,
        video_timeout=600.0,
        sleep=asyncio.sleep,
        clock=time.monotonic,
    ):
        self._api_key_provider = api_key_provider
        self._http = http_client
        self.fetcher = fetcher or ResourceFetcher(http_client=http_client)
        self.policy = policy or RetryPolicy()
        self.image_model = image_model
        self.video_model = video_model
        self.api_base = api_base.rstrip("/")
        self.video_resolution = video_resolution
        self.poll_interval = poll_interval
        self.video_timeout = video_timeout
        self._sleep = sleep
        self._clock = clock

    def _api_key(self):
        key = self._api_key_provider()
        if not key:
            raise MissingCredentialError()
        return key

    @asynccontextmanager
    async def _session(self):
        if self._http is not None:
            yield self._http
        else:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                yield client

    async def _with_retry(self, operation, cancel):
        return await retry(
            operation,
            policy=self.policy,
            is_retryable=is_retryable_error,
            cancel=cancel,
            sleep=self._sleep,
        )

    @staticmethod
    def _decode(resp):
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if resp.status_code >= 400:
            error = (payload or {}).get("error") if isinstance(payload, dict) else None
            message = (error or {}).get("message") or resp.reason_phrase
            raise ProviderError(
                f"Provider returned {resp.status_code}: {message}",
                status=resp.status_code,
            )
        if not isinstance(payload, dict):
            raise MalformedResponseError("Provider response is not a JSON object")
        return payload

    async def _post(self, client, url, body, api_key):
        resp = await client.post(url, json=body, headers={"x-goog-api-key": api_key})
        return self._decode(resp)

    async def _get(self, client, url, api_key):
        resp = await client.get(url, headers={"x-goog-api-key": api_key})
        return self._decode(resp)

    async def _download(self, client, url, api_key, cancel, **params):
        signed_url = with_query(url, **params, key=api_key)

        async def fetch():
            resp = await client.get(signed_url, follow_redirects=True)
            if resp.status_code >= 400:
                raise DownloadError(
                    f"Failed to download resource: {resp.status_code} {resp.reason_phrase}",
                    status=resp.status_code,
                )
            return resp

        resp = await self._with_retry(fetch, cancel)
        content_type = resp.headers.get("content-type", "").split(";", 1)[0].strip()
        return resp.content, content_type or None

    # -- images --------------------------------------------------------------

    async def generate_images(self, request, shot_labels=None, cancel=None):
        """Generate the full-body, medium and close-up shots concurrently.

        All three succeed or the whole call fails; results always come back
        in ``SHOT_KINDS`` order.

        Raises:
            MissingCredentialError before any request when no key resolves.
            ProviderError (or a subclass) when a shot cannot be produced.
        """
        api_key = self._api_key()
        labels = {**DEFAULT_SHOT_LABELS, **(shot_labels or {})}

        async with self._session() as client:
            tasks = [
                asyncio.ensure_future(
                    self._generate_shot(client, api_key, request, kind, labels[kind], cancel)
                )
                for kind in SHOT_KINDS
            ]
            try:
                results = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        return list(results)

    async def _generate_shot(self, client, api_key, request, shot_kind, label, cancel):
        parts = []
        # Reference order matters: the instructions say "first"/"second"
        if request.face_image:
            parts.append(request.face_image.to_part())
        if request.object_image:
            parts.append(request.object_image.to_part())
        parts.append({"text": prompt_builder.build_shot_prompt(request, shot_kind)})

        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseModalities": ["IMAGE"],
                "imageConfig": {"aspectRatio": request.aspect_ratio},
            },
        }
        url = f"{self.api_base}/models/{self.image_model}:generateContent"

        payload = await self._with_retry(
            lambda: self._post(client, url, body, api_key), cancel
        )
        image = await self._extract_image(client, payload, api_key, cancel)
        logger.info("Generated %s shot (%s)", shot_kind, image.mime_type)
        return ShotResult(shot_kind=shot_kind, label=label, image=image)

    async def _extract_image(self, client, payload, api_key, cancel):
        candidates = extract_candidates(payload)
        parts = ((candidates[0].get("content") or {}).get("parts")) if candidates else None
        if not parts:
            reason = _block_reason(payload, candidates)
            if reason:
                raise ContentBlockedError(reason)
            raise MalformedResponseError("API did not return image content")

        image_part = next(
            (p for p in parts if p.get("inlineData") or p.get("fileData") or p.get("parts")),
            None,
        )
        if image_part is None:
            raise MalformedResponseError("API failed to return image for one of the viewpoints")

        inline = image_part.get("inlineData") or {}
        if inline.get("data"):
            return ImageReference.inline(inline["data"], inline.get("mimeType"))

        file_data = image_part.get("fileData") or {}
        if file_data.get("fileUri"):
            data, content_type = await self._download(
                client, file_data["fileUri"], api_key, cancel
            )
            mime_type = file_data.get("mimeType") or content_type or "image/png"
            return ImageReference.from_bytes(data, mime_type)

        for nested in image_part.get("parts") or []:
            nested_inline = nested.get("inlineData") or {}
            if nested_inline.get("data"):
                return ImageReference.inline(nested_inline["data"], nested_inline.get("mimeType"))

        raise MalformedResponseError("Unrecognized image structure in API response")

    # -- video ---------------------------------------------------------------

    async def generate_video(self, image, aspect_ratio, cancel=None):
        """Animate one image into a short clip.

        Returns:
            An inline ImageReference holding the MP4 bytes.

        Raises:
            UnsupportedAspectRatioError before any other work.
            VideoTimeoutError once ``video_timeout`` seconds have passed.
            OperationFailedError when the operation reports an error.
        """
        if aspect_ratio not in VIDEO_ASPECT_RATIOS:
            raise UnsupportedAspectRatioError(aspect_ratio, VIDEO_ASPECT_RATIOS)
        api_key = self._api_key()

        seed = await self.fetcher.resolve_bytes(image)
        if cancel is not None:
            cancel.raise_if_cancelled()

        body = {
            "instances": [
                {
                    "prompt": prompt_builder.build_video_prompt(),
                    "image": {
                        "bytesBase64Encoded": base64.b64encode(seed.data).decode("ascii"),
                        "mimeType": seed.mime_type,
                    },
                }
            ],
            "parameters": {
                "aspectRatio": aspect_ratio,
                "resolution": self.video_resolution,
                "sampleCount": 1,
            },
        }
        url = f"{self.api_base}/models/{self.video_model}:predictLongRunning"

        async with self._session() as client:
            operation = await self._with_retry(
                lambda: self._post(client, url, body, api_key), cancel
            )
            name = operation.get("name")
            logger.info("Video operation started: %s", name)
            deadline = self._clock() + self.video_timeout

            while not operation.get("done"):
                if cancel is not None:
                    cancel.raise_if_cancelled()
                if self._clock() >= deadline:
                    raise VideoTimeoutError(self.video_timeout)
                if not name:
                    raise MalformedResponseError("Video operation has no name to poll")
                await self._sleep(self.poll_interval)
                operation = await self._with_retry(
                    lambda: self._get(client, f"{self.api_base}/{name}", api_key), cancel
                )

            error = operation.get("error")
            if error:
                raise OperationFailedError(error.get("message") or "Video generation failed")

            uri = extract_video_uri(operation)
            if not uri:
                raise MalformedResponseError("Unable to retrieve video download link")
            data, _ = await self._download(client, uri, api_key, cancel, alt="media")

        logger.info("Video operation %s finished (%d bytes)", name, len(data))
        return ImageReference.from_bytes(data, "video/mp4")


def build_generation_client(config, api_key_override=None, http_client=None):
    """Build a client from Flask config with the credential lookup injected."""
    fetcher = ResourceFetcher(
        http_client=http_client,
        origin=config.get("APP_URL", "http://localhost:5000"),
        timeout=config.get("FETCH_TIMEOUT", 15.0),
    )
    return GenerationClient(
        lambda: resolve_api_key(api_key_override, config),
        http_client=http_client,
        fetcher=fetcher,
        policy=RetryPolicy.from_config(config),
        image_model=config["IMAGE_MODEL"],
        video_model=config["VIDEO_MODEL"],
        api_base=config["GEMINI_API_BASE"],
        video_resolution=config["VIDEO_RESOLUTION"],
        poll_interval=config["VIDEO_POLL_INTERVAL"],
        video_timeout=config["VIDEO_TIMEOUT"],
    )
