import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.errors import ExternalServiceError, UnconfiguredError
from app.core.settings import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratorResult:
    image_base64: str | None = None
    mime_type: str | None = None
    text_response: str | None = None

    @property
    def has_image(self) -> bool:
        return bool(self.image_base64)


GENERATOR_MESSAGES: dict[str, str] = {
    "auth": "Image generation is misconfigured (invalid API key). Please contact support.",
    "safety": "The request was blocked by safety filters. Please try a different prompt.",
    "rate_limit": "API rate limit exceeded. Please wait a moment and try again.",
    "transient": "The image service is temporarily unavailable. Please try again.",
    "unknown": "Failed to generate infographic.",
}

NO_IMAGE_MESSAGE = "The AI did not generate an image. Please try again with a different prompt."


def classify_generator_error(message: str, status_code: int | None = None) -> str:
    """Best-effort mapping of an upstream failure onto an error kind.

    The upstream API does not return typed errors, so this is a hint only.
    """
    if status_code in {401, 403}:
        return "auth"
    if status_code == 429:
        return "rate_limit"
    msg = str(message or "")
    lowered = msg.lower()
    if "api_key" in lowered or "api key" in lowered or "permission_denied" in lowered or "unauthenticated" in lowered:
        return "auth"
    if "safety" in lowered or "blocked" in lowered or "prohibited" in lowered:
        return "safety"
    if any(token in lowered for token in ("quota", "rate limit", "rate_limit", "resource_exhausted", "too many requests")):
        return "rate_limit"
    if status_code is not None and status_code >= 500:
        return "transient"
    if "timeout" in lowered or "timed out" in lowered or "unavailable" in lowered or "connection" in lowered:
        return "transient"
    return "unknown"


def build_infographic_prompt(user_prompt: str) -> str:
    return (
        "You are a professional infographic designer and data visualization expert with access to Google Search. "
        "Create a stunning, high-quality infographic based on the following request.\n\n"
        "## Data research\n"
        "- If the user provides a URL, use Google Search to fetch and extract the key information from that page.\n"
        "- If the topic needs current data, statistics, or facts, use Google Search to find accurate information.\n"
        "- Verify facts and statistics before including them.\n"
        "- Include source attribution in the footer when using searched data.\n\n"
        "## Design guidelines\n"
        "- Layout: clean, organized vertical layout with a clear visual hierarchy.\n"
        "- Typography: render all text clearly and legibly; bold headers, readable body text.\n"
        "- Color: cohesive, professional palette with good contrast.\n"
        "- Data: represent statistics with charts, icons, or visual elements.\n"
        "- Use adequate white space between sections.\n\n"
        "## Content structure\n"
        "1. A prominent, eye-catching title at the top\n"
        "2. Key points organized into clear sections with headers\n"
        "3. Visual representations for each main point\n"
        "4. A clean footer or conclusion (with data sources if searched)\n\n"
        "## User request\n"
        f"{user_prompt}\n\n"
        "Generate a complete infographic that clearly communicates the information above. "
        "Make sure all text is spelled correctly and rendered clearly."
    )


def parse_generate_content(payload: Any) -> GeneratorResult:
    if not isinstance(payload, dict):
        return GeneratorResult()

    feedback = payload.get("promptFeedback") or {}
    block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
    if block_reason:
        raise ExternalServiceError(
            f"Prompt blocked: {block_reason}",
            service="gemini",
            kind="safety",
        )

    candidates = payload.get("candidates") or []
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return GeneratorResult()
    first = candidates[0]
    if str(first.get("finishReason") or "").upper() in {"SAFETY", "PROHIBITED_CONTENT", "IMAGE_SAFETY"}:
        raise ExternalServiceError(
            f"Generation blocked: {first.get('finishReason')}",
            service="gemini",
            kind="safety",
        )

    image_b64: str | None = None
    mime_type: str | None = None
    text: str | None = None
    parts = (first.get("content") or {}).get("parts") or []
    for part in parts:
        if not isinstance(part, dict):
            continue
        if part.get("text"):
            text = str(part["text"])
            continue
        inline = part.get("inlineData") or part.get("inline_data")
        if isinstance(inline, dict) and inline.get("data"):
            image_b64 = str(inline["data"])
            mime_type = str(inline.get("mimeType") or inline.get("mime_type") or "image/png")
    return GeneratorResult(image_base64=image_b64, mime_type=mime_type, text_response=text)


class GeminiImageClient:
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        timeout_s: float = 300.0,
        use_search: bool = True,
        max_attempts: int = 2,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._model = (model or "").strip()
        self._endpoint = f"{(base_url or '').rstrip('/')}/models/{self._model}:generateContent"
        self._use_search = use_search
        self._max_attempts = max(1, int(max_attempts))
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_s, connect=15.0))

    async def aclose(self) -> None:
        await self._client.aclose()

    def _request_body(self, prompt: str, aspect_ratio: str, image_size: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": build_infographic_prompt(prompt)}]}],
            "generationConfig": {
                "responseModalities": ["IMAGE", "TEXT"],
                "imageConfig": {"aspectRatio": aspect_ratio, "imageSize": image_size},
            },
        }
        if self._use_search:
            body["tools"] = [{"google_search": {}}]
        return body

    async def generate(self, prompt: str, aspect_ratio: str = "9:16", image_size: str = "2K") -> GeneratorResult:
        body = self._request_body(prompt, aspect_ratio, image_size)
        last_err: ExternalServiceError | None = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                resp = await self._client.post(
                    self._endpoint,
                    headers={"x-goog-api-key": self._api_key, "Content-Type": "application/json"},
                    json=body,
                )
            except httpx.HTTPError as e:
                last_err = ExternalServiceError(
                    f"Gemini request failed: {e}",
                    service="gemini",
                    kind=classify_generator_error(str(e)) if not isinstance(e, httpx.TimeoutException) else "transient",
                )
            else:
                if resp.status_code < 400:
                    try:
                        data = resp.json()
                    except ValueError as e:
                        raise ExternalServiceError(f"Gemini returned invalid JSON: {e}", service="gemini", kind="unknown")
                    result = parse_generate_content(data)
                    logger.info(
                        "gemini.generate.done model=%s attempt=%s has_image=%s has_text=%s",
                        self._model,
                        attempt,
                        result.has_image,
                        bool(result.text_response),
                    )
                    return result

                detail = ""
                try:
                    detail = str(((resp.json() or {}).get("error") or {}).get("message") or "")
                except ValueError:
                    detail = resp.text[:500]
                last_err = ExternalServiceError(
                    f"Gemini error {resp.status_code}: {detail}",
                    service="gemini",
                    kind=classify_generator_error(detail, resp.status_code),
                )

            if last_err.kind != "transient" or attempt >= self._max_attempts:
                break
            sleep_s = 1.0 * (2 ** (attempt - 1)) + random.random() * 0.25
            logger.info("gemini.generate.retry attempt=%s sleep_s=%.2f error=%s", attempt, sleep_s, last_err)
            await asyncio.sleep(sleep_s)

        if last_err is not None:
            raise last_err
        raise RuntimeError("Gemini call failed")


def get_generator() -> GeminiImageClient:
    if not settings.gemini_api_key:
        raise UnconfiguredError("GEMINI_API_KEY is not configured")
    return GeminiImageClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        timeout_s=settings.gemini_timeout_s,
        use_search=settings.gemini_use_search,
    )
