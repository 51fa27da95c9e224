import unittest
from unittest import mock

import httpx

from app.core.errors import ExternalServiceError
from app.services.llm.gemini import (
    GeminiImageClient,
    build_infographic_prompt,
    classify_generator_error,
    parse_generate_content,
)


def image_payload(data="aW1hZ2U=", text="Here is your infographic"):
    return {
        "candidates": [
            {
                "finishReason": "STOP",
                "content": {
                    "parts": [
                        {"text": text},
                        {"inlineData": {"mimeType": "image/jpeg", "data": data}},
                    ]
                },
            }
        ]
    }


class TestClassifyGeneratorError(unittest.TestCase):
    def test_status_codes(self):
        self.assertEqual(classify_generator_error("", 401), "auth")
        self.assertEqual(classify_generator_error("", 403), "auth")
        self.assertEqual(classify_generator_error("", 429), "rate_limit")
        self.assertEqual(classify_generator_error("internal", 503), "transient")

    def test_messages(self):
        self.assertEqual(classify_generator_error("API key not valid"), "auth")
        self.assertEqual(classify_generator_error("Response blocked by SAFETY"), "safety")
        self.assertEqual(classify_generator_error("RESOURCE_EXHAUSTED: quota"), "rate_limit")
        self.assertEqual(classify_generator_error("read timed out"), "transient")
        self.assertEqual(classify_generator_error("something odd"), "unknown")


class TestParseGenerateContent(unittest.TestCase):
    def test_image_and_text(self):
        result = parse_generate_content(image_payload())
        self.assertTrue(result.has_image)
        self.assertEqual(result.image_base64, "aW1hZ2U=")
        self.assertEqual(result.mime_type, "image/jpeg")
        self.assertEqual(result.text_response, "Here is your infographic")

    def test_text_only(self):
        result = parse_generate_content({"candidates": [{"content": {"parts": [{"text": "no"}]}}]})
        self.assertFalse(result.has_image)
        self.assertEqual(result.text_response, "no")

    def test_empty_payloads(self):
        self.assertFalse(parse_generate_content({}).has_image)
        self.assertFalse(parse_generate_content([]).has_image)

    def test_blocked_prompt(self):
        with self.assertRaises(ExternalServiceError) as ctx:
            parse_generate_content({"promptFeedback": {"blockReason": "SAFETY"}})
        self.assertEqual(ctx.exception.kind, "safety")

    def test_safety_finish_reason(self):
        with self.assertRaises(ExternalServiceError) as ctx:
            parse_generate_content({"candidates": [{"finishReason": "IMAGE_SAFETY"}]})
        self.assertEqual(ctx.exception.kind, "safety")

    def test_prompt_embeds_user_request(self):
        self.assertIn("Top 5 coffee producers", build_infographic_prompt("Top 5 coffee producers"))


class TestGeminiImageClient(unittest.IsolatedAsyncioTestCase):
    def make_client(self, handler, max_attempts=2):
        client = GeminiImageClient(
            api_key="key-1",
            model="gemini-test",
            base_url="https://gemini.test/v1beta",
            max_attempts=max_attempts,
        )
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return client

    async def test_generate_success(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=image_payload())

        client = self.make_client(handler)
        try:
            result = await client.generate("Coffee", "1:1", "1K")
        finally:
            await client.aclose()

        self.assertTrue(result.has_image)
        self.assertEqual(str(seen[0].url), "https://gemini.test/v1beta/models/gemini-test:generateContent")
        self.assertEqual(seen[0].headers["x-goog-api-key"], "key-1")
        self.assertIn(b'"aspectRatio":"1:1"', seen[0].content.replace(b" ", b""))

    async def test_transient_errors_are_retried(self):
        responses = [
            httpx.Response(503, json={"error": {"message": "The model is overloaded"}}),
            httpx.Response(200, json=image_payload()),
        ]

        def handler(request):
            return responses.pop(0)

        client = self.make_client(handler)
        with mock.patch("app.services.llm.gemini.asyncio.sleep", new=mock.AsyncMock()) as sleep:
            try:
                result = await client.generate("Coffee")
            finally:
                await client.aclose()
        self.assertTrue(result.has_image)
        sleep.assert_awaited_once()

    async def test_auth_errors_are_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(403, json={"error": {"message": "API key not valid"}})

        client = self.make_client(handler, max_attempts=3)
        try:
            with self.assertRaises(ExternalServiceError) as ctx:
                await client.generate("Coffee")
        finally:
            await client.aclose()
        self.assertEqual(ctx.exception.kind, "auth")
        self.assertEqual(len(calls), 1)

    async def test_rate_limit_maps_to_429(self):
        client = self.make_client(lambda request: httpx.Response(429, json={"error": {"message": "quota"}}))
        try:
            with self.assertRaises(ExternalServiceError) as ctx:
                await client.generate("Coffee")
        finally:
            await client.aclose()
        self.assertEqual(ctx.exception.http_status, 429)


if __name__ == "__main__":
    unittest.main()
