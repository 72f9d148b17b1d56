"""
test_image_generation.py — Tests for the Gemini image client.

HTTP calls and sleeps are monkeypatched; nothing leaves the process.
"""

import base64
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent))

from campaign_analytics import image_generation
from campaign_analytics.image_generation import (
    ImageGenerationError,
    backoff_seconds,
    build_request_body,
    extract_image,
    generate_image,
    inline_image,
    parse_retry_after,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


class FakeResponse:
    def __init__(self, status=200, payload=None, headers=None):
        self.status_code = status
        self.headers = headers or {}
        self._payload = payload or {}

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def image_payload(data=PNG_BYTES, key="inlineData"):
    return {"candidates": [{"content": {"parts": [
        {"text": "here you go"},
        {key: {"mimeType": "image/png", "data": base64.b64encode(data).decode()}},
    ]}}]}


@pytest.fixture
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr(image_generation.time, "sleep", calls.append)
    return calls


def queue_responses(monkeypatch, responses):
    sent = []

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return responses.pop(0)

    monkeypatch.setattr(image_generation.requests, "post", fake_post)
    return sent


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestInlineImage:

    def test_png_and_jpeg(self, tmp_path):
        png = tmp_path / "logo.PNG"
        png.write_bytes(PNG_BYTES)
        jpg = tmp_path / "photo.jpg"
        jpg.write_bytes(b"jpeg")
        assert inline_image(png) == {"mimeType": "image/png", "data": base64.b64encode(PNG_BYTES).decode()}
        assert inline_image(jpg)["mimeType"] == "image/jpeg"

    def test_missing_file_skipped(self, tmp_path):
        assert inline_image(tmp_path / "nope.png") is None
        assert inline_image(None) is None


class TestRetryAfter:

    def test_seconds(self):
        assert parse_retry_after("7") == 7.0

    def test_http_date(self):
        now = datetime(2025, 11, 7, 12, 0, 0, tzinfo=timezone.utc)
        assert parse_retry_after("Fri, 07 Nov 2025 12:00:30 GMT", now=now) == pytest.approx(30)

    def test_past_date_is_zero(self):
        now = datetime(2025, 11, 7, 12, 0, 0, tzinfo=timezone.utc)
        assert parse_retry_after("Fri, 07 Nov 2025 11:00:00 GMT", now=now) == 0

    @pytest.mark.parametrize("value", [None, "", "soon"])
    def test_unusable(self, value):
        assert parse_retry_after(value) is None

    def test_backoff_is_capped(self):
        assert 2 <= backoff_seconds(1) <= 2.5
        assert backoff_seconds(10) == 60


class TestRequestBody:

    def test_prompt_only(self):
        assert build_request_body("a red tub") == {"contents": [{"parts": [{"text": "a red tub"}]}]}

    def test_images_and_aspect_ratio(self, tmp_path):
        src = tmp_path / "src.png"
        src.write_bytes(PNG_BYTES)
        body = build_request_body("x", source_image=src, brand_image=tmp_path / "gone.png", aspect_ratio="16:9")
        parts = body["contents"][0]["parts"]
        assert len(parts) == 2
        assert parts[1]["inlineData"]["mimeType"] == "image/png"
        assert body["generationConfig"] == {"imageConfig": {"aspectRatio": "16:9"}}


class TestExtractImage:

    def test_snake_case_key(self):
        assert extract_image(image_payload(key="inline_data")) == PNG_BYTES

    def test_no_image(self):
        with pytest.raises(ImageGenerationError):
            extract_image({"candidates": [{"content": {"parts": [{"text": "sorry"}]}}]})


# ---------------------------------------------------------------------------
# generate_image
# ---------------------------------------------------------------------------

class TestGenerateImage:

    def test_success(self, monkeypatch, sleeps):
        sent = queue_responses(monkeypatch, [FakeResponse(payload=image_payload())])
        assert generate_image("a tub", api_key="k") == PNG_BYTES
        assert sent[0]["url"].endswith("/gemini-2.5-flash-image:generateContent")
        assert sent[0]["headers"]["x-goog-api-key"] == "k"
        assert sleeps == []

    def test_retries_rate_limit_using_retry_after(self, monkeypatch, sleeps):
        queue_responses(monkeypatch, [
            FakeResponse(429, headers={"Retry-After": "3"}),
            FakeResponse(503),
            FakeResponse(payload=image_payload()),
        ])
        assert generate_image("a tub", api_key="k") == PNG_BYTES
        assert sleeps[0] == 3.0
        assert 2 <= sleeps[1] <= 2.5

    def test_gives_up_after_max_attempts(self, monkeypatch, sleeps):
        queue_responses(monkeypatch, [FakeResponse(500) for _ in range(3)])
        with pytest.raises(RuntimeError, match="after 3 attempts"):
            generate_image("a tub", api_key="k", max_attempts=3)
        assert len(sleeps) == 3

    def test_client_error_not_retried(self, monkeypatch, sleeps):
        queue_responses(monkeypatch, [FakeResponse(400)])
        with pytest.raises(requests.HTTPError):
            generate_image("a tub", api_key="k")
        assert sleeps == []

    def test_key_from_environment(self, monkeypatch, sleeps):
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        sent = queue_responses(monkeypatch, [FakeResponse(payload=image_payload())])
        generate_image("a tub")
        assert sent[0]["headers"]["x-goog-api-key"] == "env-key"

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with pytest.raises(RuntimeError, match="Missing GEMINI_API_KEY"):
            generate_image("a tub")
