"""
Pytest configuration and shared fixtures
"""
import pytest
from fastapi.testclient import TestClient
from pathlib import Path
import sys
import os

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment variables before importing app
os.environ.setdefault("GEMINI_API_KEY", "test-key")
os.environ.setdefault("GOOGLE_API_KEY", "test-key")

from main import app, _rate_buckets


class DummyGeminiResponse:
    def __init__(self, *, ok: bool = True, status_code: int = 200, text: str = "", data=None):
        self.is_success = ok
        self.status_code = status_code
        self.text = text
        self._data = data or {}

    def json(self):
        return self._data


def text_response(text, finish_reason="STOP"):
    return {
        "candidates": [
            {"finishReason": finish_reason, "content": {"role": "model", "parts": [{"text": text}]}}
        ]
    }


@pytest.fixture(autouse=True)
def reset_rate_limits():
    _rate_buckets.clear()
    yield
    _rate_buckets.clear()


@pytest.fixture
def client():
    """Create a test client for the FastAPI app"""
    return TestClient(app)


@pytest.fixture
def sample_image_bytes():
    """Create sample image bytes for testing"""
    from PIL import Image as PILImage  # type: ignore
    import io

    img = PILImage.new("RGB", (512, 512), color=(255, 255, 255))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def sample_data_uri():
    # 1x1 transparent PNG
    return (
        "data:image/png;base64,"
        "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
    )


@pytest.fixture
def gemini_calls(monkeypatch):
    """
    Stubs the Gemini HTTP call. Tests push responses onto `responses`; each
    request payload is recorded in `requests`.
    """
    from services import gemini

    state = {"responses": [], "requests": []}

    async def fake_post(_client, *, url, headers, payload):
        state["requests"].append({"url": url, "payload": payload})
        return state["responses"].pop(0)

    monkeypatch.setattr(gemini, "_gemini_post_json", fake_post)
    return state
