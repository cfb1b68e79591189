"""Pytest configuration and shared fixtures."""

import io
import json

import pytest


class FakeResponse:
    """Minimal stand-in for the object returned by ``urlopen``."""

    def __init__(self, body: bytes = b"", status: int = 200, headers: dict | None = None):
        self._stream = io.BytesIO(body)
        self.status = status
        self.headers = headers or {}

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def fake_response():
    """Factory for fake HTTP responses."""
    return FakeResponse


@pytest.fixture
def release_json():
    """A typical GitHub releases/latest payload."""
    return {
        "tag_name": "v1.2.0",
        "name": "PadAwan-Force 1.2.0",
        "body": "Firmware: v1.2.0, Software: v1.3.0",
        "published_at": "2025-03-01T12:00:00Z",
        "assets": [
            {"name": "PadAwan-Force-Setup.exe",
             "browser_download_url": "https://example.com/setup.exe", "size": 1000},
            {"name": "padawan_fs3.bin",
             "browser_download_url": "https://example.com/padawan_fs3.bin", "size": 4096},
        ],
    }


@pytest.fixture
def release_bytes(release_json):
    return json.dumps(release_json).encode("utf-8")
