"""Tests for the firmware downloader."""

import http.client
import os
import tempfile
from unittest.mock import patch
from urllib.error import URLError

import pytest

from padawanforce.core.downloader import (
    DOWNLOAD_CHUNK, FirmwareDownloader, default_download_dir, filename_from_url,
)

URLOPEN = "padawanforce.core.downloader.urlopen"


class TestFilenameFromUrl:
    """Test destination file naming."""

    def test_last_segment(self):
        assert filename_from_url("https://github.com/o/r/releases/download/v1/fw.bin") == "fw.bin"

    def test_unquoted(self):
        assert filename_from_url("https://x/files/my%20fw.bin?token=1") == "my fw.bin"

    def test_default_when_empty(self):
        assert filename_from_url("https://example.com/") == "firmware.bin"
        assert filename_from_url("https://example.com") == "firmware.bin"

    @pytest.mark.parametrize("url", [
        "https://x/download/%5C..%5C..%5Cevil.exe",
        "https://x/download/..%2F..%2Fevil.exe",
        "https://x/download/C%3A%5CWindows%5Cevil.exe",
        "https://x/download/C:evil.exe",
    ])
    def test_traversal_reduced_to_last_segment(self, url):
        assert filename_from_url(url) == "evil.exe"

    @pytest.mark.parametrize("url", ["https://x/a/..", "https://x/a/%5C.", "https://x/a/%2E%2E"])
    def test_dot_segments_use_default(self, url):
        assert filename_from_url(url) == "firmware.bin"

    def test_default_dir_is_under_temp(self):
        assert default_download_dir() == os.path.join(tempfile.gettempdir(), "PadAwan-Force")

    def test_default_dir_under_configured_base(self, tmp_path):
        assert default_download_dir(str(tmp_path)) == os.path.join(str(tmp_path), "PadAwan-Force")


class TestFirmwareDownloader:
    """Test streaming download and progress reporting."""

    @pytest.fixture
    def downloader(self, tmp_path):
        return FirmwareDownloader(str(tmp_path / "dl"))

    def test_download_with_length(self, downloader, fake_response):
        payload = os.urandom(DOWNLOAD_CHUNK * 5 + 100)
        response = fake_response(payload, headers={"Content-Length": str(len(payload))})
        progress = []

        with patch(URLOPEN, return_value=response):
            path = downloader.download("https://x/fw.bin",
                                       lambda pct, text: progress.append((pct, text)))

        with open(path, "rb") as f:
            assert f.read() == payload
        assert os.path.basename(path) == "fw.bin"

        percents = [p for p, _ in progress if p is not None]
        assert len(percents) == 6
        assert all(20 <= p <= 60 for p in percents)
        assert percents == sorted(percents)
        assert percents[-1] == 60
        assert progress[-2][1] == f"Downloading: {len(payload) // 1024} KB / {len(payload) // 1024} KB"
        assert progress[-1] == (None, "Download complete")

    def test_download_without_length(self, downloader, fake_response):
        payload = b"\x00" * (DOWNLOAD_CHUNK + 1)
        progress = []

        with patch(URLOPEN, return_value=fake_response(payload)):
            path = downloader.download("https://x/", lambda pct, text: progress.append((pct, text)))

        assert os.path.basename(path) == "firmware.bin"
        assert os.path.getsize(path) == len(payload)
        assert all(p is None for p, _ in progress)
        assert progress[-1] == (None, "Download complete")

    def test_creates_staging_folder_under_base(self, tmp_path, fake_response):
        base = tmp_path / "a" / "b"
        with patch(URLOPEN, return_value=fake_response(b"data")):
            path = FirmwareDownloader(str(base)).download("https://x/fw.bin")

        assert os.path.dirname(path) == str(base / "PadAwan-Force")

    def test_traversal_url_stays_in_staging_folder(self, downloader, fake_response):
        with patch(URLOPEN, return_value=fake_response(b"data")):
            path = downloader.download("https://x/download/%5C..%5C..%5Cevil.exe")

        assert path == os.path.join(downloader.download_dir, "evil.exe")

    def test_network_failure_returns_none(self, downloader):
        with patch(URLOPEN, side_effect=URLError("offline")):
            assert downloader.download("https://x/fw.bin") is None

    def test_write_failure_returns_none(self, downloader, fake_response):
        with patch(URLOPEN, return_value=fake_response(b"data")), \
                patch("padawanforce.core.downloader.open", create=True,
                      side_effect=PermissionError("denied")):
            assert downloader.download("https://x/fw.bin") is None

    def test_partial_file_left_after_mid_stream_failure(self, downloader, fake_response):
        response = fake_response(b"\x01" * DOWNLOAD_CHUNK * 3,
                                 headers={"Content-Length": str(DOWNLOAD_CHUNK * 3)})
        chunks = [b"\x01" * DOWNLOAD_CHUNK]

        def read(size=-1):
            if chunks:
                return chunks.pop()
            raise http.client.IncompleteRead(b"", DOWNLOAD_CHUNK * 2)

        response.read = read
        with patch(URLOPEN, return_value=response):
            assert downloader.download("https://x/fw.bin") is None

        partial = os.path.join(downloader.download_dir, "fw.bin")
        with open(partial, "rb") as f:
            assert f.read() == b"\x01" * DOWNLOAD_CHUNK

    def test_connection_reset_mid_stream_returns_none(self, downloader, fake_response):
        response = fake_response(b"")
        chunks = [b"abc"]

        def read(size=-1):
            if chunks:
                return chunks.pop()
            raise ConnectionResetError("reset by peer")

        response.read = read
        with patch(URLOPEN, return_value=response):
            assert downloader.download("https://x/fw.bin") is None

        assert os.path.getsize(os.path.join(downloader.download_dir, "fw.bin")) == 3

    def test_cleanup_removes_only_staging_folder(self, tmp_path, fake_response):
        base = tmp_path / "Downloads"
        base.mkdir()
        (base / "holiday.jpg").write_bytes(b"keep me")
        downloader = FirmwareDownloader(str(base))
        with patch(URLOPEN, return_value=fake_response(b"data")):
            downloader.download("https://x/fw.bin")

        downloader.cleanup()

        assert not os.path.exists(downloader.download_dir)
        assert (base / "holiday.jpg").read_bytes() == b"keep me"
        downloader.cleanup()    # nothing left, still fine
