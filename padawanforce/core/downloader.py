"""Firmware binary download with progress reporting."""

import http.client
import logging
import os
import re
import shutil
import tempfile
from typing import Callable
from urllib.error import URLError
from urllib.parse import unquote, urlparse
from urllib.request import Request, urlopen

from padawanforce.branding import AppBranding

logger = logging.getLogger(__name__)

# Streaming chunk size (8 KB)
DOWNLOAD_CHUNK = 8192

DEFAULT_FILENAME = "firmware.bin"

# The download owns this slice of the overall update progress bar
PROGRESS_START = 20
PROGRESS_END = 60

# (percent or None when the total size is unknown, human readable text)
ProgressCallback = Callable[[float | None, str], None]


def default_download_dir(base_dir: str | None = None) -> str:
    """App-owned staging folder under ``base_dir`` (the temp dir by default)."""
    return os.path.join(base_dir or tempfile.gettempdir(), AppBranding.APP_NAME)


def filename_from_url(url: str) -> str:
    """Last path segment of ``url``, or ``firmware.bin`` if there is none."""
    # Split on every separator Windows honours so the name stays inside the folder
    name = re.split(r"[\\/:]", unquote(urlparse(url).path))[-1].strip()
    if name in ("", ".", ".."):
        return DEFAULT_FILENAME
    return name


class FirmwareDownloader:
    """Streams a firmware binary into its own staging folder under ``base_dir``.

    Blocking, meant to run in a worker thread.
    """

    def __init__(self, base_dir: str | None = None,
                 user_agent: str | None = None,
                 timeout: float = 30):
        self.download_dir = default_download_dir(base_dir)
        self.user_agent = user_agent or AppBranding.user_agent()
        self.timeout = timeout

    def download(self, url: str,
                 on_progress: ProgressCallback | None = None) -> str | None:
        """Download ``url``. Returns the local file path, or None on failure.

        A partially written file is left in place on failure.
        """
        report = on_progress or (lambda percent, text: None)

        try:
            os.makedirs(self.download_dir, exist_ok=True)
            file_path = os.path.join(self.download_dir, filename_from_url(url))
            req = Request(url, headers={'User-Agent': self.user_agent})

            report(None, "Downloading...")
            with urlopen(req, timeout=self.timeout) as resp:
                total = _content_length(resp)
                downloaded = 0
                with open(file_path, 'wb') as f:
                    while True:
                        chunk = resp.read(DOWNLOAD_CHUNK)
                        if not chunk:
                            break
                        f.write(chunk)
                        downloaded += len(chunk)
                        if total:
                            fraction = min(downloaded / total, 1.0)
                            percent = PROGRESS_START + fraction * (PROGRESS_END - PROGRESS_START)
                            report(percent,
                                   f"Downloading: {downloaded // 1024} KB / {total // 1024} KB")
                        else:
                            report(None, f"Downloading: {downloaded // 1024} KB")
        except (URLError, OSError, ValueError, http.client.HTTPException) as e:
            # ValueError: malformed URL; HTTPException: e.g. IncompleteRead
            logger.error("Firmware download failed (%s): %s", url, e)
            return None

        logger.info("Downloaded %d bytes to %s", downloaded, file_path)
        report(None, "Download complete")
        return file_path

    def cleanup(self):
        """Remove the staging folder left over from earlier runs.

        Only the app-owned folder is removed, never the configured base.
        """
        # Leftovers are only disk clutter, so failures are ignored
        shutil.rmtree(self.download_dir, ignore_errors=True)


def _content_length(resp) -> int | None:
    value = resp.headers.get('Content-Length')
    try:
        length = int(value) if value is not None else 0
    except ValueError:
        return None
    return length if length > 0 else None
