"""Release feed lookup — latest GitHub release and the versions it carries.

A single release is used for both firmware and software. The versions are
mined heuristically from the tag name and the release notes:

  tag "firmware-v2.3.1"                 -> firmware v2.3.1
  tag "v1.0.0"                          -> firmware and software v1.0.0
  body "Firmware: v1.0.0, Software: v1.1.0"
"""

import dataclasses
import json
import logging
import re
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from padawanforce.branding import AppBranding
from padawanforce.core.models import AssetDescriptor, ReleaseDescriptor

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"

FIRMWARE = "firmware"
SOFTWARE = "software"

_TAG_VERSION = re.compile(r'v?(\d+\.\d+\.\d+)')


def extract_version(release: ReleaseDescriptor, kind: str) -> str | None:
    """Best-effort version of ``kind`` ("firmware" or "software") in a release.

    Returns ``v<major>.<minor>.<patch>`` when a version is found, else the raw
    tag name, which may be None or not a version at all.
    """
    if release.tag_name is not None:
        tag = release.tag_name.lower()
        generic = FIRMWARE not in tag and SOFTWARE not in tag
        if kind in tag or generic:
            match = _TAG_VERSION.search(tag)
            if match:
                return f"v{match.group(1)}"

    if release.body is not None:
        match = re.search(rf'{re.escape(kind)}[:\s]+v?(\d+\.\d+\.\d+)',
                          release.body, re.IGNORECASE)
        if match:
            return f"v{match.group(1)}"

    return release.tag_name


def find_firmware_url(assets: tuple[AssetDescriptor, ...]) -> str | None:
    """Download URL of the first ``.bin`` asset."""
    for asset in assets:
        if asset.name and asset.name.endswith('.bin'):
            return asset.download_url
    return None


class ReleaseResolver:
    """Fetches the latest release and fills in the derived fields.

    Blocking; run it off the GUI thread (see ``UpdateWorker``).
    """

    def __init__(self, owner: str, repo: str,
                 api_base: str = GITHUB_API_BASE,
                 user_agent: str | None = None,
                 timeout: float = 30):
        self.owner = owner
        self.repo = repo
        self.api_base = api_base.rstrip('/')
        self.user_agent = user_agent or AppBranding.user_agent()
        self.timeout = timeout

    @property
    def latest_release_url(self) -> str:
        return f"{self.api_base}/repos/{self.owner}/{self.repo}/releases/latest"

    def fetch_latest(self) -> dict | None:
        """GET the latest release object. None on any failure."""
        req = Request(self.latest_release_url, headers={
            'User-Agent': self.user_agent,
            'Accept': 'application/vnd.github+json',
        })

        try:
            with urlopen(req, timeout=self.timeout) as resp:
                status = getattr(resp, 'status', 200)
                if not 200 <= status < 300:
                    logger.warning("GitHub API error: HTTP %s", status)
                    return None
                data = json.loads(resp.read().decode('utf-8'))
        except HTTPError as e:
            logger.warning("GitHub API error: HTTP %s", e.code)
            return None
        except (URLError, OSError) as e:
            logger.warning("Failed to fetch latest release: %s", e)
            return None
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Invalid release payload: %s", e)
            return None

        if not isinstance(data, dict):
            logger.warning("Unexpected release payload type: %s", type(data).__name__)
            return None
        return data

    def resolve_latest(self) -> ReleaseDescriptor | None:
        """Latest release with firmware/software versions and .bin URL filled in."""
        data = self.fetch_latest()
        if data is None:
            return None

        raw = ReleaseDescriptor.from_json(data)
        release = dataclasses.replace(
            raw,
            firmware_version=extract_version(raw, FIRMWARE),
            software_version=extract_version(raw, SOFTWARE),
            download_url=find_firmware_url(raw.assets),
        )
        logger.info("Latest release %s: firmware=%s software=%s asset=%s",
                    release.tag_name, release.firmware_version,
                    release.software_version, release.download_url)
        return release
