"""Updater settings — persistence via JSON."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, asdict

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = os.path.join(os.environ.get('LOCALAPPDATA', '.'), 'PadAwan-Force')


@dataclass
class UpdaterSettings:
    """Persistent updater settings."""
    # Release feed
    github_owner: str = "Ghost3379"
    github_repo: str = "PadAwan"
    api_base: str = "https://api.github.com"
    http_timeout: float = 30            # seconds, feed request and download

    # Paths
    download_dir: str = ""              # base dir; binaries go in its PadAwan-Force subfolder
    data_dir: str = ""                  # logs + settings.json

    # Flashing
    chip: str = "esp32s3"
    baud_rate: int = 921600
    flash_timeout: float = 60           # seconds per esptool step
    probe_timeout: float = 2.0          # seconds per tool discovery probe

    def __post_init__(self):
        if not self.download_dir:
            self.download_dir = tempfile.gettempdir()
        if not self.data_dir:
            self.data_dir = DEFAULT_DATA_DIR

    @staticmethod
    def load(path: str | None = None) -> 'UpdaterSettings':
        """Load settings from JSON. Returns defaults if file doesn't exist."""
        if path is None:
            path = os.path.join(DEFAULT_DATA_DIR, 'settings.json')

        if not os.path.isfile(path):
            logger.info("No settings file, using defaults")
            return UpdaterSettings()

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            settings = UpdaterSettings(**{k: v for k, v in data.items()
                                          if k in UpdaterSettings.__dataclass_fields__})
            logger.info("Loaded settings from %s", path)
            return settings
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Failed to load settings: %s", e)
            return UpdaterSettings()

    def save(self, path: str | None = None):
        """Save settings to JSON."""
        if path is None:
            path = os.path.join(self.data_dir, 'settings.json')

        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        try:
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(asdict(self), f, indent=2)
            logger.info("Saved settings to %s", path)
        except OSError as e:
            logger.warning("Failed to save settings: %s", e)

    def ensure_dirs(self):
        """Create data directories if they don't exist."""
        os.makedirs(self.data_dir, exist_ok=True)
        os.makedirs(os.path.join(self.data_dir, 'logs'), exist_ok=True)
