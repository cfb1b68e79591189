"""Update workflow — check the release feed, then download and flash firmware.

Architecture:
  UpdateWorkflow — pure Python state machine (no Qt dependency), blocking
  UpdateWorker   — QThread wrapper with pyqtSignal for thread-safe UI updates

The workflow is the only writer of the UpdateSession. Every change produces
a new snapshot that is handed to the subscribed listeners.
"""

import dataclasses
import logging
import os
from typing import Callable

from padawanforce.branding import AppBranding
from padawanforce.config.settings import UpdaterSettings
from padawanforce.core.downloader import FirmwareDownloader
from padawanforce.core.flash_tool import FlashToolLocator
from padawanforce.core.flasher import FlashOrchestrator
from padawanforce.core.models import (
    DeviceConnection, FailureKind, ReleaseDescriptor, Severity,
    UpdatePhase, UpdateSession,
)
from padawanforce.core.release_resolver import ReleaseResolver
from padawanforce.core.versions import compare_versions, is_release_version

logger = logging.getLogger(__name__)

NOT_CONNECTED = "Not connected"
UNKNOWN = "Unknown"

SessionListener = Callable[[UpdateSession], None]


def _strip_v(version: str) -> str:
    return version.strip().lstrip('vV').strip()


class UpdateWorkflow:
    """Checks for updates and drives the firmware update of one device.

    Not reentrant: a second update is refused while ``is_updating``.
    """

    def __init__(self, device: DeviceConnection | None,
                 settings: UpdaterSettings | None = None,
                 resolver: ReleaseResolver | None = None,
                 downloader: FirmwareDownloader | None = None,
                 locator: FlashToolLocator | None = None,
                 flasher: FlashOrchestrator | None = None,
                 software_version: str | None = None):
        settings = settings or UpdaterSettings()
        self.device = device
        self.resolver = resolver or ReleaseResolver(
            settings.github_owner, settings.github_repo,
            api_base=settings.api_base, timeout=settings.http_timeout,
        )
        self.downloader = downloader or FirmwareDownloader(
            settings.download_dir, timeout=settings.http_timeout,
        )
        self.locator = locator or FlashToolLocator(probe_timeout=settings.probe_timeout)
        self.flasher = flasher or FlashOrchestrator(
            settings.chip, settings.baud_rate, settings.flash_timeout,
        )

        self.software_version = software_version or AppBranding.software_version()
        self.device_firmware_version = UNKNOWN
        self.latest_firmware_version = ""
        self.latest_software_version = ""
        self.has_update_info = False
        self.can_update_firmware = False
        self.can_update_software = False

        self._session = UpdateSession()
        self._listeners: list[SessionListener] = []

    # ── Observation ──────────────────────────────────────────────────

    @property
    def session(self) -> UpdateSession:
        return self._session

    @property
    def is_updating(self) -> bool:
        return self._session.is_updating

    def subscribe(self, listener: SessionListener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: SessionListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _update(self, **changes) -> UpdateSession:
        """Single write path for the session: replace and notify."""
        self._session = dataclasses.replace(self._session, **changes)
        for listener in list(self._listeners):
            listener(self._session)
        return self._session

    def _report(self, message: str, severity: Severity, **changes):
        return self._update(status_message=message, severity=severity, **changes)

    # ── Initialization ───────────────────────────────────────────────

    def initialize(self) -> str:
        """Read the firmware version from the device. Call before checking."""
        version = None
        if self.device is not None and self.device.is_connected:
            try:
                version = self.device.get_firmware_version()
            except OSError as e:
                logger.warning("Could not read device firmware version: %s", e)

        self.device_firmware_version = f"v{_strip_v(version)}" if version else NOT_CONNECTED
        logger.info("Device firmware: %s, software: %s",
                    self.device_firmware_version, self.software_version)
        return self.device_firmware_version

    # ── Check ────────────────────────────────────────────────────────

    def check_for_updates(self) -> UpdateSession:
        """Query the feed and compute which updates can be offered."""
        self.has_update_info = False
        self.can_update_firmware = False
        self.can_update_software = False
        self._report("Checking for updates...", Severity.INFO,
                     phase=UpdatePhase.CHECKING_UPDATES, last_error=None, failure=None)

        try:
            release = self.resolver.resolve_latest()
            if release is None:
                return self._report("No releases found on GitHub.", Severity.WARNING,
                                    phase=UpdatePhase.UP_TO_DATE)

            self._apply_release(release)
        except Exception as e:
            logger.exception("Update check error")
            return self._report(f"Error checking for updates: {e}", Severity.ERROR,
                                phase=UpdatePhase.IDLE, last_error=str(e),
                                failure=FailureKind.UNEXPECTED)

        if self.can_update_firmware or self.can_update_software:
            return self._report("Updates available!", Severity.SUCCESS,
                                phase=UpdatePhase.UPDATES_AVAILABLE)
        return self._report("You are running the latest versions!", Severity.SUCCESS,
                            phase=UpdatePhase.UP_TO_DATE)

    def _apply_release(self, release: ReleaseDescriptor):
        self.latest_firmware_version = release.firmware_version or UNKNOWN
        self.latest_software_version = release.software_version or UNKNOWN
        self.has_update_info = True
        self.can_update_firmware = self.firmware_update_eligible(
            self.device_firmware_version, self.latest_firmware_version)
        self.can_update_software = self.software_update_eligible(
            self.software_version, self.latest_software_version)

    @staticmethod
    def firmware_update_eligible(device_version: str, latest_version: str) -> bool:
        """Device version must be known and older than a real latest version."""
        device = _strip_v(device_version or "")
        if not device or device.lower() in (NOT_CONNECTED.lower(), UNKNOWN.lower()):
            return False
        if not is_release_version(latest_version):
            return False
        return compare_versions(device, latest_version) < 0

    @staticmethod
    def software_update_eligible(current_version: str, latest_version: str) -> bool:
        if not is_release_version(latest_version):
            return False
        return compare_versions(current_version, latest_version) < 0

    # ── Firmware update ──────────────────────────────────────────────

    def update_firmware(self) -> bool:
        """Download the latest firmware and flash it. Returns True on success."""
        if self.is_updating:
            logger.warning("Firmware update already running")
            return False
        if (not self.can_update_firmware or self.device is None
                or not self.device.is_connected):
            self._report("Cannot update firmware: Device not connected", Severity.ERROR,
                         failure=FailureKind.INELIGIBLE, last_error="ineligible")
            return False

        self._update(is_updating=True, status_text="Updating firmware...", progress=0,
                     progress_text="", status_message="", severity=Severity.INFO,
                     last_error=None, failure=None)
        success = False
        try:
            success = self._run_firmware_update()
        except Exception as e:
            logger.exception("Firmware update error")
            self._fail(f"Error updating firmware: {e}", FailureKind.UNEXPECTED)
        finally:
            progress = self._session.progress
            self._update(is_updating=False, phase=UpdatePhase.IDLE,
                         progress=progress if progress == 100 else 0)
        return success

    def _run_firmware_update(self) -> bool:
        self._update(phase=UpdatePhase.DOWNLOADING_FIRMWARE,
                     status_text="Checking for firmware...", progress=10)
        release = self.resolver.resolve_latest()
        if release is None:
            return self._fail("No firmware file found in latest release.", FailureKind.NETWORK)
        if not release.download_url:
            return self._fail("No firmware file found in latest release.", FailureKind.PARSE)

        self._update(status_text="Downloading firmware...", progress=20)
        bin_path = self.downloader.download(release.download_url, self._on_progress)
        if not bin_path or not os.path.isfile(bin_path):
            return self._fail("Failed to download firmware file.", FailureKind.FILE_IO)

        self._update(phase=UpdatePhase.LOCATING_TOOL, status_text="Locating esptool...")
        tool = self.locator.locate()
        if tool is None:
            return self._fail("esptool not found. Please install esptool.py or esptool.exe",
                              FailureKind.TOOL_NOT_FOUND)

        self._update(phase=UpdatePhase.FLASHING, status_text="Flashing firmware...",
                     progress=60)
        result = self.flasher.flash(tool, self.device.com_port, bin_path, self._on_progress)
        if not result:
            return self._fail(f"Firmware flash failed: {result.message}. "
                              "Please reconnect your device and try again.",
                              result.failure or FailureKind.SUBPROCESS)

        self._update(phase=UpdatePhase.COMPLETED, progress=100,
                     status_text="Firmware updated successfully!")
        self._report("Firmware update completed! Please reconnect your device.",
                     Severity.SUCCESS)

        try:
            os.remove(bin_path)
        except OSError as e:
            # cleanup() removes leftovers on next start
            logger.debug("Could not delete %s: %s", bin_path, e)
        return True

    def _fail(self, message: str, failure: FailureKind) -> bool:
        logger.error("Firmware update failed: %s", message)
        self._report(message, Severity.ERROR, phase=UpdatePhase.FAILED,
                     last_error=message, failure=failure)
        return False

    def _on_progress(self, percent: float | None, text: str):
        if percent is None:
            self._update(progress_text=text)
        else:
            self._update(progress=percent, progress_text=text)

    # ── Software update ──────────────────────────────────────────────

    def update_software(self):
        """Placeholder: software updates need an installer and are not supported."""
        self._report("Software update not yet implemented.", Severity.WARNING)


# ── QThread Worker ───────────────────────────────────────────────────

# Import PyQt6 only when the worker is actually used (lazy import
# to keep UpdateWorkflow itself free of Qt dependency)

def _get_worker_class():
    """Lazy import to avoid PyQt6 at module level."""
    from PyQt6.QtCore import QThread, pyqtSignal

    class UpdateWorker(QThread):
        """Background worker for workflow operations.

        Session snapshots produced while the worker runs are re-emitted as
        signals, which Qt dispatches to the thread that owns the receiving
        widgets.
        """

        session_changed = pyqtSignal(object)    # UpdateSession
        initialized = pyqtSignal(str)           # device firmware version
        check_finished = pyqtSignal(object)     # UpdateSession
        update_finished = pyqtSignal(bool)      # firmware update success

        def __init__(self, workflow: UpdateWorkflow, parent=None):
            super().__init__(parent)
            self._workflow = workflow
            self._mode: str = ""        # "initialize", "check" or "update"

        def initialize(self):
            """Start background device version lookup."""
            self._start("initialize")

        def check(self):
            """Start background initialize + update check."""
            self._start("check")

        def update_firmware(self):
            """Start background firmware update."""
            self._start("update")

        def _start(self, mode: str):
            if self.isRunning() or self._workflow.is_updating:
                logger.warning("Update worker busy, ignoring %s", mode)
                return
            self._mode = mode
            self.start()

        def run(self):
            """Thread entry point, dispatches on mode."""
            # Listen only while running so a deleted worker is never called back
            self._workflow.subscribe(self._forward_session)
            try:
                if self._mode == "initialize":
                    self.initialized.emit(self._workflow.initialize())
                elif self._mode == "check":
                    self._workflow.initialize()
                    self.check_finished.emit(self._workflow.check_for_updates())
                elif self._mode == "update":
                    self.update_finished.emit(self._workflow.update_firmware())
            finally:
                self._workflow.unsubscribe(self._forward_session)

        def _forward_session(self, session: UpdateSession):
            self.session_changed.emit(session)

    return UpdateWorker


# Module-level accessor
_UpdateWorkerClass = None


def get_update_worker_class():
    """Get the UpdateWorker class (lazy-imported to avoid PyQt6 at import time)."""
    global _UpdateWorkerClass
    if _UpdateWorkerClass is None:
        _UpdateWorkerClass = _get_worker_class()
    return _UpdateWorkerClass
