"""Update system data models — release feed payloads, session state, flash tool."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol


@dataclass(frozen=True)
class AssetDescriptor:
    """One downloadable file attached to a release."""

    name: str | None
    download_url: str | None    # browser_download_url from GitHub
    size_bytes: int = 0

    @staticmethod
    def from_json(data: dict) -> 'AssetDescriptor':
        size = data.get('size') or 0
        return AssetDescriptor(
            name=_optional_str(data.get('name')),
            download_url=_optional_str(data.get('browser_download_url')),
            size_bytes=size if type(size) is int else 0,
        )


@dataclass(frozen=True)
class ReleaseDescriptor:
    """A single release from the feed.

    The last three fields are not part of the wire payload; the resolver
    fills them once right after construction.
    """

    tag_name: str | None = None
    name: str | None = None
    body: str | None = None
    assets: tuple[AssetDescriptor, ...] = ()
    published_at: datetime | None = None

    firmware_version: str | None = None
    software_version: str | None = None
    download_url: str | None = None

    @staticmethod
    def from_json(data: dict) -> 'ReleaseDescriptor':
        """Build a descriptor from a GitHub ``releases/latest`` object."""
        assets = data.get('assets')
        if not isinstance(assets, list):
            assets = []
        return ReleaseDescriptor(
            tag_name=_optional_str(data.get('tag_name')),
            name=_optional_str(data.get('name')),
            body=_optional_str(data.get('body')),
            assets=tuple(AssetDescriptor.from_json(a) for a in assets
                         if isinstance(a, dict)),
            published_at=_parse_timestamp(data.get('published_at')),
        )


def _optional_str(value) -> str | None:
    return value if isinstance(value, str) else None


def _parse_timestamp(value) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        # GitHub uses a trailing 'Z', which fromisoformat only accepts on 3.11+
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None


class UpdatePhase(Enum):
    IDLE = "idle"
    CHECKING_UPDATES = "checking_updates"
    UP_TO_DATE = "up_to_date"
    UPDATES_AVAILABLE = "updates_available"
    DOWNLOADING_FIRMWARE = "downloading_firmware"
    LOCATING_TOOL = "locating_tool"
    FLASHING = "flashing"
    COMPLETED = "completed"
    FAILED = "failed"


class Severity(Enum):
    """How the presentation layer should classify a status message."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class FailureKind(Enum):
    NETWORK = "network"
    PARSE = "parse"
    TOOL_NOT_FOUND = "tool_not_found"
    SUBPROCESS = "subprocess"
    TIMEOUT = "timeout"
    FILE_IO = "file_io"
    INELIGIBLE = "ineligible"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class UpdateSession:
    """Snapshot of the update workflow state for observers."""

    phase: UpdatePhase = UpdatePhase.IDLE
    progress: float = 0             # 0..100
    status_text: str = ""           # current step, e.g. "Downloading firmware..."
    progress_text: str = ""         # detail line, e.g. "Downloading: 12 KB / 900 KB"
    status_message: str = ""        # user-facing outcome message
    severity: Severity = Severity.INFO
    last_error: str | None = None
    failure: FailureKind | None = None
    is_updating: bool = False


class InvocationMode(Enum):
    DIRECT = "direct"                           # esptool[.exe|.py] itself
    INTERPRETER_MODULE = "interpreter_module"   # python -m esptool


@dataclass(frozen=True)
class FlashToolHandle:
    """A usable esptool invocation found on this host."""

    executable_path: str
    invocation_mode: InvocationMode = InvocationMode.DIRECT
    module_name: str = "esptool"

    def command_prefix(self) -> list[str]:
        if self.invocation_mode is InvocationMode.INTERPRETER_MODULE:
            return [self.executable_path, "-m", self.module_name]
        return [self.executable_path]

    def __str__(self) -> str:
        return " ".join(self.command_prefix())


class DeviceConnection(Protocol):
    """The serial connection to the device, as seen by the updater."""

    @property
    def is_connected(self) -> bool: ...

    @property
    def com_port(self) -> str: ...

    def get_firmware_version(self) -> str | None: ...


@dataclass
class StaticDeviceConnection:
    """Device whose port and firmware version are known out of band (CLI use)."""

    com_port: str
    firmware_version: str | None = None
    is_connected: bool = True

    def get_firmware_version(self) -> str | None:
        return self.firmware_version
