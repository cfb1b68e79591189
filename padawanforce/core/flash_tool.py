"""esptool discovery — native executable, known install dirs, or python -m esptool.

Candidates are tried in order and the first usable one wins:

  1. esptool on PATH (accepted as-is)
  2. esptool shipped with the Arduino ESP32 core or PlatformIO
  3. a Python interpreter that can run ``-m esptool``

Nothing is cached: the host may gain or lose esptool between attempts.
"""

import glob
import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path

from padawanforce.core.models import FlashToolHandle, InvocationMode

logger = logging.getLogger(__name__)

ESPTOOL_MODULE = "esptool"
PROBE_TIMEOUT = 2.0

# esptool has answered "version" since 2.x; "--version" is rejected by argparse
VERSION_ARGS = ["version"]

INTERPRETER_NAMES = ("python", "python3")


def default_executable_names() -> tuple[str, ...]:
    if sys.platform == "win32":
        return ("esptool.exe",)
    return ("esptool", "esptool.py")


def default_install_patterns() -> list[str]:
    """Install locations, each with one wildcard path segment."""
    home = Path.home()
    if sys.platform == "win32":
        local = os.environ.get('LOCALAPPDATA', str(home / 'AppData' / 'Local'))
        arduino = Path(local) / 'Arduino15'
        pio_scripts = home / '.platformio' / 'penv' / 'Scripts'
    elif sys.platform == "darwin":
        arduino = home / 'Library' / 'Arduino15'
        pio_scripts = home / '.platformio' / 'penv' / 'bin'
    else:
        arduino = home / '.arduino15'
        pio_scripts = home / '.platformio' / 'penv' / 'bin'
    return [
        str(arduino / 'packages' / 'esp32' / 'tools' / 'esptool_py' / '*'),
        str(pio_scripts),
        str(home / '.platformio' / 'packages' / 'tool-esptoolpy*'),
    ]


def _no_window() -> int:
    return getattr(subprocess, 'CREATE_NO_WINDOW', 0)


class FlashToolLocator:
    """Finds a way to run esptool on this host."""

    def __init__(self, executable_names: tuple[str, ...] | None = None,
                 install_patterns: list[str] | None = None,
                 interpreters: tuple[str, ...] = INTERPRETER_NAMES,
                 module_name: str = ESPTOOL_MODULE,
                 probe_timeout: float = PROBE_TIMEOUT):
        self.executable_names = executable_names or default_executable_names()
        self.install_patterns = (install_patterns if install_patterns is not None
                                 else default_install_patterns())
        self.interpreters = interpreters
        self.module_name = module_name
        self.probe_timeout = probe_timeout

    def locate(self) -> FlashToolHandle | None:
        """Return the first usable esptool invocation, or None."""
        for find in (self._from_path, self._from_install_dirs, self._from_interpreter):
            handle = find()
            if handle is not None:
                logger.info("Using flash tool: %s", handle)
                return handle
        logger.error("esptool not found (PATH, %d install locations, %s)",
                     len(self.install_patterns), "/".join(self.interpreters))
        return None

    # ── Candidates ───────────────────────────────────────────────────

    def _from_path(self) -> FlashToolHandle | None:
        for name in self.executable_names:
            path = shutil.which(name)
            if path:
                return FlashToolHandle(path, InvocationMode.DIRECT)
        return None

    def _from_install_dirs(self) -> FlashToolHandle | None:
        for pattern in self.install_patterns:
            for base in sorted(glob.glob(pattern)):
                if not os.path.isdir(base):
                    continue
                for name in self.executable_names:
                    for match in sorted(Path(base).rglob(name)):
                        if not match.is_file():
                            continue
                        if self._probe([str(match)] + VERSION_ARGS, require_success=True):
                            return FlashToolHandle(str(match), InvocationMode.DIRECT)
                        logger.debug("Ignoring unusable esptool at %s", match)
        return None

    def _from_interpreter(self) -> FlashToolHandle | None:
        for name in self.interpreters:
            interpreter = shutil.which(name)
            if not interpreter:
                continue
            if not self._probe([interpreter, "--version"]):
                continue
            if self._probe([interpreter, "-m", self.module_name] + VERSION_ARGS,
                           require_success=True):
                return FlashToolHandle(interpreter, InvocationMode.INTERPRETER_MODULE,
                                       self.module_name)
            logger.debug("%s cannot run -m %s", interpreter, self.module_name)
        return None

    # ── Probe ────────────────────────────────────────────────────────

    def _probe(self, cmd: list[str], require_success: bool = False) -> bool:
        """Run ``cmd`` briefly. True if it started (and exited 0 when required)."""
        try:
            result = subprocess.run(
                cmd,
                capture_output=True, text=True,
                timeout=self.probe_timeout,
                creationflags=_no_window(),
            )
        except (OSError, subprocess.SubprocessError) as e:
            # A candidate that cannot start or hangs is simply not usable
            logger.debug("Probe %s failed: %s", cmd, e)
            return False
        return result.returncode == 0 or not require_success
