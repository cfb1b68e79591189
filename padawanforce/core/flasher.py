"""esptool flashing — erase, write and verify against the device's serial port.

The three steps always run in that order and each one only starts if the
previous one exited with code 0. esptool's output is kept for diagnostics
but never parsed: the exit code is the only success signal.
"""

import logging
import subprocess
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable

import psutil

from padawanforce.core.models import FailureKind, FlashToolHandle

logger = logging.getLogger(__name__)

FLASH_CHIP = "esp32s3"
FLASH_BAUD = 921600
FLASH_ADDRESS = "0x0"
STEP_TIMEOUT = 60           # seconds per esptool invocation

# Fixed progress markers (percent of the overall update)
PROGRESS_ERASE = 60
PROGRESS_WRITE = 70
PROGRESS_VERIFY = 90
PROGRESS_VERIFIED = 95

ProgressCallback = Callable[[float | None, str], None]


class FlashStep(Enum):
    ERASE = "erase_flash"
    WRITE = "write_flash"
    VERIFY = "verify_flash"


_STEP_FAILURES = {
    FlashStep.ERASE: "Failed to erase flash",
    FlashStep.WRITE: "Failed to write firmware",
    FlashStep.VERIFY: "Firmware verification failed",
}


@dataclass
class ToolRun:
    """Outcome of one esptool invocation."""
    command: list[str]
    returncode: int | None = None   # None if the process never started
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    timed_out: bool = False
    error: str = ""                 # start failure

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


@dataclass
class FlashResult:
    """Outcome of the whole erase/write/verify sequence."""
    success: bool
    message: str
    failed_step: FlashStep | None = None
    failure: FailureKind | None = None
    runs: list[ToolRun] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.success


def _kill_process_tree(proc: subprocess.Popen):
    """Kill ``proc`` and its children (python -m esptool may fork).

    Falls back to killing ``proc`` alone when psutil cannot walk the tree.
    """
    try:
        parent = psutil.Process(proc.pid)
        procs = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        return
    except psutil.Error as e:
        logger.warning("Cannot inspect esptool process tree: %s", e)
        proc.kill()
        return

    for child in procs:
        try:
            child.kill()
        except psutil.NoSuchProcess:
            pass
        except psutil.Error as e:
            logger.warning("Cannot kill process %s: %s", child.pid, e)
    psutil.wait_procs(procs, timeout=5)
    if proc.poll() is None:
        proc.kill()


def _drain(stream: Iterable[str], sink: list[str], label: str):
    for line in stream:
        line = line.rstrip('\r\n')
        sink.append(line)
        logger.debug("esptool %s: %s", label, line)


class FlashOrchestrator:
    """Runs esptool erase_flash → write_flash → verify_flash."""

    def __init__(self, chip: str = FLASH_CHIP, baud: int = FLASH_BAUD,
                 step_timeout: float = STEP_TIMEOUT):
        self.chip = chip
        self.baud = baud
        self.step_timeout = step_timeout

    def build_command(self, tool: FlashToolHandle, port: str,
                      step: FlashStep, step_args: list[str] | None = None) -> list[str]:
        return tool.command_prefix() + [
            "--port", port,
            "--baud", str(self.baud),
            "--chip", self.chip,
            step.value,
        ] + list(step_args or [])

    def run_tool(self, command: list[str]) -> ToolRun:
        """Run one esptool command, collecting output until exit or timeout."""
        run = ToolRun(command=command)
        logger.info("Running: %s", " ".join(command))

        try:
            proc = subprocess.Popen(
                command,
                stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                text=True, errors='replace', bufsize=1,
                creationflags=getattr(subprocess, 'CREATE_NO_WINDOW', 0),
            )
        except (OSError, ValueError) as e:
            run.error = str(e)
            logger.error("Could not start esptool: %s", e)
            return run

        readers = [
            threading.Thread(target=_drain, args=(proc.stdout, run.stdout, "out"), daemon=True),
            threading.Thread(target=_drain, args=(proc.stderr, run.stderr, "err"), daemon=True),
        ]
        for reader in readers:
            reader.start()

        try:
            run.returncode = proc.wait(timeout=self.step_timeout)
        except subprocess.TimeoutExpired:
            run.timed_out = True
            logger.error("esptool timed out after %ss, killing it", self.step_timeout)
            _kill_process_tree(proc)
            run.returncode = proc.wait()

        for reader in readers:
            reader.join(timeout=5)
        proc.stdout.close()
        proc.stderr.close()

        if run.stderr:
            logger.debug("esptool stderr:\n%s", "\n".join(run.stderr))
        logger.info("esptool exited with code %s", run.returncode)
        return run

    def flash(self, tool: FlashToolHandle, port: str, binary_path: str,
              on_progress: ProgressCallback | None = None) -> FlashResult:
        """Erase, write and verify ``binary_path`` on the device at ``port``."""
        report = on_progress or (lambda percent, text: None)
        runs: list[ToolRun] = []

        steps = [
            (FlashStep.ERASE, [], PROGRESS_ERASE, "Erasing flash..."),
            (FlashStep.WRITE, [FLASH_ADDRESS, binary_path], PROGRESS_WRITE, "Writing firmware..."),
            (FlashStep.VERIFY, [FLASH_ADDRESS, binary_path], PROGRESS_VERIFY, "Verifying..."),
        ]
        for step, args, marker, text in steps:
            report(marker, text)
            run = self.run_tool(self.build_command(tool, port, step, args))
            runs.append(run)

            if step is FlashStep.VERIFY:
                report(PROGRESS_VERIFIED, "Verification complete" if run.success
                       else "Verification failed")

            if not run.success:
                failure = FailureKind.TIMEOUT if run.timed_out else FailureKind.SUBPROCESS
                message = _STEP_FAILURES[step]
                if run.timed_out:
                    message += f" (timed out after {self.step_timeout:g}s)"
                logger.error("%s on %s", message, port)
                return FlashResult(False, message, step, failure, runs)

        logger.info("Firmware flashed and verified on %s", port)
        return FlashResult(True, "Firmware flashed and verified", runs=runs)
