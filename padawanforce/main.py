"""PadAwan-Force updater — entry point.

Usage:
    padawanforce check [--port COM3] [--device-version 1.0.0]
    padawanforce flash --port COM3 --device-version 1.0.0
    padawanforce find-tool
"""

import argparse
import logging
import os
import sys

from padawanforce.branding import AppBranding
from padawanforce.config.settings import UpdaterSettings
from padawanforce.core.flash_tool import FlashToolLocator
from padawanforce.core.models import StaticDeviceConnection, UpdateSession
from padawanforce.core.workflow import UpdateWorkflow


def setup_logging(data_dir: str, verbose: bool = False):
    """Configure logging to file and console."""
    log_dir = os.path.join(data_dir, 'logs')
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, 'padawanforce.log')

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='padawanforce',
        description=f"{AppBranding.APP_NAME} firmware updater v{AppBranding.VERSION}",
    )
    parser.add_argument('--settings', help="Path to settings.json")
    parser.add_argument('-v', '--verbose', action='store_true', help="Debug logging")
    sub = parser.add_subparsers(dest='command', required=True)

    check = sub.add_parser('check', help="Check the release feed for updates")
    check.add_argument('--port', '-p', help="Serial port of the device")
    check.add_argument('--device-version', help="Firmware version on the device")

    flash = sub.add_parser('flash', help="Download and flash the latest firmware")
    flash.add_argument('--port', '-p', required=True, help="Serial port of the device")
    flash.add_argument('--device-version', required=True,
                       help="Firmware version currently on the device")

    sub.add_parser('find-tool', help="Show which esptool would be used")
    return parser


def _print_session(session: UpdateSession):
    if session.status_message:
        print(f"[{session.severity.value}] {session.status_message}")


def _make_workflow(args, settings: UpdaterSettings) -> UpdateWorkflow:
    device = None
    if args.port:
        device = StaticDeviceConnection(args.port, args.device_version)
    workflow = UpdateWorkflow(device, settings)
    workflow.initialize()
    return workflow


def run_check(args, settings: UpdaterSettings) -> int:
    workflow = _make_workflow(args, settings)
    session = workflow.check_for_updates()
    _print_session(session)
    if workflow.has_update_info:
        print(f"Device firmware:   {workflow.device_firmware_version}")
        print(f"Latest firmware:   {workflow.latest_firmware_version}")
        print(f"Installed software: {workflow.software_version}")
        print(f"Latest software:   {workflow.latest_software_version}")
    return 0


def run_flash(args, settings: UpdaterSettings) -> int:
    workflow = _make_workflow(args, settings)
    workflow.downloader.cleanup()
    _print_session(workflow.check_for_updates())
    if not workflow.can_update_firmware:
        print("No firmware update to apply.")
        return 1

    last_text = [""]

    def show(session: UpdateSession):
        text = session.progress_text or session.status_text
        if text and text != last_text[0]:
            last_text[0] = text
            print(f"{session.progress:5.1f}%  {text}")

    workflow.subscribe(show)
    ok = workflow.update_firmware()
    _print_session(workflow.session)
    return 0 if ok else 1


def run_find_tool(args, settings: UpdaterSettings) -> int:
    tool = FlashToolLocator(probe_timeout=settings.probe_timeout).locate()
    if tool is None:
        print("esptool not found. Please install esptool.py or esptool.exe")
        return 1
    print(f"{tool}  ({tool.invocation_mode.value})")
    return 0


COMMANDS = {
    'check': run_check,
    'flash': run_flash,
    'find-tool': run_find_tool,
}


def main(argv: list[str] | None = None):
    args = build_parser().parse_args(argv)

    settings = UpdaterSettings.load(args.settings)
    settings.ensure_dirs()

    setup_logging(settings.data_dir, args.verbose)
    logger = logging.getLogger(__name__)
    logger.info("%s updater starting (%s)", AppBranding.APP_NAME, args.command)

    exit_code = COMMANDS[args.command](args, settings)
    sys.exit(exit_code)


if __name__ == '__main__':
    main()
