#!/usr/bin/env python3
"""
PyTekCap - GPIB-serial hardcopy capture for Tektronix scopes.

This script:
  - Opens the serial port of a USB/serial GPIB adapter (8N1, no flow control)
  - Flushes stale adapter output and checks the adapter answers '+ver'
  - Addresses the scope and triggers 'HARDC STAR'
  - Streams the hardcopy bytes into a file until the scope goes quiet

Protocol notes:
  - Adapter commands are ASCII lines terminated with CR.
  - '++addr <n>' and '++mode 1' select the instrument, '+read' asks the
    adapter to forward whatever the instrument sends next.
  - The hardcopy format is whatever the scope is set up for (BMP by default),
    the bytes are written unmodified.
  - Progress: '.' per 1 KiB received, ':' when the scope went quiet and
    '+read' was re-sent. One silent window after a retry ends the transfer.
"""

from __future__ import annotations

import sys
import os
import argparse
import logging
from typing import Callable, Optional

from PIL import Image
from serial.tools import list_ports

from pytekcap.app_settings import AppSettings
from pytekcap.byte_reader import ReplayTransport
from pytekcap.errors import CaptureError, MissingFilename, PortUnavailable, describe_os_error
from pytekcap.gpib_adapter import validate_address
from pytekcap.hardcopy_grabber import CaptureEvent, grab_hardcopy
from pytekcap.serial_port import validate_baud

BANNER = "GPIB-Serial Tektronix scope screenshot tool"
LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)-7s %(module)s.%(funcName)s: %(message)s"


def init_logger(opt):
    """Set up the "PyTekCap" logger from the parsed options.

    stdout is reserved for the '.'/':' capture markers, so status text goes
    to stderr: INFO by default, DEBUG with -v, nothing with --quiet.
    -l/--logging adds a DEBUG log file (--log-file, default pytekcap.log)
    that also records every adapter command and reply.
    """
    logger = logging.getLogger("PyTekCap")
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(logging.DEBUG)

    handlers = []
    if not getattr(opt, "quiet", False):
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(logging.DEBUG if getattr(opt, "verbose", False) else logging.INFO)
        console.setFormatter(logging.Formatter("%(message)s"))
        handlers.append(console)

    if getattr(opt, "logging", False):
        log_path = getattr(opt, "log_file", None) or "pytekcap.log"
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        trace = logging.FileHandler(log_path, mode="w", encoding="utf-8")
        trace.setLevel(logging.DEBUG)
        trace.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        handlers.append(trace)

    for h in handlers:
        logger.addHandler(h)
    return logger


# --- Port/baud/address defaults ------------------------------------------------
def apply_settings(args, settings: Optional[AppSettings], use_saved: bool = True) -> None:
    """
    Give every connection option the user left out a value: the one
    remembered in *settings*, or the built-in default when use_saved is
    False or there is no settings object. Values are validated later.
    """
    if use_saved and settings is not None:
        defaults = {
            "port": settings.port,
            "baud": settings.baud,
            "address": settings.address,
        }
    else:
        defaults = {
            "port": AppSettings.DEFAULT_PORT,
            "baud": AppSettings.DEFAULT_BAUD,
            "address": AppSettings.DEFAULT_ADDRESS,
        }

    # command line wins
    for key, val in defaults.items():
        if getattr(args, key, None) is None:
            setattr(args, key, val)


def save_settings(args, settings: AppSettings) -> None:
    """Persist the resolved port/baud/address (--save-settings)."""
    settings.port = args.port
    settings.baud = int(args.baud)
    settings.address = int(args.address)
    settings.sync()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog='PyTekCap',
        description=BANNER,
        epilog='Run with no parameters to see this help message.',
    )
    # Communication
    p.add_argument('-p', '--port', dest='port', default=None,
                   help=f'serial port of the GPIB adapter [default: {AppSettings.DEFAULT_PORT}]')
    p.add_argument('-b', '--baud', dest='baud', default=None,
                   help=f'baud rate, 8N1 [default: {AppSettings.DEFAULT_BAUD}]')
    p.add_argument('-a', '--address', dest='address', default=None,
                   help=f'instrument GPIB address 0..30 [default: {AppSettings.DEFAULT_ADDRESS}]')

    # Output
    p.add_argument('output', nargs='?', default=None,
                   help="output file name; .bmp is appended when no extension is given "
                        "(to write no extension, end the name with '.')")
    p.add_argument('-s', '--show', action='store_true',
                   help='open the captured file with the system viewer')

    # Misc
    p.add_argument('-v', '--verbose', help='increase output verbosity', action='store_true')
    p.add_argument('-l', '--logging', help='enable logging to file', action='store_true')
    p.add_argument('--log-file', help='log file path (used with --logging)', default=None)
    p.add_argument('--quiet', help='suppress console log output', action='store_true')
    p.add_argument('--replay', default=None, metavar='HEXFILE',
                   help='play back a recorded hex dump instead of opening the serial port')
    p.add_argument('--list-ports', action='store_true', help='list serial ports and exit')

    p.add_argument('--no-settings', help='ignore config file defaults', action='store_true')
    p.add_argument('--save-settings', help='save port/baud/address to the user config', action='store_true')
    p.add_argument('--settings-file', default=None, help='use this INI file instead of the user config')
    return p


def print_marker(event: CaptureEvent) -> None:
    sys.stdout.write(event.value)
    sys.stdout.flush()


def list_serial_ports() -> None:
    for p in sorted(list_ports.comports(), key=lambda x: x.device):
        print(f"{p.device} - {p.description or 'Serial'}")


def show_capture(path: str, LOG: logging.Logger) -> None:
    """Hand the capture to the system viewer. The bytes are not checked otherwise."""
    try:
        with Image.open(path) as img:
            LOG.info('%s: %s %dx%d', path, img.format, img.size[0], img.size[1])
            img.show()
    except OSError as e:
        LOG.warning('Cannot display %s: %s', path, e)


def report_error(exc: CaptureError, LOG: logging.Logger,
                 describe_error: Callable[[BaseException], Optional[str]] = describe_os_error) -> int:
    """Log the failing stage plus the system's explanation, return the exit code.

    Errors without an exit code of their own are re-raised unchanged.
    """
    if exc.exit_code is None:
        raise exc
    LOG.error('%s', exc)
    detail = describe_error(exc)
    if detail:
        LOG.error('%s', detail)
    return exc.exit_code


# -----------------
# Main
# -----------------
def main(argv=None, *, describe_error: Callable[[BaseException], Optional[str]] = describe_os_error,
         transport=None, **engine_kwargs) -> int:
    argv = sys.argv[1:] if argv is None else list(argv)
    parser = build_parser()
    if not argv:
        print(BANNER)
        print()
        parser.print_help()
        return 0

    args = parser.parse_args(argv)
    LOG = init_logger(args)
    LOG.info(BANNER)

    if args.list_ports:
        list_serial_ports()
        return 0

    settings = None
    if not args.no_settings or args.save_settings:
        settings = AppSettings(args.settings_file)
    apply_settings(args, settings, use_saved=not args.no_settings)

    try:
        if not args.output:
            raise MissingFilename("Filename required.")
        address = validate_address(args.address)
        baud = validate_baud(args.baud)
        if args.save_settings:
            save_settings(args, settings)
            LOG.info('Settings saved to %s', settings.file_path())

        if transport is None and args.replay:
            try:
                transport = ReplayTransport(args.replay, logger=LOG)
            except (OSError, ValueError) as e:
                raise PortUnavailable(f"Error opening replay file {args.replay}.") from e
            LOG.info('Replaying %s', args.replay)

        result = grab_hardcopy(args.port, args.output, baud=baud, address=address,
                               transport=transport, observer=print_marker, logger=LOG,
                               **engine_kwargs)
    except CaptureError as e:
        sys.stdout.write('\n')
        return report_error(e, LOG, describe_error)

    print("\nDone.")
    LOG.info('%s: %d bytes written', result.output_path, result.bytes_written)

    if args.show:
        show_capture(result.output_path, LOG)
    return 0


if __name__ == '__main__':
    sys.exit(main())
