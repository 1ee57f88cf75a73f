# gpib_adapter.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol

from pytekcap.errors import AddressOutOfRange, TransportWriteError

MIN_ADDRESS, MAX_ADDRESS = 0, 30

# ---- Adapter command dialect (ASCII, CR terminated) ----
CMD_FLUSH = b'\r\r+read\r'        # no-op probe; also drains a pending transaction
CMD_VERSION = b'+ver\r'
CMD_READ = b'+read\r'
CMD_TERMINATE = b'\r'
HARDCOPY_START = 'HARDC STAR'

FLUSH_POLL_DELAY = 0.010
VERSION_SETTLE_DELAY = 0.100
ARM_SETTLE_DELAY = 0.500


class ByteTransport(Protocol):
    """What the adapter needs from a transport (SerialTransport, ReplayTransport)."""

    def read(self, size: int = ...) -> bytes:
        ...

    def write(self, data: bytes) -> None:
        ...

    def close(self) -> None:
        ...


def validate_address(address: int) -> int:
    """Reject GPIB primary addresses outside 0..30."""
    try:
        value = int(address)
    except (TypeError, ValueError):
        raise AddressOutOfRange(f"Address {address!r} out of range.") from None
    if value < MIN_ADDRESS or value > MAX_ADDRESS:
        raise AddressOutOfRange(f"Address {value} out of range.")
    return value


def arm_command(address: int) -> bytes:
    """Select the instrument, enter controller mode, trigger the hardcopy.

    Address and mode must precede the trigger, otherwise the adapter
    forwards HARDC STAR to whichever device it was last talking to.
    """
    address = validate_address(address)
    return f'++addr {address}\r++mode 1\r{HARDCOPY_START}\r'.encode('ascii')


class GpibAdapter:
    """
    Line-command dialect of a serial-to-GPIB bridge.

    Only knows how to talk to the adapter; what the instrument sends back is
    opaque bytes. Transport errors (TransportReadError/TransportWriteError)
    propagate unchanged, the capture engine decides which stage failed.
    """

    def __init__(self, transport: ByteTransport, *, sleep: Callable[[float], None] = time.sleep,
                 logger: logging.Logger | None = None):
        self.transport = transport
        self._sleep = sleep
        self.LOG = logger or logging.getLogger(__name__)

    def flush_pending(self) -> int:
        """Send the no-op probe and discard input until a read comes back empty.

        Returns:
          Number of stale bytes discarded.
        """
        self.transport.write(CMD_FLUSH)
        discarded = 0
        while True:
            self._sleep(FLUSH_POLL_DELAY)
            stale = self.transport.read()
            if not stale:
                break
            discarded += len(stale)
        if discarded:
            self.LOG.debug('Discarded %d stale bytes', discarded)
        return discarded

    def identify(self) -> Optional[str]:
        """Query the adapter version. Returns None when nothing came back."""
        self.transport.write(CMD_VERSION)
        self._sleep(VERSION_SETTLE_DELAY)
        reply = self.transport.read()
        if not reply:
            return None
        return reply.decode('ascii', errors='replace').strip()

    def select_and_arm(self, address: int) -> None:
        self.transport.write(arm_command(address))
        self._sleep(ARM_SETTLE_DELAY)

    def request_more(self) -> None:
        self.transport.write(CMD_READ)

    def terminate(self) -> None:
        """Send a bare CR. Teardown only, so failures are not reported."""
        try:
            self.transport.write(CMD_TERMINATE)
        except TransportWriteError as e:
            self.LOG.debug('Terminator not sent: %s', e)
