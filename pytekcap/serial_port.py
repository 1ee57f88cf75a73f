# serial_port.py
from __future__ import annotations

import logging
from typing import Optional

import serial

from pytekcap.errors import (
    BaudOutOfRange, ConfigFailed, PortUnavailable, TransportReadError, TransportWriteError,
)

MAX_BAUD = 6_000_000
READ_CHUNK = 1024          # matches the adapter's buffer, also the progress tick
READ_TIMEOUT = 1.0         # seconds; a read returns what arrived within this window
WRITE_TIMEOUT = 0.1        # seconds; commands are a few dozen bytes
BUFFER_SIZE = 1024


def validate_baud(baud: int) -> int:
    """Reject baud rates outside 0 < baud <= 6 Mbaud."""
    try:
        value = int(baud)
    except (TypeError, ValueError):
        raise BaudOutOfRange(f"Baud rate {baud!r} out of range.") from None
    if value <= 0 or value > MAX_BAUD:
        raise BaudOutOfRange(f"Baud rate {value} out of range.")
    return value


class SerialTransport:
    """
    Byte-stream link to the GPIB adapter (pyserial). No protocol knowledge.

    Usage:
        t = SerialTransport("/dev/ttyUSB0", logger=LOG)
        t.open()                # PortUnavailable
        t.configure(230400)     # ConfigFailed
        t.write(b"+ver\\r")
        reply = t.read()        # b"" when nothing arrived within READ_TIMEOUT
        t.close()

    The port name goes through ``serial.serial_for_url`` so pyserial URLs
    such as ``loop://`` or ``socket://host:port`` work as well.
    """

    def __init__(self, tty: str, *, read_timeout: float = READ_TIMEOUT,
                 write_timeout: float = WRITE_TIMEOUT, logger: logging.Logger | None = None):
        self.tty = tty
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.port: Optional[serial.SerialBase] = None
        self.configured = False
        self.LOG = logger or logging.getLogger(__name__)

    # -----------------------
    # Serial lifecycle
    # -----------------------
    def open(self) -> serial.SerialBase:
        """Open the device exclusively for read/write, DTR/RTS deasserted."""
        self.LOG.debug('Opening serial port %s', self.tty)
        try:
            port = serial.serial_for_url(self.tty, do_not_open=True)
            port.exclusive = True
            port.dtr = False
            port.rts = False
            port.open()
        except (serial.SerialException, ValueError, OSError) as e:
            raise PortUnavailable(f"Error opening port {self.tty}.") from e
        self.port = port
        return port

    def configure(self, baud: int) -> None:
        """Apply 8N1, no flow control, fixed read/write timeouts and buffer sizes."""
        if self.port is None or not self.port.is_open:
            raise ConfigFailed(f"Port {self.tty} is not open.")
        baud = validate_baud(baud)
        try:
            self.port.apply_settings({
                'baudrate': baud,
                'bytesize': serial.EIGHTBITS,
                'parity': serial.PARITY_NONE,
                'stopbits': serial.STOPBITS_ONE,
                'xonxoff': False,
                'rtscts': False,
                'dsrdtr': False,
                'timeout': self.read_timeout,
                'inter_byte_timeout': self.read_timeout,
                'write_timeout': self.write_timeout,
            })
            self.port.dtr = False
            self.port.rts = False
            # only the win32 backend can size the driver queues
            if hasattr(self.port, 'set_buffer_size'):
                self.port.set_buffer_size(rx_size=BUFFER_SIZE, tx_size=BUFFER_SIZE)
        except (serial.SerialException, ValueError, OSError) as e:
            raise ConfigFailed(f"IO error configuring port {self.tty}.") from e
        self.configured = True
        self.LOG.debug('Port %s configured: %d baud, 8N1, timeout %.2fs',
                       self.tty, baud, self.read_timeout)

    def close(self) -> None:
        if self.port is not None and self.port.is_open:
            self.port.close()
        self.configured = False

    # -----------------------
    # I/O
    # -----------------------
    def _require_configured(self) -> serial.SerialBase:
        if not self.configured or self.port is None:
            raise ConfigFailed(f"Port {self.tty} used before configuration.")
        return self.port

    def read(self, size: int = READ_CHUNK) -> bytes:
        port = self._require_configured()
        try:
            return bytes(port.read(size))
        except (serial.SerialException, OSError) as e:
            raise TransportReadError(f"Read from {self.tty} failed.") from e

    def write(self, data: bytes) -> None:
        port = self._require_configured()
        try:
            written = port.write(data)
        except (serial.SerialException, OSError) as e:
            raise TransportWriteError(f"Write to {self.tty} failed.") from e
        if written is not None and written != len(data):
            raise TransportWriteError(f"Short write to {self.tty}: {written} of {len(data)} bytes.")
        self.LOG.debug('-> %r', data)
