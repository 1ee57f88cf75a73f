# hardcopy_grabber.py
from __future__ import annotations

import enum
import logging
import os
import time
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional

from pytekcap.errors import (
    CaptureError, CommandWriteFailed, DataReadFailed, FlushFailed, IdentifyFailed,
    OutputOpenFailed, OutputWriteFailed, RetryWriteFailed, TransportReadError, TransportWriteError,
)
from pytekcap.gpib_adapter import ByteTransport, GpibAdapter, validate_address
from pytekcap.serial_port import READ_CHUNK, SerialTransport, validate_baud

DEFAULT_BAUD = 230400
DEFAULT_ADDRESS = 1
DEFAULT_EXTENSION = '.bmp'

# Silence handling. One retry per silence window; after MAX_RETRIES windows in
# a row without data the instrument is taken to be finished. A slow final
# chunk can get cut off by this, raise max_retries if that happens.
MAX_RETRIES = 1
LIVENESS_WINDOW = 1.0
PROGRESS_THRESHOLD = READ_CHUNK
LOOP_DELAY = 0.020
RETRY_SETTLE_DELAY = 0.010


class CaptureState(enum.Enum):
    INIT = 'init'
    ARMED = 'armed'
    READY = 'ready'
    STREAMING = 'streaming'
    DONE = 'done'
    FAILED = 'failed'


class CaptureEvent(enum.Enum):
    PROGRESS = '.'     # another PROGRESS_THRESHOLD bytes arrived
    RETRY = ':'        # instrument went quiet, +read re-sent


Observer = Callable[[CaptureEvent], None]


@dataclass
class CaptureSession:
    address: int
    state: CaptureState = CaptureState.INIT
    idle_time: float = 0.0
    retries: int = 0
    bytes_til_tick: int = 0
    bytes_total: int = 0
    retries_total: int = 0
    version: str = ''


@dataclass(frozen=True)
class CaptureResult:
    version: str
    output_path: str
    bytes_written: int
    retries: int


def resolve_output_path(filename: str) -> str:
    """Append .bmp when the name has no extension; a trailing '.' means 'none'."""
    head, name = os.path.split(filename)
    if name.endswith('.'):
        return os.path.join(head, name[:-1]) if head else name[:-1]
    if '.' not in name:
        return filename + DEFAULT_EXTENSION
    return filename


def open_output(path: str) -> BinaryIO:
    """Open *path* for writing: create if missing, never truncate if present."""
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | getattr(os, 'O_BINARY', 0), 0o666)
    except OSError as e:
        raise OutputOpenFailed(f"IO error opening file {path}.") from e
    return os.fdopen(fd, 'wb')


class CaptureEngine:
    """
    Drives one hardcopy transfer over a GPIB adapter.

    Sequence:
      - handshake(): flush stale input, query the adapter version (liveness).
      - start(): select/arm the instrument and request the first chunk.
      - stream(sink): read until the instrument stays silent for
        MAX_RETRIES liveness windows.

    Progress and retry markers go to *observer*; clock and sleep are
    injectable so the receive loop can run against a simulated transport.
    """

    def __init__(self, transport: ByteTransport, *, address: int = DEFAULT_ADDRESS,
                 adapter: GpibAdapter | None = None,
                 observer: Observer | None = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep,
                 max_retries: int = MAX_RETRIES,
                 liveness_window: float = LIVENESS_WINDOW,
                 progress_threshold: int = PROGRESS_THRESHOLD,
                 logger: logging.Logger | None = None):
        self.transport = transport
        self.LOG = logger or logging.getLogger(__name__)
        self.adapter = adapter or GpibAdapter(transport, sleep=sleep, logger=self.LOG)
        self.session = CaptureSession(address=validate_address(address))
        self._observer = observer
        self._clock = clock
        self._sleep = sleep
        self.max_retries = max_retries
        self.liveness_window = liveness_window
        self.progress_threshold = progress_threshold

    @property
    def state(self) -> CaptureState:
        return self.session.state

    def _emit(self, event: CaptureEvent) -> None:
        if self._observer is not None:
            self._observer(event)

    def _fail(self, error: CaptureError) -> CaptureError:
        self.session.state = CaptureState.FAILED
        self.LOG.debug('Capture failed in %s: %s', type(error).__name__, error)
        return error

    # -----------------------
    # Handshake
    # -----------------------
    def handshake(self) -> str:
        """Flush stale input, then make sure the adapter answers '+ver'."""
        try:
            self.adapter.flush_pending()
        except (TransportReadError, TransportWriteError) as e:
            raise self._fail(FlushFailed("IO Error clearing input buffer.")) from e
        self.session.state = CaptureState.ARMED

        try:
            version = self.adapter.identify()
        except (TransportReadError, TransportWriteError) as e:
            raise self._fail(IdentifyFailed("IO error testing port.")) from e
        if version is None:
            raise self._fail(IdentifyFailed("IO error testing port: no reply to version query."))
        self.session.version = version
        self.session.state = CaptureState.READY
        self.LOG.info('GPIB adapter version: %s', version)
        return version

    # -----------------------
    # Transfer
    # -----------------------
    def start(self) -> None:
        """Address the instrument, trigger the hardcopy and ask for the first chunk."""
        try:
            self.adapter.select_and_arm(self.session.address)
            self.adapter.request_more()
        except TransportWriteError as e:
            raise self._fail(CommandWriteFailed("IO error writing command.")) from e
        self.session.state = CaptureState.STREAMING

    def stream(self, sink: BinaryIO) -> int:
        """Receive loop. Returns the number of bytes written to *sink*."""
        s = self.session
        last_ticks = self._clock()
        while True:
            s.idle_time = self._clock() - last_ticks
            if s.idle_time > self.liveness_window:
                # taking a while to get more data, kick it with another +read
                try:
                    self.adapter.request_more()
                except TransportWriteError as e:
                    raise self._fail(RetryWriteFailed("IO error during timeout retry.")) from e
                s.retries += 1
                s.retries_total += 1
                self.LOG.debug('No data for %.2fs, retry %d/%d', s.idle_time, s.retries, self.max_retries)
                self._emit(CaptureEvent.RETRY)
                last_ticks = self._clock()
                self._sleep(RETRY_SETTLE_DELAY)

            try:
                data = self.transport.read(READ_CHUNK)
            except TransportReadError as e:
                raise self._fail(DataReadFailed("IO error reading data.")) from e

            if data:
                s.retries = 0
                s.idle_time = 0.0
                try:
                    sink.write(data)
                except OSError as e:
                    raise self._fail(OutputWriteFailed("IO error writing output.")) from e
                s.bytes_total += len(data)
                s.bytes_til_tick += len(data)
                while s.bytes_til_tick > self.progress_threshold:
                    self._emit(CaptureEvent.PROGRESS)
                    s.bytes_til_tick -= self.progress_threshold
                last_ticks = self._clock()

            self._sleep(LOOP_DELAY)
            if s.retries >= self.max_retries:
                break

        try:
            sink.flush()
        except OSError as e:
            raise self._fail(OutputWriteFailed("IO error writing output.")) from e
        self.adapter.terminate()
        s.state = CaptureState.DONE
        self.LOG.debug('%d bytes received, %d retries', s.bytes_total, s.retries_total)
        return s.bytes_total

    def run(self, sink: BinaryIO) -> int:
        """handshake() + start() + stream() against an already open sink."""
        self.handshake()
        self.start()
        return self.stream(sink)


def grab_hardcopy(tty: str, filename: str, *, baud: int = DEFAULT_BAUD,
                  address: int = DEFAULT_ADDRESS,
                  transport: ByteTransport | None = None,
                  observer: Observer | None = None,
                  logger: logging.Logger | None = None,
                  **engine_kwargs) -> CaptureResult:
    """Run a complete capture session and write the hardcopy to *filename*.

    Arguments are validated before any port is touched. The transport and the
    output file are closed on every exit path; bytes already written stay in
    the file when the transfer fails part way.

    Args:
      tty: serial device (or pyserial URL) of the GPIB adapter
      filename: output file; '.bmp' is appended when it has no extension
      transport: an already usable transport (replay/tests); when None a
        SerialTransport is opened and configured for *tty*
    Returns:
      CaptureResult
    Raises:
      CaptureError subclasses, each carrying its exit code
    """
    LOG = logger or logging.getLogger(__name__)
    address = validate_address(address)
    baud = validate_baud(baud)
    path = resolve_output_path(filename)

    sink: Optional[BinaryIO] = None
    try:
        if transport is None:
            transport = SerialTransport(tty, logger=LOG)
            transport.open()
            transport.configure(baud)
            LOG.info('Port %s open at %d baud', tty, baud)

        engine = CaptureEngine(transport, address=address, observer=observer, logger=LOG,
                               **engine_kwargs)
        version = engine.handshake()

        sink = open_output(path)
        engine.start()
        total = engine.stream(sink)
        return CaptureResult(version=version, output_path=path, bytes_written=total,
                             retries=engine.session.retries_total)
    finally:
        try:
            if transport is not None:
                transport.close()
        except OSError as e:
            LOG.warning('Closing port %s failed: %s', tty, e)
        finally:
            if sink is not None:
                sink.close()
