"""Shared fixtures: an in-memory adapter transport and a controllable clock."""

from __future__ import annotations

from collections import deque
from typing import Optional

import pytest

from pytekcap.errors import TransportWriteError


class FakeClock:
    """Monotonic clock that only moves when something sleeps or waits."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Replays pre-loaded read results and records every write.

    Read results may be bytes or exceptions (raised when reached). Once the
    queue is empty every read returns b"". An empty read costs one read
    timeout on the attached clock, like a real port would.
    """

    def __init__(self, reads: Optional[list] = None, clock: Optional[FakeClock] = None,
                 read_timeout: float = 1.0) -> None:
        self.reads: deque = deque(reads or [])
        self.written: list[bytes] = []
        self.read_calls = 0
        self.closed = False
        self.clock = clock
        self.read_timeout = read_timeout
        self._write_failures: dict[bytes, int] = {}

    def fail_write(self, data: bytes, nth: int = 1) -> None:
        """Make the nth write of *data* raise TransportWriteError."""
        self._write_failures[data] = nth

    def read(self, size: int = 1024) -> bytes:
        self.read_calls += 1
        item = self.reads.popleft() if self.reads else b""
        if isinstance(item, Exception):
            raise item
        if not item and self.clock is not None:
            self.clock.advance(self.read_timeout)
        return item

    def write(self, data: bytes) -> None:
        if data in self._write_failures:
            self._write_failures[data] -= 1
            if self._write_failures[data] == 0:
                del self._write_failures[data]
                raise TransportWriteError("write failed") from OSError(5, "Input/output error")
        self.written.append(data)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_transport(clock: FakeClock):
    def _make(reads: Optional[list] = None) -> FakeTransport:
        return FakeTransport(reads, clock=clock)
    return _make
