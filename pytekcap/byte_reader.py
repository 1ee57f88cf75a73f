"""
Replay transport: stands in for the serial port and plays back a recorded hardcopy.

The recording is a text file of whitespace separated hex bytes (line breaks are
ignored), e.g. "42 4d 36 0c 00 00". ReplayTransport answers the adapter dialect
the way a GPIB bridge would: '+ver' gets a version line, and once 'HARDC STAR'
has been sent the recorded bytes are released on the next '+read', at most
'size' bytes per read. Every command written is kept in self.commands.
"""
from __future__ import annotations

import logging

from pytekcap.gpib_adapter import HARDCOPY_START


class ReplayTransport:

    version = 'ReplayTransport GPIB-USB emulation'

    def __init__(self, file_path, logger: logging.Logger | None = None):
        self.file_path = file_path
        self.byte_array = self._read_file_to_byte_array()
        self.pending = bytearray()
        self.armed = False
        self.released = False
        self.commands: list[str] = []
        self.closed = False
        self.LOG = logger or logging.getLogger(__name__)

    def _read_file_to_byte_array(self):
        byte_array = bytearray()
        with open(self.file_path, 'r') as file:
            for line in file:
                for value in line.split():
                    byte_array.append(int(value, 16))
        return byte_array

    def write(self, data: bytes) -> None:
        for line in data.decode('ascii').split('\r'):
            line = line.strip()
            if not line:
                continue
            self.LOG.debug('replay: command %r', line)
            self.commands.append(line)
            if line == '+ver':
                self.pending += (self.version + '\r\n').encode('ascii')
            elif line == HARDCOPY_START:
                self.armed = True
            elif line == '+read' and self.armed and not self.released:
                self.pending += self.byte_array
                self.released = True

    def read(self, size=1024) -> bytes:
        chunk = bytes(self.pending[:size])
        del self.pending[:size]
        return chunk

    def close(self) -> None:
        self.closed = True
