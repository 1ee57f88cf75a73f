# app_settings.py
from __future__ import annotations
import sys
from PyQt6.QtCore import QSettings

class AppSettings:
    """
    Remembered port, baud rate and GPIB address for the next capture.

    Backed by QSettings in INI format under PyTekCap/GpibSerial in the
    user's config directory, or by the INI file given as file_path.
    Values come back as stored (INI text after a reload); the CLI validates
    them like values typed on the command line.
    """
    ORG = "PyTekCap"
    APP = "GpibSerial"

    DEFAULT_PORT = "COM14" if sys.platform.startswith("win") else "/dev/ttyUSB0"
    DEFAULT_BAUD = 230400
    DEFAULT_ADDRESS = 1

    def __init__(self, file_path: str | None = None):
        if file_path:
            self._s = QSettings(str(file_path), QSettings.Format.IniFormat)
        else:
            self._s = QSettings(QSettings.Format.IniFormat,
                                QSettings.Scope.UserScope,
                                self.ORG, self.APP)

    # ---- serial ----
    @property
    def port(self) -> str:
        return self._s.value("serial/port", self.DEFAULT_PORT, str)

    @port.setter
    def port(self, v: str):
        self._s.setValue("serial/port", v)

    @property
    def baud(self) -> int | str:
        return self._s.value("serial/baud", self.DEFAULT_BAUD)

    @baud.setter
    def baud(self, v: int):
        self._s.setValue("serial/baud", int(v))

    # ---- gpib ----
    @property
    def address(self) -> int | str:
        return self._s.value("gpib/address", self.DEFAULT_ADDRESS)

    @address.setter
    def address(self, v: int):
        self._s.setValue("gpib/address", int(v))

    # ---- misc ----
    def sync(self):
        self._s.sync()

    def file_path(self) -> str:
        return self._s.fileName()
