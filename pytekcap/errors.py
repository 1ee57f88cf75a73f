# errors.py
from __future__ import annotations

import os
from typing import Optional

# ---- Typed exceptions for configuration/transport/capture errors ----
# Stage errors carry the process exit code the CLI returns for them. The
# transport kinds have none: the capture engine always re-raises them as
# the stage error of the step that was running.


class CaptureError(Exception):
    """Base error for PyTekCap."""
    exit_code: Optional[int] = None


# -- configuration (raised before any I/O) --
class ConfigurationError(CaptureError, ValueError):
    pass

class MissingFilename(ConfigurationError):
    exit_code = 1

class AddressOutOfRange(ConfigurationError):
    exit_code = 2

class BaudOutOfRange(ConfigurationError):
    exit_code = 3


# -- transport --
class PortUnavailable(CaptureError):
    exit_code = 4

class ConfigFailed(CaptureError):
    exit_code = 5

class TransportReadError(CaptureError):
    pass

class TransportWriteError(CaptureError):
    pass


# -- capture stages --
class IdentifyFailed(CaptureError):
    exit_code = 6

class OutputUnavailable(CaptureError):
    pass

class OutputOpenFailed(OutputUnavailable):
    exit_code = 7

class CommandWriteFailed(CaptureError):
    exit_code = 8

class DataReadFailed(CaptureError):
    exit_code = 9

class OutputWriteFailed(OutputUnavailable):
    exit_code = 10

class RetryWriteFailed(CaptureError):
    exit_code = 11

class FlushFailed(CaptureError):
    exit_code = 12


def describe_os_error(exc: BaseException) -> Optional[str]:
    """Return the system error text behind *exc*, if any.

    Walks the ``__cause__``/``__context__`` chain and uses the first OSError
    found. Falls back to ``os.strerror(errno)`` when the OSError has no text.
    """
    seen = set()
    cur: Optional[BaseException] = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        if isinstance(cur, OSError):
            if cur.strerror:
                return cur.strerror
            if cur.errno:
                return os.strerror(cur.errno)
            return str(cur) or None
        cur = cur.__cause__ or cur.__context__
    return None
