"""End-to-end tests for the PyTekCap command line."""

from __future__ import annotations

import logging

import pytest
from PIL import Image

from pytekcap import PyTekCap
from pytekcap.errors import CaptureError, PortUnavailable, TransportReadError, describe_os_error
from pytekcap.PyTekCap import main, report_error, show_capture
from pytekcap.serial_port import SerialTransport

VERSION = b"GPIB-USB 4.2\r\n"


def run(argv, **kwargs) -> int:
    return main(["--no-settings"] + list(argv), **kwargs)


class TestUsage:
    """Argument handling."""

    def test_no_arguments_prints_help(self, capsys) -> None:
        assert main([]) == 0
        out = capsys.readouterr().out
        assert "usage: PyTekCap" in out
        assert "--address" in out

    def test_missing_filename(self, capsys) -> None:
        assert run(["-p", "loop://"]) == 1
        assert "Filename required." in capsys.readouterr().err

    @pytest.mark.parametrize("address", ["31", "-1"])
    def test_address_out_of_range_before_port_open(self, monkeypatch, tmp_path, address) -> None:
        opened = []
        monkeypatch.setattr(SerialTransport, "open", lambda self: opened.append(self.tty))
        out = tmp_path / "x.bmp"
        assert run(["-a", address, str(out)]) == 2
        assert opened == []
        assert not out.exists()

    @pytest.mark.parametrize("baud", ["0", "6000001"])
    def test_baud_out_of_range(self, monkeypatch, tmp_path, baud) -> None:
        opened = []
        monkeypatch.setattr(SerialTransport, "open", lambda self: opened.append(self.tty))
        assert run(["-b", baud, str(tmp_path / "x.bmp")]) == 3
        assert opened == []

    @pytest.mark.parametrize("ini,code", [
        ("[serial]\nbaud=fast\n", 3),
        ("[gpib]\naddress=twelve\n", 2),
    ])
    def test_corrupt_settings_file(self, monkeypatch, tmp_path, capsys, ini, code) -> None:
        opened = []
        monkeypatch.setattr(SerialTransport, "open", lambda self: opened.append(self.tty))
        ini_path = tmp_path / "pytekcap.ini"
        ini_path.write_text(ini)
        out = tmp_path / "x.bmp"
        assert main(["--settings-file", str(ini_path), "-p", "loop://", str(out)]) == code
        assert opened == []
        assert not out.exists()
        assert "out of range" in capsys.readouterr().err


class TestCapture:
    """Full capture runs against a simulated adapter."""

    def test_chunks_then_silence(self, make_transport, clock, tmp_path, capsys) -> None:
        transport = make_transport([b"", VERSION, b"A" * 512, b"B" * 512, b"C" * 10])
        rc = run(["-a", "1", "-b", "230400", str(tmp_path / "shot")],
                 transport=transport, clock=clock, sleep=clock.sleep)
        assert rc == 0
        assert (tmp_path / "shot.bmp").stat().st_size == 1034
        captured = capsys.readouterr()
        # one progress dot for 1034 bytes, one retry colon before giving up
        assert captured.out == ".:\nDone.\n"
        assert "GPIB adapter version: GPIB-USB 4.2" in captured.err
        assert transport.closed

    def test_port_open_failure(self, tmp_path, capsys) -> None:
        out = tmp_path / "x.bmp"
        assert run(["-p", str(tmp_path / "ttyNOPE"), str(out)]) == 4
        assert not out.exists()
        assert "Error opening port" in capsys.readouterr().err

    def test_version_query_unanswered(self, make_transport, clock, tmp_path) -> None:
        transport = make_transport([])
        out = tmp_path / "x.bmp"
        rc = run([str(out)], transport=transport, clock=clock, sleep=clock.sleep)
        assert rc == 6
        assert not out.exists()
        assert transport.closed

    def test_data_read_failure(self, make_transport, clock, tmp_path) -> None:
        transport = make_transport([b"", VERSION, b"xy", TransportReadError("gone")])
        out = tmp_path / "x.bmp"
        rc = run([str(out)], transport=transport, clock=clock, sleep=clock.sleep)
        assert rc == 9
        assert out.read_bytes() == b"xy"

    def test_replay(self, tmp_path, clock) -> None:
        dump = tmp_path / "rec.hex"
        dump.write_text("42 4d\n01 02 03\n")
        rc = run(["--replay", str(dump), str(tmp_path / "replayed.")],
                 clock=clock, sleep=clock.sleep)
        assert rc == 0
        assert (tmp_path / "replayed").read_bytes() == b"\x42\x4d\x01\x02\x03"

    def test_replay_missing_file(self, tmp_path) -> None:
        assert run(["--replay", str(tmp_path / "none.hex"), str(tmp_path / "x.bmp")]) == 4


class TestErrorReporting:
    """Tests for report_error and describe_os_error."""

    def test_system_text_from_cause(self) -> None:
        try:
            try:
                raise OSError(2, "No such file or directory")
            except OSError as e:
                raise PortUnavailable("Error opening port COM99.") from e
        except PortUnavailable as err:
            assert describe_os_error(err) == "No such file or directory"

    def test_no_system_text(self) -> None:
        assert describe_os_error(PortUnavailable("x")) is None

    def test_injected_describer(self, capsys) -> None:
        LOG = PyTekCap.init_logger(type("Opt", (), {})())
        seen = []

        def describe(exc):
            seen.append(exc)
            return "The system cannot find the file specified."

        err = PortUnavailable("Error opening port COM99.")
        assert report_error(err, LOG, describe) == 4
        assert seen == [err]
        stderr = capsys.readouterr().err
        assert "Error opening port COM99." in stderr
        assert "The system cannot find the file specified." in stderr

    def test_uncoded_error_is_reraised(self) -> None:
        LOG = logging.getLogger("test.report")
        with pytest.raises(TransportReadError):
            report_error(TransportReadError("raw"), LOG)
        with pytest.raises(CaptureError):
            report_error(CaptureError("base"), LOG)

    def test_cli_uses_injected_describer(self, tmp_path, capsys) -> None:
        rc = run(["-p", str(tmp_path / "ttyNOPE"), str(tmp_path / "x.bmp")],
                 describe_error=lambda exc: "simulated platform error")
        assert rc == 4
        assert "simulated platform error" in capsys.readouterr().err


class TestLogger:
    """Tests for init_logger."""

    def test_quiet_with_log_file(self, tmp_path, capsys) -> None:
        log_path = tmp_path / "logs" / "cap.log"
        opt = type("Opt", (), {"quiet": True, "logging": True, "log_file": str(log_path)})()
        LOG = PyTekCap.init_logger(opt)
        LOG.debug("+ver -> GPIB-USB 4.2")
        for h in LOG.handlers:
            h.flush()
        assert "+ver -> GPIB-USB 4.2" in log_path.read_text(encoding="utf-8")
        assert capsys.readouterr().err == ""

    def test_console_hides_debug_without_verbose(self, capsys) -> None:
        LOG = PyTekCap.init_logger(type("Opt", (), {})())
        LOG.debug("hidden")
        LOG.info("shown")
        err = capsys.readouterr().err
        assert "shown" in err
        assert "hidden" not in err


class TestShowCapture:
    """Tests for show_capture."""

    def test_opens_image(self, tmp_path, monkeypatch, caplog) -> None:
        path = tmp_path / "shot.bmp"
        Image.new("RGB", (4, 3), "white").save(path, "BMP")
        shown = []
        monkeypatch.setattr(Image.Image, "show", lambda self, *a, **k: shown.append(self.size))
        LOG = logging.getLogger("test.show")
        with caplog.at_level(logging.INFO, logger="test.show"):
            show_capture(str(path), LOG)
        assert shown == [(4, 3)]
        assert "BMP 4x3" in caplog.text

    def test_unreadable_capture_only_warns(self, tmp_path, caplog) -> None:
        path = tmp_path / "shot.bmp"
        path.write_bytes(b"not an image")
        LOG = logging.getLogger("test.show")
        with caplog.at_level(logging.WARNING, logger="test.show"):
            show_capture(str(path), LOG)
        assert "Cannot display" in caplog.text
