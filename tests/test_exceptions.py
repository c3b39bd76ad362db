"""Tests for error classification."""

import pytest

from mpysync.exceptions import (
    BUSY_MARKERS,
    DISCONNECT_MARKERS,
    DeviceError,
    ErrorKind,
    PortBusyError,
    RemoteExistsError,
    TransientDisconnectError,
    classify_error,
    error_from_output,
)


class TestClassifyError:
    """Tests for classify_error."""

    @pytest.mark.parametrize("marker", DISCONNECT_MARKERS)
    def test_disconnect_vocabulary(self, marker):
        kind = classify_error(f"Error: {marker.upper()}")
        assert kind == ErrorKind.TRANSIENT_DISCONNECT

    @pytest.mark.parametrize("marker", BUSY_MARKERS)
    def test_busy_vocabulary(self, marker):
        assert classify_error(f"SerialException: {marker}") == ErrorKind.PORT_BUSY

    def test_exists(self):
        assert classify_error("OSError: [Errno 17] EEXIST") == ErrorKind.ALREADY_EXISTS
        assert classify_error("directory already exists") == ErrorKind.ALREADY_EXISTS

    def test_disconnect_wins_over_busy(self):
        text = "could not open port /dev/ttyUSB0: No such file or directory"
        assert classify_error(text) == ErrorKind.TRANSIENT_DISCONNECT

    def test_other(self):
        assert classify_error("Traceback: ZeroDivisionError") == ErrorKind.OTHER
        assert classify_error("") == ErrorKind.OTHER
        assert classify_error(None) == ErrorKind.OTHER


class TestErrorFromOutput:
    """Tests for building exceptions from tool output."""

    def test_types_follow_kind(self):
        error = error_from_output("device disconnected")
        assert isinstance(error, TransientDisconnectError)
        assert isinstance(error_from_output("Resource busy"), PortBusyError)
        assert isinstance(error_from_output("File exists"), RemoteExistsError)
        error = error_from_output("boom", verb="mkdir")
        assert type(error) is DeviceError
        assert error.verb == "mkdir"
        assert error.kind == ErrorKind.OTHER

    def test_kind_attribute(self):
        assert error_from_output("Resource busy").kind == ErrorKind.PORT_BUSY

    def test_empty_text_has_message(self):
        assert str(error_from_output("  ")) == "device tool failed"
