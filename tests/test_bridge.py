"""Tests for the OPC -> serial relay loop and session lifecycle."""

import logging
from unittest.mock import MagicMock

import pytest
import serial

from OPC_SERIAL.bridge import (
    EXIT_HANDSHAKE_FAILED,
    EXIT_SERIAL_ERROR,
    EXIT_SOCKET_ERROR,
    BridgeConfig,
    OpcSerialBridge,
    run_session,
)
from OPC_SERIAL.defaults import ConfigError
from OPC_SERIAL.serial_protocol import SerialProtocol, encode_awa, encode_tpm2

REFERENCE_DATAGRAM = bytes([0x00, 0x00, 0x00, 0x06, 0x10, 0x20, 0x30, 0x40, 0x50, 0x60])
REFERENCE_ADALIGHT = b"Ada" + bytes([0x00, 0x01, 0x54, 0x10, 0x20, 0x30, 0x40, 0x50, 0x60])


def _config(**kwargs) -> BridgeConfig:
    kwargs.setdefault("serial_port", "/dev/ttyACM0")
    return BridgeConfig(**kwargs)


# ---------- BridgeConfig ----------

def test_config_defaults():
    config = _config()
    assert config.protocol is SerialProtocol.ADALIGHT
    assert config.opc_address == "127.0.0.1"
    assert config.opc_port == 7890
    assert config.opc_channel == 0
    assert config.receive_buffer_size == 4096
    assert config.handshake_timeout_ms == 5000


def test_effective_baud_rate():
    assert _config(protocol=SerialProtocol.AWA).effective_baud_rate == 2_000_000
    assert _config(protocol=SerialProtocol.AWA, baud_rate=921_600).effective_baud_rate == 921_600


def test_config_is_immutable():
    config = _config()
    with pytest.raises(AttributeError):
        config.opc_port = 1


@pytest.mark.parametrize(
    "kwargs",
    [
        {"serial_port": ""},
        {"opc_channel": 256},
        {"opc_channel": -1},
        {"opc_port": 70000},
        {"baud_rate": 0},
        {"handshake_timeout_ms": 0},
        {"receive_buffer_size": 3},
    ],
)
def test_config_validation(kwargs):
    with pytest.raises(ConfigError):
        _config(**kwargs)


# ---------- handle_datagram ----------

def test_reference_round_trip(fake_serial):
    bridge = OpcSerialBridge(_config(), fake_serial, opc_socket=None)
    output = bridge.handle_datagram(REFERENCE_DATAGRAM)
    assert output == REFERENCE_ADALIGHT
    assert fake_serial.writes == [REFERENCE_ADALIGHT]
    assert bridge.frames_forwarded == 1


def test_awa_and_tpm2_forwarding(fake_serial):
    payload = REFERENCE_DATAGRAM[4:]
    OpcSerialBridge(_config(protocol=SerialProtocol.AWA), fake_serial, None).handle_datagram(REFERENCE_DATAGRAM)
    OpcSerialBridge(_config(protocol=SerialProtocol.TPM2), fake_serial, None).handle_datagram(REFERENCE_DATAGRAM)
    assert fake_serial.writes == [encode_awa(payload), encode_tpm2(payload)]


@pytest.mark.parametrize(
    "datagram",
    [
        b"\x00\x00",                      # too short
        b"\x05\x00\x00\x03\x01\x02\x03",  # other channel
        b"\x00\x01\x00\x03\x01\x02\x03",  # unknown command
        b"\x00\x00\x00\x06\x01\x02\x03",  # truncated
        b"\x00\x00\x10\x00",              # larger than the receive buffer
    ],
)
def test_rejected_datagrams_are_dropped(fake_serial, datagram, caplog):
    bridge = OpcSerialBridge(_config(opc_channel=2), fake_serial, None)
    with caplog.at_level(logging.WARNING):
        assert bridge.handle_datagram(datagram) is None
    assert fake_serial.writes == []
    assert bridge.frames_dropped == 1
    assert bridge.frames_forwarded == 0
    assert caplog.records[-1].levelno == logging.WARNING


def test_loop_continues_after_rejection(fake_serial):
    bridge = OpcSerialBridge(_config(), fake_serial, None)
    bridge.handle_datagram(b"\x00")
    bridge.handle_datagram(REFERENCE_DATAGRAM)
    assert fake_serial.writes == [REFERENCE_ADALIGHT]
    assert (bridge.frames_forwarded, bridge.frames_dropped) == (1, 1)


def test_expected_channel_accepted(fake_serial):
    bridge = OpcSerialBridge(_config(opc_channel=3), fake_serial, None)
    assert bridge.handle_datagram(b"\x03\x00\x00\x03\x01\x02\x03") is not None


def test_non_rgb_payload_warns_but_forwards(fake_serial, caplog):
    bridge = OpcSerialBridge(_config(), fake_serial, None)
    with caplog.at_level(logging.WARNING):
        output = bridge.handle_datagram(b"\x00\x00\x00\x04\x01\x02\x03\x04")
    assert output[3:5] == b"\x00\x00"
    assert "does not appear to be RGB: 4 (sending 1 LEDs)" in caplog.text


def test_non_rgb_payload_no_warning_for_tpm2(fake_serial, caplog):
    bridge = OpcSerialBridge(_config(protocol=SerialProtocol.TPM2), fake_serial, None)
    with caplog.at_level(logging.WARNING):
        bridge.handle_datagram(b"\x00\x00\x00\x04\x01\x02\x03\x04")
    assert "does not appear to be RGB" not in caplog.text


def test_debug_counter(fake_serial, caplog):
    bridge = OpcSerialBridge(_config(), fake_serial, None)
    with caplog.at_level(logging.DEBUG, logger="OPC_SERIAL.bridge"):
        bridge.handle_datagram(REFERENCE_DATAGRAM)
        bridge.handle_datagram(REFERENCE_DATAGRAM)
    assert "[2] Forwarding RGB payload of 6 bytes" in caplog.text


# ---------- serve_forever ----------

def test_serve_forever_until_socket_error(fake_serial, make_socket):
    opc_socket = make_socket([REFERENCE_DATAGRAM, b"\x00", REFERENCE_DATAGRAM])
    bridge = OpcSerialBridge(_config(), fake_serial, opc_socket)
    with pytest.raises(OSError):
        bridge.serve_forever()
    assert fake_serial.writes == [REFERENCE_ADALIGHT, REFERENCE_ADALIGHT]
    assert opc_socket.recv_sizes == [4096] * 4


# ---------- run_session ----------

def test_session_handshake_failure_aborts_without_writing(make_serial):
    port = make_serial(b"AdaX")
    open_socket = MagicMock()
    status = run_session(_config(), open_serial=lambda *args: port, open_socket=open_socket)
    assert status == EXIT_HANDSHAKE_FAILED
    assert port.writes == []
    assert port.closed
    open_socket.assert_not_called()


def test_session_disconnect_during_handshake_returns_status(disconnecting_serial):
    open_socket = MagicMock()
    status = run_session(_config(), open_serial=lambda *args: disconnecting_serial, open_socket=open_socket)
    assert status == EXIT_HANDSHAKE_FAILED
    assert disconnecting_serial.closed
    assert disconnecting_serial.writes == []
    open_socket.assert_not_called()


def test_session_relays_after_handshake(make_serial, make_socket):
    port = make_serial(b"Ada\n")
    opc_socket = make_socket([REFERENCE_DATAGRAM])
    open_serial = MagicMock(return_value=port)
    status = run_session(_config(), open_serial=open_serial, open_socket=lambda address, p: opc_socket)
    assert status == EXIT_SOCKET_ERROR
    assert port.writes == [REFERENCE_ADALIGHT]
    assert port.closed
    assert opc_socket.closed
    open_serial.assert_called_once_with("/dev/ttyACM0", 115_200)


def test_session_skips_handshake_for_tpm2(make_serial, make_socket):
    port = make_serial(b"")
    opc_socket = make_socket([REFERENCE_DATAGRAM])
    config = _config(protocol=SerialProtocol.TPM2, baud_rate=500_000)
    open_serial = MagicMock(return_value=port)
    run_session(config, open_serial=open_serial, open_socket=lambda address, p: opc_socket)
    assert port.read_timeouts == []
    assert port.writes == [encode_tpm2(REFERENCE_DATAGRAM[4:])]
    open_serial.assert_called_once_with("/dev/ttyACM0", 500_000)


def test_session_serial_open_failure():
    open_serial = MagicMock(side_effect=serial.SerialException("no such port"))
    open_socket = MagicMock()
    assert run_session(_config(), open_serial=open_serial, open_socket=open_socket) == EXIT_SERIAL_ERROR
    open_socket.assert_not_called()


def test_session_bind_failure_closes_serial(make_serial):
    port = make_serial(b"Ada\n")
    open_socket = MagicMock(side_effect=OSError("address in use"))
    status = run_session(_config(), open_serial=lambda *args: port, open_socket=open_socket)
    assert status == EXIT_SOCKET_ERROR
    assert port.closed
    open_socket.assert_called_once_with("127.0.0.1", 7890)


def test_session_serial_write_failure(make_serial, make_socket):
    port = make_serial(b"Ada\n")
    port.write = MagicMock(side_effect=serial.SerialTimeoutException("write timeout"))
    opc_socket = make_socket([REFERENCE_DATAGRAM])
    status = run_session(_config(), open_serial=lambda *args: port, open_socket=lambda address, p: opc_socket)
    assert status == EXIT_SERIAL_ERROR
    assert port.closed
    assert opc_socket.closed
