# src/OPC_SERIAL/bridge.py
"""
The OPC -> serial relay loop.

Single threaded and blocking: receive one datagram, decode it, encode it for
the serial protocol, write it, repeat. Nothing is queued or retried.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import Callable

import serial

from OPC_SERIAL.defaults import (
    ADALIGHT_HANDSHAKE_TIMEOUT_MS,
    DEFAULT_OPC_ADDRESS,
    DEFAULT_OPC_CHANNEL,
    DEFAULT_OPC_PORT,
    RECEIVE_BUFFER_SIZE,
    ConfigError,
)
from OPC_SERIAL.handshake import HandshakeController, HandshakeError
from OPC_SERIAL.opc_protocol import OPC_HEADER_LEN, DecodeError, decode_opc_frame
from OPC_SERIAL.serial_protocol import SerialProtocol, send_frame
from OPC_SERIAL.usb_serial import open_serial_port

logger = logging.getLogger(__name__)

# ---------- Exit statuses ----------
EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_SERIAL_ERROR = 2
EXIT_HANDSHAKE_FAILED = 3
EXIT_SOCKET_ERROR = 4


@dataclass(frozen=True)
class BridgeConfig:
    serial_port: str
    protocol: SerialProtocol = SerialProtocol.ADALIGHT
    opc_address: str = DEFAULT_OPC_ADDRESS
    opc_port: int = DEFAULT_OPC_PORT
    opc_channel: int = DEFAULT_OPC_CHANNEL
    baud_rate: int | None = None  # None -> protocol default
    debug: bool = False
    handshake_timeout_ms: int = ADALIGHT_HANDSHAKE_TIMEOUT_MS
    receive_buffer_size: int = RECEIVE_BUFFER_SIZE

    def __post_init__(self):
        if not self.serial_port:
            raise ConfigError("No serial port specified")
        if not 0 <= self.opc_channel <= 0xFF:
            raise ConfigError(f"OPC channel must be 0-255, got {self.opc_channel}")
        if not 0 <= self.opc_port <= 0xFFFF:
            raise ConfigError(f"OPC port must be 0-65535, got {self.opc_port}")
        if self.baud_rate is not None and self.baud_rate <= 0:
            raise ConfigError(f"Baud rate must be positive, got {self.baud_rate}")
        if self.handshake_timeout_ms <= 0:
            raise ConfigError(f"Handshake timeout must be positive, got {self.handshake_timeout_ms}")
        if self.receive_buffer_size < OPC_HEADER_LEN:
            raise ConfigError(f"Receive buffer must hold an OPC header, got {self.receive_buffer_size}")

    @property
    def effective_baud_rate(self) -> int:
        return self.baud_rate if self.baud_rate else self.protocol.default_baud_rate


def open_opc_socket(address: str, port: int) -> socket.socket:
    """Bind a blocking UDP socket; recv() waits indefinitely."""
    opc_socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        opc_socket.bind((address, port))
    except OSError:
        opc_socket.close()
        raise
    return opc_socket


class OpcSerialBridge:
    def __init__(self, config: BridgeConfig, serial_port, opc_socket):
        self.config = config
        self.serial_port = serial_port
        self.opc_socket = opc_socket
        self.frames_forwarded = 0
        self.frames_dropped = 0

    def handle_datagram(self, datagram: bytes) -> bytes | None:
        """
        Relay one datagram. Returns the bytes written to the serial port,
        or None when the datagram was rejected.
        """
        try:
            frame = decode_opc_frame(
                datagram,
                self.config.opc_channel,
                max_datagram_len=self.config.receive_buffer_size,
            )
        except DecodeError as decode_error:
            self.frames_dropped += 1
            logger.warning("%s", decode_error)
            return None

        protocol = self.config.protocol
        if protocol.is_adalight_family and not frame.is_rgb:
            logger.warning(
                "OPC data length does not appear to be RGB: %d (sending %d LEDs)", frame.data_len, frame.led_count
            )

        output = send_frame(self.serial_port, protocol, frame.payload)
        self.frames_forwarded += 1
        logger.debug("[%d] Forwarding RGB payload of %d bytes", self.frames_forwarded, frame.data_len)
        return output

    def serve_forever(self) -> None:
        """Run until the socket or the serial port raises."""
        logger.info("Starting OPC->Serial proxy loop...")
        while True:
            datagram = self.opc_socket.recv(self.config.receive_buffer_size)
            self.handle_datagram(datagram)


def run_session(
    config: BridgeConfig,
    open_serial: Callable[..., serial.Serial] = open_serial_port,
    open_socket: Callable[[str, int], socket.socket] = open_opc_socket,
) -> int:
    """
    Open the serial port, complete the protocol handshake, bind the OPC
    socket and relay until something fails. Returns a process exit status.
    The serial port is closed on every path out of here.
    """
    baud_rate = config.effective_baud_rate
    logger.info("OPC: %s on UDP port %d", config.opc_address, config.opc_port)
    logger.info("Serial: %s at %d baud on port %s", config.protocol.name, baud_rate, config.serial_port)

    try:
        serial_port = open_serial(config.serial_port, baud_rate)
    except serial.SerialException as open_error:
        logger.error("Error on serial port %s: %s", config.serial_port, open_error)
        return EXIT_SERIAL_ERROR

    try:
        handshake = HandshakeController(config.protocol, timeout_ms=config.handshake_timeout_ms)
        handshake.perform(serial_port)
        try:
            handshake.require_ready()
        except HandshakeError as handshake_error:
            logger.error("Aborting session: %s", handshake_error)
            return EXIT_HANDSHAKE_FAILED

        try:
            opc_socket = open_socket(config.opc_address, config.opc_port)
        except OSError as bind_error:
            logger.error("Could not bind to %s:%d: %s", config.opc_address, config.opc_port, bind_error)
            return EXIT_SOCKET_ERROR

        with opc_socket:
            bridge = OpcSerialBridge(config, serial_port, opc_socket)
            try:
                bridge.serve_forever()
            except serial.SerialException as write_error:
                logger.exception("Error on serial port %s: %s", config.serial_port, write_error)
                return EXIT_SERIAL_ERROR
            except OSError as socket_error:
                logger.error("UDP socket could not receive packet: %s", socket_error)
                return EXIT_SOCKET_ERROR
        return EXIT_OK
    finally:
        serial_port.close()
