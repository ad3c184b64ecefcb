# src/OPC_SERIAL/handshake.py
"""
Adalight start-up handshake.

Adalight firmware prints "Ada\n" once after the board resets. Streaming only
starts once that greeting has been seen; a board that stays silent or says
anything else is treated as incompatible and the session is abandoned.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

import serial

from OPC_SERIAL.defaults import ADALIGHT_HANDSHAKE_TIMEOUT_MS
from OPC_SERIAL.serial_protocol import SerialProtocol

logger = logging.getLogger(__name__)

ADALIGHT_HANDSHAKE = b"Ada\n"


class HandshakeError(Exception):
    pass


class HandshakeState(Enum):
    AWAITING_HANDSHAKE = "awaiting_handshake"
    READY = "ready"
    FAILED = "failed"


class _ByteReader(Protocol):
    timeout: float | None

    def read(self, size: int = 1) -> bytes: ...


class HandshakeController:
    """
    One-shot state machine: AWAITING_HANDSHAKE -> READY | FAILED.

    Protocols without a handshake start out READY. FAILED is terminal,
    perform() never reads again once it got there.
    """

    def __init__(self, protocol: SerialProtocol, timeout_ms: int = ADALIGHT_HANDSHAKE_TIMEOUT_MS):
        self.protocol = protocol
        self.timeout_ms = timeout_ms
        self.state = (
            HandshakeState.AWAITING_HANDSHAKE if protocol.requires_handshake else HandshakeState.READY
        )

    @property
    def is_ready(self) -> bool:
        return self.state is HandshakeState.READY

    def perform(self, port: _ByteReader) -> HandshakeState:
        if self.state is not HandshakeState.AWAITING_HANDSHAKE:
            return self.state

        logger.info("Waiting %dms for Ada\\n handshake...", self.timeout_ms)
        previous_timeout = port.timeout
        try:
            port.timeout = self.timeout_ms / 1000.0
            received = port.read(len(ADALIGHT_HANDSHAKE))
        except serial.SerialException as read_error:
            logger.error("Serial error while waiting for Adalight handshake: %s", read_error)
            received = None

        # setting timeout reconfigures the port, which fails once the device is gone
        try:
            port.timeout = previous_timeout
        except serial.SerialException as restore_error:
            logger.error("Could not restore serial port timeout after handshake: %s", restore_error)
            received = None

        if received is None:
            self.state = HandshakeState.FAILED
        elif len(received) < len(ADALIGHT_HANDSHAKE):
            logger.error("Timeout waiting for Adalight handshake (got %r), aborting.", received)
            self.state = HandshakeState.FAILED
        elif received != ADALIGHT_HANDSHAKE:
            logger.error("Did not receive valid Ada\\n handshake from Arduino (got %r), aborting.", received)
            self.state = HandshakeState.FAILED
        else:
            logger.info("Adalight handshake received")
            self.state = HandshakeState.READY
        return self.state

    def require_ready(self) -> None:
        if not self.is_ready:
            raise HandshakeError(f"{self.protocol.name} handshake state is {self.state.name}, not READY")
