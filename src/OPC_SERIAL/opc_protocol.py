# src/OPC_SERIAL/opc_protocol.py
"""
Open Pixel Control (OPC) message decoding.

Message layout (one message per UDP datagram):
  [u8 channel][u8 command][u16 data_len BE][data_len bytes of RGB payload]

Channel 0 is broadcast and is accepted by every listener. Only the
SET_PIXEL_COLORS command is understood.
"""

from __future__ import annotations

from dataclasses import dataclass

from OPC_SERIAL.defaults import RECEIVE_BUFFER_SIZE

# ---------- Protocol constants ----------
OPC_HEADER_LEN = 4
OPC_CHANNEL_BROADCAST = 0
OPC_COMMAND_SET_PIXEL_COLORS = 0x00


# ---------- Decode errors ----------
class DecodeError(Exception):
    """A datagram that cannot be turned into an OpcFrame. Never fatal."""


class TooShort(DecodeError):
    pass


class ChannelMismatch(DecodeError):
    pass


class UnsupportedCommand(DecodeError):
    pass


class PayloadTooLarge(DecodeError):
    pass


class TruncatedPayload(DecodeError):
    pass


@dataclass
class OpcFrame:
    """A validated OPC message."""

    channel: int
    command: int
    payload: bytes

    @property
    def data_len(self) -> int:
        return len(self.payload)

    @property
    def led_count(self) -> int:
        return self.data_len // 3

    @property
    def is_rgb(self) -> bool:
        """True when the payload splits evenly into RGB triplets."""
        return self.data_len % 3 == 0

    def __repr__(self) -> str:
        return (
            f"OpcFrame(channel={self.channel}, command=0x{self.command:02X}, "
            f"data_len={self.data_len})"
        )


def decode_opc_frame(
    datagram: bytes,
    expected_channel: int,
    max_datagram_len: int = RECEIVE_BUFFER_SIZE,
) -> OpcFrame:
    """Validate one received datagram and extract its pixel payload.

    Args:
        datagram: Raw bytes of a single UDP datagram.
        expected_channel: Channel this listener serves. Broadcast (0) is
            always accepted on top of it.
        max_datagram_len: Capacity of the receive buffer. Messages declaring
            a payload that would not fit are rejected.

    Returns:
        The decoded ``OpcFrame``. Bytes past the declared length are ignored.

    Raises:
        DecodeError: one of its subclasses, describing why the datagram was
            rejected. No partial frame is ever returned.
    """
    datagram_len = len(datagram)
    if datagram_len < OPC_HEADER_LEN:
        raise TooShort(f"Ignoring OPC packet received with length < {OPC_HEADER_LEN}")

    channel = datagram[0]
    if channel != OPC_CHANNEL_BROADCAST and channel != expected_channel:
        raise ChannelMismatch(f"Ignoring OPC message on channel {channel}")

    command = datagram[1]
    if command != OPC_COMMAND_SET_PIXEL_COLORS:
        raise UnsupportedCommand(f"Unrecognized OPC command: 0x{command:X}")

    data_len = (datagram[2] << 8) | datagram[3]
    end = OPC_HEADER_LEN + data_len
    if end > max_datagram_len:
        raise PayloadTooLarge(f"Ignoring OPC message with excessive length: {data_len}")
    if end > datagram_len:
        raise TruncatedPayload(f"Ignoring OPC message with partial payload data: {data_len}")

    return OpcFrame(channel=channel, command=command, payload=bytes(datagram[OPC_HEADER_LEN:end]))
