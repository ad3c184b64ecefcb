# src/OPC_SERIAL/serial_protocol.py
from __future__ import annotations

from enum import Enum
from typing import Protocol

# ---------- Protocol constants ----------
ADALIGHT_MAGIC   = b"Ada"
AWA_MAGIC        = b"Awa"
ADALIGHT_HEADER_LEN = 6
ADALIGHT_CHECKSUM_XOR = 0x55
AWA_CHECKSUM_LEN = 2

TPM2_START_BYTE  = 0xC9
TPM2_DATA_FRAME  = 0xDA
TPM2_END_BYTE    = 0x36
TPM2_HEADER_LEN  = 4
TPM2_FOOTER_LEN  = 1

# headers carry 16-bit length fields
MAX_PAYLOAD_LEN = 0xFFFF


class FrameTooLarge(ValueError):
    pass


class SerialProtocol(Enum):
    """Downstream wire protocols: (default baud rate, header length, footer length)."""

    ADALIGHT = (115_200, ADALIGHT_HEADER_LEN, 0)
    AWA      = (2_000_000, ADALIGHT_HEADER_LEN, AWA_CHECKSUM_LEN)
    TPM2     = (115_200, TPM2_HEADER_LEN, TPM2_FOOTER_LEN)

    def __init__(self, default_baud_rate: int, header_len: int, footer_len: int):
        self.default_baud_rate = default_baud_rate
        self.header_len = header_len
        self.footer_len = footer_len

    @property
    def requires_handshake(self) -> bool:
        # only plain Adalight firmware greets with "Ada\n"
        return self is SerialProtocol.ADALIGHT

    @property
    def is_adalight_family(self) -> bool:
        return self in (SerialProtocol.ADALIGHT, SerialProtocol.AWA)

    def frame_len(self, data_len: int) -> int:
        return self.header_len + data_len + self.footer_len

    @classmethod
    def from_name(cls, name: str) -> "SerialProtocol":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown serial protocol '{name}' (expected one of {cls.names()})") from None

    @classmethod
    def names(cls) -> str:
        return ",".join(protocol.name for protocol in cls)


def compute_fletcher16(data_bytes: bytes) -> tuple[int, int]:
    fletcher1 = 0
    fletcher2 = 0
    for byte_value in data_bytes:
        fletcher1 = (fletcher1 + byte_value) % 255
        fletcher2 = (fletcher2 + fletcher1) % 255
    return fletcher1, fletcher2


def _adalight_header(magic: bytes, payload_len: int) -> bytes:
    # Adalight sends led_count - 1, so [0x00, 0x01] means 2 LEDs (6 RGB bytes)
    led_count_field = (payload_len // 3 - 1) & 0xFFFF
    count_hi = (led_count_field >> 8) & 0xFF
    count_lo = led_count_field & 0xFF
    return magic + bytes([count_hi, count_lo, count_hi ^ count_lo ^ ADALIGHT_CHECKSUM_XOR])


def encode_adalight(payload: bytes) -> bytes:
    frame = bytearray(_adalight_header(ADALIGHT_MAGIC, len(payload)))
    frame += payload
    return bytes(frame)


def encode_awa(payload: bytes) -> bytes:
    frame = bytearray(_adalight_header(AWA_MAGIC, len(payload)))
    frame += payload
    frame += bytes(compute_fletcher16(payload))
    return bytes(frame)


def encode_tpm2(payload: bytes) -> bytes:
    payload_len = len(payload)
    frame = bytearray([
        TPM2_START_BYTE, TPM2_DATA_FRAME,
        (payload_len >> 8) & 0xFF, payload_len & 0xFF,
    ])
    frame += payload
    frame.append(TPM2_END_BYTE)
    return bytes(frame)


_ENCODERS = {
    SerialProtocol.ADALIGHT: encode_adalight,
    SerialProtocol.AWA:      encode_awa,
    SerialProtocol.TPM2:     encode_tpm2,
}


def encode_frame(protocol: SerialProtocol, payload: bytes) -> bytes:
    """
    Wrap an RGB payload in the framing of `protocol`.
    The result is exactly protocol.frame_len(len(payload)) bytes long.
    """
    if len(payload) > MAX_PAYLOAD_LEN:
        raise FrameTooLarge(
            f"{protocol.name} payload of {len(payload)} bytes does not fit a 16-bit length field"
        )
    return _ENCODERS[protocol](payload)


# Tiny typing Protocol so the bridge can be unit-tested by injecting an
# object with a .write(bytes) method (e.g., io.BytesIO or a stub).
class _ByteWriter(Protocol):
    def write(self, data: bytes) -> int: ...


def send_frame(port: _ByteWriter, protocol: SerialProtocol, payload: bytes) -> bytes:
    output = encode_frame(protocol, payload)
    port.write(output)
    return output
