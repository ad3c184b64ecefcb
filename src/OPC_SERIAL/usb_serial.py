# src/OPC_SERIAL/usb_serial.py
"""
USB/serial helpers for OPC_SERIAL.
"""

from __future__ import annotations

import serial
from serial.tools import list_ports

_CANDIDATE_DEVICE_MARKERS = ("ttyacm", "ttyusb", "cu.usbmodem", "cu.usbserial")
_CANDIDATE_DESCRIPTION_MARKERS = ("arduino", "wch", "ch340", "usb serial", "cp210x", "ftdi")


def list_candidate_ports():
    """
    Return (candidate_devices, all_ports), where:
      - candidate_devices: ports that look like Arduino/USB-serial
      - all_ports: every discovered port device string
    """
    candidate_devices, all_ports = [], []
    for port_info in list_ports.comports():
        dev = (port_info.device or "").lower()
        desc = (port_info.description or "").lower()
        all_ports.append(port_info.device)
        if any(marker in dev for marker in _CANDIDATE_DEVICE_MARKERS) or any(
            marker in desc for marker in _CANDIDATE_DESCRIPTION_MARKERS
        ):
            candidate_devices.append(port_info.device)
    return candidate_devices, all_ports


def auto_detect_port():
    """
    Pick the first 'candidate' port if any, else None.
    """
    candidates, _ = list_candidate_ports()
    return candidates[0] if candidates else None


def open_serial_port(port_path: str, baud_rate: int, timeout: float | None = None) -> serial.Serial:
    """
    Open the serial port 8N1. Input must not be flushed here, Adalight
    boards send their handshake right after the reset caused by opening.
    """
    return serial.Serial(
        port_path,
        baudrate=baud_rate,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        timeout=timeout,
    )
