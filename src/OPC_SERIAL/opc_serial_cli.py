#!/usr/bin/env python3
"""
opc_serial_cli.py

Relays Open Pixel Control pixel data received over UDP to an LED controller
on a serial port, using one of:
  - ADALIGHT : "Ada" header, waits for the board's "Ada\\n" greeting first
  - AWA      : "Awa" header + Fletcher-16 footer (HyperSerial firmwares)
  - TPM2     : 0xC9 0xDA header + 0x36 footer

Usage:
  pip install -e .
  OPC_SERIAL --list-ports
  OPC_SERIAL -sp /dev/ttyACM0 -p adalight -op 7890

Repo-local defaults (no OS-specific paths outside the repo):
  Put a file at:  <repo_root>/config/defaults.toml
  Example:
    serial_port = "/dev/ttyACM0"
    serial_protocol = "awa"
    opc_port = 7890

If you set those, you can just run:
  OPC_SERIAL
"""

# in src/OPC_SERIAL/opc_serial_cli.py
from OPC_SERIAL.bridge import (
    EXIT_CONFIG_ERROR,
    EXIT_OK,
    BridgeConfig,
    run_session,
)
from OPC_SERIAL.defaults import (
    DEFAULT_OPC_ADDRESS,
    DEFAULT_OPC_CHANNEL,
    DEFAULT_OPC_PORT,
    DEFAULT_SERIAL_PROTOCOL,
    REPO_CFG,
    ConfigError,
    load_repo_overrides,
)
from OPC_SERIAL.serial_protocol import SerialProtocol
from OPC_SERIAL.usb_serial import auto_detect_port, list_candidate_ports

import argparse
import logging
import sys
from pathlib import Path


class MissingSerialPort(ConfigError):
    pass


def _protocol_arg(value: str) -> SerialProtocol:
    try:
        return SerialProtocol.from_name(value)
    except ValueError as parse_error:
        raise argparse.ArgumentTypeError(str(parse_error)) from parse_error


def build_argument_parser() -> argparse.ArgumentParser:
    argument_parser = argparse.ArgumentParser(
        prog="OPC_SERIAL",
        description="Relay OPC pixel data from a UDP port to a serial port (Adalight, AWA or TPM2).",
    )
    argument_parser.add_argument("-oa", "--opc-address", help=f"Network address to bind (default {DEFAULT_OPC_ADDRESS}).")
    argument_parser.add_argument("-op", "--opc-port", type=int, help=f"UDP port to listen to (default {DEFAULT_OPC_PORT}).")
    argument_parser.add_argument("-oc", "--opc-channel", type=int, help=f"OPC channel to listen for (default {DEFAULT_OPC_CHANNEL}).")
    argument_parser.add_argument("-sp", "--serial-port", help="Serial port for output (e.g., /dev/ttyACM0). Defaults to repo config or auto-detect.")
    argument_parser.add_argument(
        "-p", "--serial-protocol", type=_protocol_arg,
        help=f"Protocol for serial output ({SerialProtocol.names()}, default {DEFAULT_SERIAL_PROTOCOL}).",
    )
    argument_parser.add_argument("-br", "--serial-baud-rate", type=int, help="Serial port baud rate (default depends on protocol).")
    argument_parser.add_argument("-list", "--list-ports", action="store_true", help="List available serial ports and exit.")
    argument_parser.add_argument("-d", "--debug", action="store_true", default=None, help="Log debugging output.")
    return argument_parser


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def print_ports() -> None:
    candidate_devices, all_ports = list_candidate_ports()
    print("Available serial ports:")
    for port_name in all_ports:
        marker = "  (looks like an LED controller)" if port_name in candidate_devices else ""
        print(f"{port_name}{marker}")


def resolve_config(args: argparse.Namespace, overrides: dict) -> BridgeConfig:
    """
    Layer CLI arg -> repo config -> hard default for every setting.
    The serial port additionally falls back to auto-detection.
    """
    def pick(arg_value, key, default):
        if arg_value is not None:
            return arg_value
        return overrides.get(key, default)

    protocol = args.serial_protocol
    if protocol is None:
        try:
            protocol = SerialProtocol.from_name(overrides.get("serial_protocol", DEFAULT_SERIAL_PROTOCOL))
        except ValueError as parse_error:
            raise ConfigError(str(parse_error)) from parse_error

    serial_port = args.serial_port or overrides.get("serial_port") or auto_detect_port()
    if not serial_port:
        raise MissingSerialPort("No serial port specified, specify via -sp or --serial-port")

    return BridgeConfig(
        serial_port=serial_port,
        protocol=protocol,
        opc_address=pick(args.opc_address, "opc_address", DEFAULT_OPC_ADDRESS),
        opc_port=pick(args.opc_port, "opc_port", DEFAULT_OPC_PORT),
        opc_channel=pick(args.opc_channel, "opc_channel", DEFAULT_OPC_CHANNEL),
        baud_rate=pick(args.serial_baud_rate, "serial_baud_rate", None),
        debug=pick(args.debug, "debug", False),
    )


def main(argv=None, config_path: Path = REPO_CFG) -> int:
    args = build_argument_parser().parse_args(argv)

    if args.list_ports:
        print_ports()
        return EXIT_OK

    try:
        overrides = load_repo_overrides(config_path)
        config = resolve_config(args, overrides)
    except MissingSerialPort as config_error:
        print(config_error, file=sys.stderr)
        _, detected_ports_all = list_candidate_ports()
        if detected_ports_all:
            print("Detected ports:", ", ".join(detected_ports_all), file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except ConfigError as config_error:
        print(config_error, file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(config.debug)
    return run_session(config)


def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(EXIT_OK)


if __name__ == "__main__":
    run()
