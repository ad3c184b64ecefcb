# this defaults file is for intra-source definitions, this is not meant to be user facing.
# user facing overrides live in `config/defaults.toml` at the repo root and only cover the
# settings that are also available as command line arguments.

# src/OPC_SERIAL/defaults.py
from __future__ import annotations

import tomllib
from pathlib import Path

# ---- Hard defaults (single source of truth) ----
DEFAULT_OPC_ADDRESS = "127.0.0.1"
DEFAULT_OPC_PORT = 7890
DEFAULT_OPC_CHANNEL = 0  # broadcast
DEFAULT_SERIAL_PROTOCOL = "ADALIGHT"

# datagrams are received into a buffer of this size, OPC messages that
# declare more than it can hold are dropped
RECEIVE_BUFFER_SIZE = 4096

ADALIGHT_HANDSHAKE_TIMEOUT_MS = 5000

# Path to repo-local overrides
# src/OPC_SERIAL/defaults.py -> parents[2] == repo root
REPO_CFG = Path(__file__).resolve().parents[2] / "config" / "defaults.toml"

# key -> accepted python types
_OVERRIDE_TYPES = {
    "opc_address": (str,),
    "opc_port": (int,),
    "opc_channel": (int,),
    "serial_port": (str,),
    "serial_protocol": (str,),
    "serial_baud_rate": (int,),
    "debug": (bool,),
}


class ConfigError(Exception):
    """Invalid configuration, reported to the operator before any I/O starts."""


def load_repo_overrides(path: Path = REPO_CFG) -> dict:
    """
    Returns dict with the overrides found in config/defaults.toml.
    Only keys present (and non-empty) in the file are returned, so callers
    can layer them between CLI arguments and the hard defaults above.
    A missing file is not an error, a malformed one is.
    """
    if not path.is_file():
        return {}

    try:
        cfg = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as decode_error:
        raise ConfigError(f"Malformed config file {path}: {decode_error}") from decode_error

    overrides = {}
    for key, value in cfg.items():
        expected_types = _OVERRIDE_TYPES.get(key)
        if expected_types is None:
            raise ConfigError(f"Unknown key '{key}' in {path}")
        # bool is an int subclass, don't let `opc_port = true` through
        if isinstance(value, bool) and bool not in expected_types:
            raise ConfigError(f"'{key}' in {path} must be {expected_types[0].__name__}, got bool")
        if not isinstance(value, expected_types):
            raise ConfigError(
                f"'{key}' in {path} must be {expected_types[0].__name__}, got {type(value).__name__}"
            )
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        overrides[key] = value

    return overrides
