"""Configuration parsing and normalization helpers for whodis.

Brief:
  Reads the optional YAML config file, expands environment references,
  validates it against the bundled JSON Schema and merges command-line
  overrides into an UpdateRequest.

Inputs:
  - YAML config paths and argparse namespaces

Outputs:
  - Normalized config dicts and UpdateRequest values
"""

from __future__ import annotations

import ipaddress
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from ..addresses import AddressMode
from ..errors import ConfigError
from ..transport import DEFAULT_CONNECT_TIMEOUT_MS, DEFAULT_READ_TIMEOUT_MS
from ..workflow import UpdateRequest
from .config_schema import expand_env_vars, validate_config

DEFAULT_PORT = 53


def load_config(path: Optional[Union[str, Path]]) -> Dict[str, Any]:
    """
    Brief: Load, expand and validate a YAML config file.

    Inputs:
      - path: Config file path, or None for an empty config.

    Outputs:
      - dict: Validated configuration mapping.

    Raises:
      - ConfigError when the file is unreadable, not a mapping, references an
        undefined environment variable or fails schema validation.
    """
    if path is None:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"reading config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"parsing config {path}: {exc}") from exc
    if not isinstance(cfg, dict):
        raise ConfigError(f"config {path} must be a mapping at the top level")

    try:
        cfg = expand_env_vars(cfg)
        validate_config(cfg, config_path=str(path))
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return cfg


def parse_server(
    value: Union[str, Dict[str, Any]], default_port: int = DEFAULT_PORT
) -> Tuple[str, int]:
    """
    Brief: Normalize a server endpoint.

    Inputs:
      - value: "host", "host:port", "[v6addr]:port", a bare IPv6 address, or
        a mapping {"host": ..., "port": ...}.

    Outputs:
      - (host, port)

    Raises:
      - ConfigError for an empty host or an invalid port.

    Example:
      >>> parse_server("[2001:db8::53]:5353")
      ('2001:db8::53', 5353)
    """
    if isinstance(value, dict):
        host = str(value.get("host", "")).strip()
        port_raw: Any = value.get("port", default_port)
    else:
        text = str(value).strip()
        host, port_raw = text, default_port
        if text.startswith("["):
            end = text.find("]")
            if end == -1:
                raise ConfigError(f"unterminated '[' in server {text!r}")
            host = text[1:end]
            rest = text[end + 1 :]
            if rest:
                if not rest.startswith(":"):
                    raise ConfigError(f"invalid server {text!r}")
                port_raw = rest[1:]
        elif text.count(":") == 1:
            host, port_raw = text.split(":", 1)
        elif text.count(":") > 1:
            # Bare IPv6 literal without a port.
            try:
                ipaddress.IPv6Address(text)
            except ValueError:
                raise ConfigError(f"invalid server {text!r}") from None

    if not host:
        raise ConfigError("server host must not be empty")
    try:
        port = int(port_raw)
    except (TypeError, ValueError):
        raise ConfigError(f"invalid server port {port_raw!r}") from None
    if not 1 <= port <= 65535:
        raise ConfigError(f"server port must be between 1 and 65535, got {port}")
    return host, port


def _pick(cli_value: Any, cfg: Dict[str, Any], key: str, default: Any = None) -> Any:
    if cli_value is not None:
        return cli_value
    return cfg.get(key, default)


def _positive_ms(value: Any, name: str) -> int:
    try:
        ms = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"{name} must be an integer number of milliseconds"
        ) from exc
    if ms <= 0:
        raise ConfigError(
            f"{name} must be a positive number of milliseconds, got {ms}"
        )
    return ms


def build_request(cfg: Dict[str, Any], args: Any) -> Tuple[UpdateRequest, str]:
    """
    Brief: Merge config and CLI arguments (CLI wins) into an UpdateRequest.

    Inputs:
      - cfg: Validated config mapping.
      - args: argparse.Namespace with zone, hostname, server, mode, ip,
        key_file and timeout_ms attributes (None when not given).

    Outputs:
      - (UpdateRequest, key_file path)

    Raises:
      - ConfigError naming each missing required setting, or for a
        non-positive timeout.
    """
    zone = _pick(getattr(args, "zone", None), cfg, "zone")
    hostname = _pick(getattr(args, "hostname", None), cfg, "hostname")
    server = _pick(getattr(args, "server", None), cfg, "server")
    key_file = _pick(getattr(args, "key_file", None), cfg, "key_file")

    missing: List[str] = [
        flag
        for flag, val in (
            ("--zone", zone),
            ("--hostname", hostname),
            ("--server", server),
            ("--key-file", key_file),
        )
        if not val
    ]
    if missing:
        raise ConfigError(f"missing required setting(s): {', '.join(missing)}")

    host, port = parse_server(server)

    try:
        mode = AddressMode.parse(_pick(getattr(args, "mode", None), cfg, "mode", "v4"))
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    connect_ms = _positive_ms(
        _pick(getattr(args, "timeout_ms", None), cfg, "timeout_ms", DEFAULT_CONNECT_TIMEOUT_MS),
        "--timeout-ms",
    )
    read_ms = _positive_ms(
        cfg.get("read_timeout_ms", DEFAULT_READ_TIMEOUT_MS), "read_timeout_ms"
    )

    cli_ips = getattr(args, "ip", None) or []
    addresses = tuple(cli_ips) if cli_ips else tuple(cfg.get("addresses") or ())

    request = UpdateRequest(
        zone=str(zone),
        hostname=str(hostname),
        server_host=host,
        server_port=port,
        mode=mode,
        addresses=addresses,
        connect_timeout_ms=connect_ms,
        read_timeout_ms=read_ms,
    )
    return request, str(key_file)
