from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from .addresses import AddressMode
from .config.config_parser import build_request, load_config
from .config.logging_config import init_logging
from .errors import ConfigError, SigningIdentityInvalid, UpdateError
from .sig0 import load_signing_identity, validate_and_load
from .workflow import UpdateWorkflow


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="whodis",
        description=(
            "Replace a host's A/AAAA records with a SIG(0)-signed "
            "RFC 2136 dynamic update"
        ),
    )
    parser.add_argument("--config", default=None, help="Path to optional YAML config")
    parser.add_argument("-z", "--zone", help="Zone apex to update (signer name)")
    parser.add_argument("-n", "--hostname", help="Fully-qualified host name to update")
    parser.add_argument(
        "-s", "--server", help="Authoritative server as host[:port] or [v6addr]:port"
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in AddressMode],
        default=None,
        help="Address families to publish (default: v4)",
    )
    parser.add_argument(
        "--ip",
        action="append",
        metavar="ADDRESS",
        help="Publish this address instead of detecting one (repeatable)",
    )
    parser.add_argument("-k", "--key-file", help="PEM RSA private key for SIG(0)")
    parser.add_argument(
        "--timeout-ms", type=int, default=None, help="TCP connect timeout (default: 5000)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override logging level (debug, info, warn, error, crit)",
    )
    parser.add_argument(
        "--check-key",
        action="store_true",
        help="Validate the private key file and exit",
    )
    parser.add_argument(
        "--print-key-record",
        action="store_true",
        help="Print the KEY record to publish for --zone and exit",
    )
    return parser


def _key_command(args: argparse.Namespace, cfg: Dict[str, Any]) -> int:
    """Handle --check-key / --print-key-record without touching the network."""
    key_file = args.key_file or cfg.get("key_file")
    if not key_file:
        raise ConfigError("missing required setting(s): --key-file")
    zone = args.zone or cfg.get("zone")

    if args.print_key_record:
        if not zone:
            raise ConfigError("missing required setting(s): --zone")
        print(load_signing_identity(key_file, zone).key_record_text())
        return 0

    if zone:
        identity = load_signing_identity(key_file, zone)
        print(f"{key_file}: valid RSASHA256 key, key tag {identity.key_tag}")
    else:
        try:
            key_bytes = Path(key_file).expanduser().read_bytes()
        except OSError as exc:
            raise SigningIdentityInvalid(f"reading key file {key_file}: {exc}") from exc
        key = validate_and_load(key_bytes)
        print(f"{key_file}: valid {key.key_size}-bit RSASHA256 key")
    return 0


def main(argv: List[str] | None = None) -> int:
    """
    Entry point for the whodis command.

    Args:
        argv: Command-line arguments (default: sys.argv[1:]).

    Returns:
        0 on success; the failing phase's exit code otherwise.

    Example use:
        whodis -z example.com -n host.example.com -s 192.0.2.53 -k dns_update.key
        whodis --config whodis.yaml --mode both
    """
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        print(exc.describe(), file=sys.stderr)
        return exc.exit_code

    init_logging(cfg.get("logging"), level=args.log_level)
    logger = logging.getLogger("whodis.main")
    if args.config:
        logger.debug("Loaded config from %s", args.config)

    try:
        if args.check_key or args.print_key_record:
            return _key_command(args, cfg)

        request, key_file = build_request(cfg, args)
        # Load the key before opening any connection.
        identity = load_signing_identity(key_file, request.zone)
        UpdateWorkflow(request, identity).run()
    except UpdateError as exc:
        logger.debug("Update aborted", exc_info=True)
        print(exc.describe(), file=sys.stderr)
        return exc.exit_code
    return 0


def console_main() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
