#!/usr/bin/env python3
"""
Brief: Generate an RSASHA256 key pair for SIG(0)-signed dynamic updates.

Inputs (CLI arguments):
  --zone: Zone apex that will own the KEY record (e.g. "example.com.").
  --output: Path to write the PEM private key (default: dns_update.key).
  --bits: RSA modulus size (default: 2048).
  --ttl: TTL of the printed KEY record (default: 3600).
  --force: Overwrite an existing private key file.

Outputs:
  - PEM private key at --output (mode 0600).
  - The KEY record to add to the zone, printed on stdout.

Example:
  python scripts/generate_sig0_key.py --zone example.com. --output dns_update.key
  # then in BIND: update-policy { grant example.com. name host.example.com. A AAAA; };

Dependencies:
  - whodis (dnspython, cryptography)
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from whodis.errors import UpdateError
from whodis.sig0 import SigningIdentity, generate_private_key, private_key_pem

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    """Brief: Generate the key, write it, print the KEY record.

    Inputs:
      - argv: CLI arguments (default: sys.argv[1:]).

    Outputs:
      - int: Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        description="Generate an RSASHA256 SIG(0) key for whodis.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--zone", required=True, help="Zone apex owning the KEY record")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("dns_update.key"),
        help="Path to write the PEM private key (default: dns_update.key)",
    )
    parser.add_argument("--bits", type=int, default=2048, help="RSA key size (default: 2048)")
    parser.add_argument("--ttl", type=int, default=3600, help="KEY record TTL (default: 3600)")
    parser.add_argument(
        "--force", action="store_true", help="Overwrite an existing key file"
    )
    args = parser.parse_args(argv)

    if args.output.exists() and not args.force:
        logger.error("%s already exists; pass --force to overwrite", args.output)
        return 1

    try:
        private_key = generate_private_key(args.bits)
        identity = SigningIdentity.from_private_key(private_key, args.zone)
    except (ValueError, UpdateError) as e:
        logger.error("Failed to generate key: %s", e)
        return 1

    args.output.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(args.output), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(private_key_pem(private_key))
    os.chmod(args.output, 0o600)
    logger.info("Wrote %d-bit private key to %s (key tag %d)", args.bits, args.output, identity.key_tag)

    print(identity.key_record_text(ttl=args.ttl))
    return 0


if __name__ == "__main__":
    sys.exit(main())
