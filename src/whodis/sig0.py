"""SIG(0) transaction signatures (RFC 2931) for UPDATE messages.

Brief: Load an RSA private key once at startup, derive the public KEY record
and key tag, and sign outgoing message wire with RSASHA256 by appending a SIG
resource record to the additional section.

Inputs:
  - PEM encoded RSA private key bytes.
  - Zone name acting as signer (the KEY record's owner).

Outputs:
  - SigningIdentity values and signed message wire.
"""

from __future__ import annotations

import io
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import dns.dnssec
import dns.exception
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rdtypes.ANY.SIG
import dns.rrset
import dns.wire
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import SigningFailed, SigningIdentityInvalid
from .update_builder import parse_name

logger = logging.getLogger(__name__)

ALGORITHM = dns.dnssec.Algorithm.RSASHA256

# KEY flags: name type "entity/host" (bit 6), usable for authentication.
KEY_FLAGS = 512
KEY_PROTOCOL = 3

# Allowed clock skew on either side of the signing time.
SIG0_FUDGE = 300

_HEADER_LEN = 12


class Sig0VerificationError(ValueError):
    """A SIG(0) record is missing, malformed, expired or does not verify."""


def validate_and_load(key_bytes: bytes) -> rsa.RSAPrivateKey:
    """
    Parse and validate PEM key material.

    Inputs:
      - key_bytes: PEM private key (PKCS#1 or PKCS#8, unencrypted).
    Outputs:
      - cryptography RSAPrivateKey.

    Raises:
      - SigningIdentityInvalid when parsing fails or the key is not RSA.
    """
    try:
        key = serialization.load_pem_private_key(key_bytes, password=None)
    except (ValueError, TypeError) as exc:
        raise SigningIdentityInvalid(f"parsing private key PEM: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise SigningIdentityInvalid(
            f"constructing RSA signing key: expected an RSA key for "
            f"{ALGORITHM.name}, got {type(key).__name__}"
        )
    return key


@dataclass(frozen=True)
class SigningIdentity:
    """
    Immutable signing key bound to the zone that owns its KEY record.

    Attributes:
      - private_key: RSA private key.
      - public_key: Public half derived at construction.
      - key_rdata: KEY record data (same wire shape as DNSKEY).
      - key_tag: RFC 4034 key tag of key_rdata.
      - signer_name: Absolute zone name.
    """

    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey
    key_rdata: dns.rdata.Rdata
    key_tag: int
    signer_name: dns.name.Name

    @classmethod
    def from_private_key(
        cls, private_key: rsa.RSAPrivateKey, zone: Union[str, dns.name.Name]
    ) -> "SigningIdentity":
        signer = parse_name(zone, "zone")
        try:
            public_key = private_key.public_key()
            key_rdata = dns.dnssec.make_dnskey(
                public_key, ALGORITHM, flags=KEY_FLAGS, protocol=KEY_PROTOCOL
            )
            key_tag = dns.dnssec.key_id(key_rdata)
        except (ValueError, TypeError, dns.exception.DNSException) as exc:
            raise SigningIdentityInvalid(f"extracting public key: {exc}") from exc
        return cls(private_key, public_key, key_rdata, key_tag, signer)

    @classmethod
    def from_pem(
        cls, key_bytes: bytes, zone: Union[str, dns.name.Name]
    ) -> "SigningIdentity":
        return cls.from_private_key(validate_and_load(key_bytes), zone)

    @property
    def signature_length(self) -> int:
        return (self.public_key.key_size + 7) // 8

    def key_record_text(self, ttl: int = 3600) -> str:
        """
        Presentation-format KEY record to publish in the zone.

        Example:
          'example.com. 3600 IN KEY 512 3 8 AwEAAc...'
        """
        return f"{self.signer_name} {ttl} IN KEY {self.key_rdata.to_text()}"


def load_signing_identity(
    key_file: Union[str, Path], zone: Union[str, dns.name.Name]
) -> SigningIdentity:
    """
    Read a key file and build the SigningIdentity for ``zone``.

    Raises:
      - SigningIdentityInvalid when the file cannot be read or the key is bad.
    """
    path = Path(key_file).expanduser()
    try:
        key_bytes = path.read_bytes()
    except OSError as exc:
        raise SigningIdentityInvalid(f"reading key file {path}: {exc}") from exc
    identity = SigningIdentity.from_pem(key_bytes, zone)
    logger.debug(
        "Loaded %d-bit %s key tag=%d for %s",
        identity.public_key.key_size,
        ALGORITHM.name,
        identity.key_tag,
        identity.signer_name,
    )
    return identity


def generate_private_key(bits: int = 2048) -> rsa.RSAPrivateKey:
    """Generate a fresh RSA key suitable for SIG(0)."""
    if bits < 1024:
        raise ValueError(f"RSA key size must be at least 1024 bits, got {bits}")
    return rsa.generate_private_key(public_exponent=65537, key_size=bits)


def private_key_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _sig_rdata(
    identity: SigningIdentity,
    inception: int,
    expiration: int,
    signature: bytes = b"",
) -> dns.rdtypes.ANY.SIG.SIG:
    # type covered 0, labels 0, original ttl 0
    return dns.rdtypes.ANY.SIG.SIG(
        dns.rdataclass.ANY,
        dns.rdatatype.SIG,
        0,
        ALGORITHM,
        0,
        0,
        expiration & 0xFFFFFFFF,
        inception & 0xFFFFFFFF,
        identity.key_tag,
        identity.signer_name,
        signature,
    )


def _signed_data(sig: dns.rdtypes.ANY.SIG.SIG, unsigned_wire: bytes) -> bytes:
    """RFC 2931 signed data: SIG rdata without the signature, then the message."""
    return sig.replace(signature=b"").to_digestable() + unsigned_wire


def _with_arcount_delta(wire: bytes, delta: int) -> bytes:
    arcount = int.from_bytes(wire[10:_HEADER_LEN], "big") + delta
    return wire[:10] + arcount.to_bytes(2, "big") + wire[_HEADER_LEN:]


class Sig0Signer:
    """
    Signs message wire with a SigningIdentity.

    Inputs:
      - identity: SigningIdentity (shared read-only).
      - fudge: Seconds of validity before and after the signing time.
    Outputs:
      - sign(wire) -> signed wire with a trailing SIG RR.

    Example:
      >>> signer = Sig0Signer(identity)
      >>> signed = signer.sign(message.to_wire())
    """

    def __init__(self, identity: SigningIdentity, fudge: int = SIG0_FUDGE):
        self.identity = identity
        self.fudge = int(fudge)

    def sign(self, wire: bytes, now: Optional[float] = None) -> bytes:
        """
        Append a SIG(0) record covering ``wire``.

        Inputs:
          - wire: Complete unsigned message wire (id and sections final).
          - now: Optional signing time (epoch seconds) for tests.
        Outputs:
          - bytes: Signed message wire.

        Raises:
          - SigningFailed on malformed input or a crypto error.
        """
        if len(wire) < _HEADER_LEN:
            raise SigningFailed("message too short to sign")
        ident = self.identity
        signed_at = int(time.time() if now is None else now)
        try:
            sig = _sig_rdata(ident, signed_at - self.fudge, signed_at + self.fudge)
            signature = ident.private_key.sign(
                _signed_data(sig, wire), padding.PKCS1v15(), hashes.SHA256()
            )
            sig = sig.replace(signature=signature)
        except (ValueError, TypeError, dns.exception.DNSException) as exc:
            raise SigningFailed(f"computing SIG(0) signature: {exc}") from exc

        record = io.BytesIO()
        dns.rrset.from_rdata(dns.name.root, 0, sig).to_wire(record)
        logger.debug(
            "Signed message id=%d with key tag %d (%d byte signature)",
            int.from_bytes(wire[:2], "big"),
            ident.key_tag,
            len(signature),
        )
        return _with_arcount_delta(wire, 1) + record.getvalue()


def split_sig0(signed_wire: bytes) -> Tuple[bytes, dns.rdtypes.ANY.SIG.SIG]:
    """
    Separate a signed message into (unsigned wire, SIG rdata).

    Brief: Walks the sections with dnspython's wire parser to find where the
    last additional record starts, then decodes that record.

    Raises:
      - Sig0VerificationError when the last record is not a SIG(0) RR or the
        message is truncated.
    """
    parser = dns.wire.Parser(signed_wire)
    try:
        parser.get_bytes(4)  # id, flags
        qdcount = parser.get_uint16()
        rrcount = parser.get_uint16() + parser.get_uint16()
        arcount = parser.get_uint16()
        if arcount < 1:
            raise Sig0VerificationError("no additional records present")
        for _ in range(qdcount):
            parser.get_name()
            parser.get_bytes(4)
        for _ in range(rrcount + arcount - 1):
            parser.get_name()
            parser.get_bytes(8)
            parser.get_bytes(parser.get_uint16())

        start = parser.current
        owner = parser.get_name()
        rdtype = parser.get_uint16()
        rdclass = parser.get_uint16()
        ttl = parser.get_uint32()
        rdlen = parser.get_uint16()
        if owner != dns.name.root:
            raise Sig0VerificationError("SIG(0) owner name must be the root")
        if rdtype != dns.rdatatype.SIG or rdclass != dns.rdataclass.ANY or ttl != 0:
            raise Sig0VerificationError("trailing record is not a SIG(0) record")
        with parser.restrict_to(rdlen):
            sig = dns.rdata.from_wire_parser(rdclass, rdtype, parser)
        if parser.remaining():
            raise Sig0VerificationError("data after the SIG(0) record")
    except dns.exception.DNSException as exc:
        raise Sig0VerificationError(f"malformed signed message: {exc}") from exc
    return _with_arcount_delta(signed_wire[:start], -1), sig


def verify_sig0(
    signed_wire: bytes,
    public_key: rsa.RSAPublicKey,
    signer_name: Union[str, dns.name.Name],
    now: Optional[float] = None,
) -> bytes:
    """
    Brief: Check the SIG(0) record that ends ``signed_wire``.

    Inputs:
      - signed_wire: Message as produced by Sig0Signer.sign.
      - public_key: RSA public key published for signer_name.
      - signer_name: Expected signer (zone) name.
      - now: Optional verification time (epoch seconds).

    Outputs:
      - bytes: The unsigned message wire that the signature covers.

    Raises:
      - Sig0VerificationError on any structural, temporal or crypto mismatch.
    """
    signer = parse_name(signer_name, "signer")
    unsigned, sig = split_sig0(signed_wire)

    if sig.type_covered != 0 or sig.algorithm != ALGORITHM:
        raise Sig0VerificationError(
            f"unexpected SIG(0) type covered {int(sig.type_covered)} / "
            f"algorithm {int(sig.algorithm)}"
        )
    if sig.signer != signer:
        raise Sig0VerificationError(
            f"SIG(0) signer name mismatch: {sig.signer} != {signer}"
        )
    current = int(time.time() if now is None else now)
    if not sig.inception <= current <= sig.expiration:
        raise Sig0VerificationError(
            f"SIG(0) validity window {sig.inception}..{sig.expiration} "
            f"excludes {current}"
        )
    try:
        public_key.verify(
            sig.signature,
            _signed_data(sig, unsigned),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except InvalidSignature as exc:
        raise Sig0VerificationError("SIG(0) signature does not verify") from exc
    return unsigned
