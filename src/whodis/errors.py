"""Error taxonomy for the update workflow.

Brief: Every failure is fatal to the single transaction. Each exception
carries the workflow phase it originated in so the CLI can tell operators
whether the key, the network or the server is at fault.
"""

from __future__ import annotations

import enum
from typing import Optional

import dns.rcode


class Phase(enum.Enum):
    """Workflow phase an error is attributed to, with its process exit code."""

    CONFIG = ("configuration", 2)
    ADDRESS_RESOLUTION = ("address resolution", 3)
    MESSAGE_CONSTRUCTION = ("message construction", 4)
    SIGNING = ("signing", 5)
    TRANSPORT = ("transport", 6)
    SERVER_REJECTION = ("server rejection", 7)
    PROTOCOL = ("protocol", 8)

    def __init__(self, label: str, exit_code: int):
        self.label = label
        self.exit_code = exit_code


class UpdateError(Exception):
    """
    Base class for all update failures.

    Inputs:
      - message: Human-readable description.
    Outputs:
      - Exception instance whose ``phase`` names where it happened.
    """

    phase = Phase.CONFIG

    @property
    def exit_code(self) -> int:
        return self.phase.exit_code

    def describe(self) -> str:
        return f"update failed during {self.phase.label}: {self}"


class ConfigError(UpdateError):
    phase = Phase.CONFIG


class InvalidName(UpdateError):
    """Zone or host name is not a syntactically valid domain name."""

    phase = Phase.MESSAGE_CONSTRUCTION


class AddressError(UpdateError):
    phase = Phase.ADDRESS_RESOLUTION


class InvalidAddress(AddressError):
    """An explicitly supplied address could not be parsed."""


class NoCompatibleAddress(AddressError):
    """Explicit addresses were given but none matches the address mode."""


class AddressDetectionFailed(AddressError):
    """Local detection failed for a family the mode requires."""


class NoAddressesAvailable(AddressError):
    """Nothing left to publish after detection."""


class SigningIdentityInvalid(UpdateError):
    """Key material is unreadable, malformed or not RSA."""

    phase = Phase.SIGNING


class SigningFailed(UpdateError):
    phase = Phase.SIGNING


class ConnectionFailed(UpdateError):
    """Connection refused or timed out; never retried."""

    phase = Phase.TRANSPORT


class TransportFailure(UpdateError):
    phase = Phase.TRANSPORT


class ProtocolFailure(UpdateError):
    """Response absent, truncated or not a valid reply to the request."""

    phase = Phase.PROTOCOL


class ServerRejected(UpdateError):
    """
    The server answered with a non-NOERROR response code.

    Inputs:
      - rcode: dns.rcode.Rcode returned by the server.
      - detail: Optional extra context.
    Outputs:
      - Exception instance; ``rcode`` is preserved verbatim.
    """

    phase = Phase.SERVER_REJECTION

    def __init__(self, rcode: dns.rcode.Rcode, detail: Optional[str] = None):
        self.rcode = rcode
        text = f"server responded {dns.rcode.to_text(rcode)}"
        if detail:
            text = f"{text} ({detail})"
        super().__init__(text)
