"""Single-shot orchestration of an authenticated address update.

Brief: resolve addresses, build the UPDATE, bind the SIG(0) signer, send it
and interpret the answer. Each step is one state transition; any UpdateError
moves the workflow to FAILED and is re-raised with its phase attached. There
is no retry anywhere.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence

import dns.update

from .addresses import AddressMode, AddressSet, Detector, select_addresses
from .errors import UpdateError
from .sig0 import Sig0Signer, SigningIdentity
from .transport import (
    DEFAULT_CONNECT_TIMEOUT_MS,
    DEFAULT_READ_TIMEOUT_MS,
    UpdateResult,
    UpdateTransport,
)
from .update_builder import build_update, describe_update, parse_name

logger = logging.getLogger(__name__)


class WorkflowState(enum.Enum):
    IDLE = "idle"
    ADDRESSES_RESOLVED = "addresses_resolved"
    MESSAGE_BUILT = "message_built"
    SIGNED = "signed"
    SENT = "sent"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class UpdateRequest:
    """
    Everything needed for one update, already merged from config and CLI.

    Attributes:
      - zone, hostname: Domain names (validated when the workflow runs).
      - server_host, server_port: Authoritative server endpoint.
      - mode: AddressMode.
      - addresses: Explicit override addresses; empty means detect.
    """

    zone: str
    hostname: str
    server_host: str
    server_port: int = 53
    mode: AddressMode = AddressMode.V4
    addresses: Sequence[str] = field(default_factory=tuple)
    connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS


TransportFactory = Callable[..., UpdateTransport]


class UpdateWorkflow:
    """
    Runs one UpdateRequest to completion.

    Inputs:
      - request: UpdateRequest.
      - identity: SigningIdentity loaded at startup.
      - transport_factory: Callable(host, port, connect_timeout_ms=...,
        read_timeout_ms=...) returning an UpdateTransport.
      - detectors: Optional address detectors forwarded to select_addresses.

    Example:
      >>> workflow = UpdateWorkflow(request, identity)
      >>> workflow.run().ok
      True
    """

    def __init__(
        self,
        request: UpdateRequest,
        identity: SigningIdentity,
        *,
        transport_factory: TransportFactory = UpdateTransport,
        detectors: Optional[Dict[int, Detector]] = None,
    ):
        self.request = request
        self.identity = identity
        self._transport_factory = transport_factory
        self._detectors = detectors
        self.state = WorkflowState.IDLE
        self.error: Optional[UpdateError] = None
        self.addresses: AddressSet = ()
        self.message: Optional[dns.update.UpdateMessage] = None
        self.result: Optional[UpdateResult] = None

    def _advance(self, state: WorkflowState) -> None:
        logger.debug("Update workflow %s -> %s", self.state.value, state.value)
        self.state = state

    def run(self) -> UpdateResult:
        """
        Execute the update exactly once.

        Outputs:
          - UpdateResult with status SUCCESS.

        Raises:
          - UpdateError subclass describing the failing phase; ``self.error``
            holds the same instance and ``self.state`` is FAILED.
        """
        if self.state is not WorkflowState.IDLE:
            raise RuntimeError("an UpdateWorkflow can only run once")
        try:
            return self._run()
        except UpdateError as exc:
            self.error = exc
            self._advance(WorkflowState.FAILED)
            logger.debug("Update failed during %s: %s", exc.phase.label, exc)
            raise

    def _run(self) -> UpdateResult:
        req = self.request
        zone = parse_name(req.zone, "zone")
        host = parse_name(req.hostname, "hostname")

        self.addresses = select_addresses(req.mode, req.addresses, self._detectors)
        logger.info(
            "Resolved update target %s -> %s",
            host,
            ", ".join(str(a) for a in self.addresses),
        )
        self._advance(WorkflowState.ADDRESSES_RESOLVED)

        self.message = build_update(zone, host, self.addresses)
        for line in describe_update(self.message):
            logger.debug("  %s", line)
        self._advance(WorkflowState.MESSAGE_BUILT)

        signer = Sig0Signer(self.identity)

        def sign(wire: bytes) -> bytes:
            # Called by the transport once the wire is final.
            signed = signer.sign(wire)
            self._advance(WorkflowState.SIGNED)
            return signed

        transport = self._transport_factory(
            req.server_host,
            req.server_port,
            connect_timeout_ms=req.connect_timeout_ms,
            read_timeout_ms=req.read_timeout_ms,
        )
        with transport:
            logger.info("Sending authenticated update to %s", transport.endpoint)
            self.result = transport.send(self.message, sign)
        self._advance(WorkflowState.SENT)

        self.result.raise_for_status()
        logger.info("DNS update successful")
        self._advance(WorkflowState.SUCCEEDED)
        return self.result


def run_update(
    request: UpdateRequest,
    identity: SigningIdentity,
    **kwargs,
) -> UpdateResult:
    """Convenience wrapper: build an UpdateWorkflow and run it."""
    return UpdateWorkflow(request, identity, **kwargs).run()
