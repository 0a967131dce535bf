"""DNS-over-TCP delivery of a single signed UPDATE and its response.

Brief: A connection owns a daemon reader thread that decodes RFC 7766
length-prefixed frames and hands each one to the future registered for its
message id. ``send`` is synchronous for the caller: it writes one request and
blocks until the first matching response, end of stream, or a socket error.
"""

from __future__ import annotations

import enum
import logging
import socket
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import dns.exception
import dns.flags
import dns.message
import dns.opcode
import dns.rcode

from .errors import (
    ConnectionFailed,
    ProtocolFailure,
    ServerRejected,
    TransportFailure,
    UpdateError,
)

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_MS = 5000
DEFAULT_READ_TIMEOUT_MS = 5000

NO_ANSWER = "no answer received"

Signer = Callable[[bytes], bytes]


class UpdateStatus(enum.Enum):
    SUCCESS = "success"
    SERVER_REJECTED = "server_rejected"
    TRANSPORT_FAILURE = "transport_failure"
    PROTOCOL_FAILURE = "protocol_failure"


@dataclass(frozen=True)
class UpdateResult:
    """
    Interpreted outcome of one UPDATE round trip.

    Attributes:
      - status: UpdateStatus.
      - rcode: Server response code when a response was received.
      - cause: Diagnostic text for transport/protocol failures.
    """

    status: UpdateStatus
    rcode: Optional[dns.rcode.Rcode] = None
    cause: Optional[str] = None

    @classmethod
    def success(cls) -> "UpdateResult":
        return cls(UpdateStatus.SUCCESS, rcode=dns.rcode.NOERROR)

    @classmethod
    def rejected(cls, rcode: dns.rcode.Rcode) -> "UpdateResult":
        return cls(UpdateStatus.SERVER_REJECTED, rcode=rcode)

    @classmethod
    def transport_failure(cls, cause: str) -> "UpdateResult":
        return cls(UpdateStatus.TRANSPORT_FAILURE, cause=cause)

    @classmethod
    def protocol_failure(cls, cause: str) -> "UpdateResult":
        return cls(UpdateStatus.PROTOCOL_FAILURE, cause=cause)

    @property
    def ok(self) -> bool:
        return self.status is UpdateStatus.SUCCESS

    def raise_for_status(self) -> "UpdateResult":
        """Return self on success, else raise the matching UpdateError."""
        if self.status is UpdateStatus.SERVER_REJECTED:
            raise ServerRejected(self.rcode)
        if self.status is UpdateStatus.TRANSPORT_FAILURE:
            raise TransportFailure(self.cause)
        if self.status is UpdateStatus.PROTOCOL_FAILURE:
            raise ProtocolFailure(self.cause)
        return self


def interpret_response(wire: bytes, request: dns.message.Message) -> UpdateResult:
    """
    Brief: Map a raw response to an UpdateResult.

    Inputs:
      - wire: Response message wire.
      - request: The request it answers (for id/opcode checks).

    Outputs:
      - UpdateResult: SUCCESS on NOERROR, SERVER_REJECTED carrying any other
        rcode verbatim, PROTOCOL_FAILURE for unparsable or mismatched replies.
    """
    try:
        response = dns.message.from_wire(wire, ignore_trailing=True)
    except (dns.exception.DNSException, ValueError) as exc:
        return UpdateResult.protocol_failure(f"malformed response: {exc}")

    if not response.flags & dns.flags.QR:
        return UpdateResult.protocol_failure("reply is not a response (QR unset)")
    if response.id != request.id:
        return UpdateResult.protocol_failure(
            f"response id {response.id} does not match request id {request.id}"
        )
    if response.opcode() != request.opcode():
        return UpdateResult.protocol_failure(
            f"response opcode {dns.opcode.to_text(response.opcode())} "
            f"does not match {dns.opcode.to_text(request.opcode())}"
        )

    rcode = response.rcode()
    if rcode == dns.rcode.NOERROR:
        return UpdateResult.success()
    return UpdateResult.rejected(rcode)


def _recv_exact(sock: socket.socket, n: int) -> bytes:
    """
    Receive exactly n bytes from a blocking socket.

    Outputs:
      - bytes: Exactly n bytes unless EOF occurs first.
    """
    remaining = n
    chunks = []
    while remaining > 0:
        chunk = sock.recv(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _read_frame(sock: socket.socket) -> Optional[bytes]:
    """Read one length-prefixed frame; None on clean end of stream."""
    hdr = _recv_exact(sock, 2)
    if not hdr:
        return None
    if len(hdr) != 2:
        raise ProtocolFailure("short read on length header")
    ln = int.from_bytes(hdr, "big")
    body = _recv_exact(sock, ln)
    if len(body) != ln:
        raise ProtocolFailure(f"truncated response: expected {ln} bytes, got {len(body)}")
    return body


class UpdateTransport:
    """
    One TCP connection to an authoritative server.

    Inputs:
      - host, port: Server endpoint.
      - connect_timeout_ms: Bound on connection establishment.
      - read_timeout_ms: Bound on each socket read by the reader thread.
    Outputs:
      - send(message, signer) -> UpdateResult.

    Example:
      >>> with UpdateTransport("192.0.2.53", 53) as transport:
      ...     result = transport.send(message, signer.sign)
    """

    def __init__(
        self,
        host: str,
        port: int = 53,
        *,
        connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS,
        read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS,
    ):
        self._host = host
        self._port = int(port)
        self._connect_timeout_ms = int(connect_timeout_ms)
        self._read_timeout_ms = int(read_timeout_ms)
        if self._connect_timeout_ms <= 0 or self._read_timeout_ms <= 0:
            raise ValueError("timeouts must be positive milliseconds")
        self._sock = None  # type: socket.socket | None
        self._reader = None  # type: threading.Thread | None
        self._lock = threading.Lock()
        self._pending: Dict[int, Future] = {}
        # Set once the reader stops: None for end of stream, else the error.
        self._finished = False
        self._final_error: Optional[UpdateError] = None

    @property
    def endpoint(self) -> str:
        if ":" in self._host:
            return f"[{self._host}]:{self._port}"
        return f"{self._host}:{self._port}"

    def __enter__(self) -> "UpdateTransport":
        if self._sock is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def connect(self) -> None:
        """
        Open the connection and start the reader thread.

        Raises:
          - ConnectionFailed on refusal, unreachable host or timeout.
        """
        logger.debug("Connecting to DNS server %s via TCP", self.endpoint)
        try:
            sock = socket.create_connection(
                (self._host, self._port), timeout=self._connect_timeout_ms / 1000.0
            )
        except socket.timeout as exc:
            raise ConnectionFailed(
                f"connecting to {self.endpoint} timed out after "
                f"{self._connect_timeout_ms} ms"
            ) from exc
        except OSError as exc:
            raise ConnectionFailed(f"connecting to {self.endpoint}: {exc}") from exc
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(self._read_timeout_ms / 1000.0)
        self._sock = sock
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(sock,),
            name=f"whodis-tcp-{self.endpoint}",
            daemon=True,
        )
        self._reader.start()

    def _read_loop(self, sock: socket.socket) -> None:
        error: Optional[UpdateError] = None
        try:
            while True:
                frame = _read_frame(sock)
                if frame is None:
                    logger.debug("Server %s closed the connection", self.endpoint)
                    break
                if len(frame) < 2:
                    error = ProtocolFailure("response shorter than a message id")
                    break
                msg_id = int.from_bytes(frame[:2], "big")
                with self._lock:
                    fut = self._pending.pop(msg_id, None)
                if fut is None:
                    logger.debug("Dropping unsolicited response id=%d", msg_id)
                    continue
                fut.set_result(frame)
        except ProtocolFailure as exc:
            error = exc
        except socket.timeout:
            error = TransportFailure(
                f"no response from {self.endpoint} within {self._read_timeout_ms} ms"
            )
        except OSError as exc:
            if self._sock is None:
                # Closed locally; nothing is waiting.
                error = TransportFailure("connection closed")
            else:
                error = TransportFailure(f"reading from {self.endpoint}: {exc}")
        self._finish(error)

    def _finish(self, error: Optional[UpdateError]) -> None:
        with self._lock:
            self._finished = True
            self._final_error = error
            pending = list(self._pending.values())
            self._pending.clear()
        for fut in pending:
            if error is None:
                fut.set_result(None)
            else:
                fut.set_exception(error)

    def _register(self, msg_id: int) -> Future:
        fut: Future = Future()
        with self._lock:
            if self._finished:
                if self._final_error is None:
                    fut.set_result(None)
                else:
                    fut.set_exception(self._final_error)
                return fut
            if msg_id in self._pending:
                raise TransportFailure(f"request id {msg_id} already in flight")
            self._pending[msg_id] = fut
        return fut

    def send(
        self, message: dns.message.Message, signer: Optional[Signer] = None
    ) -> UpdateResult:
        """
        Brief: Send one message and wait for its single response.

        Inputs:
          - message: dns.message.Message (normally an UpdateMessage).
          - signer: Optional callable applied to the final wire just before
            writing (e.g. Sig0Signer.sign).

        Outputs:
          - UpdateResult. Transport problems and missing/malformed answers are
            reported as results, not raised.

        Raises:
          - TransportFailure if the connection was never opened.
          - SigningFailed propagated from ``signer``.
        """
        sock = self._sock
        if sock is None:
            raise TransportFailure("connection not established")

        wire = message.to_wire()
        if signer is not None:
            wire = signer(wire)
        if len(wire) > 0xFFFF:
            return UpdateResult.protocol_failure(
                f"message of {len(wire)} bytes exceeds TCP frame limit"
            )

        fut = self._register(message.id)
        try:
            sock.sendall(len(wire).to_bytes(2, "big") + wire)
        except OSError as exc:
            with self._lock:
                self._pending.pop(message.id, None)
            return UpdateResult.transport_failure(f"writing to {self.endpoint}: {exc}")
        logger.debug("Sent %d byte request id=%d to %s", len(wire), message.id, self.endpoint)

        try:
            frame = fut.result()
        except TransportFailure as exc:
            return UpdateResult.transport_failure(str(exc))
        except ProtocolFailure as exc:
            return UpdateResult.protocol_failure(str(exc))
        if frame is None:
            return UpdateResult.protocol_failure(NO_ANSWER)
        return interpret_response(frame, message)

    def close(self) -> None:
        sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()
        reader, self._reader = self._reader, None
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=1.0)
