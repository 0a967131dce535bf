"""
Brief: Global pytest configuration: src/ on sys.path, per-test timeout and
shared SIG(0) key and fake update server fixtures.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'whodis' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
if TESTS_DIR not in sys.path:
    sys.path.insert(0, TESTS_DIR)

from whodis.sig0 import SigningIdentity, generate_private_key, private_key_pem  # noqa: E402
from fake_update_server import FakeUpdateServer  # noqa: E402

ZONE = "example.com."
HOST = "host.example.com."


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield


@pytest.fixture(scope="session")
def rsa_key():
    """Brief: One 2048-bit RSA key shared by the whole session."""
    return generate_private_key(2048)


@pytest.fixture(scope="session")
def key_pem(rsa_key) -> bytes:
    return private_key_pem(rsa_key)


@pytest.fixture(scope="session")
def identity(key_pem) -> SigningIdentity:
    return SigningIdentity.from_pem(key_pem, ZONE)


@pytest.fixture
def key_file(tmp_path, key_pem):
    """Brief: PEM key written to a temporary file; returns its path."""
    path = tmp_path / "dns_update.key"
    path.write_bytes(key_pem)
    return path


@pytest.fixture
def server(identity):
    """
    Brief: Factory for FakeUpdateServer instances trusting ``identity``.

    Inputs:
      - identity: session SigningIdentity fixture

    Outputs:
      - callable(**kwargs) -> started FakeUpdateServer; all are closed on teardown
    """
    servers = []

    def _make(**kwargs):
        s = FakeUpdateServer(identity.public_key, ZONE, **kwargs).start()
        servers.append(s)
        return s

    yield _make
    for s in servers:
        s.close()
