"""
Pytest configuration and fixtures for transit envelope encryption tests.

Transit RPCs are served by FakeTransitServer, an in-memory implementation of
the transit wire contract mounted through httpx.MockTransport. No network
access is needed.
"""
import base64
import json
import logging
import os
from datetime import timedelta
from typing import AsyncGenerator, Callable, Dict, List, Optional

import httpx
import pytest
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from httpx import ASGITransport, AsyncClient

# Keep the admin app from picking up a developer's transit settings
os.environ.pop("TRANSIT_ENDPOINT", None)
os.environ.pop("TRANSIT_TOKEN", None)

from transit_envelope.config import TransitCryptoConfiguration
from transit_envelope.services.transit_client import TransitKeyClient
from transit_envelope.utils.logger import ROOT_LOGGER_NAME


TEST_ENDPOINT = "http://transit.test:8200"
TEST_TOKEN = "hvs.test-root-token-do-not-log"
TEST_MOUNT = "transit"


class FakeTransitServer:
    """
    In-memory transit engine.

    Behaves like the real engine where the client depends on it:
    - 403 for a wrong token
    - GET keys/{name} is 404 for unknown keys
    - creating an existing key is rejected with 400
    - decrypt with an unknown key is 400 "encryption key not found"
    - DELETE requires deletion_allowed via keys/{name}/config
    - LIST keys is 404 when there are no keys

    Attributes:
        keys: key name -> {"key": bytes, "deletion_allowed": bool}
        requests: every request received, in order
        intercept: optional hook returning a response that replaces normal handling
    """

    def __init__(self, token: str = TEST_TOKEN, mount: str = TEST_MOUNT):
        self.token = token
        self.prefix = f"/v1/{mount}/"
        self.keys: Dict[str, dict] = {}
        self.requests: List[httpx.Request] = []
        self.intercept: Optional[Callable[[httpx.Request], Optional[httpx.Response]]] = None

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_to(self, fragment: str) -> List[httpx.Request]:
        return [r for r in self.requests if fragment in r.url.path]

    def add_key(self, name: str) -> None:
        self.keys[name] = {"key": AESGCM.generate_key(bit_length=256), "deletion_allowed": False}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.intercept is not None:
            response = self.intercept(request)
            if response is not None:
                return response

        if request.headers.get("X-Vault-Token") != self.token:
            return _errors(403, "permission denied")

        path = request.url.path
        if not path.startswith(self.prefix):
            return _errors(404, f"no handler for route {path}")
        parts = path[len(self.prefix):].split("/")
        body = json.loads(request.content) if request.content else {}

        if parts == ["keys"] and request.method == "LIST":
            return self._list_keys()
        if len(parts) == 2 and parts[0] == "keys":
            return self._key(request.method, parts[1], body)
        if len(parts) == 3 and parts[0] == "keys" and parts[2] == "config":
            return self._config(parts[1], body)
        if len(parts) == 2 and parts[0] == "encrypt" and request.method == "POST":
            return self._encrypt(parts[1], body)
        if len(parts) == 2 and parts[0] == "decrypt" and request.method == "POST":
            return self._decrypt(parts[1], body)
        return _errors(405, "unsupported operation")

    def _list_keys(self) -> httpx.Response:
        if not self.keys:
            return _errors(404)
        return httpx.Response(200, json={"data": {"keys": sorted(self.keys)}})

    def _key(self, method: str, name: str, body: dict) -> httpx.Response:
        if method == "GET":
            if name not in self.keys:
                return _errors(404)
            return httpx.Response(200, json={"data": {"name": name, "type": "aes256-gcm96"}})
        if method == "POST":
            if name in self.keys:
                return _errors(400, f"existing key named {name} already exists")
            if body.get("type") != "aes256-gcm96":
                return _errors(400, "unsupported key type")
            self.add_key(name)
            return httpx.Response(204)
        if method == "DELETE":
            if name not in self.keys:
                return httpx.Response(204)
            if not self.keys[name]["deletion_allowed"]:
                return _errors(400, "deletion is not allowed for this key")
            del self.keys[name]
            return httpx.Response(204)
        return _errors(405, "unsupported operation")

    def _config(self, name: str, body: dict) -> httpx.Response:
        if name not in self.keys:
            return _errors(400, f"no existing key named {name} could be found")
        self.keys[name]["deletion_allowed"] = bool(body.get("deletion_allowed"))
        return httpx.Response(204)

    def _encrypt(self, name: str, body: dict) -> httpx.Response:
        if name not in self.keys:
            return _errors(404)
        plaintext = base64.b64decode(body["plaintext"])
        nonce = os.urandom(12)
        sealed = AESGCM(self.keys[name]["key"]).encrypt(nonce, plaintext, None)
        ciphertext = "vault:v1:" + base64.b64encode(nonce + sealed).decode("ascii")
        return httpx.Response(200, json={"data": {"ciphertext": ciphertext, "key_version": 1}})

    def _decrypt(self, name: str, body: dict) -> httpx.Response:
        if name not in self.keys:
            return _errors(400, "encryption key not found")
        ciphertext = body.get("ciphertext", "")
        if not ciphertext.startswith("vault:v1:"):
            return _errors(400, "invalid ciphertext: no prefix")
        raw = base64.b64decode(ciphertext[len("vault:v1:"):])
        try:
            plaintext = AESGCM(self.keys[name]["key"]).decrypt(raw[:12], raw[12:], None)
        except InvalidTag:
            return _errors(400, "cipher: message authentication failed")
        return httpx.Response(200, json={"data": {"plaintext": base64.b64encode(plaintext).decode("ascii")}})


def _errors(status_code: int, *messages: str) -> httpx.Response:
    return httpx.Response(status_code, json={"errors": list(messages)})


@pytest.fixture
def transit_server() -> FakeTransitServer:
    """Fresh fake transit engine per test."""
    return FakeTransitServer()


@pytest.fixture
def transit_config() -> TransitCryptoConfiguration:
    """Configuration with zero backoff so retry tests run instantly."""
    return TransitCryptoConfiguration(
        endpoint=TEST_ENDPOINT,
        credential=TEST_TOKEN,
        mount_path=TEST_MOUNT,
        key_prefix="pii",
        max_retries=3,
        retry_base_backoff=timedelta(0),
    )


@pytest.fixture
async def transit_client(
    transit_config: TransitCryptoConfiguration, transit_server: FakeTransitServer
) -> AsyncGenerator[TransitKeyClient, None]:
    """TransitKeyClient wired to the fake transit engine."""
    client = TransitKeyClient(transit_config, transport=transit_server.transport())
    yield client
    await client.aclose()


@pytest.fixture
def transit_logs(caplog):
    """
    Capture package logs at DEBUG.

    The capture handler is attached to the package logger directly and
    propagation is switched off, so each record is captured once whether or
    not setup_logging() has run.
    """
    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    previous_level = package_logger.level
    previous_propagate = package_logger.propagate
    package_logger.propagate = False
    package_logger.addHandler(caplog.handler)
    package_logger.setLevel(logging.DEBUG)
    caplog.handler.setLevel(logging.DEBUG)

    yield caplog

    package_logger.removeHandler(caplog.handler)
    package_logger.setLevel(previous_level)
    package_logger.propagate = previous_propagate


@pytest.fixture
async def api_client(transit_client: TransitKeyClient) -> AsyncGenerator[AsyncClient, None]:
    """
    Async test client for the GDPR admin API.

    The lifespan does not run under ASGITransport, so the transit client is
    placed on app.state directly.
    """
    from transit_envelope.main import app

    app.state.transit_client = transit_client

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.state.transit_client = None
