"""
Async client for a transit key-wrap service (HashiCorp Vault transit wire contract).

Wraps and unwraps Data Encryption Keys with per-subject Key Encryption Keys
that never leave the remote service. Handles:
- lazy, idempotent key provisioning
- retry with exponential backoff and jitter on connectivity failures
- error classification (see transit_envelope.services.errors)
- connection pooling via a shared httpx.AsyncClient
- request correlation ids and log redaction

Usage:
    async with TransitKeyClient(config) as client:
        key_name = client.generate_key_name("user-42")
        wrapped = await client.encrypt(key_name, dek, context)
        dek = await client.decrypt(key_name, wrapped, context)

        # GDPR erasure - every DEK ever wrapped for the subject becomes unrecoverable
        await client.delete_key("user-42")
"""
import asyncio
import base64
import binascii
import itertools
import re
import threading
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx

from transit_envelope.config import TransitCryptoConfiguration
from transit_envelope.services.errors import (
    AuthenticationError,
    ConnectivityError,
    CryptoError,
    KeyNotFoundError,
    TransitError,
    ValidationError,
)
from transit_envelope.services.retry import RetryPolicy, RetryScheduler, RetryState
from transit_envelope.utils.logger import get_logger
from transit_envelope.utils.redaction import Redactor

logger = get_logger("transit.client")

T = TypeVar("T")

VAULT_TOKEN_HEADER = "X-Vault-Token"
KEY_TYPE = "aes256-gcm96"
KEY_NAME_SEPARATOR = "_subject_"

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_KEY_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class TransitKeyClient:
    """
    Reliable RPC facade over the transit engine.

    Every public operation is a coroutine; nothing blocks a thread on network
    I/O. Retries wait on event-loop timers owned by the client and are
    cancelled by aclose().

    Thread Safety:
        Safe for concurrent use from one event loop. The configuration is
        immutable; the only mutable shared state is the request counter.

    Example:
        >>> client = TransitKeyClient(config)
        >>> await client.ensure_key_exists(client.generate_key_name("user-42"))
        >>> await client.aclose()
    """

    def __init__(
        self,
        config: TransitCryptoConfiguration,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_connections: int = 20,
        max_keepalive_connections: int = 10,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize the client.

        Args:
            config: Validated transit configuration
            transport: Optional httpx transport (tests mount a fake transit server here)
            max_connections: Connection pool size
            max_keepalive_connections: Idle connections kept alive in the pool
            retry_policy: Override of the backoff policy derived from config
        """
        if config is None:
            raise ValidationError("Configuration cannot be None")

        self.config = config
        self._base_url = config.base_url
        self._request_timeout = config.request_timeout.total_seconds()
        self._redactor = Redactor([config.credential.get_secret_value()])
        self._retry_policy = retry_policy or RetryPolicy(
            max_retries=config.max_retries,
            base_backoff_seconds=config.retry_base_backoff.total_seconds(),
        )
        self._scheduler = RetryScheduler()

        self._request_ids = itertools.count(1)
        self._request_id_lock = threading.Lock()
        self._closed = False

        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(
                self._request_timeout,
                connect=config.connection_timeout.total_seconds(),
            ),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
            headers={VAULT_TOKEN_HEADER: config.credential.get_secret_value()},
            transport=transport,
        )

        logger.info(
            "TransitKeyClient initialized",
            base_url=self._base_url,
            key_prefix=config.key_prefix,
            max_retries=config.max_retries,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    # =========================================================================
    # Key naming
    # =========================================================================

    def generate_key_name(self, subject_id: str) -> str:
        """
        Derive the remote key name for a subject.

        Characters outside [A-Za-z0-9_-] are replaced with '_', so the name is
        safe to embed in a URL path.

        Raises:
            ValidationError: If subject_id is None or blank
        """
        if subject_id is None or not subject_id.strip():
            raise ValidationError("Subject ID cannot be null or empty")

        sanitized = _UNSAFE_KEY_CHARS.sub("_", subject_id)
        return f"{self.config.key_prefix}{KEY_NAME_SEPARATOR}{sanitized}"

    @property
    def managed_key_prefix(self) -> str:
        """Prefix shared by every key name this client generates."""
        return f"{self.config.key_prefix}{KEY_NAME_SEPARATOR}"

    # =========================================================================
    # Wrap / unwrap
    # =========================================================================

    async def encrypt(
        self, key_name: str, plaintext: bytes, context: Optional[str] = None
    ) -> bytes:
        """
        Wrap plaintext with the named key, creating the key on first use.

        Args:
            key_name: Remote key name (see generate_key_name)
            plaintext: Bytes to wrap, typically a DEK
            context: Optional context string sent alongside the request

        Returns:
            Transit ciphertext (e.g. b"vault:v1:...")

        Raises:
            AuthenticationError, ConnectivityError, CryptoError, KeyNotFoundError
        """
        _validate_key_name(key_name)
        logger.debug(
            "Encrypting data",
            key_name=key_name,
            context_length=len(context) if context else 0,
        )

        body: Dict[str, Any] = {"plaintext": _b64encode(plaintext)}
        if context:
            body["context"] = _b64encode(context.encode("utf-8"))

        try:
            await self.ensure_key_exists(key_name)
            ciphertext = await self._execute(
                "encrypt",
                "POST",
                f"encrypt/{key_name}",
                json=body,
                handler=lambda response: self._parse_ciphertext(response, key_name),
            )
        except TransitError as e:
            self._log_failure("Encryption failed", e)
            raise

        logger.debug("Encryption successful", key_name=key_name)
        return ciphertext

    async def decrypt(
        self, key_name: str, ciphertext: bytes, context: Optional[str] = None
    ) -> bytes:
        """
        Unwrap ciphertext previously returned by encrypt().

        Raises:
            KeyNotFoundError: If the key is gone (expected after GDPR erasure)
            ValidationError: If ciphertext is empty or not UTF-8
            AuthenticationError, ConnectivityError, CryptoError
        """
        _validate_key_name(key_name)
        if not ciphertext:
            raise ValidationError("Ciphertext cannot be empty")
        try:
            ciphertext_text = ciphertext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError("Ciphertext is not a transit ciphertext string") from e

        logger.debug(
            "Decrypting data",
            key_name=key_name,
            context_length=len(context) if context else 0,
        )

        body: Dict[str, Any] = {"ciphertext": ciphertext_text}
        if context:
            body["context"] = _b64encode(context.encode("utf-8"))

        try:
            plaintext = await self._execute(
                "decrypt",
                "POST",
                f"decrypt/{key_name}",
                json=body,
                handler=lambda response: self._parse_plaintext(response, key_name),
            )
        except TransitError as e:
            self._log_failure("Decryption failed", e)
            raise

        logger.debug("Decryption successful", key_name=key_name)
        return plaintext

    # =========================================================================
    # Key management
    # =========================================================================

    async def ensure_key_exists(self, key_name: str) -> None:
        """
        Create the named key if it is absent.

        Race-tolerant: when a concurrent caller creates the key first and our
        create is rejected, a re-check that finds the key counts as success.
        """
        _validate_key_name(key_name)

        if await self._check_key_exists(key_name):
            logger.debug("Key already exists", key_name=key_name)
            return

        logger.debug("Creating new key", key_name=key_name)
        try:
            await self._execute(
                "create key",
                "POST",
                f"keys/{key_name}",
                json={"type": KEY_TYPE},
                handler=lambda response: self._raise_for_status(response, "create key", key_name),
            )
        except CryptoError:
            if await self._check_key_exists(key_name):
                logger.debug("Key created concurrently", key_name=key_name)
                return
            raise

        logger.info("Created subject key")

    async def key_exists(self, subject_id: str) -> bool:
        """Whether the subject currently has a key at the transit service."""
        return await self._check_key_exists(self.generate_key_name(subject_id))

    async def delete_key(self, subject_id: str) -> None:
        """
        Delete a subject's key (GDPR erasure).

        Irreversible: every DEK ever wrapped for the subject becomes
        permanently unwrappable.

        Raises:
            ValidationError: If subject_id is blank
            KeyNotFoundError: If the subject has no key
            AuthenticationError, ConnectivityError, CryptoError
        """
        key_name = self.generate_key_name(subject_id)

        try:
            if not await self._check_key_exists(key_name):
                raise KeyNotFoundError(
                    f"No key found for subject [key_name={key_name}]",
                    subject_id=subject_id,
                    key_name=key_name,
                )

            await self._execute(
                "configure key",
                "POST",
                f"keys/{key_name}/config",
                json={"deletion_allowed": True},
                handler=lambda response: self._raise_for_status(response, "configure key", key_name),
            )
            await self._execute(
                "delete key",
                "DELETE",
                f"keys/{key_name}",
                handler=lambda response: self._raise_for_status(response, "delete key", key_name),
            )
        except TransitError as e:
            if isinstance(e, KeyNotFoundError):
                e.subject_id = subject_id
            self._log_failure("Key deletion failed", e)
            raise

        logger.info("Deleted subject key (GDPR erasure)")

    async def list_managed_subject_keys(self) -> List[str]:
        """
        List the key names this client manages (those carrying its prefix).

        Returns:
            Sorted key names; empty when the service holds no keys
        """
        keys = await self._execute(
            "list keys",
            "LIST",
            "keys",
            handler=self._parse_key_list,
        )
        prefix = self.managed_key_prefix
        return sorted(k for k in keys if k.startswith(prefix))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def aclose(self) -> None:
        """
        Release pooled connections and cancel pending retry timers.

        Idempotent and never raises.
        """
        if self._closed:
            return
        self._closed = True

        logger.info("Closing TransitKeyClient")
        self._scheduler.cancel_all()
        try:
            await self._http.aclose()
            logger.debug("TransitKeyClient closed successfully")
        except Exception as e:
            logger.warning(
                "Error during TransitKeyClient cleanup",
                error=self._redactor.redact(e),
            )

    async def __aenter__(self) -> "TransitKeyClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # =========================================================================
    # Request execution
    # =========================================================================

    def _next_request_id(self) -> int:
        with self._request_id_lock:
            return next(self._request_ids)

    async def _check_key_exists(self, key_name: str) -> bool:
        def handle(response: httpx.Response) -> bool:
            if response.status_code == 200:
                return True
            if response.status_code == 404:
                return False
            self._raise_for_status(response, "check key existence", key_name)
            raise CryptoError(
                f"Unexpected status {response.status_code} checking key existence",
                status_code=response.status_code,
            )

        return await self._execute("check key existence", "GET", f"keys/{key_name}", handler=handle)

    async def _execute(
        self,
        operation: str,
        method: str,
        path: str,
        handler: Callable[[httpx.Response], T],
        json: Optional[Dict[str, Any]] = None,
    ) -> T:
        """
        Run one logical RPC, retrying connectivity failures.

        Drives RetryState explicitly: each failed attempt either terminates the
        operation or advances the state and waits on a scheduler timer.
        """
        if self._closed:
            raise ConnectivityError("TransitKeyClient is closed")

        request_id = self._next_request_id()
        url = f"{self._base_url}/{path}"
        state = RetryState()

        while True:
            try:
                response = await self._send(request_id, state.attempt, operation, method, url, json)
                return handler(response)
            except TransitError as e:
                if not self._retry_policy.should_retry(state, e):
                    if state.attempt > 0 and isinstance(e, ConnectivityError):
                        logger.error(
                            "Max retries exceeded, failing operation",
                            request_id=request_id,
                            operation=operation,
                            attempts=state.attempt + 1,
                        )
                    raise

                delay = self._retry_policy.delay_for(state.attempt)
                logger.warning(
                    "Operation failed, retrying",
                    request_id=request_id,
                    operation=operation,
                    attempt=state.attempt + 1,
                    max_attempts=self._retry_policy.max_retries + 1,
                    delay_ms=round(delay * 1000),
                    error=self._redactor.redact(e),
                )
                state = state.advance(e)
                await self._scheduler.sleep(delay)

    async def _send(
        self,
        request_id: int,
        attempt: int,
        operation: str,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]],
    ) -> httpx.Response:
        """
        Single attempt, bounded as a whole by the request timeout (httpx
        timeouts apply per phase only). Timeouts and transport failures
        become ConnectivityError.
        """
        logger.debug(
            "Transit request",
            request_id=request_id,
            attempt=attempt + 1,
            operation=operation,
            method=method,
            url=url,
        )
        try:
            response = await asyncio.wait_for(
                self._http.request(method, url, json=json),
                timeout=self._request_timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise ConnectivityError(f"Transit {operation} request timed out") from e
        except httpx.TransportError as e:
            raise ConnectivityError(
                f"Transit {operation} transport failure: {self._redactor.redact(e)}"
            ) from e

        logger.debug(
            "Transit response",
            request_id=request_id,
            attempt=attempt + 1,
            operation=operation,
            status_code=response.status_code,
        )
        return response

    # =========================================================================
    # Response handling
    # =========================================================================

    def _raise_for_status(
        self, response: httpx.Response, operation: str, key_name: Optional[str] = None
    ) -> None:
        """
        Map a non-2xx response to the error taxonomy.

        401/403 -> AuthenticationError, 404 -> KeyNotFoundError,
        5xx -> ConnectivityError, other 4xx -> CryptoError. A 400 whose error
        list reports a missing key is also KeyNotFoundError; the transit
        engine answers decrypt with an unknown key that way.
        """
        status_code = response.status_code
        if 200 <= status_code < 300:
            return

        errors = _error_messages(response)
        message = f"Transit {operation} operation failed with status {status_code}"
        if errors:
            message += f": {errors}"
        message = self._redactor.redact(message)

        if status_code in (401, 403):
            raise AuthenticationError(message, status_code=status_code)
        if status_code == 404 or (status_code == 400 and _reports_missing_key(errors)):
            raise KeyNotFoundError(message, key_name=key_name, status_code=status_code)
        if status_code >= 500:
            raise ConnectivityError(message, status_code=status_code)
        raise CryptoError(message, status_code=status_code)

    def _parse_ciphertext(self, response: httpx.Response, key_name: str) -> bytes:
        self._raise_for_status(response, "encrypt", key_name)
        data = _response_data(response, "encryption")
        ciphertext = data.get("ciphertext")
        if not isinstance(ciphertext, str) or not ciphertext:
            raise CryptoError("Invalid response format: missing ciphertext")
        return ciphertext.encode("utf-8")

    def _parse_plaintext(self, response: httpx.Response, key_name: str) -> bytes:
        self._raise_for_status(response, "decrypt", key_name)
        data = _response_data(response, "decryption")
        plaintext = data.get("plaintext")
        if not isinstance(plaintext, str):
            raise CryptoError("Invalid response format: missing plaintext")
        try:
            return base64.b64decode(plaintext, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CryptoError("Failed to decode base64 plaintext") from e

    def _parse_key_list(self, response: httpx.Response) -> List[str]:
        if response.status_code == 404:
            return []
        self._raise_for_status(response, "list keys")
        data = _response_data(response, "list keys")
        keys = data.get("keys") or []
        if not isinstance(keys, list):
            raise CryptoError("Invalid response format: keys is not a list")
        return [str(k) for k in keys]

    def _log_failure(self, message: str, error: TransitError) -> None:
        """
        KeyNotFoundError is an expected state after erasure, not an operational error.

        Key names embed subject ids, so they are only ever logged at DEBUG.
        """
        if isinstance(error, KeyNotFoundError):
            logger.info(message, error_type=type(error).__name__)
        else:
            logger.error(
                message,
                error_type=type(error).__name__,
                error=self._redactor.redact(error),
            )

    def __repr__(self) -> str:
        return f"<TransitKeyClient base_url={self._base_url} closed={self._closed}>"


def _validate_key_name(key_name: str) -> None:
    if not key_name or not _KEY_NAME_PATTERN.match(key_name):
        raise ValidationError(
            "Key name must be non-empty and contain only [A-Za-z0-9_-]"
        )


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _response_data(response: httpx.Response, operation: str) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError as e:
        raise CryptoError(f"Failed to parse {operation} response") from e
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict):
        raise CryptoError(f"Invalid {operation} response format: missing data")
    return data


def _error_messages(response: httpx.Response) -> List[str]:
    try:
        body = response.json()
    except ValueError:
        return []
    if isinstance(body, dict) and isinstance(body.get("errors"), list):
        return [str(e) for e in body["errors"]]
    return []


def _reports_missing_key(errors: List[str]) -> bool:
    return any("not found" in e.lower() or "could not be found" in e.lower() for e in errors)
