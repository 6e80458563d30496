"""
AES-256-GCM cipher bound to a Data Encryption Key.

The cipher is what collaborators receive from the materials providers. It
never exposes the raw DEK.

Ciphertext format: nonce (12 bytes) || ciphertext || tag (16 bytes)
"""
import os
import threading
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from transit_envelope.services.errors import CryptoError, ValidationError
from transit_envelope.utils.logger import get_logger

logger = get_logger("crypto.aead")

# Constants
DEK_LENGTH = 32  # AES-256
NONCE_LENGTH = 12  # 96 bits for GCM
TAG_LENGTH = 16

_init_lock = threading.Lock()
_initialized = False

# AES-256-GCM known-answer vector (GCM reference test case 13: zero key, zero IV, empty plaintext)
_KAT_KEY = bytes(32)
_KAT_NONCE = bytes(12)
_KAT_TAG = bytes.fromhex("530f8afbc74536b9a963b4f1c4cb738b")


def ensure_crypto_initialized() -> None:
    """
    Run the once-per-process crypto backend check.

    Verifies that the installed cryptography backend provides AES-256-GCM
    with correct output. Repeated calls are no-ops.

    Raises:
        CryptoError: If the backend fails the known-answer test
    """
    global _initialized
    if _initialized:
        return

    with _init_lock:
        if _initialized:
            return
        try:
            output = AESGCM(_KAT_KEY).encrypt(_KAT_NONCE, b"", None)
        except Exception as e:
            raise CryptoError(f"AES-GCM backend unavailable: {e}") from e
        if output != _KAT_TAG:
            raise CryptoError("AES-GCM backend failed known-answer test")
        _initialized = True
        logger.debug("Crypto backend initialized", algorithm="AES-256-GCM")


def generate_dek() -> bytes:
    """Generate a fresh 256-bit DEK from the OS CSPRNG."""
    return os.urandom(DEK_LENGTH)


class AeadCipher:
    """
    AES-256-GCM authenticated cipher.

    Thread Safety:
        Stateless apart from the key; a fresh random nonce is drawn per call.

    Example:
        >>> cipher = AeadCipher(generate_dek())
        >>> ciphertext = cipher.encrypt(b"hello world", b"user-42")
        >>> cipher.decrypt(ciphertext, b"user-42")
        b'hello world'
    """

    def __init__(self, key: bytes):
        if len(key) != DEK_LENGTH:
            raise CryptoError(
                f"Invalid AES-256-GCM key length: {len(key)} bytes, expected {DEK_LENGTH}"
            )
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: bytes, associated_data: Optional[bytes] = None) -> bytes:
        """
        Encrypt and authenticate plaintext.

        Args:
            plaintext: Data to encrypt (may be empty)
            associated_data: Authenticated but unencrypted data, must match on decrypt

        Returns:
            nonce || ciphertext || tag
        """
        nonce = os.urandom(NONCE_LENGTH)
        return nonce + self._aesgcm.encrypt(nonce, plaintext, associated_data)

    def decrypt(self, ciphertext: bytes, associated_data: Optional[bytes] = None) -> bytes:
        """
        Verify and decrypt data produced by encrypt().

        Raises:
            ValidationError: If the input is shorter than nonce + tag
            CryptoError: If authentication fails (wrong key, wrong associated data, tampering)
        """
        min_length = NONCE_LENGTH + TAG_LENGTH
        if len(ciphertext) < min_length:
            raise ValidationError(
                f"Ciphertext too short: {len(ciphertext)} bytes, minimum {min_length}"
            )

        nonce = ciphertext[:NONCE_LENGTH]
        try:
            return self._aesgcm.decrypt(nonce, ciphertext[NONCE_LENGTH:], associated_data)
        except InvalidTag as e:
            raise CryptoError("Ciphertext authentication failed") from e

    def __repr__(self) -> str:
        return "<AeadCipher algorithm=AES-256-GCM>"
