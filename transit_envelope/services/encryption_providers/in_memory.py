"""
In-memory KMS implementing both materials provider contracts.

Each subject gets a random 256-bit KEK held in process memory. DEKs are
wrapped with AES-256-GCM under the subject's KEK, with the encryption context
as associated data. Suitable for local development and for testing
collaborators; key material does not survive the process.

Security properties:
- Per-subject key isolation (independent random KEKs)
- KEKs never leave this provider
- delete_key_material() gives the same crypto-shredding guarantee as the
  transit provider's erasure
"""

import threading
from typing import Dict, Optional, Union

from transit_envelope.services.aead import (
    DEK_LENGTH,
    AeadCipher,
    ensure_crypto_initialized,
    generate_dek,
)
from transit_envelope.services.encryption_context import build_context, validate_context
from transit_envelope.services.encryption_providers.base import (
    DecryptingMaterialsProvider,
    EncryptingMaterialsProvider,
    EncryptionMaterial,
)
from transit_envelope.services.errors import CryptoError, KeyNotFoundError, ValidationError
from transit_envelope.utils.logger import get_logger

logger = get_logger("encryption.in_memory")


class InMemoryKms(EncryptingMaterialsProvider, DecryptingMaterialsProvider):
    """
    In-process KMS with per-subject KEKs.

    Both material_for signatures are served by one method: called with only a
    subject it issues encryption material, called with a wrapped DEK and
    context it returns the decrypting cipher.

    Thread Safety:
        The KEK store is guarded by a lock.

    Example:
        >>> kms = InMemoryKms()
        >>> material = await kms.material_for("user-42")
        >>> cipher = await kms.material_for(
        ...     "user-42", material.encrypted_data_key, material.encryption_context
        ... )
        >>> kms.delete_key_material("user-42")
        True
    """

    def __init__(self):
        ensure_crypto_initialized()
        self._keks: Dict[str, AeadCipher] = {}
        self._lock = threading.Lock()
        logger.info("InMemoryKms initialized")

    async def material_for(
        self,
        subject_id: str,
        encrypted_data_key: Optional[bytes] = None,
        encryption_context: Optional[str] = None,
    ) -> Union[EncryptionMaterial, AeadCipher]:
        """
        Issue encryption material or recover a decrypting cipher.

        With neither encrypted_data_key nor encryption_context given, a fresh
        DEK is wrapped under the subject's KEK and EncryptionMaterial is
        returned. Otherwise both are required and the unwrapped DEK's cipher
        is returned.

        Raises:
            ValidationError: If subject_id is blank or encrypted_data_key is empty
            InvalidContextError: If the context is missing or malformed or
                names another subject
            KeyNotFoundError: If the subject's KEK was deleted
            CryptoError: If the wrapped DEK fails authentication
        """
        if encrypted_data_key is None and encryption_context is None:
            return self._encryption_material(subject_id)
        return self._decryption_cipher(subject_id, encrypted_data_key, encryption_context)

    def _encryption_material(self, subject_id: str) -> EncryptionMaterial:
        _require_subject(subject_id)
        kek = self._get_or_create_kek(subject_id)

        dek = generate_dek()
        context = build_context(subject_id)
        encrypted_data_key = kek.encrypt(dek, context.encode("utf-8"))

        return EncryptionMaterial(
            cipher=AeadCipher(dek),
            encrypted_data_key=encrypted_data_key,
            encryption_context=context,
        )

    def _decryption_cipher(
        self, subject_id: str, encrypted_data_key: bytes, encryption_context: str
    ) -> AeadCipher:
        _require_subject(subject_id)
        if not encrypted_data_key:
            raise ValidationError("Encrypted data key cannot be empty")
        validate_context(encryption_context, subject_id)

        with self._lock:
            kek = self._keks.get(subject_id)
        if kek is None:
            raise KeyNotFoundError(
                "No KEK found for subject", subject_id=subject_id
            )

        dek = kek.decrypt(encrypted_data_key, encryption_context.encode("utf-8"))
        if len(dek) != DEK_LENGTH:
            raise CryptoError(
                f"Invalid DEK length: {len(dek)} bytes, expected {DEK_LENGTH}"
            )
        return AeadCipher(dek)

    def _get_or_create_kek(self, subject_id: str) -> AeadCipher:
        with self._lock:
            kek = self._keks.get(subject_id)
            if kek is None:
                kek = AeadCipher(generate_dek())
                self._keks[subject_id] = kek
                logger.debug("Created KEK for subject")
            return kek

    def delete_key_material(self, subject_id: str) -> bool:
        """
        Remove a subject's KEK (crypto shredding).

        Returns:
            True if a KEK was removed, False if the subject had none
        """
        with self._lock:
            return self._keks.pop(subject_id, None) is not None

    @property
    def key_count(self) -> int:
        """Number of subject KEKs currently held."""
        with self._lock:
            return len(self._keks)

    async def delete_subject_key(self, subject_id: str) -> None:
        _require_subject(subject_id)
        if not self.delete_key_material(subject_id):
            raise KeyNotFoundError("No KEK found for subject", subject_id=subject_id)
        logger.info("Deleted subject KEK (GDPR erasure)")

    async def subject_key_exists(self, subject_id: str) -> bool:
        _require_subject(subject_id)
        with self._lock:
            return subject_id in self._keks

    async def aclose(self) -> None:
        with self._lock:
            self._keks.clear()

    def __repr__(self) -> str:
        return f"<InMemoryKms key_count={self.key_count}>"


def _require_subject(subject_id) -> None:
    if subject_id is None or not subject_id.strip():
        raise ValidationError("Subject ID cannot be null or empty")
