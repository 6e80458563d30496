"""
Materials providers backed by the remote transit service.

Each subject gets its own transit key (the KEK), created lazily on the first
encryption. DEKs are generated locally, wrapped remotely, and bound to the
subject through the encryption context.

Usage:
    async with TransitEncryptingMaterialsProvider(config) as encrypting:
        material = await encrypting.material_for("user-42")
        ciphertext = material.cipher.encrypt(b"hello world")

    async with TransitDecryptingMaterialsProvider(config) as decrypting:
        cipher = await decrypting.material_for(
            "user-42", material.encrypted_data_key, material.encryption_context
        )
        cipher.decrypt(ciphertext)
"""

from typing import Optional, Union

from transit_envelope.config import TransitCryptoConfiguration
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
from transit_envelope.services.errors import CryptoError, ValidationError
from transit_envelope.services.transit_client import TransitKeyClient
from transit_envelope.utils.logger import get_logger

logger = get_logger("encryption.transit")


class _TransitProviderMixin:
    """
    Client ownership and erasure operations shared by both transit providers.

    A provider built from a configuration owns its client and closes it in
    aclose(). A provider handed an existing client shares it and leaves it open.
    """

    def __init__(self, source: Union[TransitCryptoConfiguration, TransitKeyClient]):
        if source is None:
            raise ValidationError("Configuration or client is required")

        ensure_crypto_initialized()

        if isinstance(source, TransitKeyClient):
            self._client = source
            self._owns_client = False
        else:
            self._client = TransitKeyClient(source)
            self._owns_client = True
        self._closed = False

        logger.info(
            f"{self.__class__.__name__} initialized",
            owns_client=self._owns_client,
        )

    @property
    def client(self) -> TransitKeyClient:
        return self._client

    async def delete_subject_key(self, subject_id: str) -> None:
        """Erase the subject's transit key. All of its wrapped DEKs become unrecoverable."""
        await self._client.delete_key(subject_id)

    async def subject_key_exists(self, subject_id: str) -> bool:
        return await self._client.key_exists(subject_id)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            await self._client.aclose()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} client={self._client!r} owns_client={self._owns_client}>"


def _require_subject(subject_id: Optional[str]) -> None:
    if subject_id is None or not subject_id.strip():
        raise ValidationError("Subject ID cannot be null or empty")


class TransitEncryptingMaterialsProvider(_TransitProviderMixin, EncryptingMaterialsProvider):
    """
    Issues a fresh DEK per call, wrapped with the subject's transit key.

    Stateless beyond the client. Client errors propagate unchanged.
    """

    async def material_for(self, subject_id: str) -> EncryptionMaterial:
        _require_subject(subject_id)

        dek = generate_dek()
        cipher = AeadCipher(dek)
        key_name = self._client.generate_key_name(subject_id)
        context = build_context(subject_id)

        logger.debug("Wrapping DEK", key_name=key_name)
        encrypted_data_key = await self._client.encrypt(key_name, dek, context)

        return EncryptionMaterial(
            cipher=cipher,
            encrypted_data_key=encrypted_data_key,
            encryption_context=context,
        )


class TransitDecryptingMaterialsProvider(_TransitProviderMixin, DecryptingMaterialsProvider):
    """
    Unwraps DEKs issued by TransitEncryptingMaterialsProvider.

    The encryption context is validated strictly before any RPC: it must parse,
    carry a numeric timestamp and a version, and name the requested subject.
    KeyNotFoundError after erasure propagates unchanged. Never retries on its
    own; retries belong to the client.
    """

    async def material_for(
        self, subject_id: str, encrypted_data_key: bytes, encryption_context: str
    ) -> AeadCipher:
        _require_subject(subject_id)
        if not encrypted_data_key:
            raise ValidationError("Encrypted data key cannot be empty")
        validate_context(encryption_context, subject_id)

        key_name = self._client.generate_key_name(subject_id)

        logger.debug("Unwrapping DEK", key_name=key_name)
        dek = await self._client.decrypt(key_name, encrypted_data_key, encryption_context)

        if len(dek) != DEK_LENGTH:
            raise CryptoError(
                f"Invalid DEK length: {len(dek)} bytes, expected {DEK_LENGTH}"
            )
        return AeadCipher(dek)
