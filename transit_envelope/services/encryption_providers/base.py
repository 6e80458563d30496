"""
Abstract base classes for materials providers.

Materials providers implement the DEK/KEK protocol of envelope encryption.
Collaborators ask for key material per data subject and never talk to the
key service directly.

The envelope encryption pattern:
1. Each encryption call gets a fresh DEK (Data Encryption Key)
2. The DEK encrypts the actual data
3. The subject's KEK (Key Encryption Key) wraps the DEK
4. Only the wrapped DEK and its context are stored alongside the data

Deleting a subject's KEK makes every DEK ever wrapped for that subject, and
so every record encrypted with one, permanently unrecoverable (GDPR erasure).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from transit_envelope.services.aead import AeadCipher


@dataclass(frozen=True)
class EncryptionMaterial:
    """
    Result of requesting encryption material for a subject.

    Attributes:
        cipher: AEAD cipher bound to the fresh DEK, ready to encrypt data
        encrypted_data_key: Wrapped DEK, store it with the ciphertext
        encryption_context: Context string, store it with the wrapped DEK
    """

    cipher: AeadCipher
    encrypted_data_key: bytes
    encryption_context: str

    def __repr__(self) -> str:
        return (
            f"<EncryptionMaterial encrypted_data_key={len(self.encrypted_data_key)} bytes "
            f"encryption_context={self.encryption_context!r}>"
        )


class _MaterialsProvider(ABC):
    """Lifecycle and erasure operations shared by both provider kinds."""

    @abstractmethod
    async def delete_subject_key(self, subject_id: str) -> None:
        """
        Erase a subject's KEK.

        Raises:
            KeyNotFoundError: If the subject has no key
        """
        pass

    @abstractmethod
    async def subject_key_exists(self, subject_id: str) -> bool:
        pass

    async def aclose(self) -> None:
        """Release resources. Idempotent."""
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class EncryptingMaterialsProvider(_MaterialsProvider):
    """
    Produces encryption material for a subject.

    Example:
        >>> material = await provider.material_for("user-42")
        >>> ciphertext = material.cipher.encrypt(b"hello world")
        >>> # Store ciphertext, material.encrypted_data_key, material.encryption_context
    """

    @abstractmethod
    async def material_for(self, subject_id: str) -> EncryptionMaterial:
        """
        Generate a fresh DEK for the subject and wrap it with the subject's KEK.

        Raises:
            ValidationError: If subject_id is blank
        """
        pass


class DecryptingMaterialsProvider(_MaterialsProvider):
    """
    Recovers the cipher for previously issued encryption material.

    Example:
        >>> cipher = await provider.material_for(
        ...     "user-42", encrypted_data_key, encryption_context
        ... )
        >>> cipher.decrypt(ciphertext)
        b'hello world'
    """

    @abstractmethod
    async def material_for(
        self, subject_id: str, encrypted_data_key: bytes, encryption_context: str
    ) -> AeadCipher:
        """
        Unwrap a DEK and return a cipher bound to it.

        Raises:
            ValidationError: If subject_id or encrypted_data_key is empty
            InvalidContextError: If encryption_context fails validation
            KeyNotFoundError: If the subject's KEK has been erased
        """
        pass
