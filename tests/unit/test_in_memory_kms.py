"""
Unit tests for InMemoryKms.

Tests cover:
- Encryption/decryption material round trips
- Per-subject KEK isolation
- Crypto shredding via delete_key_material / delete_subject_key
"""
import pytest

from transit_envelope.services.encryption_providers import (
    DecryptingMaterialsProvider,
    EncryptingMaterialsProvider,
    EncryptionMaterial,
    InMemoryKms,
)
from transit_envelope.services.errors import (
    CryptoError,
    InvalidContextError,
    KeyNotFoundError,
    ValidationError,
)


@pytest.fixture
def kms() -> InMemoryKms:
    return InMemoryKms()


class TestInMemoryKms:

    def test_implements_both_contracts(self, kms):
        assert isinstance(kms, EncryptingMaterialsProvider)
        assert isinstance(kms, DecryptingMaterialsProvider)

    @pytest.mark.asyncio
    async def test_roundtrip(self, kms):
        material = await kms.material_for("user-42")
        ciphertext = material.cipher.encrypt(b"hello world")

        cipher = await kms.material_for(
            "user-42", material.encrypted_data_key, material.encryption_context
        )

        assert isinstance(material, EncryptionMaterial)
        assert cipher.decrypt(ciphertext) == b"hello world"

    @pytest.mark.asyncio
    async def test_one_kek_per_subject(self, kms):
        await kms.material_for("user-1")
        await kms.material_for("user-1")
        await kms.material_for("user-2")

        assert kms.key_count == 2

    @pytest.mark.asyncio
    async def test_fresh_dek_per_call(self, kms):
        first = await kms.material_for("user-1")
        second = await kms.material_for("user-1")
        assert first.encrypted_data_key != second.encrypted_data_key

    @pytest.mark.asyncio
    async def test_wrapped_dek_bound_to_subject(self, kms):
        """A wrapped DEK cannot be unwrapped under another subject's context."""
        material = await kms.material_for("user-1")
        await kms.material_for("user-2")

        with pytest.raises(InvalidContextError):
            await kms.material_for("user-2", material.encrypted_data_key, material.encryption_context)

    @pytest.mark.asyncio
    async def test_context_tampering_detected(self, kms):
        material = await kms.material_for("user-1")
        tampered = material.encryption_context.replace("version=1.0", "version=2.0")

        with pytest.raises(CryptoError):
            await kms.material_for("user-1", material.encrypted_data_key, tampered)

    @pytest.mark.asyncio
    async def test_unknown_subject(self, kms):
        material = await kms.material_for("user-1")
        with pytest.raises(KeyNotFoundError):
            await kms.material_for(
                "user-9",
                material.encrypted_data_key,
                material.encryption_context.replace("user-1", "user-9"),
            )

    @pytest.mark.asyncio
    async def test_blank_subject(self, kms):
        with pytest.raises(ValidationError):
            await kms.material_for("  ")
        assert kms.key_count == 0

    @pytest.mark.asyncio
    async def test_empty_encrypted_key(self, kms):
        material = await kms.material_for("user-1")
        with pytest.raises(ValidationError):
            await kms.material_for("user-1", b"", material.encryption_context)

    @pytest.mark.asyncio
    async def test_context_only_is_decryption_request(self, kms):
        material = await kms.material_for("user-1")
        with pytest.raises(ValidationError):
            await kms.material_for("user-1", encryption_context=material.encryption_context)

    @pytest.mark.asyncio
    async def test_wrapped_key_without_context_rejected(self, kms):
        material = await kms.material_for("user-1")
        with pytest.raises(InvalidContextError):
            await kms.material_for("user-1", material.encrypted_data_key)


class TestInMemoryKmsErasure:

    @pytest.mark.asyncio
    async def test_delete_key_material(self, kms):
        material = await kms.material_for("user-1")

        assert kms.delete_key_material("user-1") is True
        assert kms.delete_key_material("user-1") is False

        with pytest.raises(KeyNotFoundError):
            await kms.material_for("user-1", material.encrypted_data_key, material.encryption_context)

    @pytest.mark.asyncio
    async def test_new_kek_after_erasure_cannot_unwrap_old_deks(self, kms):
        old = await kms.material_for("user-1")
        kms.delete_key_material("user-1")
        await kms.material_for("user-1")

        with pytest.raises(CryptoError):
            await kms.material_for("user-1", old.encrypted_data_key, old.encryption_context)

    @pytest.mark.asyncio
    async def test_delete_subject_key(self, kms):
        await kms.material_for("user-1")
        assert await kms.subject_key_exists("user-1") is True

        await kms.delete_subject_key("user-1")

        assert await kms.subject_key_exists("user-1") is False
        with pytest.raises(KeyNotFoundError):
            await kms.delete_subject_key("user-1")

    @pytest.mark.asyncio
    async def test_aclose_clears_keys(self, kms):
        async with kms:
            await kms.material_for("user-1")
        assert kms.key_count == 0
