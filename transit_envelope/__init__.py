"""
Subject-scoped envelope encryption backed by a remote transit key service.

Each data subject gets its own key-encryption key at the transit service.
Deleting that key (GDPR erasure) makes everything ever encrypted for the
subject permanently unrecoverable.
"""
from transit_envelope.config import TransitCryptoConfiguration
from transit_envelope.services.aead import AeadCipher
from transit_envelope.services.encryption_providers import (
    DecryptingMaterialsProvider,
    EncryptingMaterialsProvider,
    EncryptionMaterial,
    InMemoryKms,
    TransitDecryptingMaterialsProvider,
    TransitEncryptingMaterialsProvider,
)
from transit_envelope.services.errors import (
    AuthenticationError,
    ConnectivityError,
    CryptoError,
    InvalidContextError,
    KeyNotFoundError,
    TransitError,
    ValidationError,
)
from transit_envelope.services.transit_client import TransitKeyClient

__version__ = "0.1.0"

__all__ = [
    "AeadCipher",
    "AuthenticationError",
    "ConnectivityError",
    "CryptoError",
    "DecryptingMaterialsProvider",
    "EncryptingMaterialsProvider",
    "EncryptionMaterial",
    "InMemoryKms",
    "InvalidContextError",
    "KeyNotFoundError",
    "TransitCryptoConfiguration",
    "TransitDecryptingMaterialsProvider",
    "TransitEncryptingMaterialsProvider",
    "TransitError",
    "TransitKeyClient",
    "ValidationError",
]
