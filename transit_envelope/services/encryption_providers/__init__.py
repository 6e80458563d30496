"""
Encryption providers package.

Provides materials providers for subject-scoped envelope encryption.
Each provider implements EncryptingMaterialsProvider and/or
DecryptingMaterialsProvider.

Available providers:
- TransitEncryptingMaterialsProvider / TransitDecryptingMaterialsProvider:
  per-subject KEKs held by the remote transit service
- InMemoryKms: per-subject KEKs held in process memory
"""

from transit_envelope.services.encryption_providers.base import (
    DecryptingMaterialsProvider,
    EncryptingMaterialsProvider,
    EncryptionMaterial,
)
from transit_envelope.services.encryption_providers.in_memory import InMemoryKms
from transit_envelope.services.encryption_providers.transit import (
    TransitDecryptingMaterialsProvider,
    TransitEncryptingMaterialsProvider,
)

__all__ = [
    "DecryptingMaterialsProvider",
    "EncryptingMaterialsProvider",
    "EncryptionMaterial",
    "InMemoryKms",
    "TransitDecryptingMaterialsProvider",
    "TransitEncryptingMaterialsProvider",
]
