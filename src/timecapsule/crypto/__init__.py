"""
Cryptographic envelope for TimeCapsule.

Capsule payloads marked as encrypted are sealed with AES-256-GCM before they
reach the store. The envelope is stateless: it consumes a key handle from a
key provider and returns ciphertext plus the metadata needed to open it.

Ciphertext and metadata always travel and persist together.
"""

from timecapsule.crypto.envelope import (
    ALGORITHM,
    KeyHandle,
    KeyProvider,
    StaticKeyProvider,
    decode_key,
    generate_key,
    open_sealed,
    seal,
)

__all__ = [
    "ALGORITHM",
    "KeyHandle",
    "KeyProvider",
    "StaticKeyProvider",
    "decode_key",
    "generate_key",
    "open_sealed",
    "seal",
]
