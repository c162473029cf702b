"""
Cryptographic envelope for capsule payloads.

Payloads are sealed with AES-256-GCM. Each seal draws a fresh random 96-bit
nonce, and the 16-byte GCM tag is split off the ciphertext into the envelope
metadata so the metadata fully describes how to open the blob.

Security Note:
    open_sealed() fails closed. Any authentication failure, malformed
    metadata or unknown algorithm raises DecryptionError; partial plaintext
    is never returned. Key material never appears in errors.
"""

import base64
import binascii
import os
from dataclasses import dataclass, field
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from timecapsule.errors import DecryptionError
from timecapsule.schema import EnvelopeMetadata

ALGORITHM = "AES-256-GCM"
KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16


@dataclass(frozen=True)
class KeyHandle:
    """
    An opaque key reference handed out by a key provider.

    Attributes:
        key_id: Identifier recorded in every envelope sealed with this key
        material: 32 bytes of key material (excluded from repr)
    """

    key_id: str
    material: bytes = field(repr=False)

    def __post_init__(self) -> None:
        """Reject keys of the wrong size up front."""
        if len(self.material) != KEY_BYTES:
            msg = f"AES-256 keys must be {KEY_BYTES} bytes, got {len(self.material)}"
            raise ValueError(msg)


class KeyProvider(Protocol):
    """Source of key handles (a secret manager in production)."""

    def current_key(self) -> KeyHandle:
        """Key used for new seals."""
        ...

    def key_for(self, key_id: str | None) -> KeyHandle:
        """Key used to open an envelope that names key_id."""
        ...


class StaticKeyProvider:
    """Key provider backed by a single key, usually read from the environment."""

    def __init__(self, key: KeyHandle) -> None:
        self._key = key

    @classmethod
    def from_env(cls, env_var: str, key_id: str = "default") -> "StaticKeyProvider":
        """
        Build a provider from a base64 key stored in an environment variable.

        Raises:
            KeyError: If the variable is not set
            ValueError: If the value is not a base64 encoded 32-byte key
        """
        return cls(KeyHandle(key_id=key_id, material=decode_key(os.environ[env_var])))

    def current_key(self) -> KeyHandle:
        return self._key

    def key_for(self, key_id: str | None) -> KeyHandle:
        # Envelopes that name another key are unopenable here.
        if key_id is not None and key_id != self._key.key_id:
            raise DecryptionError(message=f"Unknown key id: {key_id}")
        return self._key


def generate_key() -> str:
    """Generate a fresh base64 encoded AES-256 key."""
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


def decode_key(encoded: str) -> bytes:
    """Decode a base64 key and check its size."""
    try:
        material = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        msg = "key is not valid base64"
        raise ValueError(msg) from e
    if len(material) != KEY_BYTES:
        msg = f"key must decode to {KEY_BYTES} bytes"
        raise ValueError(msg)
    return material


def seal(
    plaintext: bytes,
    key: KeyHandle,
    associated_data: bytes | None = None,
) -> tuple[bytes, EnvelopeMetadata]:
    """
    Encrypt plaintext under key.

    Args:
        plaintext: Bytes to protect
        key: Key handle to seal with
        associated_data: Authenticated but unencrypted context (e.g. capsule id)

    Returns:
        Tuple of (ciphertext without tag, metadata carrying nonce and tag)
    """
    nonce = os.urandom(NONCE_BYTES)
    sealed = AESGCM(key.material).encrypt(nonce, plaintext, associated_data)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    metadata = EnvelopeMetadata(
        algorithm=ALGORITHM,
        nonce=base64.b64encode(nonce).decode("ascii"),
        tag=base64.b64encode(tag).decode("ascii"),
        key_id=key.key_id,
    )
    return ciphertext, metadata


def open_sealed(
    ciphertext: bytes,
    metadata: EnvelopeMetadata,
    key: KeyHandle,
    associated_data: bytes | None = None,
) -> bytes:
    """
    Decrypt and authenticate a sealed payload.

    Raises:
        DecryptionError: On any verification or format failure
    """
    if metadata.algorithm != ALGORITHM:
        raise DecryptionError(message=f"Unsupported envelope algorithm: {metadata.algorithm}")

    try:
        nonce = base64.b64decode(metadata.nonce, validate=True)
        tag = base64.b64decode(metadata.tag, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError(message="Malformed envelope metadata") from e

    if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
        raise DecryptionError(message="Malformed envelope metadata")

    try:
        return AESGCM(key.material).decrypt(nonce, ciphertext + tag, associated_data)
    except InvalidTag as e:
        raise DecryptionError() from e
