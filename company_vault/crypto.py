"""
Vault Crypto Core: key derivation, envelope encryption/decryption and
payload serialization.

Scheme ``AES-GCM-256``:
- Key: PBKDF2-HMAC-SHA256(passphrase, salt, iterations) -> 32 bytes
- Cipher: AES-256-GCM, random 96-bit iv, no associated data
- Plaintext: canonical JSON (sorted keys, UTF-8) of a ``SecretPayload``

Every call to ``encrypt_payload`` draws a fresh salt and a fresh iv, so two
envelopes never share key material even for the same payload and passphrase.

Security Note:
    Never log passphrases, derived keys, plaintext or ciphertext values.
    Derived keys only live in the local scope of a single encrypt/decrypt
    call; Python bytes cannot be wiped, so dropping the reference is the
    best available effort.
"""
import os
from typing import Any, Mapping, Union

import orjson
from pydantic import ValidationError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import (
    DecryptionFailed,
    InvalidPayload,
    KeyDerivationError,
    MalformedPayload,
)
from .models import (
    ALGORITHM,
    ENVELOPE_VERSION,
    MAX_ITERATIONS,
    Envelope,
    SecretPayload,
)

KEY_LENGTH = 32  # AES-256
NONCE_SIZE = 12  # 96-bit GCM nonce
SALT_SIZE = 16
TAG_SIZE = 16
DEFAULT_ITERATIONS = 600_000  # OWASP 2023 guidance for PBKDF2-SHA256


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    passphrase: str,
    salt: bytes,
    iterations: int = DEFAULT_ITERATIONS,
) -> bytes:
    """Derive a 32-byte encryption key from a passphrase using PBKDF2-SHA256.

    Deterministic: the same (passphrase, salt, iterations) always yields the
    same key, which is what lets ``decrypt_envelope`` rebuild the key from
    the salt stored in the envelope.

    Args:
        passphrase: Shared company vault passphrase.
        salt: Random salt (stored in the envelope).
        iterations: PBKDF2 iteration count.

    Returns:
        32-byte derived key.

    Raises:
        KeyDerivationError: If the passphrase or salt is empty, or the
            iteration count is out of range. Raised before any derivation.
    """
    if not isinstance(passphrase, str) or not passphrase:
        raise KeyDerivationError("Passphrase cannot be empty")
    if not salt:
        raise KeyDerivationError("Salt cannot be empty")
    if not 1 <= iterations <= MAX_ITERATIONS:
        raise KeyDerivationError(
            f"Iteration count must be between 1 and {MAX_ITERATIONS}"
        )
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=bytes(salt),
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


# ---------------------------------------------------------------------------
# Payload serialization
# ---------------------------------------------------------------------------

def serialize_payload(payload: SecretPayload) -> bytes:
    """Serialize a payload to canonical JSON bytes (sorted keys, UTF-8)."""
    return orjson.dumps(
        payload.model_dump(mode="json"),
        option=orjson.OPT_SORT_KEYS,
    )


def deserialize_payload(data: bytes) -> SecretPayload:
    """Parse decrypted bytes back into a SecretPayload.

    Raises:
        MalformedPayload: If the bytes are not a JSON object matching the
            payload schema.
    """
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise MalformedPayload(f"Decrypted data is not valid JSON: {err}") from None
    if not isinstance(parsed, dict):
        raise MalformedPayload(
            f"Decrypted payload must be a JSON object, got {type(parsed).__name__}"
        )
    try:
        return SecretPayload.model_validate(parsed)
    except ValidationError as err:
        raise MalformedPayload(
            f"Decrypted payload does not match schema: {err.error_count()} error(s)"
        ) from None


# ---------------------------------------------------------------------------
# Envelope encryption
# ---------------------------------------------------------------------------

def encrypt_payload(
    payload: Union[SecretPayload, Mapping[str, Any]],
    passphrase: str,
    *,
    iterations: int = DEFAULT_ITERATIONS,
    salt_size: int = SALT_SIZE,
) -> Envelope:
    """Encrypt a secret payload into a new Envelope.

    Args:
        payload: SecretPayload or a mapping validated into one.
        passphrase: Shared company vault passphrase.
        iterations: PBKDF2 iteration count recorded in the envelope.
        salt_size: Number of random salt bytes.

    Returns:
        Envelope with fresh salt, fresh iv and ciphertext (tag appended).

    Raises:
        KeyDerivationError: If the passphrase is empty.
        InvalidPayload: If a mapping secret does not match the schema.
    """
    if not isinstance(payload, SecretPayload):
        try:
            payload = SecretPayload.model_validate(dict(payload))
        except ValidationError as err:
            raise InvalidPayload(
                f"Secret does not match the payload schema: {err.error_count()} error(s)"
            ) from None
    salt = os.urandom(salt_size)
    iv = os.urandom(NONCE_SIZE)
    key = derive_key(passphrase, salt, iterations)
    try:
        ciphertext = AESGCM(key).encrypt(iv, serialize_payload(payload), None)
    finally:
        del key
    return Envelope(
        algo=ALGORITHM,
        salt=salt,
        iv=iv,
        ciphertext=ciphertext,
        iterations=iterations,
        version=ENVELOPE_VERSION,
    )


def decrypt_envelope(envelope: Envelope, passphrase: str) -> SecretPayload:
    """Decrypt an Envelope back into its SecretPayload.

    The key is always derived before the ciphertext is inspected, so a
    truncated ciphertext costs the same as a tag mismatch.

    Args:
        envelope: Envelope produced by ``encrypt_payload``.
        passphrase: Shared company vault passphrase.

    Returns:
        The decrypted SecretPayload.

    Raises:
        KeyDerivationError: If the passphrase is empty.
        InvalidEnvelope: If the envelope uses an unknown algorithm/version
            or has an empty salt.
        DecryptionFailed: Wrong passphrase, or tampered/corrupted envelope.
        MalformedPayload: Authentication succeeded but the plaintext is
            not a valid payload.
    """
    envelope.check_supported()
    key = derive_key(passphrase, envelope.salt, envelope.iterations)
    try:
        if len(envelope.ciphertext) < TAG_SIZE:
            raise DecryptionFailed()
        try:
            plaintext = AESGCM(key).decrypt(envelope.iv, envelope.ciphertext, None)
        except (InvalidTag, ValueError):
            # ValueError: iv length rejected by the cipher.
            raise DecryptionFailed() from None
    finally:
        del key
    return deserialize_payload(plaintext)
