"""
Vault Exceptions.

Every error raised by the vault derives from ``VaultError`` so callers can
catch the whole family at the UI boundary.

Security Note:
    ``DecryptionFailed`` always carries the same message. Do not attach the
    underlying cipher error to it: a wrong passphrase and a tampered
    envelope must look identical to the caller.
"""


class VaultError(Exception):
    """Base class for vault errors."""


class KeyDerivationError(VaultError, ValueError):
    """Invalid key derivation input (empty passphrase, empty salt, ...)."""


class DecryptionFailed(VaultError):
    """Authentication failed while decrypting an envelope.

    Covers both a wrong passphrase and tampered or corrupted data.
    """

    message = "Invalid passphrase or corrupted data"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)


class MalformedPayload(VaultError):
    """Decrypted bytes are not a valid secret payload."""


class InvalidEnvelope(VaultError, ValueError):
    """Envelope structure is unusable (unknown algorithm, bad encoding)."""


class VaultLocked(VaultError):
    """The vault session was locked or has expired."""


class EntryNotFound(VaultError, KeyError):
    """No vault entry exists with the requested id."""


class InvalidPayload(VaultError, ValueError):
    """A secret supplied for encryption does not match the payload schema."""
