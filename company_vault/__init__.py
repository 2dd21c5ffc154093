"""Company Vault: encrypted credential storage for a company.

Security Note (Threat Model):
    Secrets are encrypted with a key derived from a shared company
    passphrase that is never stored. The store, administrators and the
    application server only ever see envelopes. Losing the passphrase makes
    every envelope derived from it unrecoverable; there is no recovery path.
"""

from .version import __version__
from .exceptions import (
    VaultError,
    KeyDerivationError,
    DecryptionFailed,
    MalformedPayload,
    InvalidEnvelope,
    InvalidPayload,
    VaultLocked,
    EntryNotFound,
)
from .models import Envelope, SecretPayload, VaultEntry
from .crypto import derive_key, encrypt_payload, decrypt_envelope
from .config import VaultConfig
from .unlock import UnlockValidator
from .session import VaultSession
from .store import VaultEntryStore, MemoryEntryStore, PgEntryStore
from .vault import CompanyVault

__all__ = [
    "__version__",
    "VaultError",
    "KeyDerivationError",
    "DecryptionFailed",
    "MalformedPayload",
    "InvalidEnvelope",
    "InvalidPayload",
    "VaultLocked",
    "EntryNotFound",
    "Envelope",
    "SecretPayload",
    "VaultEntry",
    "derive_key",
    "encrypt_payload",
    "decrypt_envelope",
    "VaultConfig",
    "UnlockValidator",
    "VaultSession",
    "VaultEntryStore",
    "MemoryEntryStore",
    "PgEntryStore",
    "CompanyVault",
]
