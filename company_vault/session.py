"""
VaultSession: the unlocked state of a company vault.

A session is created after a successful unlock and handed explicitly to
every encrypt/decrypt call. It holds the passphrase in process memory only,
and stops releasing it once locked or expired.
"""
import uuid
from typing import Any, Optional
from datetime import datetime, timezone

from .exceptions import KeyDerivationError, VaultLocked


def _now() -> int:
    return int(datetime.now(timezone.utc).timestamp())


class VaultSession:
    """Unlocked vault session bound to one company.

    Args:
        passphrase: Validated vault passphrase.
        company_id: Company whose vault was unlocked.
        identity: User who unlocked the vault (stamped on saved entries).
        max_age: Seconds before the session expires; None never expires.
        id: Optional session id, generated when omitted.
    """

    def __init__(
        self,
        passphrase: str,
        *,
        company_id: Optional[str] = None,
        identity: Optional[Any] = None,
        max_age: Optional[int] = None,
        id: Optional[str] = None,
    ) -> None:
        if not isinstance(passphrase, str) or not passphrase:
            raise KeyDerivationError("Passphrase cannot be empty")
        self._passphrase: Optional[str] = passphrase
        self._id_ = id or uuid.uuid4().hex
        self._company_id = company_id
        self._identity = identity
        self._max_age = max_age
        self._created = _now()

    def __repr__(self) -> str:
        return (
            f'<Vault-Session [id:{self._id_}, company:{self._company_id}, '
            f'locked:{self.locked}, expired:{self.expired}]>'
        )

    # --- Properties ---

    @property
    def session_id(self) -> str:
        return self._id_

    @property
    def company_id(self) -> Optional[str]:
        return self._company_id

    @property
    def identity(self) -> Optional[Any]:
        return self._identity

    @property
    def created(self) -> int:
        return self._created

    @property
    def max_age(self) -> Optional[int]:
        return self._max_age

    @property
    def expired(self) -> bool:
        if self._max_age is None:
            return False
        return _now() - self._created > self._max_age

    @property
    def locked(self) -> bool:
        return self._passphrase is None

    @property
    def passphrase(self) -> str:
        """The unlocked passphrase.

        Raises:
            VaultLocked: If the session was locked or has expired.
        """
        if self._passphrase is None:
            raise VaultLocked("Vault session is locked")
        if self.expired:
            self.lock()
            raise VaultLocked("Vault session has expired")
        return self._passphrase

    def lock(self) -> None:
        """Drop the passphrase; the session can no longer be used."""
        self._passphrase = None
