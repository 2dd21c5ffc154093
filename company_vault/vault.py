"""
CompanyVault: the caller-facing vault API.

Provides the operations the vault screen uses:
- ``unlock(passphrase)`` / ``open_session(passphrase)`` - validate a passphrase
- ``save(session, ...)`` - encrypt and store a new entry
- ``update(session, entry_id, secret)`` - re-encrypt an existing entry
- ``reveal(session, entry)`` / ``reveal_many(session, entries)`` - decrypt
- ``list_entries()`` / ``delete(entry_id)`` - metadata and removal

Key derivation is slow on purpose, so every encrypt/decrypt call runs in a
worker thread and the event loop stays responsive.

Security Note:
    Never log plaintext, passphrases or envelope bytes. Only log entry ids,
    company ids and operations. A failed decryption is final for that
    (envelope, passphrase) pair and is never retried.
"""
import asyncio
import logging
from typing import Any, Iterable, Mapping, Optional, Union

from .config import VaultConfig
from .crypto import decrypt_envelope, encrypt_payload
from .exceptions import DecryptionFailed, KeyDerivationError
from .models import Envelope, SecretPayload, VaultEntry
from .session import VaultSession
from .store import VaultEntryStore
from .unlock import UnlockValidator

logger = logging.getLogger("company_vault")

Secret = Union[SecretPayload, Mapping[str, Any]]


class CompanyVault:
    """Encrypted credential vault of one company.

    Args:
        store: Entry store already scoped to the company.
        config: Vault settings; read from the environment when omitted.
        company_id: Company id recorded on sessions (for logging).
        validator: Passphrase validator, defaults to trial decryption.
    """

    def __init__(
        self,
        store: VaultEntryStore,
        config: Optional[VaultConfig] = None,
        *,
        company_id: Optional[str] = None,
        validator: Optional[UnlockValidator] = None,
    ):
        self._store = store
        self._config = config or VaultConfig.from_env()
        self._company_id = company_id
        self._validator = validator or UnlockValidator()

    @property
    def config(self) -> VaultConfig:
        return self._config

    # ------------------------------------------------------------------
    # Unlock
    # ------------------------------------------------------------------

    async def unlock(self, passphrase: str) -> bool:
        """Check a passphrase against one existing entry of the company.

        An empty vault accepts any passphrase.

        Raises:
            KeyDerivationError: If the passphrase is empty.
        """
        if not isinstance(passphrase, str) or not passphrase:
            raise KeyDerivationError("Passphrase cannot be empty")
        sample = await self._store.first()
        envelope = sample.envelope if sample is not None else None
        accepted = await asyncio.to_thread(
            self._validator.unlock, passphrase, envelope,
        )
        logger.info(
            "Vault unlock: company=%s accepted=%s verified=%s",
            self._company_id, accepted, envelope is not None,
        )
        return accepted

    async def open_session(
        self,
        passphrase: str,
        identity: Optional[Any] = None,
    ) -> VaultSession:
        """Unlock the vault and return a session holding the passphrase.

        Args:
            passphrase: Passphrase typed at the unlock screen.
            identity: User unlocking the vault. Saved entries record it as
                ``created_by``, which ``PgEntryStore`` requires.

        Raises:
            DecryptionFailed: If the passphrase does not open the vault.
        """
        if not await self.unlock(passphrase):
            raise DecryptionFailed()
        return VaultSession(
            passphrase,
            company_id=self._company_id,
            identity=identity,
            max_age=self._config.session_ttl,
        )

    # ------------------------------------------------------------------
    # Encrypt
    # ------------------------------------------------------------------

    async def _encrypt(self, session: VaultSession, secret: Secret) -> Envelope:
        passphrase = session.passphrase
        return await asyncio.to_thread(
            encrypt_payload,
            secret,
            passphrase,
            iterations=self._config.kdf_iterations,
            salt_size=self._config.salt_size,
        )

    async def save(
        self,
        session: VaultSession,
        title: str,
        username: Optional[str],
        url: Optional[str],
        secret: Secret,
    ) -> Envelope:
        """Encrypt a secret and store it as a new entry.

        Args:
            session: Unlocked vault session.
            title: Entry title (required).
            username: Plaintext username metadata.
            url: Plaintext URL metadata.
            secret: SecretPayload or mapping with ``password``/``notes``.

        Returns:
            The stored Envelope.

        Raises:
            ValueError: If the title is blank.
            VaultLocked: If the session is locked or expired.
        """
        if not title or not title.strip():
            raise ValueError("Vault entry title cannot be empty")
        envelope = await self._encrypt(session, secret)
        user = str(session.identity) if session.identity is not None else None
        entry = VaultEntry(
            title=title,
            username=username,
            url=url,
            envelope=envelope,
            created_by=user,
            updated_by=user,
        )
        stored = await self._store.put(entry)
        logger.info(
            "Vault entry saved: company=%s entry=%s", self._company_id, stored.id,
        )
        return stored.envelope

    async def update(
        self,
        session: VaultSession,
        entry_id: str,
        secret: Secret,
    ) -> Envelope:
        """Re-encrypt the secret of an existing entry.

        The whole payload is encrypted again under a fresh salt and iv.

        Raises:
            EntryNotFound: If no entry has this id.
            VaultLocked: If the session is locked or expired.
        """
        entry = await self._store.get(entry_id)
        envelope = await self._encrypt(session, secret)
        user = str(session.identity) if session.identity is not None else None
        stored = await self._store.put(
            entry.model_copy(update={"envelope": envelope, "updated_by": user})
        )
        logger.info(
            "Vault entry updated: company=%s entry=%s", self._company_id, entry_id,
        )
        return stored.envelope

    # ------------------------------------------------------------------
    # Decrypt
    # ------------------------------------------------------------------

    async def reveal(self, session: VaultSession, entry: VaultEntry) -> SecretPayload:
        """Decrypt the secret of an entry.

        Raises:
            DecryptionFailed: Wrong passphrase or corrupted entry.
            MalformedPayload: Entry decrypted but holds invalid data.
            VaultLocked: If the session is locked or expired.
        """
        passphrase = session.passphrase
        try:
            return await asyncio.to_thread(
                decrypt_envelope, entry.envelope, passphrase,
            )
        except DecryptionFailed:
            logger.warning(
                "Vault reveal failed: company=%s entry=%s",
                self._company_id, entry.id,
            )
            raise

    async def reveal_many(
        self,
        session: VaultSession,
        entries: Iterable[VaultEntry],
    ) -> list[SecretPayload]:
        """Decrypt several entries concurrently.

        All-or-nothing: the first failure is raised and no payloads are
        returned.
        """
        return list(await asyncio.gather(
            *(self.reveal(session, entry) for entry in entries)
        ))

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_entry(self, entry_id: str) -> VaultEntry:
        return await self._store.get(entry_id)

    async def list_entries(self) -> list[VaultEntry]:
        """Entries of the company, most recently updated first."""
        return await self._store.all()

    async def delete(self, entry_id: str) -> None:
        await self._store.delete(entry_id)
        logger.info(
            "Vault entry deleted: company=%s entry=%s", self._company_id, entry_id,
        )
