"""
Vault Entry Stores: persistence boundary for encrypted entries.

The vault core only sees the ``VaultEntryStore`` protocol. Company (tenant)
scoping is the store's job: ``MemoryEntryStore`` is scoped per instance and
``PgEntryStore`` filters every statement by its ``company_id``.

``first()`` returns the unlock sample. It prefers an entry whose envelope can
be decrypted at all, so one corrupt record does not lock the vault.

Security Note:
    Stores only ever receive envelopes. Never log envelope contents.
"""
import logging
from typing import Any, Optional, Protocol
from datetime import datetime, timezone

from .exceptions import EntryNotFound, InvalidEnvelope
from .models import ALGORITHM, Envelope, VaultEntry

logger = logging.getLogger("company_vault.store")


class VaultEntryStore(Protocol):
    """Async key-value persistence of vault entries for one company."""

    async def get(self, entry_id: str) -> VaultEntry:
        ...

    async def first(self) -> Optional[VaultEntry]:
        ...

    async def all(self) -> list[VaultEntry]:
        ...

    async def put(self, entry: VaultEntry) -> VaultEntry:
        ...

    async def delete(self, entry_id: str) -> None:
        ...


def _pick_sample(entries: list[VaultEntry]) -> Optional[VaultEntry]:
    for entry in entries:
        if entry.envelope.supported:
            return entry
    return entries[0] if entries else None


class MemoryEntryStore:
    """In-process store, for tests and local development."""

    def __init__(self, company_id: Optional[str] = None):
        self._company_id = company_id
        self._entries: dict[str, VaultEntry] = {}

    async def get(self, entry_id: str) -> VaultEntry:
        try:
            return self._entries[entry_id]
        except KeyError:
            raise EntryNotFound(entry_id) from None

    async def first(self) -> Optional[VaultEntry]:
        return _pick_sample(list(self._entries.values()))

    async def all(self) -> list[VaultEntry]:
        return sorted(
            self._entries.values(),
            key=lambda e: e.updated_at,
            reverse=True,
        )

    async def put(self, entry: VaultEntry) -> VaultEntry:
        now = datetime.now(timezone.utc)
        previous = self._entries.get(entry.id)
        stored = entry.model_copy(update={
            "company_id": self._company_id,
            "created_at": previous.created_at if previous else now,
            "created_by": previous.created_by if previous else entry.created_by,
            "updated_at": now,
        })
        self._entries[entry.id] = stored
        return stored

    async def delete(self, entry_id: str) -> None:
        if self._entries.pop(entry_id, None) is None:
            raise EntryNotFound(entry_id)


# ---------------------------------------------------------------------------
# PostgreSQL store
# ---------------------------------------------------------------------------

# Rows scanned when looking for a usable unlock sample.
_SAMPLE_ROWS = 20

# Tables created before iteration counts were stored lack this column;
# NULL values read as LEGACY_ITERATIONS.
_ADD_ITERATIONS_COLUMN = """
ALTER TABLE vault_entries
ADD COLUMN IF NOT EXISTS kdf_iterations integer
"""

_COLUMNS = """
id, company_id, title, username, url, algo, salt, iv,
data_ciphertext AS ciphertext, kdf_iterations AS iterations, version,
created_by, updated_by, created_at, updated_at
"""

_SELECT_ONE = f"""
SELECT {_COLUMNS}
FROM vault_entries
WHERE company_id = $1 AND id = $2
"""

_SELECT_SAMPLE = f"""
SELECT {_COLUMNS}
FROM vault_entries
WHERE company_id = $1
LIMIT $2
"""

_SELECT_ALL = f"""
SELECT {_COLUMNS}
FROM vault_entries
WHERE company_id = $1
ORDER BY updated_at DESC
"""

_UPSERT_ENTRY = f"""
INSERT INTO vault_entries (
    id, company_id, title, username, url, algo, salt, iv,
    data_ciphertext, kdf_iterations, version, created_by, updated_by
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
ON CONFLICT (id) DO UPDATE SET
    title = EXCLUDED.title,
    username = EXCLUDED.username,
    url = EXCLUDED.url,
    algo = EXCLUDED.algo,
    salt = EXCLUDED.salt,
    iv = EXCLUDED.iv,
    data_ciphertext = EXCLUDED.data_ciphertext,
    kdf_iterations = EXCLUDED.kdf_iterations,
    version = EXCLUDED.version,
    updated_by = EXCLUDED.updated_by,
    updated_at = NOW()
WHERE vault_entries.company_id = EXCLUDED.company_id
RETURNING {_COLUMNS}
"""

_DELETE_ENTRY = """
DELETE FROM vault_entries
WHERE company_id = $1 AND id = $2
RETURNING id
"""


def _row_envelope(row: Any) -> Envelope:
    try:
        return Envelope.from_record({
            "algo": row["algo"],
            "salt": row["salt"],
            "iv": row["iv"],
            "ciphertext": row["ciphertext"],
            "iterations": row["iterations"],
            "version": row["version"],
        })
    except InvalidEnvelope as err:
        # Keep the entry listable; the empty salt makes any decrypt fail.
        logger.error(
            "Unreadable vault envelope: company=%s entry=%s: %s",
            row["company_id"], row["id"], err,
        )
        return Envelope(
            algo=str(row["algo"] or ALGORITHM), salt=b"", iv=b"", ciphertext=b"",
        )


def _row_to_entry(row: Any) -> VaultEntry:
    return VaultEntry(
        id=str(row["id"]),
        title=row["title"],
        username=row["username"],
        url=row["url"],
        envelope=_row_envelope(row),
        company_id=str(row["company_id"]),
        created_by=row["created_by"],
        updated_by=row["updated_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PgEntryStore:
    """Store backed by the ``vault_entries`` table.

    Call ``ensure_schema()`` once on an existing table to add the
    ``kdf_iterations`` column. ``created_by`` is NOT NULL in that table, so
    ``put`` refuses entries without one; open sessions with an identity.

    Args:
        db_pool: asyncpg-compatible connection pool.
        company_id: Company every statement is scoped to.
    """

    def __init__(self, db_pool: Any, company_id: str):
        self._db = db_pool
        self._company_id = company_id

    async def ensure_schema(self) -> None:
        """Add the columns this store reads to ``vault_entries``. Idempotent."""
        async with self._db.acquire() as conn:
            await conn.execute(_ADD_ITERATIONS_COLUMN)
        logger.info("Vault schema ensured: vault_entries.kdf_iterations")

    async def get(self, entry_id: str) -> VaultEntry:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(_SELECT_ONE, self._company_id, entry_id)
        if row is None:
            raise EntryNotFound(entry_id)
        return _row_to_entry(row)

    async def first(self) -> Optional[VaultEntry]:
        async with self._db.acquire() as conn:
            rows = await conn.fetch(_SELECT_SAMPLE, self._company_id, _SAMPLE_ROWS)
        return _pick_sample([_row_to_entry(row) for row in rows])

    async def all(self) -> list[VaultEntry]:
        async with self._db.acquire() as conn:
            rows = await conn.fetch(_SELECT_ALL, self._company_id)
        return [_row_to_entry(row) for row in rows]

    async def put(self, entry: VaultEntry) -> VaultEntry:
        if not entry.created_by:
            raise ValueError(
                "vault_entries.created_by is required: "
                "open the vault session with the saving user's identity"
            )
        record = entry.envelope.to_record()
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(
                _UPSERT_ENTRY,
                entry.id, self._company_id, entry.title, entry.username,
                entry.url, record["algo"], record["salt"], record["iv"],
                record["ciphertext"], record["iterations"], record["version"],
                entry.created_by, entry.updated_by,
            )
        if row is None:
            # The id exists under another company; the WHERE clause refused it.
            raise EntryNotFound(entry.id)
        logger.debug(
            "Vault entry stored: company=%s entry=%s", self._company_id, entry.id,
        )
        return _row_to_entry(row)

    async def delete(self, entry_id: str) -> None:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(_DELETE_ENTRY, self._company_id, entry_id)
        if row is None:
            raise EntryNotFound(entry_id)
        logger.debug(
            "Vault entry deleted: company=%s entry=%s", self._company_id, entry_id,
        )
