"""
Tests for vault entry stores.

Tests cover:
- MemoryEntryStore CRUD and timestamps
- PgEntryStore statements, company scoping and row mapping (fake pool)
- Unlock sample selection, unreadable rows and the kdf_iterations migration
"""
import pytest
from datetime import datetime, timezone

from company_vault.crypto import decrypt_envelope, encrypt_payload
from company_vault.exceptions import EntryNotFound, InvalidEnvelope
from company_vault.models import (
    LEGACY_ITERATIONS,
    Envelope,
    SecretPayload,
    VaultEntry,
)
from company_vault.store import (
    _ADD_ITERATIONS_COLUMN,
    _COLUMNS,
    _UPSERT_ENTRY,
    MemoryEntryStore,
    PgEntryStore,
)


@pytest.fixture(scope="module")
def envelope():
    return encrypt_payload(SecretPayload(password="pw"), "k", iterations=1_000)


def _entry(envelope, title="Bank Portal", **kwargs):
    kwargs.setdefault("created_by", "u1")
    return VaultEntry(title=title, envelope=envelope, **kwargs)


# Columns of the vault_entries table as the application first created it.
ORIGINAL_COLUMNS = {
    "id", "company_id", "title", "username", "url", "algo", "salt", "iv",
    "data_ciphertext", "notes_ciphertext", "version", "created_by",
    "updated_by", "created_at", "updated_at",
}


# --- Fake asyncpg pool ---

class FakeConnection:
    """Tiny in-memory stand-in for the vault_entries table."""

    def __init__(self, table: dict):
        self.table = table
        self.queries: list[tuple[str, tuple]] = []

    def _out(self, row: dict) -> dict:
        out = dict(row)
        out["ciphertext"] = out.pop("data_ciphertext")
        out["iterations"] = out.pop("kdf_iterations")
        return out

    async def fetchrow(self, query: str, *args):
        self.queries.append((query, args))
        if "INSERT INTO vault_entries" in query:
            (entry_id, company_id, title, username, url, algo, salt, iv,
             ciphertext, iterations, version, created_by, updated_by) = args
            now = datetime.now(timezone.utc)
            existing = self.table.get(entry_id)
            if existing is not None and existing["company_id"] != company_id:
                return None
            row = {
                "id": entry_id, "company_id": company_id, "title": title,
                "username": username, "url": url, "algo": algo, "salt": salt,
                "iv": iv, "data_ciphertext": ciphertext,
                "kdf_iterations": iterations, "version": version,
                "created_by": existing["created_by"] if existing else created_by,
                "updated_by": updated_by,
                "created_at": existing["created_at"] if existing else now,
                "updated_at": now,
            }
            self.table[entry_id] = row
            return self._out(row)
        if "DELETE FROM vault_entries" in query:
            company_id, entry_id = args
            row = self.table.get(entry_id)
            if row is None or row["company_id"] != company_id:
                return None
            del self.table[entry_id]
            return {"id": entry_id}
        rows = [r for r in self.table.values() if r["company_id"] == args[0]]
        if "AND id = $2" in query:
            rows = [r for r in rows if r["id"] == args[1]]
        return self._out(rows[0]) if rows else None

    async def fetch(self, query: str, *args):
        self.queries.append((query, args))
        rows = [r for r in self.table.values() if r["company_id"] == args[0]]
        rows.sort(key=lambda r: r["updated_at"], reverse=True)
        if "LIMIT $2" in query:
            rows = rows[:args[1]]
        return [self._out(r) for r in rows]

    async def execute(self, query: str, *args):
        self.queries.append((query, args))
        return "ALTER TABLE"


class FakePool:
    def __init__(self):
        self.table: dict = {}
        self.conn = FakeConnection(self.table)

    def acquire(self):
        pool = self

        class _Ctx:
            async def __aenter__(self):
                return pool.conn

            async def __aexit__(self, *exc):
                return False

        return _Ctx()


@pytest.fixture
def pool():
    return FakePool()


# --- Test MemoryEntryStore ---

class TestMemoryEntryStore:
    """Tests for MemoryEntryStore."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, envelope):
        """Test storing and fetching an entry."""
        store = MemoryEntryStore(company_id="acme")
        stored = await store.put(_entry(envelope))
        assert stored.company_id == "acme"
        assert stored.created_at is not None
        assert stored.updated_at == stored.created_at
        assert await store.get(stored.id) == stored

    @pytest.mark.asyncio
    async def test_first_empty(self):
        """Test that an empty store has no first entry."""
        assert await MemoryEntryStore().first() is None

    @pytest.mark.asyncio
    async def test_first(self, envelope):
        """Test that first returns an existing entry."""
        store = MemoryEntryStore()
        stored = await store.put(_entry(envelope))
        assert (await store.first()).id == stored.id

    @pytest.mark.asyncio
    async def test_first_prefers_supported_envelope(self, envelope):
        """Test that first skips an entry no passphrase can decrypt."""
        store = MemoryEntryStore()
        unusable = Envelope(algo="AES-CBC", salt=b"s" * 16, iv=b"i" * 12,
                            ciphertext=b"c" * 32)
        await store.put(_entry(unusable, title="legacy"))
        good = await store.put(_entry(envelope))
        assert (await store.first()).id == good.id

    @pytest.mark.asyncio
    async def test_overwrite_keeps_created(self, envelope):
        """Test that re-putting an entry keeps created_at and created_by."""
        store = MemoryEntryStore()
        stored = await store.put(_entry(envelope, created_by="alice"))
        again = await store.put(
            stored.model_copy(update={"title": "Renamed", "created_by": "bob"})
        )
        assert again.title == "Renamed"
        assert again.created_at == stored.created_at
        assert again.created_by == "alice"
        assert again.updated_at >= stored.updated_at

    @pytest.mark.asyncio
    async def test_all_most_recent_first(self, envelope):
        """Test that listing returns the most recently updated entry first."""
        store = MemoryEntryStore()
        await store.put(_entry(envelope, title="one"))
        await store.put(_entry(envelope, title="two"))
        entries = await store.all()
        stamps = [e.updated_at for e in entries]
        assert stamps == sorted(stamps, reverse=True)
        assert {e.title for e in entries} == {"one", "two"}

    @pytest.mark.asyncio
    async def test_delete(self, envelope):
        """Test deleting an entry."""
        store = MemoryEntryStore()
        stored = await store.put(_entry(envelope))
        await store.delete(stored.id)
        with pytest.raises(EntryNotFound):
            await store.get(stored.id)

    @pytest.mark.asyncio
    async def test_missing(self):
        """Test that missing ids raise EntryNotFound (a KeyError)."""
        store = MemoryEntryStore()
        with pytest.raises(KeyError):
            await store.get("missing")
        with pytest.raises(EntryNotFound):
            await store.delete("missing")


# --- Test PgEntryStore ---

class TestPgEntryStore:
    """Tests for PgEntryStore against a fake asyncpg pool."""

    @pytest.mark.asyncio
    async def test_put_stores_base64_columns(self, pool, envelope):
        """Test that the envelope is written as base64 text columns."""
        store = PgEntryStore(pool, company_id="acme")
        entry = _entry(envelope, username="acct1", created_by="u1")
        stored = await store.put(entry)
        row = pool.table[entry.id]
        assert row["company_id"] == "acme"
        assert row["data_ciphertext"] == envelope.to_record()["ciphertext"]
        assert row["kdf_iterations"] == 1_000
        assert stored.envelope == envelope
        assert stored.username == "acct1"
        assert stored.company_id == "acme"

    @pytest.mark.asyncio
    async def test_get(self, pool, envelope):
        """Test fetching an entry by id."""
        store = PgEntryStore(pool, company_id="acme")
        stored = await store.put(_entry(envelope))
        fetched = await store.get(stored.id)
        assert fetched.id == stored.id
        assert fetched.envelope == envelope

    @pytest.mark.asyncio
    async def test_statements_scoped_by_company(self, pool, envelope):
        """Test that every statement is bound to the store's company."""
        store = PgEntryStore(pool, company_id="acme")
        stored = await store.put(_entry(envelope))
        await store.get(stored.id)
        await store.first()
        await store.all()
        await store.delete(stored.id)
        for query, args in pool.conn.queries:
            assert "company_id" in query
            assert "acme" in args

    @pytest.mark.asyncio
    async def test_other_company_cannot_see(self, pool, envelope):
        """Test that entries of one company are invisible to another."""
        acme = PgEntryStore(pool, company_id="acme")
        other = PgEntryStore(pool, company_id="globex")
        stored = await acme.put(_entry(envelope))
        assert await other.first() is None
        assert await other.all() == []
        with pytest.raises(EntryNotFound):
            await other.get(stored.id)
        with pytest.raises(EntryNotFound):
            await other.delete(stored.id)

    @pytest.mark.asyncio
    async def test_other_company_cannot_overwrite(self, pool, envelope):
        """Test that an upsert refused by the company guard raises."""
        acme = PgEntryStore(pool, company_id="acme")
        other = PgEntryStore(pool, company_id="globex")
        stored = await acme.put(_entry(envelope))
        with pytest.raises(EntryNotFound):
            await other.put(stored)
        assert pool.table[stored.id]["company_id"] == "acme"

    @pytest.mark.asyncio
    async def test_missing_entry(self, pool):
        """Test that a missing id raises EntryNotFound."""
        store = PgEntryStore(pool, company_id="acme")
        with pytest.raises(EntryNotFound):
            await store.get("missing")
        assert await store.first() is None

    @pytest.mark.asyncio
    async def test_ensure_schema_adds_iterations_column(self, pool):
        """Test that ensure_schema adds kdf_iterations to an existing table."""
        store = PgEntryStore(pool, company_id="acme")
        await store.ensure_schema()
        query, _ = pool.conn.queries[-1]
        assert "ALTER TABLE vault_entries" in query
        assert "ADD COLUMN IF NOT EXISTS kdf_iterations" in query

    def test_columns_exist_after_migration(self):
        """Test that statements only touch original columns plus kdf_iterations."""
        selected = {part.split()[0] for part in _COLUMNS.split(",")}
        inserted = {
            name.strip()
            for name in _UPSERT_ENTRY.split("(", 1)[1].split(")", 1)[0].split(",")
        }
        assert (selected | inserted) <= ORIGINAL_COLUMNS | {"kdf_iterations"}
        assert "kdf_iterations" in _ADD_ITERATIONS_COLUMN

    @pytest.mark.asyncio
    async def test_null_iterations_read_as_legacy(self, pool, envelope):
        """Test that rows written before the migration use the legacy count."""
        store = PgEntryStore(pool, company_id="acme")
        stored = await store.put(_entry(envelope))
        pool.table[stored.id]["kdf_iterations"] = None
        fetched = await store.get(stored.id)
        assert fetched.envelope.iterations == LEGACY_ITERATIONS

    @pytest.mark.asyncio
    async def test_put_requires_created_by(self, pool, envelope):
        """Test that an entry without created_by is refused before any SQL."""
        store = PgEntryStore(pool, company_id="acme")
        with pytest.raises(ValueError):
            await store.put(_entry(envelope, created_by=None))
        assert pool.table == {}
        assert pool.conn.queries == []

    @pytest.mark.asyncio
    async def test_corrupt_row_still_listed(self, pool, envelope):
        """Test that a badly encoded row is listed but cannot be revealed."""
        store = PgEntryStore(pool, company_id="acme")
        stored = await store.put(_entry(envelope))
        pool.table[stored.id]["salt"] = "not base64!"
        entries = await store.all()
        assert [e.id for e in entries] == [stored.id]
        assert not entries[0].envelope.supported
        assert (await store.first()).id == stored.id
        with pytest.raises(InvalidEnvelope):
            decrypt_envelope(entries[0].envelope, "k")

    @pytest.mark.asyncio
    async def test_first_prefers_usable_row(self, pool, envelope):
        """Test that the unlock sample skips rows that cannot be decrypted."""
        store = PgEntryStore(pool, company_id="acme")
        good = await store.put(_entry(envelope, title="good"))
        bad = await store.put(_entry(envelope, title="bad"))
        pool.table[bad.id]["algo"] = "AES-CBC"
        assert (await store.first()).id == good.id
