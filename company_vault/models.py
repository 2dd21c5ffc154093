"""
Vault Models: envelopes, secret payloads and stored entries.

An ``Envelope`` is the only artifact that leaves process memory. Its storage
form (``to_record``) base64-encodes the binary fields so the record fits
plain text columns.
"""
import uuid
import base64
import binascii
from typing import Any, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import InvalidEnvelope

# AES-256-GCM with a PBKDF2-HMAC-SHA256 derived key.
ALGORITHM = "AES-GCM-256"
SUPPORTED_ALGORITHMS = frozenset({ALGORITHM})

ENVELOPE_VERSION = 1
SUPPORTED_VERSIONS = frozenset({ENVELOPE_VERSION})

# Records written before the iteration count was stored used this value.
LEGACY_ITERATIONS = 100_000
MAX_ITERATIONS = 10_000_000

PAYLOAD_SCHEMA_VERSION = 1

_BINARY_FIELDS = ("salt", "iv", "ciphertext")


def _b64decode(name: str, value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if not isinstance(value, str):
        raise InvalidEnvelope(f"Envelope field {name!r} must be base64 text")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidEnvelope(
            f"Envelope field {name!r} is not valid base64"
        ) from None


class Envelope(BaseModel):
    """Self-contained encrypted form of a secret payload."""

    model_config = ConfigDict(frozen=True)

    algo: str = ALGORITHM
    salt: bytes
    iv: bytes
    ciphertext: bytes
    iterations: int = Field(default=LEGACY_ITERATIONS, ge=1, le=MAX_ITERATIONS)
    version: int = ENVELOPE_VERSION

    def __repr__(self) -> str:
        return (
            f"<Envelope algo={self.algo} v{self.version} "
            f"iterations={self.iterations} size={len(self.ciphertext)}>"
        )

    def to_record(self) -> dict[str, Any]:
        """Return the storage form with base64-encoded binary fields."""
        record: dict[str, Any] = {
            "algo": self.algo,
            "iterations": self.iterations,
            "version": self.version,
        }
        for name in _BINARY_FIELDS:
            record[name] = base64.b64encode(getattr(self, name)).decode("ascii")
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Envelope":
        """Build an Envelope from its storage form.

        Missing ``iterations`` and ``version`` fall back to the values used
        by records written before those columns existed. The scheme is not
        checked here, only when the envelope is decrypted, so a record with
        an unknown algorithm can still be listed.

        Raises:
            InvalidEnvelope: If a field is missing or badly encoded.
        """
        try:
            values = {
                name: _b64decode(name, record[name]) for name in _BINARY_FIELDS
            }
        except KeyError as err:
            raise InvalidEnvelope(f"Envelope record missing field {err}") from None
        values["algo"] = record.get("algo") or ALGORITHM
        if record.get("iterations") is not None:
            values["iterations"] = record["iterations"]
        if record.get("version") is not None:
            values["version"] = record["version"]
        try:
            return cls(**values)
        except ValidationError as err:
            raise InvalidEnvelope(f"Invalid envelope record: {err}") from None

    def check_supported(self) -> None:
        """Raise InvalidEnvelope if this envelope cannot be decrypted at all.

        Covers unknown schemes and an empty salt. None of these checks
        depend on the passphrase.
        """
        if self.algo not in SUPPORTED_ALGORITHMS:
            raise InvalidEnvelope(f"Unsupported envelope algorithm: {self.algo}")
        if self.version not in SUPPORTED_VERSIONS:
            raise InvalidEnvelope(f"Unsupported envelope version: {self.version}")
        if not self.salt:
            raise InvalidEnvelope("Envelope salt is empty")

    @property
    def supported(self) -> bool:
        try:
            self.check_supported()
        except InvalidEnvelope:
            return False
        return True


class SecretPayload(BaseModel):
    """The plaintext secret of a vault entry. Never persisted as-is.

    Unknown fields are preserved so a payload written by a newer schema
    survives a re-encrypt.
    """

    model_config = ConfigDict(extra="allow")

    password: Optional[str] = None
    notes: Optional[str] = None
    schema_version: int = PAYLOAD_SCHEMA_VERSION

    def __repr__(self) -> str:
        return f"<SecretPayload schema_version={self.schema_version}>"

    __str__ = __repr__


class VaultEntry(BaseModel):
    """A stored vault entry: plaintext metadata plus the encrypted envelope."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    username: Optional[str] = None
    url: Optional[str] = None
    envelope: Envelope
    company_id: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Titles are required and stored trimmed."""
        v = v.strip()
        if not v:
            raise ValueError("Vault entry title cannot be empty")
        return v

    @field_validator("username", "url")
    @classmethod
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None
