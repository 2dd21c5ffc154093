"""
Vault Configuration: validated settings read from the environment.

    VAULT_KDF_ITERATIONS = <int>   PBKDF2 iterations for new envelopes
    VAULT_SALT_SIZE = <int>        random salt bytes per envelope
    VAULT_SESSION_TTL = <int>      seconds an unlocked session stays open

Security Note:
    The vault passphrase is never part of the configuration. It is only
    ever supplied by a person at unlock time.
"""
import os
import logging

from pydantic import BaseModel, Field

from .crypto import DEFAULT_ITERATIONS, SALT_SIZE
from .models import MAX_ITERATIONS

logger = logging.getLogger("company_vault.config")

MIN_ITERATIONS = 1_000


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    kdf_iterations: int = Field(
        default=DEFAULT_ITERATIONS, ge=MIN_ITERATIONS, le=MAX_ITERATIONS
    )
    salt_size: int = Field(default=SALT_SIZE, ge=16, le=64)
    session_ttl: int = Field(default=3600, ge=60)

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.

        Raises:
            ValueError: If a variable is not an integer or is out of range.
        """
        config = cls(
            kdf_iterations=_env_int("VAULT_KDF_ITERATIONS", DEFAULT_ITERATIONS),
            salt_size=_env_int("VAULT_SALT_SIZE", SALT_SIZE),
            session_ttl=_env_int("VAULT_SESSION_TTL", 3600),
        )
        logger.debug(
            "Vault config: kdf_iterations=%d salt_size=%d session_ttl=%d",
            config.kdf_iterations, config.salt_size, config.session_ttl,
        )
        return config
