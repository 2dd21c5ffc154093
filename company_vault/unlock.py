"""
Unlock Validator: passphrase checks by trial decryption.

The vault stores no password hash. A passphrase is accepted when it
decrypts one existing envelope of the company; the AES-GCM tag makes a false
accept cryptographically negligible.

An empty vault has nothing to check against, so any passphrase is accepted
and the first entry saved afterwards binds the vault to it. This is a known
gap and is logged at warning level on every optimistic unlock.
"""
import logging
from typing import Optional

from .crypto import decrypt_envelope
from .exceptions import (
    DecryptionFailed,
    InvalidEnvelope,
    KeyDerivationError,
    MalformedPayload,
)
from .models import Envelope

logger = logging.getLogger("company_vault.unlock")


class UnlockValidator:
    """Decides whether a passphrase opens a company vault."""

    def unlock(
        self,
        passphrase: str,
        sample_envelope: Optional[Envelope] = None,
    ) -> bool:
        """Validate a passphrase against one existing envelope.

        Args:
            passphrase: Passphrase typed at the unlock screen.
            sample_envelope: Any existing envelope of the company, or None
                when the vault is empty.

        Returns:
            True if the passphrase decrypts the sample (or there is no
            sample), False otherwise. A sample that cannot be decrypted
            with any passphrase (unknown scheme, empty salt) rejects.

        Raises:
            KeyDerivationError: If the passphrase is empty.
        """
        if not isinstance(passphrase, str) or not passphrase:
            raise KeyDerivationError("Passphrase cannot be empty")
        if sample_envelope is None:
            logger.warning(
                "Vault is empty: accepting passphrase without verification"
            )
            return True
        try:
            decrypt_envelope(sample_envelope, passphrase)
        except DecryptionFailed:
            logger.info("Vault unlock rejected")
            return False
        except InvalidEnvelope as err:
            logger.error("Vault unlock sample is unusable: %s", err)
            return False
        except MalformedPayload as err:
            # The tag verified, so the passphrase is right; the data is not.
            logger.error("Vault unlock sample has a malformed payload: %s", err)
        return True
