"""Field-level encryption for sensitive record fields.

Implements XSalsa20-Poly1305 authenticated encryption (libsodium SecretBox
via PyNaCl) with one key per logical user.

Key handling:
- The master key is loaded from GLASS_KEY_ENCRYPTION_KEY (base64, 32 bytes)
- Per-user keys are derived with keyed BLAKE2b(master_key, user_id)
- initialize_key(user_id) swaps the active key for all new operations
- for_user(user_id) returns a separate service fixed to one user's key;
  background work (migration) uses it so key swaps cannot reach it
- Every operation captures the active box once, at call start

Ciphertext format (text, safe to store in any backend):
    "v1:" + urlsafe_base64(nonce[24] || ciphertext || tag[16])

Security invariants:
- Never log plaintext or ciphertext; only fingerprints (last 4 chars)
- A fresh random nonce per encryption
- Decryption fails on a foreign key, a tampered payload or a missing prefix
"""

import base64
import binascii
from functools import lru_cache
from typing import Any

import nacl.utils
from nacl.encoding import RawEncoder
from nacl.hash import blake2b
from nacl.secret import SecretBox

from glass.config import get_settings
from glass.errors import CryptoError, DecryptionError
from glass.logging import get_logger

logger = get_logger(__name__)

# XSalsa20-Poly1305 nonce size (24 bytes)
NONCE_SIZE = SecretBox.NONCE_SIZE

# Master and derived key size (32 bytes)
MASTER_KEY_SIZE = SecretBox.KEY_SIZE

CIPHERTEXT_PREFIX = "v1:"

# BLAKE2b personalization for field key derivation (max 16 bytes)
_KEY_PERSON = b"glass.fieldkey"


@lru_cache(maxsize=1)
def _get_master_key() -> bytes:
    """Load and validate the master key from settings.

    Returns:
        The 32-byte master key.

    Raises:
        CryptoError: If the key is missing, invalid base64, or wrong size.
    """
    key_b64 = get_settings().glass_key_encryption_key
    if not key_b64:
        raise CryptoError("GLASS_KEY_ENCRYPTION_KEY is not set")

    try:
        key = base64.b64decode(key_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"GLASS_KEY_ENCRYPTION_KEY is not valid base64: {e}") from e

    if len(key) != MASTER_KEY_SIZE:
        raise CryptoError(
            f"GLASS_KEY_ENCRYPTION_KEY must be {MASTER_KEY_SIZE} bytes, got {len(key)} bytes"
        )

    return key


def require_master_key() -> bytes:
    """Load and validate the master encryption key.

    Raises:
        CryptoError: If the key is missing or invalid.
    """
    return _get_master_key()


def clear_master_key_cache() -> None:
    """Clear the cached master key.

    Useful for testing or key rotation scenarios.
    """
    _get_master_key.cache_clear()


def derive_user_key(master_key: bytes, user_id: str) -> bytes:
    """Derive the 32-byte field key for a user.

    Deterministic: the same (master_key, user_id) always yields the same key,
    so records written in one process can be read in the next.
    """
    if not user_id:
        raise CryptoError("Cannot derive a field key for an empty user id")

    return blake2b(
        user_id.encode("utf-8"),
        digest_size=MASTER_KEY_SIZE,
        key=master_key,
        person=_KEY_PERSON,
        encoder=RawEncoder,
    )


def generate_nonce() -> bytes:
    """Generate a random 24-byte nonce for encryption."""
    return nacl.utils.random(NONCE_SIZE)


def compute_key_fingerprint(api_key: str) -> str:
    """Compute a fingerprint for display and log purposes.

    The fingerprint is the last 4 characters of the API key.
    """
    if len(api_key) < 4:
        return api_key
    return api_key[-4:]


def looks_encrypted(value: Any) -> bool:
    """Whether a stored value carries the ciphertext prefix."""
    return isinstance(value, str) and value.startswith(CIPHERTEXT_PREFIX)


class EncryptionService:
    """Per-user symmetric encryption of individual text fields.

    One instance is shared by every repository in the process. The active
    key is swapped only through initialize_key().
    """

    def __init__(self, master_key: bytes | None = None):
        """Initialize the service.

        Args:
            master_key: Explicit 32-byte master key. If None, it is loaded
                from settings on first initialize_key().
        """
        if master_key is not None and len(master_key) != MASTER_KEY_SIZE:
            raise CryptoError(f"Master key must be {MASTER_KEY_SIZE} bytes, got {len(master_key)}")
        self._master_key = master_key
        self._box: SecretBox | None = None
        self._user_id: str | None = None

    @property
    def active_user_id(self) -> str | None:
        """User id the active key was derived for."""
        return self._user_id

    async def initialize_key(self, user_id: str) -> None:
        """Derive the key for user_id and make it the active key.

        Operations already in flight keep the box they captured at start.
        """
        master_key = self._master_key or require_master_key()
        box = SecretBox(derive_user_key(master_key, user_id))
        # Single reference swap; readers capture self._box once per call
        self._box = box
        self._user_id = user_id
        logger.info("encryption_key_initialized", user_id=user_id)

    def for_user(self, user_id: str) -> "EncryptionService":
        """Return a new service whose key is fixed to user_id.

        initialize_key() on either service never affects the other.
        """
        master_key = self._master_key or require_master_key()
        bound = EncryptionService(master_key)
        bound._box = SecretBox(derive_user_key(master_key, user_id))
        bound._user_id = user_id
        return bound

    def _capture_box(self) -> SecretBox:
        box = self._box
        if box is None:
            raise CryptoError("Encryption key not initialized; call initialize_key() first")
        return box

    def encrypt(self, value: Any) -> Any:
        """Encrypt a text field.

        Non-string and empty values are returned unchanged.
        """
        if not isinstance(value, str) or value == "":
            return value

        box = self._capture_box()
        encrypted = box.encrypt(value.encode("utf-8"), generate_nonce())
        return CIPHERTEXT_PREFIX + base64.urlsafe_b64encode(bytes(encrypted)).decode("ascii")

    def decrypt(self, value: Any) -> Any:
        """Decrypt a text field produced by encrypt().

        Non-string and empty values are returned unchanged.

        Raises:
            DecryptionError: If the value is not ciphertext of the active key.
        """
        if not isinstance(value, str) or value == "":
            return value

        box = self._capture_box()
        if not value.startswith(CIPHERTEXT_PREFIX):
            raise DecryptionError("Value is not in the encrypted field format")

        try:
            payload = base64.urlsafe_b64decode(value[len(CIPHERTEXT_PREFIX) :].encode("ascii"))
            plaintext = box.decrypt(payload)
            return plaintext.decode("utf-8")
        except Exception as e:
            raise DecryptionError(f"Decryption failed: {type(e).__name__}") from e

    def decrypt_field(self, value: Any, *, entity: str | None = None, field: str | None = None) -> Any:
        """Best-effort decrypt used on every read path.

        Legacy plaintext and foreign-key ciphertext can coexist with current
        ciphertext during migration windows, so a failure returns the stored
        value unchanged and records a warning.
        """
        try:
            return self.decrypt(value)
        except DecryptionError as e:
            logger.warning(
                "field_decrypt_failed",
                entity=entity,
                field=field,
                reason=e.message,
            )
            return value
