"""Error definitions.

Taxonomy:
- DecryptionError: field-local, recovered by the repository layer
- StorageError: backend I/O failure, propagated to the caller
- ValidationError / ModelNotAvailableError: rejected before any I/O
- MigrationError: contained inside the migration task
- CryptoError: key material is missing or invalid

Bridge API status codes are derived from the error code.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes.

    Format: E_CATEGORY_NAME
    """

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_PROVIDER_INVALID = "E_PROVIDER_INVALID"
    E_KEY_INVALID_FORMAT = "E_KEY_INVALID_FORMAT"
    E_KEY_REJECTED = "E_KEY_REJECTED"
    E_MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"
    E_MODEL_TYPE_INVALID = "E_MODEL_TYPE_INVALID"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_SESSION_NOT_FOUND = "E_SESSION_NOT_FOUND"
    E_PRESET_NOT_FOUND = "E_PRESET_NOT_FOUND"

    # Server errors
    E_DECRYPTION_FAILED = "E_DECRYPTION_FAILED"  # 500 (never surfaced by repositories)
    E_CRYPTO_CONFIG = "E_CRYPTO_CONFIG"  # 500
    E_STORAGE_ERROR = "E_STORAGE_ERROR"  # 500
    E_STORAGE_UNAVAILABLE = "E_STORAGE_UNAVAILABLE"  # 503
    E_MIGRATION_FAILED = "E_MIGRATION_FAILED"  # 500
    E_INTERNAL = "E_INTERNAL"  # 500


ERROR_CODE_TO_STATUS: dict[ErrorCode, int] = {
    ErrorCode.E_INVALID_REQUEST: 400,
    ErrorCode.E_PROVIDER_INVALID: 400,
    ErrorCode.E_KEY_INVALID_FORMAT: 400,
    ErrorCode.E_KEY_REJECTED: 400,
    ErrorCode.E_MODEL_NOT_AVAILABLE: 400,
    ErrorCode.E_MODEL_TYPE_INVALID: 400,
    ErrorCode.E_NOT_FOUND: 404,
    ErrorCode.E_SESSION_NOT_FOUND: 404,
    ErrorCode.E_PRESET_NOT_FOUND: 404,
    ErrorCode.E_DECRYPTION_FAILED: 500,
    ErrorCode.E_CRYPTO_CONFIG: 500,
    ErrorCode.E_STORAGE_ERROR: 500,
    ErrorCode.E_STORAGE_UNAVAILABLE: 503,
    ErrorCode.E_MIGRATION_FAILED: 500,
    ErrorCode.E_INTERNAL: 500,
}


class GlassError(Exception):
    """Base exception for all domain errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code used by the bridge API (derived from code)
    """

    def __init__(self, code: ErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class ValidationError(GlassError):
    """Input rejected before any I/O."""

    def __init__(
        self, code: ErrorCode = ErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class ModelNotAvailableError(ValidationError):
    """Requested model is not offered by any provider with a usable key."""

    def __init__(self, model_type: str, model_id: str | None):
        self.model_type = model_type
        self.model_id = model_id
        super().__init__(
            ErrorCode.E_MODEL_NOT_AVAILABLE,
            f"Model {model_id!r} is not available for type {model_type!r}",
        )


class NotFoundError(GlassError):
    """Resource not found error."""

    def __init__(self, code: ErrorCode = ErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class CryptoError(GlassError):
    """Raised when key material is missing or invalid."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.E_CRYPTO_CONFIG, message)


class DecryptionError(GlassError):
    """Ciphertext is malformed or was produced under a different key."""

    def __init__(self, message: str = "Decryption failed"):
        super().__init__(ErrorCode.E_DECRYPTION_FAILED, message)


class StorageError(GlassError):
    """Backend I/O failure.

    Attributes:
        entity: Entity (or table/collection) the operation targeted
        operation: Repository or store operation name
        transient: True for timeouts and connectivity failures
    """

    def __init__(self, entity: str, operation: str, message: str, *, transient: bool = False):
        self.entity = entity
        self.operation = operation
        self.transient = transient
        code = ErrorCode.E_STORAGE_UNAVAILABLE if transient else ErrorCode.E_STORAGE_ERROR
        super().__init__(code, f"{entity}.{operation} failed: {message}")


class MigrationError(GlassError):
    """Local to remote migration failed for a user."""

    def __init__(self, user_id: str, message: str):
        self.user_id = user_id
        super().__init__(ErrorCode.E_MIGRATION_FAILED, f"Migration for {user_id} failed: {message}")
