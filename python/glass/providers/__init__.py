"""AI provider catalog."""

from glass.providers.catalog import (
    LOCAL_KEY_MARKER,
    MODEL_TYPES,
    PROVIDERS,
    KeyValidationResult,
    ModelInfo,
    ProviderInfo,
    get_provider,
    is_local_provider,
    validate_api_key,
)

__all__ = [
    "LOCAL_KEY_MARKER",
    "MODEL_TYPES",
    "PROVIDERS",
    "KeyValidationResult",
    "ModelInfo",
    "ProviderInfo",
    "get_provider",
    "is_local_provider",
    "validate_api_key",
]
