"""Provider catalog and API key validation.

Static registry of the AI providers the assistant can use, the models each
offers per type, and how to check a credential:
- openai:    GET https://api.openai.com/v1/models (Authorization: Bearer)
- anthropic: GET https://api.anthropic.com/v1/models (x-api-key)
- gemini:    GET https://generativelanguage.googleapis.com/v1beta/models?key=
- deepgram:  GET https://api.deepgram.com/v1/projects (Authorization: Token)
- ollama:    GET {OLLAMA_HOST}/api/tags (daemon reachable)
- whisper:   always valid (bundled local runtime)

Local providers (ollama, whisper) store the marker "local" instead of a key.
"""

from dataclasses import dataclass

import httpx

from glass.config import get_settings
from glass.logging import get_logger

logger = get_logger(__name__)

MODEL_TYPES = ("llm", "stt")

# Stored in place of an API key for local runtimes
LOCAL_KEY_MARKER = "local"


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str


@dataclass(frozen=True)
class ProviderInfo:
    """Catalog entry for one provider."""

    id: str
    name: str
    llm_models: tuple[ModelInfo, ...] = ()
    stt_models: tuple[ModelInfo, ...] = ()
    is_local: bool = False
    validation_url: str | None = None

    def models(self, model_type: str) -> tuple[ModelInfo, ...]:
        return self.llm_models if model_type == "llm" else self.stt_models


@dataclass(frozen=True)
class KeyValidationResult:
    success: bool
    error: str | None = None


# Canonical enumeration order
PROVIDERS: dict[str, ProviderInfo] = {
    "openai": ProviderInfo(
        id="openai",
        name="OpenAI",
        llm_models=(
            ModelInfo("gpt-4o-mini", "GPT-4o mini"),
            ModelInfo("gpt-4.1", "GPT-4.1"),
            ModelInfo("gpt-4o", "GPT-4o"),
        ),
        stt_models=(ModelInfo("gpt-4o-mini-transcribe", "GPT-4o mini Transcribe"),),
        validation_url="https://api.openai.com/v1/models",
    ),
    "anthropic": ProviderInfo(
        id="anthropic",
        name="Anthropic",
        llm_models=(ModelInfo("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet"),),
        validation_url="https://api.anthropic.com/v1/models",
    ),
    "gemini": ProviderInfo(
        id="gemini",
        name="Gemini",
        llm_models=(ModelInfo("gemini-2.5-flash", "Gemini 2.5 Flash"),),
        stt_models=(ModelInfo("gemini-live-2.5-flash-preview", "Gemini Live 2.5 Flash"),),
        validation_url="https://generativelanguage.googleapis.com/v1beta/models",
    ),
    "deepgram": ProviderInfo(
        id="deepgram",
        name="Deepgram",
        stt_models=(ModelInfo("nova-3", "Nova-3 (General)"),),
        validation_url="https://api.deepgram.com/v1/projects",
    ),
    "ollama": ProviderInfo(
        id="ollama",
        name="Ollama (Local)",
        llm_models=(
            ModelInfo("llama3.2:latest", "Llama 3.2"),
            ModelInfo("gemma3:4b", "Gemma 3 4B"),
        ),
        is_local=True,
    ),
    "whisper": ProviderInfo(
        id="whisper",
        name="Whisper (Local)",
        stt_models=(
            ModelInfo("whisper-tiny", "Whisper Tiny (39M)"),
            ModelInfo("whisper-base", "Whisper Base (74M)"),
            ModelInfo("whisper-small", "Whisper Small (244M)"),
            ModelInfo("whisper-medium", "Whisper Medium (769M)"),
        ),
        is_local=True,
    ),
}


def get_provider(provider_id: str) -> ProviderInfo | None:
    return PROVIDERS.get(provider_id)


def is_local_provider(provider_id: str) -> bool:
    info = PROVIDERS.get(provider_id)
    return info is not None and info.is_local


def _auth_request(provider: ProviderInfo, api_key: str) -> tuple[str, dict[str, str], dict[str, str]]:
    url = provider.validation_url or ""
    if provider.id == "openai":
        return url, {"Authorization": f"Bearer {api_key}"}, {}
    if provider.id == "anthropic":
        return url, {"x-api-key": api_key, "anthropic-version": "2023-06-01"}, {}
    if provider.id == "gemini":
        return url, {}, {"key": api_key}
    if provider.id == "deepgram":
        return url, {"Authorization": f"Token {api_key}"}, {}
    raise ValueError(f"No validation request for provider {provider.id}")


async def validate_api_key(
    provider_id: str,
    api_key: str,
    client: httpx.AsyncClient,
) -> KeyValidationResult:
    """Check a credential against the provider.

    Network and HTTP failures are reported in the result, never raised.
    """
    provider = PROVIDERS.get(provider_id)
    if provider is None:
        return KeyValidationResult(False, f"Unknown provider: {provider_id}")

    if not provider.is_local and (not api_key or not api_key.strip()):
        return KeyValidationResult(False, "API key cannot be empty.")

    settings = get_settings()
    timeout = httpx.Timeout(settings.key_validation_timeout_s, connect=5.0)

    if provider.id == "whisper":
        return KeyValidationResult(True)

    try:
        if provider.id == "ollama":
            response = await client.get(
                f"{settings.ollama_host.rstrip('/')}/api/tags", timeout=timeout
            )
            if response.status_code != 200:
                return KeyValidationResult(False, "Ollama daemon returned an error.")
            return KeyValidationResult(True)

        url, headers, params = _auth_request(provider, api_key.strip())
        response = await client.get(url, headers=headers, params=params, timeout=timeout)
    except httpx.TimeoutException:
        logger.warning("key_validation_timeout", provider=provider_id)
        return KeyValidationResult(False, f"{provider.name} did not respond in time.")
    except httpx.HTTPError as e:
        logger.warning("key_validation_unreachable", provider=provider_id, error_type=type(e).__name__)
        return KeyValidationResult(False, f"Could not reach {provider.name}.")

    if response.status_code == 200:
        return KeyValidationResult(True)
    if response.status_code in (400, 401, 403):
        return KeyValidationResult(False, "Invalid API key.")
    return KeyValidationResult(
        False, f"{provider.name} returned status {response.status_code} during validation."
    )
