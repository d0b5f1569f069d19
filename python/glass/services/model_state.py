"""Model/provider state manager.

Tracks which providers have a usable credential and which LLM/STT model is
selected, persisting both through the ProviderSettings and ModelSelections
repositories (so the state follows the active backend).

Auto-selection, for each model type:
- keep the current selection iff it is set, not forced, still offered by a
  provider with a usable credential
- otherwise pick the first model of an API provider (providers in
  lexicographic id order, models in catalog order)
- otherwise the first model of a local runtime provider (catalog order)
- otherwise None

Concurrency:
- Mutations are serialized by an asyncio.Lock
- New state is committed only after persistence succeeded; on failure the
  previous state is kept and the error propagates
- Notifications are emitted after the lock is released

SECURITY: API keys are never logged; public_state() exposes fingerprints.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx

from glass.errors import ErrorCode, GlassError, ModelNotAvailableError, ValidationError
from glass.logging import get_logger
from glass.providers.catalog import (
    LOCAL_KEY_MARKER,
    MODEL_TYPES,
    PROVIDERS,
    KeyValidationResult,
    ModelInfo,
    validate_api_key,
)
from glass.repositories.backend import AuthProvider
from glass.repositories.model_selections import ModelSelectionsRepository
from glass.repositories.provider_settings import ProviderSettingsRepository
from glass.schemas.records import ModelSelectionsRecord, ProviderSettingsRecord
from glass.services import events
from glass.services.crypto import compute_key_fingerprint, looks_encrypted
from glass.services.events import EventBus

logger = get_logger(__name__)


@dataclass
class ModelState:
    api_keys: dict[str, str | None] = field(default_factory=lambda: {p: None for p in PROVIDERS})
    selected_models: dict[str, str | None] = field(
        default_factory=lambda: {t: None for t in MODEL_TYPES}
    )

    def copy(self) -> "ModelState":
        return ModelState(dict(self.api_keys), dict(self.selected_models))


@dataclass(frozen=True)
class CurrentModelInfo:
    provider: str
    model: str
    api_key: str | None


# =============================================================================
# Pure helpers
# =============================================================================


def has_usable_key(provider_id: str, key: str | None) -> bool:
    info = PROVIDERS.get(provider_id)
    if info is None or not key:
        return False
    if info.is_local:
        return key == LOCAL_KEY_MARKER
    return bool(key.strip())


def available_models(api_keys: dict[str, str | None], model_type: str) -> list[ModelInfo]:
    """Models of every provider with a usable key, de-duplicated by id (first wins)."""
    seen: set[str] = set()
    models: list[ModelInfo] = []
    for provider_id, info in PROVIDERS.items():
        if not has_usable_key(provider_id, api_keys.get(provider_id)):
            continue
        for model in info.models(model_type):
            if model.id not in seen:
                seen.add(model.id)
                models.append(model)
    return models


def provider_for_model(model_type: str, model_id: str | None) -> str | None:
    if not model_id:
        return None
    for provider_id, info in PROVIDERS.items():
        if any(m.id == model_id for m in info.models(model_type)):
            return provider_id
    return None


def auto_select(state: ModelState, force_types: Iterable[str] = ()) -> dict[str, str | None]:
    """Resolve the selection for every model type. Pure function of its inputs."""
    forced = set(force_types)
    selected: dict[str, str | None] = {}
    for model_type in MODEL_TYPES:
        current = state.selected_models.get(model_type)
        available_ids = {m.id for m in available_models(state.api_keys, model_type)}
        owner = provider_for_model(model_type, current)
        if (
            current
            and model_type not in forced
            and current in available_ids
            and owner is not None
            and has_usable_key(owner, state.api_keys.get(owner))
        ):
            selected[model_type] = current
            continue

        api_providers = sorted(p for p, info in PROVIDERS.items() if not info.is_local)
        local_providers = [p for p, info in PROVIDERS.items() if info.is_local]
        choice = None
        for provider_id in api_providers + local_providers:
            if not has_usable_key(provider_id, state.api_keys.get(provider_id)):
                continue
            models = PROVIDERS[provider_id].models(model_type)
            if models:
                choice = models[0].id
                break
        selected[model_type] = choice
    return selected


# Provider settings fields written back when a mutation is undone
_RESTORED_SETTINGS = {"api_key", "selected_llm_model", "selected_stt_model"}

def _check_model_type(model_type: str) -> None:
    if model_type not in MODEL_TYPES:
        raise ValidationError(ErrorCode.E_MODEL_TYPE_INVALID, f"Unknown model type: {model_type}")


def _check_provider(provider: str) -> None:
    if provider not in PROVIDERS:
        raise ValidationError(ErrorCode.E_PROVIDER_INVALID, f"Unknown provider: {provider}")


# =============================================================================
# Manager
# =============================================================================


class ModelStateManager:
    """Single owner of the in-memory model state for the process."""

    def __init__(
        self,
        provider_settings: ProviderSettingsRepository,
        model_selections: ModelSelectionsRepository,
        auth: AuthProvider,
        event_bus: EventBus,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._provider_settings = provider_settings
        self._model_selections = model_selections
        self._auth = auth
        self._events = event_bus
        self._http_client = http_client
        self._state = ModelState()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ModelState:
        return self._state.copy()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _read_state(self) -> ModelState:
        state = ModelState()
        for settings in await self._provider_settings.find_by_owner():
            if settings.provider not in PROVIDERS or not settings.api_key:
                continue
            if looks_encrypted(settings.api_key):
                # Decryption failed; the ciphertext is not a usable key
                logger.warning("provider_key_unreadable", provider=settings.provider)
                continue
            state.api_keys[settings.provider] = settings.api_key

        selections = await self._model_selections.get()
        if selections is not None:
            state.selected_models = {
                "llm": selections.selected_llm_model,
                "stt": selections.selected_stt_model,
            }
        return state

    async def load_for_current_user(self) -> ModelState:
        """Reload state from the active backend and re-run auto-selection.

        A failed read falls back to an empty state instead of raising.
        """
        user_id = self._auth.get_current_user().user_id
        async with self._lock:
            try:
                state = await self._read_state()
            except GlassError as e:
                logger.error("model_state_load_failed", user_id=user_id, error=e.message)
                state = ModelState()
            else:
                selected = auto_select(state)
                if selected != state.selected_models:
                    state.selected_models = selected
                    try:
                        await self._persist_selection(state)
                    except GlassError as e:
                        logger.warning("model_selection_persist_failed", error=e.message)
            self._state = state
            public = self.public_state()

        self._log_selection("model_state_loaded")
        await self._events.emit(events.MODEL_STATE_UPDATED, public)
        return self.state

    async def handle_migration_completed(self, payload: dict[str, Any] | None = None) -> None:
        """Reload when the current user's local data reached the remote store."""
        if payload and payload.get("user_id") != self._auth.get_current_user().user_id:
            return
        await self.load_for_current_user()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _persist_selection(self, state: ModelState) -> None:
        llm = state.selected_models.get("llm")
        stt = state.selected_models.get("stt")
        await self._model_selections.upsert(
            {
                "selected_llm_provider": provider_for_model("llm", llm),
                "selected_llm_model": llm,
                "selected_stt_provider": provider_for_model("stt", stt),
                "selected_stt_model": stt,
            }
        )

    async def _snapshot(
        self, provider: str | None
    ) -> tuple[ProviderSettingsRecord | None, ModelSelectionsRecord | None]:
        settings = await self._provider_settings.get(provider) if provider else None
        return settings, await self._model_selections.get()

    async def _restore(
        self,
        provider: str | None,
        snapshot: tuple[ProviderSettingsRecord | None, ModelSelectionsRecord | None],
    ) -> None:
        """Best effort: write back the records read by _snapshot() after a failed mutation."""
        settings, selections = snapshot
        try:
            if provider is not None:
                if settings is None:
                    await self._provider_settings.remove(provider)
                else:
                    values = settings.model_dump(include=_RESTORED_SETTINGS)
                    if looks_encrypted(values["api_key"]):
                        # Unreadable under the active key; leave the stored ciphertext alone
                        del values["api_key"]
                    await self._provider_settings.upsert(provider, values)
            if selections is None:
                await self._model_selections.remove()
            else:
                await self._model_selections.upsert(selections.model_dump())
        except GlassError as e:
            logger.error("model_state_restore_failed", provider=provider, error=e.message)
        else:
            logger.warning("model_state_restored", provider=provider)

    async def _notify(self, public: dict[str, Any]) -> None:
        await self._events.emit(events.MODEL_STATE_UPDATED, public)
        await self._events.emit(events.SETTINGS_UPDATED)

    async def set_api_key(self, provider: str, key: str | None) -> None:
        """Store a credential and auto-select models for the types it offers.

        Raises:
            ValidationError: Unknown provider or empty key (before any I/O).
            StorageError: Persistence failed; stored records and state are left as before.
        """
        _check_provider(provider)
        info = PROVIDERS[provider]
        if info.is_local:
            key = LOCAL_KEY_MARKER
        elif not isinstance(key, str) or not key.strip():
            raise ValidationError(ErrorCode.E_KEY_INVALID_FORMAT, "API key cannot be empty")
        else:
            key = key.strip()

        async with self._lock:
            new = self._state.copy()
            new.api_keys[provider] = key
            selected = auto_select(new)
            for model_type in MODEL_TYPES:
                if info.models(model_type):
                    new.selected_models[model_type] = selected[model_type]

            snapshot = await self._snapshot(provider)
            try:
                await self._provider_settings.upsert(provider, {"api_key": key})
                await self._persist_selection(new)
            except GlassError:
                await self._restore(provider, snapshot)
                raise
            self._state = new
            public = self.public_state()

        logger.info(
            "api_key_set",
            provider=provider,
            key_fingerprint=compute_key_fingerprint(key),
        )
        self._log_selection("model_selection_changed")
        await self._notify(public)

    async def remove_api_key(self, provider: str) -> bool:
        """Clear a credential. Returns False if none was stored.

        Types whose selection was backed by the provider are forced through
        auto-selection. When that leaves no model selected for any type,
        force-show-apikey-header is emitted.
        """
        _check_provider(provider)
        async with self._lock:
            if not self._state.api_keys.get(provider):
                return False

            previous = dict(self._state.selected_models)
            new = self._state.copy()
            new.api_keys[provider] = None
            forced = [t for t in MODEL_TYPES if provider_for_model(t, previous.get(t)) == provider]
            new.selected_models = auto_select(new, forced)

            snapshot = await self._snapshot(provider)
            try:
                await self._provider_settings.remove(provider)
                await self._persist_selection(new)
            except GlassError:
                await self._restore(provider, snapshot)
                raise
            self._state = new
            public = self.public_state()

        lost_all = any(previous.values()) and not any(new.selected_models.values())
        logger.info("api_key_removed", provider=provider, forced_types=forced)
        self._log_selection("model_selection_changed")
        await self._notify(public)
        if lost_all:
            await self._events.emit(events.FORCE_SHOW_APIKEY_HEADER)
        return True

    async def set_selected_model(self, model_type: str, model_id: str) -> None:
        """Select a model explicitly.

        Raises:
            ModelNotAvailableError: No provider with a usable key offers it.
            StorageError: Persistence failed; stored records and state are left as before.
        """
        _check_model_type(model_type)
        async with self._lock:
            if model_id not in {m.id for m in available_models(self._state.api_keys, model_type)}:
                raise ModelNotAvailableError(model_type, model_id)

            new = self._state.copy()
            new.selected_models[model_type] = model_id
            provider = provider_for_model(model_type, model_id)
            snapshot = await self._snapshot(provider)
            try:
                await self._persist_selection(new)
                if provider is not None:
                    await self._provider_settings.update_model_selection(provider, model_type, model_id)
            except GlassError:
                await self._restore(provider, snapshot)
                raise
            self._state = new
            public = self.public_state()

        self._log_selection("model_selection_changed")
        await self._notify(public)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_api_key(self, provider: str) -> str | None:
        return self._state.api_keys.get(provider)

    def get_all_api_keys(self) -> dict[str, str | None]:
        return dict(self._state.api_keys)

    def get_available_models(self, model_type: str) -> list[ModelInfo]:
        _check_model_type(model_type)
        return available_models(self._state.api_keys, model_type)

    def get_selected_models(self) -> dict[str, str | None]:
        return dict(self._state.selected_models)

    def get_provider_for_model(self, model_type: str, model_id: str | None) -> str | None:
        return provider_for_model(model_type, model_id)

    def get_current_model_info(self, model_type: str) -> CurrentModelInfo | None:
        """Provider, model and credential for the selected model of a type."""
        _check_model_type(model_type)
        model = self._state.selected_models.get(model_type)
        provider = provider_for_model(model_type, model)
        if model is None or provider is None:
            return None
        return CurrentModelInfo(provider=provider, model=model, api_key=self.get_api_key(provider))

    def are_providers_configured(self) -> bool:
        """Whether both an LLM and an STT model can be used."""
        return all(available_models(self._state.api_keys, t) for t in MODEL_TYPES)

    def has_valid_api_key(self) -> bool:
        return any(has_usable_key(p, k) for p, k in self._state.api_keys.items())

    async def validate_api_key(self, provider: str, key: str) -> KeyValidationResult:
        if self._http_client is not None:
            result = await validate_api_key(provider, key, self._http_client)
        else:
            async with httpx.AsyncClient() as client:
                result = await validate_api_key(provider, key, client)
        logger.info("api_key_validated", provider=provider, success=result.success)
        return result

    async def validate_and_set_api_key(self, provider: str, key: str) -> KeyValidationResult:
        """Validate a credential and store it only if the provider accepts it."""
        _check_provider(provider)
        result = await self.validate_api_key(provider, key)
        if result.success:
            await self.set_api_key(provider, key)
        return result

    def public_state(self) -> dict[str, Any]:
        """State safe to hand to UI surfaces: keys reduced to fingerprints."""
        return {
            "api_keys": {
                provider: (compute_key_fingerprint(key) if key and key != LOCAL_KEY_MARKER else key)
                for provider, key in self._state.api_keys.items()
            },
            "selected_models": dict(self._state.selected_models),
        }

    def _log_selection(self, event: str) -> None:
        selected = self._state.selected_models
        logger.info(
            event,
            llm_model=selected.get("llm"),
            llm_provider=provider_for_model("llm", selected.get("llm")),
            stt_model=selected.get("stt"),
            stt_provider=provider_for_model("stt", selected.get("stt")),
        )
