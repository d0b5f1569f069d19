"""Auth state owner.

Holds the current user snapshot consumed by every repository call and runs
the sign-in / sign-out transitions:

Sign-in:
1. Swap the snapshot to the signed-in user and derive their field key
2. Ensure the user record exists remotely and locally (the local record
   carries the has_migrated flag)
3. End sessions left open by a previous run
4. Schedule the local to remote migration (detached)
5. Notify auth listeners and emit user-state-changed

Sign-out:
1. End the user's active sessions
2. Reset to the local default user and derive its key
3. Notify auth listeners and emit user-state-changed

The OAuth exchange itself happens outside this process; sign_in() receives
the resulting session data.
"""

import inspect
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from glass.config import get_settings
from glass.errors import ErrorCode, ValidationError
from glass.logging import get_logger, set_user_context
from glass.repositories.backend import Backend, CurrentUser
from glass.services import events
from glass.services.crypto import EncryptionService
from glass.services.events import EventBus

if TYPE_CHECKING:
    from glass.repositories.sessions import SessionRepository
    from glass.repositories.users import UserRepository
    from glass.services.migration import MigrationCoordinator

logger = get_logger(__name__)

AuthListener = Callable[[CurrentUser], Any]


class AuthService:
    """Current user snapshot and auth transitions.

    Repositories depend on this service (as their AuthProvider), and the
    transitions use repositories, so those are attached after construction
    with bind().
    """

    def __init__(self, encryption: EncryptionService, event_bus: EventBus):
        self._encryption = encryption
        self._events = event_bus
        self._default_user_id = get_settings().default_local_user_id
        self._user = CurrentUser(user_id=self._default_user_id)
        self._listeners: list[AuthListener] = []
        self._users: UserRepository | None = None
        self._sessions: SessionRepository | None = None
        self._migration: MigrationCoordinator | None = None

    def bind(
        self,
        users: "UserRepository",
        sessions: "SessionRepository",
        migration: "MigrationCoordinator",
    ) -> None:
        self._users = users
        self._sessions = sessions
        self._migration = migration

    # ------------------------------------------------------------------
    # Snapshot access (AuthProvider)
    # ------------------------------------------------------------------

    def get_current_user_id(self) -> str:
        return self._user.user_id

    def get_current_user(self) -> CurrentUser:
        return self._user

    def user_state(self) -> dict[str, Any]:
        user = self._user
        return {
            "user_id": user.user_id,
            "is_logged_in": user.is_logged_in,
            "email": user.email,
            "display_name": user.display_name,
            "photo_url": user.photo_url,
            "mode": Backend.REMOTE.value if user.is_logged_in else Backend.LOCAL.value,
        }

    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener called with the new CurrentUser after each transition."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Derive the default user's key and make sure its local record exists."""
        await self._encryption.initialize_key(self._user.user_id)
        set_user_context(self._user.user_id)
        if self._users is not None:
            await self._users.pinned(Backend.LOCAL, self._user.user_id).find_or_create(self._user)

    async def sign_in(self, session_data: Mapping[str, Any]) -> CurrentUser:
        """Switch to the signed-in user described by session_data.

        session_data: {"user_id"?, "user": {"id", "email", "name", "image"}}
        """
        profile = session_data.get("user") or {}
        user_id = session_data.get("user_id") or profile.get("id")
        if not user_id:
            raise ValidationError(ErrorCode.E_INVALID_REQUEST, "Session data has no user id")

        user = CurrentUser(
            user_id=str(user_id),
            is_logged_in=True,
            email=profile.get("email"),
            display_name=profile.get("name") or profile.get("display_name"),
            photo_url=profile.get("image") or profile.get("photo_url"),
        )
        self._user = user
        set_user_context(user.user_id)
        await self._encryption.initialize_key(user.user_id)
        logger.info("user_signed_in", user_id=user.user_id)

        if self._users is not None:
            await self._users.find_or_create(user)
            await self._users.pinned(Backend.LOCAL, user.user_id).find_or_create(user)
        if self._sessions is not None:
            await self._sessions.end_all_active()
        if self._migration is not None:
            self._migration.schedule(user.user_id)

        await self._notify()
        return user

    async def sign_out(self) -> CurrentUser:
        previous = self._user
        if self._sessions is not None:
            await self._sessions.end_all_active()

        self._user = CurrentUser(user_id=self._default_user_id)
        set_user_context(self._user.user_id)
        await self._encryption.initialize_key(self._user.user_id)
        logger.info("user_signed_out", previous_user_id=previous.user_id)

        await self._notify()
        return self._user

    async def _notify(self) -> None:
        user = self._user
        for listener in list(self._listeners):
            try:
                result = listener(user)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "auth_listener_failed",
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(e),
                    exc_info=True,
                )
        await self._events.emit(events.USER_STATE_CHANGED, self.user_state())
