"""Backend selection.

Which store a call uses is a pure function of the auth snapshot taken when
the call starts: signed-in users go to the remote document store, everyone
else to the local embedded store.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class Backend(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class CurrentUser:
    """Snapshot of the auth state.

    user_id is the local default user id when nobody is signed in.
    """

    user_id: str
    is_logged_in: bool = False
    email: str | None = None
    display_name: str | None = None
    photo_url: str | None = None


class AuthProvider(Protocol):
    """Source of the current auth snapshot."""

    def get_current_user(self) -> CurrentUser: ...


def select_backend(user: CurrentUser) -> Backend:
    """Route to REMOTE iff the user is signed in."""
    return Backend.REMOTE if user.is_logged_in else Backend.LOCAL


@dataclass(frozen=True)
class CallContext:
    """Backend and user id resolved once per public repository call."""

    backend: Backend
    user_id: str

    @classmethod
    def from_user(cls, user: CurrentUser, pinned: Backend | None = None) -> "CallContext":
        return cls(backend=pinned or select_backend(user), user_id=user.user_id)
