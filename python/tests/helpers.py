"""Test helper functions and fakes."""

from typing import Any
from uuid import uuid4

from glass.db.local_store import LocalStore
from glass.repositories import CurrentUser, Repository
from glass.services.crypto import EncryptionService
from glass.storage.client import FakeDocumentStore


class StaticAuth:
    """AuthProvider whose snapshot is set directly by the test."""

    def __init__(self, user: CurrentUser | None = None):
        self.user = user or CurrentUser(user_id="default_user")

    def get_current_user(self) -> CurrentUser:
        return self.user

    def sign_in(self, user_id: str, **profile: Any) -> CurrentUser:
        self.user = CurrentUser(user_id=user_id, is_logged_in=True, **profile)
        return self.user

    def sign_out(self, user_id: str = "default_user") -> CurrentUser:
        self.user = CurrentUser(user_id=user_id)
        return self.user


def create_test_user_id() -> str:
    """Generate a unique auth-provider style user id."""
    return f"uid_{uuid4().hex[:12]}"


def make_repository(
    repo_cls: type[Repository],
    local_store: LocalStore,
    remote_store: FakeDocumentStore,
    encryption: EncryptionService,
    auth: StaticAuth,
) -> Any:
    return repo_cls(local_store, remote_store, encryption, auth)


def session_data(user_id: str, email: str | None = None, name: str | None = None) -> dict:
    """Session payload as posted by the desktop shell after OAuth."""
    return {"user": {"id": user_id, "email": email or f"{user_id}@example.com", "name": name or "Test User"}}
